"""
Configuration management for the Defipoly indexer.

Loads settings from environment variables and .env, and the static property
catalog. Exposes a single source of truth for all service configuration.
"""

from backend_defipoly.config.catalog import (  # noqa: F401
    Property,
    PropertyCatalog,
    PropertySet,
    default_catalog,
    load_catalog,
)
from backend_defipoly.config.settings import Settings, get_settings  # noqa: F401

__all__ = [
    "Property",
    "PropertyCatalog",
    "PropertySet",
    "Settings",
    "default_catalog",
    "get_settings",
    "load_catalog",
]
