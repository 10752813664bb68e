"""
API server package: HTTP surface over the indexer worker.
"""

from backend_defipoly.api_server.server import create_app

__all__ = ["create_app"]
