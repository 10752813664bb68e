"""
Application-level exceptions.

Decode failures and duplicate transactions are not errors and never raise;
everything here is a condition a caller has to handle or surface.
"""

from __future__ import annotations


class DefipolyError(Exception):
    """Base class for all indexer errors."""


class StorageError(DefipolyError):
    """Storage-layer I/O failure; the caller must not mutate aggregates."""


class RpcError(DefipolyError):
    """Solana JSON-RPC transport or protocol error."""

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class ReconnectExhaustedError(DefipolyError):
    """Live subscriber gave up reconnecting; requires an external restart."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Websocket reconnect failed after {attempts} attempts")
        self.attempts = attempts


class GapCheckInProgressError(DefipolyError):
    """A gap check is already running; manual triggers are rejected, not queued."""


class UnknownPropertyError(DefipolyError, KeyError):
    """Property or set id not present in the catalog."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "unknown property"


class CatalogError(DefipolyError, ValueError):
    """Malformed property catalog configuration."""
