"""
Data models for Solana listener output.

Signature listings (getSignaturesForAddress), log notifications from the
websocket subscription, and the connection state machine.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    STOPPED = "stopped"


@dataclass(frozen=True)
class SignatureInfo:
    """
    Normalized transaction signature info from getSignaturesForAddress.

    Mirrors Solana RPC response fields; used as the unit of work
    compared against the action store by the gap reconciler.
    """

    signature: str
    slot: int
    err: Any  # None if success; dict/object from RPC if failed
    block_time: int | None  # Unix timestamp; None if not available
    memo: str | None = None
    confirmation_status: str | None = None  # processed | confirmed | finalized

    @classmethod
    def from_rpc_item(cls, item: dict[str, Any]) -> "SignatureInfo":
        """Build from a single getSignaturesForAddress result item."""
        return cls(
            signature=item["signature"],
            slot=int(item["slot"]),
            err=item.get("err"),
            block_time=item.get("blockTime"),
            memo=item.get("memo"),
            confirmation_status=item.get("confirmationStatus"),
        )


@dataclass(frozen=True)
class LogNotification:
    """One logsNotification from the websocket: (signature, slot) plus the program's error, if any."""

    signature: str
    slot: int | None
    err: Any = None

    @classmethod
    def from_message(cls, msg: dict[str, Any]) -> "LogNotification | None":
        """Parse a raw logsNotification message; None if it is not one or lacks a signature."""
        if msg.get("method") != "logsNotification":
            return None
        result = (msg.get("params") or {}).get("result") or {}
        value = result.get("value") or {}
        signature = value.get("signature")
        if not isinstance(signature, str) or not signature:
            return None
        slot = (result.get("context") or {}).get("slot")
        return cls(signature=signature, slot=slot if isinstance(slot, int) else None, err=value.get("err"))
