"""
Raw program event extraction from transaction log messages.

The Defipoly program emits Anchor events: each event is a `Program data: <base64>`
log line whose payload is an 8-byte discriminator (sha256("event:<Name>")[:8])
followed by Borsh-encoded fields. Only lines emitted while the game program is
the innermost executing program are considered. Layouts are data: adding an
event is adding a table row.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import struct
from dataclasses import dataclass
from typing import Any, Iterator

from solders.pubkey import Pubkey

from backend_defipoly.defipoly_logging import get_logger

logger = get_logger(__name__)

PROGRAM_DATA_PREFIX = "Program data: "
DISCRIMINATOR_LEN = 8

# Fixed-width Borsh primitives: (struct format, byte width)
_PRIMITIVES: dict[str, tuple[str, int]] = {
    "u8": ("<B", 1),
    "u16": ("<H", 2),
    "u32": ("<I", 4),
    "u64": ("<Q", 8),
    "i64": ("<q", 8),
    "bool": ("<?", 1),
}

# Event layouts as emitted by the program (field names in IDL snake_case).
EVENT_LAYOUTS: dict[str, tuple[tuple[str, str], ...]] = {
    "PropertyBoughtEvent": (
        ("player", "pubkey"),
        ("property_id", "u8"),
        ("price", "u64"),
        ("slots", "u16"),
        ("total_cost", "u64"),
        ("slots_owned", "u16"),
        ("total_slots_owned", "u16"),
    ),
    "PropertySoldEvent": (
        ("player", "pubkey"),
        ("property_id", "u8"),
        ("slots", "u16"),
        ("received", "u64"),
        ("sell_value_percent", "u16"),
        ("days_held", "u64"),
    ),
    "StealSuccessEvent": (
        ("attacker", "pubkey"),
        ("target", "pubkey"),
        ("property_id", "u8"),
        ("slots_stolen", "u16"),
        ("steal_cost", "u64"),
        ("targeted", "bool"),
        ("vrf_result", "u64"),
    ),
    "StealFailedEvent": (
        ("attacker", "pubkey"),
        ("target", "pubkey"),
        ("property_id", "u8"),
        ("steal_cost", "u64"),
        ("targeted", "bool"),
        ("vrf_result", "u64"),
    ),
    "ShieldActivatedEvent": (
        ("player", "pubkey"),
        ("property_id", "u8"),
        ("slots_shielded", "u16"),
        ("cost", "u64"),
        ("expiry", "i64"),
    ),
    "RewardsClaimedEvent": (
        ("player", "pubkey"),
        ("amount", "u64"),
        ("hours_elapsed", "u64"),
    ),
}

# Earlier program builds emit the failed-steal event under this name with the same fields.
EVENT_LAYOUTS["StealFailureEvent"] = EVENT_LAYOUTS["StealFailedEvent"]


@dataclass(frozen=True)
class RawEvent:
    """A program event before it is mapped to a game action."""

    name: str
    data: dict[str, Any]


def event_discriminator(name: str) -> bytes:
    """Anchor event discriminator: first 8 bytes of sha256("event:<Name>")."""
    return hashlib.sha256(f"event:{name}".encode()).digest()[:DISCRIMINATOR_LEN]


_DISCRIMINATORS: dict[bytes, str] = {event_discriminator(name): name for name in EVENT_LAYOUTS}


def decode_fields(layout: tuple[tuple[str, str], ...], payload: bytes) -> dict[str, Any]:
    """Decode Borsh fields per layout. Raises ValueError on truncated payload or unknown type."""
    out: dict[str, Any] = {}
    offset = 0
    for field_name, kind in layout:
        if kind == "pubkey":
            chunk = payload[offset:offset + 32]
            if len(chunk) != 32:
                raise ValueError(f"truncated pubkey field {field_name}")
            out[field_name] = str(Pubkey.from_bytes(chunk))
            offset += 32
            continue
        prim = _PRIMITIVES.get(kind)
        if prim is None:
            raise ValueError(f"unsupported field type {kind}")
        fmt, width = prim
        try:
            (out[field_name],) = struct.unpack_from(fmt, payload, offset)
        except struct.error as e:
            raise ValueError(f"truncated field {field_name}: {e}") from e
        offset += width
    return out


def encode_fields(layout: tuple[tuple[str, str], ...], data: dict[str, Any]) -> bytes:
    """Inverse of decode_fields; used to build fixtures and replay payloads."""
    parts: list[bytes] = []
    for field_name, kind in layout:
        value = data[field_name]
        if kind == "pubkey":
            parts.append(bytes(Pubkey.from_string(value) if isinstance(value, str) else value))
            continue
        fmt, _ = _PRIMITIVES[kind]
        parts.append(struct.pack(fmt, value))
    return b"".join(parts)


def encode_event_log(name: str, data: dict[str, Any]) -> str:
    """Render one event as the `Program data:` log line the program would emit."""
    payload = event_discriminator(name) + encode_fields(EVENT_LAYOUTS[name], data)
    return PROGRAM_DATA_PREFIX + base64.b64encode(payload).decode()


def parse_event_payload(encoded: str) -> RawEvent | None:
    """Decode one base64 `Program data` payload; None if it is not a known event."""
    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        return None
    if len(raw) < DISCRIMINATOR_LEN:
        return None
    name = _DISCRIMINATORS.get(raw[:DISCRIMINATOR_LEN])
    if name is None:
        return None
    try:
        data = decode_fields(EVENT_LAYOUTS[name], raw[DISCRIMINATOR_LEN:])
    except ValueError as e:
        logger.debug("decoder_event_payload_invalid", event_name=name, error=str(e))
        return None
    return RawEvent(name=name, data=data)


def _invoked_program(line: str) -> str | None:
    # "Program <id> invoke [n]"
    parts = line.split()
    if len(parts) >= 3 and parts[0] == "Program" and parts[2] == "invoke":
        return parts[1]
    return None


def _is_program_exit(line: str) -> bool:
    # "Program <id> success" / "Program <id> failed: ..."
    parts = line.split()
    return len(parts) >= 3 and parts[0] == "Program" and (parts[2] == "success" or parts[2].startswith("failed"))


def parse_program_logs(logs: list[str], program_id: str | None = None) -> Iterator[RawEvent]:
    """
    Yield raw events found in a transaction's log messages.

    When program_id is given, only `Program data` lines emitted while that program
    is the innermost invocation are decoded (CPI noise from other programs is ignored).
    """
    stack: list[str] = []
    for line in logs:
        if not isinstance(line, str):
            continue
        invoked = _invoked_program(line)
        if invoked is not None:
            stack.append(invoked)
            continue
        if _is_program_exit(line):
            if stack:
                stack.pop()
            continue
        if not line.startswith(PROGRAM_DATA_PREFIX):
            continue
        if program_id is not None and (not stack or stack[-1] != program_id):
            continue
        event = parse_event_payload(line[len(PROGRAM_DATA_PREFIX):].strip())
        if event is not None:
            yield event
