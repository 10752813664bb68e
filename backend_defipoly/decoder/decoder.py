"""
Transaction decoder: raw getTransaction payloads to game actions.

Maps recognised program events to typed Actions through a small table keyed by
event name. Field lookup tolerates both naming conventions the program has used
(camelCase first, then snake_case). Never raises for malformed input: a
transaction that cannot be decoded simply yields no actions.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Iterator

from backend_defipoly.database.models import Action, ActionKind
from backend_defipoly.decoder.events import RawEvent, parse_program_logs
from backend_defipoly.defipoly_logging import get_logger, short

logger = get_logger(__name__)

EventSource = Callable[[list[str]], Iterable[RawEvent]]

# Steals that omit the slot count moved exactly one slot.
DEFAULT_STEAL_SLOTS = 1


def pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present (non-None) value among keys, in order."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value), 10)
    except ValueError:
        return None


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _metadata(data: dict[str, Any], fields: dict[str, tuple[str, ...]]) -> dict[str, Any]:
    out = {}
    for name, keys in fields.items():
        value = pick(data, *keys)
        if value is not None:
            out[name] = value
    return out


def _buy(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "actor": _as_str(pick(data, "player")),
        "asset_id": _as_int(pick(data, "propertyId", "property_id")),
        "quantity": _as_int(pick(data, "slots", "slots_bought")),
        "value": _as_int(pick(data, "totalCost", "total_cost")),
        "extra": _metadata(data, {
            "slotsOwned": ("slotsOwned", "slots_owned"),
            "totalSlotsOwned": ("totalSlotsOwned", "total_slots_owned"),
            "price": ("price",),
        }),
    }


def _sell(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "actor": _as_str(pick(data, "player")),
        "asset_id": _as_int(pick(data, "propertyId", "property_id")),
        "quantity": _as_int(pick(data, "slots", "slots_sold")),
        "value": _as_int(pick(data, "received")),
        "extra": _metadata(data, {
            "sellValuePercent": ("sellValuePercent", "sell_value_percent"),
            "daysHeld": ("daysHeld", "days_held"),
        }),
    }


def _steal_success(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "actor": _as_str(pick(data, "attacker")),
        "counterparty": _as_str(pick(data, "target")),
        "asset_id": _as_int(pick(data, "propertyId", "property_id")),
        "quantity": _as_int(pick(data, "slotsStolen", "slots_stolen", default=DEFAULT_STEAL_SLOTS)),
        "value": _as_int(pick(data, "stealCost", "steal_cost")),
        "extra": _metadata(data, {"targeted": ("targeted",), "vrfResult": ("vrfResult", "vrf_result")}),
    }


def _steal_failed(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "actor": _as_str(pick(data, "attacker")),
        "counterparty": _as_str(pick(data, "target")),
        "asset_id": _as_int(pick(data, "propertyId", "property_id")),
        "quantity": 0,
        "value": _as_int(pick(data, "stealCost", "steal_cost")),
        "outcome": False,
        "extra": _metadata(data, {"targeted": ("targeted",), "vrfResult": ("vrfResult", "vrf_result")}),
    }


def _shield(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "actor": _as_str(pick(data, "player")),
        "asset_id": _as_int(pick(data, "propertyId", "property_id")),
        "quantity": _as_int(pick(data, "slotsShielded", "slots_shielded")),
        "value": _as_int(pick(data, "cost", "shield_cost")),
        "extra": _metadata(data, {"expiry": ("expiry",)}),
    }


def _claim(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "actor": _as_str(pick(data, "player")),
        "value": _as_int(pick(data, "amount")),
        "extra": _metadata(data, {"hoursElapsed": ("hoursElapsed", "hours_elapsed")}),
    }


_Builder = Callable[[dict[str, Any]], dict[str, Any]]

_EVENTS: dict[str, tuple[ActionKind, _Builder]] = {
    "PropertyBoughtEvent": (ActionKind.BUY, _buy),
    "PropertySoldEvent": (ActionKind.SELL, _sell),
    "StealSuccessEvent": (ActionKind.STEAL_SUCCESS, _steal_success),
    "StealFailureEvent": (ActionKind.STEAL_FAILED, _steal_failed),
    "StealFailedEvent": (ActionKind.STEAL_FAILED, _steal_failed),
    "ShieldActivatedEvent": (ActionKind.SHIELD_ACTIVATE, _shield),
    "RewardsClaimedEvent": (ActionKind.CLAIM, _claim),
}

# Event names are accepted as emitted (PascalCase) and as the JS client spells them (camelCase).
EVENT_TABLE: dict[str, tuple[ActionKind, _Builder]] = {
    **_EVENTS,
    **{name[0].lower() + name[1:]: entry for name, entry in _EVENTS.items()},
}


def transaction_signature(tx: dict[str, Any]) -> str | None:
    """First signature of a getTransaction result (or a notification-shaped bundle)."""
    transaction = tx.get("transaction")
    if isinstance(transaction, dict):
        sigs = transaction.get("signatures")
        if isinstance(sigs, list) and sigs and isinstance(sigs[0], str):
            return sigs[0]
    sig = tx.get("signature")
    return sig if isinstance(sig, str) and sig else None


def transaction_failed(tx: dict[str, Any]) -> bool:
    meta = tx.get("meta")
    return isinstance(meta, dict) and meta.get("err") is not None


def map_event(
    event: RawEvent,
    signature: str,
    observed_at: int,
    *,
    index: int = 0,
    slot: int | None = None,
) -> Action | None:
    """Map one raw event to an Action; None for unknown names or events missing an actor."""
    entry = EVENT_TABLE.get(event.name)
    if entry is None:
        logger.debug("decoder_unknown_event", event_name=event.name, signature=short(signature))
        return None
    kind, builder = entry
    fields = builder(event.data)
    if not fields.get("actor"):
        logger.debug("decoder_event_missing_actor", event_name=event.name, signature=short(signature))
        return None
    return Action(
        transaction_id=signature if index == 0 else f"{signature}:{index}",
        kind=kind,
        observed_at=observed_at,
        slot=slot,
        **fields,
    )


class TransactionDecoder:
    """
    Decodes a getTransaction result into Actions.

    The raw event source is injectable; by default it is the Anchor log parser
    scoped to the game program.
    """

    def __init__(self, program_id: str | None = None, *, event_source: EventSource | None = None) -> None:
        self._program_id = program_id
        self._event_source = event_source or (lambda logs: parse_program_logs(logs, program_id))

    def decode(self, tx: dict[str, Any]) -> Iterator[Action]:
        """Yield Actions lazily; yields nothing for failed, unsigned, or undecodable transactions."""
        if not isinstance(tx, dict) or transaction_failed(tx):
            return
        signature = transaction_signature(tx)
        block_time = _as_int(tx.get("blockTime"))
        if signature is None or block_time is None:
            logger.debug("decoder_tx_incomplete", signature=short(signature), has_block_time=block_time is not None)
            return
        meta = tx.get("meta") or {}
        logs = meta.get("logMessages") if isinstance(meta, dict) else None
        if not isinstance(logs, list) or not logs:
            return
        slot = _as_int(tx.get("slot"))
        index = 0
        try:
            for event in self._event_source(logs):
                action = map_event(event, signature, block_time, index=index, slot=slot)
                if action is not None:
                    index += 1
                    yield action
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.debug("decoder_tx_parse_failed", signature=short(signature), error=str(e))
            return


def decode(tx: dict[str, Any], program_id: str | None = None) -> Iterator[Action]:
    """Module-level convenience: decode with the default Anchor event source."""
    return TransactionDecoder(program_id).decode(tx)
