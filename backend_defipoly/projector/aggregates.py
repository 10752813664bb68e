"""
Aggregate projector: applies one inserted Action to ownership and player aggregates.

Called exactly once per newly inserted action, inside the same store session as
the insert. Holdings-derived fields (totalSlotsOwned, dailyIncome, completeSets)
are recomputed from the ownership rows after every ownership change; counters
and value totals are incremented. A backfilled action older than what a holding
already reflects re-folds that holding from the log, so arrival order never
changes the result. Invariant violations are clamped and logged,
never raised, so one bad action cannot stall ingestion.
"""

from __future__ import annotations

from backend_defipoly.config.catalog import PropertyCatalog
from backend_defipoly.database.database import StoreSession
from backend_defipoly.database.models import Action, ActionKind, PlayerAggregate
from backend_defipoly.defipoly_logging import get_logger, short
from backend_defipoly.projector.income import compute_daily_income

logger = get_logger(__name__)


class AggregateProjector:
    """Derived state owner: ownership, per-player counters, daily income."""

    def __init__(self, catalog: PropertyCatalog) -> None:
        self.catalog = catalog

    def _player(self, session: StoreSession, cache: dict[str, PlayerAggregate], wallet: str) -> PlayerAggregate:
        agg = cache.get(wallet)
        if agg is None:
            agg = session.get_player(wallet) or PlayerAggregate(wallet=wallet)
            cache[wallet] = agg
        return agg

    def _fold_holding(self, session: StoreSession, wallet: str, pid: int) -> int:
        """Slots for (wallet, pid) from its whole action history, floored at 0 after every step."""
        slots = 0
        for past in session.holding_history(wallet, pid):
            qty = past.quantity or 0
            if past.actor == wallet:
                step = -qty if past.kind == ActionKind.SELL else qty
            else:
                step = -qty
            slots = max(0, slots + step)
        return slots

    def _adjust_slots(self, session: StoreSession, action: Action, wallet: str, delta: int) -> int:
        """
        Apply delta to Ownership[wallet, asset]; floors at 0. Returns the delta actually applied.

        An action older than the last one folded into the pair is not applied on
        top: the pair is re-folded from the action log in replay order instead.
        """
        pid = action.asset_id
        held = session.get_holding(wallet, pid)
        current = held.slots_owned if held is not None else 0
        last_at = held.updated_at if held is not None else None
        if last_at is not None and action.observed_at < last_at:
            new = self._fold_holding(session, wallet, pid)
            logger.info(
                "ownership_refolded",
                wallet_id=short(wallet),
                property_id=pid,
                before=current,
                after=new,
                late_by_sec=last_at - action.observed_at,
                signature=short(action.transaction_id),
            )
        else:
            new = current + delta
            if new < 0:
                logger.warning(
                    "ownership_negative_clamped",
                    wallet_id=short(wallet),
                    property_id=pid,
                    current=current,
                    delta=delta,
                    signature=short(action.transaction_id),
                )
                new = 0
        updated_at = action.observed_at if last_at is None else max(last_at, action.observed_at)
        session.set_slots(wallet, pid, new, updated_at)
        return new - current

    def _refresh_holdings(self, session: StoreSession, agg: PlayerAggregate, expected_total: int) -> None:
        holdings = {rec.property_id: rec.slots_owned for rec in session.get_ownership(agg.wallet)}
        total = sum(holdings.values())
        if total != expected_total:
            logger.warning(
                "total_slots_mismatch",
                wallet_id=short(agg.wallet),
                expected=expected_total,
                actual=total,
            )
        income = compute_daily_income(holdings, self.catalog)
        agg.total_slots_owned = total
        agg.daily_income = income.daily_income
        agg.complete_sets = income.complete_sets

    def apply(self, session: StoreSession, action: Action) -> set[str]:
        """
        Apply one action. Returns the wallets whose aggregates changed, so the
        caller can recompute their scores.
        """
        cache: dict[str, PlayerAggregate] = {}
        moved: dict[str, int] = {}  # wallet -> net slot delta applied
        actor = self._player(session, cache, action.actor)
        actor.total_actions += 1
        if actor.last_action_time is None or action.observed_at > actor.last_action_time:
            actor.last_action_time = action.observed_at

        qty = action.quantity or 0
        value = action.value or 0
        has_asset = action.asset_id is not None
        kind = action.kind

        if kind in (ActionKind.BUY, ActionKind.SELL, ActionKind.STEAL_SUCCESS) and not has_asset:
            logger.warning("action_missing_property", kind=kind.value, signature=short(action.transaction_id))

        if kind == ActionKind.BUY:
            actor.properties_bought += 1
            actor.total_spent += value
            if has_asset:
                moved[actor.wallet] = self._adjust_slots(session, action, actor.wallet, qty)
        elif kind == ActionKind.SELL:
            actor.properties_sold += 1
            actor.total_earned += value
            if has_asset:
                moved[actor.wallet] = self._adjust_slots(session, action, actor.wallet, -qty)
        elif kind == ActionKind.STEAL_SUCCESS:
            actor.successful_steals += 1
            if action.counterparty and action.counterparty != action.actor:
                victim = self._player(session, cache, action.counterparty)
                victim.times_stolen += 1
                if has_asset:
                    moved[victim.wallet] = self._adjust_slots(session, action, victim.wallet, -qty)
            elif action.counterparty == action.actor:
                logger.warning("steal_self_target", wallet_id=short(action.actor))
            if has_asset:
                moved[actor.wallet] = moved.get(actor.wallet, 0) + self._adjust_slots(
                    session, action, actor.wallet, qty
                )
        elif kind == ActionKind.STEAL_FAILED:
            actor.failed_steals += 1
            actor.total_spent += value
        elif kind == ActionKind.CLAIM:
            actor.rewards_claimed += 1
            actor.total_earned += value
        elif kind == ActionKind.SHIELD_ACTIVATE:
            actor.shields_activated += 1
            actor.total_spent += value

        for wallet, delta in moved.items():
            agg = cache[wallet]
            self._refresh_holdings(session, agg, agg.total_slots_owned + delta)

        for agg in cache.values():
            session.save_player(agg)
        logger.debug(
            "action_applied",
            kind=kind.value,
            wallet_id=short(action.actor),
            property_id=action.asset_id,
            quantity=qty,
            signature=short(action.transaction_id),
        )
        return set(cache)

    def rebuild(self, session: StoreSession) -> int:
        """Discard all derived state and re-apply every stored action in observedAt order."""
        session.clear_aggregates()
        count = 0
        for action in session.iter_actions():
            self.apply(session, action)
            count += 1
        logger.info("aggregates_rebuilt", actions=count)
        return count
