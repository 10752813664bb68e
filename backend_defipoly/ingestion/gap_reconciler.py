"""
Gap reconciler: periodic backstop for notifications the live subscriber missed.

Runs once shortly after start, then on a fixed interval until stopped. Each check
compares the chain's most recent program signatures against the action store and
replays the missing ones through the shared ingestion pipeline. Checks never
overlap: the timer skips a tick while one is running and a manual trigger is
rejected with GapCheckInProgressError.
"""

from __future__ import annotations

import asyncio
from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from backend_defipoly.core.exceptions import DefipolyError, GapCheckInProgressError
from backend_defipoly.database.database import Database
from backend_defipoly.defipoly_logging import get_logger, short
from backend_defipoly.ingestion.pipeline import IngestResult
from backend_defipoly.solana_listener.models import SignatureInfo
from backend_defipoly.solana_listener.rpc import SolanaRpcClient

logger = get_logger(__name__)

# Signatures that decoded to no game actions; bounded so memory stays flat.
_MAX_IGNORED_SIGNATURES = 5000


class GapReconciler:
    def __init__(
        self,
        db: Database,
        rpc: SolanaRpcClient,
        ingest: Callable[[dict[str, Any]], Awaitable[IngestResult]],
        program_id: str,
        *,
        check_interval_sec: float = 600.0,
        initial_delay_sec: float = 5.0,
        signature_limit: int = 100,
        initial_backfill_limit: int = 10,
        backfill_delay_sec: float = 0.1,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._db = db
        self._rpc = rpc
        self._ingest = ingest
        self._program_id = program_id
        self._check_interval = check_interval_sec
        self._initial_delay = initial_delay_sec
        self._signature_limit = signature_limit
        self._initial_backfill_limit = initial_backfill_limit
        self._backfill_delay = backfill_delay_sec
        self._sleep = sleep

        self._lock = asyncio.Lock()
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._ignored: deque[str] = deque(maxlen=_MAX_IGNORED_SIGNATURES)
        self._ignored_set: set[str] = set()

        self.total_checks = 0
        self.total_gaps_found = 0
        self.total_backfilled = 0
        self.total_failed = 0
        self.last_check: datetime | None = None
        self.last_high_water_mark: int | None = None
        self.last_error: str | None = None

    # --- lifecycle ---

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            logger.warning("gap_reconciler_already_running")
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name="defipoly-gap-reconciler")
        logger.info(
            "gap_reconciler_started",
            check_interval_sec=self._check_interval,
            initial_delay_sec=self._initial_delay,
        )

    async def stop(self) -> None:
        """Clear the timer; an in-flight check is cancelled (its effects are idempotent)."""
        self._stop.set()
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("gap_reconciler_stopped", total_checks=self.total_checks)

    async def _wait_or_stop(self, timeout: float) -> bool:
        """Sleep up to timeout; True if stop was requested."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def _run(self) -> None:
        if await self._wait_or_stop(self._initial_delay):
            return
        while not self._stop.is_set():
            if self._lock.locked():
                logger.info("gap_check_skipped_in_progress")
            else:
                await self.check_for_gaps()
            if await self._wait_or_stop(self._check_interval):
                return

    # --- checks ---

    async def trigger_check(self) -> dict[str, Any]:
        """Manual, non-reentrant check. Raises GapCheckInProgressError if one is running."""
        if self._lock.locked():
            raise GapCheckInProgressError("Gap check already in progress")
        logger.info("gap_check_manual_trigger")
        await self.check_for_gaps()
        return self.get_stats()

    async def check_for_gaps(self) -> dict[str, Any]:
        async with self._lock:
            self.total_checks += 1
            self.last_check = datetime.now(timezone.utc)
            try:
                await self._check_once()
                self.last_error = None
            except DefipolyError as e:
                self.last_error = str(e)
                logger.error("gap_check_failed", error=str(e), error_type=type(e).__name__)
        return self.get_stats()

    async def _check_once(self) -> None:
        loop = asyncio.get_running_loop()
        latest = await loop.run_in_executor(None, self._db.latest)
        if latest is None:
            self.last_high_water_mark = None
            limit = self._initial_backfill_limit
            logger.info("gap_check_store_empty", backfill_limit=limit)
        else:
            self.last_high_water_mark = latest.observed_at
            limit = self._signature_limit
            logger.info(
                "gap_check_started",
                high_water_mark=latest.observed_at,
                latest_signature=short(latest.transaction_id),
            )

        signatures = await self._rpc.get_signatures_for_address(self._program_id, limit=limit)
        candidates = [
            s for s in signatures
            if s.err is None and s.signature not in self._ignored_set
        ]
        missing = await loop.run_in_executor(None, self._find_missing, candidates)
        logger.info(
            "gap_check_signatures",
            fetched=len(signatures),
            candidates=len(candidates),
            missing=len(missing),
        )
        if not missing:
            return
        self.total_gaps_found += len(missing)
        await self._backfill(missing)

    def _find_missing(self, signatures: list[SignatureInfo]) -> list[SignatureInfo]:
        # Chain returns newest first; replay oldest first.
        missing = [s for s in signatures if not self._db.exists(s.signature)]
        missing.reverse()
        return missing

    def _remember_ignored(self, signature: str) -> None:
        if len(self._ignored) == self._ignored.maxlen:
            self._ignored_set.discard(self._ignored[0])
        self._ignored.append(signature)
        self._ignored_set.add(signature)

    async def _backfill(self, missing: list[SignatureInfo]) -> None:
        backfilled = failed = 0
        for i, info in enumerate(missing):
            if self._stop.is_set():
                break
            if i:
                await self._sleep(self._backfill_delay)
            try:
                tx = await self._rpc.get_transaction(info.signature)
                if tx is None:
                    failed += 1
                    logger.warning("gap_backfill_tx_not_found", signature=short(info.signature))
                    continue
                result = await self._ingest(tx)
            except DefipolyError as e:
                failed += 1
                logger.error("gap_backfill_failed", signature=short(info.signature), error=str(e))
                continue
            if result.inserted:
                backfilled += 1
                logger.info("gap_backfilled", signature=short(info.signature), actions=len(result.actions))
            elif result.decoded == 0:
                self._remember_ignored(info.signature)
        self.total_backfilled += backfilled
        self.total_failed += failed
        logger.info("gap_backfill_done", backfilled=backfilled, failed=failed, missing=len(missing))

    def get_stats(self) -> dict[str, Any]:
        return {
            "isRunning": self.is_running,
            "checkInProgress": self._lock.locked(),
            "checkIntervalSec": self._check_interval,
            "totalChecks": self.total_checks,
            "totalGapsFound": self.total_gaps_found,
            "totalBackfilled": self.total_backfilled,
            "totalFailed": self.total_failed,
            "lastCheck": self.last_check.isoformat() if self.last_check else None,
            "lastHighWaterMark": self.last_high_water_mark,
            "lastError": self.last_error,
        }
