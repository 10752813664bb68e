"""
Indexer worker: composition root and lifecycle owner.

Wires catalog → decoder → pipeline (store + projector + scorer) and the two
producers feeding it (live subscriber, gap reconciler). start()/stop() own the
background tasks; the read and admin methods here are the outbound interface the
API server calls. A subscriber that exhausts its reconnect budget marks the
worker fatal; main waits on that and exits non-zero.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

from backend_defipoly.config.catalog import PropertyCatalog, load_catalog
from backend_defipoly.config.settings import Settings
from backend_defipoly.core.exceptions import ReconnectExhaustedError
from backend_defipoly.database import Database, get_database
from backend_defipoly.database.models import Action, ActionKind, PlayerAggregate
from backend_defipoly.decoder.decoder import TransactionDecoder
from backend_defipoly.defipoly_logging import get_logger
from backend_defipoly.ingestion.gap_reconciler import GapReconciler
from backend_defipoly.ingestion.pipeline import IngestionPipeline, IngestResult
from backend_defipoly.projector.aggregates import AggregateProjector
from backend_defipoly.projector.scoring import ScoreRecalculator
from backend_defipoly.services.cooldowns import CooldownService
from backend_defipoly.solana_listener.rpc import SolanaRpcClient
from backend_defipoly.solana_listener.subscriber import LiveSubscriber

logger = get_logger(__name__)


@dataclass
class WorkerState:
    """Mutable lifecycle state for health reporting."""

    started_at: float | None = None
    stopped_at: float | None = None
    fatal_error: str | None = None


class IndexerWorker:
    def __init__(
        self,
        settings: Settings,
        *,
        db: Database | None = None,
        catalog: PropertyCatalog | None = None,
        rpc: SolanaRpcClient | None = None,
        enable_live: bool = True,
        enable_reconciler: bool = True,
    ) -> None:
        self.settings = settings
        self.db = db or get_database(settings.db_path)
        self.catalog = catalog or load_catalog(settings.catalog_path)
        self.rpc = rpc or SolanaRpcClient(
            settings.rpc_url,
            timeout_sec=settings.rpc_timeout_sec,
            commitment=settings.commitment,
        )
        self.pipeline = IngestionPipeline(
            self.db,
            TransactionDecoder(settings.program_id),
            AggregateProjector(self.catalog),
            ScoreRecalculator(),
        )
        self.subscriber = LiveSubscriber(
            settings.ws_url,
            settings.program_id,
            self.rpc,
            self.pipeline.ingest,
            commitment=settings.commitment,
            fetch_retry_delays=settings.fetch_retry_delays,
            fetch_max_attempts=settings.fetch_max_attempts,
            fetch_workers=settings.fetch_workers,
            queue_maxsize=settings.notification_queue_maxsize,
            health_check_interval_sec=settings.health_check_interval_sec,
            reconnect_delay_sec=settings.reconnect_delay_sec,
            max_reconnect_attempts=settings.max_reconnect_attempts,
        )
        self.reconciler = GapReconciler(
            self.db,
            self.rpc,
            self.pipeline.ingest,
            settings.program_id,
            check_interval_sec=settings.gap_check_interval_sec,
            initial_delay_sec=settings.gap_initial_delay_sec,
            signature_limit=settings.gap_signature_limit,
            initial_backfill_limit=settings.gap_initial_backfill_limit,
            backfill_delay_sec=settings.gap_backfill_delay_sec,
        )
        self.cooldowns = CooldownService(self.db, self.catalog)
        self.state = WorkerState()
        self._enable_live = enable_live
        self._enable_reconciler = enable_reconciler
        self._fatal = asyncio.Event()

    # --- lifecycle ---

    async def start(self) -> None:
        self.state.started_at = time.time()
        if self._enable_live:
            task = self.subscriber.start()
            task.add_done_callback(self._on_subscriber_done)
        if self._enable_reconciler:
            self.reconciler.start()
        logger.info(
            "worker_started",
            program_id=self.settings.program_id,
            db_path=str(self.settings.db_path),
            properties=len(self.catalog),
            live=self._enable_live,
            reconciler=self._enable_reconciler,
        )

    def _on_subscriber_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, ReconnectExhaustedError):
            self.state.fatal_error = str(exc)
            self._fatal.set()
        elif exc is not None:
            self.state.fatal_error = f"subscriber crashed: {exc}"
            logger.error("worker_subscriber_crashed", error=str(exc), error_type=type(exc).__name__)
            self._fatal.set()

    async def wait_fatal(self) -> str:
        """Block until the worker hits an unrecoverable condition; returns the reason."""
        await self._fatal.wait()
        return self.state.fatal_error or "fatal"

    @property
    def is_fatal(self) -> bool:
        return self._fatal.is_set()

    async def stop(self) -> None:
        if self._enable_live:
            await self.subscriber.stop()
        if self._enable_reconciler:
            await self.reconciler.stop()
        await self.pipeline.aclose()
        await self.rpc.aclose()
        self.state.stopped_at = time.time()
        logger.info("worker_stopped")

    # --- outbound interface ---

    async def ingest(self, raw_tx: dict[str, Any]) -> IngestResult:
        return await self.pipeline.ingest(raw_tx)

    def get_aggregates(self, wallet: str) -> PlayerAggregate | None:
        return self.db.get_player(wallet)

    def get_ownership(self, wallet: str) -> list[tuple[int, int]]:
        return [(rec.property_id, rec.slots_owned) for rec in self.db.get_ownership(wallet)]

    def get_actions(self, wallet: str, *, limit: int = 50, offset: int = 0) -> list[Action]:
        return self.db.range_by_actor(wallet, limit=limit, offset=offset)

    def get_property_actions(self, property_id: int, *, limit: int = 50, offset: int = 0) -> list[Action]:
        self.catalog.get(property_id)
        return self.db.range_by_asset(property_id, limit=limit, offset=offset)

    def get_recent_actions(self, kind: ActionKind | None = None, *, limit: int = 50, offset: int = 0) -> list[Action]:
        return self.db.recent(kind, limit=limit, offset=offset)

    def get_leaderboard(self, board: str = "overall", *, limit: int = 100, offset: int = 0) -> list[PlayerAggregate]:
        return self.db.leaderboard(board, limit=limit, offset=offset)

    def get_ranks(self, wallet: str) -> dict[str, int | None]:
        return self.db.player_ranks(wallet)

    async def rebuild_all(self) -> int:
        logger.info("worker_rebuild_started")
        started = time.monotonic()
        count = await self.pipeline.rebuild_all()
        logger.info("worker_rebuild_done", actions=count, duration_sec=round(time.monotonic() - started, 2))
        return count

    async def recalculate_all_scores(self) -> tuple[int, int]:
        return await self.pipeline.recalculate_scores()

    async def trigger_gap_check(self) -> dict[str, Any]:
        return await self.reconciler.trigger_check()

    def get_ingestion_stats(self) -> dict[str, Any]:
        live = self.subscriber.get_stats()
        gaps = self.reconciler.get_stats()
        return {
            **live,
            "totalGapsFound": gaps["totalGapsFound"],
            "totalBackfilled": gaps["totalBackfilled"],
            "lastGapCheck": gaps["lastCheck"],
            "gapReconciler": gaps,
            "fatalError": self.state.fatal_error,
        }
