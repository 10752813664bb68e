"""
Single ingestion entry point shared by the live subscriber and the gap reconciler.

raw transaction -> decode -> try_insert -> (first insert only) project -> rescore.
Each transaction is handled in one store session, so an action row and the
aggregate changes it causes commit together or not at all. Store work runs on a
single-thread executor: the event loop never blocks on SQLite and writes are
serialized in arrival order.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from backend_defipoly.database.database import Database
from backend_defipoly.database.models import Action
from backend_defipoly.decoder.decoder import TransactionDecoder, transaction_signature
from backend_defipoly.defipoly_logging import get_logger, short
from backend_defipoly.projector.aggregates import AggregateProjector
from backend_defipoly.projector.scoring import ScoreRecalculator

logger = get_logger(__name__)


@dataclass(frozen=True)
class IngestResult:
    """Outcome of one ingest call."""

    inserted: bool
    actions: tuple[Action, ...] = ()
    """Actions newly inserted by this call (empty for duplicates)."""
    decoded: int = 0
    """Actions the decoder produced, inserted or not."""

    @property
    def action(self) -> Action | None:
        return self.actions[0] if self.actions else None


class IngestionPipeline:
    def __init__(
        self,
        db: Database,
        decoder: TransactionDecoder,
        projector: AggregateProjector,
        scorer: ScoreRecalculator,
    ) -> None:
        self.db = db
        self.decoder = decoder
        self.projector = projector
        self.scorer = scorer
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="defipoly-store")

    def ingest_sync(self, raw_tx: dict[str, Any]) -> IngestResult:
        """Blocking ingest; StorageError propagates and nothing is committed."""
        actions = list(self.decoder.decode(raw_tx))
        signature = transaction_signature(raw_tx) if isinstance(raw_tx, dict) else None
        if not actions:
            logger.debug("ingest_no_actions", signature=short(signature))
            return IngestResult(inserted=False)

        inserted: list[Action] = []
        touched: set[str] = set()
        with self.db.session() as session:
            for action in actions:
                if not session.try_insert(action):
                    logger.debug("ingest_duplicate", signature=short(action.transaction_id))
                    continue
                touched |= self.projector.apply(session, action)
                inserted.append(action)
            for wallet in sorted(touched):
                self.scorer.recompute(session, wallet)

        if inserted:
            logger.info(
                "ingest_applied",
                signature=short(signature),
                actions=len(inserted),
                kinds=[a.kind.value for a in inserted],
            )
        return IngestResult(inserted=bool(inserted), actions=tuple(inserted), decoded=len(actions))

    async def ingest(self, raw_tx: dict[str, Any]) -> IngestResult:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self.ingest_sync, raw_tx)

    def rebuild_all_sync(self) -> int:
        """Full replay: drop derived state, re-apply every action, rescore everyone. Returns actions replayed."""
        with self.db.session() as session:
            count = self.projector.rebuild(session)
            self.scorer.recompute_all(session)
        return count

    async def rebuild_all(self) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self.rebuild_all_sync)

    def recalculate_scores_sync(self) -> tuple[int, int]:
        with self.db.session() as session:
            return self.scorer.recompute_all(session)

    async def recalculate_scores(self) -> tuple[int, int]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self.recalculate_scores_sync)

    def close(self, *, cancel_pending: bool = False) -> None:
        """Stop the store thread once the running job commits. Queued jobs are dropped when cancel_pending."""
        self._executor.shutdown(wait=True, cancel_futures=cancel_pending)

    async def aclose(self) -> None:
        """close() off the event loop. Queued ingests are dropped; the gap sweep picks them up again."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: self.close(cancel_pending=True))
        logger.info("pipeline_closed")
