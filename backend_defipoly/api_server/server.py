"""
FastAPI server: read and admin API over the indexer worker.

Read routes return eventually-consistent aggregates straight from the store and
never surface ingestion errors. Admin routes trigger a gap check, a full rebuild,
or a batch score recompute. The worker is started and stopped by the app lifespan.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from solders.pubkey import Pubkey

from backend_defipoly import __version__
from backend_defipoly.agent_worker.worker import IndexerWorker
from backend_defipoly.config.settings import get_settings
from backend_defipoly.core.exceptions import (
    GapCheckInProgressError,
    StorageError,
    UnknownPropertyError,
)
from backend_defipoly.database.database import LEADERBOARD_COLUMNS
from backend_defipoly.database.models import ActionKind
from backend_defipoly.defipoly_logging import get_logger, short

logger = get_logger(__name__)

MAX_PAGE_SIZE = 500


# -----------------------------------------------------------------------------
# Response models
# -----------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str = Field(..., description="ok | degraded")
    version: str
    connected: bool = Field(..., description="Live subscriber is subscribed")
    fatal_error: str | None = None


class OwnershipItem(BaseModel):
    property_id: int = Field(..., alias="propertyId")
    slots: int

    model_config = {"populate_by_name": True}


class OwnershipResponse(BaseModel):
    wallet: str
    ownership: list[OwnershipItem]
    total_slots_owned: int = Field(..., alias="totalSlotsOwned")

    model_config = {"populate_by_name": True}


class RebuildResponse(BaseModel):
    success: bool = True
    actions_replayed: int = Field(..., alias="actionsReplayed")

    model_config = {"populate_by_name": True}


class RecalculateResponse(BaseModel):
    success: bool = True
    players: int
    failed: int


# -----------------------------------------------------------------------------
# Helpers and dependency
# -----------------------------------------------------------------------------


def get_worker(request: Request) -> IndexerWorker:
    worker = getattr(request.app.state, "worker", None)
    if worker is None:
        raise HTTPException(status_code=503, detail="Indexer not started")
    return worker


def validate_wallet(wallet: str) -> str:
    """Return the stripped wallet or raise 400 if it is not a Solana public key."""
    wallet = wallet.strip()
    if not wallet:
        raise HTTPException(status_code=400, detail="wallet must be non-empty")
    try:
        Pubkey.from_string(wallet)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid Solana wallet address") from None
    return wallet


def _page(limit: int, offset: int) -> tuple[int, int]:
    return max(1, min(limit, MAX_PAGE_SIZE)), max(0, offset)


# -----------------------------------------------------------------------------
# App factory
# -----------------------------------------------------------------------------


def create_app(worker: IndexerWorker | None = None) -> FastAPI:
    """
    Build the ASGI app. When worker is None the lifespan builds one from
    get_settings(); tests and main pass their own.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        w = worker or IndexerWorker(get_settings())
        app.state.worker = w
        await w.start()
        logger.info("api_worker_started")
        try:
            yield
        finally:
            await w.stop()
            app.state.worker = None
            logger.info("api_worker_stopped")

    app = FastAPI(
        title="Defipoly Indexer API",
        description="Game-state aggregates, leaderboards, cooldowns and ingestion controls.",
        version=__version__,
        lifespan=lifespan,
    )
    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    @app.exception_handler(HTTPException)
    def http_exception_handler(request: Any, exc: HTTPException) -> JSONResponse:
        """Consistent JSON error response for HTTPException."""
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(UnknownPropertyError)
    def unknown_property_handler(request: Any, exc: UnknownPropertyError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(StorageError)
    def storage_error_handler(request: Any, exc: StorageError) -> JSONResponse:
        logger.error("api_storage_error", error=str(exc))
        return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})

    @app.get("/health", response_model=HealthResponse)
    def health(worker: IndexerWorker = Depends(get_worker)) -> HealthResponse:
        """Liveness probe: API is up; reports subscriber connectivity and fatal state."""
        return HealthResponse(
            status="degraded" if worker.is_fatal else "ok",
            version=__version__,
            connected=worker.subscriber.connected,
            fatal_error=worker.state.fatal_error,
        )

    # --- players ---

    @app.get("/players/{wallet}/stats")
    def player_stats(wallet: str, worker: IndexerWorker = Depends(get_worker)) -> dict[str, Any]:
        wallet = validate_wallet(wallet)
        agg = worker.get_aggregates(wallet)
        if agg is None:
            raise HTTPException(status_code=404, detail=f"No activity for wallet {short(wallet, 8)}")
        return agg.to_dict()

    @app.get("/players/{wallet}/ownership", response_model=OwnershipResponse, response_model_by_alias=True)
    def player_ownership(wallet: str, worker: IndexerWorker = Depends(get_worker)) -> OwnershipResponse:
        wallet = validate_wallet(wallet)
        rows = worker.get_ownership(wallet)
        return OwnershipResponse(
            wallet=wallet,
            ownership=[OwnershipItem(property_id=pid, slots=slots) for pid, slots in rows],
            total_slots_owned=sum(slots for _, slots in rows),
        )

    @app.get("/players/{wallet}/actions")
    def player_actions(
        wallet: str,
        limit: int = Query(50, ge=1),
        offset: int = Query(0, ge=0),
        worker: IndexerWorker = Depends(get_worker),
    ) -> dict[str, Any]:
        wallet = validate_wallet(wallet)
        limit, offset = _page(limit, offset)
        actions = worker.get_actions(wallet, limit=limit, offset=offset)
        return {"wallet": wallet, "actions": [a.to_dict() for a in actions], "limit": limit, "offset": offset}

    @app.get("/players/{wallet}/ranks")
    def player_ranks(wallet: str, worker: IndexerWorker = Depends(get_worker)) -> dict[str, Any]:
        wallet = validate_wallet(wallet)
        return {"wallet": wallet, "ranks": worker.get_ranks(wallet)}

    @app.get("/players/{wallet}/cooldowns")
    def player_cooldowns(
        wallet: str,
        set_id: int | None = Query(None, alias="setId", ge=0),
        worker: IndexerWorker = Depends(get_worker),
    ) -> dict[str, Any]:
        wallet = validate_wallet(wallet)
        if set_id is not None:
            return worker.cooldowns.buy_cooldown_for_set(wallet, set_id).to_dict()
        active = worker.cooldowns.active_buy_cooldowns(wallet)
        return {"cooldowns": [c.to_dict() for c in active], "activeCooldowns": len(active)}

    @app.get("/players/{wallet}/steal-cooldowns")
    def player_steal_cooldowns(
        wallet: str,
        property_id: int | None = Query(None, alias="propertyId", ge=0),
        worker: IndexerWorker = Depends(get_worker),
    ) -> dict[str, Any]:
        wallet = validate_wallet(wallet)
        if property_id is not None:
            return worker.cooldowns.steal_cooldown_for_property(wallet, property_id).to_dict()
        active = worker.cooldowns.active_steal_cooldowns(wallet)
        return {"cooldowns": [c.to_dict() for c in active], "activeCooldowns": len(active)}

    # --- actions / properties ---

    @app.get("/properties/{property_id}/actions")
    def property_actions(
        property_id: int,
        limit: int = Query(50, ge=1),
        offset: int = Query(0, ge=0),
        worker: IndexerWorker = Depends(get_worker),
    ) -> dict[str, Any]:
        limit, offset = _page(limit, offset)
        actions = worker.get_property_actions(property_id, limit=limit, offset=offset)
        return {"propertyId": property_id, "actions": [a.to_dict() for a in actions]}

    @app.get("/actions/recent")
    def recent_actions(
        kind: ActionKind | None = None,
        limit: int = Query(50, ge=1),
        offset: int = Query(0, ge=0),
        worker: IndexerWorker = Depends(get_worker),
    ) -> dict[str, Any]:
        limit, offset = _page(limit, offset)
        actions = worker.get_recent_actions(kind, limit=limit, offset=offset)
        return {"actions": [a.to_dict() for a in actions], "limit": limit, "offset": offset}

    @app.get("/leaderboard")
    def leaderboard(
        board: str = Query("overall", alias="type"),
        limit: int = Query(100, ge=1),
        offset: int = Query(0, ge=0),
        worker: IndexerWorker = Depends(get_worker),
    ) -> dict[str, Any]:
        if board not in LEADERBOARD_COLUMNS:
            raise HTTPException(
                status_code=400,
                detail=f"type must be one of: {', '.join(LEADERBOARD_COLUMNS)}",
            )
        limit, offset = _page(limit, offset)
        rows = worker.get_leaderboard(board, limit=limit, offset=offset)
        return {
            "type": board,
            "entries": [{"rank": offset + i + 1, **agg.to_dict()} for i, agg in enumerate(rows)],
        }

    # --- ingestion / admin ---

    @app.get("/ingestion/stats")
    def ingestion_stats(worker: IndexerWorker = Depends(get_worker)) -> dict[str, Any]:
        return worker.get_ingestion_stats()

    @app.post("/ingestion/gap-check")
    async def gap_check(worker: IndexerWorker = Depends(get_worker)) -> dict[str, Any]:
        try:
            return await worker.trigger_gap_check()
        except GapCheckInProgressError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e

    @app.post("/admin/rebuild", response_model=RebuildResponse, response_model_by_alias=True)
    async def admin_rebuild(worker: IndexerWorker = Depends(get_worker)) -> RebuildResponse:
        count = await worker.rebuild_all()
        return RebuildResponse(actions_replayed=count)

    @app.post("/admin/recalculate-scores", response_model=RecalculateResponse)
    async def admin_recalculate(worker: IndexerWorker = Depends(get_worker)) -> RecalculateResponse:
        ok, failed = await worker.recalculate_all_scores()
        return RecalculateResponse(players=ok, failed=failed)
