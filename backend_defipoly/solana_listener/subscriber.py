"""
Live subscriber: websocket logsSubscribe on the game program → fetch → ingest.

Connection state machine: DISCONNECTED → CONNECTING → SUBSCRIBED → (error) DISCONNECTED,
STOPPED only after stop(). Notifications are handed to a bounded queue and consumed by
a small pool of fetch workers, so a slow getTransaction never stalls the socket.
Fetches retry on a fixed delay schedule; a signature that never becomes fetchable
is counted as failed and left for the gap reconciler.

Reconnects use a fixed delay and a bounded attempt count. Running out of attempts
raises ReconnectExhaustedError out of run(): permanent silent disconnection would
starve the whole pipeline, so it has to reach the process supervisor.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Sequence

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from backend_defipoly.core.exceptions import DefipolyError, ReconnectExhaustedError, RpcError
from backend_defipoly.defipoly_logging import get_logger, short
from backend_defipoly.solana_listener.models import ConnectionState, LogNotification
from backend_defipoly.solana_listener.retry import retry_async
from backend_defipoly.solana_listener.rpc import SolanaRpcClient

logger = get_logger(__name__)

_SUBSCRIBE_TIMEOUT = 10.0
_PONG_TIMEOUT = 10.0
_WS_CLOSE_TIMEOUT = 5.0

IngestFn = Callable[[dict[str, Any]], Awaitable[Any]]


class LiveSubscriber:
    """
    Owned component with a start/stop lifecycle; no module-level connection state.

    ingest is the shared pipeline entry point (IngestionPipeline.ingest).
    """

    def __init__(
        self,
        ws_url: str,
        program_id: str,
        rpc: SolanaRpcClient,
        ingest: IngestFn,
        *,
        commitment: str = "confirmed",
        fetch_retry_delays: Sequence[float] = (0.5, 1.0, 2.0, 3.0, 5.0),
        fetch_max_attempts: int = 5,
        fetch_workers: int = 4,
        queue_maxsize: int = 4096,
        health_check_interval_sec: float = 30.0,
        reconnect_delay_sec: float = 5.0,
        max_reconnect_attempts: int = 10,
        connect: Callable[..., Any] = websockets.connect,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not ws_url.strip():
            raise ValueError("ws_url must be non-empty")
        self._ws_url = ws_url
        self._program_id = program_id
        self._rpc = rpc
        self._ingest = ingest
        self._commitment = commitment
        self._fetch_retry_delays = tuple(fetch_retry_delays)
        self._fetch_max_attempts = fetch_max_attempts
        self._fetch_workers = max(1, fetch_workers)
        self._queue: asyncio.Queue[LogNotification] = asyncio.Queue(maxsize=queue_maxsize)
        self._health_interval = health_check_interval_sec
        self._reconnect_delay = reconnect_delay_sec
        self._max_reconnect_attempts = max_reconnect_attempts
        self._connect = connect
        self._sleep = sleep

        self._state = ConnectionState.DISCONNECTED
        self._stop = asyncio.Event()
        self._ws: Any = None
        self._subscription_id: int | None = None
        self._next_rpc_id = 0
        self._workers: list[asyncio.Task[None]] = []
        self._task: asyncio.Task[None] | None = None
        self._started_at: float | None = None
        self._connected_at: float | None = None
        self.received = 0
        self.processed = 0
        self.failed = 0
        self.reconnections = 0

    # --- lifecycle ---

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == ConnectionState.SUBSCRIBED

    def start(self) -> asyncio.Task[None]:
        """Spawn run() as a task and return it; the task raises ReconnectExhaustedError when fatal."""
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.create_task(self.run(), name="defipoly-live-subscriber")
        return self._task

    async def stop(self) -> None:
        """Deregister the subscription, close the socket, stop fetch workers."""
        self._stop.set()
        ws = self._ws
        if ws is not None:
            await self._unsubscribe(ws)
            try:
                await ws.close()
            except (WebSocketException, OSError) as e:
                logger.debug("subscriber_close_error", error=str(e))
        for task in [self._task, *self._workers]:
            if task is not None and not task.done():
                task.cancel()
        for task in [self._task, *self._workers]:
            if task is None:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass
            except ReconnectExhaustedError:
                pass
        self._workers.clear()
        self._state = ConnectionState.STOPPED
        logger.info("subscriber_stopped", received=self.received, processed=self.processed, failed=self.failed)

    async def run(self) -> None:
        """Connect, subscribe, consume notifications, reconnect on failure until stopped."""
        self._started_at = time.monotonic()
        self._workers = [
            asyncio.create_task(self._fetch_worker(i), name=f"defipoly-fetch-{i}")
            for i in range(self._fetch_workers)
        ]
        attempts = 0
        while not self._stop.is_set():
            self._state = ConnectionState.CONNECTING
            logger.info("subscriber_connecting", url=self._ws_url, attempt=attempts)
            try:
                async with self._connect(
                    self._ws_url,
                    ping_interval=None,
                    close_timeout=_WS_CLOSE_TIMEOUT,
                ) as ws:
                    self._ws = ws
                    await self._subscribe(ws)
                    self._state = ConnectionState.SUBSCRIBED
                    self._connected_at = time.monotonic()
                    attempts = 0
                    logger.info(
                        "subscriber_connected",
                        program_id=self._program_id,
                        subscription_id=self._subscription_id,
                    )
                    health = asyncio.create_task(self._health_monitor(ws))
                    try:
                        await self._receive_loop(ws)
                    finally:
                        health.cancel()
            except asyncio.CancelledError:
                raise
            except ConnectionClosed as e:
                logger.warning("subscriber_disconnected", code=getattr(e, "code", None), reason=str(e))
            except (OSError, asyncio.TimeoutError, WebSocketException, RpcError, ValueError) as e:
                logger.warning("subscriber_connection_error", error=str(e), error_type=type(e).__name__)
            finally:
                self._ws = None
                self._subscription_id = None
                self._connected_at = None
                if not self._stop.is_set():
                    self._state = ConnectionState.DISCONNECTED

            if self._stop.is_set():
                break
            attempts += 1
            if attempts > self._max_reconnect_attempts:
                logger.critical(
                    "subscriber_reconnect_exhausted",
                    attempts=self._max_reconnect_attempts,
                    url=self._ws_url,
                )
                raise ReconnectExhaustedError(self._max_reconnect_attempts)
            self.reconnections += 1
            logger.info(
                "subscriber_reconnect",
                attempt=attempts,
                max_attempts=self._max_reconnect_attempts,
                delay_sec=self._reconnect_delay,
            )
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._reconnect_delay)
            except asyncio.TimeoutError:
                pass

    # --- websocket protocol ---

    def _next_id(self) -> int:
        self._next_rpc_id += 1
        return self._next_rpc_id

    async def _subscribe(self, ws: Any) -> None:
        req_id = self._next_id()
        await ws.send(json.dumps({
            "jsonrpc": "2.0",
            "id": req_id,
            "method": "logsSubscribe",
            "params": [{"mentions": [self._program_id]}, {"commitment": self._commitment}],
        }))
        deadline = time.monotonic() + _SUBSCRIBE_TIMEOUT
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise asyncio.TimeoutError("logsSubscribe confirmation timed out")
            raw = await asyncio.wait_for(ws.recv(), timeout=remaining)
            msg = json.loads(raw)
            if msg.get("id") == req_id:
                if msg.get("error"):
                    raise RpcError(f"logsSubscribe rejected: {msg['error']}")
                self._subscription_id = msg.get("result")
                return
            self._handle_message(msg)

    async def _unsubscribe(self, ws: Any) -> None:
        if self._subscription_id is None:
            return
        try:
            await ws.send(json.dumps({
                "jsonrpc": "2.0",
                "id": self._next_id(),
                "method": "logsUnsubscribe",
                "params": [self._subscription_id],
            }))
            logger.info("subscriber_unsubscribed", subscription_id=self._subscription_id)
        except (WebSocketException, OSError) as e:
            logger.debug("subscriber_unsubscribe_failed", error=str(e))
        self._subscription_id = None

    async def _receive_loop(self, ws: Any) -> None:
        async for raw in ws:
            if self._stop.is_set():
                return
            try:
                msg = json.loads(raw)
            except (json.JSONDecodeError, TypeError):
                continue
            if isinstance(msg, dict):
                self._handle_message(msg)

    async def _health_monitor(self, ws: Any) -> None:
        """Ping on a fixed period; on failure close the socket so run() reconnects."""
        while True:
            await self._sleep(self._health_interval)
            try:
                pong = await ws.ping()
                await asyncio.wait_for(pong, timeout=_PONG_TIMEOUT)
            except asyncio.CancelledError:
                raise
            except (asyncio.TimeoutError, WebSocketException, OSError) as e:
                logger.warning("subscriber_health_check_failed", error=str(e))
                self._state = ConnectionState.DISCONNECTED
                try:
                    await ws.close()
                except (WebSocketException, OSError):
                    pass
                return

    # --- notifications ---

    def _handle_message(self, msg: dict[str, Any]) -> None:
        notification = LogNotification.from_message(msg)
        if notification is None:
            return
        if notification.err is not None:
            logger.debug("subscriber_failed_tx_skipped", signature=short(notification.signature))
            return
        self.received += 1
        try:
            self._queue.put_nowait(notification)
        except asyncio.QueueFull:
            self.failed += 1
            logger.warning("subscriber_queue_full", signature=short(notification.signature))

    async def _fetch_worker(self, index: int) -> None:
        while True:
            notification = await self._queue.get()
            try:
                await self.handle_notification(notification)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                logger.exception(
                    "subscriber_notification_error",
                    worker=index,
                    signature=short(notification.signature),
                    error=str(e),
                )
            finally:
                self._queue.task_done()

    async def handle_notification(self, notification: LogNotification) -> bool:
        """
        Fetch (with retry) and ingest one notified transaction.

        Never raises for fetch exhaustion or storage failure: both are counted
        as failed and left to the gap reconciler. Returns True when ingested.
        """
        signature = notification.signature
        outcome = await retry_async(
            lambda: self._rpc.get_transaction(signature),
            max_attempts=self._fetch_max_attempts,
            delays=self._fetch_retry_delays,
            sleep=self._sleep,
            label="getTransaction",
        )
        if not outcome.ok:
            self.failed += 1
            logger.warning(
                "subscriber_fetch_exhausted",
                signature=short(signature),
                attempts=outcome.attempts,
                error=str(outcome.last_error) if outcome.last_error else None,
            )
            return False
        tx = outcome.value
        if tx.get("slot") is None and notification.slot is not None:
            tx = {**tx, "slot": notification.slot}
        try:
            result = await self._ingest(tx)
        except DefipolyError as e:
            self.failed += 1
            logger.error("subscriber_ingest_failed", signature=short(signature), error=str(e))
            return False
        self.processed += 1
        logger.info(
            "subscriber_tx_processed",
            signature=short(signature),
            attempts=outcome.attempts,
            inserted=getattr(result, "inserted", None),
        )
        return True

    # --- stats ---

    def get_stats(self) -> dict[str, Any]:
        now = time.monotonic()
        uptime = now - self._started_at if self._started_at is not None else 0.0
        connected_for = now - self._connected_at if self._connected_at is not None else 0.0
        success_rate = round(self.processed / self.received * 100, 2) if self.received else 100.0
        return {
            "connected": self.connected,
            "state": self._state.value,
            "uptime": round(uptime, 1),
            "connectedForSec": round(connected_for, 1),
            "received": self.received,
            "processed": self.processed,
            "failed": self.failed,
            "successRate": success_rate,
            "reconnections": self.reconnections,
            "queued": self._queue.qsize(),
        }
