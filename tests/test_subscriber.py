"""
Tests for the live subscriber: fetch retry, ingest hand-off, queueing, and
bounded reconnection. The websocket and RPC node are replaced with fakes.
"""

from __future__ import annotations

import asyncio
import json

import pytest

from backend_defipoly.core.exceptions import ReconnectExhaustedError, StorageError
from backend_defipoly.solana_listener import ConnectionState, LiveSubscriber, LogNotification

from conftest import PROGRAM_ID


class FakeRpc:
    def __init__(self, results):
        self._results = list(results)
        self.calls = 0

    async def get_transaction(self, signature):
        self.calls += 1
        result = self._results.pop(0) if self._results else None
        if isinstance(result, Exception):
            raise result
        return result


class FakeSocket:
    def __init__(self, messages):
        self.sent = []
        self._replies = [json.dumps({"jsonrpc": "2.0", "id": 1, "result": 77})]
        self._messages = [json.dumps(m) for m in messages]
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def recv(self):
        return self._replies.pop(0)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._messages:
            raise StopAsyncIteration
        return self._messages.pop(0)

    async def close(self):
        self.closed = True

    async def ping(self):
        fut = asyncio.get_running_loop().create_future()
        fut.set_result(None)
        return fut


def _notification(signature, slot=9, err=None):
    return {
        "jsonrpc": "2.0",
        "method": "logsNotification",
        "params": {"result": {"context": {"slot": slot}, "value": {"signature": signature, "err": err, "logs": []}}},
    }


def _subscriber(rpc, ingest, sleeps=None, **kw):
    async def sleep(delay):
        if sleeps is not None:
            sleeps.append(delay)
        await asyncio.sleep(0)

    return LiveSubscriber("wss://ws.test", PROGRAM_ID, rpc, ingest, sleep=sleep, **kw)


def test_fetch_exhaustion_counts_failed():
    sleeps = []

    async def ingest(tx):
        raise AssertionError("nothing to ingest")

    async def run():
        sub = _subscriber(FakeRpc([]), ingest, sleeps)
        ok = await sub.handle_notification(LogNotification("sigGone", 1))
        return sub, ok

    sub, ok = asyncio.run(run())
    assert ok is False
    assert sub.failed == 1
    assert sub.processed == 0
    assert sleeps == [0.5, 1.0, 2.0, 3.0]


def test_late_transaction_is_ingested_with_slot():
    ingested = []

    async def ingest(tx):
        ingested.append(tx)

    async def run():
        rpc = FakeRpc([None, ConnectionError("reset"), {"blockTime": 5}])
        sub = _subscriber(rpc, ingest, [])
        ok = await sub.handle_notification(LogNotification("sigLate", 42))
        return sub, rpc, ok

    sub, rpc, ok = asyncio.run(run())
    assert ok is True
    assert rpc.calls == 3
    assert sub.processed == 1
    assert ingested == [{"blockTime": 5, "slot": 42}]


def test_storage_failure_is_counted_not_raised():
    async def ingest(tx):
        raise StorageError("disk full")

    async def run():
        sub = _subscriber(FakeRpc([{"slot": 1}]), ingest, [])
        return sub, await sub.handle_notification(LogNotification("sigDisk", 1))

    sub, ok = asyncio.run(run())
    assert ok is False
    assert sub.failed == 1


def test_handle_message_queues_and_skips_failed():
    async def ingest(tx):
        return None

    async def run():
        sub = _subscriber(FakeRpc([]), ingest, queue_maxsize=1)
        sub._handle_message(_notification("sigErr", err={"InstructionError": [0, "x"]}))
        sub._handle_message({"jsonrpc": "2.0", "result": 1, "id": 3})
        sub._handle_message(_notification("sigOk"))
        sub._handle_message(_notification("sigOverflow"))
        return sub

    sub = asyncio.run(run())
    stats = sub.get_stats()
    assert stats["received"] == 2
    assert stats["queued"] == 1
    assert stats["failed"] == 1
    assert stats["state"] == ConnectionState.DISCONNECTED.value
    assert stats["connected"] is False


def test_success_rate_defaults_to_full():
    async def run():
        return _subscriber(FakeRpc([]), None).get_stats()

    assert asyncio.run(run())["successRate"] == 100.0


def test_reconnect_exhaustion_raises():
    attempts = []

    def connect(url, **kw):
        attempts.append(url)
        raise OSError("connection refused")

    async def run():
        sub = _subscriber(
            FakeRpc([]), None, reconnect_delay_sec=0, max_reconnect_attempts=2, connect=connect
        )
        try:
            await sub.run()
        finally:
            await sub.stop()
        return sub

    with pytest.raises(ReconnectExhaustedError):
        asyncio.run(run())
    assert len(attempts) == 3


def test_subscribe_then_process_notification():
    ingested = []
    socket = FakeSocket([_notification("sigLive", slot=11)])
    calls = 0

    def connect(url, **kw):
        nonlocal calls
        calls += 1
        if calls == 1:
            return socket
        raise OSError("gone")

    async def ingest(tx):
        ingested.append(tx)

    async def run():
        sub = _subscriber(
            FakeRpc([{"blockTime": 3}]),
            ingest,
            reconnect_delay_sec=0,
            max_reconnect_attempts=1,
            health_check_interval_sec=3600,
            connect=connect,
        )
        with pytest.raises(ReconnectExhaustedError):
            await sub.run()
        await sub._queue.join()
        await sub.stop()
        return sub

    sub = asyncio.run(run())
    request = socket.sent[0]
    assert request["method"] == "logsSubscribe"
    assert request["params"][0] == {"mentions": [PROGRAM_ID]}
    assert ingested == [{"blockTime": 3, "slot": 11}]
    assert sub.processed == 1
    assert sub.reconnections == 1
    assert sub.state == ConnectionState.STOPPED
