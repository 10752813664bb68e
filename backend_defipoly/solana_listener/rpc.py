"""
Async Solana JSON-RPC client (HTTP) for transaction and signature lookups.

One shared httpx.AsyncClient per instance; callers own its lifetime via
aclose() or `async with`. Transport errors, HTTP errors, and JSON-RPC `error`
members all surface as RpcError.
"""

from __future__ import annotations

import itertools
from typing import Any

import httpx

from backend_defipoly.core.exceptions import RpcError
from backend_defipoly.defipoly_logging import get_logger, short
from backend_defipoly.solana_listener.models import SignatureInfo

logger = get_logger(__name__)

_MAX_SIGNATURES_LIMIT = 1000


class SolanaRpcClient:
    """getTransaction / getSignaturesForAddress over JSON-RPC."""

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout_sec: float = 15.0,
        commitment: str = "confirmed",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not rpc_url.strip():
            raise ValueError("rpc_url must be non-empty")
        self._rpc_url = rpc_url.rstrip("/")
        self._commitment = commitment
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_sec))
        self._ids = itertools.count(1)

    async def __aenter__(self) -> "SolanaRpcClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, params: list[Any]) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = await self._client.post(self._rpc_url, json=body)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise RpcError(f"{method} transport error: {e}") from e
        except ValueError as e:
            raise RpcError(f"{method} returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise RpcError(f"{method} returned a non-object body")
        err = data.get("error")
        if err:
            code = err.get("code") if isinstance(err, dict) else None
            message = err.get("message", err) if isinstance(err, dict) else err
            raise RpcError(f"Solana RPC error: {message} (code={code})", code=code)
        return data.get("result")

    async def get_transaction(self, signature: str) -> dict[str, Any] | None:
        """Full transaction (json encoding, v0 supported); None if the node does not have it yet."""
        result = await self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": self._commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if result is None:
            logger.debug("rpc_transaction_not_found", signature=short(signature))
            return None
        if not isinstance(result, dict):
            raise RpcError("getTransaction returned a non-object result")
        return result

    async def get_signatures_for_address(
        self,
        address: str,
        *,
        limit: int = 100,
        before: str | None = None,
    ) -> list[SignatureInfo]:
        """Most recent signatures for address, newest first."""
        opts: dict[str, Any] = {
            "limit": max(1, min(limit, _MAX_SIGNATURES_LIMIT)),
            "commitment": self._commitment,
        }
        if before is not None:
            opts["before"] = before
        result = await self._call("getSignaturesForAddress", [address, opts])
        if not isinstance(result, list):
            raise RpcError("getSignaturesForAddress returned a non-list result")
        infos: list[SignatureInfo] = []
        for item in result:
            if not isinstance(item, dict) or "signature" not in item:
                continue
            try:
                infos.append(SignatureInfo.from_rpc_item(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug("rpc_signature_item_invalid", error=str(e))
        return infos
