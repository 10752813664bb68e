"""
Solana chain access: JSON-RPC client, retry helper, live logs subscription.
"""

from backend_defipoly.solana_listener.models import ConnectionState, LogNotification, SignatureInfo
from backend_defipoly.solana_listener.retry import RetryOutcome, next_delay, retry_async
from backend_defipoly.solana_listener.rpc import SolanaRpcClient
from backend_defipoly.solana_listener.subscriber import LiveSubscriber

__all__ = [
    "ConnectionState",
    "LiveSubscriber",
    "LogNotification",
    "RetryOutcome",
    "SignatureInfo",
    "SolanaRpcClient",
    "next_delay",
    "retry_async",
]
