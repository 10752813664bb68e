"""
Event decoder: transaction logs to typed game Actions.
"""

from backend_defipoly.decoder.decoder import EVENT_TABLE, TransactionDecoder, decode, pick
from backend_defipoly.decoder.events import RawEvent, encode_event_log, parse_program_logs

__all__ = [
    "EVENT_TABLE",
    "RawEvent",
    "TransactionDecoder",
    "decode",
    "encode_event_log",
    "parse_program_logs",
    "pick",
]
