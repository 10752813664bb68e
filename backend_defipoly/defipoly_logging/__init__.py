"""
Structured logging for Backend Defipoly.

JSON logs with timestamp, event_type, and per-module context.
Use get_logger() in all modules for aggregation-friendly output.
"""

from backend_defipoly.defipoly_logging.logger import get_logger, short

__all__ = ["get_logger", "short"]
