"""
Test that defipoly_logging can be imported without circular import and logger works.
"""

from __future__ import annotations

from backend_defipoly.defipoly_logging import short

from conftest import ALICE


def test_logging_import():
    """Import get_logger from defipoly_logging and use the logger."""
    from backend_defipoly.defipoly_logging import get_logger

    logger = get_logger("test")
    assert logger is not None
    assert hasattr(logger, "info")
    assert hasattr(logger, "warning")
    # Smoke test: call info (should not raise)
    logger.info("test_message", key="value")


def test_short_truncates_long_ids():
    assert short(ALICE) == ALICE[:16] + "..."
    assert short("abc") == "abc"
    assert short(None) == ""
