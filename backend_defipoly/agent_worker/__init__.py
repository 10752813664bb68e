"""
Agent worker package: owns the ingestion components and their lifecycle.
"""

from backend_defipoly.agent_worker.worker import IndexerWorker, WorkerState

__all__ = ["IndexerWorker", "WorkerState"]
