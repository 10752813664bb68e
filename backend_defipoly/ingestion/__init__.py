"""
Ingestion: the shared decode/insert/project pipeline and the gap reconciler.
"""

from backend_defipoly.ingestion.gap_reconciler import GapReconciler
from backend_defipoly.ingestion.pipeline import IngestionPipeline, IngestResult

__all__ = ["GapReconciler", "IngestResult", "IngestionPipeline"]
