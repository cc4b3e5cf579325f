"""
Ingestion and rescoring pipelines
"""

from value_screener.pipeline.ingestion import IngestionOrchestrator, RunState
from value_screener.pipeline.rescoring import RescoringPipeline
from value_screener.pipeline.stats import BatchJobState

__all__ = [
    "BatchJobState",
    "IngestionOrchestrator",
    "RescoringPipeline",
    "RunState",
]
