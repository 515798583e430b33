"""Chunked batch execution: splitting, metric reduction and result combining."""

from tinker_runtime.chunking.chunker import Chunker, estimate_number_count
from tinker_runtime.chunking.combiner import ChunkCombiner, CombinedOutput, SubmitFn
from tinker_runtime.chunking.reduction import (
    REDUCERS,
    ChunkResult,
    Reducer,
    metric_suffix,
    reduce_metrics,
)

__all__ = [
    "Chunker",
    "estimate_number_count",
    "ChunkCombiner",
    "CombinedOutput",
    "SubmitFn",
    "REDUCERS",
    "ChunkResult",
    "Reducer",
    "metric_suffix",
    "reduce_metrics",
]
