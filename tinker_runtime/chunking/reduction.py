"""Merge per-chunk metrics into one metrics map.

The reducer for a metric is chosen by the suffix after the last ``:`` in its
name (``loss:mean``, ``tokens:sum``, ``grad_norm:max`` ...). Names without a
known suffix are averaged.

Only keys present in the first chunk are reduced. A key missing from a later
chunk is skipped for that chunk, never treated as zero.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

__all__ = ["ChunkResult", "Reducer", "REDUCERS", "metric_suffix", "reduce_metrics"]

Reducer = Callable[[List[float], List[int]], float]


@dataclass
class ChunkResult:
    """Metrics and per-item outputs of one chunk; ``count`` is its weight."""

    metrics: Dict[str, float] = field(default_factory=dict)
    outputs: List[Any] = field(default_factory=list)
    count: int = 0


def _weighted_mean(values: List[float], weights: List[int]) -> float:
    total_weight = sum(weights)
    if total_weight <= 0:
        return 0.0
    return sum(value * weight for value, weight in zip(values, weights)) / total_weight


def _sum(values: List[float], weights: List[int]) -> float:
    return sum(values)


def _min(values: List[float], weights: List[int]) -> float:
    return min(values)


def _max(values: List[float], weights: List[int]) -> float:
    return max(values)


def _slack(values: List[float], weights: List[int]) -> float:
    """Headroom of the largest value over the weighted mean."""
    if sum(weights) <= 0:
        return 0.0
    return max(values) - _weighted_mean(values, weights)


REDUCERS: Dict[str, Reducer] = {
    "mean": _weighted_mean,
    "sum": _sum,
    "min": _min,
    "max": _max,
    "slack": _slack,
}

UNIQUE = "unique"


def metric_suffix(key: str) -> str:
    return key.rsplit(":", 1)[-1]


def reduce_metrics(
    chunks: Sequence[ChunkResult],
    reduce_rules: Optional[Mapping[str, Reducer]] = None,
) -> Dict[str, Any]:
    """Reduce chunk metrics; ``reduce_rules`` extends or overrides ``REDUCERS``."""
    if not chunks:
        return {}

    rules = dict(REDUCERS)
    if reduce_rules:
        rules.update(reduce_rules)

    merged: Dict[str, Any] = {}
    for key in chunks[0].metrics:
        values: List[float] = []
        weights: List[int] = []
        for chunk in chunks:
            if key in chunk.metrics:
                values.append(chunk.metrics[key])
                weights.append(chunk.count)

        suffix = metric_suffix(key)
        if suffix == UNIQUE and suffix not in rules:
            merged[key] = values[0]
            for index, value in enumerate(values[1:], start=2):
                merged[f"{key}_{index}"] = value
            continue

        reducer = rules.get(suffix, rules["mean"])
        merged[key] = reducer(values, weights)
    return merged
