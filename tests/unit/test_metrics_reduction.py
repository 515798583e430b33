"""Tests for tinker_runtime.chunking.reduction."""

import pytest

from tinker_runtime.chunking.reduction import ChunkResult, metric_suffix, reduce_metrics


def _chunk(count=1, **metrics):
    return ChunkResult(metrics=metrics, count=count)


def _metrics(*pairs):
    """Build ChunkResults from (count, {metric: value}) pairs."""
    return [ChunkResult(metrics=dict(m), count=count) for count, m in pairs]


class TestMetricSuffix:
    """Tests for metric_suffix()."""

    def test_last_colon_wins(self):
        assert metric_suffix("loss:mean") == "mean"
        assert metric_suffix("a:b:max") == "max"
        assert metric_suffix("plain") == "plain"


class TestReduceMetrics:
    """Tests for reduce_metrics()."""

    def test_first_chunk_defines_keys(self):
        """Keys only present in later chunks are dropped."""
        chunks = _metrics((1, {"m:sum": 1}), (1, {"m:sum": 2, "extra": 9}))
        assert reduce_metrics(chunks) == {"m:sum": 3}

    def test_weighted_mean(self):
        """Means are weighted by chunk item count."""
        chunks = _metrics((1, {"loss:mean": 1.0}), (3, {"loss:mean": 3.0}))
        assert reduce_metrics(chunks)["loss:mean"] == pytest.approx(2.5)

    def test_min_max(self):
        chunks = _metrics(
            (1, {"lr:min": 0.3, "grad_norm:max": 1.5}),
            (1, {"lr:min": 0.1, "grad_norm:max": 7.0}),
            (1, {"lr:min": 0.2, "grad_norm:max": 2.0}),
        )
        assert reduce_metrics(chunks) == {"lr:min": 0.1, "grad_norm:max": 7.0}

    def test_slack_zero_weight(self):
        """slack yields 0.0 when no chunk has weight."""
        assert reduce_metrics(_metrics((0, {"t:slack": 5.0}), (0, {"t:slack": 7.0}))) == {"t:slack": 0.0}
        assert reduce_metrics(_metrics((1, {"t:slack": 2.0}), (1, {"t:slack": 4.0}))) == {"t:slack": 1.0}

    def test_slack_is_max_minus_weighted_mean(self):
        """slack is the largest value less the count-weighted mean."""
        chunks = _metrics((1, {"gap:slack": 1.0}), (3, {"gap:slack": 3.0}))
        assert reduce_metrics(chunks)["gap:slack"] == pytest.approx(0.5)

    def test_unique_keeps_every_value(self):
        """unique keeps the first value under the key and numbers the rest."""
        chunks = _metrics((1, {"id:unique": 10}), (1, {"id:unique": 20}), (1, {"id:unique": 30}))
        assert reduce_metrics(chunks) == {"id:unique": 10, "id:unique_2": 20, "id:unique_3": 30}

    def test_unknown_suffix_is_mean(self):
        """Names without a known suffix are averaged."""
        chunks = _metrics((1, {"accuracy": 0.5, "x:median": 1.0}), (1, {"accuracy": 1.0, "x:median": 3.0}))
        assert reduce_metrics(chunks) == {"accuracy": 0.75, "x:median": 2.0}

    def test_missing_key_is_skipped_not_zero(self):
        """A later chunk without the key does not pull the result down."""
        chunks = _metrics((2, {"loss:mean": 4.0, "n:sum": 1}), (2, {"n:sum": 1}), (2, {"loss:mean": 2.0, "n:sum": 1}))
        assert reduce_metrics(chunks) == {"loss:mean": 3.0, "n:sum": 3}

    def test_empty_input(self):
        assert reduce_metrics([]) == {}

    def test_custom_rules(self):
        """reduce_rules adds new suffixes and overrides built-in ones."""
        chunks = _metrics((1, {"a:last": 1, "b:sum": 2}), (1, {"a:last": 5, "b:sum": 4}))
        rules = {"last": lambda values, weights: values[-1], "sum": lambda values, weights: -1}
        assert reduce_metrics(chunks, rules) == {"a:last": 5, "b:sum": -1}

    def test_single_chunk(self):
        """One chunk passes through unchanged."""
        assert reduce_metrics([_chunk(4, **{"loss:mean": 0.25, "tokens:sum": 10})]) == {
            "loss:mean": 0.25,
            "tokens:sum": 10,
        }
