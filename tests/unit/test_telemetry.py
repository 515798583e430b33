"""Tests for tinker_runtime.telemetry."""

import json
import logging

import pytest

from tinker_runtime import telemetry
from tinker_runtime.logging import JSONFormatter


class TestHandlers:
    """Tests for attach/detach/emit."""

    def test_attach_and_emit(self):
        """Handlers only receive the events they subscribed to."""
        received = []
        telemetry.attach("test-handler", [telemetry.QUEUE_STATE_CHANGE], received.append)
        try:
            telemetry.emit(telemetry.QUEUE_STATE_CHANGE, {"n": 1.0}, {"request_id": "r"})
            telemetry.emit(telemetry.HTTP_REQUEST_START)
        finally:
            assert telemetry.detach("test-handler") is True

        assert len(received) == 1
        assert received[0].measurements == {"n": 1.0}
        assert received[0].metadata == {"request_id": "r"}

    def test_duplicate_id_rejected(self):
        telemetry.attach("dup", [telemetry.HTTP_REQUEST_STOP], lambda event: None)
        try:
            with pytest.raises(ValueError):
                telemetry.attach("dup", [telemetry.HTTP_REQUEST_STOP], lambda event: None)
        finally:
            telemetry.detach("dup")

    def test_detach_unknown(self):
        assert telemetry.detach("never-attached") is False

    def test_failing_handler_is_isolated(self, caplog):
        """A raising handler does not stop delivery to the others."""

        def broken(event):
            raise RuntimeError("handler bug")

        with telemetry.EventRecorder([telemetry.RATE_LIMIT_BACKOFF]) as recorder:
            telemetry.attach("broken", [telemetry.RATE_LIMIT_BACKOFF], broken)
            try:
                telemetry.emit(telemetry.RATE_LIMIT_BACKOFF, {"retry_after_ms": 100.0})
            finally:
                telemetry.detach("broken")

        assert len(recorder.events) == 1
        assert "Telemetry handler failed" in caplog.text

    def test_metric_debug_line(self, caplog):
        """Every event is logged at DEBUG in metric= form."""
        with caplog.at_level(logging.DEBUG, logger="tinker_runtime.telemetry"):
            telemetry.emit(telemetry.HTTP_REQUEST_STOP, {"duration": 0.5}, {"result": "ok"})

        assert "metric=http.request.stop duration=0.5 result=ok" in caplog.text

    def test_log_record_carries_event_fields(self, caplog):
        """The DEBUG record holds each field, so JSON output is structured."""
        with caplog.at_level(logging.DEBUG, logger="tinker_runtime.telemetry"):
            telemetry.emit(
                telemetry.HTTP_REQUEST_STOP,
                {"duration": 0.5},
                {"request_id": "req-9", "retry_count": 2, "name": "sampler"},
            )

        record = caplog.records[-1]
        assert record.event == telemetry.HTTP_REQUEST_STOP
        assert record.retry_count == 2
        assert record.event_name == "sampler"

        data = json.loads(JSONFormatter().format(record))
        assert data["event"] == telemetry.HTTP_REQUEST_STOP
        assert data["extra"] == {"duration": 0.5, "request_id": "req-9", "retry_count": 2, "event_name": "sampler"}


class TestEventRecorder:
    """Tests for EventRecorder."""

    def test_start_stop(self):
        recorder = telemetry.EventRecorder([telemetry.HTTP_REQUEST_START, telemetry.HTTP_REQUEST_STOP])
        recorder.start()
        telemetry.emit(telemetry.HTTP_REQUEST_START)
        telemetry.emit(telemetry.HTTP_REQUEST_STOP)
        recorder.stop()
        telemetry.emit(telemetry.HTTP_REQUEST_STOP)

        assert len(recorder.events) == 2
        assert len(recorder.named(telemetry.HTTP_REQUEST_STOP)) == 1
