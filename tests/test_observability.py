import json
import logging

import pytest

from observability.logger import JsonFormatter, bind_trace_id, clear_trace_id, log_transition
from observability.metrics import MetricsRegistry


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("issue_relay.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extras_and_trace():
    bind_trace_id("trace-1")
    try:
        line = JsonFormatter().format(_record("job_created", job_id="abc", owner_id="alice"))
    finally:
        clear_trace_id()

    payload = json.loads(line)
    assert payload["message"] == "job_created"
    assert payload["level"] == "INFO"
    assert payload["trace_id"] == "trace-1"
    assert payload["job_id"] == "abc"
    assert payload["owner_id"] == "alice"


def test_log_transition_emits_structured_record(caplog):
    logger = logging.getLogger("issue_relay.test.transition")
    with caplog.at_level(logging.INFO, logger="issue_relay.test.transition"):
        log_transition(logger, job_id="abc", from_status="pending", to_status="processing")

    record = caplog.records[-1]
    assert record.getMessage() == "job_transition"
    assert record.job_id == "abc"
    assert record.from_status == "pending"
    assert record.to_status == "processing"
    assert record.details is None


def test_registry_counters_and_gauges():
    registry = MetricsRegistry()
    counter = registry.counter("jobs.created_total")
    counter.inc()
    counter.inc(2)
    registry.gauge("jobs.pending").set(4)

    assert registry.counter("jobs.created_total") is counter
    assert registry.snapshot() == {"jobs.created_total": 3.0, "jobs.pending": 4.0}
    with pytest.raises(ValueError):
        counter.inc(-1)
    with pytest.raises(TypeError):
        registry.gauge("jobs.created_total")
