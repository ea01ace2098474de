from __future__ import annotations

import json
import logging

from auditflow.shared.infrastructure.logging import CustomJsonFormatter


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        "auditflow.sla", logging.INFO, __file__, 1, "SLA alert created", None, None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_adds_context_and_redacts() -> None:
    formatter = CustomJsonFormatter("%(name)s %(levelname)s %(message)s", environment="test")

    line = json.loads(formatter.format(_record(
        correlation_id="abc-123", subject_id="INC-1", webhook_url="https://hooks.example.com/x"
    )))

    assert line["message"] == "SLA alert created"
    assert line["levelname"] == "INFO"
    assert line["environment"] == "test"
    assert line["correlation_id"] == "abc-123"
    assert line["subject_id"] == "INC-1"
    assert line["webhook_url"] == "***REDACTED***"
    assert "timestamp" in line
