import json
import logging

import pytest
from pydantic import ValidationError

from deskflow.config import Settings
from deskflow.shared.infrastructure.logging import WorkflowJsonFormatter, log_latency


def _format(record: logging.LogRecord) -> dict:
    formatter = WorkflowJsonFormatter(
        fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
        environment="test",
    )
    return json.loads(formatter.format(record))


def test_formatter_adds_context_fields():
    record = logging.LogRecord("deskflow.test", logging.INFO, __file__, 1, "Ticket created", None, None)
    record.ticket_id = "t-1"
    record.category = "incident"

    body = _format(record)

    assert body["message"] == "Ticket created"
    assert body["ticket_id"] == "t-1"
    assert body["category"] == "incident"
    assert body["environment"] == "test"
    assert "timestamp" in body
    assert "org_id" not in body


def test_log_latency_records_operation(caplog):
    logger = logging.getLogger("deskflow.test.latency")

    with caplog.at_level(logging.INFO, logger="deskflow.test.latency"):
        with log_latency(logger, "breach_sweep", tickets=3):
            pass

    record = caplog.records[-1]
    assert record.getMessage() == "breach_sweep completed"
    assert record.operation == "breach_sweep"
    assert record.tickets == 3
    assert record.latency_ms >= 0


def test_settings_reject_unknown_environment():
    with pytest.raises(ValidationError):
        Settings(environment="moon")
