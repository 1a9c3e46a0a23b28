from datetime import datetime, timedelta, timezone

import pytest

from deskflow.config import TicketCategory
from deskflow.core.exceptions import ValidationException
from deskflow.workflow.domain import (
    ChangeDetails, IncidentDetails, ServiceRequestDetails, build_details, details_from_dict,
    details_to_dict,
)

from tests.factories import CHANGE_FIELDS, INCIDENT_FIELDS, SERVICE_REQUEST_FIELDS


@pytest.mark.parametrize("risk,impact,expected", [
    ("high", "low", True),
    ("medium", "medium", True),
    ("medium", "high", True),
    ("medium", "low", False),
    ("low", "high", True),
    ("low", "medium", False),
    ("low", "low", False),
])
def test_change_requires_cab(risk, impact, expected):
    details = build_details(TicketCategory.CHANGE, dict(CHANGE_FIELDS, risk=risk, impact=impact))
    assert details.requires_cab is expected


def test_build_details_selects_variant():
    details = build_details(TicketCategory.INCIDENT, INCIDENT_FIELDS)

    assert isinstance(details, IncidentDetails)
    assert details.affected_services == ["checkout-api"]
    with pytest.raises(AttributeError):
        details.backout_plan


def test_category_label_is_kept_as_classification():
    details = build_details(TicketCategory.SERVICE_REQUEST, SERVICE_REQUEST_FIELDS)

    assert isinstance(details, ServiceRequestDetails)
    assert details.classification == "Access"
    assert details.form_data == {"department": "finance"}


def test_change_dates_must_be_ordered():
    fields = dict(CHANGE_FIELDS, planned_end_date="2024-02-01T21:00:00+00:00")

    with pytest.raises(ValidationException) as exc_info:
        build_details(TicketCategory.CHANGE, fields)

    assert exc_info.value.details["category"] == "change"


def test_change_window_must_be_at_least_half_an_hour():
    fields = dict(CHANGE_FIELDS, planned_end_date="2024-02-01T22:10:00+00:00")

    with pytest.raises(ValidationException) as exc_info:
        build_details(TicketCategory.CHANGE, fields)

    assert "30 minutes" in exc_info.value.details["errors"][0]["msg"]


@pytest.mark.parametrize(
    "risk,hours_ahead,allowed",
    [
        ("low", 23, False),
        ("low", 24, True),
        ("medium", 71, False),
        ("medium", 72, True),
        ("high", 167, False),
        ("high", 168, True),
    ],
)
def test_change_lead_time_depends_on_risk(risk, hours_ahead, allowed):
    details = build_details(TicketCategory.CHANGE, dict(CHANGE_FIELDS, risk=risk))
    now = details.planned_start_date - timedelta(hours=hours_ahead)

    if allowed:
        details.check_schedule(now)
        return

    with pytest.raises(ValidationException) as exc_info:
        details.check_schedule(now)

    body = exc_info.value.details
    assert body["risk"] == risk
    assert body["errors"][0]["loc"] == ["planned_start_date"]
    assert body["errors"][0]["type"] == "lead_time"


def test_lead_time_treats_naive_start_as_utc():
    fields = dict(
        CHANGE_FIELDS,
        planned_start_date="2024-02-01T22:00:00",
        planned_end_date="2024-02-01T23:30:00",
    )
    details = build_details(TicketCategory.CHANGE, fields)

    details.check_schedule(datetime(2024, 1, 31, 22, 0, tzinfo=timezone.utc))

    with pytest.raises(ValidationException):
        details.check_schedule(datetime(2024, 1, 31, 22, 1, tzinfo=timezone.utc))


def test_bad_change_risk_is_rejected():
    with pytest.raises(ValidationException):
        build_details(TicketCategory.CHANGE, dict(CHANGE_FIELDS, risk="extreme"))


def test_stored_details_rehydrate_to_same_variant():
    details = build_details(TicketCategory.CHANGE, CHANGE_FIELDS)

    stored = details_to_dict(details)
    restored = details_from_dict(stored)

    assert stored["type"] == "change"
    assert stored["classification"] == "Network"
    assert isinstance(restored, ChangeDetails)
    assert restored == details
