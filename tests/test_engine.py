import asyncio
import threading
from datetime import timedelta

import pytest

from deskflow.config import ImpactLevel, Priority, SLAStatus, TicketCategory
from deskflow.core.exceptions import (
    ConcurrentModificationError, DomainException, IllegalTransitionError, InvalidInputError,
    MissingFieldsError, ResourceNotFoundException, ValidationException,
)
from deskflow.workflow.application import IEventPublisher, WorkflowEngine
from deskflow.workflow.domain import ChangeDetails
from deskflow.workflow.infrastructure import InMemoryTicketRepository

from tests.factories import (
    CHANGE_FIELDS, INCIDENT_FIELDS, PROBLEM_FIELDS, SERVICE_REQUEST_FIELDS, T0, TICKET_FIELDS,
)


def minutes(n):
    return timedelta(minutes=n)


class SlowLoadRepository(InMemoryTicketRepository):
    """Yields to the event loop after every load so concurrent callers interleave."""

    async def load(self, ticket_id):
        ticket = await super().load(ticket_id)
        await asyncio.sleep(0)
        return ticket


class FailingPublisher(IEventPublisher):
    async def publish(self, event):
        raise RuntimeError("broker down")


# ========== create ==========

@pytest.mark.asyncio
async def test_create_critical_incident(engine, publisher):
    ticket = await engine.create("org-1", "incident", INCIDENT_FIELDS, actor="agent-7")

    assert ticket.category == TicketCategory.INCIDENT
    assert ticket.status == "investigating"
    assert ticket.priority == Priority.CRITICAL
    assert ticket.number == "INC-000001"
    assert ticket.version == 1
    assert ticket.sla.response_deadline == T0 + minutes(15)
    assert ticket.sla.resolution_deadline == T0 + minutes(240)

    assert publisher.names() == ["created"]
    event = publisher.events[0]
    assert event.ticket_id == ticket.id
    assert event.occurred_at == T0
    assert event.payload["number"] == "INC-000001"
    assert event.payload["actor"] == "agent-7"


@pytest.mark.asyncio
async def test_create_uses_supplied_priority(engine):
    ticket = await engine.create("org-1", TicketCategory.TICKET, TICKET_FIELDS)

    assert ticket.priority == Priority.HIGH
    assert ticket.number == "TKT-000001"
    assert ticket.sla.resolution_deadline == T0 + minutes(480)
    assert ticket.details.requester_id == "user-17"


@pytest.mark.asyncio
async def test_change_defaults_to_medium_priority(engine):
    ticket = await engine.create("org-1", "change", CHANGE_FIELDS)

    assert ticket.priority == Priority.MEDIUM
    assert ticket.impact == ImpactLevel.LOW
    assert ticket.status == "draft"
    assert isinstance(ticket.details, ChangeDetails)


@pytest.mark.asyncio
async def test_problem_priority_comes_from_matrix(engine):
    ticket = await engine.create("org-1", "problem", PROBLEM_FIELDS)

    assert ticket.priority == Priority.HIGH
    assert ticket.number == "PRB-000001"


@pytest.mark.asyncio
async def test_create_rejects_missing_fields(engine, publisher):
    fields = {k: v for k, v in CHANGE_FIELDS.items() if k != "backout_plan"}

    with pytest.raises(MissingFieldsError) as exc_info:
        await engine.create("org-1", "change", fields)

    assert exc_info.value.missing_fields == ["backout_plan"]
    assert publisher.events == []

    ticket = await engine.create("org-1", "change", CHANGE_FIELDS)
    assert ticket.number == "CHG-000001"


@pytest.mark.asyncio
async def test_create_rejects_unknown_category(engine):
    with pytest.raises(InvalidInputError) as exc_info:
        await engine.create("org-1", "task", TICKET_FIELDS)
    assert exc_info.value.field == "category"


@pytest.mark.asyncio
async def test_create_rejects_out_of_domain_priority(engine):
    with pytest.raises(InvalidInputError):
        await engine.create("org-1", "ticket", dict(TICKET_FIELDS, priority="urgent"))


@pytest.mark.asyncio
async def test_create_rejects_malformed_change(engine):
    with pytest.raises(ValidationException):
        await engine.create("org-1", "change", dict(CHANGE_FIELDS, planned_start_date="soon"))


@pytest.mark.asyncio
async def test_create_rejects_change_inside_lead_time(engine, publisher):
    fields = dict(
        CHANGE_FIELDS,
        risk="high",
        planned_start_date=(T0 + minutes(1)).isoformat(),
        planned_end_date=(T0 + minutes(2)).isoformat(),
    )
    with pytest.raises(ValidationException):
        await engine.create("org-1", "change", fields)

    fields["planned_end_date"] = (T0 + minutes(60)).isoformat()
    with pytest.raises(ValidationException) as exc_info:
        await engine.create("org-1", "change", fields)

    assert exc_info.value.details["lead_time_hours"] == 168
    assert publisher.names() == []
    # Rejected creates never consume a number
    ticket = await engine.create("org-1", "change", CHANGE_FIELDS)
    assert ticket.number == "CHG-000001"


@pytest.mark.asyncio
async def test_numbers_are_scoped_per_org_and_category(engine):
    a1 = await engine.create("org-a", "incident", INCIDENT_FIELDS)
    a2 = await engine.create("org-a", "incident", INCIDENT_FIELDS)
    b1 = await engine.create("org-b", "incident", INCIDENT_FIELDS)
    t1 = await engine.create("org-a", "ticket", TICKET_FIELDS)

    assert [a1.number, a2.number, b1.number, t1.number] == [
        "INC-000001", "INC-000002", "INC-000001", "TKT-000001",
    ]


@pytest.mark.asyncio
async def test_concurrent_creates_get_unique_numbers(engine):
    tickets = await asyncio.gather(
        *(engine.create("org-1", "ticket", TICKET_FIELDS) for _ in range(50))
    )

    numbers = sorted(t.number for t in tickets)
    assert numbers == [f"TKT-{n:06d}" for n in range(1, 51)]


def test_counter_is_unique_across_threads():
    repository = InMemoryTicketRepository()
    values = []

    def worker():
        async def run():
            return [
                await repository.atomic_increment("org-1", TicketCategory.TICKET)
                for _ in range(25)
            ]
        values.extend(asyncio.run(run()))

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(values) == list(range(1, 101))


# ========== transition ==========

@pytest.mark.asyncio
async def test_first_transition_records_response(engine, publisher, clock):
    ticket = await engine.create("org-1", "ticket", TICKET_FIELDS)
    clock.advance(minutes=5)

    opened = await engine.transition(ticket.id, "open", actor="agent-1")

    assert opened.status == "open"
    assert opened.version == 2
    assert opened.sla.responded_at == T0 + minutes(5)
    assert opened.updated_at == T0 + minutes(5)
    assert publisher.names() == ["created", "status_changed"]
    assert publisher.events[-1].payload["from_status"] == "new"
    assert publisher.events[-1].payload["to_status"] == "open"


@pytest.mark.asyncio
async def test_resolving_records_resolution(engine, publisher, clock):
    ticket = await engine.create("org-1", "ticket", TICKET_FIELDS)
    await engine.transition(ticket.id, "open")
    clock.advance(minutes=30)

    resolved = await engine.transition(ticket.id, "resolved")

    assert resolved.sla.resolved_at == T0 + minutes(30)
    assert publisher.names()[-1] == "resolved"
    snapshot = await engine.sla_status(ticket.id)
    assert snapshot.resolution.status == SLAStatus.MET


@pytest.mark.asyncio
async def test_illegal_transition(engine, publisher):
    ticket = await engine.create("org-1", "ticket", TICKET_FIELDS)
    closed = await engine.transition(ticket.id, "closed")

    with pytest.raises(IllegalTransitionError) as exc_info:
        await engine.transition(ticket.id, "resolved")

    assert exc_info.value.legal_statuses == ["open"]
    assert (await engine.get(ticket.id)) == closed
    assert publisher.names() == ["created", "closed"]


@pytest.mark.asyncio
async def test_same_status_transition_is_illegal(engine):
    ticket = await engine.create("org-1", "ticket", TICKET_FIELDS)
    with pytest.raises(IllegalTransitionError):
        await engine.transition(ticket.id, "new")


@pytest.mark.asyncio
async def test_unknown_ticket(engine):
    with pytest.raises(ResourceNotFoundException):
        await engine.get("missing")
    with pytest.raises(ResourceNotFoundException):
        await engine.transition("missing", "open")


@pytest.mark.asyncio
async def test_pending_status_holds_clock_paused(engine, publisher, clock):
    ticket = await engine.create("org-1", "ticket", TICKET_FIELDS)
    await engine.transition(ticket.id, "open")
    clock.advance(minutes=10)

    pending = await engine.transition(ticket.id, "pending")
    assert pending.sla.paused_at == T0 + minutes(10)
    assert publisher.events[-1].payload["sla_paused"] is True

    clock.advance(minutes=30)
    reopened = await engine.transition(ticket.id, "open")

    assert not reopened.sla.is_paused
    assert reopened.sla.resolution_deadline == T0 + minutes(480 + 30)
    assert reopened.sla.total_paused == minutes(30)


@pytest.mark.asyncio
async def test_reopen_after_breach_starts_fresh_window(engine, publisher, clock):
    ticket = await engine.create("org-1", "ticket", TICKET_FIELDS)
    await engine.transition(ticket.id, "open")
    clock.advance(minutes=500)
    breached = await engine.reevaluate_sla(ticket.id)
    assert breached.sla.breached
    await engine.transition(ticket.id, "resolved")
    clock.advance(minutes=10)

    reopened = await engine.transition(ticket.id, "open")

    assert reopened.sla.started_at == T0 + minutes(510)
    assert reopened.sla.resolution_deadline == T0 + minutes(510 + 480)
    assert not reopened.sla.breached
    assert reopened.sla.resolved_at is None
    payload = publisher.events[-1].payload
    assert payload["reopened"] is True
    assert payload["previous_breached"] is True
    assert payload["previous_breached_at"] == (T0 + minutes(500)).isoformat()


@pytest.mark.asyncio
async def test_reopen_counts_as_response(engine, publisher, clock):
    ticket = await engine.create("org-1", "ticket", TICKET_FIELDS)
    await engine.transition(ticket.id, "open")
    await engine.transition(ticket.id, "resolved")
    clock.advance(minutes=5)

    reopened = await engine.transition(ticket.id, "open")
    assert reopened.sla.responded_at == T0 + minutes(5)

    clock.advance(minutes=10)
    await engine.transition(ticket.id, "pending")
    await engine.transition(ticket.id, "open")
    clock.advance(minutes=100)

    evaluated = await engine.reevaluate_sla(ticket.id)

    assert not evaluated.sla.breached
    assert "sla_breach" not in publisher.names()
    snapshot = await engine.sla_status(ticket.id)
    assert snapshot.response.status == SLAStatus.MET


@pytest.mark.asyncio
async def test_reopened_problem_is_responded(engine, clock):
    ticket = await engine.create("org-1", "problem", PROBLEM_FIELDS)
    for status in ("investigating", "resolved", "closed"):
        await engine.transition(ticket.id, status)
    clock.advance(minutes=30)

    reopened = await engine.transition(ticket.id, "investigating")

    assert reopened.sla.responded_at == T0 + minutes(30)
    assert reopened.sla.resolved_at is None


@pytest.mark.asyncio
async def test_low_risk_change_submitted_for_approval(engine, publisher):
    ticket = await engine.create("org-1", "change", CHANGE_FIELDS)

    submitted = await engine.transition(ticket.id, "pending_approval")

    assert publisher.names()[-1] == "submitted_for_approval"
    assert submitted.sla.is_paused


@pytest.mark.asyncio
async def test_high_risk_change_goes_to_cab(engine, publisher):
    ticket = await engine.create("org-1", "change", dict(CHANGE_FIELDS, risk="high"))

    await engine.transition(ticket.id, "pending_approval")

    assert publisher.names()[-1] == "cab_review"


@pytest.mark.asyncio
async def test_service_request_approval_event(engine, publisher):
    ticket = await engine.create("org-1", "service_request", SERVICE_REQUEST_FIELDS)

    await engine.transition(ticket.id, "pending_approval")
    await engine.transition(ticket.id, "approved")

    assert publisher.names() == ["created", "approval_requested", "approved"]


# ========== pause / resume ==========

@pytest.mark.asyncio
async def test_manual_pause_is_idempotent(engine, publisher, clock):
    ticket = await engine.create("org-1", "ticket", TICKET_FIELDS)
    clock.advance(minutes=5)

    paused = await engine.pause(ticket.id)
    clock.advance(minutes=5)
    again = await engine.pause(ticket.id)

    assert paused.sla.paused_at == T0 + minutes(5)
    assert again == paused
    assert publisher.names() == ["created", "sla_paused"]


@pytest.mark.asyncio
async def test_manual_resume_shifts_deadlines(engine, publisher, clock):
    ticket = await engine.create("org-1", "ticket", TICKET_FIELDS)
    clock.advance(minutes=5)
    await engine.pause(ticket.id)
    clock.advance(minutes=60)

    resumed = await engine.resume(ticket.id)

    assert resumed.sla.response_deadline == ticket.sla.response_deadline + minutes(60)
    assert resumed.sla.resolution_deadline == ticket.sla.resolution_deadline + minutes(60)
    assert publisher.names()[-1] == "sla_resumed"
    assert publisher.events[-1].payload["paused_minutes"] == 60


@pytest.mark.asyncio
async def test_resume_when_running_writes_nothing(engine, publisher):
    ticket = await engine.create("org-1", "ticket", TICKET_FIELDS)

    assert await engine.resume(ticket.id) == ticket
    assert publisher.names() == ["created"]


@pytest.mark.asyncio
async def test_resume_refused_while_status_holds_pause(engine):
    ticket = await engine.create("org-1", "ticket", TICKET_FIELDS)
    await engine.transition(ticket.id, "open")
    await engine.transition(ticket.id, "pending")

    with pytest.raises(DomainException):
        await engine.resume(ticket.id)


# ========== change_priority ==========

@pytest.mark.asyncio
async def test_priority_change_recomputes_deadlines(engine, publisher, clock):
    ticket = await engine.create("org-1", "ticket", TICKET_FIELDS)
    clock.advance(minutes=10)

    updated = await engine.change_priority(ticket.id, priority="critical")

    assert updated.priority == Priority.CRITICAL
    assert updated.sla.response_deadline == T0 + minutes(15)
    assert updated.sla.resolution_deadline == T0 + minutes(240)
    assert publisher.names()[-1] == "priority_changed"
    assert publisher.events[-1].payload["old_priority"] == "high"
    assert publisher.events[-1].payload["new_priority"] == "critical"


@pytest.mark.asyncio
async def test_incident_priority_follows_impact(engine, publisher):
    ticket = await engine.create("org-1", "incident", INCIDENT_FIELDS)

    updated = await engine.change_priority(ticket.id, impact="low")

    assert updated.priority == Priority.MEDIUM
    assert updated.impact == ImpactLevel.LOW
    assert updated.sla.resolution_deadline == T0 + minutes(1440)
    assert publisher.names()[-1] == "severity_changed"


@pytest.mark.asyncio
async def test_matrix_category_rejects_direct_priority(engine):
    ticket = await engine.create("org-1", "incident", INCIDENT_FIELDS)
    with pytest.raises(InvalidInputError):
        await engine.change_priority(ticket.id, priority="low")


@pytest.mark.asyncio
async def test_change_impact_updates_cab_decision(engine, publisher):
    ticket = await engine.create("org-1", "change", CHANGE_FIELDS)
    assert not ticket.details.requires_cab

    updated = await engine.change_priority(ticket.id, impact="high")

    assert updated.impact == ImpactLevel.HIGH
    assert updated.details.impact == ImpactLevel.HIGH
    assert updated.details.requires_cab
    assert updated.priority == ticket.priority

    await engine.transition(ticket.id, "pending_approval")
    assert publisher.names()[-1] == "cab_review"


@pytest.mark.asyncio
async def test_direct_priority_categories_reject_impact_and_urgency(engine):
    ticket = await engine.create("org-1", "ticket", TICKET_FIELDS)
    with pytest.raises(InvalidInputError):
        await engine.change_priority(ticket.id, impact="high")
    with pytest.raises(InvalidInputError):
        await engine.change_priority(ticket.id, urgency="high")

    change = await engine.create("org-1", "change", CHANGE_FIELDS)
    with pytest.raises(InvalidInputError):
        await engine.change_priority(change.id, urgency="high")
    assert (await engine.get(ticket.id)).version == 1


@pytest.mark.asyncio
async def test_priority_change_must_change_something(engine):
    ticket = await engine.create("org-1", "ticket", TICKET_FIELDS)
    with pytest.raises(InvalidInputError):
        await engine.change_priority(ticket.id, priority="high")
    with pytest.raises(InvalidInputError):
        await engine.change_priority(ticket.id, priority="blocker")


@pytest.mark.asyncio
async def test_priority_change_after_resolution_keeps_met_deadlines(engine):
    ticket = await engine.create("org-1", "ticket", TICKET_FIELDS)
    await engine.transition(ticket.id, "open")
    resolved = await engine.transition(ticket.id, "resolved")

    updated = await engine.change_priority(ticket.id, priority="critical")

    assert updated.priority == Priority.CRITICAL
    assert updated.sla.resolution_deadline == resolved.sla.resolution_deadline


# ========== reevaluate_sla / sla_status ==========

@pytest.mark.asyncio
async def test_reevaluate_within_deadline_is_a_no_op(engine, publisher, clock):
    ticket = await engine.create("org-1", "incident", INCIDENT_FIELDS)
    clock.advance(minutes=10)

    assert await engine.reevaluate_sla(ticket.id) == ticket
    assert publisher.names() == ["created"]


@pytest.mark.asyncio
async def test_reevaluate_marks_breach_once(engine, publisher, clock):
    ticket = await engine.create("org-1", "incident", INCIDENT_FIELDS)
    clock.advance(minutes=16)

    breached = await engine.reevaluate_sla(ticket.id)

    assert breached.sla.breached
    assert breached.sla.breached_at == T0 + minutes(16)
    assert breached.version == 2
    assert publisher.names() == ["created", "sla_breach"]
    assert publisher.events[-1].payload["breached_clocks"] == ["response"]

    clock.advance(minutes=500)
    again = await engine.reevaluate_sla(ticket.id)
    assert again == breached
    assert publisher.names() == ["created", "sla_breach"]


@pytest.mark.asyncio
async def test_paused_ticket_is_not_breached(engine, publisher, clock):
    ticket = await engine.create("org-1", "incident", INCIDENT_FIELDS)
    clock.advance(minutes=1)
    await engine.pause(ticket.id)
    clock.advance(minutes=1000)

    result = await engine.reevaluate_sla(ticket.id)

    assert not result.sla.breached
    assert "sla_breach" not in publisher.names()


@pytest.mark.asyncio
async def test_sla_status_is_read_only(engine, clock):
    ticket = await engine.create("org-1", "incident", INCIDENT_FIELDS)
    clock.advance(minutes=20)

    snapshot = await engine.sla_status(ticket.id)

    assert snapshot.response.status == SLAStatus.BREACHED
    assert snapshot.is_any_breached
    assert not snapshot.persisted_breached
    assert (await engine.get(ticket.id)).version == 1


# ========== concurrency ==========

@pytest.mark.asyncio
async def test_stale_version_is_rejected(engine):
    ticket = await engine.create("org-1", "ticket", TICKET_FIELDS)
    await engine.transition(ticket.id, "open")
    await engine.transition(ticket.id, "pending")
    await engine.transition(ticket.id, "open")
    at_v5 = await engine.pause(ticket.id)
    assert (at_v5.status, at_v5.version) == ("open", 5)

    winner = await engine.transition(ticket.id, "pending", expected_version=5)
    assert winner.version == 6

    with pytest.raises(ConcurrentModificationError) as exc_info:
        await engine.transition(ticket.id, "resolved", expected_version=5)

    assert exc_info.value.expected_version == 5
    assert exc_info.value.actual_version == 6
    assert exc_info.value.details["retryable"] is True
    assert (await engine.get(ticket.id)) == winner


@pytest.mark.asyncio
async def test_racing_writers_one_wins(registry, policy, publisher, clock):
    engine = WorkflowEngine(registry, policy, SlowLoadRepository(), publisher, clock=clock)
    ticket = await engine.create("org-1", "ticket", TICKET_FIELDS)

    results = await asyncio.gather(
        engine.transition(ticket.id, "open"),
        engine.transition(ticket.id, "closed"),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], ConcurrentModificationError)
    assert losers[0].actual_version == 2
    assert (await engine.get(ticket.id)) == winners[0]
    assert len(publisher.events) == 2


# ========== events ==========

@pytest.mark.asyncio
async def test_publisher_failure_does_not_undo_write(registry, policy, repository, clock):
    engine = WorkflowEngine(registry, policy, repository, FailingPublisher(), clock=clock)

    ticket = await engine.create("org-1", "ticket", TICKET_FIELDS)

    assert await repository.load(ticket.id) == ticket


@pytest.mark.asyncio
async def test_every_emitted_event_is_declared(engine, publisher, registry, clock):
    t = await engine.create("org-1", "ticket", TICKET_FIELDS)
    for status in ["open", "pending", "open"]:
        await engine.transition(t.id, status)
    await engine.pause(t.id)
    await engine.resume(t.id)
    await engine.change_priority(t.id, priority="critical")
    clock.advance(minutes=1000)
    await engine.reevaluate_sla(t.id)
    for status in ["resolved", "closed", "open"]:
        await engine.transition(t.id, status)

    i = await engine.create("org-1", "incident", INCIDENT_FIELDS)
    await engine.transition(i.id, "identified")
    await engine.change_priority(i.id, impact="low")
    for status in ["resolved", "investigating"]:
        await engine.transition(i.id, status)

    sr = await engine.create("org-1", "service_request", SERVICE_REQUEST_FIELDS)
    for status in ["pending_approval", "approved", "in_progress", "completed"]:
        await engine.transition(sr.id, status)

    c = await engine.create("org-1", "change", dict(CHANGE_FIELDS, risk="high"))
    for status in ["pending_approval", "approved", "scheduled", "implementing", "completed"]:
        await engine.transition(c.id, status)

    p = await engine.create("org-1", "problem", PROBLEM_FIELDS)
    for status in ["investigating", "known_error", "resolved", "closed", "investigating"]:
        await engine.transition(p.id, status)

    assert len(publisher.events) == 33
    for event in publisher.events:
        assert event.event_name in registry.notification_events(event.category)
