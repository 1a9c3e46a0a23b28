"""
Workflow Definitions
====================

Per-category workflow value objects and the product's built-in table.

A definition is data only. Consistency checks (undeclared statuses,
self-loops, undeclared events) run once in ``WorkflowRegistry`` at load time.
"""

from typing import Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field

from deskflow.config import (
    TicketCategory, PriorityMethod,
    EVENT_CREATED, EVENT_STATUS_CHANGED, EVENT_SLA_BREACH,
    EVENT_SLA_PAUSED, EVENT_SLA_RESUMED, EVENT_PRIORITY_CHANGED,
    EVENT_SEVERITY_CHANGED, EVENT_CAB_REVIEW, EVENT_SUBMITTED_FOR_APPROVAL,
)


class WorkflowDefinition(BaseModel):
    """
    Workflow rules for a single ticket category.

    ``transitions`` maps every status to the statuses reachable from it in
    one step. Terminal statuses map to an empty set.
    """
    model_config = ConfigDict(frozen=True)

    category: TicketCategory
    statuses: FrozenSet[str]
    initial_status: str
    transitions: Dict[str, FrozenSet[str]]
    required_fields: FrozenSet[str] = Field(default_factory=frozenset)
    optional_fields: FrozenSet[str] = Field(default_factory=frozenset)
    requires_approval: bool = False
    allows_public_visibility: bool = False
    notification_events: FrozenSet[str] = Field(default_factory=frozenset)

    priority_method: PriorityMethod = PriorityMethod.PRIORITY
    number_prefix: str = Field(min_length=1, max_length=8)
    resolution_statuses: FrozenSet[str] = Field(default_factory=frozenset)
    sla_paused_statuses: FrozenSet[str] = Field(default_factory=frozenset)
    transition_events: Dict[str, str] = Field(default_factory=dict)
    approval_status: Optional[str] = None
    priority_event: str = EVENT_PRIORITY_CHANGED

    def legal_targets(self, from_status: str) -> FrozenSet[str]:
        return self.transitions.get(from_status, frozenset())

    def event_for_transition(self, to_status: str) -> str:
        """Event emitted when a ticket enters ``to_status``."""
        if to_status in self.transition_events:
            return self.transition_events[to_status]
        if to_status in self.notification_events:
            return to_status
        return EVENT_STATUS_CHANGED


class WorkflowTable(BaseModel):
    """Root document of a workflow YAML file."""
    workflows: Dict[TicketCategory, WorkflowDefinition]


def _edges(**adjacency) -> Dict[str, FrozenSet[str]]:
    return {status: frozenset(targets) for status, targets in adjacency.items()}


_SLA_EVENTS = {EVENT_SLA_BREACH, EVENT_SLA_PAUSED, EVENT_SLA_RESUMED}


DEFAULT_WORKFLOWS: Dict[TicketCategory, WorkflowDefinition] = {
    TicketCategory.TICKET: WorkflowDefinition(
        category=TicketCategory.TICKET,
        statuses=frozenset({"new", "open", "pending", "resolved", "closed"}),
        initial_status="new",
        transitions=_edges(
            new=["open", "closed"],
            open=["pending", "resolved", "closed"],
            pending=["open", "resolved", "closed"],
            resolved=["open", "closed"],
            closed=["open"],
        ),
        required_fields=frozenset({"title", "description", "priority", "category", "requester_id"}),
        optional_fields=frozenset({"assigned_to", "client_id", "tags", "linked_assets"}),
        notification_events=frozenset({
            EVENT_CREATED, "assigned", EVENT_STATUS_CHANGED, "resolved", "closed",
            "comment_added", EVENT_PRIORITY_CHANGED,
        } | _SLA_EVENTS),
        number_prefix="TKT",
        resolution_statuses=frozenset({"resolved", "closed"}),
        sla_paused_statuses=frozenset({"pending"}),
    ),

    TicketCategory.INCIDENT: WorkflowDefinition(
        category=TicketCategory.INCIDENT,
        statuses=frozenset({"investigating", "identified", "monitoring", "resolved"}),
        initial_status="investigating",
        transitions=_edges(
            investigating=["identified", "resolved"],
            identified=["monitoring", "resolved"],
            monitoring=["investigating", "resolved"],
            resolved=["investigating"],
        ),
        required_fields=frozenset({
            "title", "description", "severity", "impact", "urgency",
            "affected_services", "is_public",
        }),
        optional_fields=frozenset({"assigned_to", "client_ids", "tags", "related_problem_id"}),
        allows_public_visibility=True,
        notification_events=frozenset({
            EVENT_CREATED, "assigned", EVENT_STATUS_CHANGED, EVENT_SEVERITY_CHANGED,
            "resolved", "update_posted", "public_update",
        } | _SLA_EVENTS),
        priority_method=PriorityMethod.IMPACT_URGENCY_MATRIX,
        number_prefix="INC",
        resolution_statuses=frozenset({"resolved"}),
        priority_event=EVENT_SEVERITY_CHANGED,
    ),

    TicketCategory.SERVICE_REQUEST: WorkflowDefinition(
        category=TicketCategory.SERVICE_REQUEST,
        statuses=frozenset({
            "submitted", "pending_approval", "approved", "rejected",
            "in_progress", "completed", "cancelled",
        }),
        initial_status="submitted",
        transitions=_edges(
            submitted=["pending_approval", "in_progress", "cancelled"],
            pending_approval=["approved", "rejected", "cancelled"],
            approved=["in_progress", "cancelled"],
            rejected=["submitted"],
            in_progress=["completed", "cancelled"],
            completed=[],
            cancelled=[],
        ),
        required_fields=frozenset({"title", "description", "priority", "category", "requester_id"}),
        optional_fields=frozenset({"client_id", "service_id", "form_data", "assigned_to", "tags"}),
        requires_approval=True,
        notification_events=frozenset({
            EVENT_CREATED, "submitted", "approval_requested", "approved", "rejected",
            "assigned", EVENT_STATUS_CHANGED, "completed", "cancelled",
            EVENT_PRIORITY_CHANGED,
        } | _SLA_EVENTS),
        number_prefix="SR",
        resolution_statuses=frozenset({"completed", "cancelled", "rejected"}),
        sla_paused_statuses=frozenset({"pending_approval"}),
        transition_events={"pending_approval": "approval_requested"},
        approval_status="pending_approval",
    ),

    TicketCategory.CHANGE: WorkflowDefinition(
        category=TicketCategory.CHANGE,
        statuses=frozenset({
            "draft", "pending_approval", "approved", "rejected",
            "scheduled", "implementing", "completed", "cancelled",
        }),
        initial_status="draft",
        transitions=_edges(
            draft=["pending_approval", "cancelled"],
            pending_approval=["approved", "rejected", "draft", "cancelled"],
            approved=["scheduled", "cancelled"],
            rejected=["draft"],
            scheduled=["implementing", "cancelled"],
            implementing=["completed", "cancelled"],
            completed=[],
            cancelled=["draft"],
        ),
        required_fields=frozenset({
            "title", "description", "risk", "impact", "category", "requested_by",
            "planned_start_date", "planned_end_date", "backout_plan",
        }),
        optional_fields=frozenset({
            "affected_assets", "test_plan", "implementation_plan", "assigned_to",
            "tags", "cab_members", "cab_notes",
        }),
        requires_approval=True,
        notification_events=frozenset({
            EVENT_CREATED, EVENT_SUBMITTED_FOR_APPROVAL, EVENT_CAB_REVIEW, "approved",
            "rejected", "scheduled", "implementation_started", "completed",
            "cancelled", "date_approaching", EVENT_STATUS_CHANGED,
            EVENT_PRIORITY_CHANGED,
        } | _SLA_EVENTS),
        number_prefix="CHG",
        resolution_statuses=frozenset({"completed", "cancelled", "rejected"}),
        sla_paused_statuses=frozenset({"pending_approval"}),
        transition_events={
            "pending_approval": EVENT_SUBMITTED_FOR_APPROVAL,
            "implementing": "implementation_started",
        },
        approval_status="pending_approval",
    ),

    TicketCategory.PROBLEM: WorkflowDefinition(
        category=TicketCategory.PROBLEM,
        statuses=frozenset({"open", "investigating", "known_error", "resolved", "closed"}),
        initial_status="open",
        transitions=_edges(
            open=["investigating", "closed"],
            investigating=["known_error", "resolved", "closed"],
            known_error=["resolved", "closed"],
            resolved=["investigating", "closed"],
            closed=["investigating"],
        ),
        required_fields=frozenset({
            "title", "description", "impact", "urgency", "category",
            "reported_by", "is_public",
        }),
        optional_fields=frozenset({
            "affected_services", "client_ids", "related_incidents", "assigned_to",
            "tags", "root_cause", "workaround", "solution",
        }),
        allows_public_visibility=True,
        notification_events=frozenset({
            EVENT_CREATED, "assigned", EVENT_STATUS_CHANGED, "root_cause_identified",
            "workaround_added", "solution_added", "known_error", "resolved", "closed",
            EVENT_PRIORITY_CHANGED,
        } | _SLA_EVENTS),
        priority_method=PriorityMethod.IMPACT_URGENCY_MATRIX,
        number_prefix="PRB",
        resolution_statuses=frozenset({"resolved", "closed"}),
    ),
}
