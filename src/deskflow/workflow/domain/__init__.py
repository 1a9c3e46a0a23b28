"""
Workflow Domain Layer
=====================

Domain layer for the unified ticket workflow.

Contains:
- Value Objects: WorkflowDefinition, category details variants
- Entities: Ticket, DomainEvent
- Domain Services: PriorityCalculator, WorkflowRegistry, TransitionValidator

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from deskflow.workflow.domain.priority import (
    IMPACT_URGENCY_MATRIX,
    PriorityCalculator,
    parse_impact,
    parse_priority,
    parse_urgency,
)
from deskflow.workflow.domain.definitions import (
    DEFAULT_WORKFLOWS,
    WorkflowDefinition,
    WorkflowTable,
)
from deskflow.workflow.domain.registry import WorkflowRegistry, check_definition
from deskflow.workflow.domain.validator import TransitionValidator, is_empty, parse_category
from deskflow.workflow.domain.entities import (
    CategoryDetails,
    ChangeDetails,
    DomainEvent,
    IncidentDetails,
    ProblemDetails,
    ServiceRequestDetails,
    Ticket,
    TicketDetails,
    build_details,
    details_from_dict,
    details_to_dict,
)

__all__ = [
    "IMPACT_URGENCY_MATRIX",
    "PriorityCalculator",
    "parse_impact",
    "parse_priority",
    "parse_urgency",
    "DEFAULT_WORKFLOWS",
    "WorkflowDefinition",
    "WorkflowTable",
    "WorkflowRegistry",
    "check_definition",
    "TransitionValidator",
    "is_empty",
    "parse_category",
    "CategoryDetails",
    "ChangeDetails",
    "DomainEvent",
    "IncidentDetails",
    "ProblemDetails",
    "ServiceRequestDetails",
    "Ticket",
    "TicketDetails",
    "build_details",
    "details_from_dict",
    "details_to_dict",
]
