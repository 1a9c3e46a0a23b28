"""
Workflow Domain Entities
========================

The ticket aggregate, its per-category details, and the domain event the
engine emits after every successful write.

Category details are a tagged union discriminated on ``type``: an incident
ticket carries ``IncidentDetails`` only, so reading ``backout_plan`` off it
is an ``AttributeError`` rather than a silent ``None``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import (
    AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError,
    model_validator,
)

from deskflow.config import (
    ChangeRisk, ImpactLevel, Priority, TicketCategory, UrgencyLevel,
)
from deskflow.core.exceptions import ValidationException
from deskflow.sla.domain.value_objects import SLAState


# Earliest a change may start, counted from submission
CHANGE_LEAD_TIME: Dict[ChangeRisk, timedelta] = {
    ChangeRisk.LOW: timedelta(hours=24),
    ChangeRisk.MEDIUM: timedelta(hours=72),
    ChangeRisk.HIGH: timedelta(hours=168),
}
MIN_IMPLEMENTATION_WINDOW = timedelta(minutes=30)


# ========== Category details (tagged union) ==========

class _Details(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    description: str = ""
    # Free-form product label ("Hardware", "Network"); sent as ``category``
    classification: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("category", "classification"),
    )
    assigned_to: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class TicketDetails(_Details):
    type: Literal["ticket"] = "ticket"
    requester_id: Optional[str] = None
    client_id: Optional[str] = None
    linked_assets: List[str] = Field(default_factory=list)


class IncidentDetails(_Details):
    type: Literal["incident"] = "incident"
    severity: Optional[str] = None
    affected_services: List[str] = Field(default_factory=list)
    client_ids: List[str] = Field(default_factory=list)
    is_public: bool = False
    related_problem_id: Optional[str] = None


class ServiceRequestDetails(_Details):
    type: Literal["service_request"] = "service_request"
    requester_id: Optional[str] = None
    client_id: Optional[str] = None
    service_id: Optional[str] = None
    form_data: Dict[str, Any] = Field(default_factory=dict)


class ChangeDetails(_Details):
    type: Literal["change"] = "change"
    requested_by: Optional[str] = None
    risk: ChangeRisk
    impact: ImpactLevel
    planned_start_date: datetime
    planned_end_date: datetime
    backout_plan: str
    test_plan: Optional[str] = None
    implementation_plan: Optional[str] = None
    affected_assets: List[str] = Field(default_factory=list)
    cab_members: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def end_after_start(self) -> "ChangeDetails":
        if self.planned_end_date <= self.planned_start_date:
            raise ValueError("planned_end_date must be after planned_start_date")
        if self.planned_end_date - self.planned_start_date < MIN_IMPLEMENTATION_WINDOW:
            raise ValueError("implementation window must be at least 30 minutes")
        return self

    def check_schedule(self, now: datetime) -> None:
        """
        Enforce the risk level's minimum lead time before ``planned_start_date``.

        Only checked on submission; stored changes are not re-validated as
        their start date approaches.

        Raises:
            ValidationException: when the change starts too soon
        """
        start = self.planned_start_date
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        lead_time = CHANGE_LEAD_TIME[self.risk]
        if start - now >= lead_time:
            return

        hours = int(lead_time.total_seconds() // 3600)
        message = f"A {self.risk.value} risk change must be scheduled at least {hours} hours in advance"
        raise ValidationException(
            message,
            {
                "category": "change",
                "errors": [{"loc": ["planned_start_date"], "msg": message, "type": "lead_time"}],
                "risk": self.risk.value,
                "lead_time_hours": hours,
            }
        )

    @property
    def requires_cab(self) -> bool:
        """High risk always goes to CAB; lower risks only with enough impact."""
        if self.risk == ChangeRisk.HIGH:
            return True
        if self.risk == ChangeRisk.MEDIUM:
            return self.impact in (ImpactLevel.MEDIUM, ImpactLevel.HIGH)
        return self.impact == ImpactLevel.HIGH


class ProblemDetails(_Details):
    type: Literal["problem"] = "problem"
    reported_by: Optional[str] = None
    affected_services: List[str] = Field(default_factory=list)
    related_incidents: List[str] = Field(default_factory=list)
    client_ids: List[str] = Field(default_factory=list)
    is_public: bool = False
    root_cause: Optional[str] = None
    workaround: Optional[str] = None
    solution: Optional[str] = None


CategoryDetails = Annotated[
    Union[TicketDetails, IncidentDetails, ServiceRequestDetails, ChangeDetails, ProblemDetails],
    Field(discriminator="type"),
]

_details_adapter: TypeAdapter = TypeAdapter(CategoryDetails)


def build_details(category: TicketCategory, fields: Mapping[str, Any]):
    """
    Parse the creation payload into the details variant for ``category``.

    Raises:
        ValidationException: when a field has the wrong shape or value
    """
    try:
        return _details_adapter.validate_python({**fields, "type": category.value})
    except ValidationError as e:
        raise ValidationException(
            f"Invalid fields for {category.value}",
            {"category": category.value, "errors": e.errors(include_url=False, include_context=False)}
        ) from e


def details_from_dict(data: Mapping[str, Any]):
    """Rehydrate stored details; the ``type`` tag selects the variant."""
    return _details_adapter.validate_python(dict(data))


def details_to_dict(details) -> Dict[str, Any]:
    return details.model_dump(mode="json")


# ========== Ticket aggregate ==========

@dataclass(frozen=True)
class Ticket:
    """
    Ticket aggregate.

    Frozen: the engine derives a new instance for every change and persists
    it with a compare-and-swap on ``version``.
    """

    id: str
    org_id: str
    category: TicketCategory
    number: str
    title: str
    status: str
    priority: Priority
    created_at: datetime
    updated_at: datetime
    sla: SLAState
    details: Any
    impact: Optional[ImpactLevel] = None
    urgency: Optional[UrgencyLevel] = None
    version: int = 1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "category": self.category.value,
            "number": self.number,
            "title": self.title,
            "status": self.status,
            "priority": self.priority.value,
            "impact": self.impact.value if self.impact else None,
            "urgency": self.urgency.value if self.urgency else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "version": self.version,
            "sla": self.sla.to_dict(),
            "details": details_to_dict(self.details),
        }


# ========== Domain events ==========

@dataclass(frozen=True)
class DomainEvent:
    """
    Notification emitted after a committed write.

    ``event_name`` is always one of the category's declared notification
    events.
    """
    category: TicketCategory
    ticket_id: str
    event_name: str
    occurred_at: datetime
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "category": self.category.value,
            "ticket_id": self.ticket_id,
            "event_name": self.event_name,
            "occurred_at": self.occurred_at.isoformat(),
            "payload": self.payload,
        }
