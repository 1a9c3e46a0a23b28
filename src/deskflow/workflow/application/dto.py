"""
Workflow Application DTOs
=========================

Data Transfer Objects for the workflow API layer.

Enum-like fields are plain strings here: the engine owns validation and
answers out-of-domain values with ``InvalidInputError``.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from deskflow.workflow.domain.entities import Ticket


# ========== Request DTOs ==========

class TicketCreateRequest(BaseModel):
    """Request model for ticket creation."""
    org_id: str = Field(..., min_length=1, description="Owning organisation")
    category: str = Field(..., description="ticket, incident, service_request, change or problem")
    fields: Dict[str, Any] = Field(default_factory=dict, description="Category-specific fields")
    actor: Optional[str] = Field(None, description="User performing the action")


class VersionedRequest(BaseModel):
    """Base for mutations guarded by an optimistic version check."""
    expected_version: Optional[int] = Field(None, ge=1, description="Version the caller last read")
    actor: Optional[str] = None


class TransitionRequest(VersionedRequest):
    to_status: str = Field(..., min_length=1, description="Target status")


class PriorityChangeRequest(VersionedRequest):
    priority: Optional[str] = None
    impact: Optional[str] = None
    urgency: Optional[str] = None


# ========== Response DTOs ==========

class TicketResponse(BaseModel):
    """Response model for a ticket."""
    id: str
    org_id: str
    category: str
    number: str
    title: str
    status: str
    priority: str
    impact: Optional[str] = None
    urgency: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    version: int
    sla: Dict[str, Any]
    details: Dict[str, Any]
    legal_transitions: List[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, ticket: Ticket, legal_transitions=()) -> "TicketResponse":
        data = ticket.to_dict()
        data["legal_transitions"] = sorted(legal_transitions)
        return cls(**data)


class TicketListResponse(BaseModel):
    tickets: List[TicketResponse]
    count: int


class ErrorResponse(BaseModel):
    """Error body rendered for every ApplicationException."""
    error: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
