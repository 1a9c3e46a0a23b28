"""
Workflow Controllers (API Routes)
=================================

FastAPI routes for ticket workflow and SLA endpoints.

Controllers are thin - they build a ``WorkflowEngine`` per request and
delegate. Typed errors propagate to ``application_exception_handler``.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from deskflow.infrastructure.database import get_session
from deskflow.workflow.application import (
    ErrorResponse,
    ITicketRepository,
    PriorityChangeRequest,
    TicketCreateRequest,
    TicketListResponse,
    TicketResponse,
    TransitionRequest,
    VersionedRequest,
    WorkflowEngine,
)
from deskflow.workflow.domain import Ticket, parse_category
from deskflow.workflow.infrastructure.repositories import SQLAlchemyTicketRepository

router = APIRouter(prefix="/workflow", tags=["Workflow"])


_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Value outside its allowed set"},
    404: {"model": ErrorResponse, "description": "Ticket not found"},
    409: {"model": ErrorResponse, "description": "Illegal transition or concurrent modification"},
    422: {"model": ErrorResponse, "description": "Missing or malformed fields"},
}

INCIDENT_CREATE_EXAMPLE = {
    "org_id": "org-1",
    "category": "incident",
    "fields": {
        "title": "Checkout API returning 502",
        "description": "Gateway errors on every checkout since 09:40 UTC",
        "severity": "major",
        "impact": "high",
        "urgency": "high",
        "affected_services": ["checkout-api"],
        "is_public": True
    },
    "actor": "agent-7"
}


# ========== Dependencies ==========

async def get_ticket_repository(
    session: AsyncSession = Depends(get_session)
) -> ITicketRepository:
    """Get ticket repository instance."""
    return SQLAlchemyTicketRepository(session)


async def get_workflow_engine(
    request: Request,
    repository: ITicketRepository = Depends(get_ticket_repository)
) -> WorkflowEngine:
    """Get workflow engine bound to the loaded registry and SLA policy."""
    state = request.app.state
    return WorkflowEngine(
        registry=state.workflow_registry,
        policy=state.sla_policy,
        repository=repository,
        publisher=state.event_publisher,
        clock=getattr(state, "clock", None),
    )


def _respond(engine: WorkflowEngine, ticket: Ticket) -> TicketResponse:
    return TicketResponse.from_domain(
        ticket,
        engine.registry.legal_targets(ticket.category, ticket.status),
    )


# ========== Route Handlers ==========

@router.post(
    "/tickets",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a ticket",
    description="""
    Create a ticket of any category in its initial status.

    **Categories**: `ticket`, `incident`, `service_request`, `change`, `problem`

    Incidents and problems derive priority from `impact` x `urgency`; the other
    categories take `priority` (default `medium`). All missing required fields
    are reported together.
    """,
    responses=_ERROR_RESPONSES,
    openapi_extra={"requestBody": {"content": {"application/json": {"example": INCIDENT_CREATE_EXAMPLE}}}},
)
async def create_ticket(
    body: TicketCreateRequest,
    engine: WorkflowEngine = Depends(get_workflow_engine)
):
    ticket = await engine.create(body.org_id, body.category, body.fields, actor=body.actor)
    return _respond(engine, ticket)


@router.get(
    "/tickets",
    response_model=TicketListResponse,
    summary="List tickets",
)
async def list_tickets(
    org_id: Optional[str] = Query(None, description="Filter by organisation"),
    category: Optional[str] = Query(None, description="Filter by category"),
    ticket_status: Optional[str] = Query(None, alias="status", description="Filter by status"),
    priority: Optional[str] = Query(None, description="Filter by priority"),
    limit: int = Query(100, ge=1, le=1000, description="Results per page"),
    offset: int = Query(0, ge=0, description="Page offset"),
    engine: WorkflowEngine = Depends(get_workflow_engine)
):
    filters = {
        "org_id": org_id,
        "category": parse_category(category) if category else None,
        "status": ticket_status,
        "priority": priority,
    }
    tickets = await engine.list(filters, limit=limit, offset=offset)
    return TicketListResponse(
        tickets=[_respond(engine, t) for t in tickets],
        count=len(tickets),
    )


@router.get(
    "/tickets/{ticket_id}",
    response_model=TicketResponse,
    summary="Get a ticket",
    responses={404: _ERROR_RESPONSES[404]},
)
async def get_ticket(
    ticket_id: str,
    engine: WorkflowEngine = Depends(get_workflow_engine)
):
    return _respond(engine, await engine.get(ticket_id))


@router.post(
    "/tickets/{ticket_id}/transitions",
    response_model=TicketResponse,
    summary="Change ticket status",
    description="""
    Move a ticket along one edge of its category workflow.

    Send `expected_version` to fail with 409 if someone else wrote the ticket
    since you read it. Illegal transitions answer 409 with `legal_statuses`.
    """,
    responses=_ERROR_RESPONSES,
)
async def transition_ticket(
    ticket_id: str,
    body: TransitionRequest,
    engine: WorkflowEngine = Depends(get_workflow_engine)
):
    ticket = await engine.transition(
        ticket_id, body.to_status, expected_version=body.expected_version, actor=body.actor
    )
    return _respond(engine, ticket)


@router.post(
    "/tickets/{ticket_id}/pause",
    response_model=TicketResponse,
    summary="Pause the SLA clock",
    responses=_ERROR_RESPONSES,
)
async def pause_sla(
    ticket_id: str,
    body: VersionedRequest,
    engine: WorkflowEngine = Depends(get_workflow_engine)
):
    ticket = await engine.pause(ticket_id, expected_version=body.expected_version, actor=body.actor)
    return _respond(engine, ticket)


@router.post(
    "/tickets/{ticket_id}/resume",
    response_model=TicketResponse,
    summary="Resume the SLA clock",
    responses=_ERROR_RESPONSES,
)
async def resume_sla(
    ticket_id: str,
    body: VersionedRequest,
    engine: WorkflowEngine = Depends(get_workflow_engine)
):
    ticket = await engine.resume(ticket_id, expected_version=body.expected_version, actor=body.actor)
    return _respond(engine, ticket)


@router.post(
    "/tickets/{ticket_id}/priority",
    response_model=TicketResponse,
    summary="Change priority, impact or urgency",
    responses=_ERROR_RESPONSES,
)
async def change_priority(
    ticket_id: str,
    body: PriorityChangeRequest,
    engine: WorkflowEngine = Depends(get_workflow_engine)
):
    ticket = await engine.change_priority(
        ticket_id,
        priority=body.priority,
        impact=body.impact,
        urgency=body.urgency,
        expected_version=body.expected_version,
        actor=body.actor,
    )
    return _respond(engine, ticket)


@router.get(
    "/tickets/{ticket_id}/sla",
    summary="Get live SLA status",
    responses={404: _ERROR_RESPONSES[404]},
)
async def get_sla_status(
    ticket_id: str,
    engine: WorkflowEngine = Depends(get_workflow_engine)
):
    snapshot = await engine.sla_status(ticket_id)
    return snapshot.to_dict()


@router.post(
    "/tickets/{ticket_id}/sla/evaluate",
    response_model=TicketResponse,
    summary="Persist a detected SLA breach",
    responses=_ERROR_RESPONSES,
)
async def evaluate_sla(
    ticket_id: str,
    engine: WorkflowEngine = Depends(get_workflow_engine)
):
    return _respond(engine, await engine.reevaluate_sla(ticket_id))


@router.get(
    "/categories/{category}",
    summary="Describe a category workflow",
    responses={400: _ERROR_RESPONSES[400]},
)
async def describe_category(
    category: str,
    request: Request
):
    registry = request.app.state.workflow_registry
    definition = registry.definition(parse_category(category))
    return {
        "category": definition.category.value,
        "initial_status": definition.initial_status,
        "statuses": sorted(definition.statuses),
        "transitions": {s: sorted(t) for s, t in sorted(definition.transitions.items())},
        "required_fields": sorted(definition.required_fields),
        "optional_fields": sorted(definition.optional_fields),
        "requires_approval": definition.requires_approval,
        "allows_public_visibility": definition.allows_public_visibility,
        "notification_events": sorted(definition.notification_events),
        "priority_method": definition.priority_method.value,
    }
