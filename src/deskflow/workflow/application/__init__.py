"""
Workflow Application Layer
==========================

Application services, ports and DTOs for the workflow module.
"""

from deskflow.workflow.application.ports import (
    IClock,
    IEventPublisher,
    ITicketRepository,
    InMemoryEventPublisher,
    LoggingEventPublisher,
    SystemClock,
)
from deskflow.workflow.application.sequencer import TicketSequencer
from deskflow.workflow.application.services import WorkflowEngine
from deskflow.workflow.application.dto import (
    ErrorResponse,
    PriorityChangeRequest,
    TicketCreateRequest,
    TicketListResponse,
    TicketResponse,
    TransitionRequest,
    VersionedRequest,
)

__all__ = [
    "IClock",
    "IEventPublisher",
    "ITicketRepository",
    "InMemoryEventPublisher",
    "LoggingEventPublisher",
    "SystemClock",
    "TicketSequencer",
    "WorkflowEngine",
    "ErrorResponse",
    "PriorityChangeRequest",
    "TicketCreateRequest",
    "TicketListResponse",
    "TicketResponse",
    "TransitionRequest",
    "VersionedRequest",
]
