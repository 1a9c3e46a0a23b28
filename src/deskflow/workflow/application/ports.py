"""
Workflow Ports
==============

Abstractions the engine depends on (Dependency Inversion): ticket
persistence, the wall clock, and the outbound event stream.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional

from deskflow.config import TicketCategory
from deskflow.shared.infrastructure.logging import get_logger
from deskflow.workflow.domain.entities import DomainEvent, Ticket

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """Interface for ticket storage with optimistic concurrency."""

    @abstractmethod
    async def load(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID, or None."""

    @abstractmethod
    async def compare_and_swap(
        self,
        ticket_id: str,
        expected_version: int,
        ticket: Ticket
    ) -> bool:
        """
        Store ``ticket`` only if the stored version equals ``expected_version``.

        ``expected_version=0`` means insert-if-absent. Returns False when the
        check fails; nothing is written in that case.
        """

    @abstractmethod
    async def atomic_increment(self, org_id: str, category: TicketCategory) -> int:
        """Increment and return the (org, category) counter. Never repeats a value."""

    @abstractmethod
    async def list_active(self, limit: int = 500) -> List[Ticket]:
        """Tickets whose resolution clock is still running and not yet breached."""

    @abstractmethod
    async def list(
        self,
        filters: dict,
        limit: int = 100,
        offset: int = 0
    ) -> List[Ticket]:
        """List tickets matching ``org_id``/``category``/``status`` filters."""


class IClock(ABC):
    """Source of the current instant."""

    @abstractmethod
    def now(self) -> datetime:
        """Timezone-aware current time."""


class SystemClock(IClock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class IEventPublisher(ABC):
    """Outbound domain event stream (notifications, emails, webhooks)."""

    @abstractmethod
    async def publish(self, event: DomainEvent) -> None:
        """Publish one event. May raise; the engine logs and carries on."""


# ========== Simple publishers ==========

class InMemoryEventPublisher(IEventPublisher):
    """Collects events in order. Used by tests and local runs."""

    def __init__(self):
        self.events: List[DomainEvent] = []

    async def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    def names(self) -> List[str]:
        return [e.event_name for e in self.events]


class LoggingEventPublisher(IEventPublisher):
    """Writes every event to the structured log."""

    async def publish(self, event: DomainEvent) -> None:
        logger.info(
            "Domain event",
            extra={
                "event_name": event.event_name,
                "ticket_id": event.ticket_id,
                "category": event.category.value,
                "payload": event.payload,
            }
        )
