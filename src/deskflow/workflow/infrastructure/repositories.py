"""
Workflow Infrastructure Repositories
====================================

Concrete implementations of ``ITicketRepository``.

- ``InMemoryTicketRepository``: process-local, lock-guarded. Tests and
  single-process deployments.
- ``SQLAlchemyTicketRepository``: async SQLAlchemy. Compare-and-swap is a
  conditional ``UPDATE ... WHERE version = :expected``; counters are a single
  ``INSERT ... ON CONFLICT DO UPDATE ... RETURNING``.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from deskflow.config import ImpactLevel, Priority, TicketCategory, UrgencyLevel
from deskflow.core.exceptions import RepositoryException
from deskflow.shared.infrastructure.logging import get_logger
from deskflow.sla.domain.value_objects import SLAState
from deskflow.workflow.application.ports import ITicketRepository
from deskflow.workflow.domain.entities import Ticket, details_from_dict, details_to_dict
from deskflow.workflow.infrastructure.models import TicketCounterModel, TicketModel

logger = get_logger(__name__)


def _matches(ticket: Ticket, filters: dict) -> bool:
    for key in ("org_id", "category", "status", "priority"):
        wanted = filters.get(key)
        if wanted is None:
            continue
        actual = getattr(ticket, key)
        if getattr(actual, "value", actual) != getattr(wanted, "value", wanted):
            return False
    return True


class InMemoryTicketRepository(ITicketRepository):
    """
    Dict-backed repository.

    A single ``threading.Lock`` makes compare-and-swap and counter increments
    atomic even when callers run on different threads or event loops.
    """

    def __init__(self):
        self._tickets: Dict[str, Ticket] = {}
        self._counters: Dict[Tuple[str, TicketCategory], int] = {}
        self._lock = threading.Lock()

    async def load(self, ticket_id: str) -> Optional[Ticket]:
        with self._lock:
            return self._tickets.get(ticket_id)

    async def compare_and_swap(
        self,
        ticket_id: str,
        expected_version: int,
        ticket: Ticket
    ) -> bool:
        with self._lock:
            current = self._tickets.get(ticket_id)
            current_version = current.version if current is not None else 0
            if current_version != expected_version:
                return False
            self._tickets[ticket_id] = ticket
            return True

    async def atomic_increment(self, org_id: str, category: TicketCategory) -> int:
        key = (org_id, category)
        with self._lock:
            value = self._counters.get(key, 0) + 1
            self._counters[key] = value
            return value

    async def list_active(self, limit: int = 500) -> List[Ticket]:
        with self._lock:
            tickets = list(self._tickets.values())
        active = [t for t in tickets if t.sla.resolved_at is None and not t.sla.breached]
        active.sort(key=lambda t: t.sla.resolution_deadline)
        return active[:limit]

    async def list(
        self,
        filters: dict,
        limit: int = 100,
        offset: int = 0
    ) -> List[Ticket]:
        with self._lock:
            tickets = [t for t in self._tickets.values() if _matches(t, filters)]
        tickets.sort(key=lambda t: t.created_at, reverse=True)
        return tickets[offset:offset + limit]


# ========== SQLAlchemy ==========

def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_row(ticket: Ticket) -> dict:
    sla = ticket.sla
    return {
        "id": ticket.id,
        "org_id": ticket.org_id,
        "category": ticket.category.value,
        "number": ticket.number,
        "title": ticket.title,
        "status": ticket.status,
        "priority": ticket.priority.value,
        "impact": ticket.impact.value if ticket.impact else None,
        "urgency": ticket.urgency.value if ticket.urgency else None,
        "version": ticket.version,
        "created_at": ticket.created_at,
        "updated_at": ticket.updated_at,
        "sla_started_at": sla.started_at,
        "sla_response_budget_minutes": sla.response_budget_minutes,
        "sla_resolution_budget_minutes": sla.resolution_budget_minutes,
        "sla_response_deadline": sla.response_deadline,
        "sla_resolution_deadline": sla.resolution_deadline,
        "sla_paused_at": sla.paused_at,
        "sla_total_paused_seconds": sla.total_paused.total_seconds(),
        "sla_breached": sla.breached,
        "sla_breached_at": sla.breached_at,
        "sla_responded_at": sla.responded_at,
        "sla_resolved_at": sla.resolved_at,
        "details": details_to_dict(ticket.details),
    }


def _to_domain(model: TicketModel) -> Ticket:
    sla = SLAState(
        started_at=_aware(model.sla_started_at),
        response_budget_minutes=model.sla_response_budget_minutes,
        resolution_budget_minutes=model.sla_resolution_budget_minutes,
        response_deadline=_aware(model.sla_response_deadline),
        resolution_deadline=_aware(model.sla_resolution_deadline),
        paused_at=_aware(model.sla_paused_at),
        total_paused=timedelta(seconds=model.sla_total_paused_seconds),
        breached=model.sla_breached,
        breached_at=_aware(model.sla_breached_at),
        responded_at=_aware(model.sla_responded_at),
        resolved_at=_aware(model.sla_resolved_at),
    )
    return Ticket(
        id=model.id,
        org_id=model.org_id,
        category=TicketCategory(model.category),
        number=model.number,
        title=model.title,
        status=model.status,
        priority=Priority(model.priority),
        impact=ImpactLevel(model.impact) if model.impact else None,
        urgency=UrgencyLevel(model.urgency) if model.urgency else None,
        created_at=_aware(model.created_at),
        updated_at=_aware(model.updated_at),
        sla=sla,
        details=details_from_dict(model.details),
        version=model.version,
    )


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of the ticket repository.

    Every successful write is committed before returning so the engine only
    publishes events for durable state.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def load(self, ticket_id: str) -> Optional[Ticket]:
        stmt = (
            select(TicketModel)
            .where(TicketModel.id == ticket_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _to_domain(model) if model else None

    async def compare_and_swap(
        self,
        ticket_id: str,
        expected_version: int,
        ticket: Ticket
    ) -> bool:
        if expected_version == 0:
            return await self._insert(ticket)

        row = _to_row(ticket)
        row.pop("id")
        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket_id, TicketModel.version == expected_version)
            .values(**row)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            await self._session.rollback()
            return False
        await self._session.commit()
        return True

    async def _insert(self, ticket: Ticket) -> bool:
        self._session.add(TicketModel(**_to_row(ticket)))
        try:
            await self._session.flush()
        except IntegrityError:
            await self._session.rollback()
            logger.warning("Ticket insert conflicted", extra={"ticket_id": ticket.id})
            return False
        await self._session.commit()
        return True

    async def atomic_increment(self, org_id: str, category: TicketCategory) -> int:
        dialect = self._session.get_bind().dialect.name
        if dialect == "postgresql":
            insert = postgresql.insert
        elif dialect == "sqlite":
            insert = sqlite.insert
        else:
            raise RepositoryException(
                f"Atomic counters are not supported on {dialect}",
                {"dialect": dialect}
            )

        stmt = insert(TicketCounterModel).values(org_id=org_id, category=category.value, value=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=[TicketCounterModel.org_id, TicketCounterModel.category],
            set_={"value": TicketCounterModel.value + 1},
        ).returning(TicketCounterModel.value)

        result = await self._session.execute(stmt)
        value = result.scalar_one()
        await self._session.commit()
        return value

    async def list_active(self, limit: int = 500) -> List[Ticket]:
        stmt = (
            select(TicketModel)
            .where(TicketModel.sla_resolved_at.is_(None), TicketModel.sla_breached.is_(False))
            .order_by(TicketModel.sla_resolution_deadline)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [_to_domain(m) for m in result.scalars().all()]

    async def list(
        self,
        filters: dict,
        limit: int = 100,
        offset: int = 0
    ) -> List[Ticket]:
        """List tickets with filters."""
        stmt = select(TicketModel)

        for key in ("org_id", "category", "status", "priority"):
            value = filters.get(key)
            if value is not None:
                stmt = stmt.where(getattr(TicketModel, key) == getattr(value, "value", value))

        stmt = stmt.order_by(TicketModel.created_at.desc()).limit(limit).offset(offset)
        result = await self._session.execute(stmt)
        return [_to_domain(m) for m in result.scalars().all()]
