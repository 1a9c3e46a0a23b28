"""
Workflow Infrastructure Models
==============================

SQLAlchemy ORM models for the workflow module.

The SLA clock is flattened into ``sla_*`` columns so the breach sweep can
filter on it; category details are stored as JSON tagged with ``type``.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from deskflow.infrastructure.database import Base


class TicketModel(Base):
    """
    Database model for the Ticket aggregate.

    Maps to the 'workflow_tickets' table. ``version`` is the optimistic
    concurrency token.
    """
    __tablename__ = "workflow_tickets"

    # Primary key
    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # Identity
    org_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    category: Mapped[str] = mapped_column(String(50), index=True, nullable=False)
    number: Mapped[str] = mapped_column(String(32), nullable=False)

    # Workflow state
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(String(50), index=True, nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False)
    impact: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    urgency: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    # SLA clock
    sla_started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sla_response_budget_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    sla_resolution_budget_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    sla_response_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sla_resolution_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)
    sla_paused_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_total_paused_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    sla_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sla_breached_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Category details
    details: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("org_id", "category", "number", name="uq_workflow_ticket_number"),
    )


class TicketCounterModel(Base):
    """
    Per (org, category) number sequence.

    Maps to the 'workflow_ticket_counters' table. Incremented with a single
    upsert statement so concurrent creates never read the same value.
    """
    __tablename__ = "workflow_ticket_counters"

    org_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    category: Mapped[str] = mapped_column(String(50), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
