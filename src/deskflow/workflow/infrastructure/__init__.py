"""
Workflow Infrastructure Layer
=============================

Infrastructure implementations for the workflow module.

Contains:
- Models: SQLAlchemy ORM models
- Repositories: In-memory and SQLAlchemy ticket repositories
- Scheduler: APScheduler breach sweep
"""

from deskflow.workflow.infrastructure.models import TicketCounterModel, TicketModel
from deskflow.workflow.infrastructure.repositories import (
    InMemoryTicketRepository,
    SQLAlchemyTicketRepository,
)
from deskflow.workflow.infrastructure.scheduler import SLAScheduler, sweep_breaches

__all__ = [
    "TicketModel",
    "TicketCounterModel",
    "InMemoryTicketRepository",
    "SQLAlchemyTicketRepository",
    "SLAScheduler",
    "sweep_breaches",
]
