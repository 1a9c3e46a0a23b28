"""
SLA Domain Layer
================

Domain layer for SLA tracking.

Contains:
- Value Objects: SLAPolicyTable, SLABudget, SLAState
- Domain Services: SLAClock (deadline, pause and breach arithmetic)
- Read Models: SLASnapshot

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from deskflow.sla.domain.value_objects import (
    SLABudget,
    SLAPolicyTable,
    SLAState,
    DEFAULT_SLA_TARGETS,
)
from deskflow.sla.domain.clock import SLAClock
from deskflow.sla.domain.entities import SLAClockReading, SLASnapshot

__all__ = [
    "SLABudget",
    "SLAPolicyTable",
    "SLAState",
    "DEFAULT_SLA_TARGETS",
    "SLAClock",
    "SLAClockReading",
    "SLASnapshot",
]
