"""
SLA Domain Entities
====================

Read models describing the SLA position of a ticket at an instant.

Following Domain-Driven Design principles, these objects contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from deskflow.config import SLAStatus, SLAType
from deskflow.sla.domain.clock import SLAClock
from deskflow.sla.domain.value_objects import SLAState


_URGENCY_ORDER = [
    SLAStatus.BREACHED,
    SLAStatus.CRITICAL,
    SLAStatus.AT_RISK,
    SLAStatus.ON_TIME,
    SLAStatus.PAUSED,
    SLAStatus.MET,
]


@dataclass
class SLAClockReading:
    """One clock (response or resolution) as seen at ``evaluated_at``."""
    sla_type: SLAType
    deadline: datetime
    remaining_seconds: float
    percent_elapsed: float
    is_breached: bool
    status: SLAStatus
    met_at: Optional[datetime] = None


@dataclass
class SLASnapshot:
    """
    SLA metrics for a ticket.

    Contains both clock readings plus the persisted breach flag, which may
    lag the live reading until the engine re-evaluates the ticket.
    """
    ticket_id: str
    evaluated_at: datetime
    response: SLAClockReading
    resolution: SLAClockReading
    paused: bool
    persisted_breached: bool

    # Overall status (computed field)
    is_any_breached: bool = field(init=False)

    def __post_init__(self):
        self.is_any_breached = self.response.is_breached or self.resolution.is_breached

    @property
    def most_urgent_status(self) -> SLAStatus:
        return min(
            (self.response.status, self.resolution.status),
            key=_URGENCY_ORDER.index,
        )

    @classmethod
    def capture(
        cls,
        clock: SLAClock,
        ticket_id: str,
        state: SLAState,
        now: datetime
    ) -> "SLASnapshot":
        def _reading(sla_type: SLAType) -> SLAClockReading:
            return SLAClockReading(
                sla_type=sla_type,
                deadline=state.deadline(sla_type),
                remaining_seconds=clock.remaining(state, now, sla_type).total_seconds(),
                percent_elapsed=round(clock.percent_elapsed(state, now, sla_type), 2),
                is_breached=clock.is_breached(state, now, sla_type),
                status=clock.classify(state, now, sla_type),
                met_at=state.met_at(sla_type),
            )

        return cls(
            ticket_id=ticket_id,
            evaluated_at=now,
            response=_reading(SLAType.RESPONSE),
            resolution=_reading(SLAType.RESOLUTION),
            paused=state.is_paused,
            persisted_breached=state.breached,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        def _reading(r: SLAClockReading) -> dict:
            return {
                "deadline": r.deadline.isoformat(),
                "remaining_seconds": r.remaining_seconds,
                "percent_elapsed": r.percent_elapsed,
                "is_breached": r.is_breached,
                "status": r.status.value,
                "met_at": r.met_at.isoformat() if r.met_at else None,
            }

        return {
            "ticket_id": self.ticket_id,
            "evaluated_at": self.evaluated_at.isoformat(),
            "response": _reading(self.response),
            "resolution": _reading(self.resolution),
            "overall": {
                "status": self.most_urgent_status.value,
                "is_any_breached": self.is_any_breached,
                "paused": self.paused,
                "persisted_breached": self.persisted_breached,
            },
        }
