"""
SLA Value Objects
==================

Immutable value objects for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from deskflow.config import Priority, SLAType, VALID_PRIORITIES
from deskflow.core.exceptions import ConfigurationException


class SLABudget(BaseModel):
    """Response and resolution allowance for one priority level, in minutes."""
    model_config = ConfigDict(frozen=True)

    response: int = Field(gt=0, description="Minutes to first response")
    resolution: int = Field(gt=0, description="Minutes to resolution")

    @model_validator(mode="after")
    def response_within_resolution(self) -> "SLABudget":
        if self.response > self.resolution:
            raise ValueError("response budget cannot exceed resolution budget")
        return self


DEFAULT_SLA_TARGETS: Dict[str, Dict[str, int]] = {
    "critical": {"response": 15, "resolution": 240},
    "high": {"response": 60, "resolution": 480},
    "medium": {"response": 240, "resolution": 1440},
    "low": {"response": 480, "resolution": 2880},
}


class SLAPolicyTable(BaseModel):
    """
    Priority -> SLA budgets, loaded once at startup.

    Unlike a per-request lookup with fallbacks, a missing priority is a
    configuration error: the table must cover every level.
    """
    model_config = ConfigDict(frozen=True)

    sla_targets: Dict[Priority, SLABudget]

    @model_validator(mode="after")
    def covers_every_priority(self) -> "SLAPolicyTable":
        missing = [p.value for p in Priority if p not in self.sla_targets]
        if missing:
            raise ValueError(f"SLA policy missing priorities: {missing}")
        return self

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SLAPolicyTable":
        """
        Build a table from ``{"sla_targets": {priority: {response, resolution}}}``.

        Raises:
            ConfigurationException: on any missing level or invalid budget
        """
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationException(
                "Invalid SLA policy table",
                {"errors": e.errors(include_url=False), "expected_priorities": VALID_PRIORITIES}
            ) from e

    @classmethod
    def default(cls) -> "SLAPolicyTable":
        return cls.from_mapping({"sla_targets": DEFAULT_SLA_TARGETS})

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "SLAPolicyTable":
        path = Path(path)
        if not path.exists():
            raise ConfigurationException(f"SLA policy file not found: {path}")
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        return cls.from_mapping(data)

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "SLAPolicyTable":
        return cls.from_yaml(path) if path else cls.default()

    def budget(self, priority: Priority) -> SLABudget:
        return self.sla_targets[priority]


@dataclass(frozen=True)
class SLAState:
    """
    SLA clock embedded in a ticket.

    Deadlines are absolute: ``started_at + budget + total_paused``. Every
    resume pushes both deadlines forward by the paused interval.
    """
    started_at: datetime
    response_budget_minutes: int
    resolution_budget_minutes: int
    response_deadline: datetime
    resolution_deadline: datetime
    paused_at: Optional[datetime] = None
    total_paused: timedelta = timedelta(0)
    breached: bool = False
    breached_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @property
    def is_paused(self) -> bool:
        return self.paused_at is not None

    @property
    def total_paused_minutes(self) -> float:
        return self.total_paused.total_seconds() / 60

    def deadline(self, sla_type: SLAType) -> datetime:
        if sla_type == SLAType.RESPONSE:
            return self.response_deadline
        return self.resolution_deadline

    def budget_minutes(self, sla_type: SLAType) -> int:
        if sla_type == SLAType.RESPONSE:
            return self.response_budget_minutes
        return self.resolution_budget_minutes

    def met_at(self, sla_type: SLAType) -> Optional[datetime]:
        if sla_type == SLAType.RESPONSE:
            return self.responded_at
        return self.resolved_at

    def to_dict(self) -> dict:
        """Convert to a JSON-friendly dictionary."""
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "started_at": self.started_at.isoformat(),
            "response_budget_minutes": self.response_budget_minutes,
            "resolution_budget_minutes": self.resolution_budget_minutes,
            "response_deadline": self.response_deadline.isoformat(),
            "resolution_deadline": self.resolution_deadline.isoformat(),
            "paused_at": _iso(self.paused_at),
            "total_paused_minutes": self.total_paused_minutes,
            "breached": self.breached,
            "breached_at": _iso(self.breached_at),
            "responded_at": _iso(self.responded_at),
            "resolved_at": _iso(self.resolved_at),
        }
