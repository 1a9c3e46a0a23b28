"""
Configuration Module
====================

Application settings and shared enumerations using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="deskflow", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root logging level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/deskflow",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Workflow / SLA Configuration ==========
    workflow_config_path: Optional[Path] = Field(
        default=None,
        description="Optional YAML file replacing the built-in workflow table"
    )
    sla_policy_path: Optional[Path] = Field(
        default=None,
        description="Optional YAML file replacing the built-in SLA budgets"
    )
    sla_evaluation_interval: int = Field(
        default=60,
        description="Seconds between background breach sweeps (0 disables)",
        ge=0
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "test", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# ========== Constants ==========

class TicketCategory(str, Enum):
    """Closed set of ticket categories handled by the workflow engine."""
    TICKET = "ticket"
    INCIDENT = "incident"
    SERVICE_REQUEST = "service_request"
    CHANGE = "change"
    PROBLEM = "problem"


class Priority(str, Enum):
    """Ticket priority levels."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ImpactLevel(str, Enum):
    """Impact levels used by the impact x urgency matrix."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class UrgencyLevel(str, Enum):
    """Urgency levels used by the impact x urgency matrix."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PriorityMethod(str, Enum):
    """How a category derives its priority at creation."""
    PRIORITY = "priority"
    IMPACT_URGENCY_MATRIX = "impact_urgency_matrix"


class SLAType(str, Enum):
    """Types of SLA clocks."""
    RESPONSE = "response"
    RESOLUTION = "resolution"


class SLAStatus(str, Enum):
    """Display classification of an SLA clock."""
    ON_TIME = "on_time"
    AT_RISK = "at_risk"
    CRITICAL = "critical"
    BREACHED = "breached"
    MET = "met"
    PAUSED = "paused"


class ChangeRisk(str, Enum):
    """Risk levels for change requests."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ========== Lists for validation ==========

VALID_CATEGORIES = [c.value for c in TicketCategory]
VALID_PRIORITIES = [p.value for p in Priority]
VALID_LEVELS = [level.value for level in ImpactLevel]
VALID_SLA_TYPES = [t.value for t in SLAType]

# Engine-level lifecycle events every category must declare
EVENT_CREATED = "created"
EVENT_STATUS_CHANGED = "status_changed"
EVENT_SLA_BREACH = "sla_breach"
EVENT_SLA_PAUSED = "sla_paused"
EVENT_SLA_RESUMED = "sla_resumed"
EVENT_PRIORITY_CHANGED = "priority_changed"
EVENT_SEVERITY_CHANGED = "severity_changed"
EVENT_CAB_REVIEW = "cab_review"
EVENT_SUBMITTED_FOR_APPROVAL = "submitted_for_approval"
