"""
Workflow Registry
=================

Immutable, validated lookup of per-category workflow rules.

All checks run once in ``__init__``; lookups afterwards are plain dict
access and never re-validate.
"""

from pathlib import Path
from typing import Dict, FrozenSet, List, Mapping, Optional, Union

import yaml
from pydantic import ValidationError

from deskflow.config import (
    TicketCategory,
    EVENT_CREATED, EVENT_SLA_BREACH, EVENT_SLA_PAUSED, EVENT_SLA_RESUMED,
    EVENT_CAB_REVIEW,
)
from deskflow.core.exceptions import ConfigurationException
from deskflow.shared.infrastructure.logging import get_logger
from deskflow.workflow.domain.definitions import (
    DEFAULT_WORKFLOWS, WorkflowDefinition, WorkflowTable,
)

logger = get_logger(__name__)


def check_definition(definition: WorkflowDefinition) -> List[str]:
    """Return every consistency problem found in ``definition``."""
    problems: List[str] = []
    declared = definition.statuses

    def _undeclared(label: str, statuses) -> None:
        for status in sorted(set(statuses) - declared):
            problems.append(f"{label} references undeclared status {status!r}")

    if definition.initial_status not in declared:
        problems.append(f"initial status {definition.initial_status!r} is not declared")

    _undeclared("transitions", definition.transitions.keys())
    for source, targets in definition.transitions.items():
        _undeclared(f"transitions[{source}]", targets)
        if source in targets:
            problems.append(f"status {source!r} lists itself as a transition target")

    for status in sorted(declared - set(definition.transitions)):
        problems.append(f"status {status!r} has no transition entry")

    _undeclared("resolution_statuses", definition.resolution_statuses)
    _undeclared("sla_paused_statuses", definition.sla_paused_statuses)
    _undeclared("transition_events", definition.transition_events.keys())
    if definition.approval_status is not None:
        _undeclared("approval_status", [definition.approval_status])

    if definition.initial_status in definition.resolution_statuses:
        problems.append("initial status cannot be a resolution status")

    emitted = {
        EVENT_CREATED, EVENT_SLA_BREACH, EVENT_SLA_PAUSED, EVENT_SLA_RESUMED,
        definition.priority_event,
    }
    for targets in definition.transitions.values():
        emitted.update(definition.event_for_transition(target) for target in targets)
    if definition.category == TicketCategory.CHANGE and definition.approval_status:
        emitted.add(EVENT_CAB_REVIEW)
    for event in sorted(emitted - definition.notification_events):
        problems.append(f"event {event!r} is emitted but not declared")

    return problems


class WorkflowRegistry:
    """
    Per-category workflow rules for the closed set of ticket categories.

    Raises ``ConfigurationException`` on construction if any category is
    missing or any definition is inconsistent, so a bad table stops the
    process before it serves a request.
    """

    def __init__(self, definitions: Mapping[TicketCategory, WorkflowDefinition]):
        missing = [c.value for c in TicketCategory if c not in definitions]
        if missing:
            raise ConfigurationException(
                "Workflow table is missing categories",
                {"missing_categories": missing}
            )

        problems: Dict[str, List[str]] = {}
        for category, definition in definitions.items():
            found = check_definition(definition)
            if definition.category != category:
                found.append(f"definition is keyed as {category.value!r}")
            if found:
                problems[category.value] = found
        if problems:
            raise ConfigurationException("Workflow table is inconsistent", {"problems": problems})

        self._definitions: Dict[TicketCategory, WorkflowDefinition] = dict(definitions)
        logger.info(
            "Workflow registry loaded",
            extra={"categories": sorted(c.value for c in self._definitions)}
        )

    @classmethod
    def default(cls) -> "WorkflowRegistry":
        return cls(DEFAULT_WORKFLOWS)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "WorkflowRegistry":
        """Load and validate a workflow table from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigurationException(f"Workflow config file not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        try:
            table = WorkflowTable(**data)
        except ValidationError as e:
            raise ConfigurationException(
                f"Invalid workflow config {path}",
                {"errors": e.errors(include_url=False)}
            ) from e
        return cls(table.workflows)

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "WorkflowRegistry":
        return cls.from_yaml(path) if path else cls.default()

    # ========== Lookups ==========

    def definition(self, category: TicketCategory) -> WorkflowDefinition:
        return self._definitions[category]

    def available_statuses(self, category: TicketCategory) -> FrozenSet[str]:
        return self._definitions[category].statuses

    def initial_status(self, category: TicketCategory) -> str:
        return self._definitions[category].initial_status

    def is_transition_allowed(
        self,
        category: TicketCategory,
        from_status: str,
        to_status: str
    ) -> bool:
        """False for unknown statuses; never raises for a known category."""
        return to_status in self._definitions[category].legal_targets(from_status)

    def legal_targets(self, category: TicketCategory, from_status: str) -> FrozenSet[str]:
        return self._definitions[category].legal_targets(from_status)

    def required_fields(self, category: TicketCategory) -> FrozenSet[str]:
        return self._definitions[category].required_fields

    def requires_approval(self, category: TicketCategory) -> bool:
        return self._definitions[category].requires_approval

    def allows_public(self, category: TicketCategory) -> bool:
        return self._definitions[category].allows_public_visibility

    def notification_events(self, category: TicketCategory) -> FrozenSet[str]:
        return self._definitions[category].notification_events

    def event_for_transition(self, category: TicketCategory, to_status: str) -> str:
        return self._definitions[category].event_for_transition(to_status)
