"""
Transition Validator
====================

Pure checks run before a ticket is created or moved. Nothing here touches
persistence or mutates a ticket.
"""

from typing import Any, Mapping, Union

from deskflow.config import TicketCategory, VALID_CATEGORIES
from deskflow.core.exceptions import (
    IllegalTransitionError, InvalidInputError, MissingFieldsError,
)
from deskflow.workflow.domain.registry import WorkflowRegistry


def parse_category(value: Union[str, TicketCategory]) -> TicketCategory:
    try:
        return TicketCategory(value)
    except ValueError:
        raise InvalidInputError("category", value, VALID_CATEGORIES) from None


def is_empty(value: Any) -> bool:
    """
    None, blank strings and empty collections count as missing.
    ``False`` and ``0`` are real answers.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


class TransitionValidator:
    """Validates creation payloads and status changes against the registry."""

    def __init__(self, registry: WorkflowRegistry):
        self._registry = registry

    def validate_create(
        self,
        category: TicketCategory,
        fields: Mapping[str, Any]
    ) -> str:
        """
        Check every required field of ``category`` is present and non-empty.

        Returns:
            The category's initial status

        Raises:
            MissingFieldsError: listing every missing field, not just the first
        """
        missing = sorted(
            name for name in self._registry.required_fields(category)
            if is_empty(fields.get(name))
        )
        if missing:
            raise MissingFieldsError(category.value, missing)
        return self._registry.initial_status(category)

    def validate_transition(
        self,
        category: TicketCategory,
        current_status: str,
        requested_status: str
    ) -> None:
        """
        Raises:
            IllegalTransitionError: carrying the statuses that were legal
        """
        if not self._registry.is_transition_allowed(category, current_status, requested_status):
            raise IllegalTransitionError(
                category.value,
                current_status,
                requested_status,
                self._registry.legal_targets(category, current_status),
            )
