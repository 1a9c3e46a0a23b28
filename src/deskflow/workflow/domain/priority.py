"""
Priority Calculator
===================

ITIL impact x urgency matrix (impact rows, urgency columns).

Every cell is spelled out; the module refuses to import if one is missing.
"""

from typing import Dict, Tuple, Union

from deskflow.config import (
    ImpactLevel, Priority, UrgencyLevel, VALID_LEVELS, VALID_PRIORITIES,
)
from deskflow.core.exceptions import ConfigurationException, InvalidInputError


IMPACT_URGENCY_MATRIX: Dict[Tuple[ImpactLevel, UrgencyLevel], Priority] = {
    (ImpactLevel.HIGH, UrgencyLevel.HIGH): Priority.CRITICAL,
    (ImpactLevel.HIGH, UrgencyLevel.MEDIUM): Priority.HIGH,
    (ImpactLevel.HIGH, UrgencyLevel.LOW): Priority.MEDIUM,
    (ImpactLevel.MEDIUM, UrgencyLevel.HIGH): Priority.HIGH,
    (ImpactLevel.MEDIUM, UrgencyLevel.MEDIUM): Priority.MEDIUM,
    (ImpactLevel.MEDIUM, UrgencyLevel.LOW): Priority.LOW,
    (ImpactLevel.LOW, UrgencyLevel.HIGH): Priority.MEDIUM,
    (ImpactLevel.LOW, UrgencyLevel.MEDIUM): Priority.LOW,
    (ImpactLevel.LOW, UrgencyLevel.LOW): Priority.LOW,
}


def _check_matrix_total() -> None:
    missing = [
        (impact.value, urgency.value)
        for impact in ImpactLevel
        for urgency in UrgencyLevel
        if (impact, urgency) not in IMPACT_URGENCY_MATRIX
    ]
    if missing:
        raise ConfigurationException(
            "Impact/urgency matrix is not total",
            {"missing_cells": missing}
        )


_check_matrix_total()


def parse_impact(value: Union[str, ImpactLevel]) -> ImpactLevel:
    try:
        return ImpactLevel(value)
    except ValueError:
        raise InvalidInputError("impact", value, VALID_LEVELS) from None


def parse_urgency(value: Union[str, UrgencyLevel]) -> UrgencyLevel:
    try:
        return UrgencyLevel(value)
    except ValueError:
        raise InvalidInputError("urgency", value, VALID_LEVELS) from None


class PriorityCalculator:
    """Pure mapping (impact, urgency) -> priority."""

    @staticmethod
    def priority(
        impact: Union[str, ImpactLevel],
        urgency: Union[str, UrgencyLevel]
    ) -> Priority:
        """
        Look up the priority for an impact/urgency pair.

        Raises:
            InvalidInputError: if either value is outside {low, medium, high}
        """
        return IMPACT_URGENCY_MATRIX[(parse_impact(impact), parse_urgency(urgency))]


def parse_priority(value: Union[str, Priority]) -> Priority:
    try:
        return Priority(value)
    except ValueError:
        raise InvalidInputError("priority", value, VALID_PRIORITIES) from None
