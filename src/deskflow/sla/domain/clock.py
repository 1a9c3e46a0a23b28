"""
SLA Clock
=========

Deadline arithmetic for response/resolution SLAs.

Every method is a pure function of (state, now): it returns a new
``SLAState`` and never reads the wall clock itself. Breach is a query
evaluated on demand, so no background timer is needed to keep it current.
"""

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

from deskflow.config import Priority, SLAStatus, SLAType
from deskflow.sla.domain.value_objects import SLAPolicyTable, SLAState


AT_RISK_THRESHOLD_PERCENT = 75
CRITICAL_THRESHOLD_PERCENT = 90


class SLAClock:
    """Computes and advances SLA deadlines from an ``SLAPolicyTable``."""

    def __init__(self, policy: SLAPolicyTable):
        self._policy = policy

    @property
    def policy(self) -> SLAPolicyTable:
        return self._policy

    def initialize(self, priority: Priority, created_at: datetime) -> SLAState:
        """Fresh clock: both deadlines at ``created_at + budget``."""
        budget = self._policy.budget(priority)
        return SLAState(
            started_at=created_at,
            response_budget_minutes=budget.response,
            resolution_budget_minutes=budget.resolution,
            response_deadline=created_at + timedelta(minutes=budget.response),
            resolution_deadline=created_at + timedelta(minutes=budget.resolution),
        )

    def active_elapsed(self, state: SLAState, now: datetime) -> timedelta:
        """Time the clock has been running (not paused) since it started."""
        until = state.paused_at if state.paused_at is not None else now
        return max(until - state.started_at - state.total_paused, timedelta(0))

    def recompute_on_priority_change(
        self,
        state: SLAState,
        new_priority: Priority,
        now: datetime
    ) -> SLAState:
        """
        Swap in the budgets of ``new_priority`` keeping active time already
        spent. Only the remaining allowance changes.
        """
        budget = self._policy.budget(new_priority)
        anchor = state.paused_at if state.paused_at is not None else now
        elapsed = self.active_elapsed(state, now)
        return replace(
            state,
            response_budget_minutes=budget.response,
            resolution_budget_minutes=budget.resolution,
            response_deadline=anchor + (timedelta(minutes=budget.response) - elapsed),
            resolution_deadline=anchor + (timedelta(minutes=budget.resolution) - elapsed),
        )

    def pause(self, state: SLAState, now: datetime) -> SLAState:
        """Stop the clock at ``now``. Pausing a paused clock changes nothing."""
        if state.paused_at is not None:
            return state
        return replace(state, paused_at=now)

    def resume(self, state: SLAState, now: datetime) -> SLAState:
        """Restart the clock, pushing both deadlines out by the paused interval."""
        if state.paused_at is None:
            return state
        elapsed = max(now - state.paused_at, timedelta(0))
        return replace(
            state,
            paused_at=None,
            total_paused=state.total_paused + elapsed,
            response_deadline=state.response_deadline + elapsed,
            resolution_deadline=state.resolution_deadline + elapsed,
        )

    def is_breached(
        self,
        state: SLAState,
        now: datetime,
        sla_type: Optional[SLAType] = None
    ) -> bool:
        """
        True iff ``now`` is past the deadline of a running clock.

        A paused clock never breaches. A clock already met (first response
        given, ticket resolved) is judged at the instant it was met.
        ``sla_type=None`` checks both clocks.
        """
        if state.paused_at is not None:
            return False
        if sla_type is None:
            return any(self.is_breached(state, now, t) for t in SLAType)
        met_at = state.met_at(sla_type)
        effective = min(now, met_at) if met_at is not None else now
        return effective > state.deadline(sla_type)

    def mark_breached(self, state: SLAState, now: datetime) -> SLAState:
        """Persistable breach flag. Monotonic until the ticket is reopened."""
        if state.breached:
            return state
        return replace(state, breached=True, breached_at=now)

    def reopen(self, state: SLAState, priority: Priority, now: datetime) -> SLAState:
        """
        A resolved ticket came back: start a fresh window and clear breach.
        ``state`` is accepted so callers can record what is being discarded.
        """
        return self.initialize(priority, now)

    def record_response(self, state: SLAState, now: datetime) -> SLAState:
        if state.responded_at is not None:
            return state
        return replace(state, responded_at=now)

    def record_resolution(self, state: SLAState, now: datetime) -> SLAState:
        if state.resolved_at is not None:
            return state
        return replace(state, resolved_at=now)

    def remaining(self, state: SLAState, now: datetime, sla_type: SLAType) -> timedelta:
        """Time left before ``sla_type`` breaches; frozen while paused."""
        anchor = state.paused_at if state.paused_at is not None else now
        return state.deadline(sla_type) - anchor

    def percent_elapsed(self, state: SLAState, now: datetime, sla_type: SLAType) -> float:
        budget = timedelta(minutes=state.budget_minutes(sla_type))
        return self.active_elapsed(state, now) / budget * 100

    def classify(
        self,
        state: SLAState,
        now: datetime,
        sla_type: SLAType = SLAType.RESOLUTION
    ) -> SLAStatus:
        """
        Display status of one clock.

        Bands follow the escalation thresholds: 75% of the budget elapsed is
        at risk, 90% is critical.
        """
        met_at = state.met_at(sla_type)
        if met_at is not None:
            if met_at > state.deadline(sla_type):
                return SLAStatus.BREACHED
            return SLAStatus.MET
        if state.paused_at is not None:
            return SLAStatus.PAUSED
        if self.is_breached(state, now, sla_type):
            return SLAStatus.BREACHED

        percent = self.percent_elapsed(state, now, sla_type)
        if percent >= CRITICAL_THRESHOLD_PERCENT:
            return SLAStatus.CRITICAL
        if percent >= AT_RISK_THRESHOLD_PERCENT:
            return SLAStatus.AT_RISK
        return SLAStatus.ON_TIME
