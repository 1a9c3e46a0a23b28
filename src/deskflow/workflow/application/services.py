"""
Workflow Application Services
=============================

``WorkflowEngine`` is the single entry point for every ticket mutation.

Each mutation follows the same shape:

    load -> validate -> compute new state -> compare_and_swap -> publish

The compare-and-swap is made against the version that was loaded, so two
writers racing on one ticket cannot both win. The engine never retries; the
loser gets ``ConcurrentModificationError`` and decides for itself.
"""

from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
from uuid import uuid4

from deskflow.config import (
    ImpactLevel, Priority, PriorityMethod, SLAType, TicketCategory, UrgencyLevel,
    EVENT_CAB_REVIEW, EVENT_CREATED, EVENT_SLA_BREACH, EVENT_SLA_PAUSED,
    EVENT_SLA_RESUMED,
)
from deskflow.core.exceptions import (
    ApplicationException, ConcurrentModificationError, DomainException,
    InvalidInputError, ResourceNotFoundException,
)
from deskflow.shared.infrastructure.logging import get_logger
from deskflow.sla.domain import SLAClock, SLAPolicyTable, SLASnapshot, SLAState
from deskflow.workflow.application.ports import (
    IClock, IEventPublisher, ITicketRepository, SystemClock,
)
from deskflow.workflow.application.sequencer import TicketSequencer
from deskflow.workflow.domain.definitions import WorkflowDefinition
from deskflow.workflow.domain.entities import ChangeDetails, DomainEvent, Ticket, build_details
from deskflow.workflow.domain.priority import (
    PriorityCalculator, parse_impact, parse_priority, parse_urgency,
)
from deskflow.workflow.domain.registry import WorkflowRegistry
from deskflow.workflow.domain.validator import TransitionValidator, parse_category

logger = get_logger(__name__)


class WorkflowEngine:
    """
    Creates tickets and applies status, SLA and priority changes.

    Dependencies are injected so tests can swap in an in-memory repository,
    a frozen clock and a recording publisher.
    """

    def __init__(
        self,
        registry: WorkflowRegistry,
        policy: SLAPolicyTable,
        repository: ITicketRepository,
        publisher: IEventPublisher,
        clock: Optional[IClock] = None,
        id_factory: Optional[Callable[[], str]] = None
    ):
        self._registry = registry
        self._validator = TransitionValidator(registry)
        self._sla = SLAClock(policy)
        self._repo = repository
        self._publisher = publisher
        self._clock = clock or SystemClock()
        self._sequencer = TicketSequencer(repository, registry)
        self._new_id = id_factory or (lambda: str(uuid4()))

    @property
    def registry(self) -> WorkflowRegistry:
        return self._registry

    @property
    def sla_clock(self) -> SLAClock:
        return self._sla

    # ========== Queries ==========

    async def get(self, ticket_id: str) -> Ticket:
        ticket = await self._repo.load(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return ticket

    async def list(
        self,
        filters: Optional[dict] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[Ticket]:
        return await self._repo.list(filters or {}, limit=limit, offset=offset)

    async def sla_status(self, ticket_id: str) -> SLASnapshot:
        """Live SLA reading for a ticket. Read-only; never persists a breach."""
        ticket = await self.get(ticket_id)
        return SLASnapshot.capture(self._sla, ticket.id, ticket.sla, self._clock.now())

    # ========== Mutations ==========

    async def create(
        self,
        org_id: str,
        category: Union[str, TicketCategory],
        fields: Mapping[str, Any],
        actor: Optional[str] = None
    ) -> Ticket:
        """
        Create a ticket in its category's initial status.

        Raises:
            InvalidInputError: unknown category or out-of-domain level
            MissingFieldsError: every required field that is absent or empty
            ValidationException: a field has the wrong shape, or a change is
                scheduled inside its risk level's lead time
        """
        now = self._clock.now()
        try:
            category = parse_category(category)
            definition = self._registry.definition(category)
            status = self._validator.validate_create(category, fields)
            priority, impact, urgency = self._derive_priority(definition, fields)
            details = build_details(category, fields)
            if isinstance(details, ChangeDetails):
                details.check_schedule(now)
        except ApplicationException as e:
            logger.warning(
                "Ticket create rejected",
                extra={"org_id": org_id, "category": str(category), "error": e.message}
            )
            raise

        sla = self._sla.initialize(priority, now)
        if status in definition.sla_paused_statuses:
            sla = self._sla.pause(sla, now)

        number = await self._sequencer.next(org_id, category)
        ticket = Ticket(
            id=self._new_id(),
            org_id=org_id,
            category=category,
            number=number,
            title=str(fields["title"]).strip(),
            status=status,
            priority=priority,
            impact=impact,
            urgency=urgency,
            created_at=now,
            updated_at=now,
            sla=sla,
            details=details,
            version=1,
        )

        if not await self._repo.compare_and_swap(ticket.id, 0, ticket):
            raise ConcurrentModificationError(ticket.id, 0)

        logger.info(
            "Ticket created",
            extra={
                "ticket_id": ticket.id,
                "org_id": org_id,
                "category": category.value,
                "number": number,
                "priority": priority.value,
            }
        )
        await self._publish(ticket, EVENT_CREATED, {
            "number": number,
            "org_id": org_id,
            "status": status,
            "priority": priority.value,
            "actor": actor,
        })
        return ticket

    async def transition(
        self,
        ticket_id: str,
        to_status: str,
        expected_version: Optional[int] = None,
        actor: Optional[str] = None
    ) -> Ticket:
        """
        Move a ticket along one edge of its workflow.

        The edge is checked against the persisted status. SLA side effects:
        leaving a resolution status reopens the SLA, entering one records
        resolution, leaving the initial status records first response, and
        entering/leaving an SLA-paused status pauses/resumes the clock.

        Raises:
            ResourceNotFoundException: unknown ticket
            IllegalTransitionError: not an edge (includes same-status requests)
            ConcurrentModificationError: version moved since load
        """
        ticket = await self._load(ticket_id, expected_version)
        definition = self._registry.definition(ticket.category)
        from_status = ticket.status

        try:
            self._validator.validate_transition(ticket.category, from_status, to_status)
        except ApplicationException as e:
            logger.warning(
                "Ticket transition rejected",
                extra={"ticket_id": ticket_id, "category": ticket.category.value, "error": e.message}
            )
            raise

        now = self._clock.now()
        payload: Dict[str, Any] = {
            "from_status": from_status,
            "to_status": to_status,
            "actor": actor,
        }
        sla = self._sla_for_transition(definition, ticket, from_status, to_status, now, payload)

        event_name = definition.event_for_transition(to_status)
        if (
            to_status == definition.approval_status
            and isinstance(ticket.details, ChangeDetails)
            and ticket.details.requires_cab
        ):
            event_name = EVENT_CAB_REVIEW

        updated = await self._commit(ticket, status=to_status, sla=sla, updated_at=now)
        logger.info(
            "Ticket transitioned",
            extra={
                "ticket_id": ticket_id,
                "category": ticket.category.value,
                "from_status": from_status,
                "to_status": to_status,
                "version": updated.version,
            }
        )
        await self._publish(updated, event_name, payload)
        return updated

    async def pause(
        self,
        ticket_id: str,
        expected_version: Optional[int] = None,
        actor: Optional[str] = None
    ) -> Ticket:
        """Stop the SLA clock. Pausing a paused ticket writes nothing."""
        ticket = await self._load(ticket_id, expected_version)
        if ticket.sla.is_paused:
            return ticket

        now = self._clock.now()
        updated = await self._commit(ticket, sla=self._sla.pause(ticket.sla, now), updated_at=now)
        logger.info("SLA paused", extra={"ticket_id": ticket_id, "category": ticket.category.value})
        await self._publish(updated, EVENT_SLA_PAUSED, {"status": ticket.status, "actor": actor})
        return updated

    async def resume(
        self,
        ticket_id: str,
        expected_version: Optional[int] = None,
        actor: Optional[str] = None
    ) -> Ticket:
        """
        Restart the SLA clock. Resuming a running clock writes nothing.

        Raises:
            DomainException: the ticket sits in a status that holds the clock paused
        """
        ticket = await self._load(ticket_id, expected_version)
        if not ticket.sla.is_paused:
            return ticket

        definition = self._registry.definition(ticket.category)
        if ticket.status in definition.sla_paused_statuses:
            raise DomainException(
                f"SLA is held paused while the ticket is {ticket.status!r}",
                {"ticket_id": ticket_id, "status": ticket.status}
            )

        now = self._clock.now()
        paused_for = now - ticket.sla.paused_at
        updated = await self._commit(ticket, sla=self._sla.resume(ticket.sla, now), updated_at=now)
        logger.info("SLA resumed", extra={"ticket_id": ticket_id, "category": ticket.category.value})
        await self._publish(updated, EVENT_SLA_RESUMED, {
            "status": ticket.status,
            "paused_minutes": paused_for.total_seconds() / 60,
            "actor": actor,
        })
        return updated

    async def change_priority(
        self,
        ticket_id: str,
        priority: Optional[Union[str, Priority]] = None,
        impact: Optional[Union[str, ImpactLevel]] = None,
        urgency: Optional[Union[str, UrgencyLevel]] = None,
        expected_version: Optional[int] = None,
        actor: Optional[str] = None
    ) -> Ticket:
        """
        Re-prioritise a ticket and recompute open SLA deadlines.

        Matrix categories take ``impact``/``urgency`` and derive priority;
        the others take ``priority`` directly. A change also takes
        ``impact``, which is copied into its details for the CAB decision.

        Raises:
            InvalidInputError: out-of-domain values, a direct priority on a
                matrix category, impact or urgency where the category has
                no use for it, or a request that changes nothing
        """
        ticket = await self._load(ticket_id, expected_version)
        definition = self._registry.definition(ticket.category)

        new_impact = parse_impact(impact) if impact is not None else ticket.impact
        new_urgency = parse_urgency(urgency) if urgency is not None else ticket.urgency
        details = ticket.details
        if definition.priority_method == PriorityMethod.IMPACT_URGENCY_MATRIX:
            if priority is not None:
                raise InvalidInputError("priority", priority, ["<derived from impact and urgency>"])
            new_priority = PriorityCalculator.priority(new_impact, new_urgency)
        else:
            # Only changes carry impact outside the matrix; it drives the CAB decision
            if urgency is not None:
                raise InvalidInputError("urgency", urgency, ["<impact x urgency categories only>"])
            if impact is not None:
                if not isinstance(details, ChangeDetails):
                    raise InvalidInputError("impact", impact, ["<impact x urgency categories and changes only>"])
                details = details.model_copy(update={"impact": new_impact})
            new_priority = parse_priority(priority) if priority is not None else ticket.priority

        if (new_priority, new_impact, new_urgency) == (ticket.priority, ticket.impact, ticket.urgency):
            raise InvalidInputError("priority", new_priority.value, ["<a different value>"])

        now = self._clock.now()
        sla = ticket.sla
        if new_priority != ticket.priority and sla.resolved_at is None:
            sla = self._sla.recompute_on_priority_change(sla, new_priority, now)

        updated = await self._commit(
            ticket,
            priority=new_priority,
            impact=new_impact,
            urgency=new_urgency,
            details=details,
            sla=sla,
            updated_at=now,
        )
        logger.info(
            "Ticket priority changed",
            extra={
                "ticket_id": ticket_id,
                "category": ticket.category.value,
                "old_priority": ticket.priority.value,
                "new_priority": new_priority.value,
            }
        )
        await self._publish(updated, definition.priority_event, {
            "old_priority": ticket.priority.value,
            "new_priority": new_priority.value,
            "impact": new_impact.value if new_impact else None,
            "urgency": new_urgency.value if new_urgency else None,
            "actor": actor,
        })
        return updated

    async def reevaluate_sla(self, ticket_id: str) -> Ticket:
        """
        Persist a newly detected breach and emit ``sla_breach``.

        Already-breached and within-deadline tickets are returned untouched:
        no write, no event.
        """
        ticket = await self.get(ticket_id)
        now = self._clock.now()
        if ticket.sla.breached or not self._sla.is_breached(ticket.sla, now):
            return ticket

        breached_clocks = [
            t.value for t in SLAType if self._sla.is_breached(ticket.sla, now, t)
        ]
        updated = await self._commit(ticket, sla=self._sla.mark_breached(ticket.sla, now), updated_at=now)
        logger.warning(
            "SLA breached",
            extra={
                "ticket_id": ticket_id,
                "category": ticket.category.value,
                "breached_clocks": breached_clocks,
            }
        )
        await self._publish(updated, EVENT_SLA_BREACH, {
            "breached_clocks": breached_clocks,
            "priority": ticket.priority.value,
            "response_deadline": ticket.sla.response_deadline.isoformat(),
            "resolution_deadline": ticket.sla.resolution_deadline.isoformat(),
        })
        return updated

    # ========== Internals ==========

    def _derive_priority(self, definition: WorkflowDefinition, fields: Mapping[str, Any]):
        impact = parse_impact(fields["impact"]) if fields.get("impact") else None
        urgency = parse_urgency(fields["urgency"]) if fields.get("urgency") else None
        if definition.priority_method == PriorityMethod.IMPACT_URGENCY_MATRIX:
            return PriorityCalculator.priority(impact, urgency), impact, urgency
        return parse_priority(fields.get("priority") or Priority.MEDIUM), impact, urgency

    def _sla_for_transition(
        self,
        definition: WorkflowDefinition,
        ticket: Ticket,
        from_status: str,
        to_status: str,
        now,
        payload: Dict[str, Any]
    ) -> SLAState:
        sla = ticket.sla
        paused = definition.sla_paused_statuses

        if from_status in definition.resolution_statuses and to_status not in definition.resolution_statuses:
            payload["reopened"] = True
            payload["previous_breached"] = sla.breached
            payload["previous_breached_at"] = sla.breached_at.isoformat() if sla.breached_at else None
            # Reopening is itself a response to the requester
            sla = self._sla.record_response(self._sla.reopen(sla, ticket.priority, now), now)
            if to_status in paused:
                sla = self._sla.pause(sla, now)
            return sla

        if from_status == definition.initial_status:
            sla = self._sla.record_response(sla, now)
        if from_status in paused and to_status not in paused:
            sla = self._sla.resume(sla, now)
        if to_status in paused and from_status not in paused:
            sla = self._sla.pause(sla, now)
        if to_status in definition.resolution_statuses:
            sla = self._sla.record_resolution(self._sla.resume(sla, now), now)

        payload["sla_paused"] = sla.is_paused
        return sla

    async def _load(self, ticket_id: str, expected_version: Optional[int]) -> Ticket:
        ticket = await self.get(ticket_id)
        if expected_version is not None and expected_version != ticket.version:
            logger.warning(
                "Stale ticket version",
                extra={
                    "ticket_id": ticket_id,
                    "expected_version": expected_version,
                    "actual_version": ticket.version,
                }
            )
            raise ConcurrentModificationError(ticket_id, expected_version, ticket.version)
        return ticket

    async def _commit(self, ticket: Ticket, **changes) -> Ticket:
        updated = replace(ticket, version=ticket.version + 1, **changes)
        if not await self._repo.compare_and_swap(ticket.id, ticket.version, updated):
            current = await self._repo.load(ticket.id)
            actual = current.version if current else None
            logger.warning(
                "Concurrent modification",
                extra={
                    "ticket_id": ticket.id,
                    "expected_version": ticket.version,
                    "actual_version": actual,
                }
            )
            raise ConcurrentModificationError(ticket.id, ticket.version, actual)
        return updated

    async def _publish(self, ticket: Ticket, event_name: str, payload: Dict[str, Any]) -> None:
        event = DomainEvent(
            category=ticket.category,
            ticket_id=ticket.id,
            event_name=event_name,
            occurred_at=ticket.updated_at,
            payload={"number": ticket.number, "version": ticket.version, **payload},
        )
        try:
            await self._publisher.publish(event)
        except Exception:
            # Committed writes stand even when delivery fails.
            logger.exception(
                "Event publish failed",
                extra={"ticket_id": ticket.id, "event_name": event_name}
            )
