"""
SLA Breach Sweep
================

Periodic job that asks the engine to re-evaluate every active ticket.

The engine itself has no timers: breach is computed on demand. The sweep
only exists so ``sla_breach`` events go out even for tickets nobody touches.
"""

from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from deskflow.core.exceptions import ConcurrentModificationError
from deskflow.shared.infrastructure.logging import get_logger, log_latency
from deskflow.workflow.application.ports import ITicketRepository
from deskflow.workflow.application.services import WorkflowEngine

logger = get_logger(__name__)


async def sweep_breaches(
    engine: WorkflowEngine,
    repository: ITicketRepository,
    limit: int = 500
) -> int:
    """
    Re-evaluate active tickets once.

    Returns:
        Number of tickets newly marked as breached
    """
    tickets = await repository.list_active(limit=limit)
    breached = 0

    with log_latency(logger, "breach_sweep", tickets=len(tickets)):
        for ticket in tickets:
            try:
                updated = await engine.reevaluate_sla(ticket.id)
            except ConcurrentModificationError:
                # Someone else wrote the ticket; the next sweep sees the new version
                logger.info("Breach sweep skipped busy ticket", extra={"ticket_id": ticket.id})
                continue
            if updated.sla.breached and not ticket.sla.breached:
                breached += 1

    if breached:
        logger.warning("Breach sweep marked tickets", extra={"breached": breached})
    return breached


class SLAScheduler:
    """
    Wrapper for APScheduler for background SLA evaluation.

    Manages the lifecycle of the scheduler and jobs.
    """

    def __init__(self, interval_seconds: int = 60):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[None]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="sla_breach_sweep",
            name="SLA Breach Sweep",
            misfire_grace_time=60,
            max_instances=1,
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
