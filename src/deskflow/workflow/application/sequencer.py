"""
Ticket Sequencer
================

Human-readable ticket numbers (``INC-000042``) per organisation and category.
"""

from deskflow.config import TicketCategory
from deskflow.workflow.application.ports import ITicketRepository
from deskflow.workflow.domain.registry import WorkflowRegistry


class TicketSequencer:
    """
    Allocates numbers from the repository's atomic counter.

    Uniqueness comes entirely from ``atomic_increment``; a failed create
    leaves a gap, never a duplicate.
    """

    def __init__(self, repository: ITicketRepository, registry: WorkflowRegistry):
        self._repo = repository
        self._registry = registry

    async def next(self, org_id: str, category: TicketCategory) -> str:
        prefix = self._registry.definition(category).number_prefix
        n = await self._repo.atomic_increment(org_id, category)
        return f"{prefix}-{n:06d}"
