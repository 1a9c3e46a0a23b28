import pytest

from deskflow.sla.domain import SLAClock, SLAPolicyTable
from deskflow.workflow.application import InMemoryEventPublisher, WorkflowEngine
from deskflow.workflow.domain import WorkflowRegistry
from deskflow.workflow.infrastructure import InMemoryTicketRepository

from tests.factories import FrozenClock


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def registry() -> WorkflowRegistry:
    return WorkflowRegistry.default()


@pytest.fixture
def policy() -> SLAPolicyTable:
    return SLAPolicyTable.default()


@pytest.fixture
def sla_clock(policy) -> SLAClock:
    return SLAClock(policy)


@pytest.fixture
def repository() -> InMemoryTicketRepository:
    return InMemoryTicketRepository()


@pytest.fixture
def publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture
def engine(registry, policy, repository, publisher, clock) -> WorkflowEngine:
    return WorkflowEngine(registry, policy, repository, publisher, clock=clock)
