import pytest

from unified_categorizer.events import EventBus
from unified_categorizer.models import CategorizationConfig
from unified_categorizer.orchestrator import CategorizationOrchestrator
from unified_categorizer.storage import InMemoryStore


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def make_orchestrator(store: InMemoryStore, events: EventBus):
    """Build an orchestrator over the given strategies with no real backends."""

    def factory(*strategies, config: CategorizationConfig | None = None, **kwargs):
        orchestrator = CategorizationOrchestrator(
            store,
            events,
            strategy_factory=lambda: list(strategies),
            defaults=config,
            **kwargs,
        )
        orchestrator.batch_engine.yield_delay = 0
        return orchestrator

    return factory
