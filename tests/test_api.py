from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from fakes import FakeStrategy
from unified_categorizer.app import app
from unified_categorizer.events import EventBus
from unified_categorizer.orchestrator import CategorizationOrchestrator
from unified_categorizer.storage import InMemoryStore

client = TestClient(app)

TRANSACTION = {
    "id": "tx-1",
    "date": "2024-01-15T10:00:00Z",
    "description": "Whole Foods",
    "debit_amount": 42.5,
}


@pytest.fixture
def orchestrator() -> Generator[CategorizationOrchestrator, None, None]:
    had_orchestrator = hasattr(app.state, "orchestrator")
    original = getattr(app.state, "orchestrator", None)
    strategies = [
        FakeStrategy("rule-based", 0.6),
        FakeStrategy("ml-enhanced", 0.9),
        FakeStrategy("llm", available=False),
    ]
    instance = CategorizationOrchestrator(
        InMemoryStore(),
        EventBus(),
        strategy_factory=lambda: strategies,
    )
    instance.batch_engine.yield_delay = 0
    app.state.orchestrator = instance
    yield instance
    if had_orchestrator:
        app.state.orchestrator = original
    else:
        delattr(app.state, "orchestrator")


def test_service_not_initialized() -> None:
    if hasattr(app.state, "orchestrator"):
        delattr(app.state, "orchestrator")

    response = client.get("/config")

    assert response.status_code == 500
    assert response.json()["detail"] == "Service not initialized"


def test_categorize(orchestrator: CategorizationOrchestrator) -> None:
    response = client.post("/categorize", json={"transaction": TRANSACTION})

    assert response.status_code == 200
    data = response.json()
    assert data["result"]["method"] == "ml-enhanced"
    assert data["result"]["confidence"] == 0.9
    assert data["auto_apply"] is True


def test_categorize_rejects_invalid_transaction(orchestrator: CategorizationOrchestrator) -> None:
    response = client.post("/categorize", json={"transaction": {"id": "tx-1"}})

    assert response.status_code == 422


def test_categorize_batch(orchestrator: CategorizationOrchestrator) -> None:
    transactions = [{**TRANSACTION, "id": f"tx-{index}"} for index in range(4)]

    response = client.post("/categorize/batch", json={"transactions": transactions, "batch_size": 3})

    assert response.status_code == 200
    assert len(response.json()) == 4


def test_categorize_batch_rejects_zero_batch_size(orchestrator: CategorizationOrchestrator) -> None:
    response = client.post("/categorize/batch", json={"transactions": [TRANSACTION], "batch_size": 0})

    assert response.status_code == 422


def test_categorize_batch_stream(orchestrator: CategorizationOrchestrator) -> None:
    transactions = [{**TRANSACTION, "id": f"tx-{index}"} for index in range(3)]

    response = client.post("/categorize/batch-stream", json={"transactions": transactions, "batch_size": 2})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    lines = [line for line in response.text.splitlines() if line.startswith("data: ")]
    assert '"stage": "start"' in lines[0]
    assert '"stage": "complete"' in lines[-1]


def test_learn(orchestrator: CategorizationOrchestrator) -> None:
    response = client.post(
        "/learn",
        json={"transaction": TRANSACTION, "category": {"id": "cat_groceries", "name": "Groceries"}},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "success"
    learned = orchestrator.registry.get_strategy("rule-based").learned
    assert learned[0][1].name == "Groceries"


def test_list_strategies(orchestrator: CategorizationOrchestrator) -> None:
    response = client.get("/strategies")

    assert response.status_code == 200
    assert response.json() == {
        "primary": "ml-enhanced",
        "registered": ["rule-based", "ml-enhanced", "llm"],
        "available": ["rule-based", "ml-enhanced"],
    }


def test_switch_primary_strategy(orchestrator: CategorizationOrchestrator) -> None:
    response = client.post("/strategies/primary", json={"name": "rule-based"})
    assert response.status_code == 200
    assert response.json()["primary"] == "rule-based"

    assert client.post("/strategies/primary", json={"name": "missing"}).status_code == 404
    assert client.post("/strategies/primary", json={"name": "llm"}).status_code == 409


def test_get_and_update_config(orchestrator: CategorizationOrchestrator) -> None:
    response = client.get("/config")
    assert response.status_code == 200
    assert response.json()["confidence_threshold"] == 0.7

    response = client.patch("/config", json={"confidence_threshold": 0.5, "batch_size": 20})
    assert response.status_code == 200
    assert response.json()["confidence_threshold"] == 0.5
    assert orchestrator.get_configuration().batch_size == 20


def test_update_config_rejects_invalid_values(orchestrator: CategorizationOrchestrator) -> None:
    response = client.patch("/config", json={"confidence_threshold": 2})

    assert response.status_code == 422
    assert orchestrator.get_configuration().confidence_threshold == 0.7


def test_metrics(orchestrator: CategorizationOrchestrator) -> None:
    client.post("/categorize", json={"transaction": TRANSACTION})

    response = client.get("/metrics")

    assert response.status_code == 200
    data = response.json()
    assert data["total_categorizations"] == 1
    assert data["method_breakdown"] == {"ml-enhanced": 1}


def test_reset_metrics(orchestrator: CategorizationOrchestrator) -> None:
    client.post("/categorize", json={"transaction": TRANSACTION})

    response = client.delete("/metrics")

    assert response.status_code == 200
    assert response.json()["total_categorizations"] == 0
    assert client.get("/metrics").json()["method_breakdown"] == {}
