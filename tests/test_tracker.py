import random
from unittest.mock import MagicMock

import pytest

from fakes import make_result
from unified_categorizer.errors import PersistenceError
from unified_categorizer.models import build_fallback_result
from unified_categorizer.storage import InMemoryStore
from unified_categorizer.tracker import PERFORMANCE_KEY, PerformanceTracker, running_mean


def test_running_mean_matches_arithmetic_mean() -> None:
    values = [0.2, 0.9, 0.4, 0.75, 1.0]
    mean = 0.0
    for count, value in enumerate(values, start=1):
        mean = running_mean(mean, value, count)
    assert mean == pytest.approx(sum(values) / len(values))


@pytest.mark.anyio
async def test_record_aggregates_are_order_independent() -> None:
    confidences = [0.95, 0.3, 0.71, 0.5, 0.88, 0.12, 0.66]
    shuffled = confidences[:]
    random.Random(7).shuffle(shuffled)

    snapshots = []
    for ordering in (confidences, shuffled):
        tracker = PerformanceTracker(InMemoryStore())
        for confidence in ordering:
            await tracker.record(make_result("ml", confidence), 10.0, confidence_threshold=0.7)
        snapshots.append(tracker.snapshot())

    for metrics in snapshots:
        assert metrics.total_categorizations == len(confidences)
        assert metrics.average_confidence == pytest.approx(sum(confidences) / len(confidences))
        assert metrics.average_processing_time == pytest.approx(10.0)
        assert metrics.success_rate == pytest.approx(3 / 7)
        assert metrics.method_breakdown == {"ml": 7}


@pytest.mark.anyio
async def test_fallback_results_never_count_as_success() -> None:
    tracker = PerformanceTracker(InMemoryStore())

    await tracker.record(build_fallback_result("boom"), 1.0, confidence_threshold=0.0)
    await tracker.record(make_result("rules", 0.9), 3.0, confidence_threshold=0.7)

    metrics = tracker.snapshot()
    assert metrics.success_rate == pytest.approx(0.5)
    assert metrics.method_breakdown == {"fallback": 1, "rules": 1}
    assert metrics.average_processing_time == pytest.approx(2.0)


@pytest.mark.anyio
async def test_persists_every_nth_update() -> None:
    store = InMemoryStore()
    tracker = PerformanceTracker(store, persist_every=3)

    for _ in range(2):
        await tracker.record(make_result("ml", 0.9), 1.0, confidence_threshold=0.7)
    assert store.get(PERFORMANCE_KEY) is None

    await tracker.record(make_result("ml", 0.9), 1.0, confidence_threshold=0.7)
    assert store.get(PERFORMANCE_KEY)["total_categorizations"] == 3


@pytest.mark.anyio
async def test_load_restores_persisted_metrics() -> None:
    store = InMemoryStore()
    first = PerformanceTracker(store)
    await first.record(make_result("ml", 0.6), 4.0, confidence_threshold=0.5)
    await first.flush()

    second = PerformanceTracker(store)
    assert await second.load()

    metrics = second.snapshot()
    assert metrics.total_categorizations == 1
    assert metrics.average_confidence == pytest.approx(0.6)


@pytest.mark.anyio
async def test_load_ignores_invalid_data() -> None:
    store = InMemoryStore({PERFORMANCE_KEY: {"total_categorizations": "many"}})
    tracker = PerformanceTracker(store)

    assert not await tracker.load()
    assert tracker.snapshot().total_categorizations == 0


@pytest.mark.anyio
async def test_persistence_failure_does_not_raise() -> None:
    store = MagicMock()
    store.set.side_effect = PersistenceError(PERFORMANCE_KEY, OSError("disk full"))
    tracker = PerformanceTracker(store, persist_every=1)

    await tracker.record(make_result("ml", 0.9), 1.0, confidence_threshold=0.7)

    assert tracker.snapshot().total_categorizations == 1
    store.set.assert_called_once()


@pytest.mark.anyio
async def test_snapshot_is_a_copy() -> None:
    tracker = PerformanceTracker(InMemoryStore())
    await tracker.record(make_result("ml", 0.9), 1.0, confidence_threshold=0.7)

    snapshot = tracker.snapshot()
    snapshot.method_breakdown["ml"] = 100
    snapshot.total_categorizations = 100

    fresh = tracker.snapshot()
    assert fresh.method_breakdown == {"ml": 1}
    assert fresh.total_categorizations == 1


def test_persist_every_must_be_positive() -> None:
    with pytest.raises(ValueError):
        PerformanceTracker(InMemoryStore(), persist_every=0)


@pytest.mark.anyio
async def test_reset_zeroes_metrics() -> None:
    tracker = PerformanceTracker(InMemoryStore())
    await tracker.record(make_result("ml", 0.9), 5.0, confidence_threshold=0.7)

    tracker.reset()

    metrics = tracker.snapshot()
    assert metrics.total_categorizations == 0
    assert metrics.average_confidence == 0.0
    assert metrics.method_breakdown == {}
