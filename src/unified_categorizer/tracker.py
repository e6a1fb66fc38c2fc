import asyncio
import threading
from datetime import datetime, timezone

from pydantic import ValidationError

from unified_categorizer.errors import PersistenceError
from unified_categorizer.logger import get_logger
from unified_categorizer.models import CategorizationResult, PerformanceMetrics
from unified_categorizer.storage import KeyValueStore

logger = get_logger(__name__)

PERFORMANCE_KEY = "categorization_performance"
DEFAULT_PERSIST_EVERY = 10


def running_mean(current: float, value: float, count: int) -> float:
    return current + (value - current) / count


class PerformanceTracker:
    """
    Running aggregates over every resolved result.

    Means are updated in O(1) per sample. A snapshot is written to the store
    every ``persist_every`` updates, so an abrupt exit loses at most
    ``persist_every - 1`` samples.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        persist_every: int = DEFAULT_PERSIST_EVERY,
        storage_key: str = PERFORMANCE_KEY,
    ) -> None:
        if persist_every < 1:
            raise ValueError("persist_every must be at least 1")
        self.store = store
        self.persist_every = persist_every
        self.storage_key = storage_key
        self._metrics = PerformanceMetrics()
        self._lock = threading.Lock()

    async def load(self) -> bool:
        try:
            raw = await asyncio.to_thread(self.store.get, self.storage_key)
        except PersistenceError as exc:
            logger.warning("[METRICS] Failed to load performance data: %s", exc)
            return False
        if raw is None:
            return False
        try:
            metrics = PerformanceMetrics.model_validate(raw)
        except ValidationError as exc:
            logger.warning("[METRICS] Ignoring invalid performance data: %s", exc)
            return False
        with self._lock:
            self._metrics = metrics
        logger.info(
            "[METRICS] Restored performance data (%s categorizations).",
            metrics.total_categorizations,
        )
        return True

    async def record(
        self,
        result: CategorizationResult,
        processing_time: float,
        *,
        confidence_threshold: float,
    ) -> None:
        success = not result.is_fallback and result.confidence >= confidence_threshold
        with self._lock:
            metrics = self._metrics
            metrics.total_categorizations += 1
            count = metrics.total_categorizations
            metrics.average_processing_time = running_mean(
                metrics.average_processing_time, processing_time, count
            )
            metrics.average_confidence = running_mean(
                metrics.average_confidence, result.confidence, count
            )
            metrics.success_rate = running_mean(
                metrics.success_rate, 1.0 if success else 0.0, count
            )
            metrics.method_breakdown[result.method] = (
                metrics.method_breakdown.get(result.method, 0) + 1
            )
            metrics.last_updated = datetime.now(timezone.utc)
            snapshot = metrics.model_copy(deep=True) if count % self.persist_every == 0 else None

        if snapshot is not None:
            await self._persist(snapshot)

    def snapshot(self) -> PerformanceMetrics:
        with self._lock:
            return self._metrics.model_copy(deep=True)

    async def flush(self) -> None:
        await self._persist(self.snapshot())

    def reset(self) -> None:
        with self._lock:
            self._metrics = PerformanceMetrics()

    async def _persist(self, snapshot: PerformanceMetrics) -> None:
        try:
            await asyncio.to_thread(
                self.store.set,
                self.storage_key,
                snapshot.model_dump(mode="json"),
            )
        except PersistenceError as exc:
            logger.warning("[METRICS] Failed to save performance data: %s", exc)
