import asyncio
from collections.abc import Callable, Iterable, Mapping, Sequence
from time import perf_counter
from typing import Any

from pydantic import ValidationError

from unified_categorizer import events as event_names
from unified_categorizer.batch import BatchEngine, CancellationToken, ProgressCallback
from unified_categorizer.core import settings
from unified_categorizer.errors import (
    PersistenceError,
    StrategyUnavailableError,
    UnknownStrategyError,
)
from unified_categorizer.events import EventBus
from unified_categorizer.logger import get_logger
from unified_categorizer.models import (
    CategorizationConfig,
    CategorizationResult,
    Category,
    PerformanceMetrics,
    Transaction,
    build_fallback_result,
)
from unified_categorizer.registry import StrategyRegistry
from unified_categorizer.resolution import resolve
from unified_categorizer.storage import KeyValueStore
from unified_categorizer.strategies.base import CategorizationStrategy
from unified_categorizer.strategies.factory import build_default_strategies
from unified_categorizer.tracker import DEFAULT_PERSIST_EVERY, PerformanceTracker

logger = get_logger(__name__)

CONFIG_KEY = "unified_categorization_config"

StrategyFactory = Callable[[], Iterable[CategorizationStrategy]]


class CategorizationOrchestrator:
    """
    Single entry point of the categorization engine.

    Meant to be created once per process and shared. Initialization is lazy
    and runs at most once until ``dispose()`` is called.
    """

    def __init__(
        self,
        store: KeyValueStore,
        events: EventBus | None = None,
        strategy_factory: StrategyFactory | None = None,
        *,
        defaults: CategorizationConfig | None = None,
        persist_every: int = DEFAULT_PERSIST_EVERY,
    ) -> None:
        self.store = store
        self.events = events or EventBus()
        self.strategy_factory = strategy_factory or (
            lambda: build_default_strategies(store, settings.DATA_DIR)
        )
        self._defaults = (defaults or CategorizationConfig()).model_copy(deep=True)
        # Replaced wholesale on update, never mutated in place.
        self._config = self._defaults.model_copy(deep=True)
        self.registry = StrategyRegistry()
        self.tracker = PerformanceTracker(store, persist_every=persist_every)
        self.batch_engine = BatchEngine(
            resolve_one=self.categorize_transaction,
            find_batch_strategy=self._find_batch_strategy,
            record_result=self._record_batch_result,
            events=self.events,
        )
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        if self._initialized:
            return
        async with self._init_lock:
            # another caller may have finished while we waited
            if self._initialized:
                return
            await self._perform_initialization()

    async def _perform_initialization(self) -> None:
        logger.info("[INIT] Initializing categorization orchestrator...")
        try:
            for strategy in self.strategy_factory():
                self.registry.register(strategy)
        except Exception:
            logger.exception("[INIT] Failed to register categorization strategies.")
            self.registry.dispose()
            raise

        self._config = await self._load_configuration()
        self.registry.update_config(self._config)
        await self.tracker.load()

        self._initialized = True
        logger.info(
            "[INIT] Registered %s strategies: %s (primary: %s).",
            len(self.registry),
            ", ".join(self.registry.names()) or "none",
            self._config.primary,
        )
        self.events.publish(
            event_names.READY,
            {
                "strategies": self.registry.names(),
                "config": self._config.model_dump(mode="json"),
            },
        )

    async def _load_configuration(self) -> CategorizationConfig:
        defaults = self._defaults.model_copy(deep=True)
        try:
            raw = await asyncio.to_thread(self.store.get, CONFIG_KEY)
        except PersistenceError as exc:
            logger.warning("[CONFIG] Failed to load categorization configuration: %s", exc)
            return defaults
        if raw is None:
            return defaults
        if not isinstance(raw, dict):
            logger.warning("[CONFIG] Ignoring persisted configuration of type %s.", type(raw).__name__)
            return defaults

        known = {key: value for key, value in raw.items() if key in CategorizationConfig.model_fields}
        ignored = sorted(set(raw) - set(known))
        if ignored:
            logger.info("[CONFIG] Ignoring unknown persisted settings: %s", ", ".join(ignored))
        try:
            return defaults.merged(known)
        except ValidationError as exc:
            logger.warning("[CONFIG] Persisted configuration is invalid, using defaults: %s", exc)
            return defaults

    async def _save_configuration(self, config: CategorizationConfig) -> None:
        try:
            await asyncio.to_thread(self.store.set, CONFIG_KEY, config.model_dump(mode="json"))
        except PersistenceError as exc:
            logger.warning("[CONFIG] Failed to save categorization configuration: %s", exc)

    async def categorize_transaction(self, transaction: Transaction) -> CategorizationResult:
        started = perf_counter()
        config = self._config
        try:
            await self.initialize()
            config = self._config
            available = await self.registry.get_available_strategies()
            result = await resolve(transaction, available, config)
        except Exception as exc:
            logger.error("[CATEGORIZE] Categorization of transaction %s failed: %s", transaction.id, exc)
            result = build_fallback_result(exc)
            result.processing_time = (perf_counter() - started) * 1000.0

        elapsed = (perf_counter() - started) * 1000.0
        await self._record(result, elapsed, config)

        if config.performance.log_slow_operations and elapsed > config.performance.slow_operation_threshold:
            logger.warning(
                "[CATEGORIZE] Slow categorization: %.0f ms for '%s'",
                elapsed,
                transaction.description[:50],
            )
        return result

    async def batch_categorize(
        self,
        transactions: Sequence[Transaction],
        *,
        batch_size: int | None = None,
        on_progress: ProgressCallback | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> list[CategorizationResult]:
        await self.initialize()
        return await self.batch_engine.run(
            list(transactions),
            self._config,
            batch_size=batch_size,
            on_progress=on_progress,
            cancellation_token=cancellation_token,
        )

    async def _find_batch_strategy(self, config: CategorizationConfig) -> CategorizationStrategy | None:
        if not self.registry.supports_batch(config.primary):
            return None
        strategy = self.registry.get_strategy(config.primary)
        if strategy is None or not await self.registry.check_available(strategy):
            return None
        return strategy

    async def _record(
        self,
        result: CategorizationResult,
        processing_time: float,
        config: CategorizationConfig,
    ) -> None:
        if not config.performance.track_metrics:
            return
        await self.tracker.record(
            result,
            processing_time,
            confidence_threshold=config.confidence_threshold,
        )

    async def _record_batch_result(self, result: CategorizationResult, processing_time: float) -> None:
        await self._record(result, processing_time, self._config)

    async def get_available_strategies(self) -> list[str]:
        await self.initialize()
        strategies = await self.registry.get_available_strategies()
        return [strategy.name for strategy in strategies]

    async def switch_primary_strategy(self, name: str) -> None:
        await self.initialize()
        strategy = self.registry.get_strategy(name)
        if strategy is None:
            raise UnknownStrategyError(name)
        if not await self.registry.check_available(strategy):
            raise StrategyUnavailableError(name)
        await self.update_configuration({"primary": name})
        logger.info("[CONFIG] Switched primary categorization strategy to: %s", name)

    def get_configuration(self) -> CategorizationConfig:
        return self._config.model_copy(deep=True)

    async def update_configuration(self, updates: Mapping[str, Any]) -> CategorizationConfig:
        """
        Merge ``updates`` into the live configuration.

        Raises pydantic's ValidationError for unknown keys or invalid values,
        in which case the live configuration is left untouched.
        """
        await self.initialize()
        config = self._config.merged(dict(updates))
        self._config = config
        self.registry.update_config(config)
        await self._save_configuration(config)
        self.events.publish(event_names.CONFIG_UPDATED, config.model_dump(mode="json"))
        return config.model_copy(deep=True)

    def get_performance_metrics(self) -> PerformanceMetrics:
        return self.tracker.snapshot()

    async def reset_performance_metrics(self) -> PerformanceMetrics:
        self.tracker.reset()
        await self.tracker.flush()
        logger.info("[METRICS] Performance metrics reset.")
        return self.tracker.snapshot()

    async def learn(self, transaction: Transaction, category: Category) -> bool:
        await self.initialize()
        if not self._config.enable_learning:
            logger.debug("[LEARN] Learning disabled; ignoring feedback for %s.", transaction.id)
            return False
        for strategy in self.registry.get_all_strategies():
            try:
                await asyncio.to_thread(strategy.learn, transaction, category)
            except Exception as exc:
                logger.warning("[LEARN] Strategy '%s' failed to learn: %s", strategy.name, exc)
        logger.info("[LEARN] Transaction %s -> '%s'", transaction.id, category.name)
        return True

    def should_auto_apply(self, result: CategorizationResult) -> bool:
        config = self._config
        return (
            config.auto_apply_high_confidence
            and not result.is_fallback
            and result.confidence >= config.confidence_threshold
        )

    async def dispose(self) -> None:
        if self._initialized and self._config.performance.track_metrics:
            await self.tracker.flush()
        self.registry.dispose()
        self._initialized = False
        self._init_lock = asyncio.Lock()
        logger.info("[INIT] Categorization orchestrator disposed.")
