import asyncio
from dataclasses import dataclass

from unified_categorizer.logger import get_logger
from unified_categorizer.models import CategorizationConfig
from unified_categorizer.strategies.base import CategorizationStrategy, has_batch_support

logger = get_logger(__name__)


@dataclass(frozen=True)
class _Entry:
    strategy: CategorizationStrategy
    supports_batch: bool


class StrategyRegistry:
    def __init__(self) -> None:
        # dicts keep insertion order, which is the registration order
        self._entries: dict[str, _Entry] = {}

    def register(self, strategy: CategorizationStrategy) -> None:
        """
        Add ``strategy`` under its name.

        Registering a name twice replaces the earlier strategy (last write
        wins) and disposes the one being replaced.
        """
        previous = self._entries.pop(strategy.name, None)
        if previous is not None and previous.strategy is not strategy:
            logger.warning(
                "[REGISTRY] Strategy '%s' registered twice; replacing %r.",
                strategy.name,
                previous.strategy,
            )
            self._dispose_strategy(previous.strategy)
        self._entries[strategy.name] = _Entry(
            strategy=strategy,
            supports_batch=has_batch_support(strategy),
        )
        logger.debug("[REGISTRY] Registered %r.", strategy)

    def unregister(self, name: str) -> bool:
        entry = self._entries.pop(name, None)
        if entry is None:
            return False
        self._dispose_strategy(entry.strategy)
        logger.info("[REGISTRY] Unregistered strategy '%s'.", name)
        return True

    def get_strategy(self, name: str) -> CategorizationStrategy | None:
        entry = self._entries.get(name)
        return entry.strategy if entry else None

    def supports_batch(self, name: str) -> bool:
        entry = self._entries.get(name)
        return bool(entry and entry.supports_batch)

    def get_all_strategies(self) -> list[CategorizationStrategy]:
        return [entry.strategy for entry in self._entries.values()]

    def names(self) -> list[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    async def check_available(self, strategy: CategorizationStrategy) -> bool:
        try:
            return await strategy.is_available() is True
        except Exception as exc:
            logger.warning(
                "[REGISTRY] Availability check of '%s' failed: %s",
                strategy.name,
                exc,
            )
            return False

    async def get_available_strategies(self) -> list[CategorizationStrategy]:
        strategies = self.get_all_strategies()
        if not strategies:
            return []
        flags = await asyncio.gather(*(self.check_available(s) for s in strategies))
        return [strategy for strategy, available in zip(strategies, flags) if available]

    def update_config(self, config: CategorizationConfig) -> None:
        for strategy in self.get_all_strategies():
            try:
                strategy.update_config(config)
            except Exception as exc:
                logger.warning(
                    "[REGISTRY] Strategy '%s' rejected configuration update: %s",
                    strategy.name,
                    exc,
                )

    def dispose(self) -> None:
        for strategy in self.get_all_strategies():
            self._dispose_strategy(strategy)
        self._entries.clear()

    @staticmethod
    def _dispose_strategy(strategy: CategorizationStrategy) -> None:
        dispose = getattr(strategy, "dispose", None)
        if not callable(dispose):
            return
        try:
            dispose()
        except Exception as exc:
            logger.warning("[REGISTRY] Disposing '%s' failed: %s", strategy.name, exc)
