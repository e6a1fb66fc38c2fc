"""
Primary -> fallback -> last-resort resolution of a single transaction.

The primary strategy wins when it reaches ``confidence_threshold``. Fallback
strategies are accepted at a relaxed bar of ``confidence_threshold * 0.8``.
When nothing qualifies, the first available strategy's answer is accepted
unconditionally, so resolution always ends after at most one call per
strategy.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from unified_categorizer.errors import NoStrategiesAvailableError, StrategyExecutionError
from unified_categorizer.logger import get_logger
from unified_categorizer.models import CategorizationConfig, CategorizationResult, Transaction
from unified_categorizer.strategies.base import CategorizationStrategy

logger = get_logger(__name__)

FALLBACK_THRESHOLD_FACTOR = 0.8
LAST_RESORT_REASON = "All primary strategies failed or had low confidence"

T = TypeVar("T")


def insufficient_primary_reason(primary: str) -> str:
    return f"Primary strategy {primary} insufficient confidence"


async def invoke_strategy(
    strategy_name: str,
    call: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 0,
    retry_delay: float = 0.0,
    timeout: float | None = None,
) -> T:
    """
    Run ``call`` with an optional timeout (seconds), retrying failures up to
    ``max_retries`` times with a linear backoff of ``retry_delay`` ms.
    """
    attempt = 0
    while True:
        try:
            if timeout is not None:
                return await asyncio.wait_for(call(), timeout=timeout)
            return await call()
        except Exception as exc:
            if timeout is not None and isinstance(exc, TimeoutError):
                exc = TimeoutError(f"timed out after {timeout:.2f}s")
            if attempt >= max_retries:
                raise StrategyExecutionError(strategy_name, exc) from exc
            attempt += 1
            logger.warning(
                "[RESOLVE] Strategy '%s' failed (attempt %s/%s): %s",
                strategy_name,
                attempt,
                max_retries + 1,
                exc,
            )
            if retry_delay > 0:
                await asyncio.sleep(retry_delay * attempt / 1000.0)


class _Attempts:
    """Outcome of each strategy call, so no strategy runs twice in one resolution."""

    def __init__(self, transaction: Transaction, config: CategorizationConfig) -> None:
        self.transaction = transaction
        self.config = config
        self._outcomes: dict[str, CategorizationResult | StrategyExecutionError] = {}

    async def run(self, strategy: CategorizationStrategy) -> CategorizationResult:
        outcome = self._outcomes.get(strategy.name)
        if outcome is None:
            try:
                outcome = await invoke_strategy(
                    strategy.name,
                    lambda: strategy.categorize(self.transaction),
                    max_retries=self.config.max_retries,
                    retry_delay=self.config.retry_delay,
                    timeout=self.config.strategy_timeout,
                )
            except StrategyExecutionError as exc:
                outcome = exc
            self._outcomes[strategy.name] = outcome
        if isinstance(outcome, StrategyExecutionError):
            raise outcome
        return outcome


async def resolve(
    transaction: Transaction,
    available: Sequence[CategorizationStrategy],
    config: CategorizationConfig,
) -> CategorizationResult:
    if not available:
        raise NoStrategiesAvailableError()

    by_name = {strategy.name: strategy for strategy in available}
    attempts = _Attempts(transaction, config)
    threshold = config.confidence_threshold

    primary = by_name.get(config.primary)
    if primary is None:
        logger.debug("[RESOLVE] Primary strategy '%s' is not available.", config.primary)
    else:
        try:
            result = await attempts.run(primary)
        except StrategyExecutionError as exc:
            logger.warning("[RESOLVE] Primary %s", exc)
        else:
            if result.confidence >= threshold:
                return result
            logger.debug(
                "[RESOLVE] Primary '%s' confidence %.2f below threshold %.2f.",
                primary.name,
                result.confidence,
                threshold,
            )

    relaxed_threshold = threshold * FALLBACK_THRESHOLD_FACTOR
    for name in config.fallback:
        strategy = by_name.get(name)
        if strategy is None:
            continue
        try:
            result = await attempts.run(strategy)
        except StrategyExecutionError as exc:
            logger.warning("[RESOLVE] Fallback %s", exc)
            continue
        if result.confidence >= relaxed_threshold:
            return result.with_fallback_reason(insufficient_primary_reason(config.primary))
        logger.debug(
            "[RESOLVE] Fallback '%s' confidence %.2f below relaxed threshold %.2f.",
            name,
            result.confidence,
            relaxed_threshold,
        )

    last_resort = available[0]
    logger.debug("[RESOLVE] Using last-resort strategy '%s'.", last_resort.name)
    result = await attempts.run(last_resort)
    return result.with_fallback_reason(LAST_RESORT_REASON)
