import asyncio
import threading
from collections.abc import Awaitable, Callable, Sequence
from time import perf_counter

from unified_categorizer import events as event_names
from unified_categorizer.errors import BatchAbortedError, StrategyExecutionError
from unified_categorizer.events import EventBus
from unified_categorizer.logger import get_logger
from unified_categorizer.models import (
    CategorizationConfig,
    CategorizationResult,
    Transaction,
    build_fallback_result,
)
from unified_categorizer.resolution import invoke_strategy
from unified_categorizer.strategies.base import CategorizationStrategy

logger = get_logger(__name__)

DEFAULT_YIELD_DELAY = 0.01  # seconds between chunks

ProgressCallback = Callable[[int, int], None]
ResolveOne = Callable[[Transaction], Awaitable[CategorizationResult]]
FindBatchStrategy = Callable[[CategorizationConfig], Awaitable[CategorizationStrategy | None]]
RecordResult = Callable[[CategorizationResult, float], Awaitable[None]]


class CancellationToken:
    """Cooperative cancellation flag, safe to set from any thread."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def chunked(items: Sequence[Transaction], size: int) -> list[list[Transaction]]:
    if size < 1:
        raise ValueError("batch_size must be a positive integer")
    return [list(items[index:index + size]) for index in range(0, len(items), size)]


class BatchEngine:
    def __init__(
        self,
        *,
        resolve_one: ResolveOne,
        find_batch_strategy: FindBatchStrategy,
        record_result: RecordResult,
        events: EventBus,
        yield_delay: float = DEFAULT_YIELD_DELAY,
    ) -> None:
        self.resolve_one = resolve_one
        self.find_batch_strategy = find_batch_strategy
        self.record_result = record_result
        self.events = events
        self.yield_delay = yield_delay

    async def run(
        self,
        transactions: Sequence[Transaction],
        config: CategorizationConfig,
        *,
        batch_size: int | None = None,
        on_progress: ProgressCallback | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> list[CategorizationResult]:
        size = batch_size if batch_size is not None else config.batch_size
        chunks = chunked(transactions, size)
        total = len(transactions)
        results: list[CategorizationResult] = []

        logger.info(
            "[BATCH] Starting batch categorization: %s transactions in %s chunks.",
            total,
            len(chunks),
        )

        for index, chunk in enumerate(chunks):
            if cancellation_token is not None and cancellation_token.cancelled:
                logger.info("[BATCH] Aborted after %s/%s transactions.", len(results), total)
                raise BatchAbortedError(completed=len(results), total=total)

            results.extend(await self._process_chunk(chunk, config))

            if on_progress is not None:
                on_progress(len(results), total)

            if index < len(chunks) - 1:
                await asyncio.sleep(self.yield_delay)

        successful = sum(1 for result in results if not result.is_fallback)
        average_confidence = (
            sum(result.confidence for result in results) / len(results) if results else 0.0
        )
        logger.info(
            "[BATCH] Complete: %s transactions processed, %s categorized, average confidence %.2f.",
            len(results),
            successful,
            average_confidence,
        )
        self.events.publish(
            event_names.BATCH_COMPLETE,
            {
                "total": total,
                "successful": successful,
                "average_confidence": average_confidence,
            },
        )
        return results

    async def _process_chunk(
        self,
        chunk: list[Transaction],
        config: CategorizationConfig,
    ) -> list[CategorizationResult]:
        native = await self._run_native(chunk, config)
        if native is not None:
            return native
        return list(await asyncio.gather(*(self._resolve_safely(tx) for tx in chunk)))

    async def _run_native(
        self,
        chunk: list[Transaction],
        config: CategorizationConfig,
    ) -> list[CategorizationResult] | None:
        strategy = await self.find_batch_strategy(config)
        if strategy is None:
            return None

        started = perf_counter()
        try:
            results = list(
                await invoke_strategy(
                    strategy.name,
                    lambda: strategy.batch_categorize(chunk),  # type: ignore[attr-defined]
                    timeout=config.strategy_timeout,
                )
            )
        except StrategyExecutionError as exc:
            logger.warning(
                "[BATCH] Native batch failed, processing chunk item by item: %s", exc
            )
            return None
        if len(results) != len(chunk):
            logger.warning(
                "[BATCH] Strategy '%s' returned %s results for %s transactions; "
                "processing chunk item by item.",
                strategy.name,
                len(results),
                len(chunk),
            )
            return None

        per_item = (perf_counter() - started) * 1000.0 / len(chunk)
        for result in results:
            await self.record_result(result, per_item)
        return results

    async def _resolve_safely(self, transaction: Transaction) -> CategorizationResult:
        started = perf_counter()
        try:
            return await self.resolve_one(transaction)
        except Exception as exc:
            logger.error("[BATCH] Failed to categorize transaction %s: %s", transaction.id, exc)
            result = build_fallback_result(exc)
            result.processing_time = (perf_counter() - started) * 1000.0
            await self.record_result(result, result.processing_time)
            return result
