import asyncio
import json
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

from unified_categorizer.batch import CancellationToken
from unified_categorizer.errors import BatchAbortedError
from unified_categorizer.logger import get_logger
from unified_categorizer.models import Transaction
from unified_categorizer.orchestrator import CategorizationOrchestrator

logger = get_logger(__name__)

# SSE headers to reduce proxy buffering and keep connections alive.
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

DISCONNECT_POLL_SECONDS = 0.5

DisconnectCheck = Callable[[], Awaitable[bool]]


def _event(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def stream_batch(
    orchestrator: CategorizationOrchestrator,
    transactions: list[Transaction],
    *,
    batch_size: int | None = None,
    is_disconnected: DisconnectCheck | None = None,
) -> AsyncGenerator[str, None]:
    """
    Server-sent events for a batch run: ``start``, one ``processing`` per
    chunk, then ``complete`` with the results, ``aborted`` or ``error``.
    The batch is cancelled at the next chunk boundary once the client is gone.
    """
    total = len(transactions)
    progress: asyncio.Queue[tuple[int, int]] = asyncio.Queue()
    token = CancellationToken()

    task = asyncio.create_task(orchestrator.batch_categorize(
        transactions,
        batch_size=batch_size,
        on_progress=lambda completed, count: progress.put_nowait((completed, count)),
        cancellation_token=token,
    ))

    yield _event({"stage": "start", "total": total})
    try:
        while not task.done() or not progress.empty():
            try:
                completed, count = await asyncio.wait_for(progress.get(), DISCONNECT_POLL_SECONDS)
            except TimeoutError:
                if is_disconnected is not None and await is_disconnected():
                    logger.info("[BATCH] Client disconnected, cancelling batch.")
                    token.cancel()
                continue
            percent = round(completed / count * 100, 1) if count else 100.0
            yield _event({
                "stage": "processing",
                "completed": completed,
                "total": count,
                "percent": percent,
            })

        try:
            results = task.result()
        except BatchAbortedError as exc:
            yield _event({"stage": "aborted", "completed": exc.completed, "total": exc.total})
            return
        except Exception as exc:
            logger.error("[BATCH] Streaming batch failed: %s", exc)
            yield _event({"stage": "error", "message": str(exc)})
            return

        yield _event({
            "stage": "complete",
            "total": total,
            "results": [result.model_dump(mode="json") for result in results],
        })
    finally:
        if not task.done():
            token.cancel()
            try:
                await task
            except BatchAbortedError:
                logger.info("[BATCH] Streaming batch cancelled.")
