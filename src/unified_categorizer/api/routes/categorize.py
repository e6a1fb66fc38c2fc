from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from unified_categorizer.api.dependencies import get_orchestrator
from unified_categorizer.api.schemas import (
    BatchCategorizeRequest,
    CategorizeRequest,
    CategorizeResponse,
    LearnRequest,
)
from unified_categorizer.models import CategorizationResult
from unified_categorizer.orchestrator import CategorizationOrchestrator
from unified_categorizer.services.batch_stream import SSE_HEADERS, stream_batch

router = APIRouter()


@router.post("/categorize", response_model=CategorizeResponse)
async def categorize_transaction(
    req: CategorizeRequest,
    orchestrator: Annotated[CategorizationOrchestrator, Depends(get_orchestrator)],
) -> CategorizeResponse:
    result = await orchestrator.categorize_transaction(req.transaction)
    return CategorizeResponse(result=result, auto_apply=orchestrator.should_auto_apply(result))


@router.post("/categorize/batch", response_model=list[CategorizationResult])
async def categorize_batch(
    req: BatchCategorizeRequest,
    orchestrator: Annotated[CategorizationOrchestrator, Depends(get_orchestrator)],
) -> list[CategorizationResult]:
    return await orchestrator.batch_categorize(req.transactions, batch_size=req.batch_size)


@router.post("/categorize/batch-stream")
async def categorize_batch_stream(
    req: BatchCategorizeRequest,
    request: Request,
    orchestrator: Annotated[CategorizationOrchestrator, Depends(get_orchestrator)],
) -> StreamingResponse:
    return StreamingResponse(
        stream_batch(
            orchestrator,
            req.transactions,
            batch_size=req.batch_size,
            is_disconnected=request.is_disconnected,
        ),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/learn")
async def learn_transaction(
    req: LearnRequest,
    orchestrator: Annotated[CategorizationOrchestrator, Depends(get_orchestrator)],
) -> dict[str, str]:
    if not await orchestrator.learn(req.transaction, req.category):
        return {"status": "skipped", "message": "Learning is disabled"}
    return {"status": "success", "message": f"Learned '{req.category.name}'"}
