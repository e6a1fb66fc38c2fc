import json
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import ValidationError

from unified_categorizer.api.dependencies import get_orchestrator
from unified_categorizer.api.schemas import StrategiesResponse, SwitchStrategyRequest
from unified_categorizer.errors import StrategyUnavailableError, UnknownStrategyError
from unified_categorizer.logger import get_logger
from unified_categorizer.models import CategorizationConfig, PerformanceMetrics
from unified_categorizer.orchestrator import CategorizationOrchestrator

logger = get_logger(__name__)

router = APIRouter()


@router.get("/strategies", response_model=StrategiesResponse)
async def list_strategies(
    orchestrator: Annotated[CategorizationOrchestrator, Depends(get_orchestrator)],
) -> StrategiesResponse:
    available = await orchestrator.get_available_strategies()
    return StrategiesResponse(
        primary=orchestrator.get_configuration().primary,
        registered=orchestrator.registry.names(),
        available=available,
    )


@router.post("/strategies/primary", response_model=StrategiesResponse)
async def switch_primary_strategy(
    req: SwitchStrategyRequest,
    orchestrator: Annotated[CategorizationOrchestrator, Depends(get_orchestrator)],
) -> StrategiesResponse:
    try:
        await orchestrator.switch_primary_strategy(req.name)
    except UnknownStrategyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StrategyUnavailableError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return await list_strategies(orchestrator)


@router.get("/config", response_model=CategorizationConfig)
async def get_config(
    orchestrator: Annotated[CategorizationOrchestrator, Depends(get_orchestrator)],
) -> CategorizationConfig:
    await orchestrator.initialize()
    return orchestrator.get_configuration()


@router.patch("/config", response_model=CategorizationConfig)
async def update_config(
    updates: Annotated[dict[str, Any], Body()],
    orchestrator: Annotated[CategorizationOrchestrator, Depends(get_orchestrator)],
) -> CategorizationConfig:
    try:
        return await orchestrator.update_configuration(updates)
    except ValidationError as exc:
        logger.warning("[CONFIG] Rejected configuration update: %s", exc)
        raise HTTPException(status_code=422, detail=json.loads(exc.json(include_url=False))) from exc


@router.get("/metrics", response_model=PerformanceMetrics)
async def get_metrics(
    orchestrator: Annotated[CategorizationOrchestrator, Depends(get_orchestrator)],
) -> PerformanceMetrics:
    return orchestrator.get_performance_metrics()


@router.delete("/metrics", response_model=PerformanceMetrics)
async def reset_metrics(
    orchestrator: Annotated[CategorizationOrchestrator, Depends(get_orchestrator)],
) -> PerformanceMetrics:
    return await orchestrator.reset_performance_metrics()
