from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

FALLBACK_METHOD = "fallback"
FALLBACK_CATEGORY_ID = "uncategorized"
FALLBACK_CATEGORY_NAME = "Uncategorized"
FALLBACK_CONFIDENCE = 0.1


class Transaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    date: datetime
    description: str
    debit_amount: float = 0.0
    credit_amount: float = 0.0
    balance: float = 0.0
    reference: str | None = None

    @property
    def amount(self) -> float:
        return self.debit_amount or self.credit_amount or 0.0

    @property
    def is_debit(self) -> bool:
        return bool(self.debit_amount)


class Category(BaseModel):
    id: str
    name: str


class CategoryCandidate(BaseModel):
    category_id: str
    category_name: str
    confidence: float = Field(ge=0.0, le=1.0)


class ResultMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    anomaly_detected: bool = False
    strategy_used: str = ""
    fallback_reason: str | None = None
    model_used: str | None = None
    rule_matched: str | None = None


class CategorizationResult(BaseModel):
    category_id: str
    category_name: str
    confidence: float = Field(ge=0.0, le=1.0)
    method: str  # strategy name or "fallback"
    reasoning: str = ""
    suggestions: list[str] = Field(default_factory=list)
    alternatives: list[CategoryCandidate] = Field(default_factory=list)
    processing_time: float = 0.0  # milliseconds
    metadata: ResultMetadata = Field(default_factory=ResultMetadata)

    @property
    def is_fallback(self) -> bool:
        return self.method == FALLBACK_METHOD

    def with_fallback_reason(self, reason: str) -> "CategorizationResult":
        metadata = self.metadata.model_copy(update={"fallback_reason": reason})
        return self.model_copy(update={"metadata": metadata})


def build_fallback_result(error: BaseException | str | None = None) -> CategorizationResult:
    if isinstance(error, BaseException):
        reason = str(error) or error.__class__.__name__
    else:
        reason = error or "Unknown error"
    return CategorizationResult(
        category_id=FALLBACK_CATEGORY_ID,
        category_name=FALLBACK_CATEGORY_NAME,
        confidence=FALLBACK_CONFIDENCE,
        method=FALLBACK_METHOD,
        reasoning="Automatic categorization failed, manual review required",
        suggestions=["Review transaction manually", "Check categorization rules"],
        alternatives=[],
        processing_time=0.0,
        metadata=ResultMetadata(
            anomaly_detected=True,
            fallback_reason=reason,
            strategy_used="error-fallback",
        ),
    )


class PerformanceOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    track_metrics: bool = True
    log_slow_operations: bool = True
    slow_operation_threshold: float = Field(default=2000.0, ge=0.0)  # milliseconds


class CategorizationConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    primary: str = "ml-enhanced"
    fallback: list[str] = Field(default_factory=lambda: ["llm", "rule-based"])
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    batch_size: int = Field(default=10, gt=0)
    max_retries: int = Field(default=0, ge=0)
    retry_delay: float = Field(default=1000.0, ge=0.0)  # milliseconds
    strategy_timeout: float | None = Field(default=None, gt=0.0)  # seconds
    enable_learning: bool = True
    auto_apply_high_confidence: bool = True
    performance: PerformanceOptions = Field(default_factory=PerformanceOptions)

    def merged(self, updates: dict[str, Any]) -> "CategorizationConfig":
        """Return a validated copy with ``updates`` applied on top."""
        data = self.model_dump()
        performance_updates = updates.get("performance")
        if isinstance(performance_updates, dict):
            updates = {
                **updates,
                "performance": {**data["performance"], **performance_updates},
            }
        return CategorizationConfig.model_validate({**data, **updates})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PerformanceMetrics(BaseModel):
    total_categorizations: int = 0
    average_confidence: float = 0.0
    average_processing_time: float = 0.0  # milliseconds
    success_rate: float = 0.0
    method_breakdown: dict[str, int] = Field(default_factory=dict)
    last_updated: datetime = Field(default_factory=_utcnow)
