from pydantic import BaseModel, Field

from unified_categorizer.models import CategorizationResult, Category, Transaction


class CategorizeRequest(BaseModel):
    transaction: Transaction


class CategorizeResponse(BaseModel):
    result: CategorizationResult
    auto_apply: bool


class BatchCategorizeRequest(BaseModel):
    transactions: list[Transaction]
    batch_size: int | None = Field(default=None, gt=0)


class LearnRequest(BaseModel):
    transaction: Transaction
    category: Category


class SwitchStrategyRequest(BaseModel):
    name: str


class StrategiesResponse(BaseModel):
    primary: str
    registered: list[str]
    available: list[str]
