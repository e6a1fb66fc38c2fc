from abc import ABC, abstractmethod
from collections.abc import Sequence

from unified_categorizer.models import (
    FALLBACK_CATEGORY_ID,
    FALLBACK_CATEGORY_NAME,
    CategorizationConfig,
    CategorizationResult,
    Category,
    ResultMetadata,
    Transaction,
)


class CategorizationStrategy(ABC):
    """
    A named classifier backend.

    ``priority`` is informational; the order in which strategies are tried
    comes from the active configuration. Subclasses may also define
    ``async def batch_categorize(self, transactions)`` returning one result
    per transaction, in order. The registry detects it once, on registration.
    """

    name: str
    priority: int = 100

    @abstractmethod
    async def is_available(self) -> bool:
        """Report whether the backend can serve requests right now."""

    @abstractmethod
    async def categorize(self, transaction: Transaction) -> CategorizationResult:
        """Categorize one transaction. May raise."""

    def update_config(self, config: CategorizationConfig) -> None:
        pass

    def learn(self, transaction: Transaction, category: Category) -> None:
        pass

    def dispose(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} priority={self.priority}>"


def has_batch_support(strategy: object) -> bool:
    return callable(getattr(strategy, "batch_categorize", None))


def no_match_result(
    method: str,
    reasoning: str,
    processing_time: float = 0.0,
    suggestions: Sequence[str] = (),
) -> CategorizationResult:
    return CategorizationResult(
        category_id=FALLBACK_CATEGORY_ID,
        category_name=FALLBACK_CATEGORY_NAME,
        confidence=0.0,
        method=method,
        reasoning=reasoning,
        suggestions=list(suggestions),
        processing_time=processing_time,
        metadata=ResultMetadata(strategy_used=method),
    )
