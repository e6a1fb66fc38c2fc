import asyncio
import os
from collections.abc import Callable, Sequence
from time import monotonic, perf_counter

from openai import OpenAI

from unified_categorizer.logger import get_logger
from unified_categorizer.models import (
    FALLBACK_CATEGORY_NAME,
    CategorizationResult,
    Category,
    ResultMetadata,
    Transaction,
)

from .base import CategorizationStrategy, no_match_result

logger = get_logger(__name__)

LLM_CONFIDENCE = 0.9  # chat models don't expose a calibrated score
DEFAULT_HEALTH_TTL_SECONDS = 30.0

CategoryProvider = Callable[[], Sequence[Category]]


class LLMStrategy(CategorizationStrategy):
    name = "llm"
    priority = 2

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-3.5-turbo",
        base_url: str | None = None,
        categories: CategoryProvider | None = None,
        health_ttl: float = DEFAULT_HEALTH_TTL_SECONDS,
        client: OpenAI | None = None,
    ) -> None:
        resolved_base_url = base_url or os.getenv("OPENAI_BASE_URL") or None
        self.client = client or OpenAI(
            # OpenAI-compatible local servers accept any key
            api_key=api_key or os.getenv("OPENAI_API_KEY") or "local",
            base_url=resolved_base_url,
        )
        self.model = model
        self.categories = categories or (lambda: ())
        self.health_ttl = max(0.0, health_ttl)
        self._healthy = False
        self._health_expires_at = 0.0

    async def is_available(self) -> bool:
        if monotonic() < self._health_expires_at:
            return self._healthy
        try:
            await asyncio.to_thread(self.client.models.list)
            healthy = True
        except Exception as exc:
            logger.debug("[LLM] Health check failed: %s", exc)
            healthy = False
        self._healthy = healthy
        self._health_expires_at = monotonic() + self.health_ttl
        return healthy

    def _build_prompt(self, transaction: Transaction, categories: Sequence[Category]) -> str:
        prompt_categories = ""
        if categories:
            names = ", ".join(category.name for category in categories)
            prompt_categories = f"\nUse ONLY one of the following categories: {names}"
        direction = "debit" if transaction.is_debit else "credit"
        return f"""
            Categorize this financial transaction into a standard category.
            Transaction: {transaction.description}
            Amount: {transaction.amount} ({direction})
            Date: {transaction.date:%Y-%m-%d}
            Reference: {transaction.reference or "-"}
            {prompt_categories}

            Return ONLY the category name. If unsure or if it doesn't fit any valid category, return '{FALLBACK_CATEGORY_NAME}'.
            """

    async def categorize(self, transaction: Transaction) -> CategorizationResult:
        started = perf_counter()
        categories = list(self.categories())
        response = await asyncio.to_thread(
            self.client.responses.create,
            model=self.model,
            instructions="You are a helpful financial assistant.",
            input=self._build_prompt(transaction, categories),
            temperature=0.0,
        )
        elapsed = (perf_counter() - started) * 1000.0

        answer = (self._extract_output_text(response) or "").strip().strip(".'\"")
        by_name = {category.name.lower(): category for category in categories}
        category = by_name.get(answer.lower())
        if category is None and answer and answer.lower() != FALLBACK_CATEGORY_NAME.lower() and not categories:
            # No category list to validate against; take the model's label as is.
            category = Category(id=answer.lower().replace(" ", "_"), name=answer)

        if category is None:
            return no_match_result(
                self.name,
                f"Model answered '{answer or 'nothing'}', which is not a known category",
                processing_time=elapsed,
            )

        return CategorizationResult(
            category_id=category.id,
            category_name=category.name,
            confidence=LLM_CONFIDENCE,
            method=self.name,
            reasoning=f"Language model {self.model} selected '{category.name}'",
            processing_time=elapsed,
            metadata=ResultMetadata(strategy_used=self.name, model_used=self.model),
        )

    @staticmethod
    def _extract_output_text(response: object) -> str | None:
        output_text = getattr(response, "output_text", None)
        if isinstance(output_text, str) and output_text:
            return output_text

        output = getattr(response, "output", None)
        if not output:
            return None

        parts: list[str] = []
        for item in output:
            for block in getattr(item, "content", None) or ():
                if getattr(block, "type", None) in {"output_text", "text"}:
                    text = getattr(block, "text", None)
                    if text:
                        parts.append(text)
        return "".join(parts) or None

    def dispose(self) -> None:
        self.client.close()
