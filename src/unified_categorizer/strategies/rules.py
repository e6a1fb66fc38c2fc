import asyncio
import re
import threading
import uuid
from time import perf_counter

from pydantic import BaseModel, Field, ValidationError
from rapidfuzz import fuzz, process

from unified_categorizer.errors import PersistenceError
from unified_categorizer.logger import get_logger
from unified_categorizer.models import (
    CategorizationResult,
    Category,
    CategoryCandidate,
    ResultMetadata,
    Transaction,
)
from unified_categorizer.storage import KeyValueStore

from .base import CategorizationStrategy, no_match_result

logger = get_logger(__name__)

RULES_KEY = "categorization_rules"
MEMORY_KEY = "categorization_memory"
RULE_MATCH_CONFIDENCE = 0.8
MIN_FUZZY_KEYWORD_LENGTH = 5


class CategorizationRule(BaseModel):
    id: str = Field(default_factory=lambda: f"rule_{uuid.uuid4().hex[:12]}")
    category_id: str
    category_name: str
    keywords: list[str]
    description: str = ""
    amount_min: float | None = None
    amount_max: float | None = None
    priority: int = 100
    is_active: bool = True


def _rule(rule_id: str, category_id: str, name: str, keywords: list[str], priority: int) -> CategorizationRule:
    return CategorizationRule(
        id=rule_id,
        category_id=category_id,
        category_name=name,
        keywords=keywords,
        description=f"{name} transactions",
        priority=priority,
    )


DEFAULT_RULES: tuple[CategorizationRule, ...] = (
    _rule("rule_payroll", "cat_income", "Income", ["salary", "payroll", "wages"], 1),
    _rule("rule_bank_fees", "cat_bank_fees", "Bank Fees",
          ["bank fee", "service charge", "overdraft", "commission"], 2),
    _rule("rule_housing", "cat_housing", "Housing", ["rent", "mortgage"], 3),
    _rule("rule_utilities", "cat_utilities", "Utilities",
          ["electricity", "water bill", "internet", "telecom"], 4),
    _rule("rule_groceries", "cat_groceries", "Groceries", ["supermarket", "grocery", "groceries"], 5),
    _rule("rule_transport", "cat_transport", "Transport", ["uber", "taxi", "fuel", "petrol", "parking"], 6),
    _rule("rule_subscriptions", "cat_subscriptions", "Subscriptions",
          ["netflix", "spotify", "subscription"], 7),
    _rule("rule_transfers", "cat_transfers", "Transfers", ["transfer", "atm withdrawal"], 8),
)


class RuleBasedStrategy(CategorizationStrategy):
    """
    Learned description memory first, then keyword rules.

    Memory hits score 1.0 (exact) or the fuzzy score. Keyword rules score
    0.8 on a whole-word match, scaled down by the fuzzy score otherwise.
    """

    name = "rule-based"
    priority = 3

    def __init__(
        self,
        store: KeyValueStore,
        *,
        memory_threshold: float = 90.0,
        fuzzy_threshold: float = 90.0,
    ) -> None:
        self.store = store
        self.memory_threshold = memory_threshold
        self.fuzzy_threshold = fuzzy_threshold
        self.rules: list[CategorizationRule] = []
        self.memory: dict[str, dict[str, str]] = {}  # description -> category
        self._lock = threading.Lock()
        self.load()

    async def is_available(self) -> bool:
        return True

    def load(self) -> None:
        self.rules = self._load_rules()
        if not self.rules:
            self.rules = [rule.model_copy() for rule in DEFAULT_RULES]
            self._save(RULES_KEY, [rule.model_dump() for rule in self.rules])
        self.memory = self._load_memory()

    def _load_rules(self) -> list[CategorizationRule]:
        try:
            raw = self.store.get(RULES_KEY) or []
        except PersistenceError as exc:
            logger.warning("[RULES] Failed to load rules: %s", exc)
            return []
        if not isinstance(raw, list):
            logger.warning("[RULES] Ignoring stored rules of type %s.", type(raw).__name__)
            return []
        rules: list[CategorizationRule] = []
        for item in raw:
            try:
                rules.append(CategorizationRule.model_validate(item))
            except ValidationError as exc:
                logger.warning("[RULES] Skipping invalid rule %r: %s", item, exc)
        return rules

    def _load_memory(self) -> dict[str, dict[str, str]]:
        try:
            raw = self.store.get(MEMORY_KEY) or {}
        except PersistenceError as exc:
            logger.warning("[RULES] Failed to load memory: %s", exc)
            return {}
        if not isinstance(raw, dict):
            logger.warning("[RULES] Ignoring stored memory of type %s.", type(raw).__name__)
            return {}
        return {
            description: entry
            for description, entry in raw.items()
            if isinstance(entry, dict) and "category_id" in entry and "category_name" in entry
        }

    def _save(self, key: str, value: object) -> None:
        try:
            self.store.set(key, value)
        except PersistenceError as exc:
            logger.warning("[RULES] Failed to save %s: %s", key, exc)

    def get_rules(self) -> list[CategorizationRule]:
        return [rule.model_copy(deep=True) for rule in self.rules]

    def add_rule(self, rule: CategorizationRule) -> CategorizationRule:
        with self._lock:
            self.rules = [existing for existing in self.rules if existing.id != rule.id]
            self.rules.append(rule)
            self._save(RULES_KEY, [item.model_dump() for item in self.rules])
        return rule

    def delete_rule(self, rule_id: str) -> bool:
        with self._lock:
            remaining = [rule for rule in self.rules if rule.id != rule_id]
            if len(remaining) == len(self.rules):
                return False
            self.rules = remaining
            self._save(RULES_KEY, [item.model_dump() for item in self.rules])
        return True

    def known_categories(self) -> list[Category]:
        categories: dict[str, Category] = {}
        for rule in self.rules:
            categories.setdefault(rule.category_id, Category(id=rule.category_id, name=rule.category_name))
        for entry in self.memory.values():
            categories.setdefault(
                entry["category_id"],
                Category(id=entry["category_id"], name=entry["category_name"]),
            )
        return list(categories.values())

    def learn(self, transaction: Transaction, category: Category) -> None:
        with self._lock:
            # swap in a new dict; readers may be iterating the old one
            memory = dict(self.memory)
            memory[transaction.description] = {
                "category_id": category.id,
                "category_name": category.name,
            }
            self.memory = memory
            self._save(MEMORY_KEY, memory)

    def clear_memory(self) -> None:
        with self._lock:
            self.memory = {}
            self._save(MEMORY_KEY, self.memory)

    def _match_memory(self, description: str) -> tuple[CategoryCandidate, str] | None:
        if not self.memory:
            return None

        entry = self.memory.get(description)
        if entry:
            return CategoryCandidate(
                category_id=entry["category_id"],
                category_name=entry["category_name"],
                confidence=1.0,
            ), f"Exact match with learned transaction '{description}'"

        match = process.extractOne(description, self.memory.keys(), scorer=fuzz.token_sort_ratio)
        if match:
            match_description, score, _ = match
            if score >= self.memory_threshold:
                entry = self.memory[match_description]
                return CategoryCandidate(
                    category_id=entry["category_id"],
                    category_name=entry["category_name"],
                    confidence=score / 100.0,
                ), f"Similar to learned transaction '{match_description}' ({score:.0f}%)"
        return None

    def _rule_confidence(self, rule: CategorizationRule, description: str, amount: float) -> float:
        if rule.amount_min is not None and amount < rule.amount_min:
            return 0.0
        if rule.amount_max is not None and amount > rule.amount_max:
            return 0.0

        best = 0.0
        for keyword in rule.keywords:
            needle = keyword.strip().lower()
            if not needle:
                continue
            if re.search(rf"\b{re.escape(needle)}\b", description):
                return RULE_MATCH_CONFIDENCE
            if len(needle) >= MIN_FUZZY_KEYWORD_LENGTH:
                score = fuzz.partial_ratio(needle, description)
                if score >= self.fuzzy_threshold:
                    best = max(best, RULE_MATCH_CONFIDENCE * score / 100.0)
        return best

    def _match_rules(self, transaction: Transaction) -> list[tuple[CategorizationRule, float]]:
        description = transaction.description.lower()
        amount = abs(transaction.amount)
        matches = []
        for rule in sorted(self.rules, key=lambda item: item.priority):
            if not rule.is_active:
                continue
            confidence = self._rule_confidence(rule, description, amount)
            if confidence > 0:
                matches.append((rule, confidence))
        # stable sort keeps rule priority order between equal scores
        matches.sort(key=lambda item: item[1], reverse=True)
        return matches

    async def categorize(self, transaction: Transaction) -> CategorizationResult:
        started = perf_counter()
        candidates: list[tuple[CategoryCandidate, str, str | None]] = []

        memory_hit = self._match_memory(transaction.description)
        if memory_hit:
            candidate, reasoning = memory_hit
            candidates.append((candidate, reasoning, None))

        for rule, confidence in self._match_rules(transaction):
            candidates.append((
                CategoryCandidate(
                    category_id=rule.category_id,
                    category_name=rule.category_name,
                    confidence=confidence,
                ),
                f"Matched rule: {rule.description or rule.id}",
                rule.id,
            ))

        elapsed = (perf_counter() - started) * 1000.0
        if not candidates:
            return no_match_result(
                self.name,
                "No matching rules found",
                processing_time=elapsed,
                suggestions=["Create a categorization rule for this merchant"],
            )

        candidates.sort(key=lambda item: item[0].confidence, reverse=True)
        winner, reasoning, rule_id = candidates[0]
        alternatives: list[CategoryCandidate] = []
        seen = {winner.category_id}
        for candidate, _, _ in candidates[1:]:
            if candidate.category_id not in seen:
                alternatives.append(candidate)
                seen.add(candidate.category_id)

        return CategorizationResult(
            category_id=winner.category_id,
            category_name=winner.category_name,
            confidence=winner.confidence,
            method=self.name,
            reasoning=reasoning,
            alternatives=alternatives,
            processing_time=elapsed,
            metadata=ResultMetadata(
                strategy_used=self.name,
                rule_matched=rule_id,
                model_used="memory" if rule_id is None else "keyword-rules",
            ),
        )

    async def batch_categorize(self, transactions: list[Transaction]) -> list[CategorizationResult]:
        return list(await asyncio.gather(*(self.categorize(tx) for tx in transactions)))
