import asyncio
import os
import pickle
import threading
from time import perf_counter

from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.linear_model import SGDClassifier
from sklearn.pipeline import Pipeline

from unified_categorizer.logger import get_logger
from unified_categorizer.models import (
    CategorizationResult,
    Category,
    CategoryCandidate,
    ResultMetadata,
    Transaction,
)

from .base import CategorizationStrategy

logger = get_logger(__name__)


def _build_pipeline() -> Pipeline:
    return Pipeline([
        ('tfidf', TfidfVectorizer(analyzer='char_wb', ngram_range=(3, 5), min_df=1)),
        ('clf', SGDClassifier(loss='log_loss', random_state=42))
    ])


class TfidfStrategy(CategorizationStrategy):
    name = "ml-enhanced"
    priority = 1

    def __init__(self, data_path: str = "tfidf_model.pkl", max_alternatives: int = 3) -> None:
        self.data_path = data_path
        self.max_alternatives = max_alternatives
        self.pipeline = _build_pipeline()
        self.examples: list[str] = []
        self.labels: list[str] = []  # category ids
        self.category_names: dict[str, str] = {}
        self.is_fitted = False
        self._lock = threading.Lock()
        self.load()

    def load(self) -> None:
        if not os.path.exists(self.data_path):
            return
        try:
            with open(self.data_path, "rb") as f:
                data = pickle.load(f)
        except (pickle.UnpicklingError, EOFError, OSError) as exc:
            logger.warning("[TFIDF] Could not read %s, starting untrained: %s", self.data_path, exc)
            return
        if not isinstance(data, dict):
            logger.warning("[TFIDF] Ignoring %s: unexpected content %s.", self.data_path, type(data).__name__)
            return
        examples = data.get("examples") or []
        labels = data.get("labels") or []
        if not isinstance(examples, list) or not isinstance(labels, list) or len(examples) != len(labels):
            logger.warning("[TFIDF] Ignoring %s: examples and labels do not line up.", self.data_path)
            return
        self.examples = examples
        self.labels = labels
        names = data.get("category_names")
        self.category_names = dict(names) if isinstance(names, dict) else {}
        try:
            self._fit()
        except (TypeError, ValueError) as exc:
            logger.warning("[TFIDF] Could not fit stored examples, starting untrained: %s", exc)
            self.examples, self.labels, self.category_names = [], [], {}
            self.pipeline = _build_pipeline()
            self.is_fitted = False

    def save(self) -> None:
        with open(self.data_path, "wb") as f:
            pickle.dump({
                "examples": self.examples,
                "labels": self.labels,
                "category_names": self.category_names,
            }, f)

    def _fit(self) -> None:
        # SGDClassifier needs at least two classes
        if len(set(self.labels)) >= 2:
            self.pipeline.fit(self.examples, self.labels)
            self.is_fitted = True

    async def is_available(self) -> bool:
        return self.is_fitted

    def _predict(self, descriptions: list[str]) -> tuple[list[list[float]], list[str]]:
        with self._lock:
            if not self.is_fitted:
                raise RuntimeError("TF-IDF model is not trained yet")
            probs = self.pipeline.predict_proba(descriptions)
            classes = [str(label) for label in self.pipeline.classes_]
        return [list(map(float, row)) for row in probs], classes

    def _build_result(self, probs: list[float], classes: list[str], elapsed: float) -> CategorizationResult:
        ranked = sorted(range(len(classes)), key=lambda index: probs[index], reverse=True)
        best = ranked[0]
        category_id = classes[best]
        category_name = self.category_names.get(category_id, category_id)
        confidence = probs[best]
        alternatives = [
            CategoryCandidate(
                category_id=classes[index],
                category_name=self.category_names.get(classes[index], classes[index]),
                confidence=probs[index],
            )
            for index in ranked[1:self.max_alternatives + 1]
            if probs[index] > 0
        ]
        return CategorizationResult(
            category_id=category_id,
            category_name=category_name,
            confidence=min(1.0, max(0.0, confidence)),
            method=self.name,
            reasoning=f"TF-IDF model predicted '{category_name}' with probability {confidence:.2f}",
            alternatives=alternatives,
            processing_time=elapsed,
            metadata=ResultMetadata(strategy_used=self.name, model_used="tfidf-sgd"),
        )

    async def categorize(self, transaction: Transaction) -> CategorizationResult:
        started = perf_counter()
        probs, classes = await asyncio.to_thread(self._predict, [transaction.description])
        elapsed = (perf_counter() - started) * 1000.0
        return self._build_result(probs[0], classes, elapsed)

    async def batch_categorize(self, transactions: list[Transaction]) -> list[CategorizationResult]:
        if not transactions:
            return []
        started = perf_counter()
        probs, classes = await asyncio.to_thread(
            self._predict, [tx.description for tx in transactions]
        )
        per_item = (perf_counter() - started) * 1000.0 / len(transactions)
        return [self._build_result(row, classes, per_item) for row in probs]

    def learn(self, transaction: Transaction, category: Category) -> None:
        with self._lock:
            self.examples.append(transaction.description)
            self.labels.append(category.id)
            self.category_names[category.id] = category.name
            # Refit on every example; personal-finance volumes keep this cheap.
            self._fit()
            self.save()

    def clear(self) -> None:
        with self._lock:
            self.examples = []
            self.labels = []
            self.category_names = {}
            self.is_fitted = False
            self.pipeline = _build_pipeline()
            self.save()
