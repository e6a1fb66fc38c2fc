import os

from unified_categorizer.core import settings
from unified_categorizer.logger import get_logger
from unified_categorizer.storage import KeyValueStore

from .base import CategorizationStrategy
from .llm import LLMStrategy
from .rules import RuleBasedStrategy
from .tfidf import TfidfStrategy

logger = get_logger(__name__)


def build_default_strategies(store: KeyValueStore, data_dir: str = ".") -> list[CategorizationStrategy]:
    """
    Default strategies in registration order. The first one is the
    last-resort strategy, so the always-available rule engine goes first.
    """
    rules = RuleBasedStrategy(store)
    strategies: list[CategorizationStrategy] = [
        rules,
        TfidfStrategy(data_path=os.path.join(data_dir, "tfidf.pkl")),
    ]

    api_key = os.getenv("OPENAI_API_KEY")
    base_url = os.getenv("OPENAI_BASE_URL")
    if api_key or base_url:
        model = os.getenv("OPENAI_MODEL", settings.DEFAULT_OPENAI_MODEL)
        strategies.append(LLMStrategy(
            api_key=api_key,
            model=model,
            base_url=base_url,
            categories=rules.known_categories,
        ))
        logger.info("LLM strategy enabled: model=%s, base_url=%s", model, base_url or "default")
    else:
        logger.warning("OPENAI_API_KEY and OPENAI_BASE_URL not set. LLM strategy disabled.")

    return strategies
