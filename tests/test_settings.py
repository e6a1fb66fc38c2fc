import pytest

from unified_categorizer.core import settings


def test_build_default_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CATEGORIZER_PRIMARY", "rule-based")
    monkeypatch.setenv("CATEGORIZER_FALLBACK", "llm, ml-enhanced, llm")
    monkeypatch.setenv("CATEGORIZER_CONFIDENCE_THRESHOLD", "0.55")
    monkeypatch.setenv("CATEGORIZER_BATCH_SIZE", "25")
    monkeypatch.setenv("CATEGORIZER_STRATEGY_TIMEOUT", "2.5")

    config = settings.build_default_config()

    assert config.primary == "rule-based"
    assert config.fallback == ["llm", "ml-enhanced"]
    assert config.confidence_threshold == 0.55
    assert config.batch_size == 25
    assert config.strategy_timeout == 2.5


def test_build_default_config_ignores_bad_values(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("CATEGORIZER_PRIMARY", "CATEGORIZER_FALLBACK", "CATEGORIZER_STRATEGY_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CATEGORIZER_BATCH_SIZE", "zero")
    monkeypatch.setenv("CATEGORIZER_CONFIDENCE_THRESHOLD", "1.5")

    config = settings.build_default_config()

    assert config.batch_size == 10
    assert config.confidence_threshold == 0.7
    assert config.primary == "ml-enhanced"


def test_get_env_int_minimum(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PORT", "0")
    assert settings.get_env_int("PORT", 8000, min_value=1) == 8000


def test_mask_env_value() -> None:
    assert settings.mask_env_value("OPENAI_API_KEY", "sk-abcdef123") == "sk...23"
    assert settings.mask_env_value("LOG_LEVEL", "DEBUG") == "DEBUG"
    assert settings.mask_env_value("OPENAI_API_KEY", "abc") == "****"
