from collections.abc import Generator
from unittest.mock import MagicMock, patch

import pytest

from fakes import make_transaction
from unified_categorizer.models import Category
from unified_categorizer.strategies.llm import LLM_CONFIDENCE, LLMStrategy


@pytest.fixture
def mock_openai_client() -> Generator[MagicMock, None, None]:
    with patch("unified_categorizer.strategies.llm.OpenAI") as mock:
        yield mock


def _categories() -> list[Category]:
    return [
        Category(id="cat_groceries", name="Groceries"),
        Category(id="cat_transport", name="Transport"),
    ]


def _respond(mock_openai_client: MagicMock, text: str) -> MagicMock:
    mock_instance = mock_openai_client.return_value
    mock_response = MagicMock()
    mock_response.output_text = text
    mock_instance.responses.create.return_value = mock_response
    return mock_instance


@pytest.mark.anyio
async def test_llm_categorize(mock_openai_client: MagicMock) -> None:
    mock_instance = _respond(mock_openai_client, "Groceries")

    strategy = LLMStrategy(api_key="sk-fake", model="gpt-4", categories=_categories)
    result = await strategy.categorize(make_transaction(description="Whole Foods"))

    assert result.category_id == "cat_groceries"
    assert result.confidence == LLM_CONFIDENCE
    assert result.method == "llm"
    assert result.metadata.model_used == "gpt-4"

    mock_instance.responses.create.assert_called_once()
    kwargs = mock_instance.responses.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4"
    assert "Whole Foods" in kwargs["input"]
    assert "Groceries, Transport" in kwargs["input"]


@pytest.mark.anyio
async def test_llm_answer_is_normalised(mock_openai_client: MagicMock) -> None:
    _respond(mock_openai_client, "  transport.\n")

    strategy = LLMStrategy(api_key="sk-fake", categories=_categories)
    result = await strategy.categorize(make_transaction(description="Shell Station"))

    assert result.category_name == "Transport"


@pytest.mark.anyio
async def test_llm_unknown_category_scores_zero(mock_openai_client: MagicMock) -> None:
    _respond(mock_openai_client, "Gardening")

    strategy = LLMStrategy(api_key="sk-fake", categories=_categories)
    result = await strategy.categorize(make_transaction(description="Plants"))

    assert result.confidence == 0.0
    assert result.category_id == "uncategorized"


@pytest.mark.anyio
async def test_llm_uncategorized_answer_scores_zero(mock_openai_client: MagicMock) -> None:
    _respond(mock_openai_client, "Uncategorized")

    strategy = LLMStrategy(api_key="sk-fake")
    result = await strategy.categorize(make_transaction(description="???"))

    assert result.confidence == 0.0


@pytest.mark.anyio
async def test_llm_without_category_list_accepts_answer(mock_openai_client: MagicMock) -> None:
    _respond(mock_openai_client, "Eating Out")

    strategy = LLMStrategy(api_key="sk-fake")
    result = await strategy.categorize(make_transaction(description="Pizza Place"))

    assert result.category_id == "eating_out"
    assert result.category_name == "Eating Out"


@pytest.mark.anyio
async def test_llm_errors_propagate(mock_openai_client: MagicMock) -> None:
    mock_openai_client.return_value.responses.create.side_effect = RuntimeError("rate limited")

    strategy = LLMStrategy(api_key="sk-fake", categories=_categories)

    with pytest.raises(RuntimeError):
        await strategy.categorize(make_transaction())


@pytest.mark.anyio
async def test_llm_health_check_is_cached(mock_openai_client: MagicMock) -> None:
    mock_instance = mock_openai_client.return_value

    strategy = LLMStrategy(api_key="sk-fake", health_ttl=60)

    assert await strategy.is_available()
    assert await strategy.is_available()
    mock_instance.models.list.assert_called_once()


@pytest.mark.anyio
async def test_llm_unhealthy_backend(mock_openai_client: MagicMock) -> None:
    mock_openai_client.return_value.models.list.side_effect = ConnectionError("refused")

    strategy = LLMStrategy(api_key="sk-fake", health_ttl=0)

    assert not await strategy.is_available()


def test_llm_output_fallback_to_content_blocks() -> None:
    block = MagicMock(type="output_text", text="Groceries")
    item = MagicMock(content=[block])
    response = MagicMock(output_text=None, output=[item])

    assert LLMStrategy._extract_output_text(response) == "Groceries"


def test_llm_dispose_closes_client() -> None:
    client = MagicMock()
    strategy = LLMStrategy(client=client)

    strategy.dispose()

    client.close.assert_called_once()
