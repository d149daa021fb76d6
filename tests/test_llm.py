import json
from collections.abc import Generator
from unittest.mock import MagicMock, patch

import openai
import pytest

from household_ledger.classifiers.llm import LLMClassifier
from household_ledger.models import Category, ClassificationContext, ClassificationRequest

CONTEXT = ClassificationContext(
    categories=[
        Category(id="cat-groceries", name="Groceries"),
        Category(id="cat-savings", name="Savings Transfer"),
        Category(id="cat-uncat", name="Uncategorised"),
    ],
    fallback_category_id="cat-uncat",
)


def _request(tx_id: str, description: str, direction: str = "debit") -> ClassificationRequest:
    return ClassificationRequest(
        id=tx_id,
        description=description,
        amount="45.00",
        direction=direction,
        account_name="Everyday",
        account_type="transaction",
        date="2024-03-01",
    )


@pytest.fixture
def mock_openai_client() -> Generator[MagicMock, None, None]:
    with patch("household_ledger.classifiers.llm.OpenAI") as mock:
        yield mock


def _respond(mock_openai_client: MagicMock, text: str) -> MagicMock:
    mock_instance = mock_openai_client.return_value
    mock_response = MagicMock()
    mock_response.output_text = text
    mock_instance.responses.create.return_value = mock_response
    return mock_instance


def test_llm_classify_batch(mock_openai_client: MagicMock) -> None:
    payload = {
        "t1": {"categoryId": "cat-groceries", "isTransfer": False, "cleanDescription": "Woolworths"},
        "t2": {"categoryId": "cat-savings", "isTransfer": True, "cleanDescription": None},
    }
    mock_instance = _respond(mock_openai_client, f"Here you go:\n{json.dumps(payload)}\nDone.")

    classifier = LLMClassifier(api_key="sk-fake", model="gpt-4o-mini")
    results = classifier.classify_batch(
        [_request("t1", "VISA PURCHASE WOOLWORTHS 1234"), _request("t2", "TRANSFER TO SAVINGS")],
        CONTEXT,
    )

    assert results["t1"].category.id == "cat-groceries"
    assert results["t1"].category.name == "Groceries"
    assert results["t1"].clean_description == "Woolworths"
    assert results["t1"].source == "ai"
    assert results["t1"].confidence == 0.9
    assert results["t2"].is_transfer is True
    assert results["t2"].clean_description is None

    mock_instance.responses.create.assert_called_once()
    kwargs = mock_instance.responses.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["temperature"] == 0.0
    assert '"cat-groceries": "Groceries"' in kwargs["input"]
    assert "-$45.00" in kwargs["input"]


def test_unknown_category_is_remapped_to_fallback(mock_openai_client: MagicMock) -> None:
    _respond(mock_openai_client, json.dumps({"t1": {"categoryId": "made-up", "isTransfer": "yes"}}))

    results = LLMClassifier(api_key="sk-fake").classify_batch([_request("t1", "MYSTERY")], CONTEXT)

    assert results["t1"].category.id == "cat-uncat"
    assert results["t1"].category.name == "Uncategorised"
    # Only a literal true counts
    assert results["t1"].is_transfer is False


def test_unknown_category_without_fallback_is_dropped(mock_openai_client: MagicMock) -> None:
    _respond(mock_openai_client, json.dumps({"t1": {"categoryId": "made-up"}}))
    context = CONTEXT.model_copy(update={"fallback_category_id": None})

    results = LLMClassifier(api_key="sk-fake").classify_batch([_request("t1", "MYSTERY")], context)

    assert results == {}


def test_ids_outside_the_request_are_ignored(mock_openai_client: MagicMock) -> None:
    _respond(mock_openai_client, json.dumps({
        "t1": {"categoryId": "cat-groceries"},
        "other": {"categoryId": "cat-groceries"},
        "t2": "not an object",
    }))

    results = LLMClassifier(api_key="sk-fake").classify_batch(
        [_request("t1", "COLES"), _request("t2", "ALDI")],
        CONTEXT,
    )

    assert set(results) == {"t1"}


def test_connection_error_yields_empty_mapping(mock_openai_client: MagicMock, caplog: pytest.LogCaptureFixture) -> None:
    mock_instance = mock_openai_client.return_value
    mock_instance.responses.create.side_effect = openai.APIConnectionError(request=MagicMock())

    results = LLMClassifier(api_key="sk-fake").classify_batch([_request("t1", "COLES")], CONTEXT)

    assert results == {}
    assert "LLM Error: Connection error." in caplog.text


@pytest.mark.parametrize("text", ["no json here", "{not valid json}", ""])
def test_malformed_output_yields_empty_mapping(mock_openai_client: MagicMock, text: str) -> None:
    mock_instance = _respond(mock_openai_client, text)
    mock_instance.responses.create.return_value.output = []

    results = LLMClassifier(api_key="sk-fake").classify_batch([_request("t1", "COLES")], CONTEXT)

    assert results == {}


def test_output_blocks_are_joined_when_output_text_missing() -> None:
    block = MagicMock(type="output_text", text='{"t1": {"categoryId": "cat-groceries"}}')
    response = MagicMock(output_text=None, output=[MagicMock(content=[block])])

    assert LLMClassifier._extract_output_text(response) == '{"t1": {"categoryId": "cat-groceries"}}'


def test_empty_batch_makes_no_call(mock_openai_client: MagicMock) -> None:
    classifier = LLMClassifier(api_key="sk-fake")

    assert classifier.classify_batch([], CONTEXT) == {}
    mock_openai_client.return_value.responses.create.assert_not_called()
