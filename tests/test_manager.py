from unittest.mock import MagicMock, patch

from household_ledger.classifiers.rules import RuleEntry, RuleMatcher
from household_ledger.manager import CategorizerService
from household_ledger.models import CategorizationResult, Category, ClassificationRequest


def _request(tx_id: str, description: str) -> ClassificationRequest:
    return ClassificationRequest(
        id=tx_id,
        description=description,
        amount="10.00",
        direction="debit",
        account_name="Everyday",
        account_type="transaction",
        date="2024-03-01",
    )


def _llm_returning(results: dict) -> MagicMock:
    llm = MagicMock()
    llm.classify_batch.return_value = results
    return llm


def test_rules_claim_first_and_llm_sees_only_the_rest():
    rules = RuleMatcher([RuleEntry(pattern="NETFLIX", category_id="fun", category_name="Entertainment/Streaming")])
    llm = _llm_returning({
        "b": CategorizationResult(category=Category(id="food", name="Groceries"), confidence=0.9, source="ai"),
    })
    service = CategorizerService(llm=llm)

    results = service.categorize_batch([_request("a", "NETFLIX.COM"), _request("b", "ALDI")], rules=rules)

    assert results["a"].source == "rule"
    assert results["b"].source == "ai"
    sent = llm.classify_batch.call_args.args[0]
    assert [request.id for request in sent] == ["b"]


def test_llm_not_called_when_rules_claim_everything():
    rules = RuleMatcher([RuleEntry(pattern="NETFLIX", category_id="fun", category_name="Entertainment/Streaming")])
    llm = _llm_returning({})
    service = CategorizerService(llm=llm)

    service.categorize_batch([_request("a", "NETFLIX")], rules=rules)

    llm.classify_batch.assert_not_called()


def test_use_ai_false_skips_llm():
    llm = _llm_returning({})
    service = CategorizerService(llm=llm)

    assert service.categorize(_request("a", "ALDI"), use_ai=False) is None
    llm.classify_batch.assert_not_called()


def test_llm_disabled_without_api_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    service = CategorizerService()

    assert service.ai_enabled is False
    assert service.categorize_batch([_request("a", "ALDI")]) == {}


def test_llm_built_from_environment(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-fake")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-test")
    monkeypatch.delenv("OPENAI_BASE_URL", raising=False)

    with patch("household_ledger.manager.LLMClassifier") as mock_llm:
        service = CategorizerService()

    assert service.ai_enabled is True
    mock_llm.assert_called_once_with(api_key="sk-fake", model="gpt-test", base_url=None)
