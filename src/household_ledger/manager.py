import os
from typing import Any

from household_ledger.classifiers.base import Classifier
from household_ledger.classifiers.llm import LLMClassifier
from household_ledger.classifiers.rules import RuleMatcher
from household_ledger.core.settings import DEFAULT_OPENAI_MODEL
from household_ledger.domain.precedence import plan_category_update
from household_ledger.logger import get_logger
from household_ledger.models import CategorizationResult, ClassificationContext, ClassificationRequest
from household_ledger.storage.tables import Transaction

logger = get_logger(__name__)


class CategorizerService:
    """
    Ordered classification cascade: rules first, then the external LLM.

    Each tier sees only the requests no earlier tier claimed. Writing the
    results back is a separate step (``plan_update``) so that the provenance
    precedence lives in one place.
    """

    def __init__(self, llm: Classifier | None = None, use_env: bool = True):
        if llm is not None:
            self.llm = llm
        elif use_env and os.getenv("OPENAI_API_KEY"):
            model = os.getenv("OPENAI_MODEL", DEFAULT_OPENAI_MODEL)
            base_url = os.getenv("OPENAI_BASE_URL")
            self.llm = LLMClassifier(api_key=os.getenv("OPENAI_API_KEY"), model=model, base_url=base_url)
            logger.info(f"LLM classifier enabled: model={model}, base_url={base_url or 'default'}")
        else:
            self.llm = None
            logger.warning("OPENAI_API_KEY not found. LLM classifier disabled.")

    @property
    def ai_enabled(self) -> bool:
        return self.llm is not None

    def tiers(self, rules: RuleMatcher | None, use_ai: bool = True) -> list[Classifier]:
        tiers: list[Classifier] = []

        # 1. Rule store (highest priority)
        if rules is not None:
            tiers.append(rules)

        # 2. LLM classifier (fallback)
        # Only when configured and allowed for this run
        if use_ai and self.llm is not None:
            tiers.append(self.llm)
        return tiers

    def categorize_batch(
        self,
        requests: list[ClassificationRequest],
        *,
        rules: RuleMatcher | None = None,
        context: ClassificationContext | None = None,
        use_ai: bool = True,
    ) -> dict[str, CategorizationResult]:
        results: dict[str, CategorizationResult] = {}
        pending = list(requests)
        for classifier in self.tiers(rules, use_ai):
            if not pending:
                break
            classifier_name = classifier.__class__.__name__
            logger.debug(f"Trying {classifier_name} for {len(pending)} transactions.")

            claimed = classifier.classify_batch(pending, context)
            logger.debug(f"{classifier_name} returned {len(claimed)} results.")

            # Later tiers only see what earlier ones left unclaimed
            results.update(claimed)
            pending = [request for request in pending if request.id not in claimed]

        if pending:
            logger.debug(f"No classifier matched {len(pending)} transactions.")
        return results

    def categorize(
        self,
        request: ClassificationRequest,
        *,
        rules: RuleMatcher | None = None,
        context: ClassificationContext | None = None,
        use_ai: bool = True,
    ) -> CategorizationResult | None:
        return self.categorize_batch([request], rules=rules, context=context, use_ai=use_ai).get(request.id)

    @staticmethod
    def plan_update(tx: Transaction, result: CategorizationResult) -> dict[str, Any]:
        return plan_category_update(tx, result)
