from collections.abc import Iterable
from dataclasses import dataclass

from household_ledger.domain.patterns import extract_pattern, pattern_matches
from household_ledger.logger import get_logger
from household_ledger.models import (
    CategorizationResult,
    Category,
    ClassificationContext,
    ClassificationRequest,
)
from household_ledger.storage.repository import LedgerRepository
from household_ledger.storage.tables import CategoryRule

from .base import Classifier

logger = get_logger(__name__)

MAX_CONFIDENCE = 1.0


@dataclass(frozen=True)
class RuleEntry:
    pattern: str
    category_id: str
    category_name: str
    confidence: float = MAX_CONFIDENCE


class RuleMatcher(Classifier):
    """
    Tier 1: patterns learned from manual corrections.

    Rules are tried by descending confidence and the first match wins, so
    among overlapping patterns the more trusted one takes precedence.
    """
    source = "rule"

    def __init__(self, rules: Iterable[RuleEntry] = ()) -> None:
        # sorted() is stable: equal confidences keep their load order
        self.rules = sorted(rules, key=lambda rule: -rule.confidence)

    @classmethod
    def from_repository(cls, repository: LedgerRepository) -> "RuleMatcher":
        entries = [
            RuleEntry(
                pattern=rule.pattern,
                category_id=rule.category_id,
                category_name=rule.category.name if rule.category else "",
                confidence=rule.confidence,
            )
            for rule in repository.list_rules()
        ]
        logger.debug(f"[RULES] Loaded {len(entries)} rules.")
        return cls(entries)

    def match(self, description: str) -> CategorizationResult | None:
        for rule in self.rules:
            if pattern_matches(rule.pattern, description):
                return CategorizationResult(
                    category=Category(id=rule.category_id, name=rule.category_name),
                    confidence=rule.confidence,
                    source="rule",
                )
        return None

    def classify_batch(
        self,
        requests: list[ClassificationRequest],
        context: ClassificationContext | None = None,
    ) -> dict[str, CategorizationResult]:
        results: dict[str, CategorizationResult] = {}
        if not self.rules:
            return results
        for request in requests:
            result = self.match(request.description)
            if result:
                results[request.id] = result
        return results

    @staticmethod
    def learn(repository: LedgerRepository, description: str, category_id: str) -> CategoryRule | None:
        """Upsert a manual rule derived from ``description``."""
        pattern = extract_pattern(description)
        if not pattern:
            return None
        rule = repository.upsert_rule(pattern, category_id, confidence=MAX_CONFIDENCE, source="manual")
        logger.info(f"[RULES] Learned '{pattern}' -> category {category_id}")
        return rule
