from collections.abc import Iterable

from household_ledger.classifiers.rules import RuleMatcher
from household_ledger.core import settings
from household_ledger.domain.precedence import AI_ELIGIBLE_SOURCES
from household_ledger.logger import get_logger
from household_ledger.manager import CategorizerService
from household_ledger.models import (
    AccountContext,
    Category,
    ClassificationContext,
    ClassificationRequest,
    TierTwoResult,
)
from household_ledger.storage.repository import LedgerRepository
from household_ledger.storage.tables import Account, Transaction

logger = get_logger(__name__)


class CategorizationPipeline:
    """
    Tier 2 pass over stored transactions.

    Only rows whose provenance is absent or ``ai`` are sent; ``rule``,
    ``auto`` and ``manual`` rows never reach the classifier. Each chunk is
    merged and committed on its own, so a failed chunk leaves the others intact.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        service: CategorizerService,
        batch_size: int | None = None,
    ) -> None:
        self.repository = repository
        self.service = service
        self.batch_size = batch_size or settings.get_ai_batch_size()

    def build_context(self, accounts: list[Account]) -> ClassificationContext:
        categories = [Category(id=category.id, name=category.name) for category in self.repository.list_categories()]
        fallback = self.repository.find_category_by_name(settings.get_fallback_category_name())
        return ClassificationContext(
            categories=categories,
            accounts=[AccountContext(name=account.name, type=account.type) for account in accounts],
            fallback_category_id=fallback.id if fallback else None,
        )

    @staticmethod
    def to_request(tx: Transaction, account: Account | None) -> ClassificationRequest:
        return ClassificationRequest(
            id=tx.id,
            description=tx.description,
            amount=str(tx.amount),
            direction=tx.direction,
            account_name=account.name if account else "",
            account_type=account.type if account else "",
            date=tx.date.isoformat(),
        )

    def run(self, transactions: Iterable[Transaction], rules: RuleMatcher | None = None) -> TierTwoResult:
        seen: set[str] = set()
        eligible: list[Transaction] = []
        for tx in transactions:
            if tx.id in seen or tx.category_source not in AI_ELIGIBLE_SOURCES:
                continue
            seen.add(tx.id)
            eligible.append(tx)

        result = TierTwoResult(processed=len(eligible))
        if not eligible:
            return result
        if rules is None:
            rules = RuleMatcher.from_repository(self.repository)

        accounts = self.repository.list_accounts()
        accounts_by_id = {account.id: account for account in accounts}
        context = self.build_context(accounts)

        for start in range(0, len(eligible), self.batch_size):
            chunk = eligible[start:start + self.batch_size]
            requests = [self.to_request(tx, accounts_by_id.get(tx.account_id)) for tx in chunk]
            results = self.service.categorize_batch(requests, rules=rules, context=context)

            updates = []
            for tx in chunk:
                categorised = results.get(tx.id)
                if categorised is None:
                    continue
                fields = self.service.plan_update(tx, categorised)
                if fields.get("category_source") == "ai":
                    result.ai_categorised += 1
                elif fields.get("category_source") == "rule":
                    result.rule_categorised += 1
                if categorised.source == "ai" and categorised.is_transfer:
                    result.ai_transfers += 1
                if fields:
                    updates.append((tx, fields))

            self.repository.update_transactions(updates)
            self.repository.commit()
            logger.info(
                "[AI] Batch %d-%d: %d/%d classified.",
                start + 1,
                start + len(chunk),
                len(results),
                len(chunk),
            )

        logger.info(
            "[AI] Tier 2 done: processed=%d ai=%d rule=%d transfers=%d",
            result.processed,
            result.ai_categorised,
            result.rule_categorised,
            result.ai_transfers,
        )
        return result

    def run_after_import(self, new_transaction_ids: list[str], rules: RuleMatcher | None = None) -> TierTwoResult:
        """Uncategorised rows across the ledger plus the rows just imported."""
        if not new_transaction_ids:
            return TierTwoResult()
        pending = self.repository.find_transactions(uncategorised=True, category_sources=AI_ELIGIBLE_SOURCES)
        pending += self.repository.find_transactions(ids=new_transaction_ids, category_sources=AI_ELIGIBLE_SOURCES)
        return self.run(pending, rules)

    def run_all(self, rules: RuleMatcher | None = None) -> TierTwoResult:
        return self.run(self.repository.find_transactions(category_sources=AI_ELIGIBLE_SOURCES), rules)
