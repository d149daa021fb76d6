from decimal import Decimal

from household_ledger.classifiers.rules import RuleMatcher
from household_ledger.errors import (
    CategoryNotFoundError,
    ProtectedCategoryError,
    TransactionNotFoundError,
)
from household_ledger.logger import get_logger
from household_ledger.storage.repository import LedgerRepository
from household_ledger.storage.tables import Account, Category, Transaction

logger = get_logger(__name__)

_UNSET = object()


class LedgerService:
    """Manual edits: human categorisation (which also teaches the rule store) and catalogue upkeep."""

    def __init__(self, repository: LedgerRepository) -> None:
        self.repository = repository

    def create_account(
        self,
        name: str,
        type: str = "transaction",
        balance: Decimal | None = None,
        institution: str | None = None,
    ) -> Account:
        account = self.repository.create_account(
            name=name,
            type=type,
            balance=balance if balance is not None else Decimal("0"),
            institution=institution,
        )
        self.repository.commit()
        logger.info("[LEDGER] Created account '%s' (%s).", name, type)
        return account

    def create_category(self, name: str, parent_id: str | None = None) -> Category:
        if parent_id is not None and self.repository.get_category(parent_id) is None:
            raise CategoryNotFoundError(parent_id)
        category = self.repository.create_category(name=name, parent_id=parent_id, is_system=False)
        self.repository.commit()
        return category

    def assign_category(
        self,
        transaction_id: str,
        category_id: str | None | object = _UNSET,
        notes: str | None | object = _UNSET,
        is_excluded: bool | object = _UNSET,
    ) -> Transaction:
        """
        Apply a manual edit. Omitted arguments are left alone; ``category_id=None``
        clears the category. Assigning a category also upserts a learned rule.
        """
        tx = self.repository.get_transaction(transaction_id)
        if tx is None:
            raise TransactionNotFoundError(transaction_id)

        fields = {}
        if category_id is not _UNSET:
            if category_id is not None and self.repository.get_category(category_id) is None:
                raise CategoryNotFoundError(category_id)
            fields["category_id"] = category_id
            fields["category_source"] = "manual"
        if notes is not _UNSET:
            fields["notes"] = notes
        if is_excluded is not _UNSET:
            fields["is_excluded"] = bool(is_excluded)

        self.repository.update_transaction(tx, **fields)
        if category_id is not _UNSET and category_id is not None:
            RuleMatcher.learn(self.repository, tx.description, category_id)
        self.repository.commit()
        return tx

    def bulk_assign_category(self, transaction_ids: list[str], category_id: str) -> int:
        if self.repository.get_category(category_id) is None:
            raise CategoryNotFoundError(category_id)

        transactions = self.repository.find_transactions(ids=transaction_ids)
        self.repository.update_transactions(
            (tx, {"category_id": category_id, "category_source": "manual"}) for tx in transactions
        )
        learned: set[str] = set()
        for tx in transactions:
            if tx.description not in learned:
                RuleMatcher.learn(self.repository, tx.description, category_id)
                learned.add(tx.description)
        self.repository.commit()
        logger.info("[LEDGER] Bulk categorised %d transactions.", len(transactions))
        return len(transactions)

    def delete_category(self, category_id: str, reassign_to: str | None = None) -> int:
        """Delete a user category; its transactions move to ``reassign_to`` or become uncategorised."""
        category = self.repository.get_category(category_id)
        if category is None:
            raise CategoryNotFoundError(category_id)
        if category.is_system:
            raise ProtectedCategoryError(category.name)
        if reassign_to is not None and (reassign_to == category_id or self.repository.get_category(reassign_to) is None):
            raise CategoryNotFoundError(reassign_to)

        moved = self.repository.reassign_category(category_id, reassign_to)
        self.repository.delete_category(category)
        self.repository.commit()
        logger.info("[LEDGER] Deleted category '%s'; %d transactions reassigned.", category.name, moved)
        return moved
