from collections.abc import Iterable
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, false, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from household_ledger.logger import get_logger
from household_ledger.storage.tables import Account, BankConnection, Category, CategoryRule, Transaction

logger = get_logger(__name__)


class LedgerRepository:
    """
    The minimal CRUD surface the pipeline needs from the ledger store.

    Only equality and range filters are used, so any relational backend
    SQLAlchemy supports can sit behind it.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    # Accounts

    def get_account(self, account_id: str) -> Account | None:
        return self.session.get(Account, account_id)

    def list_accounts(self) -> list[Account]:
        stmt = select(Account).order_by(Account.created_at, Account.id)
        return list(self.session.scalars(stmt))

    def find_account_by_external_id(self, external_id: str) -> Account | None:
        stmt = select(Account).where(Account.external_id == external_id)
        return self.session.scalars(stmt).first()

    def create_account(self, **fields: Any) -> Account:
        account = Account(**fields)
        self.session.add(account)
        self.session.flush()
        return account

    def update_account(self, account: Account, **fields: Any) -> Account:
        for key, value in fields.items():
            setattr(account, key, value)
        self.session.flush()
        return account

    def list_connections(self, status: str | None = "active") -> list[BankConnection]:
        stmt = select(BankConnection).order_by(BankConnection.created_at, BankConnection.id)
        if status is not None:
            stmt = stmt.where(BankConnection.status == status)
        return list(self.session.scalars(stmt))

    # Categories

    def get_category(self, category_id: str) -> Category | None:
        return self.session.get(Category, category_id)

    def find_category_by_name(self, name: str) -> Category | None:
        stmt = select(Category).where(Category.name == name)
        return self.session.scalars(stmt).first()

    def list_categories(self) -> list[Category]:
        stmt = select(Category).order_by(Category.sort_order, Category.name)
        return list(self.session.scalars(stmt))

    def category_ids_by_name(self, names: Iterable[str]) -> dict[str, str]:
        wanted = list(names)
        if not wanted:
            return {}
        stmt = select(Category.name, Category.id).where(Category.name.in_(wanted))
        return {name: category_id for name, category_id in self.session.execute(stmt)}

    def create_category(self, **fields: Any) -> Category:
        category = Category(**fields)
        self.session.add(category)
        self.session.flush()
        return category

    def reassign_category(self, from_category_id: str, to_category_id: str | None) -> int:
        values: dict[str, Any] = {"category_id": to_category_id, "updated_at": datetime.now(timezone.utc)}
        if to_category_id is None:
            # Uncategorised rows go back to the Tier 2 pool
            values["category_source"] = None
        stmt = (
            update(Transaction)
            .where(Transaction.category_id == from_category_id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        result = self.session.execute(stmt)
        return result.rowcount or 0

    def delete_category(self, category: Category) -> None:
        self.session.execute(delete(CategoryRule).where(CategoryRule.category_id == category.id))
        self.session.execute(
            update(Category)
            .where(Category.parent_id == category.id)
            .values(parent_id=None)
            .execution_options(synchronize_session="fetch")
        )
        self.session.delete(category)
        self.session.flush()

    # Transactions

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        return self.session.get(Transaction, transaction_id)

    def find_by_natural_key(
        self,
        account_id: str,
        tx_date: date,
        description: str,
        amount: Decimal,
        direction: str,
    ) -> Transaction | None:
        stmt = select(Transaction).where(
            Transaction.account_id == account_id,
            Transaction.date == tx_date,
            Transaction.description == description,
            Transaction.amount == amount,
            Transaction.direction == direction,
        )
        return self.session.scalars(stmt).first()

    def find_by_external_id(self, external_id: str) -> Transaction | None:
        stmt = select(Transaction).where(Transaction.external_id == external_id)
        return self.session.scalars(stmt).first()

    def create_transaction(self, **fields: Any) -> Transaction | None:
        """Insert a transaction; returns ``None`` when a unique key already holds it."""
        tx = Transaction(**fields)
        try:
            with self.session.begin_nested():
                self.session.add(tx)
        except IntegrityError:
            logger.debug(
                "[DB] Duplicate insert rejected for account %s: '%s'",
                fields.get("account_id"),
                fields.get("description"),
            )
            return None
        return tx

    def update_transaction(self, tx: Transaction, **fields: Any) -> Transaction:
        for key, value in fields.items():
            setattr(tx, key, value)
        self.session.flush()
        return tx

    def update_transactions(self, updates: Iterable[tuple[Transaction, dict[str, Any]]]) -> None:
        """Apply several partial updates in one flush."""
        for tx, fields in updates:
            for key, value in fields.items():
                setattr(tx, key, value)
        self.session.flush()

    def find_transactions(
        self,
        *,
        ids: Iterable[str] | None = None,
        account_id: str | None = None,
        exclude_account_id: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        direction: str | None = None,
        amount: Decimal | None = None,
        is_transfer: bool | None = None,
        linked: bool | None = None,
        transfer_source: str | None = None,
        category_sources: Iterable[str | None] | None = None,
        uncategorised: bool | None = None,
    ) -> list[Transaction]:
        stmt = select(Transaction)
        if ids is not None:
            stmt = stmt.where(Transaction.id.in_(list(ids)))
        if account_id is not None:
            stmt = stmt.where(Transaction.account_id == account_id)
        if exclude_account_id is not None:
            stmt = stmt.where(Transaction.account_id != exclude_account_id)
        if date_from is not None:
            stmt = stmt.where(Transaction.date >= date_from)
        if date_to is not None:
            stmt = stmt.where(Transaction.date <= date_to)
        if direction is not None:
            stmt = stmt.where(Transaction.direction == direction)
        if amount is not None:
            stmt = stmt.where(Transaction.amount == amount)
        if is_transfer is not None:
            stmt = stmt.where(Transaction.is_transfer == is_transfer)
        if transfer_source is not None:
            stmt = stmt.where(Transaction.transfer_source == transfer_source)
        if linked is True:
            stmt = stmt.where(Transaction.linked_transaction_id.is_not(None))
        elif linked is False:
            stmt = stmt.where(Transaction.linked_transaction_id.is_(None))
        if category_sources is not None:
            sources = list(category_sources)
            named = [source for source in sources if source is not None]
            clauses = []
            if named:
                clauses.append(Transaction.category_source.in_(named))
            if None in sources:
                clauses.append(Transaction.category_source.is_(None))
            stmt = stmt.where(or_(*clauses)) if clauses else stmt.where(false())
        if uncategorised is True:
            stmt = stmt.where(Transaction.category_id.is_(None))
        elif uncategorised is False:
            stmt = stmt.where(Transaction.category_id.is_not(None))

        stmt = stmt.order_by(Transaction.date, Transaction.created_at, Transaction.id)
        return list(self.session.scalars(stmt))

    # Rules

    def list_rules(self) -> list[CategoryRule]:
        stmt = select(CategoryRule).order_by(
            CategoryRule.confidence.desc(),
            CategoryRule.created_at,
            CategoryRule.id,
        )
        return list(self.session.scalars(stmt))

    def find_rule(self, pattern: str) -> CategoryRule | None:
        stmt = select(CategoryRule).where(CategoryRule.pattern == pattern)
        return self.session.scalars(stmt).first()

    def upsert_rule(
        self,
        pattern: str,
        category_id: str,
        *,
        confidence: float = 1.0,
        source: str = "manual",
    ) -> CategoryRule:
        rule = self.find_rule(pattern)
        if rule is None:
            rule = CategoryRule(
                pattern=pattern,
                category_id=category_id,
                confidence=confidence,
                source=source,
            )
            self.session.add(rule)
        else:
            rule.category_id = category_id
            rule.confidence = confidence
            rule.source = source
        self.session.flush()
        return rule
