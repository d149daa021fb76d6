from collections.abc import Callable, Generator
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from household_ledger.storage.db import create_engine, create_session_factory, init_db
from household_ledger.storage.repository import LedgerRepository
from household_ledger.storage.seed import seed_categories
from household_ledger.storage.tables import Account, Transaction


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def session() -> Generator[Session, None, None]:
    engine = create_engine("sqlite://")
    init_db(engine)
    factory = create_session_factory(engine)
    session = factory()
    seed_categories(session)
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def repository(session: Session) -> LedgerRepository:
    return LedgerRepository(session)


@pytest.fixture
def category_ids(repository: LedgerRepository) -> dict[str, str]:
    return {category.name: category.id for category in repository.list_categories()}


@pytest.fixture
def make_account(repository: LedgerRepository) -> Callable[..., Account]:
    def _make(name: str = "Everyday", type: str = "transaction") -> Account:
        account = repository.create_account(name=name, type=type)
        repository.commit()
        return account

    return _make


@pytest.fixture
def make_transaction(repository: LedgerRepository) -> Callable[..., Transaction]:
    def _make(
        account: Account,
        description: str,
        amount: str,
        direction: str = "debit",
        tx_date: date = date(2024, 3, 1),
        **fields,
    ) -> Transaction:
        tx = repository.create_transaction(
            account_id=account.id,
            date=tx_date,
            description=description,
            amount=Decimal(amount),
            direction=direction,
            **fields,
        )
        assert tx is not None
        repository.commit()
        return tx

    return _make
