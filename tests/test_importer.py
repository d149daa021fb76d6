from datetime import date
from decimal import Decimal

import pytest

from household_ledger.classifiers.rules import RuleMatcher
from household_ledger.errors import AccountNotFoundError
from household_ledger.models import FeedRecord
from household_ledger.services.importer import LedgerImporter
from household_ledger.storage.tables import Transaction

CSV_ROWS = [
    FeedRecord(date="01/03/2024", description="WOOLWORTHS 1234 SYDNEY", debit="45.00"),
    FeedRecord(date="02/03/2024", description="SALARY ACME PTY LTD", credit="2,500.00"),
    FeedRecord(date="01/03/2024", description="WOOLWORTHS 1234 SYDNEY", debit="45.00"),
]


def _count(session) -> int:
    return session.query(Transaction).count()


def test_import_twice_is_idempotent(session, repository, make_account):
    account = make_account()
    importer = LedgerImporter(repository)

    first = importer.import_records(account.id, CSV_ROWS)
    second = importer.import_records(account.id, CSV_ROWS)

    assert (first.imported, first.skipped) == (2, 1)
    assert len(first.new_transaction_ids) == 2
    assert (second.imported, second.skipped) == (0, 3)
    assert second.new_transaction_ids == []
    assert _count(session) == 2


def test_invalid_rows_are_counted_not_fatal(repository, make_account):
    account = make_account()
    records = [
        FeedRecord(date="not a date", description="COLES", debit="1.00"),
        FeedRecord(date="01/03/2024", description="", debit="1.00"),
        FeedRecord(date="01/03/2024", description="COLES"),
        FeedRecord(date="01/03/2024", description="COLES", debit="1.00"),
    ]

    result = LedgerImporter(repository).import_records(account.id, records)

    assert result.imported == 1
    assert result.invalid == 3
    assert result.skipped == 3


def test_missing_account_rejects_import(repository):
    with pytest.raises(AccountNotFoundError):
        LedgerImporter(repository).import_records("missing", CSV_ROWS)


def test_latest_dated_balance_wins_with_last_seen_tiebreak(repository, make_account):
    account = make_account()
    records = [
        FeedRecord(date="05/03/2024", description="A", debit="1", balance="100.00"),
        FeedRecord(date="01/03/2024", description="B", debit="1", balance="999.00"),
        FeedRecord(date="05/03/2024", description="C", debit="1", balance="98.00"),
        FeedRecord(date="04/03/2024", description="D", debit="1"),
    ]

    result = LedgerImporter(repository).import_records(account.id, records)

    assert result.balance == Decimal("98.00")
    assert repository.get_account(account.id).balance == Decimal("98.00")


def test_balance_untouched_without_balance_column(repository, make_account):
    account = make_account()
    repository.update_account(account, balance=Decimal("123.45"))
    repository.commit()

    LedgerImporter(repository).import_records(account.id, CSV_ROWS)

    assert repository.get_account(account.id).balance == Decimal("123.45")


def test_new_rows_get_tier_one_rules(repository, make_account, category_ids):
    account = make_account()
    repository.upsert_rule("WOOLWORTHS", category_ids["Groceries"])
    repository.commit()

    result = LedgerImporter(repository).import_records(
        account.id, CSV_ROWS, rules=RuleMatcher.from_repository(repository)
    )

    rows = {tx.description: tx for tx in repository.find_transactions(ids=result.new_transaction_ids)}
    assert rows["WOOLWORTHS 1234 SYDNEY"].category_id == category_ids["Groceries"]
    assert rows["WOOLWORTHS 1234 SYDNEY"].category_source == "rule"
    assert rows["SALARY ACME PTY LTD"].category_id is None
    assert rows["SALARY ACME PTY LTD"].category_source is None


def test_store_rejects_duplicate_natural_key(repository, make_account):
    account = make_account()
    fields = dict(
        account_id=account.id,
        date=date(2024, 3, 1),
        description="COLES",
        amount=Decimal("10.00"),
        direction="debit",
    )

    assert repository.create_transaction(**fields) is not None
    assert repository.create_transaction(**fields) is None
    repository.commit()
    assert len(repository.find_transactions(account_id=account.id)) == 1


def test_external_id_rows_are_refreshed_not_duplicated(repository, make_account):
    account = make_account()
    importer = LedgerImporter(repository)
    record = FeedRecord(date="01/03/2024", description="PENDING UBER", amount="-20.00", external_id="bq-1")
    importer.import_records(account.id, [record])

    settled = record.model_copy(update={"description": "UBER TRIP SYDNEY", "clean_description": "Uber"})
    result = importer.import_records(account.id, [settled])
    unchanged = importer.import_records(account.id, [settled])

    assert (result.imported, result.updated) == (0, 1)
    assert (unchanged.imported, unchanged.updated, unchanged.duplicates) == (0, 0, 1)
    [tx] = repository.find_transactions(account_id=account.id)
    assert tx.description == "UBER TRIP SYDNEY"
    assert tx.clean_description == "Uber"
