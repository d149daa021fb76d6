from datetime import date
from decimal import Decimal

from household_ledger.domain.feeds import (
    parse_amount,
    parse_date,
    parse_record,
    read_csv_records,
    record_from_aggregator,
)
from household_ledger.models import FeedRecord


def test_parse_date_is_day_first():
    assert parse_date("03/04/2024") == date(2024, 4, 3)
    assert parse_date("03/04/24") == date(2024, 4, 3)
    assert parse_date("03-04-2024") == date(2024, 4, 3)
    assert parse_date("2024/13/45") is None
    assert parse_date("") is None


def test_parse_amount_strips_symbols_and_separators():
    assert parse_amount("$1,234.5") == Decimal("1234.50")
    assert parse_amount("-45.00") == Decimal("-45.00")
    assert parse_amount("AUD 12") == Decimal("12.00")
    assert parse_amount("abc") is None
    assert parse_amount(None) is None


def test_parse_record_credit_and_debit_columns():
    credit = parse_record(FeedRecord(date="01/03/2024", description="SALARY", credit="2,500.00"))
    debit = parse_record(FeedRecord(date="01/03/2024", description="COLES", debit="-45.10"))

    assert (credit.amount, credit.direction) == (Decimal("2500.00"), "credit")
    assert (debit.amount, debit.direction) == (Decimal("45.10"), "debit")


def test_parse_record_signed_amount_column():
    row = parse_record(FeedRecord(date="01/03/2024", description="COLES", amount="-45.10", balance="$900"))

    assert row.amount == Decimal("45.10")
    assert row.direction == "debit"
    assert row.balance == Decimal("900.00")


def test_parse_record_rejects_unusable_rows():
    assert parse_record(FeedRecord(date="", description="COLES", amount="1")) is None
    assert parse_record(FeedRecord(date="01/03/2024", description="  ", amount="1")) is None
    assert parse_record(FeedRecord(date="01/03/2024", description="COLES")) is None
    assert parse_record(FeedRecord(date="01/03/2024", description="COLES", debit="n/a")) is None


def test_read_csv_records_normalises_headers():
    text = (
        " Date ,Description,Credit,Debit,Balance\n"
        "01/03/2024,SALARY ACME,\"2,500.00\",,\"3,000.00\"\n"
        "02/03/2024,COLES 123,,-45.10,2954.90\n"
    )

    records = read_csv_records(text)

    assert len(records) == 2
    assert records[0].description == "SALARY ACME"
    assert records[0].credit == "2,500.00"
    assert records[0].debit is None
    assert records[1].debit == "-45.10"
    assert records[1].balance == "2954.90"


def test_read_csv_records_empty_input():
    assert read_csv_records("") == []


def test_record_from_aggregator():
    record = record_from_aggregator({
        "id": "tx-1",
        "amount": "-12.50",
        "direction": "debit",
        "description": "VISA PURCHASE UBER *EATS",
        "transactionDate": "2024-03-05T00:00:00Z",
        "enrich": {"merchant": {"businessName": "Uber Eats"}},
    })

    assert record.external_id == "tx-1"
    assert record.date == "05/03/2024"
    assert record.amount == "-12.50"
    assert record.clean_description == "Uber Eats"

    row = parse_record(record)
    assert row.direction == "debit"
    assert row.amount == Decimal("12.50")
