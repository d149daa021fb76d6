"""
Normalisation of bank feeds into ledger rows.

CSV exports and aggregator payloads are both reduced to ``FeedRecord``
(strings, as the source gave them) and then parsed into ``ParsedRow``.
"""

from __future__ import annotations

import io
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import pandas as pd

from household_ledger.logger import get_logger
from household_ledger.models import FeedRecord

logger = get_logger(__name__)

DATE_FORMATS = ("%d/%m/%Y", "%d/%m/%y", "%d-%m-%Y")
CENT = Decimal("0.01")

# Thousands separators, currency symbols and codes, whitespace
_AMOUNT_NOISE_RE = re.compile(r"[^0-9.+\-]")

_COLUMN_ALIASES = {
    "date": "date",
    "transaction date": "date",
    "description": "description",
    "narrative": "description",
    "details": "description",
    "credit": "credit",
    "debit": "debit",
    "amount": "amount",
    "balance": "balance",
    "running balance": "balance",
}


@dataclass(frozen=True)
class ParsedRow:
    date: date
    description: str
    amount: Decimal
    direction: str
    balance: Decimal | None = None
    external_id: str | None = None
    clean_description: str | None = None


def parse_date(value: str | None) -> date | None:
    text = (value or "").strip()
    if not text:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_amount(value: str | None) -> Decimal | None:
    text = (value or "").strip().replace("−", "-")
    if not text:
        return None
    cleaned = _AMOUNT_NOISE_RE.sub("", text)
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount.quantize(CENT)


def _is_populated(value: str | None) -> bool:
    return bool(value and value.strip())


def parse_record(record: FeedRecord) -> ParsedRow | None:
    """Parse one record, or return ``None`` when it lacks a usable date, description or amount."""
    tx_date = parse_date(record.date)
    if tx_date is None or not record.description.strip():
        return None

    if _is_populated(record.credit):
        value = parse_amount(record.credit)
        direction = "credit"
    elif _is_populated(record.debit):
        value = parse_amount(record.debit)
        direction = "debit"
    else:
        value = parse_amount(record.amount)
        direction = "debit" if value is not None and value < 0 else "credit"
    if value is None:
        return None

    clean = (record.clean_description or "").strip() or None
    return ParsedRow(
        date=tx_date,
        description=record.description,
        amount=abs(value),
        direction=direction,
        balance=parse_amount(record.balance),
        external_id=record.external_id or None,
        clean_description=clean,
    )


def read_csv_records(text: str) -> list[FeedRecord]:
    """Read a bank CSV export (Date, Description, Credit/Debit or Amount, optional Balance)."""
    if not text.strip():
        return []
    try:
        frame = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError:
        return []

    frame.columns = [str(column).strip().lower() for column in frame.columns]
    frame = frame.rename(columns=_COLUMN_ALIASES).fillna("")
    known = [column for column in ("date", "description", "credit", "debit", "amount", "balance") if column in frame]
    if "date" not in known or "description" not in known:
        logger.warning("[IMPORT] CSV is missing Date/Description columns: %s", list(frame.columns))

    records: list[FeedRecord] = []
    for row in frame[known].to_dict(orient="records"):
        records.append(FeedRecord(
            date=row.get("date", ""),
            description=row.get("description", ""),
            credit=row.get("credit") or None,
            debit=row.get("debit") or None,
            amount=row.get("amount") or None,
            balance=row.get("balance") or None,
        ))
    return records


def _iso_to_day_first(value: str | None) -> str:
    if not value:
        return ""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return ""
    return parsed.strftime("%d/%m/%Y")


def record_from_aggregator(payload: dict[str, Any]) -> FeedRecord:
    """Normalise one aggregator transaction into the shared feed shape."""
    raw_amount = str(payload.get("amount") or "").strip()
    direction = payload.get("direction")
    if raw_amount and direction in {"debit", "credit"}:
        magnitude = raw_amount.lstrip("+-")
        raw_amount = f"-{magnitude}" if direction == "debit" else magnitude

    enrich = payload.get("enrich") or {}
    merchant = (enrich.get("merchant") or {}).get("businessName")
    balance = payload.get("balance")

    return FeedRecord(
        date=_iso_to_day_first(payload.get("transactionDate") or payload.get("postDate")),
        description=str(payload.get("description") or ""),
        amount=raw_amount or None,
        balance=str(balance) if balance not in (None, "") else None,
        external_id=str(payload["id"]) if payload.get("id") else None,
        clean_description=merchant or None,
    )
