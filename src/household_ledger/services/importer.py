from collections.abc import Iterable
from datetime import date, datetime, timezone
from decimal import Decimal

from household_ledger.classifiers.rules import RuleMatcher
from household_ledger.domain.feeds import ParsedRow, parse_record
from household_ledger.errors import AccountNotFoundError
from household_ledger.logger import get_logger
from household_ledger.models import FeedRecord, ImportResult
from household_ledger.storage.repository import LedgerRepository
from household_ledger.storage.tables import Transaction

logger = get_logger(__name__)


class LedgerImporter:
    """
    Parse, dedupe and persist one feed into one account, applying Tier 1 rules to new rows.

    Rows are handled strictly in input order: the balance of the latest-dated
    row wins, and among rows on the same date the last one seen wins.
    """

    def __init__(self, repository: LedgerRepository) -> None:
        self.repository = repository

    def import_records(
        self,
        account_id: str,
        records: Iterable[FeedRecord],
        rules: RuleMatcher | None = None,
    ) -> ImportResult:
        account = self.repository.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        if rules is None:
            rules = RuleMatcher.from_repository(self.repository)

        result = ImportResult(account_id=account_id)
        latest_balance: tuple[date, Decimal] | None = None

        for record in records:
            row = parse_record(record)
            if row is None:
                result.invalid += 1
                continue

            if row.balance is not None and (latest_balance is None or row.date >= latest_balance[0]):
                latest_balance = (row.date, row.balance)

            if row.external_id:
                existing = self.repository.find_by_external_id(row.external_id)
                if existing is not None:
                    if self._refresh(existing, row):
                        result.updated += 1
                    else:
                        result.duplicates += 1
                    continue

            if self.repository.find_by_natural_key(account_id, row.date, row.description, row.amount, row.direction):
                result.duplicates += 1
                continue

            tx = self._create(account_id, row, rules)
            if tx is None:
                result.duplicates += 1
                continue
            result.imported += 1
            result.new_transaction_ids.append(tx.id)

        if latest_balance is not None:
            result.balance = latest_balance[1]
            self.repository.update_account(
                account,
                balance=latest_balance[1],
                last_updated=datetime.now(timezone.utc),
            )
        self.repository.commit()

        logger.info(
            "[IMPORT] Account %s: imported=%d duplicates=%d invalid=%d updated=%d",
            account_id,
            result.imported,
            result.duplicates,
            result.invalid,
            result.updated,
        )
        return result

    def _create(self, account_id: str, row: ParsedRow, rules: RuleMatcher) -> Transaction | None:
        fields = {
            "account_id": account_id,
            "external_id": row.external_id,
            "date": row.date,
            "description": row.description,
            "clean_description": row.clean_description,
            "merchant_name": row.clean_description,
            "amount": row.amount,
            "direction": row.direction,
        }
        match = rules.match(row.description)
        if match is not None:
            fields["category_id"] = match.category.id
            fields["category_source"] = "rule"
        return self.repository.create_transaction(**fields)

    def _refresh(self, tx: Transaction, row: ParsedRow) -> bool:
        """Bring an aggregator row up to date; returns whether anything changed."""
        fields = {}
        if tx.amount != row.amount:
            fields["amount"] = row.amount
        if tx.direction != row.direction:
            fields["direction"] = row.direction
        if tx.description != row.description:
            fields["description"] = row.description
        if row.clean_description and tx.clean_description != row.clean_description:
            fields["clean_description"] = row.clean_description
            fields["merchant_name"] = row.clean_description
        if not fields:
            return False

        clash = self.repository.find_by_natural_key(
            tx.account_id,
            tx.date,
            fields.get("description", tx.description),
            fields.get("amount", tx.amount),
            fields.get("direction", tx.direction),
        )
        if clash is not None and clash.id != tx.id:
            logger.warning("[IMPORT] Not refreshing %s: would duplicate %s.", tx.id, clash.id)
            return False
        self.repository.update_transaction(tx, **fields)
        return True
