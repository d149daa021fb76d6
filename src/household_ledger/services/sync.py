import asyncio
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from household_ledger.domain.feeds import record_from_aggregator
from household_ledger.integration.basiq import BasiqClient
from household_ledger.logger import get_logger
from household_ledger.models import FeedRecord, SyncSummary
from household_ledger.services.ingestion import IngestionPipeline
from household_ledger.storage.repository import LedgerRepository
from household_ledger.storage.tables import Account, BankConnection

logger = get_logger(__name__)

# Aggregator account classes that differ from ours
ACCOUNT_CLASS_TYPES = {
    "mortgage": "loan",
    "credit-card": "credit",
}


def _to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value or "0")).quantize(Decimal("0.01"))
    except InvalidOperation:
        return Decimal("0.00")


class FeedSync:
    """Pull each active bank connection's feed through the same pipeline CSV imports use."""

    def __init__(
        self,
        repository: LedgerRepository,
        ingestion: IngestionPipeline,
        client: BasiqClient,
        refresh_connections: bool = True,
    ) -> None:
        self.repository = repository
        self.ingestion = ingestion
        self.client = client
        self.refresh_connections = refresh_connections

    async def sync_all(self) -> SyncSummary:
        if not self.client.configured:
            logger.warning("[SYNC] BASIQ_API_KEY not set. Sync disabled.")
            return SyncSummary(message="Bank sync is not configured")

        connections = self.repository.list_connections(status="active")
        if not connections:
            return SyncSummary(message="No active connections to sync")

        summary = SyncSummary(message="", connections=len(connections))
        for connection in connections:
            try:
                synced, updated = await self.sync_connection(connection)
            except Exception as exc:
                self.repository.rollback()
                summary.failed += 1
                logger.error("[SYNC] Connection %s failed: %s", connection.id, exc)
                continue
            summary.synced += synced
            summary.updated += updated

        summary.message = (
            f"Sync complete: {summary.synced} new, {summary.updated} updated "
            f"across {summary.connections - summary.failed}/{summary.connections} connections."
        )
        logger.info("[SYNC] %s", summary.message)
        return summary

    async def sync_connection(self, connection: BankConnection) -> tuple[int, int]:
        user_id = connection.external_user_id
        if self.refresh_connections:
            job = await self.client.refresh_connection(user_id, connection.external_connection_id)
            if job.get("id"):
                await self.client.wait_for_job(job["id"])

        remote_accounts = await self.client.get_accounts(user_id)
        accounts = {
            remote["id"]: self._upsert_account(connection, remote)
            for remote in remote_accounts
            if remote.get("id")
        }
        self.repository.commit()

        from_date = connection.last_sync_at.date().isoformat() if connection.last_sync_at else None
        remote_transactions = await self.client.get_transactions(user_id, from_date=from_date)

        records: dict[str, list[FeedRecord]] = defaultdict(list)
        for payload in remote_transactions:
            account = accounts.get(payload.get("account"))
            if account is None:
                logger.debug("[SYNC] Skipping transaction %s for unknown account.", payload.get("id"))
                continue
            records[account.id].append(record_from_aggregator(payload))

        synced = updated = 0
        for account_id, account_records in records.items():
            result = await asyncio.to_thread(self.ingestion.import_feed, account_id, account_records)
            synced += result.imported
            updated += result.updated

        # The accounts endpoint is authoritative for balances
        now = datetime.now(timezone.utc)
        for remote in remote_accounts:
            account = accounts.get(remote.get("id"))
            if account is not None:
                self.repository.update_account(account, balance=_to_decimal(remote.get("balance")), last_updated=now)
        connection.last_sync_at = now
        self.repository.commit()

        logger.info("[SYNC] Connection %s: %d new, %d updated.", connection.id, synced, updated)
        return synced, updated

    def _upsert_account(self, connection: BankConnection, remote: dict[str, Any]) -> Account:
        account = self.repository.find_account_by_external_id(remote["id"])
        name = remote.get("name") or remote.get("accountNo") or remote["id"]
        if account is not None:
            return self.repository.update_account(account, name=name)

        remote_type = ((remote.get("class") or {}).get("type") or "transaction").lower()
        return self.repository.create_account(
            name=name,
            type=ACCOUNT_CLASS_TYPES.get(remote_type, remote_type),
            balance=_to_decimal(remote.get("balance")),
            currency=remote.get("currency") or "AUD",
            institution=remote.get("institution"),
            external_id=remote["id"],
            connection_id=connection.id,
        )
