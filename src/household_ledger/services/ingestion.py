from collections.abc import Iterable

from household_ledger.classifiers.rules import RuleMatcher
from household_ledger.domain.feeds import read_csv_records
from household_ledger.logger import get_logger
from household_ledger.manager import CategorizerService
from household_ledger.models import FeedRecord, IngestSummary, RecategoriseSummary
from household_ledger.services.categorization import CategorizationPipeline
from household_ledger.services.importer import LedgerImporter
from household_ledger.services.transfers import TransferLinker
from household_ledger.storage.repository import LedgerRepository

logger = get_logger(__name__)


class IngestionPipeline:
    """Import, then Tier 2, then transfer linking; each stage finishes before the next starts."""

    def __init__(
        self,
        repository: LedgerRepository,
        service: CategorizerService,
        batch_size: int | None = None,
        linker: TransferLinker | None = None,
    ) -> None:
        self.repository = repository
        self.importer = LedgerImporter(repository)
        self.categorization = CategorizationPipeline(repository, service, batch_size=batch_size)
        self.linker = linker or TransferLinker(repository)

    def import_feed(self, account_id: str, records: Iterable[FeedRecord]) -> IngestSummary:
        rules = RuleMatcher.from_repository(self.repository)
        imported = self.importer.import_records(account_id, records, rules=rules)
        tier_two = self.categorization.run_after_import(imported.new_transaction_ids, rules=rules)
        linked = self.linker.link_account(account_id)

        message = (
            f"Imported {imported.imported} transactions, skipped {imported.skipped} "
            f"({imported.duplicates} duplicates, {imported.invalid} invalid). "
            f"AI categorised {tier_two.ai_categorised}, detected {tier_two.ai_transfers} transfers, "
            f"linked {linked} cross-account transfers."
        )
        logger.info("[IMPORT] %s", message)
        return IngestSummary(
            message=message,
            imported=imported.imported,
            skipped=imported.skipped,
            updated=imported.updated,
            ai_categorised=tier_two.ai_categorised,
            ai_transfers=tier_two.ai_transfers,
            linked_transfers=linked,
        )

    def import_csv(self, account_id: str, text: str) -> IngestSummary:
        return self.import_feed(account_id, read_csv_records(text))

    def recategorise(self) -> RecategoriseSummary:
        tier_two = self.categorization.run_all()
        linked = self.linker.rescan_all()
        message = (
            f"AI recategorised {tier_two.ai_categorised} transactions, "
            f"detected {tier_two.ai_transfers} transfers, "
            f"linked {linked} cross-account transfers."
        )
        logger.info("[AI] %s", message)
        return RecategoriseSummary(
            message=message,
            ai_categorised=tier_two.ai_categorised,
            ai_transfers=tier_two.ai_transfers,
            linked_transfers=linked,
            total_processed=tier_two.processed,
        )

    def rescan_transfers(self) -> int:
        return self.linker.rescan_all()
