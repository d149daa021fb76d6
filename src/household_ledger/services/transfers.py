from datetime import timedelta

from household_ledger.classifiers.transfers import (
    TRANSFER_CATEGORY_NAMES,
    TransferPatternMatcher,
    category_for_account_type,
    default_keyword_table,
)
from household_ledger.core import settings
from household_ledger.domain.precedence import plan_transfer_update
from household_ledger.errors import AccountNotFoundError
from household_ledger.logger import get_logger
from household_ledger.storage.repository import LedgerRepository
from household_ledger.storage.tables import Account, Transaction

logger = get_logger(__name__)

MATCH_WINDOW = timedelta(days=1)
OPPOSITE_DIRECTION = {"debit": "credit", "credit": "debit"}


class TransferLinker:
    """
    Find internal transfers and pair their two halves across accounts.

    Phase 1 keeps only unflagged, unlinked rows whose description matches a
    transfer pattern. Phase 2 looks on every other account for an unflagged,
    unlinked row with the same amount, the opposite direction and a date
    within one day. Both halves are written in a single flush. When nothing
    matches, the keyword table alone decides whether the row is a transfer.
    """

    def __init__(self, repository: LedgerRepository, matcher: TransferPatternMatcher | None = None) -> None:
        self.repository = repository
        self.matcher = matcher or TransferPatternMatcher(default_keyword_table(settings.get_lender_keywords()))

    def resolve_categories(self) -> dict[str, str]:
        category_ids = self.repository.category_ids_by_name(TRANSFER_CATEGORY_NAMES)
        missing = [name for name in TRANSFER_CATEGORY_NAMES if name not in category_ids]
        if missing:
            logger.warning("[TRANSFER] Transfer categories missing from catalogue: %s", ", ".join(missing))
        return category_ids

    def link_account(self, account_id: str) -> int:
        accounts = self.repository.list_accounts()
        if not any(account.id == account_id for account in accounts):
            raise AccountNotFoundError(account_id)
        category_ids = self.resolve_categories()
        if len(accounts) < 2:
            self._mark_single_account(account_id, category_ids)
            self.repository.commit()
            return 0

        # Keyword-only flags may now have a counterpart on this account
        released = self._release_keyword_flags()
        linked = self._link_account(account_id, accounts, category_ids)
        for account in accounts:
            if account.id in released and account.id != account_id:
                linked += self._link_account(account.id, accounts, category_ids)
        self.repository.commit()
        return linked

    def rescan_all(self) -> int:
        """Drop every link and linker-owned flag, relink all accounts, and report only new links."""
        before = self._link_pairs()

        resets = [
            (tx, {"is_transfer": False, "linked_transaction_id": None, "transfer_source": None})
            for tx in self.repository.find_transactions(linked=True)
        ]
        self.repository.update_transactions(resets)
        released = self._release_keyword_flags()
        logger.info(
            "[TRANSFER] Rescan reset %d linked transactions; keyword flags released on %d accounts.",
            len(resets),
            len(released),
        )

        accounts = self.repository.list_accounts()
        category_ids = self.resolve_categories()
        for account in accounts:
            self._link_account(account.id, accounts, category_ids)
        self.repository.commit()

        new_links = self._link_pairs() - before
        logger.info("[TRANSFER] Rescan complete: %d new links.", len(new_links))
        return len(new_links)

    def find_counterpart(self, tx: Transaction) -> Transaction | None:
        matches = self.repository.find_transactions(
            exclude_account_id=tx.account_id,
            amount=tx.amount,
            direction=OPPOSITE_DIRECTION[tx.direction],
            date_from=tx.date - MATCH_WINDOW,
            date_to=tx.date + MATCH_WINDOW,
            is_transfer=False,
            linked=False,
        )
        if not matches:
            return None
        return min(matches, key=lambda match: (abs((match.date - tx.date).days), match.created_at, match.id))

    def _link_account(self, account_id: str, accounts: list[Account], category_ids: dict[str, str]) -> int:
        if len(accounts) < 2:
            self._mark_single_account(account_id, category_ids)
            return 0

        accounts_by_id = {account.id: account for account in accounts}
        linked = 0
        for tx in self.repository.find_transactions(account_id=account_id, is_transfer=False, linked=False):
            # An earlier pair in this run may have claimed it
            if tx.is_transfer or tx.linked_transaction_id:
                continue
            if not self.matcher.is_candidate(tx.description):
                continue

            match = self.find_counterpart(tx)
            if match is None:
                self._apply_keyword_fallback(tx, category_ids)
                continue

            self._link_pair(tx, match, accounts_by_id, category_ids)
            linked += 1

        if linked:
            logger.info("[TRANSFER] Account %s: linked %d transfers.", account_id, linked)
        return linked

    def _link_pair(
        self,
        tx: Transaction,
        match: Transaction,
        accounts_by_id: dict[str, Account],
        category_ids: dict[str, str],
    ) -> None:
        destination = accounts_by_id.get(match.account_id if tx.direction == "debit" else tx.account_id)
        category_name = category_for_account_type(destination.type if destination else None)
        category_id = category_ids.get(category_name)

        self.repository.update_transactions([
            (tx, plan_transfer_update(tx, category_id, match.id)),
            (match, plan_transfer_update(match, category_id, tx.id)),
        ])
        logger.debug(
            "[TRANSFER] Linked %s <-> %s as '%s' (%s %s).",
            tx.id,
            match.id,
            category_name,
            tx.amount,
            tx.date,
        )

    def _apply_keyword_fallback(self, tx: Transaction, category_ids: dict[str, str]) -> bool:
        category_id = self.matcher.keyword_category_id(tx.description, category_ids)
        if category_id is None:
            return False
        self.repository.update_transaction(tx, **plan_transfer_update(tx, category_id))
        logger.debug("[TRANSFER] Flagged %s by keyword: '%s'", tx.id, tx.description)
        return True

    def _mark_single_account(self, account_id: str, category_ids: dict[str, str]) -> None:
        flagged = 0
        for tx in self.repository.find_transactions(account_id=account_id, is_transfer=False):
            if self.matcher.is_candidate(tx.description) and self._apply_keyword_fallback(tx, category_ids):
                flagged += 1
        if flagged:
            logger.info("[TRANSFER] Single account %s: flagged %d transfers by keyword.", account_id, flagged)

    def _release_keyword_flags(self) -> set[str]:
        """Clear unlinked flags the keyword fallback raised; returns the accounts that held them."""
        flagged = self.repository.find_transactions(is_transfer=True, linked=False, transfer_source="keyword")
        self.repository.update_transactions([(tx, {"is_transfer": False, "transfer_source": None}) for tx in flagged])
        return {tx.account_id for tx in flagged}

    def _link_pairs(self) -> set[frozenset[str]]:
        return {
            frozenset((tx.id, tx.linked_transaction_id))
            for tx in self.repository.find_transactions(linked=True)
        }
