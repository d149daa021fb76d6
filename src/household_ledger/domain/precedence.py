"""
Category write-back precedence.

Every automated writer goes through ``can_write_category``; nothing else in
the codebase decides whether a category may be replaced.
"""

from typing import Any

from household_ledger.models import CategorizationResult
from household_ledger.storage.tables import Transaction

SOURCE_RANK: dict[str | None, int] = {
    None: 0,
    "ai": 1,
    "rule": 2,
    "auto": 2,
    "manual": 3,
}

AI_ELIGIBLE_SOURCES: tuple[str | None, ...] = (None, "ai")


def source_rank(source: str | None) -> int:
    return SOURCE_RANK.get(source, 0)


def can_write_category(current_source: str | None, incoming_source: str) -> bool:
    if incoming_source == "manual":
        return True
    if current_source == "manual":
        return False
    return source_rank(incoming_source) >= source_rank(current_source)


def plan_category_update(tx: Transaction, result: CategorizationResult) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    if result.category.id and can_write_category(tx.category_source, result.source):
        fields["category_id"] = result.category.id
        fields["category_source"] = result.source
    # A transfer assertion is sticky; absence never clears it
    if result.is_transfer and not tx.is_transfer:
        fields["is_transfer"] = True
        fields["transfer_source"] = "ai"
    if result.clean_description and result.clean_description != tx.clean_description:
        fields["clean_description"] = result.clean_description
    return fields


def plan_transfer_update(
    tx: Transaction,
    category_id: str | None,
    linked_transaction_id: str | None = None,
) -> dict[str, Any]:
    fields: dict[str, Any] = {"is_transfer": True, "transfer_source": "keyword"}
    if linked_transaction_id is not None:
        fields["linked_transaction_id"] = linked_transaction_id
        fields["transfer_source"] = "linked"
    if category_id and can_write_category(tx.category_source, "auto"):
        fields["category_id"] = category_id
        fields["category_source"] = "auto"
    return fields
