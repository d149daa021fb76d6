import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends

from household_ledger.api.dependencies import get_ingestion, get_ledger_service, get_repository
from household_ledger.api.schemas import (
    BulkCategoriseRequest,
    BulkCategoriseResponse,
    RescanResponse,
    TransactionOut,
    TransactionUpdate,
)
from household_ledger.models import RecategoriseSummary
from household_ledger.services.ingestion import IngestionPipeline
from household_ledger.services.ledger import LedgerService
from household_ledger.storage.repository import LedgerRepository

router = APIRouter()


@router.get("/api/transactions", response_model=list[TransactionOut])
async def list_transactions(
    repository: Annotated[LedgerRepository, Depends(get_repository)],
    account_id: str | None = None,
    uncategorised: bool | None = None,
) -> list[TransactionOut]:
    rows = repository.find_transactions(account_id=account_id, uncategorised=uncategorised)
    return [TransactionOut.model_validate(tx) for tx in rows]


@router.patch("/api/transactions/{transaction_id}", response_model=TransactionOut)
async def update_transaction(
    transaction_id: str,
    req: TransactionUpdate,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> TransactionOut:
    changes = req.model_dump(include=req.model_fields_set)
    tx = ledger.assign_category(transaction_id, **changes)
    return TransactionOut.model_validate(tx)


@router.post("/api/transactions/bulk-categorise", response_model=BulkCategoriseResponse)
async def bulk_categorise(
    req: BulkCategoriseRequest,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> BulkCategoriseResponse:
    updated = ledger.bulk_assign_category(req.transaction_ids, req.category_id)
    return BulkCategoriseResponse(updated=updated)


@router.post("/api/transactions/recategorise", response_model=RecategoriseSummary)
async def recategorise(
    ingestion: Annotated[IngestionPipeline, Depends(get_ingestion)],
) -> RecategoriseSummary:
    return await asyncio.to_thread(ingestion.recategorise)


@router.post("/api/transfers/rescan", response_model=RescanResponse)
async def rescan_transfers(
    ingestion: Annotated[IngestionPipeline, Depends(get_ingestion)],
) -> RescanResponse:
    linked = await asyncio.to_thread(ingestion.rescan_transfers)
    return RescanResponse(message=f"Linked {linked} cross-account transfers.", linked_transfers=linked)
