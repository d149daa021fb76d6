import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, Request

from household_ledger.api.dependencies import get_ingestion, get_ledger_service, get_repository
from household_ledger.api.schemas import AccountCreate, AccountOut
from household_ledger.models import IngestSummary
from household_ledger.services.ingestion import IngestionPipeline
from household_ledger.services.ledger import LedgerService
from household_ledger.storage.repository import LedgerRepository

router = APIRouter(prefix="/api/accounts")


@router.get("", response_model=list[AccountOut])
async def list_accounts(
    repository: Annotated[LedgerRepository, Depends(get_repository)],
) -> list[AccountOut]:
    return [AccountOut.model_validate(account) for account in repository.list_accounts()]


@router.post("", response_model=AccountOut, status_code=201)
async def create_account(
    req: AccountCreate,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> AccountOut:
    account = ledger.create_account(req.name, type=req.type, balance=req.balance, institution=req.institution)
    return AccountOut.model_validate(account)


@router.post("/{account_id}/import", response_model=IngestSummary)
async def import_csv(
    account_id: str,
    request: Request,
    ingestion: Annotated[IngestionPipeline, Depends(get_ingestion)],
) -> IngestSummary:
    """Import a bank CSV export sent as the raw request body."""
    body = await request.body()
    text = body.decode("utf-8-sig", errors="replace")
    return await asyncio.to_thread(ingestion.import_csv, account_id, text)
