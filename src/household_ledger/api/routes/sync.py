from typing import Annotated

from fastapi import APIRouter, Depends

from household_ledger.api.dependencies import get_feed_sync
from household_ledger.models import SyncSummary
from household_ledger.services.sync import FeedSync

router = APIRouter()


@router.post("/api/sync", response_model=SyncSummary)
async def sync_connections(
    feed_sync: Annotated[FeedSync, Depends(get_feed_sync)],
) -> SyncSummary:
    return await feed_sync.sync_all()
