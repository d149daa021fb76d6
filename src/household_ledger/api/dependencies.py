from collections.abc import Iterator
from typing import Annotated

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from household_ledger.integration.basiq import BasiqClient
from household_ledger.manager import CategorizerService
from household_ledger.services.ingestion import IngestionPipeline
from household_ledger.services.ledger import LedgerService
from household_ledger.services.sync import FeedSync
from household_ledger.storage.repository import LedgerRepository


def get_session(request: Request) -> Iterator[Session]:
    factory = getattr(request.app.state, "session_factory", None)
    if not factory:
        raise HTTPException(status_code=500, detail="Database not initialized")
    session = factory()
    try:
        yield session
    finally:
        session.close()


def get_repository(session: Annotated[Session, Depends(get_session)]) -> LedgerRepository:
    return LedgerRepository(session)


def get_service(request: Request) -> CategorizerService:
    service = getattr(request.app.state, "service", None)
    if not service:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return service


def get_basiq_optional(request: Request) -> BasiqClient | None:
    return getattr(request.app.state, "basiq", None)


def get_ingestion(
    repository: Annotated[LedgerRepository, Depends(get_repository)],
    service: Annotated[CategorizerService, Depends(get_service)],
) -> IngestionPipeline:
    return IngestionPipeline(repository, service)


def get_ledger_service(repository: Annotated[LedgerRepository, Depends(get_repository)]) -> LedgerService:
    return LedgerService(repository)


def get_feed_sync(
    repository: Annotated[LedgerRepository, Depends(get_repository)],
    ingestion: Annotated[IngestionPipeline, Depends(get_ingestion)],
    basiq: Annotated[BasiqClient | None, Depends(get_basiq_optional)],
) -> FeedSync:
    if not basiq:
        raise HTTPException(status_code=500, detail="Bank sync not initialized")
    return FeedSync(repository, ingestion, basiq)
