import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from household_ledger.api.routes import accounts, categories, sync, transactions
from household_ledger.core import settings
from household_ledger.errors import LedgerError
from household_ledger.integration.basiq import BasiqClient
from household_ledger.logger import get_logger, setup_logging
from household_ledger.manager import CategorizerService
from household_ledger.storage.db import create_engine, create_session_factory, init_db
from household_ledger.storage.seed import seed_categories

logger = get_logger(__name__)


def create_app(database_url: str | None = None) -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        engine = create_engine(database_url or settings.get_database_url())
        init_db(engine)
        session_factory = create_session_factory(engine)
        with session_factory() as session:
            seed_categories(session)

        if not os.getenv("BASIQ_API_KEY"):
            logger.warning("BASIQ_API_KEY not set. Bank sync will be disabled.")

        basiq = BasiqClient()
        app.state.session_factory = session_factory
        app.state.service = CategorizerService()
        app.state.basiq = basiq

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")
        await basiq.aclose()
        engine.dispose()

    app = FastAPI(title="Household Ledger", lifespan=lifespan)

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        logger.warning(f"[API] {request.method} {request.url.path} rejected: {exc}")
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        service = getattr(request.app.state, "service", None)
        basiq = getattr(request.app.state, "basiq", None)
        return {
            "status": "ok",
            "ai_enabled": bool(service and service.ai_enabled),
            "sync_enabled": bool(basiq and basiq.configured),
        }

    app.include_router(accounts.router)
    app.include_router(categories.router)
    app.include_router(transactions.router)
    app.include_router(sync.router)

    return app
