"""
Engine and session factory for the ledger store.

Any SQLAlchemy URL works; SQLite is the default. For SQLite the pysqlite
driver is switched to explicit BEGIN so that SAVEPOINTs (used to turn
duplicate inserts into skips) behave transactionally.
"""

from sqlalchemy import create_engine as sa_create_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from household_ledger.core import settings
from household_ledger.logger import get_logger

logger = get_logger(__name__)

Base = declarative_base()

_IN_MEMORY_URLS = {"sqlite://", "sqlite:///:memory:"}


def _enable_sqlite_savepoints(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")


def create_engine(url: str | None = None) -> Engine:
    url = url or settings.get_database_url()
    kwargs: dict = {}
    is_sqlite = url.startswith("sqlite")
    if is_sqlite:
        # FastAPI hands sessions to worker threads
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in _IN_MEMORY_URLS:
            kwargs["poolclass"] = StaticPool

    engine = sa_create_engine(url, **kwargs)
    if is_sqlite:
        _enable_sqlite_savepoints(engine)
    logger.debug("[DB] Engine created for %s", engine.url.render_as_string(hide_password=True))
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    # Registers the mapped classes on Base.metadata
    from household_ledger.storage import tables  # noqa: F401

    Base.metadata.create_all(engine)
