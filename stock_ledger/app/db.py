import os
import logging
from contextlib import contextmanager
from pathlib import Path
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker, declarative_base

logger = logging.getLogger(__name__)

# Prefer explicit DATABASE_URL env var. If not provided, construct a safe
# local SQLite URL in a `data/` folder adjacent to the package directory.
env_db = os.getenv("DATABASE_URL")
if env_db:
    DATABASE_URL = env_db
else:
    pkg_root = Path(__file__).resolve().parents[1]
    data_dir = pkg_root / "data"
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        # best-effort; if creating fails fall back to in-memory DB
        data_dir = None
    if data_dir:
        db_file = data_dir / "stock_ledger.db"
        # Use POSIX path style for SQLAlchemy URL on Windows as well
        DATABASE_URL = f"sqlite:///{db_file.as_posix()}"
    else:
        DATABASE_URL = "sqlite:///:memory:"

SQLITE_BUSY_TIMEOUT = float(os.getenv("SQLITE_BUSY_TIMEOUT", "30"))


def make_engine(url: str, **kwargs):
    """
    Build an engine whose transactions are safe for concurrent writers.

    SQLite has no row locks, so pysqlite's lazy BEGIN is replaced by
    BEGIN IMMEDIATE: a unit of work holds the write lock from its first
    statement until commit or rollback. Other backends rely on the
    SELECT ... FOR UPDATE issued by the services.
    """
    is_sqlite = url.startswith("sqlite")
    connect_args = kwargs.pop("connect_args", {})
    if is_sqlite:
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", SQLITE_BUSY_TIMEOUT)

    engine = create_engine(url, connect_args=connect_args, **kwargs)

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


@contextmanager
def unit_of_work(db: Session):
    """
    Atomic boundary for a stock operation.

    Commits when the block exits normally; any exception rolls back every
    lot, counter and transaction row touched inside the block.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def create_db_and_tables(bind=None):
    # models must be imported so their tables are registered on Base.metadata
    from . import models, ledger_models  # noqa: F401
    bind = bind or engine
    logger.info("Using DATABASE_URL: %s", bind.url)
    Base.metadata.create_all(bind=bind)
