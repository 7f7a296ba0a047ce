"""
core/database.py -- Engine construction and error classification shared by all stores.

Both repositories (auth/store.py and social/store.py) live in the same
database: the feed joins posts to their authors. They share one MetaData so
metadata.create_all() from either store creates every table imported so far.

Timeout policy:
  Every storage operation is bounded by one fixed timeout (DB_TIMEOUT_SECONDS,
  default 5s). For SQLite this is the busy timeout; for PostgreSQL it is the
  server-side statement_timeout plus the connect timeout; for pooled engines
  it is also the pool checkout timeout. A timeout surfaces as
  StorageUnavailableError and is never retried here -- retries belong to the
  caller's transport.

Layer rule: core/ is the kernel. No imports from api/, auth/, cache/, or social/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from core.errors import StorageUnavailableError

logger = logging.getLogger("socialfeed.database")

metadata = MetaData()

DEFAULT_TIMEOUT_SECONDS = 5.0

# Largest value an INTEGER column holds (signed 64-bit). Ids and offsets past
# this overflow in the driver before the query runs.
MAX_ID = 2**63 - 1


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def iso(dt: datetime) -> str:
    """Render dt as a fixed-width UTC ISO 8601 string.

    Fixed width (always microseconds, always +00:00) keeps lexicographic
    order identical to chronological order, so expiry checks can compare
    the stored TEXT column directly in SQL.
    """
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def build_engine(db_url: str, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> Engine:
    """Create an engine whose every round trip is bounded by timeout seconds."""
    connect_args: dict = {}
    engine_args: dict = {}
    if db_url.startswith("sqlite"):
        # check_same_thread=False: FastAPI runs sync handlers in a thread pool.
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout
    else:
        engine_args["pool_timeout"] = timeout
        engine_args["pool_pre_ping"] = True
        if db_url.startswith("postgresql"):
            connect_args["connect_timeout"] = max(1, int(timeout))
            connect_args["options"] = f"-c statement_timeout={int(timeout * 1000)}"
    engine = create_engine(db_url, connect_args=connect_args, **engine_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Translate driver-level availability failures into StorageUnavailableError.

    IntegrityError is deliberately not handled here: only the store method
    that issued the statement knows which conflict kind it means.
    """
    try:
        yield
    except (OperationalError, PoolTimeoutError) as exc:
        logger.warning("Storage unavailable during %s: %s", operation, exc.__class__.__name__)
        raise StorageUnavailableError() from exc


def ping(engine: Engine) -> bool:
    """Return True if a trivial round trip succeeds. Used by the health endpoint."""
    try:
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return True
    except (OperationalError, PoolTimeoutError):
        return False
