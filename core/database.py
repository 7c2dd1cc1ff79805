"""
core/database.py -- SQLAlchemy engine construction shared by every store.

SQLAlchemy provides a database-agnostic abstraction: swapping SQLite for
PostgreSQL is a connection string change, not a rewrite. The SQLite-specific
tweaks live here so stores do not each re-learn them.

Layer rule: core/ is the kernel. No imports from api/, auth/ or persistence/.
"""

from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL (Write-Ahead Logging) allows readers to proceed without blocking
    during writes. Set per-connection because SQLite PRAGMAs are not
    inherited by new connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _is_plain_memory_url(db_url: str) -> bool:
    return db_url in ("sqlite://", "sqlite:///:memory:")


def make_engine(db_url: str, **kwargs) -> Engine:
    """Create an engine with the SQLite adjustments the app relies on.

    check_same_thread=False: async callers run blocking work on worker threads.
    Plain :memory: URLs get a StaticPool, because an in-memory database is
    private to a single connection. Named shared-memory URIs
    (file:name?mode=memory&cache=shared&uri=true) already share one instance.
    """
    connect_args: dict = kwargs.pop("connect_args", {})
    is_sqlite = db_url.startswith("sqlite")
    in_memory = is_sqlite and (_is_plain_memory_url(db_url) or "mode=memory" in db_url)
    if is_sqlite:
        connect_args.setdefault("check_same_thread", False)
    if is_sqlite and _is_plain_memory_url(db_url):
        kwargs.setdefault("poolclass", StaticPool)
    engine = create_engine(db_url, connect_args=connect_args, **kwargs)
    if is_sqlite and not in_memory:
        event.listen(engine, "connect", _set_wal_mode)
    return engine
