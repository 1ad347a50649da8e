"""
core/db.py -- SQLAlchemy engine construction shared by every store.

One engine is created at startup and handed to each repository (UserStore,
TokenStore, PermissionStore, MovieStore). Stores own their table definitions
and call create_all() against this engine; this module only decides how to
connect.

Every connection carries an upper bound on how long a statement may block:
  SQLite:      the busy timeout (sqlite3 "timeout" connect arg).
  PostgreSQL:  statement_timeout, set through libpq "options".
A request whose client has gone away therefore cannot pin a connection for
longer than db_timeout seconds.
"""

from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases ignore the PRAGMA.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_db_engine(db_url: str, timeout: float = 3.0) -> Engine:
    """Return an Engine for db_url with a per-statement timeout applied."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout
    elif db_url.startswith("postgresql"):
        connect_args["options"] = f"-c statement_timeout={int(timeout * 1000)}"
    engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine
