"""
Pooled PostgreSQL connections for the settings document store.

The store calls these from executor threads, so the pool is a
``ThreadedConnectionPool`` sized by ``HMERN_DB_POOL_MIN``/``HMERN_DB_POOL_MAX``.
Every connection is tagged with ``application_name`` and carries a
``statement_timeout``: a settings read that hangs would otherwise hold an
executor thread while the caller waits for its environment fallback.

Usage:
    from hmern.db import get_connection

    with get_connection() as conn:
        cur = conn.cursor()
        cur.execute("SELECT document FROM core_settings_config")
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

import psycopg2
import psycopg2.pool

from hmern.config import DatabaseConfig, get_config

logger = logging.getLogger(__name__)

_pool: psycopg2.pool.ThreadedConnectionPool | None = None
_pool_lock = threading.Lock()


def connect_kwargs(cfg: DatabaseConfig) -> dict[str, Any]:
    """psycopg2.connect() kwargs for settings connections."""
    kwargs: dict[str, Any] = dict(cfg.dict)
    kwargs["connect_timeout"] = cfg.connect_timeout
    kwargs["application_name"] = cfg.application_name
    if cfg.statement_timeout_ms > 0:
        kwargs["options"] = f"-c statement_timeout={cfg.statement_timeout_ms}"
    return kwargs


def get_pool() -> psycopg2.pool.ThreadedConnectionPool:
    """Get or create the connection pool."""
    global _pool
    if _pool is not None and not _pool.closed:
        return _pool

    with _pool_lock:
        if _pool is not None and not _pool.closed:
            return _pool

        cfg = get_config().db
        logger.info(
            "Creating settings connection pool: %s@%s:%s/%s (min=%d, max=%d, statement_timeout=%dms)",
            cfg.user,
            cfg.host or "<socket>",
            cfg.port,
            cfg.name,
            cfg.pool_min,
            cfg.pool_max,
            cfg.statement_timeout_ms,
        )
        try:
            _pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=cfg.pool_min,
                maxconn=cfg.pool_max,
                **connect_kwargs(cfg),
            )
        except psycopg2.OperationalError as e:
            raise ConnectionError(
                f"Cannot connect to PostgreSQL at {cfg.host}:{cfg.port}/{cfg.name}: {e}\n"
                f"Check HMERN_DB_* environment variables and ensure PostgreSQL is running."
            ) from e
        return _pool


@contextmanager
def get_connection() -> Generator[psycopg2.extensions.connection, None, None]:
    """Borrow a connection from the pool.

    Commits when the block exits cleanly and rolls back on exception. A
    connection the server dropped (restart, idle kill) is closed rather than
    returned, so the next read after an outage gets a fresh one.
    """
    pool = get_pool()
    conn = pool.getconn()
    broken = False
    try:
        yield conn
        conn.commit()
    except (psycopg2.OperationalError, psycopg2.InterfaceError):
        broken = True
        logger.warning("Discarding broken settings connection")
        raise
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn, close=broken or bool(conn.closed))


def close_pool() -> None:
    """Close all connections in the pool."""
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None
