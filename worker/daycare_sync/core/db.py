"""Database helpers for the worker."""

import logging
from contextlib import contextmanager
from typing import Optional

import psycopg2
from psycopg2 import pool

from daycare_sync.core.config import get_settings
from daycare_sync.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.SimpleConnectionPool] = None


def init_pool(minconn: int = 1, maxconn: int = 5, dsn: Optional[str] = None) -> pool.SimpleConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        dsn = dsn or get_settings().database_url
        if not dsn:
            raise StoreUnavailableError("DATABASE_URL is required for database connections")
        try:
            _connection_pool = pool.SimpleConnectionPool(
                minconn,
                maxconn,
                dsn=dsn,
                connect_timeout=10,
            )
        except psycopg2.OperationalError as exc:
            raise StoreUnavailableError(f"cannot connect to database: {exc}") from exc
        logger.info("Database connection pool initialised")
    return _connection_pool


def close_pool() -> None:
    global _connection_pool
    if _connection_pool is not None:
        _connection_pool.closeall()
        _connection_pool = None
        logger.info("Database connection pool closed")


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection.

    Connection-level failures surface as StoreUnavailableError; the
    transaction is rolled back on any error raised inside the block.
    """
    pg_pool = init_pool()
    try:
        conn = pg_pool.getconn()
    except (psycopg2.OperationalError, pool.PoolError) as exc:
        raise StoreUnavailableError(f"no database connection available: {exc}") from exc
    try:
        yield conn
    except psycopg2.OperationalError as exc:
        _rollback_quietly(conn)
        raise StoreUnavailableError(f"database connection failed: {exc}") from exc
    except Exception:
        _rollback_quietly(conn)
        raise
    finally:
        pg_pool.putconn(conn)


def _rollback_quietly(conn) -> None:
    try:
        conn.rollback()
    except psycopg2.Error as exc:
        logger.warning("Rollback failed: %s", exc)
