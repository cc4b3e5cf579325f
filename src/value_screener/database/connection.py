"""
Database Connection Module

Pooled psycopg connections for the stock repository, plus small module-level
helpers that run one statement on the global pool.
"""

import atexit
import threading
from contextlib import contextmanager
from threading import Semaphore
from typing import Any, Callable, Dict, Generator, List, Optional, Tuple, Union

from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from value_screener.config import ScreenerConfig, config as default_config
from value_screener.utils.logger import get_logger

logger = get_logger(__name__, utility="database")

Params = Optional[Union[Tuple, Dict[str, Any]]]


class PostgresConnection:
    """Pooled connection wrapper that enforces an acquire timeout.

    A Semaphore bounds concurrent acquisition attempts; connection management
    itself is delegated to psycopg_pool's ``ConnectionPool``.
    """

    def __init__(self, minconn: int, maxconn: int, **conn_kwargs: Any):
        if not conn_kwargs.get("password"):
            raise ValueError("DB_PASSWORD environment variable is required for database connections")

        dsn_parts: List[str] = []
        for k, v in conn_kwargs.items():
            if v is None or v == "":
                continue
            val = str(v)
            if " " in val:
                val = f"'{val}'"
            dsn_parts.append(f"{k}={val}")

        self._minconn = minconn
        self._maxconn = maxconn
        self._pool = ConnectionPool(
            conninfo=" ".join(dsn_parts),
            min_size=minconn,
            max_size=maxconn,
            kwargs={"row_factory": dict_row},
            open=True,
        )
        self._sem = Semaphore(maxconn)
        self._closed = False

    @contextmanager
    def connection(self, timeout: float = 5.0) -> Generator[Any, None, None]:
        """Acquire a connection from the pool.

        Raises:
            RuntimeError: the pool is closed or no slot frees up within ``timeout``
        """
        if self._closed:
            raise RuntimeError("Connection pool is closed")

        if not self._sem.acquire(timeout=timeout):
            logger.error("Timeout acquiring pooled connection")
            raise RuntimeError("Timeout acquiring pooled connection")

        try:
            with self._pool.connection(timeout=timeout) as conn:
                yield conn
        finally:
            self._sem.release()

    def close(self) -> None:
        """Close the underlying pool and prevent further acquisitions."""
        if self._closed:
            return
        self._closed = True
        try:
            self._pool.close()
        except Exception as exc:
            logger.error(f"Error closing pooled connections: {exc}")


_GLOBAL_POOL: Optional[PostgresConnection] = None
_GLOBAL_LOCK = threading.RLock()


def init_global_pool(
    minconn: int = 1, maxconn: int = 10, cfg: Optional[ScreenerConfig] = None
) -> PostgresConnection:
    """Initialize and return the module-level pool (idempotent)."""
    global _GLOBAL_POOL
    cfg = cfg or default_config
    if _GLOBAL_POOL is None:
        with _GLOBAL_LOCK:
            if _GLOBAL_POOL is None:
                _GLOBAL_POOL = PostgresConnection(
                    minconn,
                    maxconn,
                    host=cfg.DB_HOST,
                    port=cfg.DB_PORT,
                    dbname=cfg.DB_NAME,
                    user=cfg.DB_USER,
                    password=cfg.DB_PASSWORD,
                )
                logger.info(f"Initialized database pool for {cfg.DB_HOST}:{cfg.DB_PORT}/{cfg.DB_NAME}")
    return _GLOBAL_POOL


def get_global_pool() -> PostgresConnection:
    """Return the global pool, initializing it from config if needed."""
    if _GLOBAL_POOL is None:
        return init_global_pool()
    return _GLOBAL_POOL


def close_global_pool() -> None:
    """Close and clear the global pool if present."""
    global _GLOBAL_POOL
    with _GLOBAL_LOCK:
        if _GLOBAL_POOL is not None:
            try:
                _GLOBAL_POOL.close()
            finally:
                _GLOBAL_POOL = None


def fetch_all(query: str, params: Params = None) -> List[Dict[str, Any]]:
    """Execute a read query and return all rows as dicts."""
    pool = get_global_pool()
    with pool.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(query, params or ())
            return cur.fetchall()


def fetch_one(query: str, params: Params = None) -> Optional[Dict[str, Any]]:
    pool = get_global_pool()
    with pool.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(query, params or ())
            return cur.fetchone()


def execute(query: str, params: Params = None, commit: bool = True) -> int:
    """Execute one statement; returns the affected row count."""
    pool = get_global_pool()
    with pool.connection() as conn:
        try:
            with conn.cursor() as cur:
                cur.execute(query, params or ())
                affected = getattr(cur, "rowcount", 0) or 0
            if commit:
                conn.commit()
            return affected
        except Exception:
            conn.rollback()
            raise


def run_in_transaction(fn: Callable[[Any, Any], Any]) -> Any:
    """Run fn(conn, cur) inside a transaction.

    Commits on success, rolls back and re-raises on error.
    """
    pool = get_global_pool()
    with pool.connection() as conn:
        cur = conn.cursor()
        try:
            res = fn(conn, cur)
            conn.commit()
            return res
        except Exception:
            conn.rollback()
            raise


atexit.register(close_global_pool)
