"""
Calendar Database Pool

Thread-safe psycopg2 pool for the calendar database. Connections are handed
out through context managers; when the pool is unavailable or exhausted a
direct connection is opened instead so a calendar refresh never blocks on
pool capacity.
"""

import os
import threading
import time
import logging
from contextlib import contextmanager
from typing import Optional, Dict, Any

import psycopg2
from psycopg2 import pool

from utils.config import get_database_config, get_pool_config


logger = logging.getLogger(__name__)

REQUIRED_SETTINGS = ("host", "port", "database", "user", "password")


class DatabasePool:
    """Thread-safe connection pool for the calendar database."""

    def __init__(self, db_config: Optional[Dict[str, Any]] = None, name: str = "calendar"):
        """
        Args:
            db_config: psycopg2 connection keyword arguments; read from the
                CALENDARDB_* environment when omitted
            name: Label used in log messages and statistics

        Raises:
            ValueError: If a required setting is missing
        """
        self.name = name
        self.pool: Optional[pool.AbstractConnectionPool] = None
        self.pool_lock = threading.Lock()
        self.stats = {
            "connections_created": 0,
            "connections_used": 0,
            "connections_returned": 0,
            "pool_exhausted": 0,
            "fallback_connections": 0,
            "errors": 0
        }

        if db_config is None:
            db_config = dict(get_database_config())
            db_config["sslmode"] = os.getenv("CALENDARDB_SSLMODE", "disable")
        self.db_config = db_config

        missing = [key for key in REQUIRED_SETTINGS if not self.db_config.get(key)]
        if missing:
            raise ValueError(
                f"Missing database configuration for {self.name}: {missing}. "
                f"Please check your .env file."
            )

    def initialize_pool(self, min_connections: int = 1, max_connections: int = 5) -> bool:
        """
        Open the threaded pool; a no-op when it is already open.

        Returns:
            bool: False if the database refused the initial connections
        """
        with self.pool_lock:
            if self.pool is not None:
                return True
            try:
                self.pool = psycopg2.pool.ThreadedConnectionPool(
                    min_connections, max_connections, **self.db_config
                )
            except psycopg2.Error as e:
                logger.error(f"Failed to initialize {self.name} pool: {e}")
                self.stats["errors"] += 1
                return False
            self.stats["connections_created"] = min_connections

        logger.info(f"Initialized {self.name} pool ({min_connections}-{max_connections} connections)")
        return True

    def _acquire(self):
        """Pooled connection if one is free, else a direct one. Returns (conn, pooled)."""
        if self.pool is not None:
            try:
                connection = self.pool.getconn()
                self.stats["connections_used"] += 1
                return connection, True
            except pool.PoolError:
                self.stats["pool_exhausted"] += 1
                logger.warning(f"{self.name} pool exhausted, opening a direct connection")

        self.stats["fallback_connections"] += 1
        return psycopg2.connect(**self.db_config), False

    def _release(self, connection, pooled: bool):
        try:
            if pooled and self.pool is not None:
                self.pool.putconn(connection)
                self.stats["connections_returned"] += 1
            else:
                connection.close()
        except Exception as e:
            logger.warning(f"Error releasing {self.name} connection: {e}")
            self.stats["errors"] += 1

    @contextmanager
    def get_connection(self):
        """
        Borrow a connection for the duration of a with-block.

        Yields:
            psycopg2.connection: Database connection

        Example:
            >>> db = DatabasePool()
            >>> with db.get_connection() as conn:
            ...     cursor = conn.cursor()
            ...     cursor.execute("SELECT id, name FROM machines")
        """
        connection = None
        pooled = False
        start_time = time.time()

        try:
            connection, pooled = self._acquire()
            yield connection
        except Exception as e:
            self.stats["errors"] += 1
            elapsed = time.time() - start_time
            logger.error(f"{self.name} connection error after {elapsed:.2f}s: {e}")
            raise
        finally:
            if connection is not None:
                self._release(connection, pooled)

    def close_pool(self):
        """Close every pooled connection."""
        with self.pool_lock:
            if self.pool is None:
                return
            try:
                self.pool.closeall()
                logger.info(f"Closed {self.name} connection pool")
            except psycopg2.Error as e:
                logger.warning(f"Error closing {self.name} pool: {e}")
                self.stats["errors"] += 1
            finally:
                self.pool = None

    def get_stats(self) -> Dict[str, Any]:
        """Counters plus whether (and which) pool is open."""
        stats = dict(self.stats)
        stats["pool_initialized"] = self.pool is not None
        if self.pool is not None:
            stats["pool_type"] = type(self.pool).__name__
        return stats

    def health_check(self) -> bool:
        """True if the calendar database answers a trivial query."""
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cursor:
                    cursor.execute("SELECT 1")
                    return cursor.fetchone() is not None
        except psycopg2.Error as e:
            logger.error(f"{self.name} health check failed: {e}")
            return False


# Global pool instance
_calendar_pool: Optional[DatabasePool] = None
_pool_lock = threading.Lock()


def get_pool() -> DatabasePool:
    """
    Get or create the calendar database pool, sized from CALENDARDB_POOL_MIN/MAX.

    Raises:
        ValueError: If database configuration is missing
    """
    global _calendar_pool

    with _pool_lock:
        if _calendar_pool is None:
            sizing = get_pool_config()
            _calendar_pool = DatabasePool()
            _calendar_pool.initialize_pool(sizing["min_connections"], sizing["max_connections"])
        return _calendar_pool


def close_all_pools():
    """Close the calendar database pool."""
    global _calendar_pool

    with _pool_lock:
        if _calendar_pool is not None:
            _calendar_pool.close_pool()
            _calendar_pool = None


@contextmanager
def get_calendar_connection():
    """
    Borrow a connection from the shared calendar pool.

    Example:
        >>> with get_calendar_connection() as conn:
        ...     cursor = conn.cursor()
        ...     cursor.execute("SELECT COUNT(*) FROM calendar_events")
    """
    with get_pool().get_connection() as conn:
        yield conn


@contextmanager
def transaction(connection_factory=get_calendar_connection):
    """
    Connection whose statements commit together at the end of the block.

    A psycopg2 error inside the block rolls the transaction back and is
    re-raised.
    """
    with connection_factory() as conn:
        try:
            yield conn
        except psycopg2.Error:
            conn.rollback()
            raise
        conn.commit()


def get_pool_stats() -> Dict[str, Dict[str, Any]]:
    """Statistics of the initialized pool, keyed by pool name."""
    if _calendar_pool is None:
        return {}
    return {_calendar_pool.name: _calendar_pool.get_stats()}
