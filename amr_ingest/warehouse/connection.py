"""
psycopg3 connection pool for the surveillance warehouse.

Ledger reads and writes borrow a connection for one statement group; a
batch commit holds one connection for its whole transaction (acquire /
release). Unset connection parameters come from the DB_* environment
variables.
"""
import os
import time
from contextlib import contextmanager

import psycopg
from psycopg import OperationalError
from psycopg.conninfo import make_conninfo
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from amr_ingest.observability.logger import get_logger

logger = get_logger(__name__)

ENV_DEFAULTS = {
    "DB_HOST": "localhost",
    "DB_PORT": "5432",
    "DB_NAME": "amr_surveillance",
    "DB_USER": "amr_ingest",
}


def _env(name: str) -> str | None:
    return os.getenv(name, ENV_DEFAULTS.get(name))


class DatabaseConnectionPool:
    """
    Pool of dict_row connections to the warehouse database.

    Args:
        host, port, database, user, password: Connection parameters; each
            falls back to DB_HOST, DB_PORT, DB_NAME, DB_USER, DB_PASSWORD
        min_size: Connections kept open
        max_size: Upper bound; a batch commit holds one for its duration
        timeout: Seconds to wait for a connection (also the connect timeout)

    Raises:
        ValueError: If no password is given or set in DB_PASSWORD
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        min_size: int = 1,
        max_size: int = 8,
        timeout: float = 30.0,
    ) -> None:
        self.host = host or _env("DB_HOST")
        self.port = port or int(_env("DB_PORT"))
        self.database = database or _env("DB_NAME")
        self.user = user or _env("DB_USER")
        password = password or _env("DB_PASSWORD")
        if not password:
            raise ValueError("No database password: pass one or set DB_PASSWORD")

        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self.conninfo = make_conninfo(
            host=self.host,
            port=self.port,
            dbname=self.database,
            user=self.user,
            password=password,
            connect_timeout=int(timeout),
        )
        self._pool: ConnectionPool | None = None

    def __repr__(self) -> str:
        return f"DatabaseConnectionPool({self.user}@{self.host}:{self.port}/{self.database})"

    def open(self, max_retries: int = 3, retry_delay: float = 2.0) -> None:
        """
        Open the pool, waiting for min_size connections.

        A database that is still starting (fresh container) is retried
        max_retries times, retry_delay seconds apart.

        Raises:
            OperationalError: If the database stays unreachable
        """
        if self._pool is not None:
            return

        pool = ConnectionPool(
            conninfo=self.conninfo,
            min_size=self.min_size,
            max_size=self.max_size,
            timeout=self.timeout,
            kwargs={"row_factory": dict_row},
            open=False,
        )
        for attempt in range(1, max_retries + 1):
            try:
                pool.open(wait=True, timeout=self.timeout)
            except (OperationalError, PoolTimeout) as e:
                if attempt == max_retries:
                    pool.close()
                    raise OperationalError(
                        f"{self!r} unreachable after {max_retries} attempts: {e}"
                    ) from e
                logger.warning(f"{self!r} not reachable (attempt {attempt}/{max_retries}): {e}")
                time.sleep(retry_delay)
            else:
                break
        self._pool = pool
        logger.info(f"Opened {self!r} (size {self.min_size}-{self.max_size})")

    def close(self) -> None:
        if self._pool is not None:
            self._pool.close()
            self._pool = None

    @property
    def pool(self) -> ConnectionPool:
        if self._pool is None:
            raise RuntimeError("Connection pool is not open. Call open() first.")
        return self._pool

    @contextmanager
    def get_connection(self):
        """Borrow a connection; committed on clean exit, rolled back on error."""
        with self.pool.connection() as conn:
            yield conn

    def acquire(self) -> psycopg.Connection:
        """Take a connection out of the pool for a long transaction."""
        return self.pool.getconn()

    def release(self, conn: psycopg.Connection) -> None:
        self.pool.putconn(conn)

    def execute_query(self, query: str, params: tuple | dict | None = None) -> list[dict]:
        """Run a SELECT; one dict per row."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall()

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
