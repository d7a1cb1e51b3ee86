"""PostgreSQL connection management."""
import logging
from contextlib import contextmanager
from threading import RLock
from typing import Any, Dict, Generator, List, Mapping, Optional, Protocol

import psycopg2
from psycopg2 import extensions, sql
from psycopg2.extras import Json, RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from ..config import DatabaseSettings
from ..utils.errors import ErrorKind, TableAdminError
from ..utils.security import bind_named_parameters, redact_params

logger = logging.getLogger(__name__)


class SQLExecutor(Protocol):
    """What the table service needs from a database connection."""

    def execute(self, query: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        ...

    def begin(self) -> None:
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...

    def quote_literal(self, value: Any) -> str:
        ...


def _driver_failure(error: psycopg2.Error, query: Optional[str], params: Optional[Mapping[str, Any]]) -> TableAdminError:
    message = (getattr(error, "pgerror", None) or str(error)).strip()
    context: Dict[str, Any] = {}
    if query is not None:
        context["sql"] = query
        context["params"] = redact_params(params)
    return TableAdminError(
        ErrorKind.DATABASE,
        message,
        code=getattr(error, "pgcode", None),
        context=context,
    )


class DatabaseSession:
    """One checked-out connection, used for the duration of a request.

    Statements run in autocommit mode unless begin() opened a transaction.
    """

    def __init__(self, conn):
        self.conn = conn
        self.conn.autocommit = True

    @property
    def in_transaction(self) -> bool:
        return not self.conn.autocommit

    def execute(self, query: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """Execute a statement with ":name" bind parameters.

        Returns rows as dicts, or an empty list for statements without a
        result set.
        """
        query_text, bound = bind_named_parameters(query, params)
        try:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query_text, bound)
                if cur.description is None:
                    return []
                return [dict(row) for row in cur.fetchall()]
        except psycopg2.Error as e:
            logger.error(f"Statement failed: {e} | sql={query!r} params={redact_params(params)}")
            raise _driver_failure(e, query, params) from e

    def begin(self) -> None:
        if self.in_transaction:
            raise RuntimeError("A transaction is already open on this session")
        self.conn.autocommit = False

    def commit(self) -> None:
        try:
            self.conn.commit()
        except psycopg2.Error as e:
            logger.error(f"Commit failed: {e}")
            raise _driver_failure(e, None, None) from e
        finally:
            self._end_transaction()

    def rollback(self) -> None:
        try:
            self.conn.rollback()
        except psycopg2.Error as e:
            logger.error(f"Rollback failed: {e}")
            raise _driver_failure(e, None, None) from e
        finally:
            self._end_transaction()

    def _end_transaction(self) -> None:
        if self.conn.closed:
            return
        if self.conn.get_transaction_status() == extensions.TRANSACTION_STATUS_IDLE:
            self.conn.autocommit = True

    def quote_literal(self, value: Any) -> str:
        """Quote a value as an SQL literal using the connection's encoding.

        Dicts are sent as JSON text. A value the driver cannot adapt came
        from the caller, so it is reported as a validation error.
        """
        if isinstance(value, dict):
            value = Json(value)
        try:
            return sql.Literal(value).as_string(self.conn)
        except (psycopg2.Error, UnicodeEncodeError) as e:
            raise TableAdminError(
                ErrorKind.VALIDATION,
                f"Value cannot be used as an SQL literal: {e}",
                context={"value_type": type(value).__name__},
            ) from e


class DatabaseManager:
    """Owns the psycopg2 connection pool and hands out request sessions.

    The pool is created on first use so that building the application does
    not require a reachable database.
    """

    def __init__(self, settings: DatabaseSettings):
        self.settings = settings
        self._pool: Optional[ThreadedConnectionPool] = None
        self._lock = RLock()

    def __repr__(self) -> str:
        s = self.settings
        return f"<DatabaseManager {s.user}@{s.host}:{s.port}/{s.name}>"

    def _get_pool(self) -> ThreadedConnectionPool:
        with self._lock:
            if self._pool is None:
                s = self.settings
                try:
                    self._pool = ThreadedConnectionPool(
                        s.min_connections,
                        s.max_connections,
                        host=s.host,
                        port=s.port,
                        dbname=s.name,
                        user=s.user,
                        password=s.password,
                        connect_timeout=s.connect_timeout,
                    )
                except psycopg2.Error as e:
                    logger.error(f"Failed to open connection pool for {self!r}: {e}")
                    raise _driver_failure(e, None, None) from e
                logger.info(f"Connection pool opened for {self!r}")
            return self._pool

    @contextmanager
    def session(self) -> Generator[DatabaseSession, None, None]:
        """Check out a connection for one request and always return it."""
        pool = self._get_pool()
        try:
            conn = pool.getconn()
        except psycopg2.Error as e:
            logger.error(f"Failed to acquire connection: {e}")
            raise _driver_failure(e, None, None) from e

        try:
            yield DatabaseSession(conn)
        finally:
            self._release(pool, conn)

    @staticmethod
    def _release(pool: ThreadedConnectionPool, conn) -> None:
        """Return a connection to the pool, closing it if it is unusable."""
        discard = bool(conn.closed)
        try:
            if not discard and conn.get_transaction_status() != extensions.TRANSACTION_STATUS_IDLE:
                logger.warning("Rolling back transaction left open at end of request")
                conn.rollback()
        except psycopg2.Error as e:
            logger.error(f"Rollback failed, discarding connection: {e}")
            discard = True
        finally:
            pool.putconn(conn, close=discard)

    def close(self) -> None:
        with self._lock:
            if self._pool is not None:
                self._pool.closeall()
                self._pool = None
                logger.info(f"Connection pool closed for {self!r}")
