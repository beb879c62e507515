"""
Resilient Store Module
======================

Executes reads and writes against the relational store with bounded
retry and explicit transaction boundaries. The store owns its connection;
callers only ever pass SQLAlchemy statements in and get rows back.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Generator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from itertools import count
from typing import Any

from sqlalchemy import Connection, Engine, Executable, Row
from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError, SQLAlchemyError

from flourish.core.retry import RetryExhausted, RetryPolicy
from flourish.db.engine import create_db_engine, get_database_url
from flourish.db.models import Base

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3

# Errors that mean the connection is unusable; anything else (constraint
# violations, bad SQL) is a caller bug and propagates unchanged.
CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    OperationalError,
    InterfaceError,
    DisconnectionError,
)


class StoreUnavailable(Exception):
    """Raised when the store cannot be reached within the retry budget."""


class TransactionError(Exception):
    """Raised on misuse of transaction handles."""


@dataclass
class WriteResult:
    """Outcome of a write statement."""

    rowcount: int
    inserted_primary_key: tuple[Any, ...] | None = None


_tx_ids = count(1)


@dataclass
class TxHandle:
    """A transaction bound to one store connection."""

    id: int
    _transaction: Any = field(repr=False)
    _connection: Connection = field(repr=False)
    active: bool = True


class ResilientStore:
    """
    Relational store with reconnect-and-retry semantics.

    Outside a transaction every statement runs in its own short
    transaction (auto-commit). A failed attempt closes the connection,
    reopens it from the configured URL and tries again, up to
    ``MAX_ATTEMPTS`` attempts in total. Inside a transaction a connection
    failure is not retried: the open transaction is lost with the
    connection, so the caller gets ``StoreUnavailable`` straight away.
    """

    def __init__(
        self,
        url: str,
        retry_policy: RetryPolicy | None = None,
        engine_factory: Callable[[str], Engine] = create_db_engine,
    ) -> None:
        self.url = url
        self._engine_factory = engine_factory
        self._retry = retry_policy or RetryPolicy(
            max_attempts=MAX_ATTEMPTS, retry_on=CONNECTION_ERRORS
        )
        self._engine: Engine | None = None
        self._connection: Connection | None = None
        self._active_tx: TxHandle | None = None

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def _connect(self) -> Connection:
        if self._engine is None:
            self._engine = self._engine_factory(self.url)
        self._connection = self._engine.connect()
        logger.debug(f"Opened store connection to {self._engine.url!r}")
        return self._connection

    @property
    def connection(self) -> Connection:
        if self._connection is None or self._connection.closed:
            return self._connect()
        return self._connection

    def _drop_connection(self, attempt: int = 0, error: BaseException | None = None) -> None:
        """Close the current connection and engine so the next call rebuilds both from the URL."""
        conn, self._connection = self._connection, None
        if conn is not None:
            try:
                conn.invalidate()
                conn.close()
            except SQLAlchemyError as e:
                logger.debug(f"Ignoring error while closing broken connection: {e}")
        engine, self._engine = self._engine, None
        if engine is not None:
            engine.dispose()

    def close(self) -> None:
        """Close the connection. An open transaction is rolled back."""
        if self._active_tx is not None:
            self.rollback(self._active_tx)
        if self._connection is not None:
            self._connection.close()
            self._connection = None
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def __enter__(self) -> ResilientStore:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def create_schema(self) -> None:
        """Create all tables that do not exist yet."""

        def op() -> None:
            with self.connection.begin():
                Base.metadata.create_all(self.connection)

        self._with_retry(op, "create schema")

    # ------------------------------------------------------------------
    # Statement execution
    # ------------------------------------------------------------------

    def _with_retry(self, operation: Callable[[], Any], description: str) -> Any:
        try:
            return self._retry.call(operation, on_retry=self._drop_connection, description=description)
        except RetryExhausted as e:
            raise StoreUnavailable(
                f"Failed to {description} after {e.attempts} attempts: {e.last_error}"
            ) from e.last_error

    def _in_transaction(
        self, tx: TxHandle, operation: Callable[[Connection], Any], description: str
    ) -> Any:
        try:
            return operation(tx._connection)
        except CONNECTION_ERRORS as e:
            tx.active = False
            self._active_tx = None
            self._drop_connection()
            raise StoreUnavailable(f"Failed to {description} inside transaction {tx.id}: {e}") from e

    def execute_read(
        self, statement: Executable, params: dict[str, Any] | None = None
    ) -> Sequence[Row[Any]]:
        """
        Run a query and return all rows.

        Raises:
            StoreUnavailable: If the store could not be reached.
        """

        def run(conn: Connection) -> Sequence[Row[Any]]:
            return conn.execute(statement, params).all()

        if self._active_tx is not None:
            return self._in_transaction(self._active_tx, run, "execute read")

        def op() -> Sequence[Row[Any]]:
            conn = self.connection
            with conn.begin():
                return run(conn)

        return self._with_retry(op, "execute read")

    def execute_write(
        self, statement: Executable, params: dict[str, Any] | list[dict[str, Any]] | None = None
    ) -> WriteResult:
        """
        Run an insert, update or delete.

        Outside a transaction the write is committed before returning.

        Raises:
            StoreUnavailable: If the store could not be reached.
        """

        def run(conn: Connection) -> WriteResult:
            result = conn.execute(statement, params)
            pk = None
            if result.context is not None and result.context.isinsert and not result.context.executemany:
                pk = tuple(result.inserted_primary_key or ())
            return WriteResult(rowcount=result.rowcount, inserted_primary_key=pk)

        if self._active_tx is not None:
            return self._in_transaction(self._active_tx, run, "execute write")

        def op() -> WriteResult:
            conn = self.connection
            with conn.begin():
                return run(conn)

        return self._with_retry(op, "execute write")

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def begin_transaction(self) -> TxHandle:
        """
        Open a transaction; statements run in it until commit or rollback.

        Raises:
            TransactionError: If a transaction is already open.
            StoreUnavailable: If the store could not be reached.
        """
        if self._active_tx is not None:
            raise TransactionError(f"Transaction {self._active_tx.id} is already open")

        def op() -> TxHandle:
            conn = self.connection
            return TxHandle(id=next(_tx_ids), _transaction=conn.begin(), _connection=conn)

        tx = self._with_retry(op, "begin transaction")
        self._active_tx = tx
        return tx

    def _check_handle(self, tx: TxHandle) -> None:
        if not tx.active or tx is not self._active_tx:
            raise TransactionError(f"Transaction {tx.id} is not open")

    def commit(self, tx: TxHandle) -> None:
        """Commit a transaction and return to auto-commit mode."""
        self._check_handle(tx)
        try:
            tx._transaction.commit()
        except CONNECTION_ERRORS as e:
            self._drop_connection()
            raise StoreUnavailable(f"Failed to commit transaction {tx.id}: {e}") from e
        finally:
            tx.active = False
            self._active_tx = None

    def rollback(self, tx: TxHandle) -> None:
        """Discard every write issued under ``tx``."""
        self._check_handle(tx)
        try:
            tx._transaction.rollback()
        except CONNECTION_ERRORS as e:
            # The database discards the uncommitted work with the connection.
            logger.warning(f"Rollback of transaction {tx.id} failed, dropping connection: {e}")
            self._drop_connection()
        finally:
            tx.active = False
            self._active_tx = None

    @contextmanager
    def transaction(self) -> Generator[TxHandle, None, None]:
        """
        Context manager for a transaction.

        Usage:
            with store.transaction():
                store.execute_write(...)
                store.execute_write(...)
        """
        tx = self.begin_transaction()
        try:
            yield tx
        except BaseException:
            if tx.active:
                self.rollback(tx)
            raise
        self.commit(tx)


def open_store(url: str | None = None, create: bool = True) -> ResilientStore:
    """
    Open a store for ``url`` (default: ``get_database_url()``).

    Args:
        url: Database URL
        create: Create missing tables before returning
    """
    store = ResilientStore(url or get_database_url())
    if create:
        store.create_schema()
    return store
