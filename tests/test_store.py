"""Tests for the resilient store."""

import pytest
from sqlalchemy import Engine, insert, select, text
from sqlalchemy.exc import IntegrityError, OperationalError

from flourish.db.engine import create_db_engine
from flourish.db.models import CatalogEntryDB
from flourish.db.store import ResilientStore, StoreUnavailable, TransactionError

entries = CatalogEntryDB.__table__

UNREACHABLE_URL = "sqlite:////nonexistent-flourish-dir/unreachable.db"


class FlakyEngineFactory:
    """Engine factory whose first ``failures`` engines cannot connect."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.urls: list[str] = []

    def __call__(self, url: str) -> Engine:
        self.urls.append(url)
        if len(self.urls) <= self.failures:
            return create_db_engine(UNREACHABLE_URL)
        return create_db_engine(url)


def _row(entry_id: int, name: str = "Rose") -> dict:
    return {"id": entry_id, "common_name": name, "scientific_name": f"Rosa {entry_id}"}


def _ids(store: ResilientStore) -> list[int]:
    return [r[0] for r in store.execute_read(select(entries.c.id).order_by(entries.c.id))]


class TestReadWrite:
    """Tests for auto-commit reads and writes."""

    def test_write_then_read(self, store: ResilientStore) -> None:
        """Test a write is visible to a later read."""
        result = store.execute_write(insert(entries).values(**_row(1)))
        assert result.rowcount == 1
        assert _ids(store) == [1]

    def test_executemany_write(self, store: ResilientStore) -> None:
        """Test a write with a list of parameter sets."""
        store.execute_write(insert(entries), [_row(1), _row(2), _row(3)])
        assert _ids(store) == [1, 2, 3]

    def test_write_is_committed(self, store: ResilientStore, db_url: str) -> None:
        """Test writes outside a transaction are visible to another store."""
        store.execute_write(insert(entries).values(**_row(7)))
        with ResilientStore(db_url) as other:
            assert _ids(other) == [7]

    def test_integrity_error_not_retried(self, store: ResilientStore) -> None:
        """Test constraint violations propagate unchanged."""
        store.execute_write(insert(entries).values(**_row(1)))
        with pytest.raises(IntegrityError):
            store.execute_write(insert(entries).values(**_row(1)))


class TestRetry:
    """Tests for reconnect-and-retry."""

    def test_recovers_after_failed_connects(self, db_url: str) -> None:
        """Test the store reconnects from the URL and succeeds."""
        factory = FlakyEngineFactory(failures=2)
        store = ResilientStore(db_url, engine_factory=factory)

        store.create_schema()

        assert len(factory.urls) == 3
        assert all(url == db_url for url in factory.urls)
        assert _ids(store) == []
        store.close()

    def test_unavailable_after_three_attempts(self, db_url: str) -> None:
        """Test StoreUnavailable after the retry budget is spent."""
        factory = FlakyEngineFactory(failures=10)
        store = ResilientStore(db_url, engine_factory=factory)

        with pytest.raises(StoreUnavailable) as exc_info:
            store.execute_read(text("SELECT 1"))

        assert len(factory.urls) == 3
        assert isinstance(exc_info.value.__cause__, OperationalError)

    def test_failed_statement_is_retried(self, store: ResilientStore) -> None:
        """Test an operational error on a statement is retried then surfaced."""
        with pytest.raises(StoreUnavailable):
            store.execute_read(text("SELECT * FROM no_such_table"))
        # The store is still usable afterwards
        assert _ids(store) == []


class TestTransactions:
    """Tests for explicit transactions."""

    def test_commit(self, store: ResilientStore) -> None:
        """Test committed writes persist."""
        tx = store.begin_transaction()
        store.execute_write(insert(entries).values(**_row(1)))
        store.execute_write(insert(entries).values(**_row(2)))
        store.commit(tx)

        assert _ids(store) == [1, 2]
        assert tx.active is False

    def test_rollback(self, store: ResilientStore) -> None:
        """Test rollback discards every write of the transaction."""
        store.execute_write(insert(entries).values(**_row(1)))
        tx = store.begin_transaction()
        store.execute_write(insert(entries).values(**_row(2)))
        store.execute_write(insert(entries).values(**_row(3)))
        store.rollback(tx)

        assert _ids(store) == [1]

    def test_reads_see_uncommitted_writes(self, store: ResilientStore) -> None:
        """Test reads inside a transaction see its own writes."""
        with store.transaction():
            store.execute_write(insert(entries).values(**_row(4)))
            assert _ids(store) == [4]

    def test_nested_transaction_rejected(self, store: ResilientStore) -> None:
        """Test only one transaction may be open."""
        tx = store.begin_transaction()
        with pytest.raises(TransactionError):
            store.begin_transaction()
        store.rollback(tx)

    def test_stale_handle_rejected(self, store: ResilientStore) -> None:
        """Test commit of a finished transaction fails."""
        tx = store.begin_transaction()
        store.commit(tx)
        with pytest.raises(TransactionError):
            store.commit(tx)
        with pytest.raises(TransactionError):
            store.rollback(tx)

    def test_context_manager_rolls_back_on_error(self, store: ResilientStore) -> None:
        """Test the transaction context rolls back when the block raises."""
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.execute_write(insert(entries).values(**_row(5)))
                raise RuntimeError("boom")

        assert _ids(store) == []
        # A new transaction can be opened afterwards
        with store.transaction():
            store.execute_write(insert(entries).values(**_row(6)))
        assert _ids(store) == [6]

    def test_failure_inside_transaction_not_retried(self, store: ResilientStore) -> None:
        """Test a connection-class failure inside a transaction invalidates it."""
        tx = store.begin_transaction()
        store.execute_write(insert(entries).values(**_row(1)))

        with pytest.raises(StoreUnavailable):
            store.execute_read(text("SELECT * FROM no_such_table"))

        assert tx.active is False
        with pytest.raises(TransactionError):
            store.commit(tx)
        # The uncommitted write was lost with the connection
        assert _ids(store) == []

    def test_close_rolls_back_open_transaction(self, store: ResilientStore, db_url: str) -> None:
        """Test closing the store discards an open transaction."""
        store.begin_transaction()
        store.execute_write(insert(entries).values(**_row(9)))
        store.close()

        with ResilientStore(db_url) as other:
            assert _ids(other) == []
