"""Tests for SQLitePersistence."""

import sqlite3
from unittest.mock import Mock, call

import pytest

from semfora_store import (
    HardAssertionError,
    PersistenceLockedError,
    PersistenceState,
    SQLitePersistence,
    StoreSettings,
    User,
)
from semfora_store.db.query import ABSENT, Statement
from semfora_store.db.schema import MIGRATIONS, SCHEMA_VERSION, MigrationStep
from semfora_store.query_cache import SQLiteQueryCache
from semfora_store.reference_delegate import ListenSequenceDelegate


@pytest.fixture
def settings(tmp_path):
    return StoreSettings(project_id="test-project", data_dir=str(tmp_path), lock_timeout=0.1)


@pytest.fixture
def persistence(settings):
    store = SQLitePersistence(settings)
    store.start()
    yield store
    if store.is_started:
        store.shutdown()


@pytest.fixture
def delegate():
    return Mock()


@pytest.fixture
def observed(settings, delegate):
    """Persistence whose reference delegate is a mock."""
    store = SQLitePersistence(settings, reference_delegate_factory=lambda p: delegate)
    store.start()
    delegate.reset_mock()
    yield store
    if store.is_started:
        store.shutdown()


def count_queues(persistence):
    return persistence.query("SELECT COUNT(*) FROM mutation_queues").first_value(lambda row: row.get_long(0))


class TestLifecycle:
    """Tests for start/shutdown."""

    def test_start_opens_database(self, settings):
        store = SQLitePersistence(settings)
        assert store.state is PersistenceState.UNSTARTED
        assert not store.path.exists()

        store.start()
        try:
            assert store.is_started
            assert store.path.exists()
            assert store.path.name == settings.database_name
            assert store.schema_version == SCHEMA_VERSION
        finally:
            store.shutdown()

        assert store.state is PersistenceState.SHUTDOWN

    def test_double_start_fails_hard(self, persistence):
        with pytest.raises(HardAssertionError, match="double-started"):
            persistence.start()

    def test_shutdown_without_start_fails_hard(self, settings):
        with pytest.raises(HardAssertionError, match="shutdown without start"):
            SQLitePersistence(settings).shutdown()

    def test_double_shutdown_fails_hard(self, persistence):
        persistence.shutdown()
        with pytest.raises(HardAssertionError, match="shutdown without start"):
            persistence.shutdown()

    def test_restart_requires_new_instance(self, settings):
        first = SQLitePersistence(settings)
        first.start()
        first.shutdown()

        with pytest.raises(HardAssertionError, match="restarted after shutdown"):
            first.start()

        second = SQLitePersistence(settings)
        second.start()
        assert second.is_started
        second.shutdown()

    def test_use_after_shutdown_fails_hard(self, persistence):
        persistence.shutdown()
        with pytest.raises(HardAssertionError, match="used while shutdown"):
            persistence.query("SELECT 1")
        with pytest.raises(HardAssertionError):
            persistence.run_transaction("late", lambda: None)

    def test_use_before_start_fails_hard(self, settings):
        with pytest.raises(HardAssertionError, match="used while unstarted"):
            SQLitePersistence(settings).execute("SELECT 1")

    def test_start_order(self, settings):
        events = []
        query_cache = Mock(highest_listen_sequence_number=42)
        query_cache.start.side_effect = lambda: events.append("query_cache.start")
        delegate = Mock()
        delegate.start.side_effect = lambda highest: events.append(("delegate.start", highest))

        store = SQLitePersistence(
            settings,
            query_cache_factory=lambda p, s: query_cache,
            reference_delegate_factory=lambda p: delegate,
        )
        store.start()
        try:
            assert events == ["query_cache.start", ("delegate.start", 42)]
        finally:
            store.shutdown()

    def test_lock_held_by_other_instance(self, persistence, settings):
        other = SQLitePersistence(settings)

        with pytest.raises(PersistenceLockedError):
            other.start()

        assert other.state is PersistenceState.SHUTDOWN
        # The owner is unaffected
        assert persistence.query("SELECT 1").first_value(lambda row: row[0]) == 1

    def test_failed_migration_propagates(self, settings):
        broken = (MigrationStep(version=1, name="broken", statements=("INSERT INTO nope VALUES (1)",)),)
        store = SQLitePersistence(settings, migrations=broken, schema_version=1)

        with pytest.raises(sqlite3.OperationalError):
            store.start()

        assert store.state is PersistenceState.SHUTDOWN
        with pytest.raises(HardAssertionError):
            store.start()


class TestCollaborators:
    """Tests for cache and delegate wiring."""

    def test_default_collaborators(self, persistence):
        assert isinstance(persistence.query_cache, SQLiteQueryCache)
        assert isinstance(persistence.reference_delegate, ListenSequenceDelegate)
        assert persistence.query_cache.highest_listen_sequence_number == 0

    def test_sequence_numbers_resume_from_target_globals(self, settings):
        first = SQLitePersistence(settings)
        first.start()
        first.run_transaction(
            "bump",
            lambda: first.execute("UPDATE target_globals SET highest_listen_sequence_number = ?", 7),
        )
        first.shutdown()

        second = SQLitePersistence(settings)
        second.start()
        try:
            sequence = second.run_transaction(
                "read", lambda: second.reference_delegate.current_sequence_number
            )
            assert sequence == 8
            with pytest.raises(HardAssertionError, match="outside of a transaction"):
                second.reference_delegate.current_sequence_number
        finally:
            second.shutdown()

    def test_caches_receive_persistence_and_serializer(self, settings):
        serializer = object()
        remote_factory = Mock()
        queue_factory = Mock()

        store = SQLitePersistence(
            settings,
            serializer,
            remote_document_cache_factory=remote_factory,
            mutation_queue_factory=queue_factory,
        )

        remote_factory.assert_called_once_with(store, serializer)
        assert store.remote_document_cache is remote_factory.return_value

        user = User("alice")
        assert store.get_mutation_queue(user) is queue_factory.return_value
        queue_factory.assert_called_once_with(store, serializer, user)

    def test_missing_factories_fail_hard(self, persistence):
        with pytest.raises(HardAssertionError, match="No remote document cache"):
            persistence.remote_document_cache
        with pytest.raises(HardAssertionError, match="No mutation queue"):
            persistence.get_mutation_queue(User())


class TestTransactions:
    """Tests for SQLitePersistence.run_transaction."""

    def test_commit_visible_and_notified(self, observed, delegate):
        observed.run_transaction(
            "Add queue",
            lambda: observed.execute("INSERT INTO mutation_queues (uid) VALUES (?)", "alice"),
        )

        assert delegate.mock_calls == [call.on_transaction_started(), call.on_transaction_committed()]
        assert count_queues(observed) == 1

    def test_commit_survives_reopen(self, settings):
        store = SQLitePersistence(settings)
        store.start()
        store.run_transaction(
            "Add queue", lambda: store.execute("INSERT INTO mutation_queues (uid) VALUES (?)", "alice")
        )
        store.shutdown()

        reopened = SQLitePersistence(settings)
        reopened.start()
        try:
            assert count_queues(reopened) == 1
        finally:
            reopened.shutdown()

    def test_failure_rolls_back_and_still_notifies(self, observed, delegate):
        def add_then_fail():
            observed.execute("INSERT INTO mutation_queues (uid) VALUES (?)", "alice")
            raise RuntimeError("write rejected")

        with pytest.raises(RuntimeError, match="write rejected"):
            observed.run_transaction("Add queue", add_then_fail)

        assert delegate.mock_calls == [call.on_transaction_started(), call.on_transaction_committed()]
        assert count_queues(observed) == 0

    def test_returns_value(self, persistence):
        result = persistence.run_transaction(
            "Count", lambda: persistence.query("SELECT COUNT(*) FROM targets").first_value(lambda r: r[0])
        )
        assert result == 0

    def test_context_manager(self, observed, delegate):
        with observed.transaction("Add queues"):
            observed.execute("INSERT INTO mutation_queues (uid) VALUES (?)", "a")
            observed.execute("INSERT INTO mutation_queues (uid) VALUES (?)", "b")

        assert count_queues(observed) == 2
        assert delegate.on_transaction_committed.call_count == 1

    def test_nested_fails_hard(self, persistence):
        with pytest.raises(HardAssertionError):
            persistence.run_transaction(
                "outer", lambda: persistence.run_transaction("inner", lambda: None)
            )


class TestStatements:
    """Tests for the statement and query surface."""

    def test_prepare_and_execute_statement(self, persistence):
        insert = persistence.prepare("INSERT INTO mutations (uid, batch_id, mutations) VALUES (?, ?, ?)")
        assert isinstance(insert, Statement)

        def write():
            for batch_id in range(3):
                assert persistence.execute_statement(insert, "alice", batch_id, b"\x0a") == 1
            delete = persistence.prepare("DELETE FROM mutations WHERE uid = ? AND batch_id < ?")
            return persistence.execute_statement(delete, "alice", 2)

        assert persistence.run_transaction("Write batches", write) == 2

    def test_query_bindings_are_independent(self, persistence):
        persistence.run_transaction(
            "Seed",
            lambda: [
                persistence.execute("INSERT INTO remote_documents (path, contents) VALUES (?, ?)", path, blob)
                for path, blob in (("rooms/a", b"a"), ("users/b", b"b"))
            ],
        )
        sql = "SELECT contents FROM remote_documents WHERE path = ?"

        first = persistence.query(sql).binding("rooms/a")
        second = persistence.query(sql).binding("users/b")

        assert first.first_value(lambda row: row.get_blob(0)) == b"a"
        assert second.first_value(lambda row: row.get_blob(0)) == b"b"
        assert persistence.query(sql).binding("none").first_value(lambda row: row[0]) is ABSENT

    def test_empty_query(self, persistence):
        visit = Mock()
        query = persistence.query("SELECT path FROM remote_documents")

        assert query.is_empty()
        query.for_each(visit)
        visit.assert_not_called()

    def test_unknown_value_kind_fails_hard(self, persistence):
        with pytest.raises(HardAssertionError, match="Unknown argument"):
            persistence.execute("INSERT INTO mutation_queues (uid) VALUES (?)", ["not", "scalar"])

    def test_malformed_sql_surfaces(self, persistence):
        with pytest.raises(sqlite3.OperationalError):
            persistence.execute("INSERT INTO nowhere VALUES (1)")


def test_built_in_migrations_exposed():
    assert MIGRATIONS[-1].version == SCHEMA_VERSION
