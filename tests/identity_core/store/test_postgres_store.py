"""Unit tests for the PostgreSQL store with a mocked psycopg connection."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from psycopg import errors as pg_errors

from identity_core.domain.identifiers import ApplicationID, OrganizationID, UserID
from identity_core.domain.rights import Right, Rights
from identity_core.runtime.errors import ConflictError, InternalError, TransactionConflictError
from identity_core.store.postgres import PostgresStore, PostgresTransaction

APP = ApplicationID("app-1")


@pytest.fixture
def cursor():
    return MagicMock()


@pytest.fixture
def mock_connect(cursor):
    with patch("identity_core.store.postgres.psycopg.connect") as connect:
        conn = MagicMock()
        conn.__enter__.return_value = conn
        conn.cursor.return_value.__enter__.return_value = cursor
        connect.return_value = conn
        yield connect


class TestPostgresTransaction:
    def test_get_membership(self, cursor):
        cursor.fetchone.return_value = (["RIGHT_APPLICATION_INFO"],)

        rights = PostgresTransaction(cursor).get_membership(UserID("alice"), APP)

        assert rights == Rights.of(Right.APPLICATION_INFO)
        params = cursor.execute.call_args[0][1]
        assert params == ("user", "alice", "application", "app-1")

    def test_missing_membership(self, cursor):
        cursor.fetchone.return_value = None

        assert PostgresTransaction(cursor).get_membership(UserID("alice"), APP) is None

    def test_put_membership_stores_right_names(self, cursor):
        PostgresTransaction(cursor).put_membership(OrganizationID("acme"), APP, Rights.of(Right.APPLICATION_ALL))

        params = cursor.execute.call_args[0][1]
        assert params[-1] == ["RIGHT_APPLICATION_ALL"]

    def test_list_members_parses_accounts(self, cursor):
        cursor.fetchall.return_value = [
            ("organization", "acme", ["RIGHT_APPLICATION_INFO"]),
            ("user", "alice", ["RIGHT_APPLICATION_ALL"]),
        ]

        members = PostgresTransaction(cursor).list_members(APP)

        assert [a for a, _ in members] == [OrganizationID("acme"), UserID("alice")]

    def test_get_api_key(self, cursor):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        cursor.fetchone.return_value = ("KEY", "application", "app-1", "ci", "hash", ["RIGHT_APPLICATION_INFO"], now, now, None)

        key = PostgresTransaction(cursor).get_api_key("KEY")

        assert key.entity == APP
        assert key.name == "ci"
        assert key.rights == Rights.of(Right.APPLICATION_INFO)

    def test_create_existing_entity_conflicts(self, cursor):
        cursor.rowcount = 0

        with pytest.raises(ConflictError):
            PostgresTransaction(cursor).create_entity(APP)

    def test_delete_entity(self, cursor):
        PostgresTransaction(cursor).delete_entity(APP)

        sql, params = cursor.execute.call_args[0]
        assert sql.startswith("DELETE FROM entities")
        assert params == ("application", "app-1")


class TestPostgresStore:
    def test_commits_on_success(self, mock_connect, cursor):
        store = PostgresStore(dsn="postgresql://test")

        with store.transaction() as tx:
            tx.delete_api_key("KEY")

        conn = mock_connect.return_value
        conn.commit.assert_called_once()
        cursor.execute.assert_called_once()

    def test_serialization_failure_is_retryable_conflict(self, mock_connect, cursor):
        cursor.execute.side_effect = pg_errors.SerializationFailure("could not serialize access")
        store = PostgresStore(dsn="postgresql://test")

        with pytest.raises(TransactionConflictError) as exc:
            with store.transaction() as tx:
                tx.delete_api_key("KEY")

        assert exc.value.retryable
        assert exc.value.code == "conflict"
        mock_connect.return_value.commit.assert_not_called()

    def test_unique_violation_is_conflict(self, mock_connect, cursor):
        cursor.execute.side_effect = pg_errors.UniqueViolation("duplicate key")
        store = PostgresStore(dsn="postgresql://test")

        with pytest.raises(ConflictError):
            with store.transaction() as tx:
                tx.delete_api_key("KEY")

    def test_other_database_errors_are_internal(self, mock_connect, cursor):
        cursor.execute.side_effect = pg_errors.OperationalError("connection lost")
        store = PostgresStore(dsn="postgresql://test")

        with pytest.raises(InternalError):
            with store.transaction() as tx:
                tx.delete_api_key("KEY")

    def test_service_errors_pass_through(self, mock_connect, cursor):
        cursor.rowcount = 0
        store = PostgresStore(dsn="postgresql://test")

        with pytest.raises(ConflictError):
            with store.transaction() as tx:
                tx.create_entity(APP)

    def test_init_schema_applies_ddl(self, mock_connect, cursor):
        PostgresStore(dsn="postgresql://test").init_schema()

        ddl = cursor.execute.call_args[0][0]
        assert "CREATE TABLE IF NOT EXISTS memberships" in ddl
        mock_connect.return_value.commit.assert_called_once()
