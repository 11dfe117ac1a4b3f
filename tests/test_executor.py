"""Unit tests for logica_guard.database.executor."""

from __future__ import annotations

import hashlib

import psycopg2.errors
import pytest
from psycopg2.extensions import TRANSACTION_STATUS_INTRANS

from logica_guard.config import mask_uri
from logica_guard.database.connection import SQLiteConnection
from logica_guard.database.executor import (
    AuthorizationDeniedError,
    QueryExecutionError,
    QueryTimeoutError,
    SafeExecutor,
    execute,
    normalize_page,
    normalize_per_page,
    paginate_sql,
    sql_digest,
)
from logica_guard.policy import AccessPolicy

ITEMS_POLICY = AccessPolicy(engine="sqlite", allowed_relations=["items"])

# ---------------------------------------------------------------------------
# Pagination helpers
# ---------------------------------------------------------------------------


class TestNormalizePage:
    @pytest.mark.parametrize("value, expected", [(None, 1), ("3", 3), (0, 1), (-2, 1), ("abc", 1), (7, 7)])
    def test_page(self, value, expected):
        assert normalize_page(value) == expected

    @pytest.mark.parametrize(
        "value, expected",
        [(None, 50), ("abc", 50), (0, 50), (-5, 50), (10, 10), ("25", 25), (500, 200)],
    )
    def test_per_page(self, value, expected):
        assert normalize_per_page(value) == expected

    def test_per_page_custom_ceiling(self):
        assert normalize_per_page(500, max_per_page=1000) == 500
        assert normalize_per_page(500, max_per_page=20) == 20


class TestPaginateSql:
    def test_wraps_and_strips_semicolon(self):
        assert paginate_sql("SELECT 1 AS x;", 1, 50) == (
            "SELECT * FROM (\nSELECT 1 AS x\n) AS logica_rows LIMIT 50 OFFSET 0"
        )

    def test_offset(self):
        assert paginate_sql("SELECT 1 AS x", 3, 10).endswith("LIMIT 10 OFFSET 20")

    def test_limit_clamped_to_ceiling(self):
        assert paginate_sql("SELECT 1 AS x", 3, 10, max_rows=25).endswith("LIMIT 5 OFFSET 20")

    def test_past_ceiling_returns_empty_window(self):
        assert paginate_sql("SELECT 1 AS x", 5, 10, max_rows=25).endswith("LIMIT 0 OFFSET 0")

    def test_trailing_line_comment_cannot_swallow_wrapper(self):
        wrapped = paginate_sql("SELECT 1 AS x -- note", 1, 10)
        assert "-- note\n) AS logica_rows" in wrapped


# ---------------------------------------------------------------------------
# SQLite execution
# ---------------------------------------------------------------------------


class TestSQLiteExecution:
    def test_untrusted_default_page(self, sqlite_db):
        result = SafeExecutor(sqlite_db).execute("SELECT id, name FROM items ORDER BY id", ITEMS_POLICY)
        assert result.row_count == 50
        assert result.columns == ["id", "name"]
        assert result.rows[0] == {"id": 1, "name": "item-1"}
        assert result.executed_sql.startswith("SELECT * FROM (\n")

    def test_last_page_under_ceiling(self, sqlite_db):
        result = SafeExecutor(sqlite_db).execute(
            "SELECT id FROM items ORDER BY id", ITEMS_POLICY, page=20, per_page=50
        )
        assert {row["id"] for row in result.rows} == set(range(951, 1001))

    def test_page_past_ceiling_is_empty(self, sqlite_db):
        result = SafeExecutor(sqlite_db).execute("SELECT id FROM items", ITEMS_POLICY, page=21)
        assert result.rows == []
        assert result.row_count == 0

    def test_custom_ceiling(self, sqlite_db):
        executor = SafeExecutor(sqlite_db, max_rows_untrusted=30)
        result = executor.execute("SELECT id FROM items", ITEMS_POLICY, page=1, per_page=100)
        assert result.row_count == 30

    def test_audit_metadata(self, sqlite_db):
        sql = "SELECT id FROM items WHERE id = 1"
        result = SafeExecutor(sqlite_db).execute(sql, ITEMS_POLICY)
        assert result.sql == sql
        assert result.sql_digest == hashlib.sha256(result.executed_sql.encode("utf-8")).hexdigest()
        assert result.sql_digest == sql_digest(result.executed_sql)
        assert result.duration_ms >= 0
        assert set(result.to_dict()) == {
            "sql", "executed_sql", "rows", "columns", "duration_ms", "row_count", "sql_digest",
        }

    def test_trusted_runs_raw_sql(self, sqlite_db):
        sql = "SELECT id FROM items"
        result = SafeExecutor(sqlite_db).execute(sql, AccessPolicy.trusted("sqlite"))
        assert result.executed_sql == sql
        assert result.row_count == 1500

    def test_trusted_paginates_on_request(self, sqlite_db):
        result = SafeExecutor(sqlite_db).execute(
            "SELECT id FROM items", AccessPolicy.trusted("sqlite"), page=2, per_page=100
        )
        assert result.executed_sql.endswith("LIMIT 100 OFFSET 100")
        assert result.row_count == 100

    def test_trusted_bypasses_authorizer(self, sqlite_db):
        result = SafeExecutor(sqlite_db).execute("SELECT token FROM secrets", AccessPolicy.trusted("sqlite"))
        assert result.rows == [{"token": "hunter2"}]

    def test_authorizer_denial(self, sqlite_db):
        with pytest.raises(AuthorizationDeniedError) as exc_info:
            SafeExecutor(sqlite_db).execute("SELECT token FROM secrets", ITEMS_POLICY)
        assert isinstance(exc_info.value, QueryExecutionError)
        assert exc_info.value.__cause__ is not None

    def test_fails_closed_without_allowlist(self, sqlite_db):
        with pytest.raises(AuthorizationDeniedError):
            SafeExecutor(sqlite_db).execute("SELECT id FROM items", AccessPolicy(engine="sqlite"))

    def test_connection_state_restored(self, sqlite_db):
        policy = AccessPolicy(engine="sqlite", allowed_relations=["items"], tenant="42")
        with pytest.raises(AuthorizationDeniedError):
            SafeExecutor(sqlite_db).execute("SELECT token FROM secrets", policy)

        assert sqlite_db.current_authorizer is None
        assert sqlite_db.session_variables == {}
        conn = sqlite_db.connection
        assert conn.execute("PRAGMA query_only").fetchone()[0] == 0
        conn.execute("INSERT INTO secrets (id, token) VALUES (2, 'x')")

    def test_recursive_cte_count(self, sqlite_db):
        policy = AccessPolicy(engine="sqlite", allowed_relations=[])
        sql = "WITH RECURSIVE c(n) AS (SELECT 1 UNION ALL SELECT n + 1 FROM c WHERE n < 10) SELECT count(*) AS n FROM c"
        result = SafeExecutor(sqlite_db).execute(sql, policy)
        assert result.rows == [{"n": 10}]

    def test_caller_progress_handler_restored(self, sqlite_db):
        calls = []

        def handler():
            calls.append(1)
            return 0

        sqlite_db.set_progress_handler(handler, 1)
        SafeExecutor(sqlite_db).execute("SELECT id FROM items", ITEMS_POLICY)
        assert sqlite_db.current_progress_handler == (handler, 1)

        calls.clear()
        sqlite_db.fetch("SELECT count(*) AS n FROM items")
        assert calls

    def test_statement_timeout(self, sqlite_db):
        policy = AccessPolicy(engine="sqlite", allowed_relations=[], timeouts={"statement_timeout_ms": 1})
        sql = "WITH RECURSIVE c(n) AS (SELECT 1 UNION ALL SELECT n + 1 FROM c) SELECT count(*) AS n FROM c"
        with pytest.raises(QueryTimeoutError) as exc_info:
            SafeExecutor(sqlite_db).execute(sql, policy)
        assert "interrupted" in str(exc_info.value)

    def test_engine_error(self, sqlite_db):
        with pytest.raises(QueryExecutionError) as exc_info:
            SafeExecutor(sqlite_db).execute("SELECT nope FROM items", ITEMS_POLICY)
        assert not isinstance(exc_info.value, (QueryTimeoutError, AuthorizationDeniedError))

    def test_module_level_execute(self, sqlite_db):
        result = execute("SELECT id FROM items WHERE id = 2", ITEMS_POLICY, sqlite_db)
        assert result.rows == [{"id": 2}]


# ---------------------------------------------------------------------------
# PostgreSQL execution (recorded against a fake connection)
# ---------------------------------------------------------------------------


class TestPostgresExecution:
    POLICY = AccessPolicy(engine="psql", tenant="42")

    def test_statement_sequence(self, pg_db, fake_pg):
        result = SafeExecutor(pg_db).execute("SELECT 1 AS x", self.POLICY)

        assert result.rows == [{"x": 1}]
        assert fake_pg.statements == [
            ("SET LOCAL transaction_read_only = on", None),
            ("SELECT set_config('statement_timeout', %s, true)", ("3000",)),
            ("SELECT set_config('lock_timeout', %s, true)", ("500",)),
            ("SELECT set_config(%s, %s, true)", ("app.tenant_id", "42")),
            ("SELECT * FROM (\nSELECT 1 AS x\n) AS logica_rows LIMIT 50 OFFSET 0", None),
        ]
        assert fake_pg.rollbacks == 1

    def test_no_tenant_statement_without_tenant(self, pg_db, fake_pg):
        SafeExecutor(pg_db).execute("SELECT 1 AS x", AccessPolicy(engine="psql"))
        assert not any("%s, %s" in sql for sql in fake_pg.sql)

    def test_autocommit_connection_gets_explicit_transaction(self, pg_db, fake_pg):
        fake_pg.autocommit = True
        SafeExecutor(pg_db).execute("SELECT 1 AS x", self.POLICY)
        assert fake_pg.sql[0] == "BEGIN"
        assert fake_pg.sql[-1] == "ROLLBACK"
        assert fake_pg.rollbacks == 0

    def test_open_transaction_uses_savepoint(self, pg_db, fake_pg):
        fake_pg.status = TRANSACTION_STATUS_INTRANS
        SafeExecutor(pg_db).execute("SELECT 1 AS x", self.POLICY)
        assert fake_pg.sql[0] == "SAVEPOINT logica_guard_read_only"
        assert fake_pg.sql[-2:] == [
            "ROLLBACK TO SAVEPOINT logica_guard_read_only",
            "RELEASE SAVEPOINT logica_guard_read_only",
        ]
        assert fake_pg.rollbacks == 0

    def test_custom_timeouts(self, pg_db, fake_pg):
        policy = AccessPolicy(engine="psql", timeouts={"statement_timeout_ms": 100, "lock_timeout_ms": 0})
        SafeExecutor(pg_db).execute("SELECT 1 AS x", policy)
        assert ("SELECT set_config('statement_timeout', %s, true)", ("100",)) in fake_pg.statements
        assert ("SELECT set_config('lock_timeout', %s, true)", ("0",)) in fake_pg.statements

    def test_trusted_runs_without_transaction(self, pg_db, fake_pg):
        fake_pg_sql = "SELECT * FROM (\nSELECT 1 AS x\n) AS logica_rows LIMIT 10 OFFSET 0"
        SafeExecutor(pg_db).execute("SELECT 1 AS x", AccessPolicy.trusted("psql"), per_page=10)
        assert fake_pg.sql == [fake_pg_sql]
        assert fake_pg.rollbacks == 0

    @pytest.mark.parametrize(
        "error, expected",
        [
            (psycopg2.errors.QueryCanceled("canceling statement due to statement timeout"), QueryTimeoutError),
            (psycopg2.errors.LockNotAvailable("could not obtain lock"), QueryTimeoutError),
            (psycopg2.errors.InsufficientPrivilege("permission denied for table secrets"), AuthorizationDeniedError),
            (psycopg2.errors.ReadOnlySqlTransaction("cannot execute in a read-only transaction"), QueryExecutionError),
        ],
    )
    def test_error_translation(self, pg_db, fake_pg, error, expected):
        fake_pg.error = error
        with pytest.raises(expected) as exc_info:
            SafeExecutor(pg_db).execute("SELECT 1 AS x", self.POLICY)
        assert exc_info.value.__cause__ is error
        assert fake_pg.rollbacks == 1


# ---------------------------------------------------------------------------
# Connection adapters
# ---------------------------------------------------------------------------


class TestConnectionAdapters:
    def test_sqlite_connection_test(self, sqlite_db):
        assert sqlite_db.test_connection() is True

    def test_sqlite_connection_test_fails_when_closed(self, sqlite_db):
        sqlite_db.connection.close()
        assert sqlite_db.test_connection() is False

    def test_postgres_connection_test(self, pg_db, fake_pg):
        assert pg_db.test_connection() is True
        assert fake_pg.sql == ["SELECT 1 AS ok"]

    def test_sqlite_owned_connection_lifecycle(self):
        with SQLiteConnection() as db:
            _, rows = db.fetch("SELECT 1 AS ok")
            assert rows == [{"ok": 1}]
        assert db._connection is None

    def test_mask_uri(self):
        assert mask_uri("postgresql://app:s3cret@db:5432/bi") == "postgresql://app:****@db:5432/bi"
        assert mask_uri("sqlite:///tmp/x.db") == "sqlite:///tmp/x.db"
        assert mask_uri(None) == ""
