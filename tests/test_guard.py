"""Unit tests for logica_guard.guard."""

from __future__ import annotations

import pytest

from logica_guard.database.executor import AuthorizationDeniedError, SafeExecutor
from logica_guard.enums import Engine
from logica_guard.guard import CompiledQuery, QueryGuard
from logica_guard.policy import AccessPolicy, PolicyConfigurationError
from logica_guard.validation.violation import Violation, ViolationReason

ITEMS_POLICY = AccessPolicy(engine="sqlite", allowed_relations=["items"])


def _sql_expr_ast():
    return [{"head": {"predicate_name": "Q"}, "body": [{"call": {"predicate_name": "SqlExpr"}}]}]


# ---------------------------------------------------------------------------
# Static checks
# ---------------------------------------------------------------------------


class TestCheck:
    def test_returns_used_functions(self):
        assert QueryGuard(ITEMS_POLICY).check("SELECT count(*) AS n FROM items") == ["count"]

    def test_trusted_skips_checks(self):
        guard = QueryGuard(AccessPolicy.trusted("sqlite"))
        assert guard.check("DROP TABLE items") == []
        assert guard.check(CompiledQuery(sql="SELECT 1", ast=_sql_expr_ast(), format="pipeline")) == []

    def test_untrusted_requires_query_format(self):
        with pytest.raises(PolicyConfigurationError):
            QueryGuard(ITEMS_POLICY).check(CompiledQuery(sql="SELECT 1 AS x", format="pipeline"))

    def test_source_checked_before_sql(self):
        query = CompiledQuery(sql="SELECT 1 AS x; DROP TABLE items", ast=_sql_expr_ast())
        with pytest.raises(Violation) as exc_info:
            QueryGuard(ITEMS_POLICY).check(query)
        assert exc_info.value.reason == ViolationReason.FORBIDDEN_CALL
        assert exc_info.value.details == "SqlExpr"

    def test_capability_unlocks_builtin(self):
        policy = AccessPolicy(engine="sqlite", allowed_relations=["items"], capabilities=["sql_expr"])
        query = CompiledQuery(sql="SELECT id FROM items", ast=_sql_expr_ast())
        assert QueryGuard(policy).check(query) == []

    def test_query_engine_wins(self):
        guard = QueryGuard(AccessPolicy(engine="sqlite"))
        assert guard.check(CompiledQuery(sql="SELECT md5('a') AS h", engine="postgres")) == ["md5"]
        with pytest.raises(Violation):
            guard.check(CompiledQuery(sql="SELECT md5('a') AS h"))

    def test_executor_engine_used_when_unset(self, sqlite_db):
        policy = AccessPolicy(allowed_relations=["items"])
        assert QueryGuard(policy).check("SELECT md5(name) FROM items") == ["md5"]
        with pytest.raises(Violation) as exc_info:
            QueryGuard(policy, SafeExecutor(sqlite_db)).check("SELECT md5(name) FROM items")
        assert exc_info.value.reason == ViolationReason.FUNCTION_NOT_ALLOWED

    def test_engine_mismatch_with_executor_rejected(self, sqlite_db):
        guard = QueryGuard(ITEMS_POLICY, SafeExecutor(sqlite_db))
        with pytest.raises(PolicyConfigurationError):
            guard.check(CompiledQuery(sql="SELECT id FROM items", engine="psql"))
        assert guard.check(CompiledQuery(sql="SELECT id FROM items", engine="sqlite")) == []

    def test_compiled_query_engine_parsed(self):
        assert CompiledQuery(sql="SELECT 1", engine="sqlite3").engine is Engine.SQLITE
        with pytest.raises(PolicyConfigurationError):
            CompiledQuery(sql="SELECT 1", engine="oracle")


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class TestRun:
    def test_end_to_end(self, sqlite_db):
        guard = QueryGuard(ITEMS_POLICY, SafeExecutor(sqlite_db))
        result = guard.run("SELECT id FROM items ORDER BY id", page=2, per_page=10)
        assert [row["id"] for row in result.rows] == list(range(11, 21))

    def test_violation_sends_nothing_to_database(self, pg_db, fake_pg):
        guard = QueryGuard(AccessPolicy(engine="psql"), SafeExecutor(pg_db))
        with pytest.raises(Violation):
            guard.run("SELECT 1 AS x; DROP TABLE t")
        assert fake_pg.statements == []

    def test_runtime_authorizer_catches_static_gap(self, sqlite_db):
        guard = QueryGuard(AccessPolicy(engine="sqlite"), SafeExecutor(sqlite_db))
        with pytest.raises(AuthorizationDeniedError):
            guard.run("SELECT id FROM items")

    def test_engine_mismatch_sends_nothing_to_database(self, pg_db, fake_pg):
        guard = QueryGuard(AccessPolicy.trusted("psql"), SafeExecutor(pg_db))
        with pytest.raises(PolicyConfigurationError):
            guard.run(CompiledQuery(sql="SELECT 1 AS x", engine="sqlite"))
        assert fake_pg.statements == []

    def test_requires_executor(self):
        with pytest.raises(PolicyConfigurationError):
            QueryGuard(ITEMS_POLICY).run("SELECT id FROM items")


# ---------------------------------------------------------------------------
# Inspection
# ---------------------------------------------------------------------------


class TestInspect:
    def test_valid_report(self):
        report = QueryGuard(ITEMS_POLICY).inspect("select count(*) as n from items")
        assert report["valid"] is True
        assert report["error"] is None
        assert report["functions"] == ["count"]
        assert report["relations"] == ["main.items"]
        assert report["formatted_sql"].startswith("SELECT")
        assert "FROM items" in report["formatted_sql"]

    def test_violation_report(self):
        report = QueryGuard(ITEMS_POLICY).inspect("SELECT 1 AS x; SELECT 2 AS x")
        assert report["valid"] is False
        assert report["reason"] == "multiple_statements"
        assert report["details"] is None
        assert report["error"]
        assert report["formatted_sql"] is None

    def test_violation_details_reported(self):
        report = QueryGuard(ITEMS_POLICY).inspect("SELECT token FROM secrets")
        assert report["reason"] == "relation_not_allowed"
        assert report["details"] == "main.secrets"

    def test_configuration_error_report(self):
        report = QueryGuard(ITEMS_POLICY).inspect(CompiledQuery(sql="SELECT 1 AS x", format="pipeline"))
        assert report["valid"] is False
        assert report["reason"] is None
        assert "query" in report["error"]


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    def test_multiple_statements(self):
        with pytest.raises(Violation) as exc_info:
            QueryGuard(AccessPolicy(engine="sqlite")).check("SELECT 1 AS x; SELECT 2 AS x")
        assert exc_info.value.reason == ViolationReason.MULTIPLE_STATEMENTS

    def test_unknown_function(self):
        with pytest.raises(Violation) as exc_info:
            QueryGuard(AccessPolicy(engine="sqlite")).check("SELECT my_evil(1) AS x")
        assert exc_info.value.reason == ViolationReason.FUNCTION_NOT_ALLOWED
        assert exc_info.value.details == "my_evil"

    def test_function_name_inside_literal_is_data(self, sqlite_db):
        assert QueryGuard(AccessPolicy(engine="psql")).check("SELECT 'pg_read_file(' AS x") == []

        guard = QueryGuard(AccessPolicy(engine="sqlite", allowed_relations=[]), SafeExecutor(sqlite_db))
        result = guard.run("SELECT 'pg_read_file(' AS x")
        assert result.rows == [{"x": "pg_read_file("}]

    @pytest.mark.parametrize("allowed", [None, [], ["sqlite_master"], ["main.sqlite_master", "items"]])
    def test_catalog_denied_with_any_allowlist(self, allowed):
        with pytest.raises(Violation) as exc_info:
            QueryGuard(AccessPolicy(engine="sqlite", allowed_relations=allowed)).check(
                "SELECT name FROM sqlite_master"
            )
        assert exc_info.value.reason == ViolationReason.DENIED_SCHEMA
        assert "sqlite_master" in exc_info.value.message

    @pytest.mark.parametrize(
        "sql",
        [
            'SELECT relname FROM U&"pg_catalog".pg_class',
            "SELECT query FROM pg_stat_activity",
        ],
    )
    def test_postgres_catalog_spellings_denied(self, sql):
        guard = QueryGuard(AccessPolicy.untrusted("psql", allowed_schemas=["public"]))
        with pytest.raises(Violation) as exc_info:
            guard.check(sql)
        assert exc_info.value.reason == ViolationReason.DENIED_SCHEMA
