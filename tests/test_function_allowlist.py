"""Unit tests for logica_guard.validation.function_allowlist."""

from __future__ import annotations

import pytest

from logica_guard.validation.function_allowlist import (
    FunctionAllowlistValidator,
    scan_functions,
)
from logica_guard.validation.violation import Violation, ViolationReason


class TestScanFunctions:
    def test_simple_call(self):
        assert scan_functions("SELECT count(*) AS n FROM t") == ["count"]

    def test_order_of_first_appearance(self):
        assert scan_functions("SELECT coalesce(max(a), 0) FROM t") == ["coalesce", "max"]

    def test_case_insensitive_and_deduplicated(self):
        assert scan_functions("SELECT COUNT(a), count(b) FROM t") == ["count"]

    def test_schema_qualified(self):
        assert scan_functions("SELECT main.my_fn(1)") == ["main.my_fn"]

    def test_quoted_names(self):
        assert scan_functions('SELECT "My_Fn"(1), "s"."F"(2)') == ["my_fn", "s.f"]

    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT 1 AS x WHERE 1 IN (1, 2) AND EXISTS (SELECT 1)",
            "SELECT a FROM t WHERE a = 1 AND (b = 2 OR (c = 3))",
            "SELECT a FROM t JOIN u USING (id)",
            "SELECT CASE WHEN (a > 1) THEN (b) ELSE (c) END FROM t",
            "SELECT * FROM (SELECT 1 AS a) AS s",
            "VALUES (1)",
        ],
    )
    def test_keywords_followed_by_paren_are_not_functions(self, sql):
        assert scan_functions(sql) == []

    def test_cte_column_list_is_not_a_function(self):
        assert scan_functions("WITH t(a, b) AS (SELECT 1, 2) SELECT a FROM t") == []

    def test_literals_and_comments_ignored(self):
        assert scan_functions("SELECT 'my_evil(' AS x /* other_evil(1) */ -- third(2)") == []

    def test_quoted_keyword_is_a_function(self):
        assert scan_functions('SELECT "in"(1)') == ["in"]


class TestFunctionAllowlistValidator:
    def test_unknown_function_rejected_with_exact_name(self):
        with pytest.raises(Violation) as exc_info:
            FunctionAllowlistValidator.validate("SELECT my_evil(1) AS x", "sqlite")
        assert exc_info.value.reason == ViolationReason.FUNCTION_NOT_ALLOWED
        assert exc_info.value.details == "my_evil"

    def test_schema_qualified_detail(self):
        with pytest.raises(Violation) as exc_info:
            FunctionAllowlistValidator.validate("SELECT Public.Upper(name) FROM t", "psql")
        assert exc_info.value.details == "public.upper"

    def test_default_allowlist_passes(self):
        used = FunctionAllowlistValidator.validate(
            "SELECT count(*) AS n, json_extract(doc, '$.a') AS a FROM t", "sqlite"
        )
        assert used == ["count", "json_extract"]

    def test_engine_default_differs(self):
        FunctionAllowlistValidator.validate("SELECT md5(name) FROM t", "psql")
        with pytest.raises(Violation):
            FunctionAllowlistValidator.validate("SELECT md5(name) FROM t", "sqlite")

    def test_custom_allowlist(self):
        used = FunctionAllowlistValidator.validate(
            "SELECT upper(name) FROM t", "sqlite", allowed_functions=["UPPER"]
        )
        assert used == ["upper"]

    def test_custom_allowlist_replaces_default(self):
        with pytest.raises(Violation) as exc_info:
            FunctionAllowlistValidator.validate(
                "SELECT count(*) FROM t", "sqlite", allowed_functions=["upper"]
            )
        assert exc_info.value.details == "count"

    def test_empty_allowlist_rejects_every_call(self):
        with pytest.raises(Violation):
            FunctionAllowlistValidator.validate("SELECT coalesce(a, 0) FROM t", "sqlite", allowed_functions=[])

    def test_qualified_allowlist_entry(self):
        used = FunctionAllowlistValidator.validate(
            "SELECT util.clean(name) FROM t", "psql", allowed_functions=["util.clean"]
        )
        assert used == ["util.clean"]

    def test_literal_is_not_a_call(self):
        assert FunctionAllowlistValidator.validate("SELECT 'pg_read_file(' AS x", "psql") == []

    def test_like_called_as_function_is_checked(self):
        assert scan_functions("SELECT like('a', 'a') AS x") == ["like"]
        with pytest.raises(Violation) as exc_info:
            FunctionAllowlistValidator.validate("SELECT like('a', 'a') AS x", "sqlite")
        assert exc_info.value.reason == ViolationReason.FUNCTION_NOT_ALLOWED
        assert exc_info.value.details == "like"

    def test_like_operator_is_not_a_call(self):
        assert FunctionAllowlistValidator.validate("SELECT name FROM t WHERE name LIKE 'a%'", "sqlite") == []
