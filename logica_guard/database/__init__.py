"""Veritabanı modülü"""

from .authorizer import build_authorizer, untrusted_authorizer
from .connection import DatabaseConnection, PostgresConnection, SQLiteConnection
from .executor import (
    AuthorizationDeniedError,
    ExecutionResult,
    QueryExecutionError,
    QueryTimeoutError,
    SafeExecutor,
    normalize_page,
    normalize_per_page,
    paginate_sql,
)

__all__ = [
    "DatabaseConnection",
    "PostgresConnection",
    "SQLiteConnection",
    "SafeExecutor",
    "ExecutionResult",
    "QueryExecutionError",
    "QueryTimeoutError",
    "AuthorizationDeniedError",
    "build_authorizer",
    "untrusted_authorizer",
    "normalize_page",
    "normalize_per_page",
    "paginate_sql",
]
