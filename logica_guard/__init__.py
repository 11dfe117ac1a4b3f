"""logica-guard: güvenilmeyen logic-program sorguları için SQL güvenlik katmanı"""

from .database import (
    AuthorizationDeniedError,
    DatabaseConnection,
    ExecutionResult,
    PostgresConnection,
    QueryExecutionError,
    QueryTimeoutError,
    SafeExecutor,
    SQLiteConnection,
)
from .enums import Capability, Engine, Trust
from .flags import FlagValidationError, normalize_flags
from .guard import CompiledQuery, QueryGuard
from .policy import AccessPolicy, PolicyConfigurationError, Timeouts
from .validation.violation import Violation, ViolationReason

__version__ = "0.1.0"

__all__ = [
    "AccessPolicy",
    "AuthorizationDeniedError",
    "Capability",
    "CompiledQuery",
    "DatabaseConnection",
    "Engine",
    "ExecutionResult",
    "FlagValidationError",
    "PolicyConfigurationError",
    "PostgresConnection",
    "QueryExecutionError",
    "QueryGuard",
    "QueryTimeoutError",
    "SafeExecutor",
    "SQLiteConnection",
    "Timeouts",
    "Trust",
    "Violation",
    "ViolationReason",
    "normalize_flags",
]
