"""Politika ihlali hatası"""

import enum
from typing import Optional


class ViolationReason(str, enum.Enum):
    """İhlal sebep kodları"""

    FORBIDDEN_CALL = "forbidden_call"
    MULTIPLE_STATEMENTS = "multiple_statements"
    FORBIDDEN_STATEMENT_KIND = "forbidden_statement_kind"
    FORBIDDEN_FUNCTION = "forbidden_function"
    FUNCTION_NOT_ALLOWED = "function_not_allowed"
    RELATION_NOT_ALLOWED = "relation_not_allowed"
    SCHEMA_NOT_ALLOWED = "schema_not_allowed"
    DENIED_SCHEMA = "denied_schema"
    INVALID_RELATION = "invalid_relation"


class Violation(Exception):
    """
    Güvenlik politikası ihlali

    Sorgu hiçbir şekilde çalıştırılmadan önce fırlatılır ve çağırana
    istemci tarafından görülebilir bir ret olarak iletilir.

    Attributes:
        reason: İhlal sebebi
        details: İhlale yol açan tanımlayıcı (fonksiyon, tablo, predicate adı)
    """

    def __init__(
        self,
        reason: ViolationReason,
        message: Optional[str] = None,
        details: Optional[str] = None,
    ):
        self.reason = ViolationReason(reason)
        self.details = details
        super().__init__(message or self.reason.value)

    @property
    def message(self) -> str:
        return str(self)

    def to_dict(self) -> dict:
        """İstemciye dönülecek ret gövdesi"""
        return {
            "reason": self.reason.value,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"Violation(reason={self.reason.value!r}, details={self.details!r})"
