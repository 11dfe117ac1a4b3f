"""Derlenmiş sorgular için uçtan uca güvenlik hattı

Kaynak kontrolü -> SQL kontrolleri -> (güvenilmeyen) runtime authorizer ->
güvenli yürütme. Herhangi bir kontrol başarısız olursa hiçbir ifade
veritabanına gönderilmez.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator

from .database.executor import ExecutionResult, SafeExecutor
from .enums import Engine
from .policy import AccessPolicy, PolicyConfigurationError
from .utils.logger import logger
from .validation.source_safety import SourceSafetyValidator
from .validation.sql_validator import SQLValidator
from .validation.violation import Violation

QUERY_FORMAT = "query"


class CompiledQuery(BaseModel):
    """
    Harici derleyicinin çıktısı

    Attributes:
        sql: Üretilen SQL
        ast: Kaynak programın kural ağacı (dict/list)
        engine: Hedef motor
        format: Çıktı biçimi ("query" veya örn. "pipeline")
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    sql: str
    ast: Any = None
    engine: Optional[Engine] = None
    format: str = QUERY_FORMAT

    @field_validator("engine", mode="before")
    @classmethod
    def _validate_engine(cls, value):
        try:
            return Engine.parse(value)
        except ValueError as e:
            raise PolicyConfigurationError(str(e)) from e


class QueryGuard:
    """Bir politikaya bağlı güvenlik hattı"""

    def __init__(self, policy: AccessPolicy, executor: Optional[SafeExecutor] = None):
        self.policy = policy
        self.executor = executor
        self.validator = SQLValidator(policy)

    def _engine(self, query: CompiledQuery) -> Optional[Engine]:
        """
        Sorgunun motorunu çöz: sorgu, yürütücü bağlantısı, politika sırasıyla

        Raises:
            PolicyConfigurationError: Sorgunun motoru yürütücü bağlantısının
                motoruyla uyuşmuyor
        """
        connection_engine = self.executor.connection.engine if self.executor is not None else None
        if query.engine is not None:
            if connection_engine is not None and query.engine is not connection_engine:
                raise PolicyConfigurationError(
                    f"Sorgu motoru ({query.engine.value}) yürütücü bağlantısının motoruyla "
                    f"({connection_engine.value}) uyuşmuyor"
                )
            return self.policy.resolve_engine(query.engine)
        if connection_engine is not None:
            return self.policy.resolve_engine(connection_engine)
        return self.policy.engine

    def check(self, query: Union[CompiledQuery, str]) -> List[str]:
        """
        Politikaya uygun tüm statik kontrolleri çalıştır

        Returns:
            SQL'de kullanılan fonksiyonlar (güvenilen politikada boş liste)

        Raises:
            PolicyConfigurationError: Güvenilmeyen kaynak "query" dışında
                bir biçimde derlenmiş veya sorgu motoru yürütücüyle
                uyuşmuyor
            Violation: İlk başarısız kontrolün ihlali
        """
        if isinstance(query, str):
            query = CompiledQuery(sql=query)

        if self.policy.is_trusted:
            logger.debug("Trusted policy, static checks skipped")
            return []

        if query.format != QUERY_FORMAT:
            raise PolicyConfigurationError(
                f"Güvenilmeyen kaynaklar yalnızca '{QUERY_FORMAT}' biçiminde derlenebilir "
                f"(gelen: {query.format})"
            )

        engine = self._engine(query)
        if query.ast is not None:
            SourceSafetyValidator.validate(query.ast, engine, self.policy.effective_capabilities)
        return self.validator.validate(query.sql, engine)

    def run(
        self,
        query: Union[CompiledQuery, str],
        page: Optional[int] = None,
        per_page: Optional[int] = None,
    ) -> ExecutionResult:
        """Kontrolleri çalıştır, başarılıysa sorguyu güvenli şekilde yürüt"""
        if self.executor is None:
            raise PolicyConfigurationError("Sorgu çalıştırmak için bir SafeExecutor gerekli")
        if isinstance(query, str):
            query = CompiledQuery(sql=query)

        self._engine(query)
        self.check(query)
        return self.executor.execute(query.sql, self.policy, page=page, per_page=per_page)

    def inspect(self, query: Union[CompiledQuery, str]) -> Dict[str, Any]:
        """
        Sorguyu çalıştırmadan kontrol et ve rapor döndür

        Returns:
            valid, error, reason, details, functions, relations, formatted_sql
        """
        if isinstance(query, str):
            query = CompiledQuery(sql=query)

        report: Dict[str, Any] = {
            "valid": False,
            "error": None,
            "reason": None,
            "details": None,
            "functions": [],
            "relations": [],
            "formatted_sql": None,
        }

        try:
            report["functions"] = self.check(query)
            report["relations"] = self.validator.extract_table_names(query.sql, self._engine(query))
        except Violation as e:
            rejection = e.to_dict()
            report["error"] = rejection["message"]
            report["reason"] = rejection["reason"]
            report["details"] = rejection["details"]
            return report
        except PolicyConfigurationError as e:
            report["error"] = str(e)
            return report

        report["valid"] = True
        report["formatted_sql"] = self.validator.sanitize_sql(query.sql)
        return report
