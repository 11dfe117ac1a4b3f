"""SQL sorgu validasyonu ve güvenlik kontrolü

Üç bağımsız kontrolü (tek salt okunur ifade, fonksiyon allowlist'i,
ilişki erişimi) tek bir politika üzerinden sırayla çalıştırır.
"""

from typing import List, Optional, Tuple, Union

import sqlparse

from ..enums import Engine
from ..policy import AccessPolicy
from ..utils.logger import logger, truncate_sql
from .function_allowlist import FunctionAllowlistValidator
from .query_only import QueryOnlyValidator
from .relation_access import RelationAccessValidator
from .violation import Violation


class SQLValidator:
    """Politikaya bağlı SQL güvenlik validatörü"""

    def __init__(self, policy: AccessPolicy, allow_explain: bool = False):
        """
        SQL validator'ı başlat

        Args:
            policy: Erişim politikası
            allow_explain: True ise EXPLAIN sorgularına izin ver
        """
        self.policy = policy
        self.allow_explain = allow_explain

        logger.debug(
            "SQLValidator initialized",
            engine=policy.engine.value if policy.engine else None,
            trust=policy.trust.value,
            allow_explain=allow_explain,
        )

    def validate(self, sql: str, engine: Union[Engine, str, None] = None) -> List[str]:
        """
        SQL sorgusunu doğrula

        Args:
            sql: Doğrulanacak SQL sorgusu
            engine: Motor (None ise politikanın motoru)

        Returns:
            Sorguda kullanılan fonksiyonlar

        Raises:
            Violation: İlk başarısız kontrolün ihlali
        """
        resolved = self.policy.resolve_engine(engine)

        QueryOnlyValidator.validate(sql, resolved, allow_explain=self.allow_explain)
        functions = FunctionAllowlistValidator.validate(
            sql,
            resolved,
            allowed_functions=self.policy.effective_allowed_functions(resolved),
        )
        RelationAccessValidator.validate(
            sql,
            resolved,
            allowed_relations=self.policy.allowed_relations,
            allowed_schemas=self.policy.allowed_schemas,
            denied_schemas=self.policy.effective_denied_schemas(resolved),
        )

        logger.info(
            "SQL validation passed",
            engine=resolved.value if resolved else None,
            functions=functions,
            sql=truncate_sql(sql, 100),
        )
        return functions

    def check(self, sql: str, engine: Union[Engine, str, None] = None) -> Tuple[bool, Optional[str]]:
        """
        Doğrulamayı hata fırlatmadan çalıştır

        Returns:
            (is_valid, error_message) tuple'ı
        """
        try:
            self.validate(sql, engine)
            return True, None
        except Violation as e:
            return False, str(e)

    def extract_table_names(self, sql: str, engine: Union[Engine, str, None] = None) -> List[str]:
        """SQL sorgusunun eriştiği tabloları "schema.table" biçiminde döndür"""
        return RelationAccessValidator.extract_relations(sql, self.policy.resolve_engine(engine))

    @staticmethod
    def sanitize_sql(sql: str) -> str:
        """
        SQL sorgusunu okunabilir biçimde formatla

        Yalnızca insan incelemesi içindir; çalıştırılan SQL hiçbir zaman
        bu çıktı değildir.
        """
        formatted = sqlparse.format(
            sql,
            reindent=True,
            keyword_case="upper",
            strip_comments=True,
        )
        return formatted.strip()
