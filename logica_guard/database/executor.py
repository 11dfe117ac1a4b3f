"""Güvenli SQL sorgu çalıştırma"""

import hashlib
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from ..config import settings
from ..policy import AccessPolicy
from ..utils.logger import logger, truncate_sql
from ..validation import rules
from .authorizer import untrusted_authorizer
from .connection import DatabaseConnection


class QueryExecutionError(Exception):
    """Sorgu çalıştırma hatası (motor veya bağlantı kaynaklı)"""
    pass


class QueryTimeoutError(QueryExecutionError):
    """Statement veya lock zaman aşımı"""
    pass


class AuthorizationDeniedError(QueryExecutionError):
    """Runtime authorizer veya veritabanı yetki sistemi sorguyu reddetti"""
    pass


class ExecutionResult(BaseModel):
    """Çalıştırılan sorgunun sonucu ve denetim metadatası"""

    model_config = ConfigDict(frozen=True)

    sql: str
    executed_sql: str
    rows: List[Dict[str, Any]]
    columns: List[str]
    duration_ms: float
    row_count: int
    sql_digest: str

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()


def sql_digest(sql: str) -> str:
    """Çalıştırılan SQL metninin SHA-256 özeti"""
    return hashlib.sha256(sql.encode("utf-8")).hexdigest()


def normalize_page(value: Any) -> int:
    """Sayfa numarasını normalize et (geçersiz veya < 1 ise 1)"""
    try:
        page = int(value)
    except (TypeError, ValueError):
        return 1
    return page if page >= 1 else 1


def normalize_per_page(value: Any, max_per_page: Optional[int] = None) -> int:
    """Sayfa boyutunu normalize et ve azami sayfa boyutuna kırp"""
    limit = settings.max_per_page if max_per_page is None else max_per_page
    try:
        per_page = int(value)
    except (TypeError, ValueError):
        per_page = settings.default_per_page
    if per_page < 1:
        per_page = settings.default_per_page
    return min(per_page, limit)


def paginate_sql(sql: str, page: int, per_page: int, max_rows: Optional[int] = None) -> str:
    """
    Sorguyu satır sınırlayan bir dış sorgu ile sar

    ``offset + limit`` hiçbir zaman ``max_rows`` değerini aşmaz; sayfa
    tavanın ötesinde başlıyorsa sıfır satırlık bir sorgu üretilir.

    Args:
        sql: Tek ve doğrulanmış SQL sorgusu
        page: 1'den başlayan sayfa numarası
        per_page: Sayfa boyutu
        max_rows: Toplam satır tavanı (None: tavan yok)

    Returns:
        ``SELECT * FROM (<sql>) AS logica_rows LIMIT n OFFSET m``
    """
    body = sql.strip()
    if body.endswith(";"):
        body = body[:-1].rstrip()

    offset = (page - 1) * per_page
    limit = per_page
    if max_rows is not None:
        limit = min(limit, max_rows - offset)
        if limit <= 0:
            limit, offset = 0, 0

    # Sondaki satır yorumu kapanış parantezini yutmasın diye satır sonu
    return (
        f"SELECT * FROM (\n{body}\n) AS {rules.PAGINATION_ALIAS} "
        f"LIMIT {int(limit)} OFFSET {int(offset)}"
    )


class SafeExecutor:
    """Politikaya göre korumalı sorgu çalıştırıcı"""

    def __init__(
        self,
        connection: DatabaseConnection,
        max_rows_untrusted: Optional[int] = None,
        max_per_page: Optional[int] = None,
    ):
        """
        Safe executor'ı başlat

        Args:
            connection: Veritabanı bağlantı adaptörü
            max_rows_untrusted: Güvenilmeyen sorgular için toplam satır tavanı
            max_per_page: Azami sayfa boyutu
        """
        self.connection = connection
        self.max_rows_untrusted = (
            settings.max_rows_untrusted if max_rows_untrusted is None else max_rows_untrusted
        )
        self.max_per_page = settings.max_per_page if max_per_page is None else max_per_page
        logger.debug(
            "SafeExecutor initialized",
            engine=connection.engine.value,
            max_rows_untrusted=self.max_rows_untrusted,
            max_per_page=self.max_per_page,
        )

    def execute(
        self,
        sql: str,
        policy: AccessPolicy,
        page: Optional[int] = None,
        per_page: Optional[int] = None,
    ) -> ExecutionResult:
        """
        Doğrulanmış SQL'i politikaya uygun şekilde çalıştır

        Güvenilmeyen kaynaklar için: salt okunur transaction, zaman aşımları,
        kiracı bağlama, runtime authorizer ve satır tavanlı sayfalama.
        Güvenilen kaynaklar yalnızca istenen sayfalamayla doğrudan çalışır.

        Raises:
            QueryTimeoutError: Zaman aşımı
            AuthorizationDeniedError: Authorizer veya yetki reddi
            QueryExecutionError: Diğer motor hataları
        """
        if policy.is_trusted:
            executed_sql = self._trusted_sql(sql, page, per_page)
        else:
            executed_sql = paginate_sql(
                sql,
                normalize_page(page),
                normalize_per_page(per_page, self.max_per_page),
                max_rows=self.max_rows_untrusted,
            )
        digest = sql_digest(executed_sql)

        logger.info(
            "Executing query",
            engine=self.connection.engine.value,
            trusted=policy.is_trusted,
            sql_digest=digest,
            sql=truncate_sql(executed_sql),
        )

        started = time.perf_counter()
        try:
            if policy.is_trusted:
                columns, rows = self.connection.fetch(executed_sql)
            else:
                columns, rows = self._execute_untrusted(sql, executed_sql, policy)
        except self.connection.error_class as e:
            raise self._translate_error(e, digest) from e
        duration_ms = round((time.perf_counter() - started) * 1000.0, 3)

        logger.info(
            "Query executed successfully",
            engine=self.connection.engine.value,
            trusted=policy.is_trusted,
            sql_digest=digest,
            row_count=len(rows),
            duration_ms=duration_ms,
        )

        return ExecutionResult(
            sql=sql,
            executed_sql=executed_sql,
            rows=rows,
            columns=columns,
            duration_ms=duration_ms,
            row_count=len(rows),
            sql_digest=digest,
        )

    def _trusted_sql(self, sql: str, page: Optional[int], per_page: Optional[int]) -> str:
        """Güvenilen sorgu: yalnızca çağıran açıkça sayfa istediyse sarılır"""
        if page is None and per_page is None:
            return sql
        return paginate_sql(
            sql,
            normalize_page(page),
            normalize_per_page(per_page, self.max_per_page),
        )

    def _execute_untrusted(self, sql: str, executed_sql: str, policy: AccessPolicy):
        timeouts = policy.effective_timeouts
        with self.connection.read_only_transaction():
            self.connection.set_timeouts(timeouts.statement_timeout_ms, timeouts.lock_timeout_ms)
            if policy.tenant is not None:
                self.connection.set_session_variable(settings.tenant_setting_name, policy.tenant)
            with untrusted_authorizer(self.connection, policy, sql):
                return self.connection.fetch(executed_sql)

    def _translate_error(self, error: BaseException, digest: str) -> QueryExecutionError:
        engine = self.connection.engine.value

        if self.connection.is_timeout_error(error):
            logger.error("Query timed out", engine=engine, sql_digest=digest, error=str(error))
            return QueryTimeoutError(f"Sorgu zaman aşımına uğradı: {error}")

        if self.connection.is_authorization_error(error):
            logger.error("Query denied by database", engine=engine, sql_digest=digest, error=str(error))
            return AuthorizationDeniedError(f"Veritabanı sorguyu reddetti: {error}")

        logger.error("Query execution failed", engine=engine, sql_digest=digest, error=str(error))
        return QueryExecutionError(f"Sorgu çalıştırma hatası: {error}")


def execute(
    sql: str,
    policy: AccessPolicy,
    connection: DatabaseConnection,
    page: Optional[int] = None,
    per_page: Optional[int] = None,
) -> ExecutionResult:
    """Tek seferlik yürütme: ``SafeExecutor(connection).execute(...)``"""
    return SafeExecutor(connection).execute(sql, policy, page=page, per_page=per_page)
