"""SQLite runtime authorizer

Statik kontrollerden bağımsız ikinci savunma hattı. Güvenilmeyen tek bir
sorgu boyunca bağlantıya kurulur ve sorgu sonrası (hata olsa bile) önceki
callback geri yüklenir. İzinli ilişki listesi verilmemişse tablo okumaları
varsayılan olarak reddedilir.
"""

import sqlite3
from contextlib import contextmanager
from typing import FrozenSet, Generator, Iterable, Optional

from ..enums import Engine
from ..policy import AccessPolicy
from ..utils.logger import logger
from ..validation import rules
from ..validation.cte import find_cte_declarations
from ..validation.tokenizer import tokenize_sql
from .connection import Authorizer, DatabaseConnection

# Python'un sqlite3 modülü bazı sürümlerde bu sabiti dışa aktarmaz
SQLITE_RECURSIVE = getattr(sqlite3, "SQLITE_RECURSIVE", 33)

_SELECT_ACTIONS = frozenset({sqlite3.SQLITE_SELECT, SQLITE_RECURSIVE})


def build_authorizer(
    policy: AccessPolicy,
    engine: Optional[Engine] = Engine.SQLITE,
    cte_names: Iterable[str] = (),
) -> Authorizer:
    """
    Politikadan SQLite authorizer callback'i üret

    Args:
        policy: Erişim politikası
        engine: Deny listesinin çözüleceği motor
        cte_names: Sorgunun WITH başlığında tanımlanan CTE adları; veritabanı
            adı boş gelen okumalarda bu isimlere izin verilir

    Returns:
        ``sqlite3.Connection.set_authorizer`` ile kurulabilecek callback
    """
    denied = policy.effective_denied_schemas(engine)
    allowed = policy.allowed_relations or frozenset()
    ctes = frozenset(name.lower() for name in cte_names)

    def authorizer(action, arg1, arg2, db_name, source):
        if action in _SELECT_ACTIONS:
            return sqlite3.SQLITE_OK

        if action == sqlite3.SQLITE_FUNCTION:
            name = (arg2 or "").lower()
            if name in rules.RUNTIME_FORBIDDEN_FUNCTIONS:
                logger.warning("Authorizer denied function", function=name)
                return sqlite3.SQLITE_DENY
            return sqlite3.SQLITE_OK

        if action == sqlite3.SQLITE_READ:
            table = (arg1 or "").lower()
            schema = (db_name or rules.DEFAULT_SCHEMA[Engine.SQLITE]).lower()

            if table in denied or schema in denied:
                logger.warning("Authorizer denied relation", schema=schema, table=table, reason="denied_schema")
                return sqlite3.SQLITE_DENY
            # CTE okumalarında SQLite veritabanı adı vermez
            if not db_name and table in ctes:
                return sqlite3.SQLITE_OK
            if table in rules.SAFE_VIRTUAL_TABLES:
                return sqlite3.SQLITE_OK
            if table in allowed or f"{schema}.{table}" in allowed:
                return sqlite3.SQLITE_OK

            logger.warning("Authorizer denied relation", schema=schema, table=table, reason="not_allowed")
            return sqlite3.SQLITE_DENY

        logger.warning("Authorizer denied action", action=action, arg1=arg1, arg2=arg2)
        return sqlite3.SQLITE_DENY

    return authorizer


def _cte_names(sql: str, engine: Optional[Engine]) -> FrozenSet[str]:
    return frozenset(find_cte_declarations(tokenize_sql(sql, engine)).values())


@contextmanager
def untrusted_authorizer(
    connection: DatabaseConnection,
    policy: AccessPolicy,
    sql: Optional[str] = None,
) -> Generator[None, None, None]:
    """
    Blok süresince authorizer'ı kur, çıkışta öncekini geri yükle

    ``sql`` verilirse baştaki WITH bloğunda tanımlanan CTE'lerin okunmasına
    izin verilir. Authorizer desteklemeyen motorlarda hiçbir şey yapmaz.
    """
    if not connection.supports_authorizer:
        yield
        return

    previous = connection.current_authorizer
    connection.disable_extension_loading()
    cte_names = _cte_names(sql, connection.engine) if sql else frozenset()
    connection.set_authorizer(build_authorizer(policy, connection.engine, cte_names))
    logger.debug("Runtime authorizer installed", engine=connection.engine.value)
    try:
        yield
    finally:
        connection.set_authorizer(previous)
        logger.debug("Runtime authorizer restored", engine=connection.engine.value)
