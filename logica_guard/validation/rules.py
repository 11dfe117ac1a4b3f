"""SQL ve kaynak güvenlik kuralları"""

from typing import Dict, FrozenSet, Optional, TypeVar

from ..enums import Capability, Engine

T = TypeVar("T")


def for_engine(table: Dict[Engine, FrozenSet[T]], engine: Optional[Engine]) -> FrozenSet[T]:
    """
    Motora özel kural kümesini döndür

    Motor bilinmiyorsa (None) tüm motorların birleşimi döner; bu her zaman
    en kısıtlayıcı (deny listeleri) veya en geniş (varsayılan allowlist)
    seçimdir.
    """
    if engine is None:
        merged: FrozenSet[T] = frozenset()
        for values in table.values():
            merged = merged | values
        return merged
    return table[engine]


# ==========================================
# Sorgu başlangıcı (ilk token)
# ==========================================
QUERY_START_KEYWORDS: FrozenSet[str] = frozenset({"SELECT", "WITH", "VALUES"})
EXPLAIN_KEYWORD = "EXPLAIN"

# ==========================================
# Yasaklı anahtar kelimeler (her yerde, çıplak token olarak)
# ==========================================
FORBIDDEN_KEYWORDS: FrozenSet[str] = frozenset({
    # DML
    "INSERT", "UPDATE", "DELETE", "MERGE",
    # DDL
    "CREATE", "DROP", "ALTER", "TRUNCATE",
    # Yetki yönetimi
    "GRANT", "REVOKE",
    # Transaction ve oturum kontrolü
    "BEGIN", "COMMIT", "ROLLBACK", "SET", "RESET",
})

ENGINE_FORBIDDEN_KEYWORDS: Dict[Engine, FrozenSet[str]] = {
    Engine.SQLITE: frozenset({"PRAGMA", "ATTACH", "DETACH"}),
    Engine.POSTGRES: frozenset({"COPY", "INTO"}),
}

# ==========================================
# Yönetim / DoS fonksiyonları (her zaman yasak)
# ==========================================
ENGINE_FORBIDDEN_FUNCTIONS: Dict[Engine, FrozenSet[str]] = {
    Engine.SQLITE: frozenset({
        "load_extension",
        "readfile",
        "writefile",
        "edit",
        "fts3_tokenizer",
    }),
    Engine.POSTGRES: frozenset({
        # Backend yönetimi
        "pg_cancel_backend",
        "pg_terminate_backend",
        "pg_reload_conf",
        "pg_rotate_logfile",
        "pg_switch_wal",
        "pg_promote",
        "pg_create_restore_point",
        "set_config",
        # Uyuma (DoS)
        "pg_sleep",
        "pg_sleep_for",
        "pg_sleep_until",
        # Dosya erişimi
        "pg_read_file",
        "pg_read_binary_file",
        "pg_ls_dir",
        "pg_stat_file",
        "pg_file_write",
        "lo_import",
        "lo_export",
        # Veritabanları arası bağlantı
        "dblink",
        "dblink_exec",
        "dblink_connect",
        "dblink_send_query",
        # Metin içinden sorgu çalıştıran fonksiyonlar
        "query_to_xml",
        "query_to_xml_and_xmlschema",
        "cursor_to_xml",
        "table_to_xml",
        "schema_to_xml",
        "database_to_xml",
        "lo_get",
        "lo_from_bytea",
    }),
}

# ==========================================
# "(" ile devam edebilen ama fonksiyon olmayan kelimeler
# ==========================================
NON_FUNCTION_PAREN_KEYWORDS: FrozenSet[str] = frozenset({
    "from", "join", "where", "group", "order", "having", "limit", "offset",
    "window", "fetch", "union", "except", "intersect",
    "select", "with", "as", "on",
    "in", "exists", "over", "filter", "within", "values",
    "any", "all",
    # Mantıksal operatörler ve ifade anahtar kelimeleri
    "and", "or", "not", "is", "between",
    "case", "when", "then", "else",
    "using", "distinct", "by", "lateral", "recursive",
})

# ==========================================
# İlişki (tablo) erişimi
# ==========================================
# FROM listesini sonlandıran kelimeler
CLAUSE_END_KEYWORDS: FrozenSet[str] = frozenset({
    "WHERE", "GROUP", "ORDER", "HAVING", "LIMIT", "OFFSET", "WINDOW",
    "FETCH", "UNION", "EXCEPT", "INTERSECT",
})

# FROM/JOIN ile tablo adı arasında atlanan kelimeler
JOIN_NOISE_KEYWORDS: FrozenSet[str] = frozenset({
    "LATERAL", "ONLY", "AS", "INNER", "LEFT", "RIGHT", "FULL", "CROSS",
    "OUTER", "NATURAL",
})

# Ardından ilişki adı gelen kelimeler (PostgreSQL: "TABLE name" bir sorgudur)
RELATION_KEYWORDS: FrozenSet[str] = frozenset({"FROM", "JOIN", "TABLE"})

# Parantez içinde bu kelimelerden biri geliyorsa parantez bir alt sorgudur
SUBQUERY_START_KEYWORDS: FrozenSet[str] = frozenset({"SELECT", "WITH", "VALUES", "TABLE"})

# Argümanlarında FROM geçen ama ilişki okumayan fonksiyonlar
FROM_ARGUMENT_FUNCTIONS: FrozenSet[str] = frozenset({"EXTRACT", "SUBSTRING", "TRIM", "OVERLAY"})

DEFAULT_SCHEMA: Dict[Engine, str] = {
    Engine.SQLITE: "main",
    Engine.POSTGRES: "public",
}

DEFAULT_DENIED_SCHEMAS: Dict[Engine, FrozenSet[str]] = {
    Engine.SQLITE: frozenset({
        "sqlite_master",
        "sqlite_temp_master",
        "sqlite_schema",
        "sqlite_temp_schema",
    }),
    Engine.POSTGRES: frozenset({"pg_catalog", "information_schema"}),
}

# Sistem nesnelerine ayrılmış isim önekleri. Nitelenmemiş bu isimler
# varsayılan şemaya değil katalog nesnelerine çözülür (PostgreSQL
# search_path'inde pg_catalog her zaman önce gelir).
SYSTEM_RELATION_PREFIXES: Dict[Engine, FrozenSet[str]] = {
    Engine.SQLITE: frozenset({"sqlite_"}),
    Engine.POSTGRES: frozenset({"pg_"}),
}

# ==========================================
# Varsayılan fonksiyon allowlist'leri
# ==========================================
DEFAULT_ALLOWED_FUNCTIONS: Dict[Engine, FrozenSet[str]] = {
    Engine.SQLITE: frozenset({
        "argmin", "argmax", "fingerprint", "assemblerecord", "disassemblerecord",
        "char",
        "distinctlistagg", "sortlist", "in_list", "join_strings", "magicalentangle", "printf",
        "json_extract", "json_group_array", "json_array_length", "json_each", "json_tree", "json_array",
        "date", "julianday",
        "cast", "coalesce",
        "count", "sum", "min", "max", "avg", "group_concat",
    }),
    Engine.POSTGRES: frozenset({
        "unnest",
        "md5", "substr", "row_to_json", "chr",
        "generate_series", "array_agg", "array_length", "string_to_array",
        "ln",
        "least", "greatest",
        "cast", "coalesce",
        "count", "sum", "min", "max", "avg",
    }),
}

# allowed_functions haritasında tüm motorlar için geçerli anahtarlar
WILDCARD_FUNCTION_KEYS = ("*", "all")

# ==========================================
# Runtime authorizer (SQLite)
# ==========================================
SAFE_VIRTUAL_TABLES: FrozenSet[str] = frozenset({"json_each", "json_tree"})
RUNTIME_FORBIDDEN_FUNCTIONS: FrozenSet[str] = frozenset({"load_extension", "readfile", "writefile"})

# ==========================================
# Kaynak (logic program) seviyesinde tehlikeli yerleşikler
# ==========================================
FORBIDDEN_CALLS: Dict[str, Capability] = {
    "SqlExpr": Capability.SQL_EXPR,
    "ReadFile": Capability.FILE_IO,
    "ReadJson": Capability.FILE_IO,
    "WriteFile": Capability.FILE_IO,
    "PrintToConsole": Capability.CONSOLE,
    "RunClingo": Capability.EXTERNAL_EXEC,
    "RunClingoFile": Capability.EXTERNAL_EXEC,
    "Intelligence": Capability.EXTERNAL_EXEC,
}

# ==========================================
# Yürütme limitleri
# ==========================================
PAGINATION_ALIAS = "logica_rows"
