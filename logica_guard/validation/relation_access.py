"""Tablo / şema erişim doğrulaması

Token'lar üzerinde parantez derinliği takip edilerek her FROM, JOIN ve FROM
listesi içindeki virgülden sonra gelen ilişki adı çözülür ve politika ile
karşılaştırılır. Türetilmiş tablolar (alt sorgular), tablo döndüren
fonksiyonlar ve baştaki WITH bloğunda tanımlanan CTE'ler bu kontrolden
muaftır.

Deny listesi her zaman allowlist'ten önce uygulanır. ``allowed_relations``
verilmişse ``allowed_schemas`` hiç dikkate alınmaz.
"""

from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple, Union

from ..enums import Engine
from ..utils.logger import logger
from . import rules
from .cte import find_cte_declarations, parse_identifier
from .tokenizer import Token, TokenKind, tokenize_sql
from .violation import Violation, ViolationReason


def _normalize_names(values: Optional[Iterable[str]]) -> Optional[FrozenSet[str]]:
    if values is None:
        return None
    if isinstance(values, str):
        values = [values]
    return frozenset(
        str(v).strip().lower() for v in values if v is not None and str(v).strip()
    )


def _violation(reason: ViolationReason, message: str, details: Optional[str]) -> Violation:
    logger.warning(
        "SQL relation access denied",
        reason=reason.value,
        details=details,
    )
    return Violation(reason, message, details=details)


def _skip_join_noise(tokens: Sequence[Token], idx: int) -> int:
    while idx < len(tokens) and tokens[idx].upper in rules.JOIN_NOISE_KEYWORDS:
        idx += 1
    return idx


class RelationReference:
    """FROM/JOIN içinde bulunan tek bir ilişki referansı"""

    __slots__ = ("schema", "table", "qualified")

    def __init__(self, schema: Optional[str], table: str, default_schema: str):
        self.schema = schema or default_schema
        self.table = table
        self.qualified = schema is not None

    @property
    def name(self) -> str:
        return f"{self.schema}.{self.table}"

    @property
    def display_name(self) -> str:
        """SQL'de yazıldığı biçim (nitelenmemişse yalnızca tablo adı)"""
        return self.name if self.qualified else self.table

    def __repr__(self) -> str:
        return f"RelationReference({self.name!r})"


def _is_from_argument(tokens: Sequence[Token], idx: int, opener: Optional[str]) -> bool:
    """FROM bir ilişki yerine fonksiyon argümanı veya karşılaştırma parçası mı"""
    if opener in rules.FROM_ARGUMENT_FUNCTIONS:
        return True
    # a IS [NOT] DISTINCT FROM b
    return (
        idx >= 2
        and tokens[idx - 1].upper == "DISTINCT"
        and tokens[idx - 2].upper in ("IS", "NOT")
    )


def iter_relations(
    tokens: Sequence[Token],
    engine: Optional[Engine],
    on_relation: Callable[[RelationReference], None],
) -> None:
    """
    Token'ları dolaşıp her dış ilişki referansı için ``on_relation`` çağır

    CTE adları, alt sorgular ve tablo fonksiyonları atlanır. Parantezli
    join ifadeleri (``FROM (a JOIN b ON ...)``) içindeki tablolar da
    kontrol edilir.

    Raises:
        Violation: invalid_relation (ör. "schema." sonrası isim yok, ilişki
            yerine string literal)
    """
    cte_names: Set[str] = set(find_cte_declarations(tokens).values())
    default_schema = rules.DEFAULT_SCHEMA[engine] if engine is not None else "main"

    paren_depth = 0
    in_from_at_depth: Dict[int, bool] = {}
    opener_at_depth: Dict[int, Optional[str]] = {}
    pending_join_paren = False

    idx = 0
    while idx < len(tokens):
        tok = tokens[idx]

        if tok.kind is TokenKind.PUNCTUATION and tok.text == "(":
            paren_depth += 1
            opener_at_depth[paren_depth] = tokens[idx - 1].upper if idx > 0 else None
            if pending_join_paren:
                in_from_at_depth[paren_depth] = True
                idx, pending_join_paren = _parse_relation(
                    tokens, idx + 1, default_schema, cte_names, on_relation
                )
                continue
            idx += 1
            continue
        if tok.kind is TokenKind.PUNCTUATION and tok.text == ")":
            in_from_at_depth.pop(paren_depth, None)
            opener_at_depth.pop(paren_depth, None)
            if paren_depth > 0:
                paren_depth -= 1
            idx += 1
            continue

        up = tok.upper
        if up == "FROM" and _is_from_argument(tokens, idx, opener_at_depth.get(paren_depth)):
            idx += 1
            continue

        in_from = in_from_at_depth.get(paren_depth, False)
        if up in ("FROM", "JOIN") or (
            in_from and tok.kind is TokenKind.PUNCTUATION and tok.text == ","
        ):
            in_from_at_depth[paren_depth] = True
            idx, pending_join_paren = _parse_relation(
                tokens, idx + 1, default_schema, cte_names, on_relation
            )
            continue
        if up == "TABLE":
            # PostgreSQL: "TABLE name" == "SELECT * FROM name"
            idx, pending_join_paren = _parse_relation(
                tokens, idx + 1, default_schema, cte_names, on_relation
            )
            continue

        if in_from and up in rules.CLAUSE_END_KEYWORDS:
            in_from_at_depth[paren_depth] = False

        idx += 1


def _parse_relation(
    tokens: Sequence[Token],
    idx: int,
    default_schema: str,
    cte_names: Set[str],
    on_relation: Callable[[RelationReference], None],
) -> Tuple[int, bool]:
    """
    ``tokens[idx]`` konumundaki ilişkiyi çöz

    Returns:
        (sonraki indeks, parantezli join bekleniyor mu)
    """
    idx = _skip_join_noise(tokens, idx)
    if idx >= len(tokens):
        return idx, False

    tok = tokens[idx]
    if tok.text == "(" and tok.kind is TokenKind.PUNCTUATION:
        nxt = tokens[idx + 1] if idx + 1 < len(tokens) else None
        if nxt is not None and nxt.upper in rules.SUBQUERY_START_KEYWORDS:
            # Türetilmiş tablo; içeriği ana döngüde ayrıca taranır
            return idx, False
        # Parantezli join: içindeki ilk ilişki ana döngüde çözülür
        return idx, True

    if tok.kind is TokenKind.LITERAL:
        # SQLite string literal'i tablo adı olarak kabul edebilir
        raise _violation(
            ViolationReason.INVALID_RELATION,
            "İlişki adı yerine string literal kullanılamaz.",
            details=None,
        )

    name1, idx = parse_identifier(tokens, idx)
    if name1 is None:
        return idx, False

    if idx < len(tokens) and tokens[idx].text == "(":
        # Tablo döndüren fonksiyon (ör. json_each(...), generate_series(...))
        return idx, False

    schema = None
    table = name1
    if idx < len(tokens) and tokens[idx].text == "." and tokens[idx].kind is TokenKind.PUNCTUATION:
        name2, next_idx = parse_identifier(tokens, idx + 1)
        if name2 is None:
            raise _violation(
                ViolationReason.INVALID_RELATION,
                f"Geçersiz ilişki referansı: '{name1}.' sonrasında tablo adı yok.",
                details=name1,
            )
        if next_idx < len(tokens) and tokens[next_idx].text == "(":
            # Şema nitelikli tablo fonksiyonu
            return next_idx, False
        if next_idx < len(tokens) and tokens[next_idx].text == "." \
                and tokens[next_idx].kind is TokenKind.PUNCTUATION:
            # database.schema.table: desteklenmeyen biçim, kapalı başarısız ol
            raise _violation(
                ViolationReason.INVALID_RELATION,
                f"Üç parçalı ilişki referansına izin verilmiyor: {name1}.{name2}.",
                details=f"{name1}.{name2}",
            )
        schema = name1
        table = name2
        idx = next_idx

    if schema is None and table in cte_names:
        return idx, False

    on_relation(RelationReference(schema, table, default_schema))
    return idx, False


class RelationAccessValidator:
    """FROM/JOIN ile erişilen tabloları politika ile doğrular"""

    @staticmethod
    def validate(
        sql: str,
        engine: Union[Engine, str, None] = None,
        allowed_relations: Optional[Iterable[str]] = None,
        allowed_schemas: Optional[Iterable[str]] = None,
        denied_schemas: Optional[Iterable[str]] = None,
    ) -> None:
        """
        İlişki erişimini doğrula

        Args:
            sql: Doğrulanacak SQL
            engine: Motor (varsayılan şema ve deny listesi için)
            allowed_relations: İzinli "schema.table"/"table" isimleri
                (None: kısıt yok, boş: hepsi yasak)
            allowed_schemas: İzinli şemalar (None: kısıt yok, boş: hepsi yasak)
            denied_schemas: Yasaklı şema/tablo isimleri (None: motor varsayılanı)

        Raises:
            Violation: denied_schema, relation_not_allowed,
                schema_not_allowed, invalid_relation
        """
        engine = Engine.parse(engine)

        denied = _normalize_names(denied_schemas)
        if denied is None:
            denied = rules.for_engine(rules.DEFAULT_DENIED_SCHEMAS, engine)
        allowed_rel = _normalize_names(allowed_relations)
        allowed_sch = _normalize_names(allowed_schemas)
        system_prefixes = tuple(rules.for_engine(rules.SYSTEM_RELATION_PREFIXES, engine))

        def check(ref: RelationReference) -> None:
            if ref.schema in denied or ref.table in denied:
                raise _violation(
                    ViolationReason.DENIED_SCHEMA,
                    f"SQL'de yasaklı şema/tablo kullanıldı: {ref.display_name}",
                    details=ref.display_name,
                )
            if not ref.qualified and ref.table.startswith(system_prefixes):
                raise _violation(
                    ViolationReason.DENIED_SCHEMA,
                    f"SQL'de sistem ilişkisi kullanıldı: {ref.table}",
                    details=ref.table,
                )

            if allowed_rel is not None:
                if ref.name in allowed_rel or ref.table in allowed_rel:
                    return
                raise _violation(
                    ViolationReason.RELATION_NOT_ALLOWED,
                    f"SQL ilişki erişimine izin verilmiyor: {ref.name}",
                    details=ref.name,
                )

            if allowed_sch is not None and ref.schema not in allowed_sch:
                raise _violation(
                    ViolationReason.SCHEMA_NOT_ALLOWED,
                    f"SQL şema erişimine izin verilmiyor: {ref.schema}",
                    details=ref.schema,
                )

        iter_relations(tokenize_sql(sql, engine), engine, check)
        logger.debug("Relation access check passed", engine=engine.value if engine else None)

    @staticmethod
    def extract_relations(sql: str, engine: Union[Engine, str, None] = None) -> List[str]:
        """SQL'in eriştiği dış ilişkileri "schema.table" biçiminde döndür"""
        engine = Engine.parse(engine)
        found: List[str] = []

        def collect(ref: RelationReference) -> None:
            if ref.name not in found:
                found.append(ref.name)

        iter_relations(tokenize_sql(sql, engine), engine, collect)
        return found
