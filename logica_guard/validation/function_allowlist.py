"""Fonksiyon allowlist doğrulaması

SQL içindeki her fonksiyon çağrısı (bir tanımlayıcı veya noktalı
tanımlayıcı zincirini hemen takip eden ``(``) bulunur, ``schema.function``
veya ``function`` biçiminde küçük harfe normalize edilir ve allowlist ile
karşılaştırılır.
"""

from typing import Iterable, List, Optional, Sequence, Union

from ..enums import Engine
from ..utils.logger import logger
from . import rules
from .cte import find_cte_declarations
from .tokenizer import (
    Token,
    TokenKind,
    normalize_identifier_token,
    normalize_qualified_name,
    tokenize_sql,
)
from .violation import Violation, ViolationReason


def qualified_name_before(tokens: Sequence[Token], idx: int) -> Optional[str]:
    """
    ``tokens[idx]`` ile biten noktalı tanımlayıcı zincirini normalize et

    Örn. ``"pg_catalog" . "pg_read_file"`` -> ``pg_catalog.pg_read_file``
    """
    name = normalize_identifier_token(tokens[idx])
    if name is None:
        return None

    parts = [name]
    j = idx - 1
    while j >= 1 and tokens[j].text == "." and tokens[j].kind is TokenKind.PUNCTUATION:
        prefix = normalize_identifier_token(tokens[j - 1])
        if prefix is None:
            break
        parts.insert(0, prefix)
        j -= 2

    return ".".join(parts)


def scan_functions_from_tokens(tokens: Sequence[Token]) -> List[str]:
    """
    Token listesindeki fonksiyon çağrılarını ilk görülme sırasıyla döndür

    ``IN (``, ``EXISTS (`` gibi parantez alan SQL anahtar kelimeleri,
    şema ile nitelenmedikçe fonksiyon sayılmaz.
    WITH başlığındaki "name(col, ...)" CTE tanımları da fonksiyon değildir.
    """
    used: List[str] = []
    seen = set()
    cte_positions = find_cte_declarations(tokens)

    for idx in range(len(tokens) - 1):
        if tokens[idx + 1].text != "(" or idx in cte_positions:
            continue

        func = qualified_name_before(tokens, idx)
        if func is None:
            continue
        if "." not in func and tokens[idx].kind is TokenKind.IDENTIFIER \
                and func in rules.NON_FUNCTION_PAREN_KEYWORDS:
            continue
        if func in seen:
            continue

        seen.add(func)
        used.append(func)

    return used


def scan_functions(sql: str, engine: Union[Engine, str, None] = None) -> List[str]:
    """SQL metnindeki fonksiyon çağrılarını döndür (string/yorumlar hariç)"""
    return scan_functions_from_tokens(tokenize_sql(sql, Engine.parse(engine)))


def normalize_allowlist(values: Optional[Iterable[str]]) -> set:
    if isinstance(values, str):
        values = [values]
    allowlist = set()
    for value in values or ():
        name = normalize_qualified_name(str(value))
        if name is not None:
            allowlist.add(name)
    return allowlist


class FunctionAllowlistValidator:
    """Yalnızca allowlist'teki fonksiyonların çağrılmasına izin verir"""

    @staticmethod
    def validate(
        sql: str,
        engine: Union[Engine, str, None] = None,
        allowed_functions: Optional[Iterable[str]] = None,
    ) -> List[str]:
        """
        Fonksiyon çağrılarını doğrula

        Args:
            sql: Doğrulanacak SQL
            engine: Motor
            allowed_functions: İzinli fonksiyonlar (None: motor varsayılanı)

        Returns:
            Kullanılan (izinli) fonksiyonların listesi

        Raises:
            Violation: function_not_allowed
        """
        engine = Engine.parse(engine)
        if allowed_functions is None:
            allowed_functions = rules.for_engine(rules.DEFAULT_ALLOWED_FUNCTIONS, engine)
        allowlist = normalize_allowlist(allowed_functions)

        used = scan_functions(sql, engine)
        for func in used:
            if func in allowlist:
                continue

            logger.warning(
                "SQL function not allowed",
                reason=ViolationReason.FUNCTION_NOT_ALLOWED.value,
                details=func,
                engine=engine.value if engine else None,
            )
            raise Violation(
                ViolationReason.FUNCTION_NOT_ALLOWED,
                f"SQL fonksiyonuna izin verilmiyor: {func}",
                details=func,
            )

        logger.debug("Function allowlist check passed", functions=used)
        return used
