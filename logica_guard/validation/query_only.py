"""Tek ve salt okunur sorgu doğrulaması"""

from typing import List, Optional, Union

from ..enums import Engine
from ..utils.logger import logger, truncate_sql
from . import rules
from .function_allowlist import scan_functions_from_tokens
from .tokenizer import Token, TokenKind, strip_comments_and_literals, tokenize
from .violation import Violation, ViolationReason


def _is_semicolon(token: Token) -> bool:
    return token.kind is TokenKind.PUNCTUATION and token.text == ";"


def count_statements(tokens: List[Token]) -> int:
    """Token listesindeki boş olmayan ifade sayısı"""
    count = 0
    pending = False
    for token in tokens:
        if _is_semicolon(token):
            count += int(pending)
            pending = False
        else:
            pending = True
    return count + int(pending)


def parentheses_balanced(tokens: List[Token]) -> bool:
    depth = 0
    for token in tokens:
        if token.kind is not TokenKind.PUNCTUATION:
            continue
        if token.text == "(":
            depth += 1
        elif token.text == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def _reject(reason: ViolationReason, message: str, details: Optional[str] = None, sql: str = ""):
    logger.warning(
        "SQL query-only check failed",
        reason=reason.value,
        details=details,
        sql=truncate_sql(sql),
    )
    raise Violation(reason, message, details=details)


class ForbiddenFunctionsValidator:
    """
    Yönetim ve DoS fonksiyonlarını her durumda reddeder

    Eşleşme büyük/küçük harf ve şema nitelemesinden bağımsızdır:
    ``pg_catalog.pg_sleep(1)`` ve ``"PG_SLEEP"(1)`` aynı şekilde reddedilir.
    """

    @staticmethod
    def validate(sql: str, engine: Union[Engine, str, None] = None) -> None:
        engine = Engine.parse(engine)
        tokens = tokenize(strip_comments_and_literals(sql, engine), engine)
        ForbiddenFunctionsValidator.validate_tokens(tokens, engine, sql=sql)

    @staticmethod
    def validate_tokens(tokens: List[Token], engine: Optional[Engine], sql: str = "") -> None:
        forbidden = rules.for_engine(rules.ENGINE_FORBIDDEN_FUNCTIONS, engine)

        for func in scan_functions_from_tokens(tokens):
            bare = func.rsplit(".", 1)[-1]
            if bare in forbidden or func in forbidden:
                _reject(
                    ViolationReason.FORBIDDEN_FUNCTION,
                    f"Yasaklı SQL fonksiyonu: {func}",
                    details=func,
                    sql=sql,
                )


class QueryOnlyValidator:
    """Yalnızca tek bir SELECT/WITH/VALUES ifadesine izin verir"""

    @staticmethod
    def validate(
        sql: str,
        engine: Union[Engine, str, None] = None,
        allow_explain: bool = False,
    ) -> None:
        """
        SQL'in tek ve salt okunur bir sorgu olduğunu doğrula

        Args:
            sql: Doğrulanacak SQL
            engine: Motor (motora özel yasaklı kelimeler için)
            allow_explain: True ise EXPLAIN ile başlayan sorgulara izin ver

        Raises:
            Violation: multiple_statements, forbidden_statement_kind,
                forbidden_function
        """
        engine = Engine.parse(engine)
        cleaned = strip_comments_and_literals(sql, engine)
        all_tokens = tokenize(cleaned, engine)

        # Sondaki tek noktalı virgül dışında hiçbir ayraç kalmamalı; sayı ve
        # operatörler token üretmediğinden metnin gerçekten ";" ile bittiğine bakılır
        tokens = all_tokens
        if tokens and _is_semicolon(tokens[-1]) and cleaned.rstrip().endswith(";"):
            tokens = tokens[:-1]
        if any(_is_semicolon(token) for token in tokens):
            _reject(
                ViolationReason.MULTIPLE_STATEMENTS,
                f"Birden fazla SQL ifadesine izin verilmiyor "
                f"({count_statements(all_tokens)} ifade); yalnızca sondaki tek noktalı virgül kabul edilir.",
                sql=sql,
            )

        if not tokens:
            _reject(ViolationReason.FORBIDDEN_STATEMENT_KIND, "Boş SQL sorgusu.", sql=sql)

        # Sorgu sayfalama için alt sorgu olarak sarıldığından dengesiz
        # parantez dış sorgunun yapısını değiştirebilir
        if not parentheses_balanced(tokens):
            _reject(
                ViolationReason.FORBIDDEN_STATEMENT_KIND,
                "Parantez dengesi hatalı.",
                sql=sql,
            )

        allowed_starts = set(rules.QUERY_START_KEYWORDS)
        if allow_explain:
            allowed_starts.add(rules.EXPLAIN_KEYWORD)

        first = tokens[0].upper
        if first not in allowed_starts:
            _reject(
                ViolationReason.FORBIDDEN_STATEMENT_KIND,
                f"Yalnızca {', '.join(sorted(allowed_starts))} sorgularına izin verilir "
                f"(gelen: {tokens[0].text})",
                details=tokens[0].text,
                sql=sql,
            )

        forbidden = rules.FORBIDDEN_KEYWORDS | rules.for_engine(rules.ENGINE_FORBIDDEN_KEYWORDS, engine)
        for token in tokens:
            keyword = token.upper
            if keyword and keyword in forbidden:
                _reject(
                    ViolationReason.FORBIDDEN_STATEMENT_KIND,
                    f"Yasaklı komut tespit edildi: {keyword}",
                    details=keyword,
                    sql=sql,
                )

        ForbiddenFunctionsValidator.validate_tokens(tokens, engine, sql=sql)

        logger.debug("SQL query-only check passed", engine=engine.value if engine else None)
