"""Baştaki WITH bloğundaki CTE tanımlarını bulma"""

from typing import Dict, Optional, Sequence, Tuple

from .tokenizer import Token, TokenKind, normalize_identifier_token


def skip_parenthesized(tokens: Sequence[Token], idx: int) -> int:
    """``tokens[idx]`` "(" ise eşleşen ")" sonrasındaki indeksi döndür"""
    if idx >= len(tokens) or tokens[idx].text != "(":
        return idx

    depth = 0
    while idx < len(tokens):
        tok = tokens[idx]
        if tok.kind is TokenKind.PUNCTUATION:
            if tok.text == "(":
                depth += 1
            elif tok.text == ")":
                depth -= 1
        idx += 1
        if depth == 0:
            break
    return idx


def parse_identifier(tokens: Sequence[Token], idx: int) -> Tuple[Optional[str], int]:
    """``tokens[idx]`` tanımlayıcı ise (isim, sonraki indeks), değilse (None, idx)"""
    if idx >= len(tokens):
        return None, idx
    name = normalize_identifier_token(tokens[idx])
    if name is None:
        return None, idx
    return name, idx + 1


def find_cte_declarations(tokens: Sequence[Token]) -> Dict[int, str]:
    """
    ``WITH [RECURSIVE] name [(cols)] AS (...) [, ...]`` başlığını çöz

    Returns:
        CTE adının token indeksi -> normalize edilmiş CTE adı
    """
    declarations: Dict[int, str] = {}
    if not tokens or tokens[0].upper != "WITH":
        return declarations

    idx = 1
    if idx < len(tokens) and tokens[idx].upper == "RECURSIVE":
        idx += 1

    while True:
        start = idx
        name, idx = parse_identifier(tokens, idx)
        if name is None:
            break
        declarations[start] = name

        if idx < len(tokens) and tokens[idx].text == "(":
            idx = skip_parenthesized(tokens, idx)
        if idx < len(tokens) and tokens[idx].upper == "AS":
            idx += 1
        # PostgreSQL: AS [NOT] MATERIALIZED (...)
        if idx < len(tokens) and tokens[idx].upper == "NOT":
            idx += 1
        if idx < len(tokens) and tokens[idx].upper == "MATERIALIZED":
            idx += 1
        if idx < len(tokens) and tokens[idx].text == "(":
            idx = skip_parenthesized(tokens, idx)

        if not (idx < len(tokens) and tokens[idx].text == ","):
            break
        idx += 1

    return declarations
