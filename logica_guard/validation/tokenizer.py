"""SQL metnini string/yorumlardan arındırma ve token'lara ayırma

Tüm SQL doğrulayıcıları yalnızca bu modülün ürettiği token'ları görür.
String literal'ler ve yorumlar token'lara ayrılmadan önce nötr bir yer
tutucu ile değiştirilir; böylece ``'; DROP TABLE users'`` gibi bir
literal'in içeriği hiçbir zaman SQL yapısı olarak yorumlanmaz.

Motor farkları (yalnızca ilgili motorda etkinleşir):

* PostgreSQL: ``E'...'`` string'lerinde ters eğik çizgi kaçışı,
  ``$tag$...$tag$`` dollar quoting, iç içe ``/* */`` yorumlar,
  ``U&"..." [UESCAPE 'c']`` tanımlayıcıları (kaçışlar çözülüp düz tırnaklı
  tanımlayıcıya çevrilir).
* SQLite: ``[...]`` köşeli parantezli tanımlayıcılar.

Bir motora ait sözdizimini diğerinde tanımak, motorun kod olarak okuduğu
metni literal sanmak demektir; bu yüzden bilinmeyen motor (None) için bu
genişletmelerin hiçbiri uygulanmaz. Tek istisna ``U&"..."`` çözümüdür; o
bilinmeyen motorda da uygulanır.
"""

import enum
import re
from typing import List, NamedTuple, Optional, Tuple

from ..enums import Engine

STRING_PLACEHOLDER = "''"


class TokenKind(str, enum.Enum):
    IDENTIFIER = "identifier"
    QUOTED_IDENTIFIER = "quoted_identifier"
    PUNCTUATION = "punctuation"
    LITERAL = "literal"


class Token(NamedTuple):
    """Temizlenmiş SQL'den üretilen token"""

    text: str
    kind: TokenKind

    @property
    def upper(self) -> str:
        """Çıplak kelimeler için büyük harf hali; diğerleri için boş string"""
        if self.kind is TokenKind.IDENTIFIER:
            return self.text.upper()
        return ""


_DOLLAR_TAG = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)?\$")


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_$"


def _skip_quoted(sql: str, start: int, close: str) -> int:
    """
    Tırnaklı bölgenin bittiği indeksi döndür (kapanış dahil)

    Kapanış karakterinin iki kez yazılması kaçış sayılır. Kapanmayan bölge
    metnin sonuna kadar sürer.
    """
    i = start + 1
    n = len(sql)
    while i < n:
        if sql[i] == close:
            if i + 1 < n and sql[i + 1] == close:
                i += 2
                continue
            return i + 1
        i += 1
    return n


def _skip_escape_string(sql: str, start: int) -> int:
    """PostgreSQL E'...' string'i: hem '' hem de \\ kaçışı geçerli"""
    i = start + 1
    n = len(sql)
    while i < n:
        ch = sql[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "'":
            if i + 1 < n and sql[i + 1] == "'":
                i += 2
                continue
            return i + 1
        i += 1
    return n


def _skip_block_comment(sql: str, start: int, nested: bool) -> int:
    i = start + 2
    n = len(sql)
    depth = 1
    while i < n:
        if nested and sql.startswith("/*", i):
            depth += 1
            i += 2
            continue
        if sql.startswith("*/", i):
            depth -= 1
            i += 2
            if depth == 0:
                return i
            continue
        i += 1
    return n


_UNICODE_ESCAPE = re.compile(r"\+([0-9A-Fa-f]{6})|([0-9A-Fa-f]{4})")
_INVALID_UESCAPE_CHARS = frozenset("0123456789abcdefABCDEF+'\"")


def _skip_space_and_comments(sql: str, i: int) -> int:
    n = len(sql)
    while i < n:
        if sql[i].isspace():
            i += 1
        elif sql.startswith("--", i):
            newline = sql.find("\n", i)
            i = n if newline == -1 else newline + 1
        elif sql.startswith("/*", i):
            i = _skip_block_comment(sql, i, nested=True)
        else:
            break
    return i


def _decode_unicode_escapes(body: str, escape: str) -> Optional[str]:
    """
    PostgreSQL U&"..." gövdesindeki kaçışları çöz

    ``\\XXXX`` ve ``\\+XXXXXX`` kod noktalarını, ikilenmiş kaçış karakterini
    tek karaktere çevirir. Geçersiz bir kaçışta None döner.
    """
    out: List[str] = []
    i = 0
    n = len(body)
    while i < n:
        ch = body[i]
        if ch != escape:
            out.append(ch)
            i += 1
            continue
        if body.startswith(escape, i + 1):
            out.append(escape)
            i += 2
            continue
        match = _UNICODE_ESCAPE.match(body, i + 1)
        if not match:
            return None
        code = int(match.group(1) or match.group(2), 16)
        if code > 0x10FFFF:
            return None
        out.append(chr(code))
        i = match.end()
    return "".join(out)


def _read_unicode_identifier(sql: str, start: int) -> Tuple[int, str]:
    """
    ``sql[start]`` konumundaki U&"..." [UESCAPE 'c'] tanımlayıcısını oku

    Returns:
        (bitiş indeksi, düz tırnaklı tanımlayıcı metni). Kaçışlar
        çözülemezse orijinal metin döner.
    """
    quote = start + 2
    end = _skip_quoted(sql, quote, '"')
    raw = sql[start:end]
    body = sql[quote + 1:end - 1].replace('""', '"')

    escape = "\\"
    after = _skip_space_and_comments(sql, end)
    if sql[after:after + 7].upper() == "UESCAPE" and (
        after + 7 >= len(sql) or not _is_ident_char(sql[after + 7])
    ):
        literal = _skip_space_and_comments(sql, after + 7)
        if sql[literal:literal + 1] == "'" and sql[literal + 2:literal + 3] == "'":
            escape = sql[literal + 1]
            if escape in _INVALID_UESCAPE_CHARS or escape.isspace():
                return end, raw
            end = literal + 3
            raw = sql[start:end]
        else:
            return end, raw

    decoded = _decode_unicode_escapes(body, escape)
    if decoded is None:
        return end, raw
    return end, '"' + decoded.replace('"', '""') + '"'


def strip_comments_and_literals(sql: str, engine: Optional[Engine] = None) -> str:
    """
    String literal'leri ve yorumları nötr yer tutucularla değiştir

    Her string literal ``''`` ile, her yorum tek bir boşlukla değiştirilir
    (satır yorumlarının sonundaki satır sonu korunur). Tırnaklı
    tanımlayıcılar olduğu gibi kopyalanır; PostgreSQL ``U&"..."`` tanımlayıcıları
    çözülmüş düz tırnaklı biçime çevrilir. Sonuç orijinalden uzun değildir
    ve literal/yorum dışındaki noktalı virgüller aynen korunur.

    Args:
        sql: Ham SQL metni
        engine: Motor (motora özel quoting kuralları için)

    Returns:
        Temizlenmiş SQL metni
    """
    sql = sql or ""
    engine = Engine.parse(engine)
    postgres = engine is Engine.POSTGRES
    sqlite = engine is Engine.SQLITE

    out: List[str] = []
    i = 0
    n = len(sql)

    while i < n:
        ch = sql[i]

        if ch == "'":
            escape_prefix = (
                postgres
                and i > 0
                and sql[i - 1] in "eE"
                and (i < 2 or not _is_ident_char(sql[i - 2]))
            )
            if escape_prefix:
                i = _skip_escape_string(sql, i)
            else:
                i = _skip_quoted(sql, i, "'")
            out.append(STRING_PLACEHOLDER)
            continue

        if (postgres or engine is None) and ch in "uU" and sql.startswith('&"', i + 1) \
                and (i == 0 or not _is_ident_char(sql[i - 1])):
            i, identifier = _read_unicode_identifier(sql, i)
            out.append(identifier)
            continue

        if ch == '"' or ch == "`":
            end = _skip_quoted(sql, i, ch)
            out.append(sql[i:end])
            i = end
            continue

        if ch == "[" and sqlite:
            end = _skip_quoted(sql, i, "]")
            out.append(sql[i:end])
            i = end
            continue

        if sql.startswith("--", i):
            newline = sql.find("\n", i)
            if newline == -1:
                out.append(" ")
                i = n
            else:
                out.append(" \n")
                i = newline + 1
            continue

        if sql.startswith("/*", i):
            i = _skip_block_comment(sql, i, nested=postgres)
            out.append(" ")
            continue

        if ch == "$" and postgres and (i == 0 or not _is_ident_char(sql[i - 1])):
            match = _DOLLAR_TAG.match(sql, i)
            if match:
                tag = match.group(0)
                close = sql.find(tag, match.end())
                i = n if close == -1 else close + len(tag)
                out.append(STRING_PLACEHOLDER)
                continue

        out.append(ch)
        i += 1

    return "".join(out)


# Öncelik sırası: tırnaklı tanımlayıcılar, literal yer tutucusu, sayılar
# (atlanır), çıplak tanımlayıcılar, noktalama.
_BASE_PATTERNS = [
    ("dquote", r'"(?:[^"]|"")*"'),
    ("backtick", r"`(?:[^`]|``)*`"),
]
_BRACKET_PATTERN = ("bracket", r"\[(?:[^\]]|\]\])*\]")
_TAIL_PATTERNS = [
    ("literal", r"''"),
    ("number", r"\d[\w$]*"),
    ("word", r"[^\W\d][\w$]*"),
    ("punct", r"[().,;]"),
]


def _compile_grammar(with_brackets: bool):
    patterns = list(_BASE_PATTERNS)
    if with_brackets:
        patterns.append(_BRACKET_PATTERN)
    patterns.extend(_TAIL_PATTERNS)
    return re.compile("|".join(f"(?P<{name}>{pattern})" for name, pattern in patterns))


_GRAMMAR = _compile_grammar(with_brackets=False)
_SQLITE_GRAMMAR = _compile_grammar(with_brackets=True)

_KIND_BY_GROUP = {
    "dquote": TokenKind.QUOTED_IDENTIFIER,
    "backtick": TokenKind.QUOTED_IDENTIFIER,
    "bracket": TokenKind.QUOTED_IDENTIFIER,
    "literal": TokenKind.LITERAL,
    "word": TokenKind.IDENTIFIER,
    "punct": TokenKind.PUNCTUATION,
}


def tokenize(cleaned_sql: str, engine: Optional[Engine] = None) -> List[Token]:
    """
    Temizlenmiş SQL'i token listesine çevir

    Girdi önceden ``strip_comments_and_literals`` ile temizlenmiş olmalıdır.
    """
    engine = Engine.parse(engine)
    grammar = _SQLITE_GRAMMAR if engine is Engine.SQLITE else _GRAMMAR

    tokens: List[Token] = []
    for match in grammar.finditer(cleaned_sql or ""):
        kind = _KIND_BY_GROUP.get(match.lastgroup)
        if kind is None:
            continue
        tokens.append(Token(match.group(0), kind))
    return tokens


def tokenize_sql(sql: str, engine: Optional[Engine] = None) -> List[Token]:
    """Ham SQL'i temizle ve token'lara ayır"""
    return tokenize(strip_comments_and_literals(sql, engine), engine)


def normalize_identifier_token(token: Token) -> Optional[str]:
    """
    Tanımlayıcı token'ını küçük harfli isme çevir

    Tırnaklı tanımlayıcılarda tırnaklar atılır ve ikilenmiş kapanış
    karakteri tek karaktere indirilir. Tanımlayıcı olmayan token'lar için
    None döner.
    """
    if token.kind is TokenKind.IDENTIFIER:
        return token.text.lower()
    if token.kind is not TokenKind.QUOTED_IDENTIFIER:
        return None

    text = token.text
    if len(text) < 2:
        return None

    opener, closer = text[0], text[-1]
    raw = text[1:-1]
    if opener == '"':
        raw = raw.replace('""', '"')
    elif opener == "`":
        raw = raw.replace("``", "`")
    elif opener == "[" and closer == "]":
        raw = raw.replace("]]", "]")
    else:
        return None
    return raw.lower()


def normalize_qualified_name(value: str) -> Optional[str]:
    """
    "schema.name" biçimindeki yapılandırma değerini normalize et

    Her parça tırnaklı veya çıplak tanımlayıcı olabilir. Geçersiz değerler
    için None döner.
    """
    text = (value or "").strip()
    if not text:
        return None

    tokens = tokenize(text, Engine.SQLITE)
    parts: List[str] = []
    expect_name = True
    for token in tokens:
        if expect_name:
            name = normalize_identifier_token(token)
            if name is None:
                return None
            parts.append(name)
        elif token.text != ".":
            return None
        expect_name = not expect_name

    if not parts or expect_name:
        return None
    return ".".join(parts)
