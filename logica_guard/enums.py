"""Motor, güven seviyesi ve yetenek tanımları"""

import enum
from typing import Optional, Union


class Engine(str, enum.Enum):
    """Desteklenen SQL motorları"""

    SQLITE = "sqlite"
    POSTGRES = "psql"

    @classmethod
    def parse(cls, value: Union["Engine", str, None]) -> Optional["Engine"]:
        """
        Motor adını enum değerine çevir

        Args:
            value: Engine, motor adı ("sqlite", "psql", "postgres", ...) veya None

        Returns:
            Engine değeri; boş değerler için None

        Raises:
            ValueError: Tanınmayan motor adı
        """
        if value is None or isinstance(value, Engine):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Motor adı metin olmalı: {value!r}")

        name = value.strip().lower()
        if not name:
            return None

        engine = _ENGINE_ALIASES.get(name)
        if engine is None:
            raise ValueError(f"Tanınmayan SQL motoru: {value}")
        return engine


_ENGINE_ALIASES = {
    "sqlite": Engine.SQLITE,
    "sqlite3": Engine.SQLITE,
    "psql": Engine.POSTGRES,
    "postgres": Engine.POSTGRES,
    "postgresql": Engine.POSTGRES,
}


class Trust(str, enum.Enum):
    """Sorgu kaynağının güven seviyesi"""

    TRUSTED = "trusted"
    UNTRUSTED = "untrusted"


class Capability(str, enum.Enum):
    """Kaynak programdaki tehlikeli yerleşik çağrıları açan yetenekler"""

    SQL_EXPR = "sql_expr"
    FILE_IO = "file_io"
    CONSOLE = "console"
    EXTERNAL_EXEC = "external_exec"
