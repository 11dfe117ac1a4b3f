"""Erişim politikası (AccessPolicy)

Her sorgu için bir kez oluşturulan, değiştirilemez politika değeri. Tüm
tanımlayıcı kümeleri oluşturma anında küçük harfe çevrilir ve boşlukları
kırpılır. ``effective_*`` erişimcileri boş alanları motora özel
varsayılanlarla çözer; politika nesnesi hiçbir zaman değişmez, bu yüzden
eşzamanlı istekler arasında kilitsiz paylaşılabilir.

Boş küme ile hiç verilmemiş (None) alan farklıdır: ``allowed_relations=[]``
her şeyi reddeder, ``allowed_relations=None`` deny listesi dışında kısıt
koymaz.
"""

from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .config import settings
from .enums import Capability, Engine, Trust
from .validation import rules


class PolicyConfigurationError(Exception):
    """Hatalı politika girdisi (oluşturma anında fırlatılır)"""
    pass


EngineLike = Union[Engine, str, None]


def _parse_engine(value: Any) -> Optional[Engine]:
    try:
        return Engine.parse(value)
    except ValueError as e:
        raise PolicyConfigurationError(str(e)) from e


def _normalize_scalar(value: Any, field: str) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int, float, Capability, Engine, Trust)):
        raise PolicyConfigurationError(
            f"{field} yalnızca metin değerler içerebilir (gelen: {type(value).__name__})"
        )
    if isinstance(value, (Capability, Engine, Trust)):
        return value.value
    text = str(value).strip()
    return text or None


def normalize_identifier_list(value: Any, field: str = "identifier list") -> Optional[FrozenSet[str]]:
    """
    Tanımlayıcı listesini normalize et

    Tek bir string de kabul edilir. Boş/None girdiler atılır; sonuç küçük
    harfli bir frozenset'tir. ``None`` girdi ``None`` döner.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = [value]
    if isinstance(value, dict) or not isinstance(value, Iterable):
        raise PolicyConfigurationError(
            f"{field} bir liste olmalı (gelen: {type(value).__name__})"
        )

    normalized = set()
    for item in value:
        text = _normalize_scalar(item, field)
        if text:
            normalized.add(text.lower())
    return frozenset(normalized)


class Timeouts(BaseModel):
    """Güvenilmeyen sorgular için zaman aşımı değerleri (milisaniye)"""

    model_config = ConfigDict(frozen=True)

    statement_timeout_ms: Optional[int] = Field(default=None, ge=0)
    lock_timeout_ms: Optional[int] = Field(default=None, ge=0)

    def resolve(self) -> "Timeouts":
        """Boş değerleri ayarlardaki varsayılanlarla doldur"""
        return Timeouts(
            statement_timeout_ms=(
                settings.statement_timeout_ms
                if self.statement_timeout_ms is None
                else self.statement_timeout_ms
            ),
            lock_timeout_ms=(
                settings.lock_timeout_ms
                if self.lock_timeout_ms is None
                else self.lock_timeout_ms
            ),
        )


class AccessPolicy(BaseModel):
    """
    Sorgu başına erişim politikası

    Attributes:
        engine: Motor (None ise doğrulayıcıya verilen motor kullanılır)
        trust: Güven seviyesi (varsayılan: UNTRUSTED)
        capabilities: Kaynak programda izin verilen tehlikeli yerleşikler
        allowed_relations: İzinli "schema.table" veya "table" isimleri
        allowed_schemas: İzinli şemalar
        denied_schemas: Yasaklı şema/tablo isimleri (None: motor varsayılanı)
        allowed_functions: Motor adı -> izinli fonksiyonlar ("*"/"all" joker)
        tenant: Row-level security için kiracı kimliği
        timeouts: Statement/lock zaman aşımları
    """

    model_config = ConfigDict(frozen=True)

    engine: Optional[Engine] = None
    trust: Trust = Trust.UNTRUSTED
    capabilities: FrozenSet[Capability] = frozenset()
    allowed_relations: Optional[FrozenSet[str]] = None
    allowed_schemas: Optional[FrozenSet[str]] = None
    denied_schemas: Optional[FrozenSet[str]] = None
    allowed_functions: Optional[Dict[str, FrozenSet[str]]] = None
    tenant: Optional[str] = None
    timeouts: Timeouts = Timeouts()

    @field_validator("engine", mode="before")
    @classmethod
    def _validate_engine(cls, value):
        return _parse_engine(value)

    @field_validator("trust", mode="before")
    @classmethod
    def _validate_trust(cls, value):
        if value is None:
            return Trust.UNTRUSTED
        if isinstance(value, Trust):
            return value
        text = _normalize_scalar(value, "trust")
        try:
            return Trust((text or "").lower())
        except ValueError as e:
            raise PolicyConfigurationError(f"Geçersiz güven seviyesi: {value!r}") from e

    @field_validator("capabilities", mode="before")
    @classmethod
    def _validate_capabilities(cls, value):
        return normalize_capabilities(value)

    @field_validator("allowed_relations", "allowed_schemas", "denied_schemas", mode="before")
    @classmethod
    def _validate_identifier_lists(cls, value, info):
        return normalize_identifier_list(value, info.field_name)

    @field_validator("allowed_functions", mode="before")
    @classmethod
    def _validate_allowed_functions(cls, value):
        if value is None:
            return None
        if not isinstance(value, dict):
            return {"*": normalize_identifier_list(value, "allowed_functions") or frozenset()}

        normalized: Dict[str, FrozenSet[str]] = {}
        for key, names in value.items():
            engine_key = _normalize_scalar(key, "allowed_functions") or "*"
            engine_key = engine_key.lower()
            if engine_key not in rules.WILDCARD_FUNCTION_KEYS:
                engine_key = _parse_engine(engine_key).value
            normalized[engine_key] = normalize_identifier_list(names, "allowed_functions") or frozenset()
        return normalized

    @field_validator("tenant", mode="before")
    @classmethod
    def _validate_tenant(cls, value):
        return _normalize_scalar(value, "tenant")

    @field_validator("timeouts", mode="before")
    @classmethod
    def _validate_timeouts(cls, value):
        if value is None:
            return Timeouts()
        if isinstance(value, Timeouts):
            return value
        if isinstance(value, dict):
            try:
                return Timeouts(**value)
            except ValidationError as e:
                raise PolicyConfigurationError(f"Geçersiz timeouts: {e}") from e
        raise PolicyConfigurationError(
            f"timeouts bir sözlük olmalı (gelen: {type(value).__name__})"
        )

    # --- Kurucular ---

    @classmethod
    def trusted(cls, engine: EngineLike = None, **kwargs) -> "AccessPolicy":
        return cls(**{**kwargs, "engine": engine, "trust": Trust.TRUSTED})

    @classmethod
    def untrusted(cls, engine: EngineLike = None, **kwargs) -> "AccessPolicy":
        return cls(**{"engine": engine, "trust": Trust.UNTRUSTED, **kwargs})

    # --- Türetilmiş değerler ---

    @property
    def is_trusted(self) -> bool:
        return self.trust is Trust.TRUSTED

    @property
    def is_untrusted(self) -> bool:
        return self.trust is Trust.UNTRUSTED

    def resolve_engine(self, engine: EngineLike = None) -> Optional[Engine]:
        """Verilen motoru, yoksa politikanın motorunu döndür"""
        parsed = _parse_engine(engine)
        return parsed if parsed is not None else self.engine

    @property
    def effective_capabilities(self) -> FrozenSet[Capability]:
        return self.capabilities

    @property
    def effective_timeouts(self) -> Timeouts:
        return self.timeouts.resolve()

    def effective_denied_schemas(self, engine: EngineLike = None) -> FrozenSet[str]:
        if self.denied_schemas is not None:
            return self.denied_schemas
        return default_denied_schemas(self.resolve_engine(engine))

    def effective_allowed_functions(self, engine: EngineLike = None) -> FrozenSet[str]:
        """
        Motor için geçerli fonksiyon allowlist'i

        Çözüm sırası: motorun kendi anahtarı, "*", "all", tek anahtarlı
        haritanın tek değeri, motor varsayılanı.
        """
        resolved = self.resolve_engine(engine)
        if self.allowed_functions is None:
            return default_allowed_functions(resolved)

        if resolved is not None and resolved.value in self.allowed_functions:
            return self.allowed_functions[resolved.value]
        for key in rules.WILDCARD_FUNCTION_KEYS:
            if key in self.allowed_functions:
                return self.allowed_functions[key]
        if len(self.allowed_functions) == 1:
            return next(iter(self.allowed_functions.values()))
        return default_allowed_functions(resolved)

    def cache_key_data(self, engine: EngineLike = None) -> Dict[str, Any]:
        """
        Derlenmiş çıktı önbellekleri için deterministik anahtar verisi

        Kiracı bilgisi dahil edilmez.
        """
        resolved = self.resolve_engine(engine)
        return {
            "engine": resolved.value if resolved else "",
            "trust": self.trust.value,
            "capabilities": sorted(c.value for c in self.effective_capabilities),
            "allowed_relations": _sorted_or_empty(self.allowed_relations),
            "allowed_functions": sorted(self.effective_allowed_functions(resolved)),
            "allowed_schemas": _sorted_or_empty(self.allowed_schemas),
            "denied_schemas": sorted(self.effective_denied_schemas(resolved)),
        }


def _sorted_or_empty(values: Optional[Iterable[str]]) -> List[str]:
    return sorted(values or ())


def normalize_capabilities(value: Any) -> FrozenSet[Capability]:
    """Yetenek listesini Capability kümesine çevir"""
    if value is None:
        return frozenset()
    if isinstance(value, (str, Capability)):
        value = [value]
    if isinstance(value, dict) or not isinstance(value, Iterable):
        raise PolicyConfigurationError(
            f"capabilities bir liste olmalı (gelen: {type(value).__name__})"
        )

    capabilities = set()
    for item in value:
        text = _normalize_scalar(item, "capabilities")
        if not text:
            continue
        try:
            capabilities.add(Capability(text.lower()))
        except ValueError as e:
            raise PolicyConfigurationError(f"Bilinmeyen yetenek: {item!r}") from e
    return frozenset(capabilities)


def default_denied_schemas(engine: EngineLike) -> FrozenSet[str]:
    return rules.for_engine(rules.DEFAULT_DENIED_SCHEMAS, Engine.parse(engine))


def default_allowed_functions(engine: EngineLike) -> FrozenSet[str]:
    return rules.for_engine(rules.DEFAULT_ALLOWED_FUNCTIONS, Engine.parse(engine))
