"""Rapor parametresi (flag) doğrulaması

Güvenilmeyen raporlar son kullanıcıdan flag alır. Flag'ler derleyiciye
metin olarak iletilir; bu modül varsayılanları birleştirir, şema varsa
her değeri tipine göre doğrular ve normalize eder.

Desteklenen şema tipleri: ``integer``, ``float``, ``string``, ``enum``,
``date``.
"""

from datetime import date, datetime
from typing import Any, Dict, Mapping, Optional

from .utils.logger import logger


class FlagValidationError(ValueError):
    """Geçersiz flag değeri veya flag şeması"""
    pass


def _normalize_mapping(value: Any, what: str = "flags") -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise FlagValidationError(
            f"{what} bir JSON nesnesi (dict) olmalı (gelen: {type(value).__name__})"
        )
    return {str(key): item for key, item in value.items()}


def _normalize_untyped_value(key: str, value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if value is None:
        raise FlagValidationError(
            f"flags[{key}] null olamaz (boş string kullanın)"
        )
    raise FlagValidationError(
        f"flags[{key}] yalnızca metin/sayı/bool olabilir (gelen: {type(value).__name__})"
    )


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"tam sayı bekleniyordu: {value!r}")
    if isinstance(value, str):
        return int(value.strip())
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"tam sayı bekleniyordu: {value!r}")
    return int(value)


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"sayı bekleniyordu: {value!r}")
    return float(value)


def _check_bounds(key: str, number, spec: Dict[str, Any], convert) -> None:
    minimum = spec.get("min")
    maximum = spec.get("max")
    if minimum is not None and number < convert(minimum):
        raise ValueError(f"flags[{key}] >= {minimum} olmalı")
    if maximum is not None and number > convert(maximum):
        raise ValueError(f"flags[{key}] <= {maximum} olmalı")


def _validate_typed_value(key: str, spec: Any, value: Any) -> str:
    spec = _normalize_mapping(spec, f"flags_schema[{key}]")
    flag_type = str(spec.get("type") or "").strip()
    if not flag_type:
        raise FlagValidationError(f"flags_schema[{key}] için type eksik")

    try:
        if flag_type == "integer":
            number = _to_int(value)
            _check_bounds(key, number, spec, _to_int)
            return str(number)

        if flag_type == "float":
            number = _to_float(value)
            _check_bounds(key, number, spec, _to_float)
            return str(number)

        if flag_type == "string":
            text = str(value)
            min_length = spec.get("min_length")
            max_length = spec.get("max_length")
            if min_length is not None and len(text) < _to_int(min_length):
                raise ValueError(f"flags[{key}] çok kısa")
            if max_length is not None and len(text) > _to_int(max_length):
                raise ValueError(f"flags[{key}] çok uzun")
            return text

        if flag_type == "enum":
            values = spec.get("values") or []
            if isinstance(values, str):
                values = [values]
            allowed = [str(v) for v in values]
            if not allowed:
                raise FlagValidationError(f"flags_schema[{key}].values verilmeli")
            text = str(value)
            if text not in allowed:
                raise ValueError(f"flags[{key}] şunlardan biri olmalı: {allowed}")
            return text

        if flag_type == "date":
            if isinstance(value, datetime):
                return value.date().isoformat()
            if isinstance(value, date):
                return value.isoformat()
            return date.fromisoformat(str(value).strip()).isoformat()

    except FlagValidationError:
        raise
    except (TypeError, ValueError) as e:
        raise FlagValidationError(f"Geçersiz flag {key}: {e}") from e

    raise FlagValidationError(f"flags_schema[{key}] için bilinmeyen tip: {flag_type}")


def normalize_flags(
    flags: Optional[Mapping[str, Any]],
    flags_schema: Optional[Mapping[str, Any]] = None,
    default_flags: Optional[Mapping[str, Any]] = None,
) -> Dict[str, str]:
    """
    Flag'leri varsayılanlarla birleştir, doğrula ve metne çevir

    Args:
        flags: Kullanıcının gönderdiği flag'ler
        flags_schema: Flag adı -> {"type": ..., ...} şeması (None: şemasız)
        default_flags: Varsayılan flag değerleri

    Returns:
        Flag adı -> normalize edilmiş metin değer

    Raises:
        FlagValidationError: Bilinmeyen flag, geçersiz değer veya şema hatası
    """
    merged = _normalize_mapping(default_flags)
    merged.update(_normalize_mapping(flags))

    if flags_schema is None:
        return {key: _normalize_untyped_value(key, value) for key, value in merged.items()}

    schema = _normalize_mapping(flags_schema, "flags_schema")
    unknown = sorted(set(merged) - set(schema))
    if unknown:
        logger.warning("Unknown report flags rejected", flags=unknown)
        raise FlagValidationError(f"Bilinmeyen flag'ler: {', '.join(unknown)}")

    normalized: Dict[str, str] = {}
    for key, spec in schema.items():
        if key in merged:
            normalized[key] = _validate_typed_value(key, spec, merged[key])
    return normalized
