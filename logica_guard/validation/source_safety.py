"""Kaynak program (logic program) seviyesinde yetenek kontrolü

SQL üretilmeden önce, derleyicinin ürettiği kural ağacı (iç içe dict/list
yapısı) dolaşılır. ``{"call": {"predicate_name": ...}}`` biçimindeki her
çağrı düğümü tehlikeli yerleşikler tablosuyla karşılaştırılır. Ağacın geri
kalanı opak kabul edilir.
"""

from typing import Any, Iterable, Iterator, Optional, Union

from ..enums import Capability, Engine
from ..utils.logger import logger
from . import rules
from .violation import Violation, ViolationReason


def iter_call_predicate_names(node: Any) -> Iterator[str]:
    """Ağaçtaki tüm çağrı düğümlerinin predicate adlarını derinlik öncelikli döndür"""
    stack = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, dict):
            call = current.get("call")
            if isinstance(call, dict):
                name = call.get("predicate_name")
                if isinstance(name, str) and name:
                    yield name
            # Alt düğümleri yazıldıkları sırayla ziyaret et
            stack.extend(reversed(list(current.values())))
        elif isinstance(current, (list, tuple)):
            stack.extend(reversed(current))


def _normalize_capabilities(capabilities: Optional[Iterable[Union[str, Capability]]]) -> set:
    if capabilities is None:
        return set()
    if isinstance(capabilities, (str, Capability)):
        capabilities = [capabilities]

    granted = set()
    for item in capabilities:
        if isinstance(item, Capability):
            granted.add(item)
            continue
        try:
            granted.add(Capability(str(item).strip().lower()))
        except ValueError:
            # Bilinmeyen yetenek hiçbir yerleşiği açmaz
            logger.debug("Ignoring unknown capability", capability=item)
    return granted


class SourceSafetyValidator:
    """Tehlikeli yerleşik çağrılarını yetenek kümesine göre reddeder"""

    @staticmethod
    def validate(
        ast: Any,
        engine: Union[Engine, str, None] = None,
        capabilities: Optional[Iterable[Union[str, Capability]]] = None,
    ) -> None:
        """
        Kural ağacındaki tehlikeli çağrıları doğrula

        Args:
            ast: Derleyicinin ürettiği kural ağacı (dict/list)
            engine: Motor (yalnızca loglama için)
            capabilities: Politikanın verdiği yetenekler

        Raises:
            Violation: forbidden_call
        """
        engine = Engine.parse(engine)
        granted = _normalize_capabilities(capabilities)

        for predicate in iter_call_predicate_names(ast):
            required = rules.FORBIDDEN_CALLS.get(predicate)
            if required is None or required in granted:
                continue

            logger.warning(
                "Forbidden built-in call in source",
                reason=ViolationReason.FORBIDDEN_CALL.value,
                details=predicate,
                required_capability=required.value,
                engine=engine.value if engine else None,
            )
            raise Violation(
                ViolationReason.FORBIDDEN_CALL,
                f"{predicate} çağrısı '{required.value}' yeteneği gerektirir.",
                details=predicate,
            )

        logger.debug("Source safety check passed", engine=engine.value if engine else None)
