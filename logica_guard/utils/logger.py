"""Loglama yapılandırması"""

import logging
import structlog
from typing import Any
from ..config import settings


def setup_logger(log_level: str = "INFO", renderer: str = "console") -> Any:
    """
    Yapılandırılmış logger oluştur

    Args:
        log_level: Log seviyesi (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        renderer: "console" (geliştirme) veya "json" (denetim kayıtları için)

    Returns:
        Yapılandırılmış logger instance
    """
    # Standart logging konfigürasyonu
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
    )

    if renderer == "json":
        final_processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=True)

    # Structlog konfigürasyonu
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            final_processor,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger("logica_guard")


def truncate_sql(sql: str, limit: int = 200) -> str:
    """Log kayıtları için SQL metnini kısalt"""
    sql = sql or ""
    if len(sql) <= limit:
        return sql
    return sql[:limit] + "..."


# Global logger instance
logger = setup_logger(settings.log_level, settings.log_renderer)
