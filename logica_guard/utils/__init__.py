"""Yardımcı araçlar modülü"""

from .logger import setup_logger, truncate_sql

__all__ = ["setup_logger", "truncate_sql"]
