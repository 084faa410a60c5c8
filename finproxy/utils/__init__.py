"""
Utility modules for finproxy
"""

from .logger import setup_logger, get_logger, log_performance, log_async_performance
from .quota import (
    QuotaGuard,
    QuotaInfo,
    QuotaPeriod,
    QuotaExhausted
)

__all__ = [
    "setup_logger",
    "get_logger",
    "log_performance",
    "log_async_performance",
    "QuotaGuard",
    "QuotaInfo",
    "QuotaPeriod",
    "QuotaExhausted"
]
