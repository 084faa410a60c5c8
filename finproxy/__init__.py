"""
finproxy
Caching, retrying Yahoo Finance proxy with synthetic fallback data
"""

__version__ = "0.1.0"
__author__ = "finproxy Team"

from . import config, data, utils

__all__ = ["config", "data", "utils"]
