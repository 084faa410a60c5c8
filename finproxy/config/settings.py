"""
Configuration management for finproxy
Loads environment variables and provides centralized settings
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional
from dotenv import load_dotenv

# Load environment variables
env_path = Path(__file__).parent.parent.parent / '.env'
load_dotenv(dotenv_path=env_path)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)

@dataclass
class UpstreamConfig:
    """Upstream provider (Yahoo Finance) settings"""
    base_url: str = "https://query1.finance.yahoo.com"
    cookie_url: str = "https://fc.yahoo.com"
    user_agent: str = DEFAULT_USER_AGENT
    timeout_seconds: float = 10.0

    # Quota limits
    calls_per_minute: int = 120

@dataclass
class RetryConfig:
    """Retry/backoff parameters shared by every data kind"""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0
    jitter: float = 2.0
    rate_limit_multiplier: float = 2.0

@dataclass
class CacheConfig:
    """Per-kind cache TTLs (seconds)"""
    price_ttl: int = 60
    history_ttl: int = 3600
    chart_ttl: int = 300
    summary_ttl: int = 900
    search_ttl: int = 300
    trending_ttl: int = 300
    gainers_ttl: int = 300
    earnings_ttl: int = 3600
    insights_ttl: int = 900
    recommendations_ttl: int = 3600
    options_ttl: int = 300
    suggestions_ttl: int = 3600
    default_ttl: int = 60

@dataclass
class SystemConfig:
    """System-level configuration"""
    log_level: str = "INFO"
    coalesce_requests: bool = True
    timezone: str = "America/New_York"

@dataclass
class Config:
    """Main configuration container"""
    upstream: UpstreamConfig
    retry: RetryConfig
    cache: CacheConfig
    system: SystemConfig

    # Runtime overrides
    _overrides: Dict[str, object] = field(default_factory=dict)

    def override(self, key: str, value):
        """Override a configuration value at runtime"""
        self._overrides[key] = value

    def get(self, key: str, default=None):
        """Get configuration value with override support"""
        if key in self._overrides:
            return self._overrides[key]

        # Navigate nested attributes
        parts = key.split('.')
        obj = self
        for part in parts:
            if hasattr(obj, part):
                obj = getattr(obj, part)
            else:
                return default
        return obj

# Singleton instance
_config_instance: Optional[Config] = None

def get_config() -> Config:
    """Get or create the configuration singleton"""
    global _config_instance

    if _config_instance is None:
        upstream_config = UpstreamConfig(
            base_url=os.getenv("YAHOO_BASE_URL", "https://query1.finance.yahoo.com"),
            cookie_url=os.getenv("YAHOO_COOKIE_URL", "https://fc.yahoo.com"),
            user_agent=os.getenv("YAHOO_USER_AGENT", DEFAULT_USER_AGENT),
            timeout_seconds=float(os.getenv("YAHOO_TIMEOUT_SECONDS", "10")),
            calls_per_minute=int(os.getenv("YAHOO_CALLS_PER_MINUTE", "120"))
        )

        retry_config = RetryConfig(
            max_attempts=int(os.getenv("RETRY_MAX_ATTEMPTS", "3")),
            base_delay=float(os.getenv("RETRY_BASE_DELAY", "1.0")),
            max_delay=float(os.getenv("RETRY_MAX_DELAY", "8.0")),
            jitter=float(os.getenv("RETRY_JITTER", "2.0")),
            rate_limit_multiplier=float(os.getenv("RETRY_RATE_LIMIT_MULTIPLIER", "2.0"))
        )

        cache_config = CacheConfig(
            price_ttl=int(os.getenv("CACHE_PRICE_TTL", "60")),
            history_ttl=int(os.getenv("CACHE_HISTORY_TTL", "3600")),
            chart_ttl=int(os.getenv("CACHE_CHART_TTL", "300")),
            summary_ttl=int(os.getenv("CACHE_SUMMARY_TTL", "900")),
            search_ttl=int(os.getenv("CACHE_SEARCH_TTL", "300")),
            trending_ttl=int(os.getenv("CACHE_TRENDING_TTL", "300")),
            gainers_ttl=int(os.getenv("CACHE_GAINERS_TTL", "300")),
            earnings_ttl=int(os.getenv("CACHE_EARNINGS_TTL", "3600")),
            insights_ttl=int(os.getenv("CACHE_INSIGHTS_TTL", "900")),
            recommendations_ttl=int(os.getenv("CACHE_RECOMMENDATIONS_TTL", "3600")),
            options_ttl=int(os.getenv("CACHE_OPTIONS_TTL", "300")),
            suggestions_ttl=int(os.getenv("CACHE_SUGGESTIONS_TTL", "3600")),
            default_ttl=int(os.getenv("CACHE_DEFAULT_TTL", "60"))
        )

        system_config = SystemConfig(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            coalesce_requests=os.getenv("COALESCE_REQUESTS", "true").lower() == "true",
            timezone=os.getenv("TIMEZONE", "America/New_York")
        )

        _config_instance = Config(
            upstream=upstream_config,
            retry=retry_config,
            cache=cache_config,
            system=system_config
        )

    return _config_instance

def reset_config():
    """Reset the configuration singleton (mainly for testing)"""
    global _config_instance
    _config_instance = None
