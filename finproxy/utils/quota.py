"""
Quota management for upstream rate limiting
Tracks calls per provider so a throttled API is not hammered
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .logger import get_logger

logger = get_logger(__name__)

class QuotaPeriod(Enum):
    """Quota reset periods"""
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"

_PERIOD_SECONDS = {
    QuotaPeriod.MINUTE: 60,
    QuotaPeriod.HOUR: 3600,
    QuotaPeriod.DAY: 86400,
}

@dataclass
class QuotaInfo:
    """Information about a single quota"""
    provider: str
    limit: int
    period: QuotaPeriod
    clock: Callable[[], float] = field(default=time.time, repr=False)
    used: int = 0
    last_reset: float = field(default=0.0)
    last_call: Optional[float] = None

    def __post_init__(self):
        if not self.last_reset:
            self.last_reset = self.clock()

    @property
    def remaining(self) -> int:
        """Calculate remaining quota"""
        return max(0, self.limit - self.used)

    @property
    def usage_percentage(self) -> float:
        """Calculate usage percentage"""
        if self.limit == 0:
            return 0.0
        return (self.used / self.limit) * 100

    @property
    def should_reset(self) -> bool:
        """Check if quota should be reset based on period"""
        return self.clock() - self.last_reset >= _PERIOD_SECONDS[self.period]

    @property
    def seconds_until_reset(self) -> float:
        return max(0.0, _PERIOD_SECONDS[self.period] - (self.clock() - self.last_reset))

    def reset(self):
        """Reset quota counter"""
        self.used = 0
        self.last_reset = self.clock()
        logger.debug(f"Reset quota for {self.provider}: {self.limit} per {self.period.value}")

    def increment(self, count: int = 1):
        """Increment usage counter"""
        self.used += count
        self.last_call = self.clock()

class QuotaExhausted(Exception):
    """Raised when API quota is exhausted"""
    def __init__(self, provider: str, quota_info: QuotaInfo):
        self.provider = provider
        self.quota_info = quota_info
        super().__init__(
            f"Quota exhausted for {provider}: "
            f"{quota_info.used}/{quota_info.limit} per {quota_info.period.value}, "
            f"resets in {quota_info.seconds_until_reset:.0f}s"
        )

class QuotaGuard:
    """
    Manages API quotas across providers
    Kept in memory only; a restart simply starts a fresh window
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.quotas: Dict[str, QuotaInfo] = {}

    def register(self, provider: str, limit: int, period: QuotaPeriod = QuotaPeriod.MINUTE):
        """Start tracking a provider"""
        self.quotas[provider] = QuotaInfo(
            provider=provider,
            limit=limit,
            period=period,
            clock=self.clock
        )
        logger.info(f"Tracking quota for {provider}: {limit} per {period.value}")

    def check_quota(self, provider: str, count: int = 1) -> bool:
        """
        Check if quota is available for provider

        Args:
            provider: API provider name
            count: Number of calls to make

        Returns:
            True if quota available, False otherwise
        """
        quota = self.quotas.get(provider)
        if quota is None:
            return True

        if quota.should_reset:
            quota.reset()

        return quota.remaining >= count

    def consume_quota(self, provider: str, count: int = 1, endpoint: str = ""):
        """
        Consume quota for a provider

        Args:
            provider: API provider name
            count: Number of calls made
            endpoint: Optional endpoint identifier for logging

        Raises:
            QuotaExhausted: If quota would be exceeded
        """
        quota = self.quotas.get(provider)
        if quota is None:
            return

        if quota.should_reset:
            quota.reset()

        if quota.remaining < count:
            logger.warning(f"Refusing {endpoint or 'call'} for {provider}: quota exhausted")
            raise QuotaExhausted(provider, quota)

        quota.increment(count)

        # Log if high usage
        if quota.usage_percentage > 90:
            logger.warning(
                f"High quota usage for {provider}: "
                f"{quota.usage_percentage:.1f}% "
                f"({quota.remaining} remaining)"
            )

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        """Get current quota status for all providers"""
        status = {}
        for provider, quota in self.quotas.items():
            if quota.should_reset:
                quota.reset()

            status[provider] = {
                'used': quota.used,
                'limit': quota.limit,
                'remaining': quota.remaining,
                'percentage': round(quota.usage_percentage, 1),
                'period': quota.period.value,
                'last_call': (
                    datetime.fromtimestamp(quota.last_call).isoformat()
                    if quota.last_call else None
                )
            }
        return status

    def reset_all(self):
        """Force reset all quotas (useful for testing)"""
        for quota in self.quotas.values():
            quota.reset()
