"""
Retry controller for upstream calls
Bounded attempts with capped linear backoff plus random jitter
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from ..config import RetryConfig
from ..utils import get_logger
from .base import ErrorKind, NormalizedResponse

logger = get_logger(__name__)

@dataclass
class RetryPolicy:
    """
    Backoff parameters

    Delay before attempt n+1 is min(base_delay * n, max_delay) plus
    uniform(0, jitter), multiplied by rate_limit_multiplier when the failed
    attempt was throttled.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0
    jitter: float = 2.0
    rate_limit_multiplier: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ValueError("delays must not be negative")

    @classmethod
    def from_config(cls, config: RetryConfig) -> 'RetryPolicy':
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            jitter=config.jitter,
            rate_limit_multiplier=config.rate_limit_multiplier
        )

    def max_delay_for(self, attempt_number: int, rate_limited: bool = False) -> float:
        """Upper bound of the wait after a failed attempt"""
        delay = min(self.base_delay * attempt_number, self.max_delay) + self.jitter
        return delay * self.rate_limit_multiplier if rate_limited else delay

    def delay_for(self, attempt_number: int, rng: random.Random, rate_limited: bool = False) -> float:
        delay = min(self.base_delay * attempt_number, self.max_delay)
        delay += rng.uniform(0, self.jitter) if self.jitter else 0.0
        if rate_limited:
            delay *= self.rate_limit_multiplier
        return delay

@dataclass
class FetchAttempt:
    """Record of one failed or empty attempt"""
    attempt_number: int
    max_attempts: int
    last_error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    empty: bool = False
    delay: float = 0.0

@dataclass
class RetryOutcome:
    """Result of one RetryController invocation"""
    response: Optional[NormalizedResponse] = None
    attempts: List[FetchAttempt] = field(default_factory=list)
    attempt_count: int = 0
    exhausted: bool = False
    rejected: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.exhausted and not self.rejected and self.response is not None

    @property
    def last_error(self) -> Optional[str]:
        for attempt in reversed(self.attempts):
            if attempt.last_error:
                return attempt.last_error
        return None

    @property
    def last_error_kind(self) -> Optional[ErrorKind]:
        return self.attempts[-1].error_kind if self.attempts else None

    @property
    def total_delay(self) -> float:
        return sum(a.delay for a in self.attempts)

Operation = Callable[[], Awaitable[NormalizedResponse]]
EmptyPredicate = Callable[[NormalizedResponse], bool]

def _default_is_empty(response: NormalizedResponse) -> bool:
    return response.empty

class RetryController:
    """
    Runs an upstream operation until it succeeds or attempts run out

    The operation returns a NormalizedResponse. A failed response or a
    raised exception counts as a failure; a successful response matching
    the empty predicate is retried as well. The controller never raises:
    callers inspect the RetryOutcome and decide between fallback and error.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None
    ):
        self.policy = policy or RetryPolicy()
        self.sleep = sleep
        self.rng = rng or random.Random()

    async def run(
        self,
        op: Operation,
        is_empty: Optional[EmptyPredicate] = None,
        description: str = "upstream call"
    ) -> RetryOutcome:
        is_empty = is_empty or _default_is_empty
        outcome = RetryOutcome()
        max_attempts = self.policy.max_attempts

        for attempt_number in range(1, max_attempts + 1):
            outcome.attempt_count = attempt_number
            logger.debug(f"Trying {description} (attempt {attempt_number}/{max_attempts})")

            try:
                response = await op()
            except Exception as e:
                # Adapters should not raise; anything that does is treated as transient
                logger.warning(f"{description} raised {type(e).__name__}: {e}")
                response = NormalizedResponse.fail(ErrorKind.TRANSIENT_NETWORK, str(e) or type(e).__name__)

            if response.success and not is_empty(response):
                outcome.response = response
                return outcome

            attempt = FetchAttempt(
                attempt_number=attempt_number,
                max_attempts=max_attempts,
                last_error=response.error_message,
                error_kind=response.error_kind,
                empty=response.success
            )
            outcome.attempts.append(attempt)
            outcome.response = response

            if not response.success and response.error_kind is ErrorKind.INVALID_PARAMETERS:
                logger.warning(f"{description} rejected: {response.error_message}")
                outcome.rejected = True
                return outcome

            if attempt.empty:
                logger.info(f"{description} returned an empty result (attempt {attempt_number}/{max_attempts})")
            else:
                logger.warning(
                    f"{description} failed (attempt {attempt_number}/{max_attempts}): "
                    f"{response.error_message}"
                )

            if attempt_number < max_attempts:
                rate_limited = response.error_kind is ErrorKind.RATE_LIMITED
                attempt.delay = self.policy.delay_for(attempt_number, self.rng, rate_limited)
                logger.debug(f"Waiting {attempt.delay * 1000:.0f}ms before retrying {description}")
                await self.sleep(attempt.delay)

        outcome.exhausted = True
        logger.error(f"{description} exhausted {max_attempts} attempt(s): {outcome.last_error or 'empty result'}")
        return outcome
