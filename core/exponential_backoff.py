"""
Exponential backoff with jitter for fetch and render retries.
Provides error-specific wait strategies and per-identifier retry state.
"""

import asyncio
import random
from typing import Awaitable, Callable, Dict, List, Optional, Any
from datetime import datetime
from dataclasses import dataclass, field
from enum import Enum
from utils.logger import get_logger

logger = get_logger(__name__)


RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504, 520, 521, 522, 523, 524})
RATE_LIMIT_STATUS_CODES = frozenset({429, 503})


class ErrorType(Enum):
    """Types of errors for specific retry strategies."""

    RATE_LIMIT = "rate_limit"
    HTTP_5XX = "http_5xx"
    TIMEOUT = "timeout"
    NETWORK = "network"
    CHALLENGE = "challenge"
    FATAL = "fatal"


RETRYABLE_ERROR_TYPES = frozenset(
    {
        ErrorType.RATE_LIMIT,
        ErrorType.HTTP_5XX,
        ErrorType.TIMEOUT,
        ErrorType.NETWORK,
        ErrorType.CHALLENGE,
    }
)


def classify_status(status_code: int) -> ErrorType:
    """Map an HTTP status to the retry strategy it falls under."""
    if status_code in RATE_LIMIT_STATUS_CODES:
        return ErrorType.RATE_LIMIT
    if status_code in RETRYABLE_STATUS_CODES:
        return ErrorType.HTTP_5XX
    return ErrorType.FATAL


@dataclass
class RetryState:
    """State tracking for retry attempts."""

    identifier: str
    attempt_count: int = 0
    first_failure: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    failure_types: List[str] = field(default_factory=list)
    total_delay: float = 0.0
    consecutive_failures: int = 0


class ExponentialBackoff:
    """Exponential backoff: ``base^attempt + jitter`` with per-error adjustments.

    ``attempt`` is the 1-based number of the attempt that just failed.
    Rate-limited responses wait ``base^attempt + rate_limit_floor`` instead of a
    random jitter; challenge pages wait twice the standard delay; network
    failures wait at least ``network_min_delay``.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        rng: Optional[random.Random] = None,
    ):
        config = config or {}
        self.config = config
        self.enabled = config.get("enabled", True)
        self.base = config.get("base", 2.0)
        self.max_attempts = config.get("max_attempts", 5)
        self.jitter_min = config.get("jitter_min_seconds", 1.0)
        self.jitter_max = config.get("jitter_max_seconds", 3.0)
        self.rate_limit_floor = config.get("rate_limit_floor_seconds", 5.0)
        self.challenge_multiplier = config.get("challenge_multiplier", 2.0)
        self.network_min_delay = config.get("network_min_delay_seconds", 0.0)
        self.max_delay = config.get("max_delay_seconds", 300.0)
        self.max_tracked = config.get("max_tracked_identifiers", 1000)

        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()

        # State tracking
        self.retry_states: Dict[str, RetryState] = {}
        self.global_stats = {
            "total_retries": 0,
            "total_delays": 0.0,
        }

        logger.debug(
            f"ExponentialBackoff initialized: base={self.base}, max_attempts={self.max_attempts}"
        )

    def calculate_delay(self, attempt: int, error_type: Optional[ErrorType] = None) -> float:
        """
        Calculate the wait before the next attempt.

        Args:
            attempt: Number of the attempt that just failed (1-based)
            error_type: Type of error for specific strategy

        Returns:
            Delay in seconds
        """
        if not self.enabled:
            return 0.0

        exponential = self.base ** attempt

        if error_type == ErrorType.RATE_LIMIT:
            delay = exponential + self.rate_limit_floor
        else:
            delay = exponential + self._rng.uniform(self.jitter_min, self.jitter_max)

        if error_type == ErrorType.CHALLENGE:
            delay *= self.challenge_multiplier
        elif error_type in (ErrorType.NETWORK, ErrorType.TIMEOUT):
            delay = max(delay, self.network_min_delay)

        delay = min(delay, self.max_delay)
        logger.debug(f"Calculated delay for attempt {attempt}: {delay:.2f}s")
        return delay

    def should_retry(self, attempt: int, error_type: ErrorType) -> bool:
        """
        Retry only retryable errors, and never past ``max_attempts`` attempts in total.

        Args:
            attempt: Number of attempts made so far (1-based)
            error_type: Type of error

        Returns:
            True if another attempt is allowed
        """
        if not self.enabled:
            return False
        if error_type not in RETRYABLE_ERROR_TYPES:
            return False
        return attempt < self.max_attempts

    def track_failure(self, identifier: str, error_type: ErrorType) -> None:
        state = self._get_retry_state(identifier)

        now = datetime.now()
        if state.first_failure is None:
            state.first_failure = now

        state.last_failure = now
        state.attempt_count += 1
        state.consecutive_failures += 1
        state.failure_types.append(f"{now.isoformat()}:{error_type.value}")
        state.failure_types = state.failure_types[-20:]

        logger.debug(
            f"Tracked failure for {identifier}: {error_type.value} (attempt {state.attempt_count})"
        )

    def track_success(self, identifier: str) -> None:
        self.retry_states.pop(identifier, None)

    async def wait_with_backoff(
        self, identifier: str, attempt: int, error_type: Optional[ErrorType] = None
    ) -> float:
        """
        Calculate delay and wait asynchronously.

        Returns:
            Actual delay time waited
        """
        delay = self.calculate_delay(attempt, error_type)

        if delay > 0:
            state = self._get_retry_state(identifier)
            state.total_delay += delay
            self.global_stats["total_delays"] += delay
            self.global_stats["total_retries"] += 1

            logger.debug(f"Waiting {delay:.2f}s before retry for {identifier}")
            await self._sleep(delay)

        return delay

    def get_global_statistics(self) -> Dict[str, Any]:
        return {
            "total_retries": self.global_stats["total_retries"],
            "total_delays": self.global_stats["total_delays"],
            "total_identifiers": len(self.retry_states),
        }

    def _get_retry_state(self, identifier: str) -> RetryState:
        if identifier not in self.retry_states:
            # oldest entries go first once the cap is reached
            while self.retry_states and len(self.retry_states) >= self.max_tracked:
                self.retry_states.pop(next(iter(self.retry_states)))
            self.retry_states[identifier] = RetryState(identifier=identifier)
        return self.retry_states[identifier]
