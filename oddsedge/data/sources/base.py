"""
Abstract base class for odds feeds.

A feed turns some upstream (a REST poll, a push webhook, a file drop) into
batches of RawQuote. The base class wraps each fetch with retry and
exponential backoff, stops calling an upstream that keeps failing, and
keeps a FeedHealth record the scheduler and health endpoint can report.
"""
import asyncio
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from loguru import logger

from oddsedge.data.quote_store import QuoteStore, RawQuote


def _now() -> datetime:
    return datetime.now(timezone.utc)


class FeedStatus(str, Enum):
    """Health status of a feed."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    DISABLED = "disabled"


@dataclass
class FeedHealth:
    """Health information for a feed."""

    source_name: str
    status: FeedStatus
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None
    latency_ms: Optional[float] = None
    quotes_accepted: int = 0


@dataclass
class RetryConfig:
    """Backoff between attempts of a single fetch."""

    max_attempts: int = 3
    initial_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        delay = min(
            self.initial_delay_seconds * self.exponential_base ** (attempt - 1),
            self.max_delay_seconds,
        )
        return delay * (0.5 + random.random()) if self.jitter else delay


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_timeout_seconds: int = 60
    half_open_max_calls: int = 3


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class CircuitBreaker:
    """
    Failure counter that cuts off a feed after repeated failed fetches.

    OPEN for ``recovery_timeout_seconds`` after ``failure_threshold``
    failures, then HALF_OPEN: calls are let through again and
    ``half_open_max_calls`` successes close it.
    """

    def __init__(self, config: CircuitBreakerConfig, name: str):
        self.config = config
        self.state = CircuitState.CLOSED
        self.failures = 0
        self.half_open_successes = 0
        self.opened_at: Optional[datetime] = None
        self._logger = logger.bind(source=name)

    def allows_call(self) -> bool:
        if self.state != CircuitState.OPEN:
            return True
        waited = (_now() - self.opened_at).total_seconds() if self.opened_at else 0.0
        if waited < self.config.recovery_timeout_seconds:
            return False
        self.state = CircuitState.HALF_OPEN
        self.half_open_successes = 0
        self._logger.info("Circuit breaker half-open, probing feed")
        return True

    def record_success(self) -> None:
        if self.state != CircuitState.HALF_OPEN:
            self.failures = 0
            return
        self.half_open_successes += 1
        if self.half_open_successes >= self.config.half_open_max_calls:
            self.reset()
            self._logger.info("Circuit breaker closed after recovery")

    def record_failure(self) -> bool:
        """Count a failure. Returns True if the breaker is now open."""
        self.failures += 1
        if self.state == CircuitState.HALF_OPEN or self.failures >= self.config.failure_threshold:
            if self.state != CircuitState.OPEN:
                self._logger.error(f"Circuit breaker opened after {self.failures} failures")
            self.state = CircuitState.OPEN
            self.opened_at = _now()
        return self.state == CircuitState.OPEN

    def reset(self) -> None:
        self.state = CircuitState.CLOSED
        self.failures = 0
        self.half_open_successes = 0
        self.opened_at = None


class DataSourceError(Exception):
    """Base exception for feed errors."""

    def __init__(
        self,
        message: str,
        source_name: str,
        original_error: Optional[Exception] = None,
        retry_allowed: bool = True,
    ):
        super().__init__(message)
        self.source_name = source_name
        self.original_error = original_error
        self.retry_allowed = retry_allowed


class RateLimitError(DataSourceError):
    """The upstream asked us to slow down."""

    def __init__(self, source_name: str, retry_after_seconds: Optional[int] = None):
        super().__init__(f"Rate limit exceeded for {source_name}", source_name)
        self.retry_after_seconds = retry_after_seconds


class AuthenticationError(DataSourceError):
    """The upstream rejected our credentials. Never retried."""

    def __init__(self, source_name: str, message: str = "Authentication failed"):
        super().__init__(message, source_name, retry_allowed=False)


class BaseQuoteFeed(ABC):
    """
    Base class for feeds that produce raw quotes.

    Subclasses implement ``_fetch_impl`` (one attempt, no retry) and
    ``health_check``. Callers use ``fetch()`` or ``poll_into(store)``.
    """

    def __init__(
        self,
        source_name: str,
        enabled: bool = True,
        retry_config: Optional[RetryConfig] = None,
        circuit_breaker_config: Optional[CircuitBreakerConfig] = None,
    ):
        self.source_name = source_name
        self.enabled = enabled
        self.retry_config = retry_config or RetryConfig()
        self.circuit_breaker_config = circuit_breaker_config or CircuitBreakerConfig()
        self._breaker = CircuitBreaker(self.circuit_breaker_config, source_name)
        self._health = FeedHealth(
            source_name=source_name,
            status=FeedStatus.HEALTHY if enabled else FeedStatus.DISABLED,
        )
        self.logger = logger.bind(source=source_name)

    @property
    def is_available(self) -> bool:
        return self.enabled and self._breaker.allows_call()

    @abstractmethod
    async def _fetch_impl(self) -> list[RawQuote]:
        """One fetch attempt."""

    @abstractmethod
    async def health_check(self) -> FeedHealth:
        """Lightweight connectivity check."""

    async def close(self) -> None:
        """Release network resources. Override when the feed holds any."""

    async def fetch(self) -> list[RawQuote]:
        """
        Fetch raw quotes, retrying transient errors.

        Raises:
            DataSourceError: when the feed is unavailable or every attempt failed
        """
        if not self.is_available:
            raise DataSourceError(
                f"Feed {self.source_name} is not available",
                self.source_name,
                retry_allowed=False,
            )

        started = _now()
        attempts = self.retry_config.max_attempts
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                quotes = await self._fetch_impl()
            except DataSourceError as e:
                self.logger.warning(f"Fetch attempt {attempt}/{attempts} failed: {e}")
                if not e.retry_allowed:
                    self._record_failure(str(e))
                    raise
                last_error = e
            except Exception as e:
                self.logger.exception(f"Unexpected error on fetch attempt {attempt}/{attempts}")
                last_error = e
            else:
                self._record_success((_now() - started).total_seconds() * 1000)
                return quotes

            if attempt < attempts:
                delay = self.retry_config.delay(attempt)
                if isinstance(last_error, RateLimitError) and last_error.retry_after_seconds:
                    delay = max(delay, float(last_error.retry_after_seconds))
                self.logger.info(f"Retrying in {delay:.2f} seconds...")
                await asyncio.sleep(delay)

        self._record_failure(str(last_error))
        raise DataSourceError(
            f"All {attempts} attempts failed for {self.source_name}",
            self.source_name,
            original_error=last_error,
            retry_allowed=False,
        )

    async def poll_into(self, store: QuoteStore) -> int:
        """Fetch one batch and ingest it. Returns the number of accepted quotes."""
        raws = await self.fetch()
        accepted = store.ingest_many(raws)
        self._health.quotes_accepted += accepted
        self.logger.info(f"Ingested {accepted}/{len(raws)} quotes")
        return accepted

    def _record_success(self, latency_ms: float) -> None:
        self._breaker.record_success()
        health = self._health
        health.last_success = _now()
        health.latency_ms = latency_ms
        health.consecutive_failures = 0
        health.error_message = None
        health.status = FeedStatus.HEALTHY

    def _record_failure(self, error_message: str) -> None:
        health = self._health
        health.last_failure = _now()
        health.consecutive_failures += 1
        health.error_message = error_message
        if self._breaker.record_failure():
            health.status = FeedStatus.UNHEALTHY
        elif health.consecutive_failures >= 2:
            health.status = FeedStatus.DEGRADED

    def get_health(self) -> FeedHealth:
        return self._health

    def reset_circuit_breaker(self) -> None:
        """Manually close the breaker, e.g. after rotating an API key."""
        self._breaker.reset()
        self._health.status = FeedStatus.HEALTHY if self.enabled else FeedStatus.DISABLED
        self._health.consecutive_failures = 0
        self._health.error_message = None
        self.logger.info("Circuit breaker manually reset")
