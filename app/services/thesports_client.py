import asyncio
import httpx
import logging
import time
from datetime import timedelta
from typing import Any, Callable

from aiobreaker import CircuitBreaker, CircuitBreakerError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from app.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# Exceptions to retry on
RETRYABLE_EXCEPTIONS = (
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
)

# Body-level codes the provider uses for success
SUCCESS_CODES = {0, 200}
RATE_LIMIT_CODE = 429


class ProviderError(Exception):
    """HTTP or API-level failure reported by TheSports."""

    def __init__(self, message: str, code: int | None = None, path: str | None = None):
        super().__init__(message)
        self.code = code
        self.path = path


class RateLimitError(ProviderError):
    pass


class CircuitOpenError(ProviderError):
    pass


def raise_for_provider_error(payload: Any, path: str | None = None) -> None:
    """
    Raise if a response body carries an error signal.

    The provider reports failures either as an ``err`` string or as a
    numeric ``code`` outside {0, 200} with a ``msg``.
    """
    if not isinstance(payload, dict):
        return

    err = payload.get("err")
    if err:
        if "too many requests" in str(err).lower():
            raise RateLimitError(str(err), code=RATE_LIMIT_CODE, path=path)
        raise ProviderError(str(err), path=path)

    code = payload.get("code")
    if code is None:
        return
    try:
        code = int(code)
    except (TypeError, ValueError):
        return
    if code in SUCCESS_CODES:
        return

    msg = str(payload.get("msg") or f"provider error code {code}")
    if code == RATE_LIMIT_CODE or "too many requests" in msg.lower():
        raise RateLimitError(msg, code=code, path=path)
    raise ProviderError(msg, code=code, path=path)


def circuit_state_name(state: Any) -> str:
    """``CLOSED``/``OPEN``/``HALF_OPEN`` for a breaker state."""
    return str(getattr(state, "name", state)).upper().replace("-", "_")


def build_circuit_breaker(
    fail_max: int | None = None,
    reset_timeout_seconds: float | None = None,
) -> CircuitBreaker:
    return CircuitBreaker(
        fail_max=fail_max or settings.thesports_circuit_failure_threshold,
        timeout_duration=timedelta(
            seconds=(
                reset_timeout_seconds
                if reset_timeout_seconds is not None
                else settings.thesports_circuit_cooldown_seconds
            )
        ),
        name="thesports",
    )


class TokenBucket:
    """Token bucket limiter: ``rate`` tokens per second, up to ``capacity``."""

    def __init__(
        self,
        rate: float,
        capacity: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rate = rate
        self.capacity = capacity
        self._clock = clock
        self._tokens = float(capacity)
        self._updated = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.rate)
        self._updated = now

    @property
    def tokens(self) -> float:
        self._refill()
        return self._tokens

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
                await asyncio.sleep((1 - self._tokens) / self.rate)


class TheSportsClient:
    """Client for TheSports football API (https://api.thesports.com/v1/football)"""

    def __init__(
        self,
        base_url: str | None = None,
        user: str | None = None,
        secret: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        rate_limiter: TokenBucket | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ):
        self.base_url = (base_url or settings.thesports_base_url).rstrip("/")
        self.user = user if user is not None else settings.thesports_user
        self.secret = secret if secret is not None else settings.thesports_secret
        self.timeout = timeout or settings.thesports_timeout_seconds
        self._transport = transport
        self.rate_limiter = rate_limiter or TokenBucket(
            settings.thesports_rate_per_second, settings.thesports_burst
        )
        self.circuit_breaker = circuit_breaker or build_circuit_breaker()
        self.request_count = 0
        self.error_count = 0
        self.circuit_open_count = 0
        self.last_request_time: float | None = None

    @property
    def initialized(self) -> bool:
        return bool(self.user and self.secret)

    @property
    def circuit_state(self) -> str:
        return circuit_state_name(self.circuit_breaker.current_state)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=10),
        retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _make_request(self, url: str, params: dict[str, Any]) -> httpx.Response:
        """
        Make a GET request with automatic retry on transient failures.

        Retries up to 3 times with exponential backoff (0.5s, 1s, 2s... capped
        at 10s) on connection timeouts, read timeouts, and connection errors.
        """
        async with httpx.AsyncClient(
            follow_redirects=True, transport=self._transport
        ) as client:
            response = await client.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response

    def _record_failure(self, state_before: str) -> None:
        self.error_count += 1
        if self.circuit_state == "OPEN" and state_before != "OPEN":
            self.circuit_open_count += 1
            logger.warning(
                f"TheSports circuit opened after {self.circuit_breaker.fail_counter} consecutive failures"
            )

    @staticmethod
    def _translate(error: BaseException, path: str) -> ProviderError:
        if isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
            if status == RATE_LIMIT_CODE:
                return RateLimitError("Too many requests", code=status, path=path)
            return ProviderError(f"HTTP {status} for {path}", code=status, path=path)
        return ProviderError(f"Request to {path} failed: {error!r}", path=path)

    async def get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        GET an endpoint and return the decoded JSON body.

        Body-level error signals (``err`` / ``code``) are returned untouched;
        callers check them with ``raise_for_provider_error``.

        Raises:
            CircuitOpenError: Circuit is open
            RateLimitError: HTTP 429
            ProviderError: Any other HTTP or transport failure
        """
        await self.rate_limiter.acquire()

        query = {"user": self.user, "secret": self.secret}
        if params:
            query.update({k: v for k, v in params.items() if v is not None})

        state_before = self.circuit_state
        self.request_count += 1
        self.last_request_time = time.time()
        try:
            response = await self.circuit_breaker.call_async(
                self._make_request, f"{self.base_url}{path}", query
            )
        except CircuitBreakerError as e:
            cause = e.__cause__ or e.__context__
            if isinstance(cause, httpx.HTTPError):
                # This request's failure tripped the breaker
                self._record_failure(state_before)
                raise self._translate(cause, path) from cause
            raise CircuitOpenError(f"Circuit breaker is open: {e}", path=path) from e
        except httpx.HTTPError as e:
            self._record_failure(state_before)
            raise self._translate(e, path) from e

        if state_before != "CLOSED":
            logger.info("TheSports circuit closed after successful trial request")
        try:
            return response.json()
        except ValueError as e:
            self.error_count += 1
            raise ProviderError(f"Invalid JSON from {path}", path=path) from e

    def health(self) -> dict[str, Any]:
        """Coarse health snapshot for operational visibility."""
        return {
            "initialized": self.initialized,
            "circuit_state": self.circuit_state,
            "rate_limiter": {"tokens": round(self.rate_limiter.tokens, 2)},
            "metrics": {
                "request_count": self.request_count,
                "error_count": self.error_count,
                "circuit_open_count": self.circuit_open_count,
                "circuit_fail_counter": self.circuit_breaker.fail_counter,
                "last_request_time": self.last_request_time,
            },
        }


# Singleton instance
_thesports_client: TheSportsClient | None = None


def get_thesports_client() -> TheSportsClient:
    global _thesports_client
    if _thesports_client is None:
        _thesports_client = TheSportsClient()
    return _thesports_client
