"""Rate-limited HTTP client shared by all provider adapters.

Wraps ``httpx.Client`` with the retry policy every provider call goes
through:

- 429 responses sleep for ``Retry-After`` (or a default) and retry without
  using up an error-retry slot.
- 5xx responses and network failures back off exponentially, capped at
  ``max_delay``, for at most ``max_retries`` retries.
- Validation and auth failures raise immediately.
- The whole loop is bounded by ``max_iterations`` requests.
- Every attempt, retried or not, is reported to the optional ``on_call``
  listener.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import httpx

from config import settings
from integrations.exceptions import (
    ProviderAPIError,
    ProviderAuthError,
    ProviderConnectionError,
    ProviderError,
    ProviderRateLimitError,
    ProviderValidationError,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_HEADERS = {
    "X-MinLimit-Remaining": "minute_remaining",
    "X-DayLimit-Remaining": "day_remaining",
    "X-AppMinLimit-Remaining": "app_minute_remaining",
}

ErrorParser = Callable[[httpx.Response], tuple[str, str | None, dict]]


@dataclass
class ApiCall:
    """One HTTP attempt as reported to a call listener.

    ``status_code`` is None when no response arrived (network failure).
    """

    provider_name: str
    method: str
    endpoint: str
    status_code: int | None
    duration_ms: int
    error: str | None = None
    rate_limit_remaining: int | None = None
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def success(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300


CallListener = Callable[[ApiCall], None]


def parse_retry_after(value: str | None, default: float) -> float:
    """Parse a ``Retry-After`` header (delta-seconds or HTTP date).

    Args:
        value: Raw header value, or None when absent.
        default: Seconds to use when the header is missing or unparseable.

    Returns:
        Non-negative number of seconds to wait.
    """
    if not value:
        return default
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return default
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max((retry_at - datetime.now(timezone.utc)).total_seconds(), 0.0)


def default_error_parser(response: httpx.Response) -> tuple[str, str | None, dict]:
    """Extract (message, error_code, details) from a JSON or text error body.

    Understands the OAuth error form ``{error, error_description}`` and
    falls back to a generic ``message`` key or the raw text.
    """
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:500] or response.reason_phrase, None, {}

    if not isinstance(body, dict):
        return str(body)[:500], None, {"body": body}

    if "error" in body and isinstance(body["error"], str):
        message = body.get("error_description") or body["error"]
        return message, body["error"], body
    message = body.get("message") or body.get("Message") or response.reason_phrase
    code = body.get("code") or body.get("errorCode")
    return str(message), code, body


class RateLimitedClient:
    """HTTP client with Retry-After handling and bounded exponential backoff.

    Example:
        with RateLimitedClient("xero", base_url=API_BASE, headers=headers) as client:
            data = client.get_json("/Accounts")
    """

    def __init__(
        self,
        provider_name: str,
        base_url: str = "",
        *,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
        default_retry_after: float | None = None,
        max_iterations: int = 10,
        sleep: Callable[[float], None] = time.sleep,
        transport: httpx.BaseTransport | None = None,
        error_parser: ErrorParser = default_error_parser,
        on_call: CallListener | None = None,
    ):
        self.provider_name = provider_name
        self.max_retries = settings.HTTP_MAX_RETRIES if max_retries is None else max_retries
        self.base_delay = settings.HTTP_BASE_DELAY_SECONDS if base_delay is None else base_delay
        self.max_delay = settings.HTTP_MAX_DELAY_SECONDS if max_delay is None else max_delay
        self.default_retry_after = (
            settings.HTTP_DEFAULT_RETRY_AFTER_SECONDS
            if default_retry_after is None
            else default_retry_after
        )
        self.max_iterations = max_iterations
        self._sleep = sleep
        self._error_parser = error_parser
        self._on_call = on_call
        self._client = httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=settings.HTTP_TIMEOUT_SECONDS if timeout is None else timeout,
            transport=transport,
        )

        self._stats_lock = threading.Lock()
        self.delays: list[float] = []
        self.api_calls = 0
        self.rate_limit: dict[str, int | str] = {}

    def __enter__(self) -> "RateLimitedClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def get_json(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs).json()

    def post_json(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs).json()

    def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a request, retrying according to the client's policy.

        Returns:
            The first 2xx response.

        Raises:
            ProviderAuthError: 401/403.
            ProviderValidationError: 400/422.
            ProviderRateLimitError: Still rate limited when the loop ran out.
            ProviderConnectionError: Network failures beyond the retry budget.
            ProviderAPIError: Other non-2xx responses.
        """
        failures = 0
        last_error: ProviderError | None = None

        for iteration in range(1, self.max_iterations + 1):
            is_last = iteration == self.max_iterations
            started = time.monotonic()
            try:
                response = self._client.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                self._notify(method, url, started, None, str(exc))
                failures += 1
                last_error = ProviderConnectionError(
                    f"{self.provider_name} connection failed: {exc}",
                    provider_name=self.provider_name,
                )
                if failures > self.max_retries or is_last:
                    raise last_error from exc
                self._backoff(failures, method, url, str(exc))
                continue

            self._record_response(response)
            self._notify(
                method, url, started, response.status_code,
                None if response.is_success else f"HTTP {response.status_code}",
            )

            if response.is_success:
                return response

            if response.status_code == 429:
                delay = parse_retry_after(
                    response.headers.get("Retry-After"), self.default_retry_after
                )
                last_error = ProviderRateLimitError(
                    f"{self.provider_name} rate limit exceeded",
                    provider_name=self.provider_name,
                    retry_after=delay,
                    details={"problem": response.headers.get("X-Rate-Limit-Problem")},
                )
                if is_last:
                    break
                logger.warning(
                    "%s rate limited on %s %s, waiting %.1fs",
                    self.provider_name, method, _path(url), delay,
                )
                self._wait(delay)
                continue

            error = self._build_error(response)
            if not error.retriable:
                raise error

            failures += 1
            last_error = error
            if failures > self.max_retries or is_last:
                raise error
            self._backoff(failures, method, url, f"HTTP {response.status_code}")

        if last_error is None:
            raise ProviderAPIError(
                f"{self.provider_name} request was never attempted",
                provider_name=self.provider_name,
            )
        raise last_error

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _backoff(self, failures: int, method: str, url: str, reason: str) -> None:
        delay = min(self.base_delay * (2 ** (failures - 1)), self.max_delay)
        logger.warning(
            "%s request %s %s failed (attempt %d/%d), retrying in %.1fs: %s",
            self.provider_name, method, _path(url), failures,
            self.max_retries + 1, delay, reason,
        )
        self._wait(delay)

    def _wait(self, delay: float) -> None:
        with self._stats_lock:
            self.delays.append(delay)
        self._sleep(delay)

    def _record_response(self, response: httpx.Response) -> None:
        with self._stats_lock:
            self.api_calls += 1
            for header, key in RATE_LIMIT_HEADERS.items():
                raw = response.headers.get(header)
                if raw is None:
                    continue
                try:
                    self.rate_limit[key] = int(raw)
                except ValueError:
                    continue

    def _notify(
        self,
        method: str,
        url: str,
        started: float,
        status_code: int | None,
        error: str | None,
    ) -> None:
        if self._on_call is None:
            return
        remaining = self.rate_limit.get("minute_remaining")
        self._on_call(ApiCall(
            provider_name=self.provider_name,
            method=method,
            endpoint=_path(url)[:500],
            status_code=status_code,
            duration_ms=int((time.monotonic() - started) * 1000),
            error=error,
            rate_limit_remaining=remaining if isinstance(remaining, int) else None,
        ))

    def _build_error(self, response: httpx.Response) -> ProviderError:
        status = response.status_code
        message, code, details = self._error_parser(response)
        text = f"{self.provider_name} API error (HTTP {status}): {message}"
        kwargs = {"status_code": status, "error_code": code, "details": details}
        if status in (401, 403):
            return ProviderAuthError(text, self.provider_name, **kwargs)
        if status in (400, 422):
            return ProviderValidationError(text, self.provider_name, **kwargs)
        return ProviderAPIError(text, self.provider_name, **kwargs)


def _path(url: str) -> str:
    """Strip the query string so OAuth codes and filters stay out of logs."""
    return str(url).split("?", 1)[0]
