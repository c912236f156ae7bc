"""
Async HTTP transport for gitrelay backends.

Handles HTTP reads against git-hosting APIs with automatic retry logic and
error handling using the httpx async client.
"""

import asyncio
import random
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any

import httpx

from gitrelay.exceptions import (
    GitRelayError,
    NotFoundError,
    RateLimitedError,
    ServerError,
    SourceUnavailableError,
)
from gitrelay.logging import log_http_request, log_http_response


@dataclass
class RetryConfig:
    """Configuration for automatic retry behavior."""

    max_retries: int = 2
    backoff_factor: float = 2.0
    retry_on: list[int] = field(default_factory=lambda: [429, 500, 502, 503])
    respect_retry_after: bool = True
    max_backoff: float = 10.0  # Maximum backoff time in seconds
    jitter: float = 0.1  # Jitter factor (0.1 = ±10%)


class AsyncHTTPTransport:
    """
    Async HTTP transport layer with retry logic.

    Handles:
    - Exponential backoff with jitter for retries
    - Retry-After header respect for rate limiting
    - Error response parsing into typed exceptions
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 15.0,
        retry_config: RetryConfig | None = None,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize async HTTP transport.

        Args:
            base_url: Base URL for relative request paths (may be empty)
            timeout: Request timeout in seconds
            retry_config: Configuration for retry behavior
            headers: Default headers sent with every request
            transport: Optional httpx transport (e.g. httpx.MockTransport in tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig()

        default_headers = {"Accept": "application/json", "User-Agent": "gitrelay"}
        if headers:
            default_headers.update(headers)

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=default_headers,
            follow_redirects=True,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "AsyncHTTPTransport":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """
        GET a JSON document with automatic retry.

        Args:
            path: API path or absolute URL
            params: Query parameters
            headers: Extra request headers

        Returns:
            Parsed JSON response

        Raises:
            GitRelayError: On backend errors or an unparseable body
        """
        response = await self.get(path, params=params, headers=headers)
        try:
            return response.json()
        except ValueError as e:
            raise SourceUnavailableError("INVALID_RESPONSE", f"Response from {path} is not JSON") from e

    async def get_bytes(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> bytes:
        """GET a raw body with automatic retry."""
        response = await self.get(path, params=params, headers=headers)
        return response.content

    async def post_json(self, path: str, body: dict[str, Any]) -> Any:
        """
        POST a JSON body with automatic retry.

        Args:
            path: API path or absolute URL
            body: Request body

        Returns:
            Parsed JSON response, or None for an empty body
        """
        async def make_request() -> httpx.Response:
            log_http_request("POST", path)
            started = time.monotonic()
            response = await self._client.post(path, json=body)
            log_http_response(response.status_code, path, (time.monotonic() - started) * 1000)
            return response

        response = await self._execute_with_retry(make_request)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise SourceUnavailableError("INVALID_RESPONSE", f"Response from {path} is not JSON") from e

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """
        GET with automatic retry, returning the successful response.

        Raises:
            GitRelayError: On non-retryable errors or after max retries
        """
        async def make_request() -> httpx.Response:
            log_http_request("GET", path, params=params, headers=headers)
            started = time.monotonic()
            response = await self._client.get(path, params=params, headers=headers)
            log_http_response(response.status_code, path, (time.monotonic() - started) * 1000)
            return response

        return await self._execute_with_retry(make_request)

    async def _execute_with_retry(
        self, request_fn: Callable[[], Coroutine[Any, Any, httpx.Response]]
    ) -> httpx.Response:
        """
        Execute a request with automatic retry on retryable errors.

        Args:
            request_fn: Async function that makes the HTTP request

        Returns:
            The first response with a status below 400

        Raises:
            GitRelayError: On non-retryable errors or after max retries
        """
        last_error: Exception | None = None

        for attempt in range(self.retry_config.max_retries + 1):
            try:
                response = await request_fn()

                if response.status_code < 400:
                    return response

                error = self._parse_error_response(response)

                if not self._should_retry(response.status_code, attempt):
                    raise error

                last_error = error

                retry_after = response.headers.get("Retry-After")
                wait_time = self._get_backoff_time(attempt, retry_after)
                await asyncio.sleep(wait_time)

            except httpx.RequestError as e:
                # Network errors are retryable
                if attempt >= self.retry_config.max_retries:
                    raise ServerError("CONNECTION_ERROR", str(e) or type(e).__name__) from e

                last_error = e
                wait_time = self._get_backoff_time(attempt, None)
                await asyncio.sleep(wait_time)

        if last_error:
            if isinstance(last_error, GitRelayError):
                raise last_error
            raise ServerError("MAX_RETRIES_EXCEEDED", str(last_error))

        raise ServerError("UNKNOWN_ERROR", "Request failed with no error details")

    def _should_retry(self, status_code: int, attempt: int) -> bool:
        """
        Determine if a request should be retried.

        Args:
            status_code: HTTP status code
            attempt: Current attempt number (0-indexed)

        Returns:
            True if the request should be retried
        """
        if attempt >= self.retry_config.max_retries:
            return False

        return status_code in self.retry_config.retry_on

    def _get_backoff_time(
        self, attempt: int, retry_after: str | None
    ) -> float:
        """
        Calculate backoff time for retry.

        Uses exponential backoff with jitter, respecting Retry-After header
        if present.

        Args:
            attempt: Current attempt number (0-indexed)
            retry_after: Value of Retry-After header (if present)

        Returns:
            Time to wait in seconds
        """
        if retry_after and self.retry_config.respect_retry_after:
            try:
                return min(float(retry_after), self.retry_config.max_backoff)
            except ValueError:
                pass  # Fall through to exponential backoff

        base_wait = self.retry_config.backoff_factor ** attempt

        jitter_range = base_wait * self.retry_config.jitter
        jitter = random.uniform(-jitter_range, jitter_range)
        wait_time = base_wait + jitter

        return min(wait_time, self.retry_config.max_backoff)

    def _parse_error_response(self, response: httpx.Response) -> GitRelayError:
        """
        Parse an error response into a typed exception.

        Args:
            response: HTTP response with error status

        Returns:
            Appropriate GitRelayError subclass
        """
        try:
            data = response.json()
        except ValueError:
            data = {}

        message = f"HTTP {response.status_code}"
        if isinstance(data, dict):
            detail = data.get("message") or data.get("error")
            if isinstance(detail, str) and detail:
                message = detail

        status_code = response.status_code

        if status_code == 404:
            return NotFoundError("NOT_FOUND", message)
        elif status_code == 429 or (status_code == 403 and "rate limit" in message.lower()):
            retry_after_str = response.headers.get("Retry-After", "60")
            try:
                retry_after = int(retry_after_str)
            except ValueError:
                retry_after = 60
            return RateLimitedError("RATE_LIMITED", message, retry_after)
        elif status_code in (401, 403):
            return SourceUnavailableError("FORBIDDEN", message)
        elif status_code >= 500:
            return ServerError("SERVER_ERROR", message)
        else:
            return SourceUnavailableError("BAD_REQUEST", message)
