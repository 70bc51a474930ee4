"""Base HTTP client with retry logic and error handling."""

import time
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    wait_none,
    retry_if_exception_type,
    RetryCallState,
)

from ..utils.config import get_config
from ..utils.logger import get_api_logger

# Failures worth retrying; an HTTP error response is an answer, not a failure
RETRYABLE_ERRORS = (httpx.TimeoutException, httpx.NetworkError)


class BaseClient:
    """Base HTTP client with retry logic and logging."""

    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Initialize base client.

        Args:
            base_url: Base URL for API requests
            headers: Optional default headers
            transport: Optional httpx transport (e.g. ``httpx.MockTransport``)
        """
        self.base_url = base_url.rstrip("/")
        self.config = get_config()
        self.logger = get_api_logger()

        self.client = httpx.Client(
            base_url=self.base_url,
            headers={
                "Content-Type": "application/json",
                "User-Agent": "Inventory-Tracker/1.0",
                **(headers or {})
            },
            timeout=self.config.api.timeout,
            follow_redirects=True,
            transport=transport
        )

    def _log_retry(self, retry_state: RetryCallState):
        error = retry_state.outcome.exception() if retry_state.outcome else None
        self.logger.warning(
            f"Request attempt {retry_state.attempt_number} failed ({error!r}), retrying"
        )

    def _retry_policy(self) -> Dict[str, Any]:
        """Tenacity arguments built from the current ``api`` config."""
        api = self.config.api
        return {
            "stop": stop_after_attempt(api.max_retries),
            "wait": wait_exponential(multiplier=api.retry_delay) if api.exponential_backoff else wait_none(),
            "retry": retry_if_exception_type(RETRYABLE_ERRORS),
            "before_sleep": self._log_retry,
            "reraise": True,
        }

    def _make_request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Make HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Path relative to ``base_url``
            **kwargs: Passed to ``httpx.Client.request``

        Returns:
            HTTP response, whatever its status code

        Raises:
            httpx.HTTPError: If every attempt failed at the transport level
        """
        @retry(**self._retry_policy())
        def _request():
            started = time.monotonic()
            response = self.client.request(method, url, **kwargs)
            elapsed_ms = (time.monotonic() - started) * 1000
            self.logger.debug(f"{method} {url} -> {response.status_code} ({elapsed_ms:.0f} ms)")
            return response

        return _request()

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
