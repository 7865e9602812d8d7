"""GitHub REST API client used by the activity fetchers."""

import asyncio
import logging
import random
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.github.com"


class RateLimitError(Exception):
    """Raised when GitHub API rate limit is exceeded."""

    def __init__(self, message: str, remaining: int, reset_time: datetime) -> None:
        super().__init__(message)
        self.remaining = remaining
        self.reset_time = reset_time


class GitHubClient:
    """Async client for the GitHub REST API.

    Every call goes through one persistent ``httpx.AsyncClient`` with a bounded
    per-call timeout. Transient failures (network errors, timeouts, 5xx, 429)
    are retried with exponential backoff; everything else is raised to the
    caller as ``httpx.HTTPStatusError``.
    """

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_base_delay: float = 1.0,
        max_rate_limit_wait: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the GitHub client.

        Args:
            token: GitHub access token (OAuth or personal access token)
            base_url: GitHub API base URL
            timeout: Timeout in seconds applied to each upstream call
            max_retries: Retries for transient failures (0 disables retrying)
            retry_base_delay: Base delay in seconds for exponential backoff
            max_rate_limit_wait: Longest wait in seconds for an exhausted rate
                limit to reset before giving up with RateLimitError
            transport: Optional httpx transport (used to stub the API in tests)
        """
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.max_rate_limit_wait = max_rate_limit_wait
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github.v3+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        # Rate limiting tracking
        self.rate_limit_remaining: int | None = None
        self.rate_limit_limit: int | None = None
        self.rate_limit_reset: datetime | None = None

        self.requests_made = 0

        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
                transport=self._transport,
            )
        return self._http_client

    def _update_rate_limit_info(self, response: httpx.Response) -> None:
        """Update rate limit information from GitHub API response headers."""
        if "x-ratelimit-remaining" in response.headers:
            self.rate_limit_remaining = int(response.headers["x-ratelimit-remaining"])
        if "x-ratelimit-limit" in response.headers:
            self.rate_limit_limit = int(response.headers["x-ratelimit-limit"])
        if "x-ratelimit-reset" in response.headers:
            reset_timestamp = int(response.headers["x-ratelimit-reset"])
            self.rate_limit_reset = datetime.fromtimestamp(reset_timestamp, tz=UTC)

    async def _check_rate_limit(self) -> None:
        """Check rate limit and throttle when the remaining budget runs low.

        An exhausted budget waits for its reset when that is at most
        ``max_rate_limit_wait`` away, and is forgotten once the reset has
        passed.

        Raises:
            RateLimitError: If the reset is further away than the wait cap
        """
        if self.rate_limit_remaining is not None and self.rate_limit_remaining <= 0:
            now = datetime.now(tz=UTC)
            reset_time = self.rate_limit_reset
            if reset_time is not None and reset_time > now:
                wait = (reset_time - now).total_seconds()
                if wait > self.max_rate_limit_wait:
                    raise RateLimitError(
                        "GitHub API rate limit exceeded. "
                        f"Rate limit resets at {reset_time}",
                        remaining=self.rate_limit_remaining,
                        reset_time=reset_time,
                    )
                logger.warning(f"Rate limit exhausted, waiting {wait:.0f}s for reset")
                await asyncio.sleep(wait)

            self.rate_limit_remaining = None
            return

        if self.rate_limit_remaining is not None and self.rate_limit_remaining < 100:
            if self.rate_limit_remaining < 10:
                delay = 5.0
            elif self.rate_limit_remaining < 50:
                delay = 2.0
            else:
                delay = 1.0

            logger.debug(
                f"Throttling for {delay}s, {self.rate_limit_remaining} requests left"
            )
            await asyncio.sleep(delay)

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay with jitter to prevent thundering herd."""
        exponential_delay = min(self.retry_base_delay * (2**attempt), 60.0)

        jitter_range = exponential_delay * 0.1
        jitter = random.uniform(-jitter_range, jitter_range)

        final_delay: float = max(0.0, exponential_delay + jitter)
        logger.debug(f"Calculated retry delay: {final_delay:.2f}s (attempt {attempt})")
        return final_delay

    @staticmethod
    def _is_rate_limited(error: httpx.HTTPStatusError) -> bool:
        """GitHub answers an exhausted primary rate limit with 403 or 429."""
        return (
            error.response.status_code in (403, 429)
            and error.response.headers.get("x-ratelimit-remaining") == "0"
        )

    def _should_retry(self, error: Exception) -> bool:
        """Determine if an error should trigger a retry."""
        if isinstance(error, httpx.TimeoutException | httpx.NetworkError):
            return True

        if isinstance(error, httpx.HTTPStatusError):
            status_code = error.response.status_code
            return (
                status_code >= 500
                or status_code == 429
                or self._is_rate_limited(error)
            )

        return False

    async def _make_request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make an HTTP request, retrying transient failures."""
        http_client = self._get_http_client()
        last_exception: Exception | None = None

        for attempt in range(self.max_retries + 1):
            try:
                self.requests_made += 1
                response = await http_client.request(method, url, **kwargs)
                response.raise_for_status()
                return response

            except httpx.HTTPError as error:
                last_exception = error
                if isinstance(error, httpx.HTTPStatusError):
                    self._update_rate_limit_info(error.response)

                if attempt == self.max_retries or not self._should_retry(error):
                    break

                if isinstance(error, httpx.HTTPStatusError) and self._is_rate_limited(
                    error
                ):
                    await self._check_rate_limit()
                    continue

                delay = self._calculate_retry_delay(attempt)
                logger.info(
                    f"Retrying {method} {url} in {delay:.2f}s "
                    f"(attempt {attempt + 1}/{self.max_retries}): {error}"
                )
                await asyncio.sleep(delay)

        logger.debug(f"Giving up on {method} {url}: {last_exception}")
        if last_exception:
            raise last_exception
        raise httpx.HTTPError(f"Request to {url} failed with no recorded exception")

    def _resolve_url(self, path_or_url: str) -> str:
        if path_or_url.startswith(("https://", "http://")):
            return path_or_url
        return f"{self.base_url}/{path_or_url.lstrip('/')}"

    async def get_json(
        self, path_or_url: str, params: dict[str, Any] | None = None
    ) -> Any:
        """GET a single resource and return its decoded JSON body.

        Raises:
            httpx.HTTPError: If the request fails after retries
            RateLimitError: If the rate limit is already exhausted
        """
        await self._check_rate_limit()

        response = await self._make_request_with_retry(
            "GET",
            self._resolve_url(path_or_url),
            headers=self.headers,
            params=params,
        )
        self._update_rate_limit_info(response)
        return response.json()

    async def paginate_pages(
        self,
        path_or_url: str,
        params: dict[str, Any] | None = None,
        per_page: int = 100,
        max_pages: int | None = None,
    ) -> AsyncGenerator[list[dict[str, Any]], None]:
        """Walk a collection endpoint page by page.

        Uses GitHub's ``per_page``/``page`` query convention. A page holding
        fewer than ``per_page`` items is the last one.

        Args:
            path_or_url: Endpoint path (relative to ``base_url``) or absolute URL
            params: Extra query parameters sent with every page
            per_page: Page size (GitHub caps this at 100)
            max_pages: Maximum number of pages to fetch (None for unlimited)

        Yields:
            The decoded items of each page

        Raises:
            httpx.HTTPError: If a page request fails after retries
            RateLimitError: If the rate limit is exhausted
            ValueError: If a page body is not a JSON array
        """
        url = self._resolve_url(path_or_url)
        page = 1

        while max_pages is None or page <= max_pages:
            await self._check_rate_limit()

            query = {**(params or {}), "per_page": per_page, "page": page}
            response = await self._make_request_with_retry(
                "GET", url, headers=self.headers, params=query
            )
            self._update_rate_limit_info(response)

            data = response.json()
            if not isinstance(data, list):
                raise ValueError(f"Expected a JSON array from {url}, got {type(data)}")

            logger.debug(f"Fetched page {page} of {url}: {len(data)} items")
            yield data

            if len(data) < per_page:
                break
            page += 1

    def get_rate_limit_status(self) -> dict[str, Any]:
        """Return current rate limit status."""
        return {
            "remaining": self.rate_limit_remaining,
            "limit": self.rate_limit_limit,
            "reset_time": self.rate_limit_reset,
            "reset_in_seconds": (
                int((self.rate_limit_reset - datetime.now(tz=UTC)).total_seconds())
                if self.rate_limit_reset
                else None
            ),
            "requests_made": self.requests_made,
        }

    async def validate_token(self) -> dict[str, Any]:
        """Validate the token and return the authenticated user.

        Raises:
            httpx.HTTPStatusError: If the token is invalid
        """
        user: dict[str, Any] = await self.get_json("/user")
        return user

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "GitHubClient":
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Async context manager exit with cleanup."""
        await self.close()
