"""HTTP fetcher with timeouts, retry and backoff, plus a connectivity probe."""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field

import httpx

from transit_sync.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONNECT_TIMEOUT_SEC = 5.0
DEFAULT_READ_TIMEOUT_SEC = 15.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE = 2.0
PROBE_TIMEOUT_SEC = 3.0


class HttpFetchError(Exception):
    """Raised when a request fails after all retries."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True, slots=True)
class HttpResult:
    content: bytes
    headers: dict[str, str] = field(default_factory=dict)
    status_code: int = 200


class HttpFetcher:
    """Fetches remote resources over HTTP.

    Transport errors and 5xx responses are retried with exponential backoff;
    4xx responses fail immediately.
    """

    def __init__(
        self,
        connect_timeout_sec: float = DEFAULT_CONNECT_TIMEOUT_SEC,
        read_timeout_sec: float = DEFAULT_READ_TIMEOUT_SEC,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        probe_url: str = "",
    ) -> None:
        self.connect_timeout_sec = connect_timeout_sec
        self.read_timeout_sec = read_timeout_sec
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.probe_url = probe_url

    def _timeout(self, read_timeout_sec: float | None = None) -> httpx.Timeout:
        return httpx.Timeout(
            read_timeout_sec or self.read_timeout_sec,
            connect=self.connect_timeout_sec,
        )

    async def fetch(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        read_timeout_sec: float | None = None,
    ) -> HttpResult:
        """GET a URL with retry + exponential backoff.

        Args:
            url: Full URL to fetch.
            headers: Extra request headers.
            read_timeout_sec: Override the read timeout (large downloads).

        Returns:
            HttpResult with body and response headers.

        Raises:
            HttpFetchError: If all retries are exhausted or the server
                answers with a 4xx.
        """
        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            try:
                async with httpx.AsyncClient(
                    timeout=self._timeout(read_timeout_sec),
                    follow_redirects=True,
                ) as client:
                    response = await client.get(url, headers=headers)
                    raise_result = response.raise_for_status()
                    if inspect.isawaitable(raise_result):
                        await raise_result
                    return HttpResult(
                        content=response.content,
                        headers=dict(response.headers),
                        status_code=response.status_code,
                    )

            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if status < 500:
                    msg = f"GET {url} failed with HTTP {status}"
                    raise HttpFetchError(msg, status_code=status) from exc
                last_error = exc
            except httpx.RequestError as exc:
                last_error = exc

            if attempt < self.max_retries - 1:
                delay = self.backoff_base ** (attempt + 1)
                logger.warning(
                    "HTTP fetch failed, retrying",
                    url=url,
                    attempt=attempt + 1,
                    delay_sec=delay,
                    error=str(last_error),
                )
                await asyncio.sleep(delay)

        msg = f"Failed to fetch {url} after {self.max_retries} attempts"
        logger.error(msg, url=url, error=str(last_error))
        raise HttpFetchError(msg) from last_error

    async def get(self, url: str) -> bytes:
        """GET a URL and return its body."""
        result = await self.fetch(url)
        return result.content

    async def head(self, url: str) -> dict[str, str]:
        """HEAD a URL and return its headers (lower-cased names).

        Raises:
            HttpFetchError: On transport failure or a non-2xx answer.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout(),
                follow_redirects=True,
            ) as client:
                response = await client.head(url)
                raise_result = response.raise_for_status()
                if inspect.isawaitable(raise_result):
                    await raise_result
        except httpx.HTTPStatusError as exc:
            msg = f"HEAD {url} failed with HTTP {exc.response.status_code}"
            raise HttpFetchError(msg, status_code=exc.response.status_code) from exc
        except httpx.RequestError as exc:
            msg = f"HEAD {url} failed: {exc}"
            raise HttpFetchError(msg) from exc
        return {key.lower(): value for key, value in response.headers.items()}

    async def is_online(self) -> bool:
        """Probe connectivity; any HTTP answer at all counts as online."""
        if not self.probe_url:
            return True
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(PROBE_TIMEOUT_SEC),
                follow_redirects=False,
            ) as client:
                await client.head(self.probe_url)
        except httpx.RequestError as exc:
            logger.warning("Connectivity probe failed", url=self.probe_url, error=str(exc))
            return False
        return True
