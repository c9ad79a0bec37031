"""HTTP client service with retry logic and rate limiting."""

import asyncio
import time
from pathlib import Path
from typing import Any

import httpx
import structlog

from .errors import DownloadError

log = structlog.stdlib.get_logger()

DEFAULT_USER_AGENT = "GoldbergConfigManager/1.0"


class HttpClientService:
    """HTTP client service with retry logic, rate limiting, and timeout handling."""

    def __init__(
        self,
        timeout: float = 30.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        rate_limit_delay: float = 0.5,
        verify_ssl: bool = True,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the HTTP client service.

        Args:
            timeout: Request timeout in seconds
            max_retries: Maximum number of retry attempts
            base_delay: Base delay for exponential backoff in seconds
            max_delay: Maximum delay between retries in seconds
            rate_limit_delay: Minimum delay between requests in seconds
            verify_ssl: Whether to verify SSL certificates
            user_agent: User-Agent header sent with every request
            transport: Custom transport, e.g. ``httpx.MockTransport`` in tests
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.rate_limit_delay = rate_limit_delay
        self._last_request_time: float = 0.0
        self._rate_lock = asyncio.Lock()

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": user_agent},
            follow_redirects=True,
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
            verify=verify_ssl,
            transport=transport,
        )

        log.debug(
            "HTTP client service initialized",
            timeout=timeout,
            max_retries=max_retries,
            rate_limit_delay=rate_limit_delay,
        )

    async def get(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Make a GET request with retry logic and rate limiting.

        Args:
            url: The URL to request
            headers: Optional additional headers
            params: Optional query parameters

        Returns:
            HTTP response object

        Raises:
            httpx.HTTPStatusError: On a 4xx response or after the last retry
            httpx.RequestError: If every attempt fails at the transport level
        """
        for attempt in range(self.max_retries + 1):
            await self._enforce_rate_limit()
            try:
                log.debug(
                    "Making HTTP GET request",
                    url=url,
                    attempt=attempt + 1,
                    max_attempts=self.max_retries + 1,
                )

                response = await self._client.get(url, headers=headers, params=params)
                response.raise_for_status()

                log.debug(
                    "HTTP GET request successful",
                    url=url,
                    status_code=response.status_code,
                    content_length=len(response.content),
                )
                return response

            except (httpx.HTTPStatusError, httpx.RequestError) as e:
                log.warning(
                    "HTTP GET request failed",
                    url=url,
                    attempt=attempt + 1,
                    error=str(e),
                    error_type=type(e).__name__,
                )

                # Don't retry on client errors (4xx) except for rate limiting
                if isinstance(e, httpx.HTTPStatusError):
                    if e.response.status_code == 429:
                        delay = self._retry_after(e.response)
                        if delay is not None and attempt < self.max_retries:
                            log.info("Rate limited, waiting", delay=delay)
                            await asyncio.sleep(delay)
                            continue
                    elif 400 <= e.response.status_code < 500:
                        log.error("Client error, not retrying", url=url, status_code=e.response.status_code)
                        raise

                if attempt == self.max_retries:
                    log.error(
                        "HTTP GET request failed after all retries",
                        url=url,
                        total_attempts=self.max_retries + 1,
                    )
                    raise

                delay = min(self.base_delay * (2 ** attempt), self.max_delay)
                log.info("Retrying after delay", delay=delay)
                await asyncio.sleep(delay)

        raise RuntimeError("Unexpected end of retry loop")

    async def get_json(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """GET ``url`` and decode the body as JSON.

        Raises:
            httpx.HTTPError: If the request fails
            ValueError: If the body is not valid JSON
        """
        response = await self.get(url, headers=headers, params=params)
        return response.json()

    async def download_file(
        self,
        url: str,
        path: Path,
        headers: dict[str, str] | None = None,
        chunk_size: int = 65536,
    ) -> int:
        """Stream ``url`` to ``path`` and verify the received size.

        When the server declares a ``content-length``, the number of bytes
        written must match it exactly; otherwise the partial file is removed
        and a ``DownloadError`` is raised after the last attempt.

        Returns:
            Number of bytes written

        Raises:
            DownloadError: On a size mismatch
            httpx.HTTPError: If all retry attempts fail
            OSError: If the file cannot be written
        """
        path.parent.mkdir(parents=True, exist_ok=True)

        for attempt in range(self.max_retries + 1):
            await self._enforce_rate_limit()
            try:
                log.debug("Starting file download", url=url, path=str(path), attempt=attempt + 1)

                async with self._client.stream("GET", url, headers=headers) as response:
                    response.raise_for_status()

                    total_size = int(response.headers.get("content-length", 0) or 0)
                    downloaded = 0

                    with open(path, "wb") as f:
                        # Raw bytes, so a compressed transfer still matches content-length
                        async for chunk in response.aiter_raw(chunk_size):
                            f.write(chunk)
                            downloaded += len(chunk)

                if total_size > 0 and downloaded != total_size:
                    log.warning("Downloaded file size mismatch", url=url, expected=total_size, actual=downloaded)
                    raise DownloadError(
                        f"File size mismatch: expected {total_size}, got {downloaded}",
                        file_name=path.name,
                        url=url,
                        bytes_downloaded=downloaded,
                        total_bytes=total_size,
                    )

                log.info("File download completed", url=url, path=str(path), size=downloaded)
                return downloaded

            except (httpx.HTTPStatusError, httpx.RequestError, DownloadError, OSError) as e:
                log.warning(
                    "File download failed",
                    url=url,
                    path=str(path),
                    attempt=attempt + 1,
                    error=str(e),
                    error_type=type(e).__name__,
                )

                if path.exists():
                    try:
                        path.unlink()
                        log.debug("Cleaned up partial download", path=str(path))
                    except OSError:
                        log.warning("Failed to clean up partial download", path=str(path))

                if isinstance(e, httpx.HTTPStatusError):
                    if e.response.status_code == 429:
                        delay = self._retry_after(e.response)
                        if delay is not None and attempt < self.max_retries:
                            log.info("Rate limited during download, waiting", delay=delay)
                            await asyncio.sleep(delay)
                            continue
                    elif 400 <= e.response.status_code < 500:
                        log.error("Client error during download, not retrying", status_code=e.response.status_code)
                        raise
                elif isinstance(e, OSError):
                    log.error("File system error during download, not retrying", error=str(e))
                    raise

                if attempt == self.max_retries:
                    log.error(
                        "File download failed after all retries",
                        url=url,
                        path=str(path),
                        total_attempts=self.max_retries + 1,
                    )
                    raise

                delay = min(self.base_delay * (2 ** attempt), self.max_delay)
                log.info("Retrying download after delay", delay=delay)
                await asyncio.sleep(delay)

        raise RuntimeError("Unexpected end of retry loop")

    @staticmethod
    def _retry_after(response: httpx.Response) -> float | None:
        retry_after = response.headers.get("retry-after")
        if not retry_after:
            return None
        try:
            return float(retry_after)
        except ValueError:
            return None

    async def _enforce_rate_limit(self) -> None:
        """Enforce the minimum delay between requests."""
        async with self._rate_lock:
            time_since_last = time.monotonic() - self._last_request_time
            if time_since_last < self.rate_limit_delay:
                sleep_time = self.rate_limit_delay - time_since_last
                log.debug("Rate limiting: sleeping", sleep_time=sleep_time)
                await asyncio.sleep(sleep_time)
            self._last_request_time = time.monotonic()

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._client.aclose()
        log.debug("HTTP client closed")

    async def __aenter__(self) -> "HttpClientService":
        return self

    async def __aexit__(self, exc_type: type[Exception] | None, exc_val: Exception | None, exc_tb: Any) -> None:
        await self.close()
