"""
Rate-limit aware HTTP client shared by the TIDAL and Last.fm integrations.

Every outbound request of a run goes through FetchClient.request(), which is
where pacing sleeps, token refresh and 429 backoff happen.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from listened_sweep.utils.logger import get_logger


logger = get_logger()


class SyncError(Exception):
    """Base class for errors raised while syncing."""
    pass


class FetchError(SyncError):
    """A request failed and was not retried."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ResourceNotFoundError(SyncError):
    """The upstream resource does not exist or is not public."""
    pass


class AuthenticationError(SyncError):
    """Credentials were rejected and could not be refreshed."""
    pass


def _number_header(response: httpx.Response, name: str) -> Optional[float]:
    value = response.headers.get(name)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class FetchClient:
    """
    Async HTTP client with look-ahead throttling and retry handling.

    Status handling:
    - 2xx: sleep replenish_rate * 2 when the remaining quota is at or below
      LOW_WATER_MARK, then return the JSON body
    - 401: refresh the token through ``auth`` and retry, at most MAX_AUTH_RETRIES times
    - 429: sleep Retry-After * 2 (or replenish rate * 2) and retry, no cap
    - 404: ResourceNotFoundError
    - anything else: FetchError
    """

    LOW_WATER_MARK = 2
    MAX_AUTH_RETRIES = 3
    DEFAULT_REPLENISH_RATE = 1.0

    def __init__(
        self,
        base_url: str,
        headers: Dict[str, str] = None,
        auth=None,
        http_client: httpx.AsyncClient = None,
        sleep: Callable[[float], Awaitable[None]] = None,
        timeout: float = 30.0
    ):
        """
        Initialize fetch client.

        Args:
            base_url: Prefix for relative URLs
            headers: Headers sent with every request
            auth: Optional credential manager exposing authorization_header() and refresh()
            http_client: Optional preconfigured httpx.AsyncClient (closed by the caller)
            sleep: Coroutine used for pacing, defaults to asyncio.sleep
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip('/')
        self.auth = auth
        self._headers = dict(headers or {})
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self._sleep = sleep or asyncio.sleep

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "FetchClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def build_url(self, url: str) -> str:
        """Resolve a path (or an absolute URL) against the base URL."""
        if url.startswith('http://') or url.startswith('https://'):
            return url
        return f"{self.base_url}/{url.lstrip('/')}"

    def _request_headers(self) -> Dict[str, str]:
        headers = dict(self._headers)
        if self.auth is not None:
            headers.update(self.auth.authorization_header())
        return headers

    async def fetch(self, url: str, params: Dict = None) -> Any:
        """GET a URL and return its decoded JSON body."""
        return await self.request('GET', url, params=params)

    async def request(
        self,
        method: str,
        url: str,
        params: Dict = None,
        json: Any = None
    ) -> Any:
        """
        Send a request, retrying on 401 and 429.

        Args:
            method: HTTP method
            url: Path relative to base_url, or absolute URL
            params: Query parameters
            json: JSON body

        Returns:
            Decoded JSON body, or None when the response has no content

        Raises:
            AuthenticationError: If the token stays invalid after refreshing
            ResourceNotFoundError: On 404
            FetchError: On any other failure
        """
        full_url = self.build_url(url)
        auth_attempts = 0

        while True:
            try:
                response = await self._client.request(
                    method,
                    full_url,
                    params=params,
                    json=json,
                    headers=self._request_headers()
                )
            except httpx.HTTPError as e:
                logger.error(f"Request to {full_url} failed: {e}")
                raise FetchError(f"Request to {full_url} failed: {e}")

            replenish_rate = _number_header(response, 'x-ratelimit-replenish-rate') or self.DEFAULT_REPLENISH_RATE
            status = response.status_code

            if response.is_success:
                remaining = _number_header(response, 'x-ratelimit-remaining')
                if remaining is not None and remaining <= self.LOW_WATER_MARK:
                    logger.debug(f"Approaching rate limit, waiting {replenish_rate * 2}s")
                    await self._sleep(replenish_rate * 2)
                return self._decode(response, full_url)

            if status == 401:
                if self.auth is None:
                    raise AuthenticationError(f"Unauthorized: {full_url}")
                if auth_attempts >= self.MAX_AUTH_RETRIES:
                    logger.error("Too many tries to generate a new access token")
                    raise AuthenticationError(
                        f"Access token still rejected after {self.MAX_AUTH_RETRIES} refreshes"
                    )
                auth_attempts += 1
                logger.warning(
                    f"Invalid access token. Generating new access token... "
                    f"(attempt {auth_attempts}/{self.MAX_AUTH_RETRIES})"
                )
                await self.auth.refresh()
                continue

            if status == 429:
                retry_after = _number_header(response, 'Retry-After') or replenish_rate
                logger.warning(f"Too many requests, waiting {retry_after * 2}s and trying again...")
                await self._sleep(retry_after * 2)
                continue

            if status == 404:
                raise ResourceNotFoundError(f"Resource not found or not public: {full_url}")

            logger.error(f"HTTP error {status} for {full_url}: {response.text[:200]}")
            raise FetchError(f"HTTP error! status: {status}", status_code=status)

    @staticmethod
    def _decode(response: httpx.Response, url: str) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"Invalid JSON from {url}: {e}", status_code=response.status_code)
