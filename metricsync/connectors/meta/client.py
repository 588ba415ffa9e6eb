"""Metricsync: Meta Graph API Client.

Handles authentication, error classification, pluggable retry, and pagination.
"""

import asyncio
from typing import Any, Dict, List, Optional

import httpx

from metricsync.config import settings
from metricsync.core.logging import get_logger

logger = get_logger("meta.client")

# Graph API error code for "Permissions error"
PERMISSION_ERROR_CODE = 200


class MetaAPIError(Exception):
    """Raised when the Meta API returns an error."""

    def __init__(self, message: str, status_code: int = 0, error_code: int = 0):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class InsightsPermissionError(MetaAPIError):
    """The access token lacks the scopes needed to read insights."""


class TransientFetchError(MetaAPIError):
    """Network, rate-limit, or unexpected upstream failure."""


def is_permission_error(error_code: int, message: str) -> bool:
    return error_code == PERMISSION_ERROR_CODE or "permission" in message.lower()


def classify_error(
    message: str, status_code: int = 0, error_code: int = 0
) -> MetaAPIError:
    """Map an upstream error envelope onto the pipeline's error taxonomy."""
    if is_permission_error(error_code, message):
        return InsightsPermissionError(message, status_code, error_code)
    return TransientFetchError(message, status_code, error_code)


class RetryPolicy:
    """How many times a request is attempted and how long to back off.

    ``max_attempts=1`` means a single call: a failure is reported straight
    back and the caller falls back to zero-filled data.
    """

    def __init__(self, max_attempts: int = 1, base_delay: float = 2.0):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(settings.fetch_max_attempts, settings.fetch_retry_base_delay)

    def delay(self, attempt: int) -> float:
        """Exponential backoff before attempt ``attempt + 1``."""
        return self.base_delay * (2 ** (attempt - 1))

    def should_retry(self, attempt: int, error: MetaAPIError) -> bool:
        if isinstance(error, InsightsPermissionError):
            return False
        return attempt < self.max_attempts


def _error_envelope(resp: httpx.Response) -> Dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"]
    return {}


class MetaClient:
    """Async HTTP client for the Meta Marketing API."""

    def __init__(
        self,
        access_token: str,
        retry_policy: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
    ):
        self.access_token = access_token
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.base_url = base_url or settings.meta_graph_url
        self._client: Optional[httpx.AsyncClient] = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=settings.meta_request_timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "MetaClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Core Request Method ──

    async def _send_once(
        self, method: str, url: str, params: Dict[str, Any] | None
    ) -> Dict[str, Any]:
        client = await self._get_client()
        try:
            resp = await client.request(method, url, params=params)
        except httpx.RequestError as e:
            raise TransientFetchError(f"Request to Meta failed: {e}") from e

        if resp.status_code == 429:
            raise TransientFetchError("Rate limited by Meta (429)", 429)

        error = _error_envelope(resp)
        if resp.is_error or error:
            message = error.get("message") or f"HTTP {resp.status_code}"
            raise classify_error(message, resp.status_code, error.get("code", 0))

        try:
            return resp.json()
        except ValueError as e:
            raise TransientFetchError(
                "Meta returned a non-JSON body", resp.status_code
            ) from e

    async def _request(
        self,
        method: str,
        url: str,
        params: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Make a request under the client's retry policy.

        ``params=None`` sends the URL as-is, which is how paging cursors
        (already carrying the token) are followed.
        """
        if params is not None:
            params = {**params, "access_token": self.access_token}

        attempt = 1
        while True:
            try:
                return await self._send_once(method, url, params)
            except MetaAPIError as e:
                if not self.retry_policy.should_retry(attempt, e):
                    raise
                wait = self.retry_policy.delay(attempt)
                logger.warning(
                    f"Meta request failed: {e}. Retrying in {wait}s "
                    f"(attempt {attempt}/{self.retry_policy.max_attempts})",
                    extra={"status_code": e.status_code},
                )
                await asyncio.sleep(wait)
                attempt += 1

    # ── Pagination ──

    async def _paginated_get(
        self,
        url: str,
        params: Dict[str, Any] | None = None,
        max_pages: int = 50,
    ) -> List[Dict[str, Any]]:
        """Fetch all pages of a paginated endpoint."""
        all_data: List[Dict[str, Any]] = []
        params = params or {}
        current_url = url

        for page in range(max_pages):
            result = await self._request(
                "GET", current_url, params if page == 0 else None
            )
            all_data.extend(result.get("data", []))

            next_url = result.get("paging", {}).get("next")
            if not next_url:
                break
            current_url = next_url

        logger.debug(f"Fetched {len(all_data)} records from {url}")
        return all_data
