"""HTTP implementation of the collection capability (ICollector).

Wraps aiohttp. The upstream service fetches and persists candles for one
asset/timeframe; this client only triggers it and maps HTTP failures onto
the collection error taxonomy:

    429               -> RateLimitError (honours Retry-After)
    5xx               -> NetworkError
    400 / 404         -> InvalidAssetError
    422               -> SchemaMismatchError
    other 4xx         -> CollectionError (not retryable)
    connection errors -> NetworkError
"""

import asyncio
from typing import Any

import aiohttp

from tiered_collector.config.value_objects import HttpCollectorConfig
from tiered_collector.infrastructure.observability import get_ingestion_logger
from tiered_collector.resilience.exceptions import (
    CollectionError,
    CollectionTimeoutError,
    InvalidAssetError,
    NetworkError,
    RateLimitError,
    SchemaMismatchError,
)

logger = get_ingestion_logger("http-collector")


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        # HTTP-date form is not used by the upstream
        return None


class HttpCollectorClient:
    """ICollector over HTTP."""

    def __init__(
        self,
        config: HttpCollectorConfig,
        session: aiohttp.ClientSession | None = None,
    ):
        """Initialize HTTP collector.

        Args:
            config: Upstream base URL, timeout and optional API key
            session: Pre-built session (tests); created lazily otherwise
        """
        self.config = config
        self._session = session

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def collect(self, asset_id: str, timeframe: str, lookback_days: int) -> bool:
        """Ask the upstream to collect and store candles for one asset.

        Returns:
            The upstream's `success` flag

        Raises:
            CollectionError subclasses, see module docstring
        """
        url = f"{self.config.base_url.rstrip('/')}/collect"
        payload = {
            "asset_id": asset_id,
            "timeframe": timeframe,
            "lookback_days": lookback_days,
        }
        context = {"asset_id": asset_id, "timeframe": timeframe}
        session = await self._get_session()

        try:
            async with session.post(url, json=payload, headers=self._headers()) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise self._map_status(resp.status, text, resp.headers, context)
                try:
                    body = await resp.json()
                except (aiohttp.ContentTypeError, ValueError) as e:
                    raise SchemaMismatchError(
                        "Upstream returned a non-JSON body", context=context, cause=e
                    ) from e
        except asyncio.TimeoutError as e:
            raise CollectionTimeoutError(
                f"Upstream request timed out after {self.config.timeout}s",
                timeout_seconds=self.config.timeout,
                context=context,
                cause=e,
            ) from e
        except aiohttp.ClientError as e:
            raise NetworkError(
                f"Upstream request failed: {e}", context=context, cause=e
            ) from e

        if not isinstance(body, dict) or "success" not in body:
            raise SchemaMismatchError(
                "Upstream response is missing 'success'", context=context
            )

        success = bool(body["success"])
        logger.debug(
            "collect_finished",
            success=success,
            records=body.get("records"),
            **context,
        )
        return success

    @staticmethod
    def _map_status(
        status: int, body: str, headers: Any, context: dict[str, Any]
    ) -> CollectionError:
        context = {**context, "status": status}
        detail = body[:200] if body else ""
        if status == 429:
            return RateLimitError(
                f"Upstream rate limit exceeded: {detail}",
                retry_after=_parse_retry_after(headers.get("Retry-After")),
                context=context,
            )
        if status >= 500:
            return NetworkError(f"Upstream error {status}: {detail}", context=context)
        if status in (400, 404):
            return InvalidAssetError(
                f"Upstream rejected asset ({status}): {detail}", context=context
            )
        if status == 422:
            return SchemaMismatchError(
                f"Upstream could not process request: {detail}", context=context
            )
        return CollectionError(
            f"Upstream refused request ({status}): {detail}",
            context=context,
            code="UPSTREAM_REJECTED",
            retryable=False,
        )

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None
