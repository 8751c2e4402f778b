"""Tests for HttpCollectorClient: request shape and HTTP error mapping."""

import asyncio

import aiohttp
import pytest

from tiered_collector.config.value_objects import HttpCollectorConfig
from tiered_collector.ingestion.http_collector import HttpCollectorClient
from tiered_collector.resilience.exceptions import (
    CollectionError,
    CollectionTimeoutError,
    InvalidAssetError,
    NetworkError,
    RateLimitError,
    SchemaMismatchError,
)
from tiered_collector.scheduling.ports import ICollector


class FakeResponse:
    def __init__(self, status=200, body=None, text="", headers=None, json_error=None):
        self.status = status
        self._body = body
        self._text = text
        self.headers = headers or {}
        self._json_error = json_error

    async def json(self):
        if self._json_error is not None:
            raise self._json_error
        return self._body

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []
        self.closed = False

    def post(self, url, json=None, headers=None):
        self.requests.append({"url": url, "json": json, "headers": headers})
        if self.error is not None:
            raise self.error
        return self.response

    async def close(self):
        self.closed = True


def make_client(session, api_key=None):
    config = HttpCollectorConfig(
        base_url="http://collector:8080/", timeout=5.0, api_key=api_key
    )
    return HttpCollectorClient(config, session=session)


class TestCollect:
    def test_satisfies_collector_protocol(self):
        assert isinstance(make_client(FakeSession()), ICollector)

    @pytest.mark.asyncio
    async def test_posts_payload_and_returns_success(self):
        session = FakeSession(FakeResponse(200, {"success": True, "records": 12}))
        client = make_client(session, api_key="secret")

        assert await client.collect("abc", "5m", 3) is True

        (request,) = session.requests
        assert request["url"] == "http://collector:8080/collect"
        assert request["json"] == {"asset_id": "abc", "timeframe": "5m", "lookback_days": 3}
        assert request["headers"]["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_upstream_reported_failure(self):
        session = FakeSession(FakeResponse(200, {"success": False}))

        assert await make_client(session).collect("abc", "1m", 7) is False

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self):
        session = FakeSession(FakeResponse(200, {"success": True}))

        await make_client(session).collect("abc", "1m", 7)

        assert "Authorization" not in session.requests[0]["headers"]


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_rate_limit_with_retry_after(self):
        session = FakeSession(
            FakeResponse(429, text="slow down", headers={"Retry-After": "12"})
        )

        with pytest.raises(RateLimitError) as exc_info:
            await make_client(session).collect("abc", "1m", 7)

        assert exc_info.value.retry_after == 12.0
        assert exc_info.value.context["status"] == 429

    @pytest.mark.asyncio
    async def test_rate_limit_without_usable_retry_after(self):
        session = FakeSession(
            FakeResponse(429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"})
        )

        with pytest.raises(RateLimitError) as exc_info:
            await make_client(session).collect("abc", "1m", 7)

        assert exc_info.value.retry_after is None

    @pytest.mark.parametrize(
        "status, expected",
        [
            (500, NetworkError),
            (503, NetworkError),
            (400, InvalidAssetError),
            (404, InvalidAssetError),
            (422, SchemaMismatchError),
        ],
    )
    @pytest.mark.asyncio
    async def test_status_mapping(self, status, expected):
        session = FakeSession(FakeResponse(status, text="error body"))

        with pytest.raises(expected):
            await make_client(session).collect("abc", "1m", 7)

    @pytest.mark.asyncio
    async def test_other_client_errors_are_permanent(self):
        session = FakeSession(FakeResponse(403, text="forbidden"))

        with pytest.raises(CollectionError) as exc_info:
            await make_client(session).collect("abc", "1m", 7)

        assert exc_info.value.code == "UPSTREAM_REJECTED"
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_connection_error(self):
        session = FakeSession(error=aiohttp.ClientConnectionError("refused"))

        with pytest.raises(NetworkError):
            await make_client(session).collect("abc", "1m", 7)

    @pytest.mark.asyncio
    async def test_timeout(self):
        session = FakeSession(error=asyncio.TimeoutError())

        with pytest.raises(CollectionTimeoutError) as exc_info:
            await make_client(session).collect("abc", "1m", 7)

        assert exc_info.value.timeout_seconds == 5.0

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        session = FakeSession(FakeResponse(200, json_error=ValueError("not json")))

        with pytest.raises(SchemaMismatchError):
            await make_client(session).collect("abc", "1m", 7)

    @pytest.mark.asyncio
    async def test_body_without_success_flag(self):
        session = FakeSession(FakeResponse(200, {"status": "ok"}))

        with pytest.raises(SchemaMismatchError):
            await make_client(session).collect("abc", "1m", 7)


class TestClose:
    @pytest.mark.asyncio
    async def test_close_releases_session(self):
        session = FakeSession()
        client = make_client(session)

        await client.close()

        assert session.closed
        await client.close()  # idempotent
