"""Unit tests for the rate-limit aware fetch client."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from listened_sweep.fetch_client import (
    AuthenticationError,
    FetchClient,
    FetchError,
    ResourceNotFoundError,
)


class FakeAuth:
    """Credential manager handing out a new token on every refresh."""

    def __init__(self, fail: bool = False):
        self.token = "old"
        self.refreshes = 0
        self.fail = fail

    def authorization_header(self):
        return {'Authorization': f"Bearer {self.token}"}

    async def refresh(self):
        if self.fail:
            raise AuthenticationError("rejected")
        self.refreshes += 1
        self.token = f"new{self.refreshes}"
        return self.token


def make_client(handler, auth=None):
    sleep = AsyncMock()
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = FetchClient("https://api.example.com/v2", auth=auth, http_client=http_client, sleep=sleep)
    return client, sleep


class TestFetchClient:
    """Test cases for FetchClient success paths and pacing."""

    @pytest.mark.asyncio
    async def test_fetch_success_returns_json(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v2/playlists/1"
            assert request.url.params['countryCode'] == "US"
            return httpx.Response(200, json={'data': []})

        client, sleep = make_client(handler)

        result = await client.fetch("playlists/1", params={'countryCode': 'US'})

        assert result == {'data': []}
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_absolute_url_is_used_as_is(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={})

        client, _ = make_client(handler)

        await client.fetch("https://other.example.com/x?page=2")

        assert seen == ["https://other.example.com/x?page=2"]

    @pytest.mark.asyncio
    async def test_low_remaining_quota_sleeps_before_returning(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={'ok': True},
                headers={'x-ratelimit-remaining': '2', 'x-ratelimit-replenish-rate': '3'}
            )

        client, sleep = make_client(handler)

        assert await client.fetch("tracks") == {'ok': True}
        sleep.assert_awaited_once_with(6.0)

    @pytest.mark.asyncio
    async def test_enough_quota_does_not_sleep(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={}, headers={'x-ratelimit-remaining': '10'})

        client, sleep = make_client(handler)

        await client.fetch("tracks")

        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_429_waits_retry_after_twice_and_retries(self):
        responses = [
            httpx.Response(429, headers={'Retry-After': '4'}),
            httpx.Response(429, headers={'x-ratelimit-replenish-rate': '1'}),
            httpx.Response(200, json={'done': True}),
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.pop(0)

        client, sleep = make_client(handler)

        assert await client.fetch("tracks") == {'done': True}
        assert [call.args[0] for call in sleep.await_args_list] == [8.0, 2.0]

    @pytest.mark.asyncio
    async def test_delete_with_body_and_empty_response(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "DELETE"
            bodies.append(request.content)
            return httpx.Response(204)

        client, _ = make_client(handler)

        result = await client.request("DELETE", "playlists/1/relationships/items", json={'data': []})

        assert result is None
        assert [json.loads(body) for body in bodies] == [{'data': []}]


class TestFetchClientAuth:
    """Test cases for token refresh on 401."""

    @pytest.mark.asyncio
    async def test_401_refreshes_token_and_retries(self):
        auth_headers = []

        def handler(request: httpx.Request) -> httpx.Response:
            auth_headers.append(request.headers['Authorization'])
            if request.headers['Authorization'] == "Bearer old":
                return httpx.Response(401)
            return httpx.Response(200, json={'ok': True})

        auth = FakeAuth()
        client, _ = make_client(handler, auth=auth)

        assert await client.fetch("tracks") == {'ok': True}
        assert auth.refreshes == 1
        assert auth_headers == ["Bearer old", "Bearer new1"]

    @pytest.mark.asyncio
    async def test_repeated_401_is_fatal_after_max_retries(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(401)

        auth = FakeAuth()
        client, _ = make_client(handler, auth=auth)

        with pytest.raises(AuthenticationError, match="after 3 refreshes"):
            await client.fetch("tracks")

        assert auth.refreshes == FetchClient.MAX_AUTH_RETRIES
        assert len(calls) == FetchClient.MAX_AUTH_RETRIES + 1

    @pytest.mark.asyncio
    async def test_rejected_refresh_propagates(self):
        client, _ = make_client(lambda request: httpx.Response(401), auth=FakeAuth(fail=True))

        with pytest.raises(AuthenticationError, match="rejected"):
            await client.fetch("tracks")

    @pytest.mark.asyncio
    async def test_401_without_credential_manager_is_fatal(self):
        client, _ = make_client(lambda request: httpx.Response(401))

        with pytest.raises(AuthenticationError):
            await client.fetch("tracks")


class TestFetchClientErrors:
    """Test cases for non-retried failures."""

    @pytest.mark.asyncio
    async def test_404_raises_not_found_without_retry(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404)

        client, _ = make_client(handler)

        with pytest.raises(ResourceNotFoundError, match="not found or not public"):
            await client.fetch("playlists/missing")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_other_error_raises_fetch_error(self):
        client, _ = make_client(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(FetchError) as excinfo:
            await client.fetch("tracks")
        assert excinfo.value.status_code == 500

    @pytest.mark.asyncio
    async def test_transport_error_raises_fetch_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        client, _ = make_client(handler)

        with pytest.raises(FetchError, match="unreachable"):
            await client.fetch("tracks")
