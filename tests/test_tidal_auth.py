"""Unit tests for TIDAL token refresh."""

from unittest.mock import AsyncMock
from urllib.parse import parse_qs

import httpx
import pytest

from listened_sweep.fetch_client import AuthenticationError
from listened_sweep.tidal_auth import TidalAuth


def make_auth(handler, refresh_token=None, store=None):
    return TidalAuth(
        client_id="client",
        client_secret="secret",
        access_token="old_access",
        refresh_token=refresh_token,
        store=store,
        client_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )


class TestTidalAuth:
    """Test cases for TidalAuth."""

    def test_authorization_header(self):
        auth = make_auth(lambda request: httpx.Response(200))

        assert auth.authorization_header() == {'Authorization': 'Bearer old_access'}

    @pytest.mark.asyncio
    async def test_refresh_with_refresh_token_persists_tokens(self):
        grants = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == TidalAuth.TOKEN_URL
            assert request.headers['Authorization'].startswith("Basic ")
            grants.append(parse_qs(request.content.decode()))
            return httpx.Response(200, json={'access_token': 'new_access', 'refresh_token': 'new_refresh'})

        store = AsyncMock()
        auth = make_auth(handler, refresh_token="old_refresh", store=store)

        token = await auth.refresh()

        assert token == "new_access"
        assert auth.access_token == "new_access"
        assert auth.refresh_token == "new_refresh"
        assert auth.authorization_header() == {'Authorization': 'Bearer new_access'}
        assert grants[0]['grant_type'] == ['refresh_token']
        assert grants[0]['refresh_token'] == ['old_refresh']
        store.set.assert_any_await('TIDAL_ACCESS_TOKEN', 'new_access')
        store.set.assert_any_await('TIDAL_REFRESH_TOKEN', 'new_refresh')

    @pytest.mark.asyncio
    async def test_refresh_falls_back_to_client_credentials(self):
        grants = []

        def handler(request: httpx.Request) -> httpx.Response:
            grants.append(parse_qs(request.content.decode()))
            return httpx.Response(200, json={'access_token': 'app_token'})

        store = AsyncMock()
        auth = make_auth(handler, store=store)

        assert await auth.refresh() == "app_token"
        assert grants[0]['grant_type'] == ['client_credentials']
        assert auth.refresh_token is None
        store.set.assert_awaited_once_with('TIDAL_ACCESS_TOKEN', 'app_token')

    @pytest.mark.asyncio
    async def test_refresh_rejected_is_fatal(self):
        store = AsyncMock()
        auth = make_auth(
            lambda request: httpx.Response(400, json={'error': 'invalid_grant'}),
            refresh_token="r",
            store=store
        )

        with pytest.raises(AuthenticationError, match="status 400"):
            await auth.refresh()

        assert auth.access_token == "old_access"
        store.set.assert_not_called()

    @pytest.mark.asyncio
    async def test_refresh_without_access_token_in_response(self):
        auth = make_auth(lambda request: httpx.Response(200, json={'token_type': 'Bearer'}))

        with pytest.raises(AuthenticationError, match="no access_token"):
            await auth.refresh()

    @pytest.mark.asyncio
    async def test_refresh_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        auth = make_auth(handler)

        with pytest.raises(AuthenticationError, match="refresh failed"):
            await auth.refresh()
