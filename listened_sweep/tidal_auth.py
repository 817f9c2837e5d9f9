"""TIDAL token refresh and persistence."""

from typing import Callable, Dict, Optional

import httpx

from listened_sweep.fetch_client import AuthenticationError
from listened_sweep.utils.credentials import CredentialStore
from listened_sweep.utils.logger import get_logger


logger = get_logger()


class TidalAuth:
    """
    Owns the TIDAL token pair for the duration of a run.

    The initial pair comes from the one-time authorization-code login; this
    class only refreshes it. With no refresh token configured it falls back to
    the client_credentials grant.
    """

    TOKEN_URL = "https://auth.tidal.com/v1/oauth2/token"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        access_token: str,
        refresh_token: Optional[str] = None,
        store: Optional[CredentialStore] = None,
        client_factory: Callable[[], httpx.AsyncClient] = None
    ):
        """
        Initialize the credential manager.

        Args:
            client_id: TIDAL application client ID
            client_secret: TIDAL application client secret
            access_token: Current access token
            refresh_token: Optional refresh token
            store: Where refreshed tokens are persisted
            client_factory: Builds the httpx client used for the token call
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.store = store
        self._client_factory = client_factory or (lambda: httpx.AsyncClient(timeout=10))

    def authorization_header(self) -> Dict[str, str]:
        return {'Authorization': f"Bearer {self.access_token}"}

    def _grant(self) -> Dict[str, str]:
        if self.refresh_token:
            return {
                'grant_type': 'refresh_token',
                'refresh_token': self.refresh_token,
                'client_id': self.client_id,
            }
        return {'grant_type': 'client_credentials'}

    async def refresh(self) -> str:
        """
        Obtain a new access token and persist it.

        Returns:
            The new access token

        Raises:
            AuthenticationError: If the auth endpoint rejects the credentials
        """
        grant = self._grant()
        logger.info(f"Refreshing TIDAL access token ({grant['grant_type']})")

        try:
            async with self._client_factory() as client:
                response = await client.post(
                    self.TOKEN_URL,
                    data=grant,
                    auth=(self.client_id, self.client_secret)
                )
        except httpx.HTTPError as e:
            logger.error(f"Network error during token refresh: {e}")
            raise AuthenticationError(f"TIDAL token refresh failed: {e}")

        if response.status_code != 200:
            logger.error(f"Token refresh failed with status {response.status_code}")
            logger.error(f"Response: {response.text}")
            raise AuthenticationError(
                f"TIDAL rejected the credentials (status {response.status_code})"
            )

        try:
            payload = response.json()
        except ValueError:
            raise AuthenticationError("TIDAL token response is not JSON")

        access_token = payload.get('access_token')
        if not access_token:
            raise AuthenticationError("TIDAL token response has no access_token")

        self.access_token = access_token
        rotated = payload.get('refresh_token')
        if rotated:
            self.refresh_token = rotated

        if self.store is not None:
            await self.store.set('TIDAL_ACCESS_TOKEN', access_token)
            if rotated:
                await self.store.set('TIDAL_REFRESH_TOKEN', rotated)
            logger.info("Updated TIDAL_ACCESS_TOKEN")

        return access_token
