"""Settings loader and token stores backed by the .env file."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import dotenv_values, set_key


class CredentialsError(Exception):
    """Exception raised when required settings are missing or invalid."""
    pass


REQUIRED_SETTINGS = [
    'TIDAL_CLIENT_ID',
    'TIDAL_CLIENT_SECRET',
    'TIDAL_ACCESS_TOKEN',
    'TIDAL_PLAYLIST_ID',
    'LASTFM_USERNAME',
    'LASTFM_API_KEY',
    'LASTFM_DATABASE_NAME',
]

OPTIONAL_SETTINGS = {
    'TIDAL_REFRESH_TOKEN': None,
    'TIDAL_COUNTRY_CODE': 'US',
    'TIDAL_DETAIL_DELAY': '1',
    'MATCH_FUZZY': 'true',
    'MATCH_TITLE_THRESHOLD': '85',
    'CREDENTIAL_STORE': 'env',
}


def load_settings(env_path: str = ".env") -> Dict[str, Any]:
    """
    Load settings from the process environment and the .env file.

    Values present in the process environment win over the file.

    Args:
        env_path: Path to the .env file (may not exist)

    Returns:
        Dictionary with every required key plus the optional tunables:
        - TIDAL_DETAIL_DELAY as float seconds
        - MATCH_TITLE_THRESHOLD as float (0-100)
        - MATCH_FUZZY as bool

    Raises:
        CredentialsError: If required settings are missing or a tunable is malformed
    """
    file_values = dotenv_values(env_path) if Path(env_path).exists() else {}

    def lookup(key: str) -> str:
        value = os.environ.get(key) or file_values.get(key) or ''
        return value.strip()

    settings: Dict[str, Any] = {}
    for key in REQUIRED_SETTINGS:
        value = lookup(key)
        if value:
            settings[key] = value

    missing_keys = [key for key in REQUIRED_SETTINGS if key not in settings]
    if missing_keys:
        raise CredentialsError(
            f"Missing required settings: {', '.join(missing_keys)}"
        )

    for key, default in OPTIONAL_SETTINGS.items():
        settings[key] = lookup(key) or default

    try:
        settings['TIDAL_DETAIL_DELAY'] = float(settings['TIDAL_DETAIL_DELAY'])
        settings['MATCH_TITLE_THRESHOLD'] = float(settings['MATCH_TITLE_THRESHOLD'])
    except ValueError as e:
        raise CredentialsError(f"Invalid numeric setting: {e}")

    if not 0 <= settings['MATCH_TITLE_THRESHOLD'] <= 100:
        raise CredentialsError("MATCH_TITLE_THRESHOLD must be between 0 and 100")

    settings['MATCH_FUZZY'] = settings['MATCH_FUZZY'].lower() in ('1', 'true', 'yes', 'on')

    if settings['CREDENTIAL_STORE'] not in ('env', 'sqlite'):
        raise CredentialsError(
            f"Unknown CREDENTIAL_STORE: {settings['CREDENTIAL_STORE']} (expected env or sqlite)"
        )

    settings['ENV_PATH'] = env_path
    return settings


class CredentialStore:
    """Key-value capability the token refresh depends on."""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError


class EnvFileCredentialStore(CredentialStore):
    """Stores tokens as KEY='value' lines in a .env file."""

    def __init__(self, env_path: str = ".env"):
        self.env_path = env_path

    async def get(self, key: str) -> Optional[str]:
        if not Path(self.env_path).exists():
            return None
        return dotenv_values(self.env_path).get(key)

    async def set(self, key: str, value: str) -> None:
        path = Path(self.env_path)
        if not path.exists():
            path.touch(mode=0o600)
        success, _, _ = set_key(str(path), key, value, quote_mode="always")
        if not success:
            raise CredentialsError(f"Could not write {key} to {self.env_path}")
