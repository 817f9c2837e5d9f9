"""Last.fm API client for retrieving scrobble history."""

from datetime import datetime, timezone
from typing import Dict, List

from listened_sweep.fetch_client import FetchClient, FetchError
from listened_sweep.utils.logger import get_logger


logger = get_logger()


class LastfmClient:
    """Client for the user.getrecenttracks endpoint."""

    BASE_URL = "https://ws.audioscrobbler.com/2.0/"
    PAGE_SIZE = 200
    USER_AGENT = "listened-sweep/1.0"

    def __init__(self, username: str, api_key: str, fetch_client: FetchClient = None):
        """
        Initialize Last.fm client.

        Args:
            username: Last.fm user whose scrobbles are read
            api_key: Last.fm API key
            fetch_client: Optional client to send requests through
        """
        self.username = username
        self.api_key = api_key
        self.fetch_client = fetch_client or FetchClient(
            self.BASE_URL,
            headers={'User-Agent': self.USER_AGENT}
        )

    async def get_recent_tracks_page(self, page: int, since: int = 0) -> Dict:
        """
        Fetch one page of recent tracks.

        Args:
            page: 1-based page index
            since: Unix timestamp lower bound, ignored when 0

        Returns:
            The ``recenttracks`` object of the response

        Raises:
            FetchError: If the request fails or Last.fm reports an error
        """
        params = {
            'method': 'user.getrecenttracks',
            'user': self.username,
            'api_key': self.api_key,
            'format': 'json',
            'limit': self.PAGE_SIZE,
            'page': page,
        }
        if since:
            params['from'] = since

        data = await self.fetch_client.fetch('', params=params)
        if not data:
            raise FetchError("Empty response from Last.fm")
        if 'error' in data:
            raise FetchError(f"Last.fm error {data['error']}: {data.get('message', '')}")

        return data.get('recenttracks', {})

    async def get_recent_tracks(self, since: int = 0) -> List[Dict]:
        """
        Fetch every scrobble newer than ``since``.

        A failing page stops pagination; the pages fetched so far are returned.

        Args:
            since: Unix timestamp lower bound, 0 fetches the whole history

        Returns:
            History records, newest first (the order Last.fm returns them in)
        """
        records = []
        page = 1

        logger.info("Fetching last.fm listening history...")

        while True:
            try:
                recent = await self.get_recent_tracks_page(page, since)
            except FetchError as e:
                logger.error(f"Error fetching history page {page}: {e}")
                break

            items = recent.get('track', [])
            if isinstance(items, dict):
                items = [items]

            # The now playing entry is not a scrobble yet
            items = [item for item in items if not self.is_now_playing(item)]
            records.extend(self.to_history_record(item) for item in items)

            total_pages = int(recent.get('@attr', {}).get('totalPages', 1) or 0)
            logger.info(f"Page {page}/{total_pages}")

            if len(items) < self.PAGE_SIZE or page >= total_pages:
                break
            page += 1

        logger.info(f"Scrobbles: {len(records)}")
        return records

    @staticmethod
    def is_now_playing(item: Dict) -> bool:
        attr = item.get('@attr') or {}
        return str(attr.get('nowplaying', '')).lower() == 'true'

    @staticmethod
    def to_history_record(item: Dict) -> Dict:
        """
        Convert a Last.fm track object to a history record.

        Returns:
            Dictionary with keys: artist, album, name, date (ISO-8601, UTC)
        """
        artist = item.get('artist') or {}
        if isinstance(artist, dict):
            artist = artist.get('#text') or artist.get('name') or ''

        album = item.get('album') or {}
        if isinstance(album, dict):
            album = album.get('#text') or ''

        uts = (item.get('date') or {}).get('uts')
        if uts:
            date = datetime.fromtimestamp(int(uts), tz=timezone.utc)
        else:
            date = datetime.now(timezone.utc).replace(microsecond=0)

        return {
            'artist': artist,
            'album': album,
            'name': item.get('name', ''),
            'date': date.isoformat(),
        }
