"""
TIDAL openapi v2 client for reading and pruning a playlist.

The playlist endpoint only returns track identifiers, so titles and artists
are resolved afterwards through the batch /tracks endpoint.
"""

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional

from listened_sweep.fetch_client import FetchClient, FetchError, ResourceNotFoundError
from listened_sweep.utils.logger import get_logger


logger = get_logger()


class TidalClient:
    """Client for a single TIDAL playlist."""

    BASE_URL = "https://openapi.tidal.com/v2"
    BATCH_SIZE = 20  # max IDs accepted by filter[id]
    MAX_PAGES = 500

    def __init__(
        self,
        playlist_id: str,
        fetch_client: FetchClient,
        country_code: str = "US",
        detail_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = None
    ):
        """
        Initialize TIDAL client.

        Args:
            playlist_id: Playlist to read and prune
            fetch_client: Client authenticated against openapi.tidal.com
            country_code: Catalog country
            detail_delay: Seconds to wait between batch detail requests
            sleep: Coroutine used for the delay, defaults to asyncio.sleep
        """
        self.playlist_id = playlist_id
        self.fetch_client = fetch_client
        self.country_code = country_code
        self.detail_delay = detail_delay
        self._sleep = sleep or asyncio.sleep

    @property
    def items_path(self) -> str:
        return f"playlists/{self.playlist_id}/relationships/items"

    async def get_playlist_items(self, raise_on_error: bool = False) -> List[Dict]:
        """
        Get every item of the playlist, following ``links.next``.

        Args:
            raise_on_error: Re-raise a FetchError instead of returning the
                items collected so far

        Returns:
            List of dictionaries with keys: id (track id), item_id, type
        """
        items = []
        url = self.items_path
        params: Optional[Dict] = {'countryCode': self.country_code, 'locale': 'en-US'}

        for page in range(1, self.MAX_PAGES + 1):
            try:
                data = await self.fetch_client.fetch(url, params=params) or {}
            except FetchError as e:
                if raise_on_error:
                    raise
                logger.error(f"Error fetching playlist page {page}: {e}")
                break

            for entry in data.get('data') or []:
                if entry.get('type') != 'tracks':
                    logger.debug(f"Skipping playlist item of type {entry.get('type')}")
                    continue
                items.append({
                    'id': str(entry['id']),
                    'item_id': (entry.get('meta') or {}).get('itemId'),
                    'type': 'tracks',
                })

            logger.debug(f"Playlist page {page}: {len(items)} items so far")

            next_link = (data.get('links') or {}).get('next')
            if not next_link:
                break
            # The cursor link already carries the query string
            url = next_link
            params = None
        else:
            logger.warning(f"Stopped paging playlist {self.playlist_id} after {self.MAX_PAGES} pages")

        logger.info(f"Retrieved {len(items)} items from playlist {self.playlist_id}")
        return items

    async def get_tracks(self, track_ids: List[str]) -> List[Dict]:
        """
        Resolve titles and artists for track IDs in batches.

        Artists missing from the response are dropped, and a failed batch is
        skipped, so the result may be shorter than the input.

        Args:
            track_ids: Track IDs in playlist order (repeats allowed)

        Returns:
            List of track dictionaries with keys: id, name, artist (list of names),
            in the order of ``track_ids``
        """
        unique_ids = list(dict.fromkeys(track_ids))
        details: Dict[str, Dict] = {}

        for start in range(0, len(unique_ids), self.BATCH_SIZE):
            if start and self.detail_delay:
                await self._sleep(self.detail_delay)

            chunk = unique_ids[start:start + self.BATCH_SIZE]
            params = {
                'countryCode': self.country_code,
                'filter[id]': ','.join(chunk),
                'include': 'artists',
            }

            try:
                data = await self.fetch_client.fetch('tracks', params=params) or {}
            except FetchError as e:
                logger.error(f"Error resolving tracks {chunk[0]}..{chunk[-1]}: {e}")
                continue

            artist_names = {
                artist['id']: (artist.get('attributes') or {}).get('name')
                for artist in data.get('included') or []
                if artist.get('type') == 'artists'
            }

            for track in data.get('data') or []:
                relationships = track.get('relationships') or {}
                artist_ids = [a['id'] for a in (relationships.get('artists') or {}).get('data') or []]
                names = [artist_names[a] for a in artist_ids if artist_names.get(a)]
                if len(names) < len(artist_ids):
                    logger.debug(f"Missing artist names for track {track['id']}")

                details[str(track['id'])] = {
                    'id': str(track['id']),
                    'name': self.display_name(track.get('attributes') or {}),
                    'artist': names,
                }

            logger.info(f"Tidal tracks: {len(details)}/{len(unique_ids)}")

        return [details[track_id] for track_id in track_ids if track_id in details]

    async def get_playlist_tracks(self) -> List[Dict]:
        """Get every track of the playlist with names and artists."""
        items = await self.get_playlist_items()
        return await self.get_tracks([item['id'] for item in items])

    async def remove_tracks(self, track_ids: List[str]) -> List[Dict]:
        """
        Remove every playlist item pointing at one of ``track_ids``.

        Membership is fetched again to find the playlist item IDs. Nothing is
        deleted when that fetch fails or no item matches.

        Returns:
            The playlist items that were deleted
        """
        wanted = {str(track_id) for track_id in track_ids}
        if not wanted:
            return []

        try:
            items = await self.get_playlist_items(raise_on_error=True)
        except (FetchError, ResourceNotFoundError) as e:
            logger.error(f"Could not re-read playlist {self.playlist_id}, nothing removed: {e}")
            return []

        to_delete = [item for item in items if item['id'] in wanted and item['item_id']]
        if not to_delete:
            logger.warning(f"None of the {len(wanted)} tracks were found in the playlist, nothing removed")
            return []

        body = {
            'data': [
                {'id': item['id'], 'meta': {'itemId': item['item_id']}, 'type': item['type']}
                for item in to_delete
            ]
        }
        await self.fetch_client.request(
            'DELETE',
            self.items_path,
            params={'countryCode': self.country_code},
            json=body
        )

        logger.info(f"Removed {len(to_delete)} items from playlist {self.playlist_id}")
        return to_delete

    @staticmethod
    def display_name(attributes: Dict) -> str:
        """Track title with the version appended, e.g. 'Song (Remix)'."""
        title = attributes.get('title') or ''
        version = attributes.get('version')
        if version and version.lower() not in title.lower():
            return f"{title} ({version})"
        return title
