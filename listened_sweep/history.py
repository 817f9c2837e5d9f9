"""Incremental ingestion of Last.fm scrobbles into the local history cache."""

from datetime import datetime, timezone

from listened_sweep.lastfm_client import LastfmClient
from listened_sweep.storage import HistoryCache
from listened_sweep.utils.logger import get_logger


logger = get_logger()


async def ingest_history(cache: HistoryCache, lastfm_client: LastfmClient) -> int:
    """
    Store scrobbles newer than the cache watermark, oldest first.

    Args:
        cache: History cache to append to
        lastfm_client: Source of scrobbles

    Returns:
        Number of new rows stored
    """
    await cache.init_db()
    since = await cache.get_watermark()

    if since:
        started = datetime.fromtimestamp(since, tz=timezone.utc).isoformat()
        logger.info(f"Fetching scrobbles since {started}")
    else:
        logger.info("History cache is empty, fetching the full history")

    records = await lastfm_client.get_recent_tracks(since=since)

    # Last.fm pages are newest first
    records.reverse()

    added = 0
    for record in records:
        if await cache.add_if_new(record):
            added += 1

    logger.info(f"Added {added} new tracks to the history cache ({len(records)} scrobbles fetched)")
    return added
