"""Run orchestration: ingest history, reconcile the playlist, prune it."""

import argparse
import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

from listened_sweep.fetch_client import FetchClient, SyncError
from listened_sweep.history import ingest_history
from listened_sweep.lastfm_client import LastfmClient
from listened_sweep.matcher import TrackMatcher, normalize_tracks
from listened_sweep.storage import HistoryCache, SqliteCredentialStore
from listened_sweep.tidal_auth import TidalAuth
from listened_sweep.tidal_client import TidalClient
from listened_sweep.utils.credentials import (
    CredentialsError,
    CredentialStore,
    EnvFileCredentialStore,
    load_settings,
)
from listened_sweep.utils.logger import setup_logger


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2


class SyncReport:
    """Report of a reconciliation run."""

    def __init__(self, dry_run: bool = False):
        """Initialize empty sync report."""
        self.start_time = datetime.now()
        self.end_time = None
        self.dry_run = dry_run
        self.history_added = 0
        self.playlist_tracks = 0
        self.listened: List[Dict] = []
        self.duplicates: List[Dict] = []
        self.removed: List[Dict] = []
        self.errors: List[str] = []

    def add_error(self, error: str):
        """Record an error."""
        self.errors.append(error)

    def finalize(self):
        """Mark run as complete."""
        self.end_time = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary."""
        duration = None
        if self.end_time:
            duration = (self.end_time - self.start_time).total_seconds()

        return {
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'duration_seconds': duration,
            'dry_run': self.dry_run,
            'history_added': self.history_added,
            'playlist_tracks': self.playlist_tracks,
            'listened': len(self.listened),
            'duplicates': len(self.duplicates),
            'removed': len(self.removed),
            'removed_tracks': [f"{t['name']} - {t['artist']}" for t in self.removed],
            'errors': self.errors,
        }

    def save_to_file(self, filepath: str):
        """Save report to JSON file."""
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)


class SyncService:
    """Removes already listened tracks from a TIDAL playlist."""

    LISTENED_FILE = 'listened.json'
    HISTORY_FILE = 'lastfm.json'
    DUPLICATES_FILE = 'duplicates.json'
    REPORT_FILE = 'sync_report.json'

    def __init__(
        self,
        settings: Dict[str, Any],
        output_dir: str = '.',
        log_file: str = None,
        tidal_client: TidalClient = None,
        lastfm_client: LastfmClient = None
    ):
        """
        Initialize sync service.

        Args:
            settings: Output of load_settings()
            output_dir: Where the JSON reports are written
            log_file: Optional path to log file
            tidal_client: Preconfigured TIDAL client (built from settings if None)
            lastfm_client: Preconfigured Last.fm client (built from settings if None)
        """
        self.settings = settings
        self.output_dir = Path(output_dir)
        self.logger = setup_logger(log_file=log_file)
        if log_file:
            self.logger.info(f"📝 Sync log file: {log_file}")

        self.cache = HistoryCache(settings['LASTFM_DATABASE_NAME'])
        self.matcher = TrackMatcher(
            fuzzy=settings.get('MATCH_FUZZY', True),
            title_threshold=settings.get('MATCH_TITLE_THRESHOLD', TrackMatcher.TITLE_THRESHOLD)
        )
        self.tidal_client = tidal_client
        self.lastfm_client = lastfm_client
        self._owned_clients: List[FetchClient] = []
        self.report = SyncReport()

    def _credential_store(self) -> CredentialStore:
        if self.settings.get('CREDENTIAL_STORE') == 'sqlite':
            return SqliteCredentialStore(self.settings['LASTFM_DATABASE_NAME'])
        return EnvFileCredentialStore(self.settings.get('ENV_PATH', '.env'))

    async def build_clients(self):
        """Create the TIDAL and Last.fm clients that were not injected."""
        if self.tidal_client is None:
            store = self._credential_store()
            # Tokens persisted by an earlier refresh win over the configured ones
            access_token = await store.get('TIDAL_ACCESS_TOKEN') or self.settings['TIDAL_ACCESS_TOKEN']
            refresh_token = await store.get('TIDAL_REFRESH_TOKEN') or self.settings.get('TIDAL_REFRESH_TOKEN')

            auth = TidalAuth(
                client_id=self.settings['TIDAL_CLIENT_ID'],
                client_secret=self.settings['TIDAL_CLIENT_SECRET'],
                access_token=access_token,
                refresh_token=refresh_token,
                store=store
            )
            fetch_client = FetchClient(
                TidalClient.BASE_URL,
                headers={'Accept': 'application/vnd.api+json'},
                auth=auth
            )
            self._owned_clients.append(fetch_client)
            self.tidal_client = TidalClient(
                playlist_id=self.settings['TIDAL_PLAYLIST_ID'],
                fetch_client=fetch_client,
                country_code=self.settings.get('TIDAL_COUNTRY_CODE', 'US'),
                detail_delay=self.settings.get('TIDAL_DETAIL_DELAY', 1.0)
            )

        if self.lastfm_client is None:
            fetch_client = FetchClient(
                LastfmClient.BASE_URL,
                headers={'User-Agent': LastfmClient.USER_AGENT}
            )
            self._owned_clients.append(fetch_client)
            self.lastfm_client = LastfmClient(
                username=self.settings['LASTFM_USERNAME'],
                api_key=self.settings['LASTFM_API_KEY'],
                fetch_client=fetch_client
            )

    async def close(self):
        for client in self._owned_clients:
            await client.close()
        self._owned_clients = []

    def clean_outputs(self):
        """Delete reports left over from a previous run."""
        for filename in (self.LISTENED_FILE, self.HISTORY_FILE, self.DUPLICATES_FILE):
            path = self.output_dir / filename
            if path.exists():
                path.unlink()
                self.logger.debug(f"Deleted stale {path}")

    def _write_json(self, filename: str, data: List[Dict]):
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / filename
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        self.logger.info(f"{filename} file generated")

    async def run(self, dry_run: bool = False) -> SyncReport:
        """
        Execute one reconciliation run.

        Args:
            dry_run: If True, write the reports but do not touch the playlist

        Returns:
            The finalized SyncReport

        Raises:
            SyncError: On fatal errors (authentication, missing playlist)
        """
        self.report = SyncReport(dry_run=dry_run)
        self.clean_outputs()

        if dry_run:
            self.logger.info("DRY RUN MODE - The playlist will not be modified")

        try:
            await self.build_clients()

            # LAST.FM
            self.report.history_added = await ingest_history(self.cache, self.lastfm_client)
            history = await self.cache.get_all_tracks()

            # TIDAL
            self.logger.info("Fetching Tidal playlist tracks...")
            playlist_tracks = await self.tidal_client.get_playlist_tracks()
            self.report.playlist_tracks = len(playlist_tracks)

            listened, duplicates = self.matcher.reconcile(playlist_tracks, history)
            self.report.listened = [result.track for result in listened]
            self.report.duplicates = duplicates

            self._write_json(self.LISTENED_FILE, self.report.listened)
            self._write_json(self.HISTORY_FILE, normalize_tracks(history))
            self._write_json(self.DUPLICATES_FILE, self.report.duplicates)

            if not self.report.listened:
                self.logger.info("No already listened tracks in the playlist")
            elif dry_run:
                self.logger.info(f"Would remove {len(self.report.listened)} tracks")
            else:
                removed_items = await self.tidal_client.remove_tracks(
                    [track['id'] for track in self.report.listened]
                )
                by_id = {track['id']: track for track in self.report.listened}
                self.report.removed = [by_id[item['id']] for item in removed_items]
                for track in self.report.removed:
                    self.logger.info(f"Removed: {track['name']} - {track['artist']}")

        except SyncError as e:
            self.logger.error(f"Sync failed: {e}")
            self.report.add_error(f"Sync failed: {e}")
            raise
        finally:
            await self.close()
            self.report.finalize()
            self.output_dir.mkdir(parents=True, exist_ok=True)
            self.report.save_to_file(str(self.output_dir / self.REPORT_FILE))

        self._log_summary()
        return self.report

    def _log_summary(self):
        self.logger.info("=" * 60)
        self.logger.info("SYNC COMPLETE")
        self.logger.info("=" * 60)
        self.logger.info(f"New history entries: {self.report.history_added}")
        self.logger.info(f"Playlist tracks: {self.report.playlist_tracks}")
        self.logger.info(f"Already listened: {len(self.report.listened)}")
        self.logger.info(f"Duplicates: {len(self.report.duplicates)}")
        self.logger.info(f"Removed: {len(self.report.removed)}")


def main(argv: List[str] = None) -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description="Remove already scrobbled tracks from a TIDAL playlist"
    )
    parser.add_argument(
        '--env-file',
        type=str,
        default='.env',
        help='Path to the .env settings file (default: .env)'
    )
    parser.add_argument(
        '--output-dir',
        type=str,
        default='.',
        help='Directory for listened.json, lastfm.json, duplicates.json and sync_report.json'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Write the reports without removing tracks'
    )
    parser.add_argument(
        '--log-file',
        type=str,
        default=None,
        help='Path to log file (default: sync_logs/sync_<timestamp>.log)'
    )

    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.env_file)
    except CredentialsError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    log_file = args.log_file
    if log_file is None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = f"sync_logs/sync_{timestamp}.log"

    try:
        service = SyncService(settings, output_dir=args.output_dir, log_file=log_file)
        asyncio.run(service.run(dry_run=args.dry_run))
    except KeyboardInterrupt:
        print("\n\nSync interrupted by user")
        return EXIT_FAILURE
    except CredentialsError as e:
        print(f"\nConfiguration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except Exception as e:
        print(f"\nSync failed: {e}", file=sys.stderr)
        return EXIT_FAILURE

    return EXIT_OK


if __name__ == '__main__':
    sys.exit(main())
