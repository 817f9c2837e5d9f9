#!/usr/bin/env python3
"""
TIDAL playlist sweep

Removes tracks already scrobbled on Last.fm from a TIDAL playlist.
Safe to re-run: the history cache only fetches new scrobbles.

Usage:
    python sync.py [--dry-run] [--env-file .env] [--output-dir .] [--log-file path]
"""

import sys

from listened_sweep.sync_service import main


if __name__ == "__main__":
    sys.exit(main())
