"""Reconciliation of playlist tracks against the listening history."""

import re
from typing import Dict, List, Optional, Tuple, Union

from rapidfuzz import fuzz

from listened_sweep.utils.logger import get_logger


logger = get_logger()


ARTIST_SEPARATOR = ', '
UNKNOWN_ARTIST = 'unknown artist'
ARTIST_SPLIT_PATTERN = re.compile(r'[,&]')

# Title cleanup for fuzzy comparison
FEAT_PATTERN = re.compile(
    r'\s*[\(\[](feat\.?|ft\.?|featuring|with|prod\.?|produced by)[^\)\]]*[\)\]]',
    re.IGNORECASE
)
FEAT_INLINE_PATTERN = re.compile(
    r'\s+(feat\.?|ft\.?|featuring)\s+.+$',
    re.IGNORECASE
)
VERSION_PATTERN = re.compile(
    r'\s*[\(\[][^\)\]]*?(remaster|remix|version|edit|mix|live|acoustic|radio|single|deluxe|bonus|extended|original|mono|stereo|\d{4})[^\)\]]*?[\)\]]',
    re.IGNORECASE
)
DASH_VERSION_PATTERN = re.compile(
    r'\s+-\s+[^-]*(remaster|remix|version|edit|mix|live|acoustic|radio|mono|stereo)[^-]*$',
    re.IGNORECASE
)
SPECIAL_CHARS = re.compile(r'[^\w\s]')
WHITESPACE = re.compile(r'\s+')


def normalize_artist(artist: Union[str, List[str], None]) -> str:
    """
    Canonical, order-independent artist credit.

    Splits on ',' and '&', trims, lower-cases and sorts, so "B & A" and
    "A, B" both become "a, b".
    """
    if isinstance(artist, str):
        credits = [artist]
    elif isinstance(artist, (list, tuple)):
        credits = [a for a in artist if isinstance(a, str)]
    else:
        credits = []

    names = [
        part.strip().lower()
        for credit in credits
        for part in ARTIST_SPLIT_PATTERN.split(credit)
        if part.strip()
    ]
    if not names:
        return UNKNOWN_ARTIST
    return ARTIST_SEPARATOR.join(sorted(names))


def normalize_track(track: Dict) -> Dict:
    """Copy of a track with its artist credit normalized."""
    normalized = {
        'name': str(track.get('name') or ''),
        'artist': normalize_artist(track.get('artist')),
    }
    if track.get('id') is not None:
        normalized = {'id': str(track['id']), **normalized}
    if track.get('album'):
        normalized['album'] = track['album']
    return normalized


def normalize_tracks(tracks: List[Dict]) -> List[Dict]:
    return [normalize_track(track) for track in tracks]


def clean_title(title: str) -> str:
    """Lower-case title without version tags, featured artists and punctuation."""
    cleaned = FEAT_PATTERN.sub('', title)
    cleaned = VERSION_PATTERN.sub('', cleaned)
    cleaned = DASH_VERSION_PATTERN.sub('', cleaned)
    cleaned = FEAT_INLINE_PATTERN.sub('', cleaned)
    cleaned = SPECIAL_CHARS.sub(' ', cleaned.lower())
    cleaned = WHITESPACE.sub(' ', cleaned).strip()
    return cleaned or title.lower().strip()


def track_key(track: Dict) -> Tuple[str, str]:
    """Exact comparison key: lower-cased name and normalized artist."""
    return str(track.get('name') or '').lower(), normalize_artist(track.get('artist'))


class MatchResult:
    """A playlist track found in the listening history."""

    def __init__(
        self,
        track: Dict,
        history_track: Dict,
        match_type: str,
        score: float
    ):
        """
        Initialize match result.

        Args:
            track: Normalized playlist track
            history_track: Normalized history track it matched
            match_type: 'exact' or 'fuzzy'
            score: Title similarity (0-100)
        """
        self.track = track
        self.history_track = history_track
        self.match_type = match_type
        self.score = score

    def __repr__(self) -> str:
        return f"MatchResult(type={self.match_type}, score={self.score:.2f})"


class TrackMatcher:
    """Finds already listened and duplicate tracks in a playlist."""

    # Minimum rapidfuzz ratio between cleaned titles
    TITLE_THRESHOLD = 85.0

    def __init__(self, fuzzy: bool = True, title_threshold: float = TITLE_THRESHOLD):
        """
        Initialize track matcher.

        Args:
            fuzzy: Fall back to fuzzy title matching when titles differ
            title_threshold: Minimum similarity (0-100) for a fuzzy match
        """
        self.fuzzy = fuzzy
        self.title_threshold = title_threshold

    @staticmethod
    def _index_history(history_tracks: List[Dict]) -> Dict[str, List[Tuple[str, str, Dict]]]:
        index: Dict[str, List[Tuple[str, str, Dict]]] = {}
        for history_track in normalize_tracks(history_tracks):
            name = history_track['name']
            index.setdefault(history_track['artist'], []).append(
                (name.lower(), clean_title(name), history_track)
            )
        return index

    def _match(self, track: Dict, candidates: List[Tuple[str, str, Dict]]) -> Optional[MatchResult]:
        title = track['name'].lower()
        for candidate_title, _, history_track in candidates:
            if candidate_title == title:
                return MatchResult(track, history_track, 'exact', 100.0)

        if not self.fuzzy or not candidates:
            return None

        cleaned = clean_title(track['name'])
        best_score = 0.0
        best_track = None
        for _, candidate_cleaned, history_track in candidates:
            score = fuzz.ratio(cleaned, candidate_cleaned)
            if score > best_score:
                best_score, best_track = score, history_track

        if best_track is not None and best_score >= self.title_threshold:
            logger.debug(
                f"Fuzzy match (score={best_score:.1f}): {track['name']} -> {best_track['name']}"
            )
            return MatchResult(track, best_track, 'fuzzy', best_score)
        return None

    def find_listened(self, playlist_tracks: List[Dict], history_tracks: List[Dict]) -> List[MatchResult]:
        """
        Match playlist tracks against the history.

        A track matches when the normalized artists are equal and the titles
        are equal ignoring case, or (in fuzzy mode) similar enough.

        Returns:
            One MatchResult per matched track ID, in playlist order
        """
        index = self._index_history(history_tracks)
        results = []
        seen_ids = set()

        for track in normalize_tracks(playlist_tracks):
            if track.get('id') is not None and track['id'] in seen_ids:
                continue
            result = self._match(track, index.get(track['artist'], []))
            if result:
                results.append(result)
                if track.get('id') is not None:
                    seen_ids.add(track['id'])

        fuzzy_count = sum(1 for r in results if r.match_type == 'fuzzy')
        logger.info(f"Already listened: {len(results)} tracks ({fuzzy_count} fuzzy matches)")
        return results

    @staticmethod
    def find_duplicates(playlist_tracks: List[Dict]) -> List[Dict]:
        """
        Return every track whose exact key was already seen earlier in the playlist.

        The key is (lower-cased name, normalized artist); no fuzzy matching.
        """
        seen = set()
        duplicates = []

        for track in normalize_tracks(playlist_tracks):
            key = track_key(track)
            if key in seen:
                duplicates.append(track)
            else:
                seen.add(key)

        return duplicates

    def reconcile(
        self,
        playlist_tracks: List[Dict],
        history_tracks: List[Dict]
    ) -> Tuple[List[MatchResult], List[Dict]]:
        """
        Split the playlist into listened tracks and remaining duplicates.

        Duplicates of a listened track are left out of the duplicates report;
        removing the listened track deletes every copy.
        """
        listened = self.find_listened(playlist_tracks, history_tracks)
        listened_keys = {track_key(result.track) for result in listened}
        duplicates = [
            track for track in self.find_duplicates(playlist_tracks)
            if track_key(track) not in listened_keys
        ]
        logger.info(f"Duplicates in playlist: {len(duplicates)}")
        return listened, duplicates
