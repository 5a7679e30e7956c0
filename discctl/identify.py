"""
Discctl Disc Identification
Reads the disc TOC through the external discid tool and looks up releases on MusicBrainz
"""

import json
import subprocess
import requests
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Tuple

from . import activity
from .drives import device_path
from .error_detection import (
    ErrorCategory,
    ErrorCode,
    RipError,
    tool_failure,
    tool_missing,
)

DISCID_CMD = ["discid", "--json"]
MUSICBRAINZ_API = "https://musicbrainz.org/ws/2"
MUSICBRAINZ_LOOKUP_URL = "https://musicbrainz.org/cdtoc/attach?id="


@dataclass
class Track:
    """One audio track in the disc TOC (offset and length in sectors)"""
    number: int = 0
    offset: int = 0
    length: int = 0

    def to_dict(self) -> Dict:
        return {"length": self.length, "number": self.number, "offset": self.offset}


@dataclass
class DiscIdentity:
    """Table of contents and identifiers of the disc in a drive"""
    first_track: int = 0
    last_track: int = 0
    sectors: int = 0
    freedb_id: str = ""
    musicbrainz_id: str = ""
    tracks: List[Track] = field(default_factory=list)

    @property
    def lookup_url(self) -> Optional[str]:
        if self.musicbrainz_id:
            return MUSICBRAINZ_LOOKUP_URL + self.musicbrainz_id
        return None

    def to_dict(self) -> Dict:
        """Convert to dictionary with keys in sorted order"""
        data = {
            "firstTrack": self.first_track,
            "lastTrack": self.last_track,
            "sectors": self.sectors,
            "freedbId": self.freedb_id,
            "tracks": [t.to_dict() for t in self.tracks],
        }
        if self.musicbrainz_id:
            data["musicbrainzId"] = self.musicbrainz_id
            data["lookupUrl"] = self.lookup_url
        return dict(sorted(data.items()))


def _pick(payload: dict, *keys, default=None):
    """First present key among the accepted spellings"""
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


def parse_identity(payload: dict) -> DiscIdentity:
    """Build a DiscIdentity from the discid tool's JSON payload.

    Accepts camelCase or snake_case keys. Tracks without an explicit number
    are numbered from the first track.
    """
    first = int(_pick(payload, "firstTrack", "first_track", "first", default=1))
    last = int(_pick(payload, "lastTrack", "last_track", "last", default=0))

    tracks = []
    for idx, entry in enumerate(_pick(payload, "tracks", default=[])):
        tracks.append(Track(
            number=int(_pick(entry, "number", "num", default=first + idx)),
            offset=int(_pick(entry, "offset", default=0)),
            length=int(_pick(entry, "length", "sectors", default=0)),
        ))
    tracks.sort(key=lambda t: t.number)

    if not last and tracks:
        last = tracks[-1].number

    return DiscIdentity(
        first_track=first,
        last_track=last,
        sectors=int(_pick(payload, "sectors", "totalSectors", "total_sectors", default=0)),
        freedb_id=str(_pick(payload, "freedbId", "freedb_id", "freedb", default="")),
        musicbrainz_id=str(_pick(payload, "musicbrainzId", "musicbrainz_id", "id", default="")),
        tracks=tracks,
    )


class DiscIdentifier:
    """Runs the discid tool against a drive and enriches the result"""

    def __init__(self, config: dict = None):
        self.config = config or {}
        self.command = list(self.config.get('tools', {}).get('discid', DISCID_CMD))

    def identify(self, device: str) -> Tuple[Optional[DiscIdentity], Optional[RipError]]:
        """Identify the disc in a drive.

        Returns:
            (identity, None) on success, (None, None) when no disc was
            found, (None, error) when the tool failed. Any error output
            from the tool counts as failure even if stdout parses.
        """
        path = device_path(device)
        cmd = self.command + [path]
        activity.log_debug(f"DISCID: running {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            activity.log_error(f"DISCID: unable to run {cmd[0]}: {e}")
            return None, tool_missing(cmd[0], e)

        if result.stderr.strip():
            activity.log_warning(f"DISCID: {path}: {result.stderr.strip()}")
            return None, tool_failure(cmd[0], result.returncode, result.stderr)

        if result.returncode != 0:
            return None, tool_failure(cmd[0], result.returncode, result.stdout)

        if not result.stdout.strip():
            return None, None

        try:
            payload = json.loads(result.stdout)
            identity = parse_identity(payload) if payload else None
        except (ValueError, TypeError, AttributeError) as e:
            activity.log_error(f"DISCID: unreadable output for {path}: {e}")
            return None, RipError(
                category=ErrorCategory.PROCESS,
                code=ErrorCode.BAD_OUTPUT,
                message=f"{cmd[0]} returned unreadable output",
                details=result.stdout[:200],
            )

        if identity is None or identity.last_track == 0:
            return None, None

        activity.log_info(
            f"DISCID: {path} tracks {identity.first_track}-{identity.last_track} "
            f"({identity.freedb_id or 'no freedb id'})"
        )
        return identity, None

    def fetch_releases(self, musicbrainz_id: str) -> List[Dict]:
        """Look up MusicBrainz releases for a disc ID.

        Network failures are logged and yield an empty list.
        """
        if not musicbrainz_id:
            return []

        mb_cfg = self.config.get('musicbrainz', {})
        url = f"{mb_cfg.get('url', MUSICBRAINZ_API)}/discid/{musicbrainz_id}"

        try:
            r = requests.get(
                url,
                params={'fmt': 'json', 'inc': 'artist-credits'},
                headers={'User-Agent': mb_cfg.get('user_agent', 'discctl/0.1.0')},
                timeout=mb_cfg.get('timeout', 10),
            )
        except requests.exceptions.RequestException as e:
            activity.log_warning(f"MusicBrainz lookup failed for {musicbrainz_id}: {e}")
            return []

        if r.status_code == 404:
            return []
        if r.status_code != 200:
            activity.log_warning(f"MusicBrainz lookup returned {r.status_code} for {musicbrainz_id}")
            return []

        try:
            data = r.json()
        except ValueError as e:
            activity.log_warning(f"MusicBrainz returned unreadable data for {musicbrainz_id}: {e}")
            return []

        releases = []
        for release in data.get('releases', []):
            credits = release.get('artist-credit', [])
            artist = "".join(
                c.get('name', '') + c.get('joinphrase', '') for c in credits
            )
            releases.append({
                'id': release.get('id', ''),
                'title': release.get('title', ''),
                'date': release.get('date', ''),
                'artist': artist,
            })
        return releases
