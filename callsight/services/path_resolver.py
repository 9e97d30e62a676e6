"""
Turns the free-form `recording_location` stored in the call log into an ordered
list of concrete paths on the recording SFTP server.

Locations arrive in three shapes:
  - URL-encoded full paths, e.g. ``amazon-connect-b1a9c08821e5%2F2025%2F06%2F03%2Fabc.wav``
  - plain relative/absolute paths, e.g. ``./tsa-dialler/2025/06/03/abc.wav``
  - bare file names, e.g. ``abc.wav``, whose date folder is unknown

Full paths yield exactly one candidate. Bare names are probed in the dated
folders for today and the preceding days, most recent first.
"""
import datetime
import posixpath
import re
from typing import Iterable, List, Optional
from urllib.parse import unquote

AUDIO_EXTENSION_RE = re.compile(r"\.(wav|mp3|m4a|aac|flac)$", re.IGNORECASE)
SAFE_PATH_RE = re.compile(r"^[a-zA-Z0-9._\-/\\:]+$")
YEAR_SEGMENT_RE = re.compile(r"(^|/)(19|20)\d{2}/")
PARENT_SEGMENT_RE = re.compile(r"(^|/)\.\.(/|$)")

DEFAULT_TENANT_PREFIXES = ("amazon-connect-b1a9c08821e5/",)
DEFAULT_LOOKBACK_DAYS = 7
# Top-level folders on the recording server that mark a location as a full path.
KNOWN_ROOT_DIRS = ("tsa-dialler/",)


def is_valid_recording_location(location: Optional[str]) -> bool:
    """True when the location names an audio file using only path-safe characters."""
    if not location or not location.strip():
        return False
    decoded = unquote(location.strip())
    return (
        bool(AUDIO_EXTENSION_RE.search(decoded))
        and bool(SAFE_PATH_RE.match(decoded))
        and not PARENT_SEGMENT_RE.search(decoded.replace("\\", "/"))
    )


class PathResolver:
    def __init__(
        self,
        root: str = ".",
        tenant_prefixes: Iterable[str] = DEFAULT_TENANT_PREFIXES,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    ):
        self.root = root.rstrip("/") or "."
        self.tenant_prefixes = tuple(p if p.endswith("/") else p + "/" for p in tenant_prefixes if p)
        self.lookback_days = lookback_days

    def has_path_marker(self, location: str) -> bool:
        if location.startswith("./") or location.startswith("/"):
            return True
        if YEAR_SEGMENT_RE.search(location):
            return True
        known = self.tenant_prefixes + KNOWN_ROOT_DIRS
        return any(location.startswith(prefix) for prefix in known)

    def strip_tenant_prefix(self, location: str) -> str:
        path = location
        while path.startswith("./") or path.startswith("/"):
            path = path[2:] if path.startswith("./") else path[1:]
        for prefix in self.tenant_prefixes:
            if path.startswith(prefix):
                return path[len(prefix):]
        return path

    def resolve(self, recording_location: str, today: Optional[datetime.date] = None) -> List[str]:
        """
        Returns candidate remote paths in the order they should be tried.

        Deterministic for a given (location, today) pair. Empty only for an
        empty location or a path that climbs out of the root. Existence is
        decided later by the fetcher.
        """
        location = unquote((recording_location or "").strip()).replace("\\", "/")
        if not location:
            return []

        if self.has_path_marker(location):
            relative = posixpath.normpath(self.strip_tenant_prefix(location))
            if relative == ".." or relative.startswith("../"):
                return []
            return [f"{self.root}/{relative}"]

        filename = posixpath.basename(location)
        today = today or datetime.date.today()
        candidates: List[str] = []
        for offset in range(self.lookback_days + 1):
            day = today - datetime.timedelta(days=offset)
            path = f"{self.root}/{day:%Y/%m/%d}/{filename}"
            if path not in candidates:
                candidates.append(path)
        return candidates
