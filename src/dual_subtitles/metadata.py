from __future__ import annotations

import logging
from typing import Dict, Optional
from urllib.parse import parse_qsl, unquote

from .models import MediaRequest

log = logging.getLogger("dual_subtitles.metadata")


def parse_stremio_id(media_type: str, raw_id: str, season: Optional[str] = None, episode: Optional[str] = None) -> Optional[MediaRequest]:
    """Parse Stremio IDs that may be URL-encoded once or twice.

    Examples of incoming IDs:
    - tt0369179                   (movie)
    - tt0369179:1:2               (series S01E02)
    - tt0369179%3A1%3A2           (encoded once)

    Explicit ``season``/``episode`` values win over the ones embedded in the id.
    Returns None when the id is not an IMDb id.
    """
    s = raw_id or ""
    for _ in range(2):
        decoded = unquote(s)
        if decoded == s:
            break
        s = decoded

    parts = s.split(":")
    base = parts[0].strip()
    if len(parts) >= 3:
        season = season or (parts[1] or None)
        episode = episode or (parts[2] or None)

    if not base.startswith("tt"):
        log.info("No valid IMDB ID provided: %r", raw_id)
        return None

    if media_type != "series":
        season = episode = None
    return MediaRequest(media_type=media_type, imdb_id=base, season=season, episode=episode)


def parse_extra(segment: Optional[str]) -> Dict[str, str]:
    """Decode a Stremio extra segment (``filename=x.mkv&videoSize=1``) into a dict."""
    if not segment:
        return {}
    if segment.endswith(".json"):
        segment = segment[: -len(".json")]
    return {k: v for k, v in parse_qsl(unquote(segment)) if k and v}
