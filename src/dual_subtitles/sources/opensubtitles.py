from __future__ import annotations

import logging
from typing import Dict, List

import httpx

from ..errors import FetchFailure, RateLimited
from ..models import MediaRequest, SubtitleCandidate
from ..ratelimit import RateLimiter

log = logging.getLogger("dual_subtitles.sources.opensubtitles")

API_BASE = "https://rest.opensubtitles.org"
DEFAULT_USER_AGENT = "TemporaryUserAgent"
SUPPORTED_FORMATS = {"srt", "vtt", "sub", "ass"}


def _numeric_imdb_id(raw_id: str) -> str:
    return (raw_id or "").replace("tt", "")


def search_params(request: MediaRequest, language: str) -> Dict[str, str]:
    params: Dict[str, str] = {"imdbid": _numeric_imdb_id(request.imdb_id)}
    if request.media_type == "series" and request.is_episode:
        params["season"] = str(request.season)
        params["episode"] = str(request.episode)
    params["sublanguageid"] = language
    return params


def build_search_url(params: Dict[str, str], base: str = API_BASE) -> str:
    """Build the REST search path.

    Episode searches must use the order episode/imdbid/season/sublanguageid;
    movie searches keep the insertion order of ``params``.
    """
    base = base.rstrip("/")
    if params.get("episode"):
        parts = [f"episode-{params['episode']}"]
        for key in ("imdbid", "season", "sublanguageid"):
            if params.get(key):
                parts.append(f"{key}-{params[key]}")
        return f"{base}/search/{'/'.join(parts)}"
    path = "/".join(f"{key}-{value}" for key, value in params.items())
    return f"{base}/search/{path}"


def _to_float(value: object) -> float:
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0


def _to_int(value: object) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return 0


def candidates_from_payload(payload: object, language: str) -> List[SubtitleCandidate]:
    """Keep downloadable text-subtitle entries, most downloaded first."""
    if not isinstance(payload, list):
        return []
    candidates: List[SubtitleCandidate] = []
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        link = entry.get("SubDownloadLink")
        fmt = str(entry.get("SubFormat") or "").lower()
        if not link or fmt not in SUPPORTED_FORMATS:
            continue
        candidates.append(
            SubtitleCandidate(
                id=str(entry.get("IDSubtitleFile") or ""),
                url=link,
                lang=entry.get("SubLanguageID") or language,
                format=fmt,
                lang_name=entry.get("LanguageName") or "",
                release_name=entry.get("MovieReleaseName") or entry.get("MovieName") or "Unknown",
                rating=_to_float(entry.get("SubRating")),
                downloads=_to_int(entry.get("SubDownloadsCnt")),
            )
        )
    candidates.sort(key=lambda c: (c.downloads, c.rating), reverse=True)
    return candidates


class OpenSubtitlesSource:
    """OpenSubtitles REST access bound to one HTTP client and one rate limiter."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        limiter: RateLimiter,
        base_url: str = API_BASE,
        user_agent: str = DEFAULT_USER_AGENT,
        search_timeout: float = 10.0,
        download_timeout: float = 15.0,
    ) -> None:
        self.client = client
        self.limiter = limiter
        self.base_url = base_url
        self.user_agent = user_agent
        self.search_timeout = search_timeout
        self.download_timeout = download_timeout

    async def _get(self, url: str, timeout: float) -> httpx.Response:
        try:
            response = await self.limiter.run(
                self.client.get,
                url,
                headers={"User-Agent": self.user_agent},
                timeout=timeout,
                follow_redirects=True,
            )
        except httpx.TimeoutException as exc:
            raise FetchFailure(f"timeout fetching {url}") from exc
        except httpx.InvalidURL as exc:
            raise FetchFailure(f"invalid url {url!r}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise FetchFailure(f"error fetching {url}: {exc}") from exc
        if response.status_code == 429:
            raise RateLimited(f"provider rate limit hit for {url}")
        if response.status_code >= 400:
            raise FetchFailure(f"HTTP {response.status_code} for {url}")
        return response

    async def search(self, request: MediaRequest, language: str) -> List[SubtitleCandidate]:
        url = build_search_url(search_params(request, language), self.base_url)
        log.info("Searching %s subtitles at: %s", language, url)
        try:
            response = await self._get(url, self.search_timeout)
            payload = response.json()
        except RateLimited:
            log.warning("Rate limit exceeded from OpenSubtitles API while fetching %s", language)
            return []
        except (FetchFailure, ValueError) as exc:
            log.warning("Error fetching %s subtitles: %s", language, exc)
            return []

        candidates = candidates_from_payload(payload, language)
        if not candidates:
            log.info("No suitable %s subtitles found.", language)
        else:
            log.info("OpenSubtitles search ok lang=%s items=%s usable=%s",
                     language, len(payload) if isinstance(payload, list) else 0, len(candidates))
        return candidates

    async def download(self, url: str) -> bytes:
        log.info("Fetching subtitle content from: %s", url)
        response = await self._get(url, self.download_timeout)
        return response.content

