from __future__ import annotations

import base64
import hashlib
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Dict, List, Optional
from urllib.parse import unquote

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .cache import TTLCache
from .compose import CaptionStyle
from .logs import REQUEST_ID, setup_logging
from .metadata import parse_extra, parse_stremio_id
from .models import MergedTrack
from .pipeline import MergePipeline
from .ratelimit import RateLimiter
from .settings import settings
from .sources.opensubtitles import OpenSubtitlesSource

# ---------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------
setup_logging(settings.log_level, settings.json_logs)
log = logging.getLogger("dual_subtitles.app")

SUCCESS_CACHE_MAX_AGE = 6 * 3600
SUCCESS_STALE_REVALIDATE = 24 * 3600
FAILURE_CACHE_MAX_AGE = 60
SRT_MEDIA_TYPE = "application/x-subrip; charset=utf-8"


def build_pipeline(source: OpenSubtitlesSource) -> MergePipeline:
    return MergePipeline(
        source,
        threshold_ms=settings.merge_threshold_ms,
        style=CaptionStyle(italic=settings.secondary_italic, color=settings.secondary_color),
        min_confidence=settings.encoding_min_confidence,
        max_secondary_candidates=settings.max_secondary_candidates,
        result_mode=settings.result_mode,
        main_only_fallback=settings.main_only_fallback,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("Started (version %s)", settings.addon_version)
    client = httpx.AsyncClient()
    # One budget for every request talking to OpenSubtitles
    limiter = RateLimiter(max_requests=settings.max_requests_per_minute, window=60.0)
    source = OpenSubtitlesSource(
        client,
        limiter,
        base_url=settings.opensubtitles_api_url,
        user_agent=settings.user_agent,
        search_timeout=settings.search_timeout,
        download_timeout=settings.download_timeout,
    )
    app.state.limiter = limiter
    app.state.pipeline = build_pipeline(source)
    app.state.merged = TTLCache(default_ttl=settings.merged_cache_ttl, max_size=settings.merged_cache_max_size)
    try:
        yield
    finally:
        await client.aclose()
        log.info("Shutdown")


# ---------------------------------------------------------------------
# App + middleware
# ---------------------------------------------------------------------
app = FastAPI(title="Dual Language Subtitles for Stremio", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    incoming = request.headers.get("x-request-id")
    rid = incoming or uuid.uuid4().hex[:16]
    token = REQUEST_ID.set(rid)
    try:
        response = await call_next(request)
    finally:
        REQUEST_ID.reset(token)
    response.headers["X-Request-ID"] = rid
    return response


# ---------------------------------------------------------------------
# User configuration
# ---------------------------------------------------------------------
def parse_config(raw: Optional[str]) -> Dict[str, str]:
    """Read the Stremio config path segment.

    Accepts the SDK's URL-encoded JSON object as well as ``key=value`` pairs
    separated by ``|`` or ``,``.
    """
    if not raw:
        return {}
    text = unquote(raw).strip()
    if text.startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            log.warning("Ignoring malformed config segment: %r", raw[:80])
            return {}
        return {str(k): str(v) for k, v in data.items()} if isinstance(data, dict) else {}
    config: Dict[str, str] = {}
    for part in text.replace("|", ",").split(","):
        if "=" in part:
            key, value = part.split("=", 1)
            if key.strip():
                config[key.strip()] = value.strip()
    return config


def _languages(config: Dict[str, str]) -> tuple:
    main_lang = config.get("mainLang") or settings.default_main_lang
    trans_lang = config.get("transLang") or settings.default_trans_lang
    return main_lang, trans_lang


# ---------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------
MANIFEST = {
    "id": "org.stremio.dualsubtitles",
    "version": settings.addon_version,
    "name": "Dual Language Subtitles",
    "description": "Provides dual subtitles (main + translation) from OpenSubtitles for language learning.",
    "catalogs": [],
    "resources": ["subtitles"],
    "types": ["movie", "series"],
    "idPrefixes": ["tt"],
    "logo": "https://img.icons8.com/ios/452/translate-app.png",
    "behaviorHints": {"configurable": True, "configurationRequired": True},
    "config": [
        {
            "key": "version",
            "type": "select",
            "title": "Stremio Version (Web requires manual subtitle upload)",
            "options": ["desktop", "web"],
            "default": "desktop",
        },
        {
            "key": "mainLang",
            "type": "select",
            "title": "Main Language (Audio Language)",
            "options": settings.languages,
            "required": True,
            "default": settings.default_main_lang,
        },
        {
            "key": "transLang",
            "type": "select",
            "title": "Translation Language (Your Language)",
            "options": settings.languages,
            "required": True,
            "default": settings.default_trans_lang,
        },
    ],
}


def _manifest_for(config: Dict[str, str]) -> dict:
    manifest = dict(MANIFEST)
    if config:
        main_lang, trans_lang = _languages(config)
        manifest["behaviorHints"] = {"configurable": True, "configurationRequired": False}
        manifest["description"] = f"{MANIFEST['description']} ({main_lang.upper()} + {trans_lang.upper()})"
    return manifest


@app.get("/manifest.json")
async def manifest() -> JSONResponse:
    return JSONResponse(_manifest_for({}))


@app.get("/{config}/manifest.json")
async def manifest_configured(config: str) -> JSONResponse:
    return JSONResponse(_manifest_for(parse_config(config)))


@app.get("/")
async def index() -> JSONResponse:
    return JSONResponse({"status": "ok", "manifest": "/manifest.json", "name": MANIFEST["name"]})


@app.get("/healthz")
async def healthz() -> JSONResponse:
    return JSONResponse({"status": "ok", "version": settings.addon_version})


# ---------------------------------------------------------------------
# Subtitles
# ---------------------------------------------------------------------
def _public_base(request: Request) -> str:
    if settings.public_base_url:
        return settings.public_base_url.rstrip("/") + "/"
    base = str(request.base_url)
    xf_proto = request.headers.get("x-forwarded-proto")
    if xf_proto and xf_proto.lower() == "https":
        base = base.replace("http://", "https://")
    return base


def _track_token(track: MergedTrack, item_id: str) -> str:
    digest = hashlib.sha1(f"{item_id}|{track.lang}|{track.id}".encode("utf-8")).hexdigest()
    return digest[:20]


def _data_uri(content: str) -> str:
    encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
    return f"data:application/x-subrip;base64,{encoded}"


def _empty_response() -> JSONResponse:
    return JSONResponse({"subtitles": [], "cacheMaxAge": FAILURE_CACHE_MAX_AGE})


async def _subtitles_response(request: Request, media_type: str, item_id: str, config: Optional[str],
                              extra: Optional[str] = None) -> JSONResponse:
    if media_type not in {"movie", "series"}:
        raise HTTPException(status_code=404, detail="Unsupported media type")

    user_config = parse_config(config)
    main_lang, trans_lang = _languages(user_config)
    is_web = user_config.get("version") == "web"
    log.info("Dual Subtitle request: type=%s id=%s main=%s trans=%s web=%s",
             media_type, item_id, main_lang, trans_lang, is_web)

    extras = parse_extra(extra)
    media = parse_stremio_id(
        media_type,
        extras.get("imdbId") or item_id,
        season=extras.get("season"),
        episode=extras.get("episode"),
    )
    if media is None:
        return _empty_response()

    pipeline: MergePipeline = request.app.state.pipeline
    tracks = await pipeline.produce_merged_tracks(media, main_lang, trans_lang)
    if not tracks:
        return _empty_response()

    store: TTLCache = request.app.state.merged
    base = _public_base(request)
    subtitles: List[dict] = []
    for track in tracks:
        if is_web:
            url = _data_uri(track.content)
        else:
            token = _track_token(track, item_id)
            store.set(token, track)
            url = f"{base}merged/{token}.srt"
        subtitles.append({"id": track.id, "url": url, "lang": track.lang, "name": track.name})

    return JSONResponse({
        "subtitles": subtitles,
        "cacheMaxAge": SUCCESS_CACHE_MAX_AGE,
        "staleRevalidate": SUCCESS_STALE_REVALIDATE,
    })


@app.get("/subtitles/{media_type}/{item_id}.json")
async def subtitles(request: Request, media_type: str, item_id: str) -> JSONResponse:
    return await _subtitles_response(request, media_type, item_id, None)


@app.get("/subtitles/{media_type}/{item_id}/{extra}.json")
async def subtitles_extra(request: Request, media_type: str, item_id: str, extra: str) -> JSONResponse:
    return await _subtitles_response(request, media_type, item_id, None, extra)


@app.get("/{config}/subtitles/{media_type}/{item_id}.json")
async def subtitles_configured(request: Request, config: str, media_type: str, item_id: str) -> JSONResponse:
    return await _subtitles_response(request, media_type, item_id, config)


@app.get("/{config}/subtitles/{media_type}/{item_id}/{extra}.json")
async def subtitles_configured_extra(request: Request, config: str, media_type: str, item_id: str, extra: str) -> JSONResponse:
    return await _subtitles_response(request, media_type, item_id, config, extra)


@app.get("/merged/{token}.srt")
async def serve_merged(request: Request, token: str) -> Response:
    track: Optional[MergedTrack] = request.app.state.merged.get(token)
    if track is None:
        raise HTTPException(status_code=404, detail="Merged subtitle expired or unknown")
    headers = {
        "Content-Disposition": f'attachment; filename="{token}.srt"',
        "Cache-Control": f"public, max-age={SUCCESS_CACHE_MAX_AGE}",
        "Access-Control-Allow-Origin": "*",
    }
    return Response(content=track.content.encode("utf-8"), media_type=SRT_MEDIA_TYPE, headers=headers)
