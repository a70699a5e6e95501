import asyncio

import httpx
import pytest

from dual_subtitles.errors import FetchFailure
from dual_subtitles.models import MediaRequest
from dual_subtitles.ratelimit import RateLimiter
from dual_subtitles.sources.opensubtitles import (
    OpenSubtitlesSource,
    build_search_url,
    candidates_from_payload,
    search_params,
)

MOVIE = MediaRequest(media_type="movie", imdb_id="tt0133093")
EPISODE = MediaRequest(media_type="series", imdb_id="tt0944947", season="3", episode="9")


def _entry(file_id, downloads="10", fmt="srt", link=True, rating="7.5"):
    return {
        "IDSubtitleFile": file_id,
        "SubDownloadLink": f"https://dl.opensubtitles.org/en/download/src-api/vrf-x/filead/{file_id}.gz" if link else "",
        "SubFormat": fmt,
        "SubLanguageID": "eng",
        "LanguageName": "English",
        "MovieReleaseName": f"Release {file_id}",
        "SubRating": rating,
        "SubDownloadsCnt": downloads,
    }


def test_movie_search_url():
    url = build_search_url(search_params(MOVIE, "eng"))
    assert url == "https://rest.opensubtitles.org/search/imdbid-0133093/sublanguageid-eng"


def test_episode_search_url_puts_episode_first():
    url = build_search_url(search_params(EPISODE, "tur"))
    assert url == "https://rest.opensubtitles.org/search/episode-9/imdbid-0944947/season-3/sublanguageid-tur"


def test_series_without_episode_searches_like_movie():
    request = MediaRequest(media_type="series", imdb_id="tt0944947")
    assert search_params(request, "eng") == {"imdbid": "0944947", "sublanguageid": "eng"}


def test_candidates_filtered_and_ranked():
    payload = [
        _entry("1", downloads="5"),
        _entry("2", downloads="500"),
        _entry("3", fmt="idx"),
        _entry("4", link=False),
        _entry("5", downloads="500", rating="9.0"),
        "garbage",
    ]
    candidates = candidates_from_payload(payload, "eng")
    assert [c.id for c in candidates] == ["5", "2", "1"]
    assert candidates[0].release_name == "Release 5"
    assert candidates[0].downloads == 500


def test_non_list_payload_has_no_candidates():
    assert candidates_from_payload({"error": "nope"}, "eng") == []


def _source(handler, limiter=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client, OpenSubtitlesSource(client, limiter or RateLimiter(max_requests=10))


def test_search_sends_user_agent_and_parses():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["ua"] = request.headers.get("user-agent")
        return httpx.Response(200, json=[_entry("42")])

    async def scenario():
        client, source = _source(handler)
        async with client:
            return await source.search(MOVIE, "eng")

    candidates = asyncio.run(scenario())
    assert [c.id for c in candidates] == ["42"]
    assert seen["url"].endswith("/search/imdbid-0133093/sublanguageid-eng")
    assert seen["ua"] == "TemporaryUserAgent"


@pytest.mark.parametrize("status", [429, 503])
def test_search_failures_yield_no_candidates(status):
    def handler(request):
        return httpx.Response(status, text="busy")

    async def scenario():
        client, source = _source(handler)
        async with client:
            return await source.search(MOVIE, "eng")

    assert asyncio.run(scenario()) == []


def test_search_invalid_json_yields_no_candidates():
    def handler(request):
        return httpx.Response(200, text="<html>maintenance</html>")

    async def scenario():
        client, source = _source(handler)
        async with client:
            return await source.search(MOVIE, "eng")

    assert asyncio.run(scenario()) == []


def test_download_returns_body():
    def handler(request):
        return httpx.Response(200, content=b"1\n00:00:01,000 --> 00:00:02,000\nHi\n")

    async def scenario():
        client, source = _source(handler)
        async with client:
            return await source.download("https://dl.example/sub.srt")

    assert asyncio.run(scenario()).startswith(b"1\n")


def test_download_error_raises_fetch_failure():
    def handler(request):
        return httpx.Response(500)

    async def scenario():
        client, source = _source(handler)
        async with client:
            await source.download("https://dl.example/sub.srt")

    with pytest.raises(FetchFailure):
        asyncio.run(scenario())


def test_transport_error_raises_fetch_failure():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    async def scenario():
        client, source = _source(handler)
        async with client:
            await source.download("https://dl.example/sub.srt")

    with pytest.raises(FetchFailure):
        asyncio.run(scenario())


def test_every_call_counts_against_limiter():
    limiter = RateLimiter(max_requests=10)

    def handler(request):
        return httpx.Response(200, json=[])

    async def scenario():
        client, source = _source(handler, limiter)
        async with client:
            await source.search(MOVIE, "eng")
            await source.search(MOVIE, "tur")

    asyncio.run(scenario())
    assert limiter.remaining == 8


def test_malformed_link_raises_fetch_failure():
    def handler(request):
        return httpx.Response(200, content=b"never reached")

    async def scenario():
        client, source = _source(handler)
        async with client:
            await source.download("https://dl.example/\x00x")

    with pytest.raises(FetchFailure):
        asyncio.run(scenario())
