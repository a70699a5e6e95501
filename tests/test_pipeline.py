import asyncio
import gzip

import httpx
import pytest

from dual_subtitles.errors import FetchFailure
from dual_subtitles.models import MediaRequest, SubtitleCandidate
from dual_subtitles.pipeline import MergePipeline, Stage, TrackState
from dual_subtitles.ratelimit import RateLimiter
from dual_subtitles.sources.opensubtitles import OpenSubtitlesSource

MOVIE = MediaRequest(media_type="movie", imdb_id="tt0133093")

ENG_SRT = "1\n00:00:01,000 --> 00:00:03,000\nHello\n\n2\n00:00:05,000 --> 00:00:07,000\nGoodbye\n"
TUR_SRT = "1\n00:00:01,100 --> 00:00:02,900\nMerhaba\n\n2\n00:00:05,050 --> 00:00:06,900\nHoşça kal\n"


class FakeSource:
    def __init__(self, candidates, files, fail_search=False):
        self.candidates = candidates
        self.files = files
        self.fail_search = fail_search
        self.downloads = []

    async def search(self, request, language):
        if self.fail_search:
            raise RuntimeError("search exploded")
        return list(self.candidates.get(language, []))

    async def download(self, url):
        self.downloads.append(url)
        body = self.files.get(url)
        if body is None:
            raise FetchFailure(f"HTTP 404 for {url}")
        return body


def cand(file_id, lang, release="Release"):
    return SubtitleCandidate(id=file_id, url=f"https://dl.example/{file_id}", lang=lang, format="srt", release_name=release)


def run(pipeline, main_lang="eng", trans_lang="tur"):
    return asyncio.run(pipeline.produce_merged_tracks(MOVIE, main_lang, trans_lang))


def test_merged_track_for_matching_pair():
    source = FakeSource(
        {"eng": [cand("e1", "eng")], "tur": [cand("t1", "tur")]},
        {"https://dl.example/e1": ENG_SRT.encode("utf-8"), "https://dl.example/t1": TUR_SRT.encode("utf-8")},
    )
    tracks = run(MergePipeline(source))
    assert len(tracks) == 1
    track = tracks[0]
    assert track.id == "merged-e1-t1"
    assert track.lang == "eng+tur"
    assert track.name == "[ENG/TUR] Dual Subtitle"
    assert 'Hello\n<i><font color="yellow">Merhaba</font></i>' in track.content
    assert "00:00:05,000 --> 00:00:07,000" in track.content


def test_primary_falls_back_to_next_candidate():
    source = FakeSource(
        {"eng": [cand("broken", "eng"), cand("html", "eng"), cand("e2", "eng")], "tur": [cand("t1", "tur")]},
        {
            "https://dl.example/html": b"<html><body>error</body></html>",
            "https://dl.example/e2": gzip.compress(ENG_SRT.encode("utf-8")),
            "https://dl.example/t1": TUR_SRT.encode("utf-8"),
        },
    )
    tracks = run(MergePipeline(source))
    assert [t.id for t in tracks] == ["merged-e2-t1"]
    tried = [u for u in source.downloads if "/t" not in u]
    assert tried == ["https://dl.example/broken", "https://dl.example/html", "https://dl.example/e2"]


def test_all_mode_returns_one_track_per_usable_translation():
    source = FakeSource(
        {"eng": [cand("e1", "eng")], "tur": [cand("t1", "tur"), cand("bad", "tur"), cand("t2", "tur", "Second")]},
        {
            "https://dl.example/e1": ENG_SRT.encode("utf-8"),
            "https://dl.example/t1": TUR_SRT.encode("utf-8"),
            "https://dl.example/t2": TUR_SRT.encode("cp1254"),
        },
    )
    tracks = run(MergePipeline(source, result_mode="all"))
    assert [t.id for t in tracks] == ["merged-e1-t1", "merged-e1-t2"]
    assert tracks[1].name == "[ENG/TUR] Dual Subtitle #2 (Second)"


def test_single_mode_stops_at_first_usable_translation():
    source = FakeSource(
        {"eng": [cand("e1", "eng")], "tur": [cand("bad", "tur"), cand("t1", "tur"), cand("t2", "tur")]},
        {
            "https://dl.example/e1": ENG_SRT.encode("utf-8"),
            "https://dl.example/t1": TUR_SRT.encode("utf-8"),
            "https://dl.example/t2": TUR_SRT.encode("utf-8"),
        },
    )
    tracks = run(MergePipeline(source, result_mode="single"))
    assert [t.id for t in tracks] == ["merged-e1-t1"]
    assert "https://dl.example/t2" not in source.downloads


def test_secondary_attempts_are_capped():
    trans = [cand(f"t{i}", "tur") for i in range(6)]
    source = FakeSource({"eng": [cand("e1", "eng")], "tur": trans}, {"https://dl.example/e1": ENG_SRT.encode("utf-8")})
    run(MergePipeline(source, max_secondary_candidates=4, main_only_fallback=False))
    tried = [u for u in source.downloads if "/t" in u]
    assert len(tried) == 4


def test_no_primary_candidates_means_no_tracks():
    source = FakeSource({"tur": [cand("t1", "tur")]}, {"https://dl.example/t1": TUR_SRT.encode("utf-8")})
    assert run(MergePipeline(source)) == []


def test_no_viable_primary_means_no_tracks():
    source = FakeSource({"eng": [cand("e1", "eng")], "tur": [cand("t1", "tur")]}, {"https://dl.example/t1": TUR_SRT.encode("utf-8")})
    assert run(MergePipeline(source)) == []


def test_main_only_fallback_when_translation_missing():
    source = FakeSource({"eng": [cand("e1", "eng", "Matrix.1999")]}, {"https://dl.example/e1": ENG_SRT.encode("utf-8")})
    tracks = run(MergePipeline(source))
    assert len(tracks) == 1
    assert tracks[0].id == "e1"
    assert tracks[0].lang == "eng"
    assert tracks[0].name == "[ENG] Matrix.1999 (No Translation Found)"
    assert tracks[0].content.startswith("1\n00:00:01,000 --> 00:00:03,000\nHello\n")


def test_fallback_can_be_disabled():
    source = FakeSource({"eng": [cand("e1", "eng")]}, {"https://dl.example/e1": ENG_SRT.encode("utf-8")})
    assert run(MergePipeline(source, main_only_fallback=False)) == []


def test_unexpected_error_yields_empty_result(caplog):
    source = FakeSource({}, {}, fail_search=True)
    assert run(MergePipeline(source)) == []
    assert "pipeline failed" in caplog.text


def test_invalid_result_mode_rejected():
    with pytest.raises(ValueError):
        MergePipeline(FakeSource({}, {}), result_mode="best")


def test_track_state_records_history():
    state = TrackState(label="eng:1")
    state.advance(Stage.FETCHING)
    state.advance(Stage.DECODING)
    state.fail("bad bytes")
    assert state.stage is Stage.FAILED
    assert state.history == [Stage.SEARCHING, Stage.FETCHING, Stage.DECODING]
    assert state.reason == "bad bytes"


def test_vtt_translation_keeps_its_timing():
    vtt = "WEBVTT\n\n00:00:01.100 --> 00:00:02.900\nMerhaba\n\n00:00:05.050 --> 00:00:06.900\nHoşça kal\n"
    vtt_cand = SubtitleCandidate(id="v1", url="https://dl.example/v1", lang="tur", format="vtt")
    source = FakeSource(
        {"eng": [cand("e1", "eng")], "tur": [vtt_cand]},
        {"https://dl.example/e1": ENG_SRT.encode("utf-8"), "https://dl.example/v1": vtt.encode("utf-8")},
    )
    tracks = run(MergePipeline(source))
    assert [t.id for t in tracks] == ["merged-e1-v1"]
    assert "00:00:00,000" not in tracks[0].content
    assert 'Goodbye\n<i><font color="yellow">Hoşça kal</font></i>' in tracks[0].content


def _os_entry(file_id, link, lang, downloads):
    return {"IDSubtitleFile": file_id, "SubDownloadLink": link, "SubFormat": "srt",
            "SubLanguageID": lang, "SubDownloadsCnt": str(downloads)}


def test_malformed_download_link_falls_back_to_next_candidate():
    search = {
        "eng": [_os_entry("bad", "https://dl.example/\x00x", "eng", 900), _os_entry("e2", "https://dl.example/e2", "eng", 10)],
        "tur": [_os_entry("t1", "https://dl.example/t1", "tur", 10)],
    }
    bodies = {"/e2": ENG_SRT.encode("utf-8"), "/t1": TUR_SRT.encode("utf-8")}

    def handler(request):
        path = request.url.path
        if path.startswith("/search/"):
            return httpx.Response(200, json=search[path.rsplit("-", 1)[-1]])
        return httpx.Response(200, content=bodies[path])

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            source = OpenSubtitlesSource(client, RateLimiter(max_requests=10))
            return await MergePipeline(source).produce_merged_tracks(MOVIE, "eng", "tur")

    tracks = asyncio.run(scenario())
    assert [t.id for t in tracks] == ["merged-e2-t1"]
