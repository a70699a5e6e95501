"""Search, fetch, decode, parse, align, compose and serialize one dual track.

Each language is looked up once; candidates are then tried in ranking order.
The first main-language candidate that downloads, decodes and parses wins.
Up to ``max_secondary_candidates`` translation candidates are loaded next to it,
and each usable one becomes its own merged track. Any failure ends in an
empty result, never an exception.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol, Sequence, Tuple

from . import srt
from .align import DEFAULT_THRESHOLD_MS, match_all, merge_pairs
from .compose import CaptionStyle
from .encoding import DEFAULT_MIN_CONFIDENCE, resolve_guess
from .errors import DualSubtitlesError
from .models import CaptionRecord, MediaRequest, MergedTrack, SubtitleCandidate

log = logging.getLogger("dual_subtitles.pipeline")

RESULT_MODES = {"all", "single"}


class Stage(str, Enum):
    SEARCHING = "searching"
    FETCHING = "fetching"
    DECODING = "decoding"
    PARSING = "parsing"
    ALIGNING = "aligning"
    COMPOSING = "composing"
    SERIALIZING = "serializing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class TrackState:
    """Progress of one candidate (or one merged output) through the stages."""

    label: str
    stage: Stage = Stage.SEARCHING
    reason: str = ""
    history: List[Stage] = field(default_factory=list)

    def advance(self, stage: Stage) -> None:
        self.history.append(self.stage)
        self.stage = stage
        log.debug("[%s] -> %s", self.label, stage.value)

    def fail(self, reason: str) -> None:
        self.advance(Stage.FAILED)
        self.reason = reason
        log.warning("[%s] failed: %s", self.label, reason)


class SubtitleSource(Protocol):
    async def search(self, request: MediaRequest, language: str) -> List[SubtitleCandidate]:
        ...

    async def download(self, url: str) -> bytes:
        ...


@dataclass
class LoadedTrack:
    candidate: SubtitleCandidate
    records: List[CaptionRecord]


class MergePipeline:
    def __init__(
        self,
        source: SubtitleSource,
        threshold_ms: int = DEFAULT_THRESHOLD_MS,
        style: Optional[CaptionStyle] = None,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        max_secondary_candidates: int = 4,
        result_mode: str = "all",
        main_only_fallback: bool = True,
    ) -> None:
        if result_mode not in RESULT_MODES:
            raise ValueError(f"result_mode must be one of {sorted(RESULT_MODES)}")
        self.source = source
        self.threshold_ms = threshold_ms
        self.style = style
        self.min_confidence = min_confidence
        self.max_secondary_candidates = max(1, max_secondary_candidates)
        self.result_mode = result_mode
        self.main_only_fallback = main_only_fallback

    async def load(self, candidate: SubtitleCandidate, label: str) -> Optional[LoadedTrack]:
        """Fetch, decode and parse one candidate; None when any step fails."""
        state = TrackState(label=f"{label}:{candidate.id}")
        try:
            state.advance(Stage.FETCHING)
            raw = await self.source.download(candidate.url)
            state.advance(Stage.DECODING)
            guess = resolve_guess(raw, candidate.url, min_confidence=self.min_confidence)
            state.advance(Stage.PARSING)
            if candidate.format != "srt":
                log.warning("Subtitle %s is %s, not SRT. Parsing assumes SRT structure.", candidate.id, candidate.format)
            records = srt.parse_captions(guess.text)
        except DualSubtitlesError as exc:
            state.fail(f"{type(exc).__name__}: {exc}")
            return None
        if not records:
            state.fail("no captions")
            return None
        log.info("[%s] usable: %s captions, encoding=%s", state.label, len(records), guess.codec)
        return LoadedTrack(candidate=candidate, records=records)

    async def first_viable(self, candidates: Sequence[SubtitleCandidate], label: str) -> Optional[LoadedTrack]:
        for candidate in candidates:
            loaded = await self.load(candidate, label)
            if loaded is not None:
                return loaded
        return None

    async def load_secondaries(self, candidates: Sequence[SubtitleCandidate], label: str) -> List[LoadedTrack]:
        attempts = list(candidates[: self.max_secondary_candidates])
        if self.result_mode == "single":
            first = await self.first_viable(attempts, label)
            return [first] if first else []
        loaded = await asyncio.gather(*(self.load(c, label) for c in attempts))
        return [track for track in loaded if track is not None]

    def merge(self, main: LoadedTrack, trans: LoadedTrack) -> Optional[str]:
        state = TrackState(label=f"merge:{main.candidate.id}+{trans.candidate.id}", stage=Stage.PARSING)
        state.advance(Stage.ALIGNING)
        pairs = match_all(main.records, trans.records, self.threshold_ms)
        state.advance(Stage.COMPOSING)
        merged = merge_pairs(pairs, self.style)
        if not merged:
            state.fail("merging resulted in empty subtitles")
            return None
        state.advance(Stage.SERIALIZING)
        content = srt.serialize(merged)
        state.advance(Stage.DONE)
        matched = sum(1 for _, other in pairs if other is not None)
        log.info("[%s] merged %s captions, %s with translation", state.label, len(merged), matched)
        return content

    async def _search_both(self, request: MediaRequest, main_lang: str, trans_lang: str) -> Tuple[List[SubtitleCandidate], List[SubtitleCandidate]]:
        main_candidates, trans_candidates = await asyncio.gather(
            self.source.search(request, main_lang),
            self.source.search(request, trans_lang),
        )
        log.info("Candidates: %s=%s %s=%s", main_lang, len(main_candidates), trans_lang, len(trans_candidates))
        return main_candidates, trans_candidates

    async def produce_merged_tracks(self, request: MediaRequest, main_lang: str, trans_lang: str) -> List[MergedTrack]:
        try:
            return await self._produce(request, main_lang, trans_lang)
        except Exception:  # noqa: BLE001
            log.exception("Dual subtitle pipeline failed for %s", request.imdb_id)
            return []

    async def _produce(self, request: MediaRequest, main_lang: str, trans_lang: str) -> List[MergedTrack]:
        main_candidates, trans_candidates = await self._search_both(request, main_lang, trans_lang)
        if not main_candidates:
            log.info("No %s subtitles found for %s", main_lang, request.imdb_id)
            return []

        main, translations = await asyncio.gather(
            self.first_viable(main_candidates, main_lang),
            self.load_secondaries(trans_candidates, trans_lang),
        )
        if main is None:
            log.warning("No viable %s subtitle among %s candidates", main_lang, len(main_candidates))
            return []

        tracks: List[MergedTrack] = []
        for trans in translations:
            content = self.merge(main, trans)
            if content is None:
                continue
            tracks.append(_merged_track(main, trans, main_lang, trans_lang, len(tracks) + 1, content))

        if not tracks and self.main_only_fallback:
            log.warning("Could not get a usable %s translation. Returning only the %s subtitle.", trans_lang, main_lang)
            tracks.append(_main_only_track(main, main_lang))
        return tracks


def _merged_track(main: LoadedTrack, trans: LoadedTrack, main_lang: str, trans_lang: str, position: int, content: str) -> MergedTrack:
    name = f"[{main_lang.upper()}/{trans_lang.upper()}] Dual Subtitle"
    if position > 1:
        name = f"{name} #{position} ({trans.candidate.release_name})"
    return MergedTrack(
        id=f"merged-{main.candidate.id}-{trans.candidate.id}",
        lang=f"{main_lang}+{trans_lang}",
        name=name,
        content=content,
    )


def _main_only_track(main: LoadedTrack, main_lang: str) -> MergedTrack:
    return MergedTrack(
        id=main.candidate.id,
        lang=main_lang,
        name=f"[{main_lang.upper()}] {main.candidate.release_name or 'Main Subtitle'} (No Translation Found)",
        content=srt.serialize(main.records),
    )
