from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class CaptionRecord:
    """One timed caption. Timing is in milliseconds from the start of the video."""

    index: int
    start_ms: int
    end_ms: int
    text: str

    def with_text(self, text: str) -> "CaptionRecord":
        return replace(self, text=text)


@dataclass(frozen=True)
class RawCaption:
    """A caption block as read from SRT text, before timestamps are validated."""

    id: str
    start: Optional[str]
    end: Optional[str]
    text: str


@dataclass(frozen=True)
class EncodingGuess:
    codec: str
    text: str
    detected: Optional[str] = None
    confidence: float = 0.0


@dataclass
class SubtitleCandidate:
    """One OpenSubtitles search hit for a single language."""

    id: str
    url: str
    lang: str
    format: str
    lang_name: str = ""
    release_name: str = "Unknown"
    rating: float = 0.0
    downloads: int = 0


@dataclass(frozen=True)
class MediaRequest:
    media_type: str
    imdb_id: str
    season: Optional[str] = None
    episode: Optional[str] = None

    @property
    def is_episode(self) -> bool:
        return bool(self.season and self.episode)


@dataclass(frozen=True)
class MergedTrack:
    id: str
    lang: str
    name: str
    content: str
