from __future__ import annotations


class DualSubtitlesError(RuntimeError):
    """Base error for the dual subtitles pipeline."""


class DecompressionFailure(DualSubtitlesError):
    """Raised when a gzip payload cannot be decompressed."""


class DecodeFailure(DualSubtitlesError):
    """Raised when neither the detected codec nor Latin-1 can decode a payload."""


class ParseFailure(DualSubtitlesError):
    """Raised when decoded text does not contain usable SRT captions."""


class MalformedRecord(DualSubtitlesError):
    """Raised for a caption block that lacks a start or end timestamp."""


class FetchFailure(DualSubtitlesError):
    """Raised when a provider request fails or times out."""


class RateLimited(FetchFailure):
    """Raised when the provider answers HTTP 429."""
