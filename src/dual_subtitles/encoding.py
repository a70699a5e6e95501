"""Turn raw subtitle downloads into clean text.

OpenSubtitles serves files in whatever encoding the uploader used, often
gzipped. Resolution runs: gunzip, detect, map the codec name, decode, and
fall back to Latin-1 when the detected codec rejects the bytes.
"""

from __future__ import annotations

import codecs
import gzip
import io
import logging
import zlib
from typing import Optional, Tuple

from charset_normalizer import from_bytes

from .errors import DecodeFailure, DecompressionFailure
from .models import EncodingGuess

log = logging.getLogger("dual_subtitles.encoding")

GZIP_MAGIC = b"\x1f\x8b"
UTF8_BOM = b"\xef\xbb\xbf"
DEFAULT_CODEC = "utf_8"
FALLBACK_CODEC = "latin_1"
DEFAULT_MIN_CONFIDENCE = 0.8

# Detected name (lowercased, "_" -> "-") -> Python codec
CODEC_ALIASES = {
    "windows-1254": "cp1254",
    "cp1254": "cp1254",
    "iso-8859-9": "iso8859_9",
    "iso8859-9": "iso8859_9",
    "utf-16le": "utf_16_le",
    "utf-16-le": "utf_16_le",
    "utf-16be": "utf_16_be",
    "utf-16-be": "utf_16_be",
    "ascii": DEFAULT_CODEC,
    "us-ascii": DEFAULT_CODEC,
    "utf-8": DEFAULT_CODEC,
    "utf8": DEFAULT_CODEC,
}

# Codecs whose decoders leave a leading U+FEFF in the text
BOM_CODECS = {"utf_8", "utf_16_le", "utf_16_be"}


def is_gzipped(data: bytes, url: str = "") -> bool:
    if (url or "").lower().split("?", 1)[0].endswith(".gz"):
        return True
    return len(data) > 2 and data[:2] == GZIP_MAGIC


def decompress(data: bytes, url: str = "") -> bytes:
    try:
        with gzip.GzipFile(fileobj=io.BytesIO(data)) as fh:
            out = fh.read()
    except (OSError, EOFError, zlib.error) as exc:
        log.error("Error decompressing subtitle %s: %s", url or "<bytes>", exc)
        raise DecompressionFailure(f"gzip decompression failed: {exc}") from exc
    log.info("Decompressed %s: %s -> %s bytes", url or "<bytes>", len(data), len(out))
    return out


def detect(data: bytes) -> Tuple[Optional[str], float]:
    """Return the best guess codec name and a 0..1 confidence (``1 - chaos``)."""
    match = from_bytes(data).best()
    if match is None or not match.encoding:
        return None, 0.0
    return match.encoding, max(0.0, 1.0 - float(match.chaos))


def normalize_codec(name: Optional[str]) -> str:
    """Map a detector codec name onto a Python codec, defaulting to UTF-8."""
    if not name:
        return DEFAULT_CODEC
    key = name.strip().lower().replace("_", "-")
    mapped = CODEC_ALIASES.get(key)
    if mapped:
        return mapped
    try:
        return codecs.lookup(name).name.replace("-", "_")
    except LookupError:
        log.warning("No decoder for detected encoding %s; using UTF-8", name)
        return DEFAULT_CODEC


def resolve_guess(data: bytes, url: str = "", min_confidence: float = DEFAULT_MIN_CONFIDENCE) -> EncodingGuess:
    if is_gzipped(data, url):
        data = decompress(data, url)

    detected, confidence = detect(data)
    if detected and confidence > min_confidence:
        codec = normalize_codec(detected)
        log.info("Detected encoding %s (confidence %.2f), using %s", detected, confidence, codec)
    else:
        codec = DEFAULT_CODEC
        log.info("Encoding detection inconclusive for %s (guess=%s, confidence %.2f); assuming UTF-8",
                 url or "<bytes>", detected, confidence)
        if data.startswith(UTF8_BOM):
            data = data[len(UTF8_BOM):]

    try:
        text = data.decode(codec)
    except (UnicodeDecodeError, LookupError) as exc:
        log.warning("Decoding %s as %s failed (%s); falling back to latin-1", url or "<bytes>", codec, exc)
        try:
            text = data.decode(FALLBACK_CODEC)
        except UnicodeDecodeError as fallback_exc:
            raise DecodeFailure(f"could not decode subtitle as {codec} or latin-1") from fallback_exc
        codec = FALLBACK_CODEC

    if codec in BOM_CODECS and text.startswith("\ufeff"):
        text = text[1:]

    return EncodingGuess(codec=codec, text=text, detected=detected, confidence=confidence)


def resolve(data: bytes, url: str = "", min_confidence: float = DEFAULT_MIN_CONFIDENCE) -> str:
    return resolve_guess(data, url, min_confidence=min_confidence).text


__all__ = ["resolve", "resolve_guess", "normalize_codec", "detect", "CODEC_ALIASES"]
