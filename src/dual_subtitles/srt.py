from __future__ import annotations

import logging
import re
from typing import Iterable, List

from .errors import MalformedRecord, ParseFailure
from .models import CaptionRecord, RawCaption

log = logging.getLogger("dual_subtitles.srt")

TIMESTAMP_RE = re.compile(r"^(\d{2}):(\d{2}):(\d{2}),(\d{3})$")
TIMING_LINE_RE = re.compile(r"^\s*(?P<start>\S+)\s*-->\s*(?P<end>\S+)")
# Hour-optional, comma or dot separated form seen in VTT and loose SRT files
LOOSE_TIMESTAMP_RE = re.compile(r"^(?:(\d{1,2}):)?(\d{2}):(\d{2})[,.](\d{1,3})$")
BLOCK_SPLIT_RE = re.compile(r"\n\s*\n")
INDEX_RE = re.compile(r"^\s*\d+\s*$")


def parse_timestamp(value: str) -> int:
    """Convert ``HH:MM:SS,mmm`` to milliseconds.

    Anything else is logged and read as 0; the caption stays in the stream.
    """
    m = TIMESTAMP_RE.match((value or "").strip())
    if not m:
        log.error("Invalid time format encountered: %r", value)
        return 0
    hours, minutes, seconds, millis = (int(part) for part in m.groups())
    return (hours * 3600 + minutes * 60 + seconds) * 1000 + millis


def normalize_timestamp(value: str) -> str:
    """Rewrite ``H:MM:SS.m`` style times to ``HH:MM:SS,mmm``.

    Values outside the loose form are returned unchanged so that
    ``parse_timestamp`` can log them.
    """
    m = LOOSE_TIMESTAMP_RE.match(value.strip())
    if not m:
        return value
    hours, minutes, seconds, millis = m.groups()
    return f"{int(hours or 0):02d}:{minutes}:{seconds},{millis.ljust(3, '0')}"


def format_timestamp(ms: int) -> str:
    ms = max(0, int(ms))
    return f"{ms // 3600000:02d}:{(ms // 60000) % 60:02d}:{(ms // 1000) % 60:02d},{ms % 1000:03d}"


def _normalize_text(text: str) -> str:
    if text.startswith("\ufeff"):
        text = text[1:]
    return text.replace("\r\n", "\n").replace("\r", "\n")


def parse_srt(text: str) -> List[RawCaption]:
    """Split SRT (or VTT cue) text into raw blocks; timing is normalized, not validated."""
    blocks: List[RawCaption] = []
    for chunk in BLOCK_SPLIT_RE.split(_normalize_text(text).strip()):
        lines = chunk.split("\n")
        if not any(ln.strip() for ln in lines):
            continue
        ident = ""
        # VTT cue identifiers may be any text placed above the timing line
        if INDEX_RE.match(lines[0]) or (
            len(lines) > 1 and not TIMING_LINE_RE.match(lines[0]) and TIMING_LINE_RE.match(lines[1])
        ):
            ident = lines.pop(0).strip()
        start = end = None
        if lines:
            m = TIMING_LINE_RE.match(lines[0])
            if m:
                start, end = normalize_timestamp(m.group("start")), normalize_timestamp(m.group("end"))
                lines.pop(0)
        blocks.append(RawCaption(id=ident, start=start, end=end, text="\n".join(lines).strip("\n")))
    return blocks


def to_record(raw: RawCaption, index: int) -> CaptionRecord:
    if not raw.start or not raw.end:
        raise MalformedRecord(f"caption {raw.id or index} has no timing line")
    return CaptionRecord(
        index=index,
        start_ms=parse_timestamp(raw.start),
        end_ms=parse_timestamp(raw.end),
        text=raw.text,
    )


def validate(raw_captions: Iterable[RawCaption]) -> List[CaptionRecord]:
    records: List[CaptionRecord] = []
    for raw in raw_captions:
        try:
            records.append(to_record(raw, len(records)))
        except MalformedRecord as exc:
            log.warning("Skipping invalid subtitle entry: %s", exc)
    return records


def parse_captions(text: str) -> List[CaptionRecord]:
    """Parse SRT text into validated caption records.

    Raises ParseFailure when non-blank input yields nothing usable.
    """
    if not isinstance(text, str):
        raise ParseFailure("subtitle content is not text")
    records = validate(parse_srt(text))
    if not records and text.strip():
        raise ParseFailure("parsing produced no captions from non-empty input")
    if records and not records[0].text:
        raise ParseFailure("first caption has no text")
    log.info("Parsed %s subtitle entries.", len(records))
    return records


def serialize(records: Iterable[CaptionRecord]) -> str:
    """Render records as SRT, renumbering ids from 1."""
    out: List[str] = []
    for number, record in enumerate(records, start=1):
        out.append(str(number))
        out.append(f"{format_timestamp(record.start_ms)} --> {format_timestamp(record.end_ms)}")
        out.append(record.text)
        out.append("")
    if not out:
        return ""
    return "\n".join(out).rstrip("\n") + "\n"
