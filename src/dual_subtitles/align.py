"""Time-based pairing of a main-language track with a translation track.

The main track's timing is authoritative. For every main caption the aligner
picks the translation caption whose start time is closest among those that
overlap it or start within ``threshold_ms`` of it. Both tracks are read in
order, with a cursor into the translation track that only moves forward, so
a full pass stays linear for ordinary, time-sorted files.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .compose import CaptionStyle, compose
from .models import CaptionRecord

log = logging.getLogger("dual_subtitles.align")

DEFAULT_THRESHOLD_MS = 500


@dataclass(frozen=True)
class Overlap:
    """How a translation caption relates to a main caption's [start, end) window."""

    starts_overlap: bool
    ends_overlap: bool
    is_within: bool
    contains: bool
    near_start: bool
    start_diff: int

    @property
    def is_match(self) -> bool:
        return self.starts_overlap or self.ends_overlap or self.is_within or self.contains or self.near_start


def classify(main: CaptionRecord, other: CaptionRecord, threshold_ms: int = DEFAULT_THRESHOLD_MS) -> Overlap:
    """Classify ``other`` against ``main``.

    ``contains`` uses strict bounds on both sides, so an interval equal to the
    main one is ``is_within`` (and overlaps at both ends) but not ``contains``.
    It still matches, and is picked at most once per main caption.
    """
    start_diff = abs(main.start_ms - other.start_ms)
    return Overlap(
        starts_overlap=main.start_ms <= other.start_ms < main.end_ms,
        ends_overlap=main.start_ms < other.end_ms <= main.end_ms,
        is_within=other.start_ms >= main.start_ms and other.end_ms <= main.end_ms,
        contains=other.start_ms < main.start_ms and other.end_ms > main.end_ms,
        near_start=start_diff < threshold_ms,
        start_diff=start_diff,
    )


def find_best_match(
    main: CaptionRecord,
    secondary: Sequence[CaptionRecord],
    cursor: int,
    threshold_ms: int = DEFAULT_THRESHOLD_MS,
) -> Tuple[Optional[int], int]:
    """Scan ``secondary`` from ``cursor`` for the best partner of ``main``.

    Returns ``(best_index or None, next_cursor)``. Ties on start difference
    keep the earliest candidate.
    """
    best_index: Optional[int] = None
    smallest_diff: Optional[int] = None
    stop_after = main.end_ms + threshold_ms

    for i in range(cursor, len(secondary)):
        other = secondary[i]
        if not isinstance(other, CaptionRecord):
            log.warning("Skipping invalid translation subtitle entry at %s: %r", i, other)
            continue

        overlap = classify(main, other, threshold_ms)
        if overlap.is_match:
            if smallest_diff is None or overlap.start_diff < smallest_diff:
                smallest_diff = overlap.start_diff
                best_index = i
        elif other.start_ms > stop_after:
            # Later captions start later still; none can qualify.
            break

        if i == cursor and other.end_ms < main.start_ms - threshold_ms * 2:
            cursor = i + 1

    return best_index, cursor


def match_all(
    primary: Sequence[CaptionRecord],
    secondary: Sequence[CaptionRecord],
    threshold_ms: int = DEFAULT_THRESHOLD_MS,
) -> List[Tuple[CaptionRecord, Optional[CaptionRecord]]]:
    """Pair every valid primary record with its best secondary record, or None."""
    pairs: List[Tuple[CaptionRecord, Optional[CaptionRecord]]] = []
    cursor = 0
    for main in primary:
        if not isinstance(main, CaptionRecord):
            log.warning("Skipping invalid main subtitle entry: %r", main)
            continue
        best_index, cursor = find_best_match(main, secondary, cursor, threshold_ms)
        pairs.append((main, secondary[best_index] if best_index is not None else None))
    return pairs


def merge_pairs(
    pairs: Sequence[Tuple[CaptionRecord, Optional[CaptionRecord]]],
    style: Optional[CaptionStyle] = None,
) -> List[CaptionRecord]:
    return [
        main.with_text(compose(main.text, other.text if other is not None else None, style))
        for main, other in pairs
    ]


def align(
    primary: Sequence[CaptionRecord],
    secondary: Sequence[CaptionRecord],
    threshold_ms: int = DEFAULT_THRESHOLD_MS,
    style: Optional[CaptionStyle] = None,
) -> List[CaptionRecord]:
    """Merge ``secondary`` onto ``primary``; one output record per primary record."""
    log.info("Merging %s main subs with %s translation subs.", len(primary), len(secondary))
    pairs = match_all(primary, secondary, threshold_ms)
    merged = merge_pairs(pairs, style)
    matched = sum(1 for _, other in pairs if other is not None)
    log.info("Finished merging. Result has %s entries (%s matched).", len(merged), matched)
    return merged


__all__ = ["align", "match_all", "merge_pairs", "classify", "find_best_match", "Overlap", "DEFAULT_THRESHOLD_MS"]
