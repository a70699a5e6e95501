from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

LINE_BREAK_RE = re.compile(r"\s*(?:\r\n|\r|\n)\s*")
WHITESPACE_RE = re.compile(r"[ \t]{2,}")


@dataclass(frozen=True)
class CaptionStyle:
    """Markup wrapped around the translation line so it reads as secondary."""

    italic: bool = True
    color: Optional[str] = "yellow"

    @property
    def open(self) -> str:
        tags = "<i>" if self.italic else ""
        if self.color:
            tags += f'<font color="{self.color}">'
        return tags

    @property
    def close(self) -> str:
        tags = "</font>" if self.color else ""
        if self.italic:
            tags += "</i>"
        return tags

    def wrap(self, text: str) -> str:
        return f"{self.open}{text}{self.close}"


DEFAULT_STYLE = CaptionStyle()


def flatten(text: object) -> str:
    """Collapse a multi-line caption onto a single display line."""
    if not isinstance(text, str):
        return ""
    flat = LINE_BREAK_RE.sub(" ", text)
    return WHITESPACE_RE.sub(" ", flat).strip()


def compose(primary_text: object, secondary_text: object = None, style: Optional[CaptionStyle] = None) -> str:
    primary = flatten(primary_text)
    secondary = flatten(secondary_text) if secondary_text is not None else ""
    if not secondary:
        return primary
    return f"{primary}\n{(style or DEFAULT_STYLE).wrap(secondary)}"
