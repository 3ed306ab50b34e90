"""Input sanitization helpers for rule definitions and event payloads."""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable

_WHITESPACE_RE = re.compile(r"\s+")


def _strip_control_chars(value: str, *, allow_newlines: bool) -> str:
    return "".join(
        ch for ch in value if (ch == "\n" and allow_newlines) or unicodedata.category(ch) != "Cc"
    )


def clean_text(value: object, *, allow_newlines: bool = False) -> str:
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _strip_control_chars(text, allow_newlines=allow_newlines).strip()
    if not allow_newlines:
        return _WHITESPACE_RE.sub(" ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    return re.sub(r"\n{3,}", "\n\n", text)


def clean_single_line(value: object) -> str:
    return clean_text(value, allow_newlines=False)


def clean_multiline(value: object) -> str:
    return clean_text(value, allow_newlines=True)


def clean_tags(values: Iterable[object] | str | None, *, max_items: int | None = None) -> list[str]:
    """Trim tags and drop blanks and exact duplicates, keeping first-seen order."""
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    cleaned: list[str] = []
    for item in values:
        tag = clean_single_line(item)
        if tag and tag not in cleaned:
            cleaned.append(tag)
    if max_items is not None and len(cleaned) > max_items:
        raise ValueError("too_many_items")
    return cleaned
