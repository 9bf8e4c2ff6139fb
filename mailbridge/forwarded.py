"""Extract the note a user typed above a forwarded message."""

from __future__ import annotations

import re

FORWARD_MARKERS: tuple[str, ...] = (
    "---------- Forwarded message ---------",
    "---------- Forwarded Message ----------",
    "---------- Forwarded message ----------",
    "---------- Пересланное сообщение ---------",
    "---------- Пересылаемое сообщение ---------",
)

_EXCESS_BLANK_LINES_RE = re.compile(r"\n\s*\n\s*\n+")
_SOFT_WRAP_RE = re.compile(r"(?<=[^.,:;!?\n])\n(?=[a-zа-яё])", re.IGNORECASE)
_LEADING_WS_RE = re.compile(r"\n[ \t]+")
_SPACE_RUN_RE = re.compile(r"[ \t]{2,}")


def normalize_comment(text: str) -> str:
    text = _EXCESS_BLANK_LINES_RE.sub("\n\n", text)
    text = _SOFT_WRAP_RE.sub(" ", text)
    text = _LEADING_WS_RE.sub("\n", text)
    text = _SPACE_RUN_RE.sub(" ", text)
    return text.strip()


def extract_forwarded_comment(text: str | None) -> str | None:
    """Return the text preceding the first forward marker, or ``None``.

    Markers are checked in order; the first one present wins even if
    another marker occurs earlier in the text.
    """
    if not text:
        return None

    for marker in FORWARD_MARKERS:
        if marker in text:
            before = text.split(marker, 1)[0].replace("\r\n", "\n").strip()
            if not before:
                return None
            return normalize_comment(before) or None

    return None
