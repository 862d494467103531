"""Normalisation applied to every chat message body before it is stored."""

from __future__ import annotations

import re
import unicodedata

MAX_MESSAGE_LENGTH = 1000

_TAG_PATTERN = re.compile(r"<[^>]*>")
_INVISIBLE_PATTERN = re.compile("[\u200b-\u200f\ufeff]")
_CONTROL_PATTERN = re.compile("[\x00-\x1f\x7f]")
# ECMAScript whitespace only: U+0085 and friends are kept.
_WHITESPACE_PATTERN = re.compile(
    "[\t\n\v\f\r \u00a0\u1680\u2000-\u200a\u2028\u2029\u202f\u205f\u3000\ufeff]+"
)
_HTML_ESCAPES = str.maketrans(
    {
        "&": "&amp;",
        "<": "&lt;",
        ">": "&gt;",
        '"': "&quot;",
        "'": "&#39;",
    }
)


def sanitize_message_body(body: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Return the display-safe form of *body*.

    The steps run in a fixed order: NFKC normalisation, tag stripping,
    removal of zero-width marks, control characters to spaces, whitespace
    collapsing, HTML escaping and finally truncation to *max_length*
    code points.
    """

    text = unicodedata.normalize("NFKC", body)
    text = _TAG_PATTERN.sub(" ", text)
    text = _INVISIBLE_PATTERN.sub("", text)
    text = _CONTROL_PATTERN.sub(" ", text)
    text = _WHITESPACE_PATTERN.sub(" ", text).strip()
    text = text.translate(_HTML_ESCAPES)
    return text[:max_length]


__all__ = ["MAX_MESSAGE_LENGTH", "sanitize_message_body"]
