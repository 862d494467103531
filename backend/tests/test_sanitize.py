"""Unit tests for chat message body normalisation."""

from __future__ import annotations

import pytest

from masq.realtime.sanitize import MAX_MESSAGE_LENGTH, sanitize_message_body


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("<b>hi</b> there", "hi there"),
        ("<script>alert(1)</script>", "alert(1)"),
        ("zero\u200bwidth\ufeff", "zerowidth"),
        ("line1\nline2\tend\x00", "line1 line2 end"),
        ("  lots    of   space  ", "lots of space"),
        ("\uff46\uff55\uff4c\uff4c width", "full width"),
        ("Tom & \"Jerry\" 'n' co", "Tom &amp; &quot;Jerry&quot; &#39;n&#39; co"),
        ("5 < 6", "5 &lt; 6"),
    ],
)
def test_sanitize_message_body(raw: str, expected: str) -> None:
    assert sanitize_message_body(raw) == expected


def test_markup_only_body_becomes_empty() -> None:
    assert sanitize_message_body("<br><img src=x>") == ""
    assert sanitize_message_body("\u200b\u200c \n") == ""


def test_truncation_happens_after_escaping() -> None:
    assert len(sanitize_message_body("a" * (MAX_MESSAGE_LENGTH + 200))) == MAX_MESSAGE_LENGTH

    escaped = sanitize_message_body("&" * 300)
    assert len(escaped) == MAX_MESSAGE_LENGTH
    assert escaped.startswith("&amp;&amp;")


def test_custom_length_limit() -> None:
    assert sanitize_message_body("abcdef", max_length=3) == "abc"


def test_plain_text_is_stable_under_repeated_sanitizing() -> None:
    once = sanitize_message_body("  hello\n\nworld  ")
    assert once == "hello world"
    assert sanitize_message_body(once) == once


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("a\u0085b", "a\u0085b"),
        ("a\u2028\u2029b", "a b"),
        ("a\u00a0\u202fb", "a b"),
    ],
)
def test_whitespace_collapsing_follows_ecmascript(raw: str, expected: str) -> None:
    assert sanitize_message_body(raw) == expected
