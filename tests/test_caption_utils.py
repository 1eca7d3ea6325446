from __future__ import annotations

import pytest

from lessonvid.common.caption_utils import (
    collapse_whitespace,
    normalize_caption_text,
    respace_concatenated,
    respace_token,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("thesciencevideo", "the science video"),
        ("Welcome to thesciencevideo today", "Welcome to the science video today"),
        ("helloWorld", "hello World"),
        ("step1of3", "step 1 of 3"),
        ("a\u00a0b\u2003c", "a b c"),
        ("ze\u200cro\ufeff width", "zero width"),
        ("  lots   of\tspace \n", "lots of space"),
    ],
)
def test_normalize_caption_text(raw: str, expected: str) -> None:
    assert normalize_caption_text(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "   ", "\u200c\u200d"])
def test_normalize_empty(raw) -> None:
    assert normalize_caption_text(raw) == ""


def test_short_tokens_are_not_respaced() -> None:
    assert respace_concatenated("helloworld") == "helloworld"


def test_mixed_case_tokens_are_not_respaced() -> None:
    assert respace_concatenated("Thesciencevideo") == "Thesciencevideo"


def test_unknown_fragments_survive() -> None:
    assert respace_token("xyzthesciencevideo") == "xyz the science video"


def test_longest_match_wins() -> None:
    assert respace_token("thesefamily") == "these family"


def test_collapse_whitespace() -> None:
    assert collapse_whitespace(" a \t b\n") == "a b"
