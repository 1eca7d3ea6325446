"""Helpers for caption text normalisation before layout."""

from __future__ import annotations

import re
from typing import Iterable, List, Sequence

from ..config import CONCATENATED_MIN_LENGTH

# Unicode spaces that fonts tend to render as boxes
EXOTIC_SPACE_RE = re.compile("[\u00a0\u2000-\u200b\u202f\u205f\u3000]")
ZERO_WIDTH_RE = re.compile("[\u200c\u200d\ufeff]")
CAMEL_RE = re.compile(r"([a-z])([A-Z])")
LETTER_DIGIT_RE = re.compile(r"([a-zA-Z])(\d)")
DIGIT_LETTER_RE = re.compile(r"(\d)([a-zA-Z])")
LOWER_TOKEN_RE = re.compile(r"^[a-z]+$")

# Words the speech pipeline most often glues together
COMMON_WORDS: tuple[str, ...] = (
    "the", "and", "for", "are", "but", "not", "you", "all", "can", "had", "her",
    "was", "one", "our", "out", "has", "his", "how", "its", "may", "new", "now",
    "old", "see", "way", "who", "boy", "did", "get", "let", "put", "say", "she",
    "too", "use", "your", "each", "from", "have", "been", "call", "come", "made",
    "find", "long", "make", "many", "more", "some", "than", "them", "then",
    "what", "when", "will", "with", "word", "about", "after", "being", "could",
    "every", "first", "found", "great", "just", "know", "like", "look", "only",
    "over", "such", "take", "that", "this", "time", "very", "want", "well",
    "were", "would", "write", "simple", "science", "video", "learn", "today",
    "start", "step", "guide", "quick", "easy", "best", "most", "here", "there",
    "these", "those", "which", "where", "while", "their", "other", "right",
    "wrong", "thing", "think", "should", "before", "during", "between",
    "through", "against", "inside", "outside", "without", "within", "around",
    "behind", "beyond", "under", "above", "below", "since", "until", "still",
    "also", "even", "much", "both", "same", "into", "upon", "already", "always",
    "another", "because", "become", "business", "company", "different",
    "either", "enough", "example", "family", "following", "general",
    "government", "important", "information", "interest", "large", "later",
    "little", "local", "market", "member", "million", "moment", "money",
    "national", "never", "number", "often", "order", "others", "part", "party",
    "people", "percent", "place", "point", "political", "possible", "power",
    "present", "president", "problem", "program", "public", "question",
    "really", "reason", "report", "result", "school", "second", "service",
    "several", "small", "social", "something", "special", "state", "story",
    "study", "system", "together", "trying", "understand", "week", "woman",
    "women", "world", "year", "young",
)


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def _by_length(words: Iterable[str]) -> List[str]:
    return sorted(set(words), key=lambda w: (-len(w), w))


_DICTIONARY = _by_length(COMMON_WORDS)


def respace_token(token: str, dictionary: Sequence[str] = _DICTIONARY) -> str:
    """Split a glued lowercase ``token`` on known words, longest match first.

    Characters that start no dictionary word stay attached to their
    neighbours, so unknown fragments survive as-is.
    """
    pieces: List[str] = []
    pending = ""
    pos = 0
    while pos < len(token):
        match = next((w for w in dictionary if token.startswith(w, pos)), None)
        if match is None:
            pending += token[pos]
            pos += 1
            continue
        if pending:
            pieces.append(pending)
            pending = ""
        pieces.append(match)
        pos += len(match)
    if pending:
        pieces.append(pending)
    return " ".join(pieces)


def respace_concatenated(text: str, dictionary: Sequence[str] = _DICTIONARY) -> str:
    """Re-space long all-lowercase tokens that lost their spaces upstream."""
    out = []
    for token in text.split(" "):
        if len(token) > CONCATENATED_MIN_LENGTH and LOWER_TOKEN_RE.match(token):
            out.append(respace_token(token, dictionary))
        else:
            out.append(token)
    return collapse_whitespace(" ".join(out))


def normalize_caption_text(text: str | None) -> str:
    """Return ``text`` cleaned for drawing; empty when nothing printable remains."""
    if not text:
        return ""
    clean = EXOTIC_SPACE_RE.sub(" ", text)
    clean = ZERO_WIDTH_RE.sub("", clean)
    clean = CAMEL_RE.sub(r"\1 \2", clean)
    clean = LETTER_DIGIT_RE.sub(r"\1 \2", clean)
    clean = DIGIT_LETTER_RE.sub(r"\1 \2", clean)
    clean = collapse_whitespace(clean)
    return respace_concatenated(clean)


__all__ = [
    "COMMON_WORDS",
    "collapse_whitespace",
    "respace_token",
    "respace_concatenated",
    "normalize_caption_text",
]
