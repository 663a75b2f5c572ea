"""Text helpers for document bodies and query normalization.

Uses only stdlib. The summary and page estimates fill gaps when a
fetcher delivers full text without them.
"""

import math
import re
import unicodedata

_MULTI_WHITESPACE_RE = re.compile(r"[ \t]+")
_MULTI_NEWLINES_RE = re.compile(r"\n{3,}")
_ZERO_WIDTH_RE = re.compile(r"[\u200b\u200c\u200d\ufeff]")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")

WORDS_PER_PAGE = 500
SUMMARY_SENTENCES = 3
_MIN_SUMMARY_TEXT = 100
_MIN_SENTENCE_CHARS = 20


def normalize_unicode(text: str) -> str:
    """Apply NFKC unicode normalization and strip zero-width characters."""
    text = unicodedata.normalize("NFKC", text)
    return _ZERO_WIDTH_RE.sub("", text)


def normalize_whitespace(text: str) -> str:
    """Collapse horizontal whitespace runs and limit consecutive blank lines."""
    text = _MULTI_WHITESPACE_RE.sub(" ", text)
    text = _MULTI_NEWLINES_RE.sub("\n\n", text)
    return text.strip()


def summarize_text(text: str | None) -> str:
    """Extractive summary: the first few substantive sentences.

    Texts shorter than 100 characters get an empty summary.
    """
    if not text or len(text) < _MIN_SUMMARY_TEXT:
        return ""
    sentences = [
        normalize_whitespace(s)
        for s in _SENTENCE_SPLIT_RE.split(text)
        if len(s.strip()) > _MIN_SENTENCE_CHARS
    ]
    if not sentences:
        return ""
    return ". ".join(sentences[:SUMMARY_SENTENCES]) + "."


def estimate_page_count(text: str | None) -> int:
    """Rough page count at 500 words per page."""
    if not text or not text.strip():
        return 0
    return math.ceil(len(text.split()) / WORDS_PER_PAGE)
