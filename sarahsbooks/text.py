"""
Text normalisation shared by the scorer, the shortlist builder and the router.
"""

import re
from typing import Any, List

STOP_WORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "but", "by", "for", "from", "has", "have",
    "i", "if", "in", "into", "is", "it", "its", "me", "my", "of", "on", "or", "our", "s",
    "so", "that", "the", "their", "them", "then", "there", "these", "they", "this", "to",
    "was", "we", "were", "what", "when", "where", "which", "who", "why", "with", "you", "your",
})

_NON_TOKEN = re.compile(r"[^a-z0-9\s-]")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_PARENTHETICAL = re.compile(r"\([^)]*\)")
_BRACKETED = re.compile(r"\[[^\]]*\]")
_WHITESPACE = re.compile(r"\s+")


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


def tokenize_for_search(text: Any) -> List[str]:
    """
    Split free text into lowercase search tokens.

    Keeps ASCII letters, digits and hyphens; drops stop words.
    """
    cleaned = _NON_TOKEN.sub(" ", _as_text(text).lower())
    return [token for token in cleaned.split() if token not in STOP_WORDS]


def normalize_title(text: Any) -> str:
    """Comparison key for a title: annotations in () or [] and punctuation removed."""
    value = _as_text(text).lower()
    value = _PARENTHETICAL.sub(" ", value)
    value = _BRACKETED.sub(" ", value)
    value = _NON_ALNUM.sub(" ", value)
    return _WHITESPACE.sub(" ", value).strip()


def normalize_author(text: Any) -> str:
    value = _NON_ALNUM.sub(" ", _as_text(text).lower())
    return _WHITESPACE.sub(" ", value).strip()


def book_key(title: Any, author: Any) -> str:
    """Deduplication key for a title+author pair."""
    return f"{normalize_title(title)}|{normalize_author(author)}"
