"""
Lexical scoring of catalog books against a free-text query.

This is intentionally a cheap, deterministic ranking signal rather than a
probability: weights are fixed and nothing is normalised by query or
document length.
"""

import logging
from typing import Any, Iterable, List, Optional

from .models import Book, ReadingQueueItem, ScoredCandidate, coerce_books, coerce_queue
from .text import tokenize_for_search

logger = logging.getLogger(__name__)

# Whole-query substring containment
QUERY_IN_TITLE = 18.0
QUERY_IN_AUTHOR = 10.0
QUERY_IN_DESCRIPTION = 6.0

# Per-token substring containment
TOKEN_IN_TITLE = 6.0
TOKEN_IN_AUTHOR = 4.0
TOKEN_IN_GENRE = 3.0
TOKEN_IN_THEMES = 3.0
TOKEN_IN_DESCRIPTION = 1.0

FAVORITE_BONUS = 0.75

# Weights for the catalog search helper (search_library)
WORD_WEIGHTS = {"title": 20, "author": 15, "genre": 10, "description": 5}
THEME_WORD_WEIGHT = 8
MAX_SEARCH_SCORE = 100

WORLD_SEARCH_KEYWORDS = (
    "new release", "bestseller", "trending", "popular", "latest",
    "recent", "2024", "2025", "this year", "award winner",
    "audiobook", "audio book", "specific author", "just published",
)

NO_LIBRARY_MATCHES = "No strong matches in my library for this specific request."


def score_book(query: Any, book: Book, tokens: Optional[List[str]] = None) -> float:
    """
    Score one catalog book against a query.

    Args:
        query: Raw user query
        book: Catalog book
        tokens: Pre-tokenised query, to avoid re-tokenising per book

    Returns:
        Non-negative weighted sum of substring matches, plus the favorite bonus
    """
    q = ("" if query is None else str(query)).lower().strip()
    if tokens is None:
        tokens = tokenize_for_search(q)

    title = book.title.lower()
    author = book.author.lower()
    genre = book.genre.lower()
    description = book.description.lower()
    themes = [theme.lower() for theme in book.themes]

    score = 0.0
    if q:
        if q in title:
            score += QUERY_IN_TITLE
        if q in author:
            score += QUERY_IN_AUTHOR
        if q in description:
            score += QUERY_IN_DESCRIPTION

    for token in tokens:
        if token in title:
            score += TOKEN_IN_TITLE
        if token in author:
            score += TOKEN_IN_AUTHOR
        if token in genre:
            score += TOKEN_IN_GENRE
        if any(token in theme for theme in themes):
            score += TOKEN_IN_THEMES
        if token in description:
            score += TOKEN_IN_DESCRIPTION

    if book.favorite:
        score += FAVORITE_BONUS

    return score


def score_catalog(query: Any, catalog: Iterable[Book]) -> List[ScoredCandidate]:
    """
    Score every book and sort by descending score.

    Ties keep catalog order, so the result is identical for identical input.
    """
    tokens = tokenize_for_search(query)
    scored = [
        ScoredCandidate(book=book, score=score_book(query, book, tokens), index=i)
        for i, book in enumerate(catalog)
    ]
    scored.sort(key=lambda candidate: (-candidate.score, candidate.index))
    return scored


def _word_score(query_words: List[str], book: Book) -> int:
    score = 0
    for field, weight in WORD_WEIGHTS.items():
        value = getattr(book, field).lower()
        score += weight * sum(1 for word in query_words if word in value)

    for theme in book.themes:
        theme_lower = theme.lower()
        score += THEME_WORD_WEIGHT * sum(1 for word in query_words if word in theme_lower)

    return min(score, MAX_SEARCH_SCORE)


def search_library(query: Any, catalog: Any, reading_queue: Any = None, limit: int = 10) -> List[ScoredCandidate]:
    """
    Search the catalog for books matching a query, skipping queued/read titles.

    Args:
        query: User's search query
        catalog: Book records (models or raw dicts)
        reading_queue: User's reading queue; its titles are excluded
        limit: Maximum number of results

    Returns:
        Matching books with a score in (0, 100], best first. Books that match
        nothing are dropped, so an unmatched query returns an empty list.
    """
    if not query or not isinstance(catalog, (list, tuple)):
        return []

    books = coerce_books(catalog)
    queue: List[ReadingQueueItem] = coerce_queue(reading_queue)
    excluded = {item.book_title.lower() for item in queue}
    query_words = [word for word in str(query).lower().split() if len(word) > 2]

    results = []
    for i, book in enumerate(books):
        if book.title.lower() in excluded:
            continue
        score = _word_score(query_words, book)
        if score > 0:
            results.append(ScoredCandidate(book=book, score=float(score), index=i))

    results.sort(key=lambda candidate: (-candidate.score, candidate.index))
    return results[:limit]


def build_optimized_library_context(query: Any, catalog: Any, reading_queue: Any = None, limit: int = 10) -> str:
    """Render the best search_library matches as compact lines for the LLM."""
    matches = search_library(query, catalog, reading_queue, limit)
    if not matches:
        return NO_LIBRARY_MATCHES

    lines = []
    for match in matches:
        book = match.book
        parts = [f'- "{book.title}" by {book.author}']
        if book.genre:
            parts.append(f"({book.genre})")
        if book.description:
            ellipsis = "..." if len(book.description) > 100 else ""
            parts.append(f"- {book.description[:100]}{ellipsis}")
        lines.append(" ".join(parts))
    return "\n".join(lines)


def should_prioritize_world_search(query: Any) -> bool:
    """True when the query asks for something the curated catalog cannot know about."""
    lowered = ("" if query is None else str(query)).lower()
    return any(keyword in lowered for keyword in WORLD_SEARCH_KEYWORDS)
