"""
Catalog loading, lookup and shortlist building.

The shortlist is the bounded, ranked subset of the curated catalog that is
pasted into the recommendation prompt for a single request.
"""

import csv
import io
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from . import settings
from .models import Book, OwnedBook, ReadingQueueItem, ScoredCandidate, Shortlist, coerce_books, coerce_queue
from .search import score_catalog
from .settings import ShortlistConfig
from .text import book_key, normalize_author, normalize_title

logger = logging.getLogger(__name__)

# Personalisation boosts derived from the user's finished books
PREFERRED_GENRE_BOOST = 2.0
PREFERRED_AUTHOR_BOOST = 3.0
PREFERRED_THEME_BOOST = 1.5


def load_catalog(path: Optional[Path] = None) -> List[Book]:
    """
    Load the catalog snapshot (a JSON list of book objects).

    Args:
        path: JSON file to read; defaults to settings.CATALOG_PATH

    Returns:
        Validated books; an empty list if the file is missing or unreadable
    """
    path = Path(path) if path else settings.CATALOG_PATH
    if not path.exists():
        logger.warning(f"Catalog snapshot not found at {path}")
        return []

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to read catalog from {path}: {e}")
        return []

    books = coerce_books(raw)
    logger.info(f"Loaded {len(books)} catalog books from {path}")
    return books


class CatalogIndex:
    """Normalised-title lookup over the catalog."""

    def __init__(self, catalog: Iterable[Book]):
        self._by_title: Dict[str, Book] = {}
        for book in catalog:
            key = normalize_title(book.title)
            if key:
                self._by_title[key] = book

    def __len__(self) -> int:
        return len(self._by_title)

    def find(self, title: Any) -> Optional[Book]:
        """Exact normalised match first, then containment in either direction."""
        needle = normalize_title(title)
        if not needle:
            return None
        if needle in self._by_title:
            return self._by_title[needle]
        for key, book in self._by_title.items():
            if needle in key or key in needle:
                return book
        return None

    def contains(self, title: Any) -> bool:
        return self.find(title) is not None


def parse_goodreads_csv(text: Any) -> List[OwnedBook]:
    """
    Parse a Goodreads library export into owned books.

    Requires a ``Title`` column; the author comes from ``Author`` or
    ``Author l-f``. Rows without a title are skipped.
    """
    raw = ("" if text is None else str(text)).lstrip("\ufeff")
    if not raw.strip():
        return []

    reader = csv.reader(io.StringIO(raw))
    try:
        headers = [h.strip().lower() for h in next(reader)]
    except StopIteration:
        return []

    if "title" not in headers:
        return []
    title_idx = headers.index("title")
    author_idx = next((i for i, h in enumerate(headers) if h in ("author", "author l-f")), -1)

    owned: List[OwnedBook] = []
    for row in reader:
        if not row:
            continue
        title = row[title_idx].strip() if title_idx < len(row) else ""
        if not title:
            continue
        author = row[author_idx].strip() if 0 <= author_idx < len(row) else ""
        owned.append(OwnedBook(title=title, author=author or None))
    return owned


class PreferenceProfile:
    """Genres, authors and themes the user has shown they enjoy."""

    def __init__(self, catalog: List[Book], reading_queue: List[ReadingQueueItem],
                 favorite_authors: Optional[Iterable[str]] = None):
        self.finished_titles: Set[str] = set()
        self.genres: Set[str] = set()
        self.authors: Set[str] = {normalize_author(a) for a in (favorite_authors or []) if a}
        self.themes: Set[str] = set()

        by_title = {book.title.lower().strip(): book for book in catalog}
        for item in reading_queue:
            if not item.is_read:
                continue
            title = item.book_title.lower().strip()
            self.finished_titles.add(title)
            book = by_title.get(title)
            if book is None:
                continue
            if book.genre:
                self.genres.add(book.genre.lower())
            if book.author:
                self.authors.add(normalize_author(book.author))
            self.themes.update(theme.lower() for theme in book.themes)

    def is_finished(self, book: Book) -> bool:
        return book.title.lower().strip() in self.finished_titles

    def boost(self, book: Book) -> float:
        score = 0.0
        if book.genre and book.genre.lower() in self.genres:
            score += PREFERRED_GENRE_BOOST
        if book.author and normalize_author(book.author) in self.authors:
            score += PREFERRED_AUTHOR_BOOST
        score += PREFERRED_THEME_BOOST * sum(1 for theme in book.themes if theme.lower() in self.themes)
        return score


def _rank(query: Any, catalog: List[Book], profile: Optional[PreferenceProfile]) -> List[ScoredCandidate]:
    ranked = score_catalog(query, catalog)
    if profile is None:
        return ranked

    personalised = [
        ScoredCandidate(book=c.book, score=c.score + profile.boost(c.book), index=c.index)
        for c in ranked
        if not profile.is_finished(c.book)
    ]
    personalised.sort(key=lambda c: (-c.score, c.index))
    return personalised


def build_shortlist(query: Any, catalog: Any, reading_queue: Any = None,
                    favorite_authors: Optional[Iterable[str]] = None,
                    config: Optional[ShortlistConfig] = None) -> Shortlist:
    """
    Select and order a bounded shortlist of catalog books for a query.

    Favorites come first, then the top lexical matches, then the rest of the
    ranking, each book admitted once by its normalised title+author key
    until the cap is reached.

    Args:
        query: Raw user query
        catalog: Book records; anything that is not a list counts as empty
        reading_queue: Optional reading queue; finished books are excluded and
            their genres/authors/themes boost similar books
        favorite_authors: Optional authors to boost
        config: Size limits

    Returns:
        Shortlist with the selected books and its rendered text
    """
    config = config or settings.DEFAULT_SHORTLIST
    books = coerce_books(catalog)

    profile = None
    if reading_queue or favorite_authors:
        profile = PreferenceProfile(books, coerce_queue(reading_queue), favorite_authors)

    ranked = _rank(query, books, profile)
    favorites = [c.book for c in ranked if c.book.favorite][:config.max_favorites]
    top_matches = [c.book for c in ranked[:config.top_matches]]
    remainder = [c.book for c in ranked]

    picked: List[Book] = []
    seen: Set[str] = set()
    for book in [*favorites, *top_matches, *remainder]:
        if len(picked) >= config.max_books:
            break
        key = book_key(book.title, book.author)
        if key in seen:
            continue
        seen.add(key)
        picked.append(book)

    text = format_shortlist(picked, len(books), config)
    return Shortlist(books=picked, total=len(books), text=text)


def format_book_line(book: Book, include_description: bool, description_chars: int = 120) -> str:
    themes = f" themes: {', '.join(book.themes)}" if book.themes else ""
    favorite = " ⭐" if book.favorite else ""
    line = f'- "{book.title.strip()}" by {book.author.strip()} [{book.genre.strip()}]{themes}{favorite}'
    if not include_description:
        return line

    description = book.description.strip()
    if len(description) > description_chars:
        description = description[:description_chars - 3] + "…"
    return f"{line} - {description}"


def format_shortlist(books: List[Book], total: int, config: Optional[ShortlistConfig] = None) -> str:
    config = config or settings.DEFAULT_SHORTLIST
    header = f"Shortlisted books from Sarah's library (shown: {len(books)} / total: {total})."
    lines = [
        format_book_line(book, i < config.described_lines, config.description_chars)
        for i, book in enumerate(books)
    ]
    return "\n".join([header, *lines])


def build_library_context(query: Any, catalog: Any, reading_queue: Any = None,
                          favorite_authors: Optional[Iterable[str]] = None) -> str:
    """Rendered shortlist text, for callers that only need the prompt block."""
    return build_shortlist(query, catalog, reading_queue, favorite_authors).text
