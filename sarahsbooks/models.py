"""
Pydantic models for the Sarah's Books recommendation core.
"""

import logging
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class RoutePath(str, Enum):
    """Where a recommendation request is answered from."""

    CATALOG = "CATALOG"
    WORLD = "WORLD"
    TEMPORAL = "TEMPORAL"
    HYBRID = "HYBRID"


class ConfidenceBucket(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ReadingStatus(str, Enum):
    WANT_TO_READ = "want_to_read"
    READING = "reading"
    FINISHED = "finished"
    ALREADY_READ = "already_read"


READ_STATUSES = (ReadingStatus.FINISHED, ReadingStatus.ALREADY_READ)
QUEUED_STATUSES = (ReadingStatus.WANT_TO_READ, ReadingStatus.READING)


class Book(BaseModel):
    """A curated catalog entry. Read-only at request time."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    title: str = Field(description="Book title")
    author: str = Field(default="", description="Author name")
    genre: str = Field(default="", description="Catalog genre label")
    description: str = Field(default="", description="Short description")
    themes: List[str] = Field(default_factory=list, description="Ordered curator theme keys")
    favorite: bool = Field(default=False, description="Curator favorite flag")
    isbn: Optional[str] = None
    isbn13: Optional[str] = None
    isbn10: Optional[str] = None
    embedding: Optional[List[float]] = Field(default=None, repr=False, description="Owned by the database layer")

    @field_validator("author", "genre", "description", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("themes", mode="before")
    @classmethod
    def _themes_list(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        if not isinstance(value, (list, tuple)):
            return []
        return [str(t) for t in value if t is not None]

    @field_validator("favorite", mode="before")
    @classmethod
    def _falsy_favorite(cls, value: Any) -> Any:
        return bool(value)


class ReadingQueueItem(BaseModel):
    """A user's relationship to a book; only used as a preference signal here."""

    model_config = ConfigDict(extra="ignore")

    book_title: str
    book_author: Optional[str] = None
    status: ReadingStatus = ReadingStatus.WANT_TO_READ
    rating: Optional[int] = Field(default=None, ge=1, le=5)

    @property
    def is_read(self) -> bool:
        return self.status in READ_STATUSES

    @property
    def is_queued(self) -> bool:
        return self.status in QUEUED_STATUSES


class OwnedBook(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str
    author: Optional[str] = None


class ScoredCandidate(BaseModel):
    """A book with its lexical score and catalog position (tie-breaker)."""

    model_config = ConfigDict(frozen=True)

    book: Book
    score: float = 0.0
    index: int = 0


class Shortlist(BaseModel):
    """Ordered, capped, deduplicated subset of the catalog plus its rendering."""

    books: List[Book] = Field(default_factory=list)
    total: int = 0
    text: str = ""

    @property
    def titles(self) -> List[str]:
        return [book.title for book in self.books]


class PreFilterResult(BaseModel):
    """Outcome of the keyword stage. ``path`` is None when the decision is deferred."""

    path: Optional[RoutePath] = None
    reason: str = "no_keyword_match"
    matched_keyword: Optional[str] = None
    theme_filters: List[str] = Field(default_factory=list)


class RoutingDecision(BaseModel):
    """Final routing decision for one query. Never has an empty path."""

    model_config = ConfigDict(frozen=True)

    path: RoutePath
    reason: str
    subtype: Optional[str] = None
    confidence: Optional[ConfidenceBucket] = None
    matched_keyword: Optional[str] = None
    top_similarity: Optional[float] = None
    taste_alignment: Optional[float] = None
    theme_filters: List[str] = Field(default_factory=list)

    @property
    def uses_catalog(self) -> bool:
        return self.path in (RoutePath.CATALOG, RoutePath.HYBRID)


class CatalogMatch(BaseModel):
    """One row returned by the catalog similarity RPC."""

    model_config = ConfigDict(extra="ignore")

    title: str = ""
    author: str = ""
    similarity: float = 0.0

    @field_validator("title", "author", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class PromptSegment(BaseModel):
    """One block of the LLM system prompt."""

    text: str
    cacheable: bool = True

    def to_anthropic(self, cache_breakpoint: Optional[bool] = None) -> Dict[str, Any]:
        """Anthropic system block. ``cache_breakpoint=False`` leaves a cacheable segment unmarked."""
        block: Dict[str, Any] = {"type": "text", "text": self.text}
        if self.cacheable and cache_breakpoint is not False:
            block["cache_control"] = {"type": "ephemeral"}
        return block


class Recommendation(BaseModel):
    title: str
    author: str = ""
    why: str = ""
    description: str = ""
    reputation: str = ""
    in_catalog: bool = False


class RecommendationResult(BaseModel):
    """Everything produced for a single recommendation request."""

    answer: str
    recommendations: List[Recommendation] = Field(default_factory=list)
    routing: RoutingDecision
    shortlist: str = ""
    system: List[PromptSegment] = Field(default_factory=list)
    user_message: str = ""


M = TypeVar("M", bound=BaseModel)


def coerce_records(raw: Any, model: Type[M]) -> List[M]:
    """
    Validate an untrusted list of records into models.

    Non-list input is treated as empty; records that fail validation are
    skipped with a warning rather than aborting the request.
    """
    if not isinstance(raw, (list, tuple)):
        if raw is not None:
            logger.warning(f"Expected a list of {model.__name__} records, got {type(raw).__name__}")
        return []

    records: List[M] = []
    for i, item in enumerate(raw):
        if isinstance(item, model):
            records.append(item)
            continue
        try:
            records.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Skipping invalid {model.__name__} record #{i}: {e.error_count()} error(s)")
    return records


def coerce_books(raw: Any) -> List[Book]:
    return coerce_records(raw, Book)


def coerce_queue(raw: Any) -> List[ReadingQueueItem]:
    return coerce_records(raw, ReadingQueueItem)


def coerce_owned(raw: Iterable[Any]) -> List[OwnedBook]:
    return coerce_records(raw, OwnedBook)
