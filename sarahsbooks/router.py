"""
Deterministic query router.

Decides whether a recommendation request is answered from the curated
catalog, from general literary knowledge, or both:

1. Keyword pre-filter: an ordered rule table evaluated top to bottom.
2. Catalog probe: the query embedding is compared against catalog
   embeddings by an external similarity RPC and the ranked scores are
   bucketed into a confidence level.

Keyword matches always win over the probe. The same query with the same
probe results always routes to the same path.
"""

import json
import logging
import re
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from pydantic import BaseModel, Field

from . import settings
from .embeddings import embed_query, find_similar_books
from .models import CatalogMatch, ConfidenceBucket, PreFilterResult, RoutePath, RoutingDecision
from .settings import RoutingThresholds

logger = logging.getLogger(__name__)

EmbedFn = Callable[[str], Sequence[float]]
SearchFn = Callable[[Sequence[float], int, float], List[CatalogMatch]]

# Temporal phrases are book-specific: "recent events" must not match, "recent book" should.
TEMPORAL_KEYWORDS = (
    "new book", "new novel", "newest book", "newest novel",
    "recent book", "recent release", "recent novel",
    "latest book", "latest novel", "latest release",
    "upcoming book", "upcoming novel", "upcoming release",
    "coming out soon", "coming soon book",
    "2024 release", "2025 release", "2026 release",
    "this year release", "published this year", "released this year",
    "just released", "just came out", "just published", "new releases", "newly published",
    "what's new from", "recently published", "brand new book",
    "pre-order", "preorder", "not yet released", "publishing soon",
    "newest from", "latest from",
    "new by", "new from",
)

CATALOG_KEYWORDS = (
    "do you have", "in your collection", "in your catalog", "in your library",
    "from your list", "sarah's", "your books", "what have you read",
    "you've reviewed", "you've read", "your recommendations",
    "on your site", "in your database", "have you reviewed",
    "what do you recommend", "what would you suggest",
)

WORLD_KEYWORDS = (
    "beyond your", "outside your", "other than what you have",
    "besides what you have", "not in your collection", "anywhere",
    "in general", "best overall", "top rated overall", "bestseller",
    "award winner", "critically acclaimed", "most popular",
    "everyone is reading", "trending", "viral", "booktok",
)

# Places, periods and genres the catalog rarely covers
SPECIFIC_TOPIC_PATTERNS = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"\b(venezuela|argentina|brazil|chile|peru|colombia|mexico|cuba|haiti|jamaica|puerto rico)\b",
    r"\b(nigeria|kenya|south africa|egypt|morocco|ethiopia|ghana|senegal)\b",
    r"\b(india|pakistan|bangladesh|vietnam|thailand|philippines|indonesia|malaysia)\b",
    r"\b(russia|ukraine|poland|hungary|czech|romania|serbia|croatia)\b",
    r"\b(china|japan|korea|taiwan)\b",
    r"\b(iran|iraq|syria|lebanon|palestine|israel|saudi|yemen|afghanistan)\b",
    r"\b(wwii|ww2|world war|civil war|revolution|colonial|independence)\b",
    r"\b(19th century|18th century|medieval|ancient|victorian|renaissance)\b",
    r"\b(sci-fi|science fiction|fantasy|horror|thriller|mystery|detective|crime fiction)\b",
))

# Broader set used only when no embedding collaborator is configured
FALLBACK_TOPIC_PATTERNS = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"\b(history|historical)\b.*\b(of|about|from)\b",
    r"\b(venezuela|argentina|brazil|chile|peru|colombia|mexico|cuba|haiti|jamaica)\b",
    r"\b(african|asian|middle eastern|european|latin american|caribbean)\b",
    r"\b(wwii|ww2|world war|civil war|revolution|colonial|independence)\b",
    r"\b(19th century|18th century|medieval|ancient|victorian|renaissance)\b",
    r"\b(true story|based on|real events|biography|memoir)\b",
    r"\b(science fiction|sci-fi|fantasy|horror|thriller|mystery|crime|detective)\b",
    r"\b(best|top|greatest|most popular|award.?winning|pulitzer|booker|nobel)\b",
))

CURATOR_THEMES = (
    "women", "woman", "female", "mother", "daughter", "sister",
    "emotional", "identity", "belonging", "spiritual", "justice", "family",
)

_BOOK_WORD_SUFFIX = re.compile(r"\b(book|novel|release|work)s?\s*$", re.IGNORECASE)

ANTI_PATTERN_DESCRIPTIONS = {
    "pure_escapism": (
        "Light, fun, easy read. Beach book. Vacation read. No heavy themes. "
        "Pure entertainment. Don't want to think. Just want to relax. Escapist fiction. "
        "Feel-good only. Nothing too serious. Light-hearted. Palate cleanser. "
        "Quick read. Page-turner without depth. Guilty pleasure."
    ),
    "plot_over_character": (
        "Fast-paced action. Thriller with lots of twists. Plot-driven. Page-turner. "
        "Can't put it down. Action-packed. High stakes. Suspenseful. "
        "Don't care about character development, just want excitement. "
        "Blockbuster style. Movie-like. Adrenaline rush."
    ),
    "formulaic_genre": (
        "Cozy mystery. Hallmark romance. Clean romance. Predictable but comforting. "
        "Formula fiction. I know what I'm getting. Comfort read. "
        "Series with familiar characters. No surprises. Sweet romance. Closed door. "
        "Happily ever after guaranteed."
    ),
}


def _first_keyword(keywords: Sequence[str]) -> Callable[[str, str], Optional[str]]:
    def match(normalized: str, original: str) -> Optional[str]:
        return next((k for k in keywords if k in normalized), None)
    return match


def _new_author_pattern(normalized: str, original: str) -> Optional[str]:
    """'new Paula McLain', 'new Paula McLain novel': two or three name-like words."""
    if not normalized.startswith("new "):
        return None
    after_new = original.strip()[4:].strip()
    candidate = _BOOK_WORD_SUFFIX.sub("", after_new).strip()
    if 2 <= len(candidate.split()) <= 3:
        return "new [author]"
    return None


def _mentions_curator_themes(normalized: str) -> bool:
    return any(theme in normalized for theme in CURATOR_THEMES)


def _specific_topic(normalized: str, original: str) -> Optional[str]:
    if _mentions_curator_themes(normalized):
        return None
    for pattern in SPECIFIC_TOPIC_PATTERNS:
        match = pattern.search(normalized)
        if match:
            return match.group(0)
    return None


# Evaluated in order; the first predicate that returns a keyword decides the path.
PRE_FILTER_RULES: Tuple[Tuple[Callable[[str, str], Optional[str]], RoutePath, str], ...] = (
    (_first_keyword(TEMPORAL_KEYWORDS), RoutePath.TEMPORAL, "temporal_keyword"),
    (_new_author_pattern, RoutePath.TEMPORAL, "new_author_pattern"),
    (_first_keyword(CATALOG_KEYWORDS), RoutePath.CATALOG, "catalog_keyword"),
    (_first_keyword(WORLD_KEYWORDS), RoutePath.WORLD, "world_keyword"),
    (_specific_topic, RoutePath.WORLD, "specific_topic_outside_catalog"),
)


def pre_filter_route(query: Optional[str], theme_filters: Optional[Sequence[str]] = None) -> PreFilterResult:
    """
    Keyword stage of the router.

    Args:
        query: User's search query
        theme_filters: Curated-list themes selected in the UI; any selection
            routes straight to the catalog

    Returns:
        PreFilterResult whose path is None when no rule matched
    """
    filters = [t for t in (theme_filters or []) if t]
    if filters:
        return PreFilterResult(
            path=RoutePath.CATALOG,
            reason="theme_filter_selected",
            matched_keyword=", ".join(filters),
            theme_filters=filters,
        )

    original = query or ""
    normalized = original.lower().strip()
    if not normalized:
        return PreFilterResult()

    for predicate, path, reason in PRE_FILTER_RULES:
        keyword = predicate(normalized, original)
        if keyword:
            return PreFilterResult(path=path, reason=reason, matched_keyword=keyword)

    return PreFilterResult()


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """Cosine similarity in [-1, 1]; 0 for missing, empty or mismatched vectors."""
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denominator = np.linalg.norm(va) * np.linalg.norm(vb)
    if denominator == 0:
        return 0.0
    return float(np.dot(va, vb) / denominator)


def average_embeddings(embeddings: Sequence[Sequence[float]]) -> Optional[List[float]]:
    """Centroid of equally sized vectors, or None for an empty input."""
    if not embeddings:
        return None
    return np.mean(np.asarray(embeddings, dtype=np.float64), axis=0).tolist()


class ReferenceEmbeddings(BaseModel):
    """Pre-computed vectors describing the curator's taste and what it is not."""

    taste_centroid: Optional[List[float]] = None
    anti_patterns: Dict[str, List[float]] = Field(default_factory=dict)


def load_reference_embeddings(path: Optional[Path] = None) -> Optional[ReferenceEmbeddings]:
    path = Path(path) if path else settings.REFERENCE_EMBEDDINGS_PATH
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return ReferenceEmbeddings.model_validate(json.load(f))
    except Exception as e:
        logger.warning(f"Failed to load reference embeddings from {path}: {e}")
        return None


def triggered_anti_pattern(query_embedding: Sequence[float], reference: ReferenceEmbeddings,
                           thresholds: RoutingThresholds) -> Optional[Tuple[str, float]]:
    """The strongest anti-pattern above the trigger threshold, if any."""
    scores = {
        name: cosine_similarity(query_embedding, vector)
        for name, vector in reference.anti_patterns.items()
    }
    if not scores:
        return None
    name, score = max(scores.items(), key=lambda item: item[1])
    if score > thresholds.anti_pattern_trigger:
        return name, score
    return None


def probe_catalog(matches: Sequence[CatalogMatch],
                  thresholds: Optional[RoutingThresholds] = None) -> Tuple[ConfidenceBucket, Optional[float]]:
    """
    Bucket ranked catalog similarity scores.

    Returns:
        (bucket, top similarity or None when there were no matches)
    """
    thresholds = thresholds or settings.DEFAULT_THRESHOLDS
    if not matches:
        return ConfidenceBucket.NONE, None

    top = max(m.similarity for m in matches)
    if top > thresholds.catalog_match_good and len(matches) >= thresholds.catalog_results_sufficient:
        return ConfidenceBucket.HIGH, top
    if top > thresholds.medium_alignment:
        return ConfidenceBucket.MEDIUM, top
    return ConfidenceBucket.LOW, top


_BUCKET_PATHS = {
    ConfidenceBucket.HIGH: (RoutePath.CATALOG, None),
    ConfidenceBucket.MEDIUM: (RoutePath.HYBRID, "balanced"),
    ConfidenceBucket.LOW: (RoutePath.WORLD, "quality_outside_taste"),
    ConfidenceBucket.NONE: (RoutePath.WORLD, "quality_outside_taste"),
}


def apply_taste_alignment(alignment: float, bucket: ConfidenceBucket, top: Optional[float],
                          thresholds: RoutingThresholds) -> RoutingDecision:
    """
    Decide the path from taste alignment, using the probe bucket to tell a
    well-stocked catalog from a thin one.

    High alignment goes to CATALOG only when the probe is confident and to
    HYBRID otherwise. Medium alignment goes to HYBRID and anything lower to
    WORLD.
    """
    if alignment > thresholds.high_alignment:
        if bucket == ConfidenceBucket.HIGH:
            return RoutingDecision(path=RoutePath.CATALOG, reason="high_alignment_good_catalog",
                                   confidence=ConfidenceBucket.HIGH, top_similarity=top,
                                   taste_alignment=alignment)
        return RoutingDecision(path=RoutePath.HYBRID, reason="high_alignment_thin_catalog",
                               subtype="catalog_plus_extrapolation", confidence=ConfidenceBucket.MEDIUM,
                               top_similarity=top, taste_alignment=alignment)
    if alignment > thresholds.medium_alignment:
        return RoutingDecision(path=RoutePath.HYBRID, reason="medium_alignment", subtype="balanced",
                               confidence=ConfidenceBucket.MEDIUM, top_similarity=top,
                               taste_alignment=alignment)
    # Below low_alignment the query is divergent rather than merely off-centre
    confidence = ConfidenceBucket.HIGH if alignment < thresholds.low_alignment else ConfidenceBucket.MEDIUM
    return RoutingDecision(path=RoutePath.WORLD, reason="low_alignment", subtype="quality_outside_taste",
                           confidence=confidence, top_similarity=top, taste_alignment=alignment)


def _from_pre_filter(result: PreFilterResult) -> RoutingDecision:
    return RoutingDecision(
        path=result.path,
        reason=result.reason,
        subtype="theme_browse" if result.theme_filters else None,
        confidence=ConfidenceBucket.HIGH,
        matched_keyword=result.matched_keyword,
        theme_filters=result.theme_filters,
    )


def _log_decision(query: str, decision: RoutingDecision) -> RoutingDecision:
    logger.info(f"Router decision for '{query[:50]}...': {decision.path.value} ({decision.reason})")
    return decision


def route_query(query: Optional[str],
                theme_filters: Optional[Sequence[str]] = None,
                embed: Optional[EmbedFn] = embed_query,
                search: SearchFn = find_similar_books,
                reference: Optional[ReferenceEmbeddings] = None,
                thresholds: Optional[RoutingThresholds] = None) -> RoutingDecision:
    """
    Route a query to CATALOG, WORLD, TEMPORAL or HYBRID.

    Args:
        query: User's search query
        theme_filters: Curated-list themes selected in the UI
        embed: Query embedding collaborator; None means no embedding service
            is configured and keyword-only fallback routing is used
        search: Catalog similarity collaborator
        reference: Optional taste/anti-pattern reference vectors
        thresholds: Probe thresholds

    Returns:
        A routing decision; never raises for collaborator failures
    """
    thresholds = thresholds or settings.DEFAULT_THRESHOLDS
    query = query or ""

    pre_filter = pre_filter_route(query, theme_filters)
    if pre_filter.path is not None:
        return _log_decision(query, _from_pre_filter(pre_filter))

    if not query.strip():
        return _log_decision(query, RoutingDecision(path=RoutePath.WORLD, reason="empty_query"))

    if embed is None:
        logger.info("No embedding collaborator configured, using keyword-only fallback routing")
        return _log_decision(query, fallback_route(query))

    alignment = None
    try:
        query_embedding = embed(query)

        if reference is not None:
            anti_pattern = triggered_anti_pattern(query_embedding, reference, thresholds)
            if anti_pattern is not None:
                name, score = anti_pattern
                return _log_decision(query, RoutingDecision(
                    path=RoutePath.WORLD,
                    reason=f"anti_pattern_{name}",
                    subtype="quality_outside_taste",
                    confidence=ConfidenceBucket.HIGH,
                    top_similarity=score,
                ))
            if reference.taste_centroid:
                alignment = cosine_similarity(query_embedding, reference.taste_centroid)
                logger.info(f"Taste alignment for '{query[:50]}...': {alignment:.3f}")

        matches = search(query_embedding, thresholds.probe_limit, thresholds.catalog_match_min)
    except Exception as e:
        logger.error(f"Catalog probe failed: {e}, defaulting to WORLD")
        return _log_decision(query, RoutingDecision(path=RoutePath.WORLD, reason="probe_failed"))

    bucket, top = probe_catalog(matches, thresholds)
    if alignment is not None:
        return _log_decision(query, apply_taste_alignment(alignment, bucket, top, thresholds))

    path, subtype = _BUCKET_PATHS[bucket]
    return _log_decision(query, RoutingDecision(
        path=path,
        reason=f"catalog_probe_{bucket.value}",
        subtype=subtype,
        confidence=bucket,
        top_similarity=top,
    ))


def fallback_route(query: Optional[str], theme_filters: Optional[Sequence[str]] = None) -> RoutingDecision:
    """Keyword-only routing for deployments without an embedding service."""
    pre_filter = pre_filter_route(query, theme_filters)
    if pre_filter.path is not None:
        return _from_pre_filter(pre_filter)

    normalized = (query or "").lower()
    mentions_themes = _mentions_curator_themes(normalized)
    specific_topic = any(pattern.search(normalized) for pattern in FALLBACK_TOPIC_PATTERNS)

    if specific_topic and not mentions_themes:
        return RoutingDecision(path=RoutePath.WORLD, reason="specific_topic_outside_catalog",
                               subtype="specific_topic", confidence=ConfidenceBucket.MEDIUM)
    if mentions_themes:
        return RoutingDecision(path=RoutePath.CATALOG, reason="matches_curator_themes",
                               subtype="theme_match", confidence=ConfidenceBucket.MEDIUM)
    return RoutingDecision(path=RoutePath.HYBRID, reason="fallback_no_embeddings",
                           subtype="balanced", confidence=ConfidenceBucket.LOW)
