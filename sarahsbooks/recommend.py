"""
Recommendation request orchestration.

Routes the query, builds the catalog shortlist when the route draws on the
catalog, assembles the prompt, calls the LLM and parses the picks. A
recommendation request always yields a well-formed result: collaborator
failures degrade the answer, they never propagate.
"""

import logging
import re
from typing import Any, Callable, List, Optional, Sequence

import anthropic

from . import settings
from .embeddings import embed_query, find_similar_books
from .library import CatalogIndex, build_shortlist
from .models import PromptSegment, Recommendation, RecommendationResult, coerce_books
from .prompts import assemble_prompt, to_anthropic_system
from .router import EmbedFn, ReferenceEmbeddings, SearchFn, route_query

logger = logging.getLogger(__name__)

LLMFn = Callable[[List[PromptSegment], str], str]

LLM_ERROR_RESPONSE = (
    "I'm having trouble putting recommendations together right now. "
    "Try browsing one of my curated lists or ask again in a moment."
)

_FIELD_PREFIXES = (
    ("why this fits:", "why"),
    ("why:", "why"),
    ("author:", "author"),
    ("description:", "description"),
    ("reputation:", "reputation"),
)
_MARKDOWN = re.compile(r"^[*_#\s]+|[*_\s]+$")


def call_llm(system: List[PromptSegment], user_message: str) -> str:
    """
    Send the assembled prompt to the Anthropic Messages API.

    Raises:
        RuntimeError: If no Anthropic key is configured
        anthropic.APIError: If the API call fails
    """
    if not settings.ANTHROPIC_API_KEY:
        raise RuntimeError("ANTHROPIC_API_KEY is not set")

    client = anthropic.Anthropic(api_key=settings.ANTHROPIC_API_KEY)
    response = client.messages.create(
        model=settings.LLM_MODEL,
        max_tokens=settings.LLM_MAX_TOKENS,
        system=to_anthropic_system(system),
        messages=[{"role": "user", "content": user_message}],
    )
    return "".join(block.text for block in response.content if getattr(block, "type", None) == "text").strip()


def _clean(value: str) -> str:
    return _MARKDOWN.sub("", value).strip()


def parse_recommendations(text: Any, index: Optional[CatalogIndex] = None) -> List[Recommendation]:
    """
    Parse ``Title:`` blocks out of an LLM response.

    Each ``Title:`` line starts a new recommendation; the following
    Author/Why/Description/Reputation lines fill it in.
    """
    recommendations: List[Recommendation] = []
    current = None

    for raw_line in str(text or "").splitlines():
        line = _clean(raw_line)
        lowered = line.lower()
        if lowered.startswith("title:"):
            if current:
                recommendations.append(Recommendation(**current))
            title = _clean(line[len("title:"):]).strip("\"'“”")
            current = {"title": title} if title else None
            continue
        if current is None:
            continue
        for prefix, field in _FIELD_PREFIXES:
            if lowered.startswith(prefix):
                current.setdefault(field, _clean(line[len(prefix):]))
                break

    if current:
        recommendations.append(Recommendation(**current))

    if index is not None:
        recommendations = [
            rec.model_copy(update={"in_catalog": index.contains(rec.title)})
            for rec in recommendations
        ]
    return recommendations


def recommend(query: str,
              catalog: Any,
              reading_queue: Any = None,
              owned_books: Any = None,
              theme_filters: Optional[Sequence[str]] = None,
              embed: Optional[EmbedFn] = embed_query,
              search: SearchFn = find_similar_books,
              llm: LLMFn = call_llm,
              reference: Optional[ReferenceEmbeddings] = None,
              current_year: Optional[int] = None) -> RecommendationResult:
    """
    Answer a recommendation request end to end.

    Args:
        query: The user's request
        catalog: Curated catalog records
        reading_queue: The user's reading queue (preference and exclusion signal)
        owned_books: Books the user owns; excluded from recommendations
        theme_filters: Curated-list themes selected in the UI
        embed: Query embedding collaborator (None for keyword-only routing)
        search: Catalog similarity collaborator
        llm: Function sending (system segments, user message) to the LLM
        reference: Optional taste/anti-pattern reference vectors
        current_year: Overrides the year injected into the instructions

    Returns:
        RecommendationResult with the routing decision, the prompt that was
        sent and the parsed picks
    """
    books = coerce_books(catalog)
    routing = route_query(query, theme_filters, embed=embed, search=search, reference=reference)

    shortlist_text = ""
    if routing.uses_catalog:
        shortlist_query = " ".join([query or "", *routing.theme_filters]).strip()
        shortlist_text = build_shortlist(shortlist_query, books, reading_queue).text

    system, user_message = assemble_prompt(
        query, routing, shortlist_text, reading_queue, owned_books, current_year
    )

    try:
        answer = llm(system, user_message)
    except Exception as e:
        logger.error(f"Recommendation LLM call failed: {e}")
        return RecommendationResult(
            answer=LLM_ERROR_RESPONSE,
            routing=routing,
            shortlist=shortlist_text,
            system=system,
            user_message=user_message,
        )

    recommendations = parse_recommendations(answer, CatalogIndex(books))
    if len(recommendations) != 3:
        logger.warning(f"Expected 3 recommendations, parsed {len(recommendations)}")

    return RecommendationResult(
        answer=answer,
        recommendations=recommendations,
        routing=routing,
        shortlist=shortlist_text,
        system=system,
        user_message=user_message,
    )
