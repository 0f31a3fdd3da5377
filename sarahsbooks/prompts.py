"""
Prompt assembly for the recommendation LLM call.

The system prompt is a list of segments ordered from most to least static
so that the provider's prompt cache can reuse the longest possible prefix:
persona, response format, routing instructions, then the user's reading
history.
"""

from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .models import (
    OwnedBook,
    PromptSegment,
    ReadingQueueItem,
    RoutePath,
    RoutingDecision,
    coerce_owned,
    coerce_queue,
)

MAX_OWNED_BOOKS = 12

# Anthropic rejects requests with more than four cache_control blocks
MAX_CACHE_BREAKPOINTS = 4

BASE_PROMPT = """You are Sarah, a passionate book curator helping readers discover their next great book.

Your taste centers on: women's stories, emotional truth, identity, spirituality, and justice.

RECOMMENDATION STRATEGY:
- Find the BEST matches for the user's request
- Prioritize Goodreads 4.0+ rated books, award winners, Indie Next picks, and acclaimed titles
- Consider recent releases, classics, and hidden gems
- Always prioritize BEST FIT - the user wants the perfect book for their specific request

CRITICAL: You will receive a list of books the user has already read, saved, or dismissed. NEVER recommend any book from that exclusion list under any circumstances.

IMPORTANT: When the user mentions authors they've already read (e.g., "I enjoy Jack Carr but have read all his books"), recommend books by DIFFERENT authors with similar styles. Do not recommend books by the mentioned authors."""

RESPONSE_FORMAT_PROMPT = """RESPONSE FORMAT:
When recommending books, always respond with exactly this structure:

My Top 3 Picks for You

[RECOMMENDATION 1]
Title: [Book Title]
Author: [Author Name]
Why This Fits: [1-2 sentences explaining why this matches their request]
Description: [2-3 sentence description of the book]
Reputation: [Mention Goodreads rating, awards, or Indie Next List recognition if notable]

[RECOMMENDATION 2]
...same format...

[RECOMMENDATION 3]
...same format...

Keep responses concise. Be direct and helpful.

IMPORTANT: The UI that displays your recommendations ONLY works if you follow the RESPONSE FORMAT exactly.
Do NOT output a numbered list or bullet list of titles.
Each recommendation MUST include a line that starts with "Title:".
You MUST return exactly 3 recommendations (no fewer). If you cannot find 3 perfect matches, broaden slightly and still return 3.
If the user's request is vague, still return 3 solid picks, then ask 1 short clarifying question at the very end.

When asked for "best books of the year" or new releases, treat the current year as {year} unless the user specifies a different year."""

ROUTE_INSTRUCTIONS = {
    RoutePath.CATALOG: (
        "SOURCE: Recommend from the library shortlist provided in the user message. "
        "These are books Sarah personally loves. Only go beyond the shortlist if it has fewer than 3 suitable books."
    ),
    RoutePath.HYBRID: (
        "SOURCE: Blend the library shortlist provided in the user message with your wider knowledge of books. "
        "Include at least one shortlist book when one genuinely fits."
    ),
    RoutePath.WORLD: (
        "SOURCE: This request sits outside Sarah's usual taste. Recommend the best-regarded books "
        "from the wider world of books, and be open that these aren't her usual picks."
    ),
    RoutePath.TEMPORAL: (
        "SOURCE: The user wants new or upcoming releases. Prefer the most recent titles you know of, "
        "and say so plainly if a release may be newer than your knowledge."
    ),
}


def _book_list(items: Sequence[ReadingQueueItem]) -> str:
    return ", ".join(f'"{item.book_title}" by {item.book_author or "Unknown"}' for item in items)


def build_history_segments(reading_queue: Any) -> List[PromptSegment]:
    """
    One segment per non-empty reading-history group.

    Read books are split by rating into loved (5), liked (4) and disliked
    (1-2); every read book is also listed for hard exclusion, as are books
    already saved to the reading queue.
    """
    queue = coerce_queue(reading_queue)
    read = [item for item in queue if item.is_read]
    queued = [item for item in queue if item.is_queued]
    loved = [item for item in read if item.rating == 5]
    liked = [item for item in read if item.rating == 4]
    disliked = [item for item in read if item.rating is not None and item.rating <= 2]

    segments = []
    if loved:
        segments.append(PromptSegment(text=(
            f"BOOKS USER LOVED (5 stars - {len(loved)} books):\n{_book_list(loved)}\n\n"
            "These are their absolute favorites. Recommend books with similar themes, writing styles, or by the same authors."
        )))
    if liked:
        segments.append(PromptSegment(text=(
            f"BOOKS USER REALLY LIKED (4 stars - {len(liked)} books):\n{_book_list(liked)}\n\n"
            "These are strong favorites. Consider similar books but prioritize 5-star matches first."
        )))
    if disliked:
        segments.append(PromptSegment(text=(
            f"BOOKS USER DISLIKED (1-2 stars - {len(disliked)} books):\n{_book_list(disliked)}\n\n"
            "Avoid recommending books with similar themes, styles, or genres to these."
        )))
    if read:
        segments.append(PromptSegment(text=(
            f"CRITICAL EXCLUSION - BOOKS USER HAS ALREADY READ ({len(read)} books):\n{_book_list(read)}\n\n"
            "ABSOLUTE RULE: NEVER recommend ANY of these books under ANY circumstances. If a user asks about one "
            "of these books, acknowledge they've read it but do NOT include it in your 3 recommendations."
        )))
    if queued:
        segments.append(PromptSegment(text=(
            f"BOOKS USER HAS ALREADY SAVED TO READING QUEUE ({len(queued)} books):\n{_book_list(queued)}\n\n"
            "DO NOT recommend any of these books - they're already in the user's reading queue."
        )))
    return segments


def build_cached_system_prompt(reading_queue: Any = None,
                               routing: Optional[RoutingDecision] = None,
                               current_year: Optional[int] = None) -> List[PromptSegment]:
    """
    Build the structured system prompt.

    The persona and response-format segments are always present; the
    response format is what the downstream parser depends on.
    """
    year = current_year or date.today().year
    segments = [
        PromptSegment(text=BASE_PROMPT),
        PromptSegment(text=RESPONSE_FORMAT_PROMPT.format(year=year)),
    ]
    if routing is not None:
        segments.append(PromptSegment(text=ROUTE_INSTRUCTIONS[routing.path]))
    segments.extend(build_history_segments(reading_queue))
    return segments


def build_user_message(user_message: Any, library_context: Optional[str] = None, owned_books: Any = None) -> str:
    """Shortlist, owned-book exclusions and the verbatim request, in that order."""
    parts = []
    if library_context:
        parts.append(f"MY LIBRARY SHORTLIST (books I personally love and recommend):\n{library_context}")

    owned: List[OwnedBook] = coerce_owned(owned_books)
    if owned:
        lines = "\n".join(
            f"- {book.title}{f' - {book.author}' if book.author else ''}"
            for book in owned[:MAX_OWNED_BOOKS]
        )
        parts.append(f"USER'S OWNED BOOKS (do not recommend these):\n{lines}")

    parts.append(f"USER REQUEST:\n{'' if user_message is None else user_message}")
    return "\n\n".join(parts)


def assemble_prompt(query: Any, routing: RoutingDecision, shortlist_text: Optional[str] = None,
                    reading_queue: Any = None, owned_books: Any = None,
                    current_year: Optional[int] = None) -> Tuple[List[PromptSegment], str]:
    """
    System segments and user message for one request.

    The shortlist is only included when the route draws on the catalog.
    """
    system = build_cached_system_prompt(reading_queue, routing, current_year)
    context = shortlist_text if routing.uses_catalog else None
    return system, build_user_message(query, context, owned_books)


def to_anthropic_system(segments: Sequence[PromptSegment],
                        max_breakpoints: int = MAX_CACHE_BREAKPOINTS) -> List[Dict[str, Any]]:
    """
    Render system segments as Anthropic blocks with a bounded number of
    cache breakpoints.

    A breakpoint caches the whole prefix up to it. When there are more
    cacheable segments than allowed, breakpoints go on the leading segments
    after the persona and on the last cacheable segment.
    """
    cacheable = [i for i, segment in enumerate(segments) if segment.cacheable]
    if len(cacheable) <= max_breakpoints:
        breakpoints = set(cacheable)
    else:
        breakpoints = set(cacheable[1:max_breakpoints]) | {cacheable[-1]}
    return [segment.to_anthropic(i in breakpoints) for i, segment in enumerate(segments)]
