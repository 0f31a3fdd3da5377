"""
Sarah's Books: routing and prompt assembly for curated book recommendations.

This package decides whether a request is answered from the curated catalog,
from general literary knowledge, or both; builds a bounded shortlist of
catalog books for the request; and assembles a cache-friendly prompt for the
recommendation LLM.
"""

from .library import build_library_context, build_shortlist, load_catalog
from .models import Book, ReadingQueueItem, RoutePath, RoutingDecision
from .prompts import build_cached_system_prompt, build_user_message
from .recommend import recommend
from .router import pre_filter_route, route_query
from .search import score_book

__version__ = "1.0.0"
