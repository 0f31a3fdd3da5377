"""
External collaborators used by the router's probe stage: the query embedding
service (OpenAI) and the catalog similarity RPC (Supabase/Postgres).

Both raise on failure; the router decides what a failure means.
"""

import logging
from typing import List, Sequence

import openai
import requests

from . import settings
from .models import CatalogMatch

logger = logging.getLogger(__name__)

# Initialize OpenAI client
openai.api_key = settings.OPENAI_API_KEY


def embed_query(text: str) -> List[float]:
    """
    Get the embedding vector for a query string.

    Raises:
        RuntimeError: If no OpenAI key is configured
        openai.OpenAIError: If the API call fails
    """
    if not settings.OPENAI_API_KEY:
        raise RuntimeError("OPENAI_API_KEY is not set")

    response = openai.embeddings.create(
        model=settings.EMBED_MODEL,
        input=[text.strip()],
        timeout=settings.PROBE_TIMEOUT_SECONDS,
    )
    return list(response.data[0].embedding)


def find_similar_books(embedding: Sequence[float], limit: int, threshold: float) -> List[CatalogMatch]:
    """
    Call the catalog similarity RPC.

    Args:
        embedding: Query embedding vector
        limit: Maximum number of rows to return
        threshold: Minimum similarity for a row to be returned

    Returns:
        Ranked matches, most similar first

    Raises:
        RuntimeError: If Supabase is not configured
        requests.RequestException: On transport errors or non-2xx responses
    """
    if not settings.SUPABASE_URL or not settings.SUPABASE_ANON_KEY:
        raise RuntimeError("SUPABASE_URL and SUPABASE_ANON_KEY must be set")

    url = f"{settings.SUPABASE_URL.rstrip('/')}/rest/v1/rpc/{settings.SIMILARITY_RPC}"
    headers = {
        "apikey": settings.SUPABASE_ANON_KEY,
        "Authorization": f"Bearer {settings.SUPABASE_ANON_KEY}",
        "Content-Type": "application/json",
    }
    payload = {
        "query_embedding": list(embedding),
        "limit_count": limit,
        "similarity_threshold": threshold,
    }

    response = requests.post(url, json=payload, headers=headers, timeout=settings.PROBE_TIMEOUT_SECONDS)
    response.raise_for_status()
    rows = response.json() or []

    matches = [CatalogMatch.model_validate(row) for row in rows if isinstance(row, dict)]
    matches.sort(key=lambda m: m.similarity, reverse=True)
    logger.info(f"Similarity RPC returned {len(matches)} catalog matches")
    return matches
