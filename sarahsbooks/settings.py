"""
Global settings and configuration for the Sarah's Books recommendation core.
"""

import os
from pathlib import Path

from pydantic import BaseModel, Field

# API keys (missing keys are reported by the collaborator that needs them)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")

# Supabase (catalog similarity RPC)
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY")
SIMILARITY_RPC = "find_similar_books"

# Model configuration
EMBED_MODEL = "text-embedding-3-small"
LLM_MODEL = os.getenv("SARAHSBOOKS_LLM_MODEL", "claude-sonnet-4-20250514")
LLM_MAX_TOKENS = 1500

# Seconds to wait on the embedding / similarity collaborators
PROBE_TIMEOUT_SECONDS = 8

# Directory Paths
PROJECT_ROOT = Path(__file__).parent.parent
CATALOG_PATH = Path(os.getenv("SARAHSBOOKS_CATALOG", PROJECT_ROOT / "data" / "books.json"))
REFERENCE_EMBEDDINGS_PATH = Path(
    os.getenv("SARAHSBOOKS_REFERENCE_EMBEDDINGS", PROJECT_ROOT / "data" / "reference_embeddings.json")
)


class ShortlistConfig(BaseModel):
    """Size limits for the catalog shortlist sent to the LLM."""

    max_favorites: int = Field(default=12, description="Favorites merged in first")
    top_matches: int = Field(default=24, description="Top lexical matches merged next")
    max_books: int = Field(default=28, description="Hard cap on shortlist length")
    described_lines: int = Field(default=10, description="Leading lines that carry a description snippet")
    description_chars: int = Field(default=120, description="Maximum snippet length, ellipsis included")


class RoutingThresholds(BaseModel):
    """Similarity thresholds used by the deterministic router."""

    high_alignment: float = Field(default=0.75, description="Strong match with the curator's taste")
    medium_alignment: float = Field(default=0.55, description="Partial overlap")
    low_alignment: float = Field(default=0.40, description="Below this the query is divergent")
    anti_pattern_trigger: float = Field(default=0.70, description="Route to WORLD if any anti-pattern exceeds this")
    catalog_match_good: float = Field(default=0.72, description="Top catalog similarity for a good match")
    catalog_match_min: float = Field(default=0.50, description="Minimum similarity passed to the RPC")
    catalog_results_sufficient: int = Field(default=3, description="Catalog results needed for a high bucket")
    probe_limit: int = Field(default=5, description="Result count requested from the RPC")


DEFAULT_SHORTLIST = ShortlistConfig()
DEFAULT_THRESHOLDS = RoutingThresholds()
