"""
FastAPI backend for the Sarah's Books recommendation core.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from sarahsbooks.library import build_shortlist, load_catalog, parse_goodreads_csv
from sarahsbooks.models import RecommendationResult, RoutingDecision
from sarahsbooks.recommend import recommend
from sarahsbooks.router import load_reference_embeddings, route_query

logger = logging.getLogger(__name__)

app = FastAPI(title="Sarah's Books API", description="Routing and recommendation assembly for a curated book catalog")

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify actual origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Catalog snapshot and reference vectors are loaded once per process
CATALOG = load_catalog()
REFERENCE = load_reference_embeddings()


class RouteRequest(BaseModel):
    """Request model for routing a query."""
    query: str
    theme_filters: List[str] = Field(default_factory=list)


class ShortlistRequest(BaseModel):
    """Request model for building a catalog shortlist."""
    query: str
    reading_queue: List[Dict[str, Any]] = Field(default_factory=list)


class ShortlistResponse(BaseModel):
    """Response model for a catalog shortlist."""
    titles: List[str]
    total: int
    text: str


class RecommendRequest(BaseModel):
    """Request model for a full recommendation."""
    query: str
    theme_filters: List[str] = Field(default_factory=list)
    reading_queue: List[Dict[str, Any]] = Field(default_factory=list)
    owned_books: List[Dict[str, Any]] = Field(default_factory=list)
    goodreads_csv: Optional[str] = Field(None, description="Goodreads library export, merged into owned_books")
    current_year: Optional[int] = None


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str
    catalog_size: int


def _require_query(query: str) -> None:
    if not query.strip():
        raise HTTPException(status_code=400, detail="query must not be empty")


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok", catalog_size=len(CATALOG))


@app.post("/route", response_model=RoutingDecision)
async def route(request: RouteRequest) -> RoutingDecision:
    """
    Route a query to CATALOG, WORLD, TEMPORAL or HYBRID.

    Collaborator failures are folded into the decision, so this only fails
    on invalid input.
    """
    if not request.theme_filters:
        _require_query(request.query)
    return route_query(request.query, request.theme_filters, reference=REFERENCE)


@app.post("/shortlist", response_model=ShortlistResponse)
async def shortlist(request: ShortlistRequest) -> ShortlistResponse:
    """Build the catalog shortlist that would be sent for a query."""
    try:
        result = build_shortlist(request.query, CATALOG, request.reading_queue)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return ShortlistResponse(titles=result.titles, total=result.total, text=result.text)


@app.post("/recommend", response_model=RecommendationResult)
async def recommend_books(request: RecommendRequest) -> RecommendationResult:
    """
    Answer a recommendation request.

    Args:
        request: Query, selected themes and the user's reading history

    Returns:
        The routing decision, the prompt that was sent and the parsed picks
    """
    if not request.theme_filters:
        _require_query(request.query)

    owned_books = list(request.owned_books)
    owned_books += [book.model_dump() for book in parse_goodreads_csv(request.goodreads_csv)]
    try:
        return recommend(
            request.query,
            CATALOG,
            reading_queue=request.reading_queue,
            owned_books=owned_books,
            theme_filters=request.theme_filters,
            reference=REFERENCE,
            current_year=request.current_year,
        )
    except Exception as e:
        logger.error(f"Recommendation failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
