#!/usr/bin/env python3
"""
Standalone script to pre-compute the router's reference embeddings.

Writes a JSON file with the curator taste centroid (mean of the catalog's
favorite-book embeddings, or all embeddings when no favorite has one) and one
vector per anti-pattern description.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

import openai

# Add parent directory to path to import sarahsbooks modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from sarahsbooks import settings
from sarahsbooks.library import load_catalog
from sarahsbooks.models import Book
from sarahsbooks.router import ANTI_PATTERN_DESCRIPTIONS, ReferenceEmbeddings, average_embeddings

# Initialize OpenAI client
openai.api_key = settings.OPENAI_API_KEY


def taste_centroid(catalog: List[Book]) -> Optional[List[float]]:
    """
    Average the stored catalog embeddings.

    Favorites define the taste when any of them carry an embedding.
    """
    favorites = [book.embedding for book in catalog if book.favorite and book.embedding]
    if favorites:
        return average_embeddings(favorites)
    return average_embeddings([book.embedding for book in catalog if book.embedding])


def embed_anti_patterns(descriptions: Dict[str, str]) -> Dict[str, List[float]]:
    """Embed every anti-pattern description in a single API call."""
    names = list(descriptions)
    response = openai.embeddings.create(
        model=settings.EMBED_MODEL,
        input=[descriptions[name] for name in names],
    )
    return {name: list(item.embedding) for name, item in zip(names, response.data)}


def compute_reference_embeddings(catalog: List[Book]) -> ReferenceEmbeddings:
    return ReferenceEmbeddings(
        taste_centroid=taste_centroid(catalog),
        anti_patterns=embed_anti_patterns(ANTI_PATTERN_DESCRIPTIONS),
    )


def main():
    """Main entry point for the reference embedding script."""
    parser = argparse.ArgumentParser(
        description="Compute taste centroid and anti-pattern embeddings for the router"
    )
    parser.add_argument(
        "--catalog",
        type=Path,
        default=settings.CATALOG_PATH,
        help="Catalog JSON snapshot (books with embeddings)"
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=settings.REFERENCE_EMBEDDINGS_PATH,
        help="Where to write the reference embeddings JSON"
    )

    args = parser.parse_args()

    if not args.catalog.exists():
        print(f"Error: Catalog file not found: {args.catalog}")
        sys.exit(1)

    if not settings.OPENAI_API_KEY:
        print("Error: OPENAI_API_KEY is not set")
        sys.exit(1)

    try:
        catalog = load_catalog(args.catalog)
        reference = compute_reference_embeddings(catalog)

        args.output.parent.mkdir(parents=True, exist_ok=True)
        with open(args.output, 'w', encoding='utf-8') as f:
            json.dump(reference.model_dump(), f)

        print(f"✅ Reference embeddings written to: {args.output}")
        if reference.taste_centroid is None:
            print("Warning: no catalog embeddings found, taste centroid left empty")
        print(f"Anti-patterns: {', '.join(reference.anti_patterns)}")

        sys.exit(0)

    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
