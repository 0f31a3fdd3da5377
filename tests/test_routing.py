"""
Tests for the deterministic query router in sarahsbooks.router.
"""

import json
import tempfile
import unittest.mock
from pathlib import Path

import pytest

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from sarahsbooks.models import CatalogMatch, ConfidenceBucket, RoutePath
from sarahsbooks.settings import RoutingThresholds
from sarahsbooks.router import (
    ReferenceEmbeddings,
    apply_taste_alignment,
    average_embeddings,
    cosine_similarity,
    fallback_route,
    load_reference_embeddings,
    pre_filter_route,
    probe_catalog,
    route_query,
)

NEUTRAL_QUERY = "quiet novels about grief and healing"


def _matches(*scores):
    return [CatalogMatch(title=f"Book {i}", author="Author", similarity=s) for i, s in enumerate(scores)]


class TestPreFilter:
    """Test cases for the keyword stage."""

    def test_new_author_pattern(self):
        """Test that a new book by a named author is temporal."""
        result = pre_filter_route("new Paula McLain novel")
        assert result.path == RoutePath.TEMPORAL
        assert result.reason == "new_author_pattern"

    def test_temporal_keyword(self):
        """Test routing a temporal keyword."""
        result = pre_filter_route("What's the latest book by Ann Patchett?")
        assert result.path == RoutePath.TEMPORAL
        assert result.reason == "temporal_keyword"
        assert result.matched_keyword == "latest book"

    def test_recent_events_is_not_temporal(self):
        """Test that recent events alone is not a temporal request."""
        result = pre_filter_route("recent events in politics")
        assert result.path is None
        assert result.reason == "no_keyword_match"

    def test_catalog_keyword(self):
        """Test routing a catalog keyword."""
        result = pre_filter_route("Do you have anything in your collection about grief?")
        assert result.path == RoutePath.CATALOG
        assert result.reason == "catalog_keyword"

    def test_world_keyword(self):
        """Test routing a WORLD keyword."""
        result = pre_filter_route("Show me bestsellers")
        assert result.path == RoutePath.WORLD
        assert result.reason == "world_keyword"
        assert result.matched_keyword == "bestseller"

    def test_specific_topic_outside_catalog(self):
        """Test that a specific place outside the catalog routes to WORLD."""
        result = pre_filter_route("books about Venezuela")
        assert result.path == RoutePath.WORLD
        assert result.reason == "specific_topic_outside_catalog"
        assert result.matched_keyword == "venezuela"

    def test_curator_themes_suppress_topic_rule(self):
        """Test that curator themes keep a specific topic out of WORLD."""
        result = pre_filter_route("a mother and daughter in Venezuela")
        assert result.path is None

    def test_no_keyword_match(self):
        """Test a query with no keyword."""
        result = pre_filter_route("emotional family drama")
        assert result.path is None
        assert result.reason == "no_keyword_match"

    def test_temporal_wins_over_world(self):
        """Test that temporal rules are checked first."""
        # Both "new releases" and "trending" appear; temporal rules come first
        result = pre_filter_route("trending new releases")
        assert result.path == RoutePath.TEMPORAL

    def test_theme_filters_route_to_catalog(self):
        """Test that selected themes route to the catalog."""
        result = pre_filter_route("", ["women", "justice"])
        assert result.path == RoutePath.CATALOG
        assert result.reason == "theme_filter_selected"
        assert result.theme_filters == ["women", "justice"]

    def test_empty_and_none_query(self):
        """Test that empty queries match no rule."""
        assert pre_filter_route("").path is None
        assert pre_filter_route(None).path is None


class TestProbe:
    """Test cases for bucketing catalog similarity scores."""

    def test_high(self):
        """Test the high bucket."""
        bucket, top = probe_catalog(_matches(0.8, 0.75, 0.7))
        assert bucket == ConfidenceBucket.HIGH
        assert top == pytest.approx(0.8)

    def test_too_few_results_is_medium(self):
        """Test that too few strong results drop to medium."""
        bucket, _ = probe_catalog(_matches(0.9, 0.85))
        assert bucket == ConfidenceBucket.MEDIUM

    def test_low(self):
        """Test the low bucket."""
        bucket, top = probe_catalog(_matches(0.52))
        assert bucket == ConfidenceBucket.LOW
        assert top == pytest.approx(0.52)

    def test_none(self):
        """Test the bucket for no results."""
        assert probe_catalog([]) == (ConfidenceBucket.NONE, None)


class TestRouteQuery:
    """Test cases for the full router."""

    def test_high_probe_routes_to_catalog(self):
        """Test that strong catalog matches route to CATALOG."""
        decision = route_query(NEUTRAL_QUERY, embed=lambda q: [0.1, 0.2],
                               search=lambda e, limit, threshold: _matches(0.8, 0.76, 0.74))
        assert decision.path == RoutePath.CATALOG
        assert decision.reason == "catalog_probe_high"
        assert decision.confidence == ConfidenceBucket.HIGH

    def test_medium_probe_routes_to_hybrid(self):
        """Test that moderate catalog matches route to HYBRID."""
        decision = route_query(NEUTRAL_QUERY, embed=lambda q: [0.1, 0.2],
                               search=lambda e, limit, threshold: _matches(0.6))
        assert decision.path == RoutePath.HYBRID
        assert decision.top_similarity == pytest.approx(0.6)

    def test_empty_probe_routes_to_world(self):
        """Test that no catalog matches route to WORLD."""
        decision = route_query(NEUTRAL_QUERY, embed=lambda q: [0.1, 0.2],
                               search=lambda e, limit, threshold: [])
        assert decision.path == RoutePath.WORLD
        assert decision.reason == "catalog_probe_none"

    def test_probe_receives_configured_limits(self):
        """Test that the similarity search gets the configured limit and threshold."""
        search = unittest.mock.MagicMock(return_value=[])
        route_query(NEUTRAL_QUERY, embed=lambda q: [0.5], search=search)
        search.assert_called_once_with([0.5], 5, 0.5)

    def test_embedding_failure_routes_to_world(self):
        """Test that an embedding failure routes to WORLD."""
        def broken_embed(query):
            raise RuntimeError("embedding service down")

        decision = route_query(NEUTRAL_QUERY, embed=broken_embed, search=lambda e, limit, threshold: [])
        assert decision.path == RoutePath.WORLD
        assert decision.reason == "probe_failed"

    def test_search_failure_routes_to_world(self):
        """Test that a similarity search failure routes to WORLD."""
        search = unittest.mock.MagicMock(side_effect=TimeoutError("rpc timed out"))
        decision = route_query(NEUTRAL_QUERY, embed=lambda q: [0.1], search=search)
        assert decision.path == RoutePath.WORLD
        assert decision.reason == "probe_failed"

    def test_keyword_match_skips_probe(self):
        """Test that a keyword match never embeds the query."""
        embed = unittest.mock.MagicMock()
        decision = route_query("Show me bestsellers", embed=embed)
        assert decision.path == RoutePath.WORLD
        embed.assert_not_called()

    def test_anti_pattern_routes_to_world(self):
        """Test that an anti-pattern match routes to WORLD before searching."""
        reference = ReferenceEmbeddings(anti_patterns={"pure_escapism": [1.0, 0.0]})
        search = unittest.mock.MagicMock(return_value=_matches(0.9, 0.9, 0.9))
        decision = route_query(NEUTRAL_QUERY, embed=lambda q: [1.0, 0.0], search=search, reference=reference)
        assert decision.path == RoutePath.WORLD
        assert decision.reason == "anti_pattern_pure_escapism"
        search.assert_not_called()

    def test_no_embedding_service_uses_fallback(self):
        """Test keyword-only routing without an embedding service."""
        decision = route_query("emotional family drama", embed=None)
        assert decision.path == RoutePath.CATALOG
        assert decision.reason == "matches_curator_themes"

    def test_empty_query_routes_to_world(self):
        """Test that a blank query routes to WORLD."""
        decision = route_query("   ", embed=unittest.mock.MagicMock())
        assert decision.path == RoutePath.WORLD
        assert decision.reason == "empty_query"

    def test_deterministic(self):
        """Test that the same inputs give the same decision."""
        search = lambda e, limit, threshold: _matches(0.6, 0.58)
        first = route_query(NEUTRAL_QUERY, embed=lambda q: [0.3], search=search)
        second = route_query(NEUTRAL_QUERY, embed=lambda q: [0.3], search=search)
        assert first == second


class TestFallbackRoute:
    """Test cases for keyword-only routing."""

    def test_specific_topic(self):
        """Test that a specific topic routes to WORLD."""
        decision = fallback_route("a memoir by a chef")
        assert decision.path == RoutePath.WORLD
        assert decision.reason == "specific_topic_outside_catalog"

    def test_curator_themes(self):
        """Test that curator themes route to the catalog."""
        decision = fallback_route("stories about sisters")
        assert decision.path == RoutePath.CATALOG

    def test_default_is_hybrid(self):
        """Test that anything else routes to HYBRID."""
        decision = fallback_route("something cozy to read")
        assert decision.path == RoutePath.HYBRID
        assert decision.reason == "fallback_no_embeddings"


class TestVectors:
    """Test cases for vector helpers and reference embeddings."""

    def test_cosine_similarity(self):
        """Test cosine similarity of simple vectors."""
        assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
        assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)

    def test_cosine_similarity_degenerate(self):
        """Test cosine similarity of missing, mismatched and zero vectors."""
        assert cosine_similarity(None, [1, 0]) == 0.0
        assert cosine_similarity([1, 0], [1, 0, 0]) == 0.0
        assert cosine_similarity([0, 0], [1, 0]) == 0.0
        assert cosine_similarity([], []) == 0.0

    def test_average_embeddings(self):
        """Test averaging embeddings."""
        assert average_embeddings([[1, 2], [3, 4]]) == pytest.approx([2.0, 3.0])
        assert average_embeddings([]) is None

    def test_load_reference_embeddings_not_exists(self):
        """Test loading reference embeddings when the file doesn't exist."""
        with tempfile.TemporaryDirectory() as temp_dir:
            assert load_reference_embeddings(Path(temp_dir) / "missing.json") is None

    def test_load_reference_embeddings_exists(self):
        """Test loading reference embeddings from a JSON file."""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "reference.json"
            with open(path, "w") as f:
                json.dump({"taste_centroid": [0.1, 0.2], "anti_patterns": {"formulaic_genre": [0.3, 0.4]}}, f)

            reference = load_reference_embeddings(path)
            assert reference is not None
            assert reference.taste_centroid == [0.1, 0.2]
            assert "formulaic_genre" in reference.anti_patterns

    def test_load_reference_embeddings_invalid(self):
        """Test loading reference embeddings from a corrupt file."""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "reference.json"
            path.write_text("not json")
            assert load_reference_embeddings(path) is None


class TestRouterPrecedence:
    """Keyword short-circuits and the safe default."""

    def test_bestsellers(self):
        """Test that a WORLD keyword wins over strong catalog matches."""
        search = unittest.mock.MagicMock(return_value=_matches(0.95, 0.9, 0.9))
        decision = route_query("bestsellers", embed=lambda q: [0.1], search=search)
        assert (decision.path, decision.reason) == (RoutePath.WORLD, "world_keyword")
        search.assert_not_called()

    def test_in_your_collection(self):
        """Test that a catalog keyword routes to the catalog."""
        decision = route_query("in your collection", embed=unittest.mock.MagicMock())
        assert (decision.path, decision.reason) == (RoutePath.CATALOG, "catalog_keyword")

    def test_probe_failure_defaults_to_world(self):
        """Test that an unreachable similarity search routes to WORLD."""
        search = unittest.mock.MagicMock(side_effect=ConnectionError("rpc unreachable"))
        decision = route_query("emotional family drama", embed=lambda q: [0.1], search=search)
        assert decision.path == RoutePath.WORLD


class TestTasteAlignment:
    """Test cases for routing on similarity to the curator's taste centroid."""

    @pytest.fixture
    def reference(self):
        return ReferenceEmbeddings(taste_centroid=[1.0, 0.0])

    def _route(self, reference, embedding, matches):
        return route_query(NEUTRAL_QUERY, embed=lambda q: embedding,
                           search=lambda e, limit, threshold: matches, reference=reference)

    def test_high_alignment_good_catalog(self, reference):
        """Test that on-taste queries with strong matches route to CATALOG."""
        decision = self._route(reference, [1.0, 0.0], _matches(0.8, 0.76, 0.74))
        assert decision.path == RoutePath.CATALOG
        assert decision.reason == "high_alignment_good_catalog"
        assert decision.confidence == ConfidenceBucket.HIGH
        assert decision.taste_alignment == pytest.approx(1.0)

    def test_high_alignment_thin_catalog(self, reference):
        """Test that on-taste queries with weak matches route to HYBRID."""
        decision = self._route(reference, [1.0, 0.0], _matches(0.6))
        assert decision.path == RoutePath.HYBRID
        assert decision.reason == "high_alignment_thin_catalog"
        assert decision.subtype == "catalog_plus_extrapolation"

    def test_medium_alignment(self, reference):
        """Test that moderately aligned queries route to HYBRID despite strong matches."""
        decision = self._route(reference, [0.6, 0.8], _matches(0.8, 0.76, 0.74))
        assert decision.path == RoutePath.HYBRID
        assert decision.reason == "medium_alignment"
        assert decision.subtype == "balanced"
        assert decision.taste_alignment == pytest.approx(0.6)

    def test_low_alignment_overrides_catalog_matches(self, reference):
        """Test that off-taste queries route to WORLD despite strong matches."""
        decision = self._route(reference, [0.0, 1.0], _matches(0.8, 0.76, 0.74))
        assert decision.path == RoutePath.WORLD
        assert decision.reason == "low_alignment"
        assert decision.subtype == "quality_outside_taste"
        assert decision.confidence == ConfidenceBucket.HIGH

    def test_borderline_low_alignment_is_medium_confidence(self, reference):
        """Test that alignment between the low and medium thresholds is a less certain WORLD."""
        decision = self._route(reference, [1.0, 1.7], [])
        assert decision.path == RoutePath.WORLD
        assert decision.confidence == ConfidenceBucket.MEDIUM

    def test_anti_pattern_wins_over_alignment(self):
        """Test that an anti-pattern match routes to WORLD even for an on-taste query."""
        reference = ReferenceEmbeddings(taste_centroid=[1.0, 0.0], anti_patterns={"formulaic_genre": [1.0, 0.0]})
        decision = self._route(reference, [1.0, 0.0], _matches(0.9, 0.9, 0.9))
        assert decision.reason == "anti_pattern_formulaic_genre"

    def test_without_centroid_uses_catalog_matches(self):
        """Test that a reference without a centroid routes on catalog matches alone."""
        decision = self._route(ReferenceEmbeddings(), [0.0, 1.0], _matches(0.8, 0.76, 0.74))
        assert decision.path == RoutePath.CATALOG
        assert decision.reason == "catalog_probe_high"
        assert decision.taste_alignment is None

    def test_thresholds_are_exclusive(self):
        """Test that alignment equal to a threshold falls to the lower band."""
        thresholds = RoutingThresholds()
        decision = apply_taste_alignment(thresholds.high_alignment, ConfidenceBucket.HIGH, 0.9, thresholds)
        assert decision.reason == "medium_alignment"
        decision = apply_taste_alignment(thresholds.medium_alignment, ConfidenceBucket.HIGH, 0.9, thresholds)
        assert decision.reason == "low_alignment"
