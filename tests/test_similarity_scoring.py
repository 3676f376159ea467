"""Tests for Jaro-Winkler name similarity."""

import pytest

from contactcore.deduplication.similarity_scoring import (
    ConfidenceThresholds,
    SimilarityScorer,
    jaro_similarity,
    jaro_winkler_similarity,
)


class TestJaro:
    """Test the raw Jaro and Jaro-Winkler functions."""

    def test_textbook_pairs(self):
        """Test well-known reference values."""
        assert jaro_similarity("martha", "marhta") == pytest.approx(0.944, abs=0.001)
        assert jaro_winkler_similarity("martha", "marhta") == pytest.approx(0.961, abs=0.001)
        assert jaro_winkler_similarity("dwayne", "duane") == pytest.approx(0.84, abs=0.001)
        assert jaro_winkler_similarity("dixon", "dicksonx") == pytest.approx(0.813, abs=0.001)

    def test_no_common_characters(self):
        assert jaro_similarity("abc", "xyz") == 0.0

    def test_single_characters_have_no_window(self):
        """Test that a negative match window yields zero."""
        assert jaro_similarity("a", "a") == 0.0

    def test_low_jaro_still_gets_prefix_boost(self):
        """Test the prefix boost applies without a minimum Jaro gate."""
        jaro = jaro_similarity("abcdxyz", "abcdqrstuvw")
        assert jaro < 0.7
        assert jaro_winkler_similarity("abcdxyz", "abcdqrstuvw") == pytest.approx(
            jaro + 0.4 * (1 - jaro)
        )


class TestSimilarityScorer:
    """Test suite for SimilarityScorer."""

    @pytest.fixture
    def scorer(self):
        """Create a scorer instance."""
        return SimilarityScorer()

    def test_identical(self, scorer):
        assert scorer.similarity("acme", "acme") == 1.0

    def test_case_and_whitespace_insensitive(self, scorer):
        """Test names are compared trimmed and lower-cased."""
        assert scorer.similarity("  Maria Silva ", "MARIA SILVA") == 1.0
        assert scorer.similarity("MARTHA", "MARHTA") == pytest.approx(0.961, abs=0.001)

    def test_empty_side_scores_zero(self, scorer):
        """Test that an empty name never matches, even another empty name."""
        assert scorer.similarity("", "x") == 0.0
        assert scorer.similarity("x", None) == 0.0
        assert scorer.similarity("", "") == 0.0
        assert scorer.similarity("   ", "   ") == 0.0

    def test_symmetric_and_bounded(self, scorer):
        pairs = [("Maria Silva", "Maria Silvia"), ("João", "Joao"), ("Pedro", "Ana")]
        for a, b in pairs:
            score = scorer.similarity(a, b)
            assert 0.0 <= score <= 1.0
            assert score == pytest.approx(scorer.similarity(b, a))

    def test_is_similar_uses_threshold(self):
        """Test the configured threshold drives is_similar."""
        strict = SimilarityScorer(ConfidenceThresholds(similar_name=0.99))
        assert not strict.is_similar("MARTHA", "MARHTA")
        assert SimilarityScorer().is_similar("MARTHA", "MARHTA")
        assert strict.is_similar("MARTHA", "MARHTA", threshold=0.9)
