"""
Similarity Scoring System

Jaro-Winkler similarity for contact names. Detection thresholds are tuned
against these exact values, so the algorithm follows the textbook definition
without the usual library shortcuts (no minimum-Jaro gate before the Winkler
boost, no long-string adjustment).
"""

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class ConfidenceThresholds:
    """Similarity thresholds for name matching."""

    exact_match: float = 1.0
    similar_name: float = 0.8


def jaro_similarity(a: str, b: str) -> float:
    """Jaro similarity of two already-normalized strings."""
    len_a, len_b = len(a), len(b)
    if len_a == 0 or len_b == 0:
        return 0.0

    window = max(len_a, len_b) // 2 - 1
    if window < 0:
        return 0.0

    a_matched = [False] * len_a
    b_matched = [False] * len_b
    matches = 0

    for i, char in enumerate(a):
        start = max(0, i - window)
        end = min(i + window + 1, len_b)
        for j in range(start, end):
            if b_matched[j] or b[j] != char:
                continue
            a_matched[i] = True
            b_matched[j] = True
            matches += 1
            break

    if matches == 0:
        return 0.0

    # Walk both matched sequences in original order
    transpositions = 0
    k = 0
    for i in range(len_a):
        if not a_matched[i]:
            continue
        while not b_matched[k]:
            k += 1
        if a[i] != b[k]:
            transpositions += 1
        k += 1

    half = transpositions / 2
    return (matches / len_a + matches / len_b + (matches - half) / matches) / 3


def jaro_winkler_similarity(a: str, b: str, prefix_scale: float = 0.1) -> float:
    """Jaro similarity boosted by the common prefix (up to 4 characters)."""
    jaro = jaro_similarity(a, b)

    prefix = 0
    for char_a, char_b in zip(a[:4], b[:4]):
        if char_a != char_b:
            break
        prefix += 1

    return min(1.0, jaro + prefix * prefix_scale * (1 - jaro))


class SimilarityScorer:
    """
    Name similarity for duplicate detection.

    Names are compared case-insensitively after trimming; scores are in [0, 1].
    """

    def __init__(self, thresholds: ConfidenceThresholds = None):
        self.thresholds = thresholds or ConfidenceThresholds()

    @staticmethod
    def normalize(value) -> str:
        return str(value or "").strip().lower()

    def similarity(self, name_a: str, name_b: str) -> float:
        """Jaro-Winkler similarity of two contact names."""
        a = self.normalize(name_a)
        b = self.normalize(name_b)

        if not a or not b:
            return 0.0
        if a == b:
            return 1.0

        return jaro_winkler_similarity(a, b)

    def is_similar(self, name_a: str, name_b: str, threshold: float = None) -> bool:
        if threshold is None:
            threshold = self.thresholds.similar_name
        return self.similarity(name_a, name_b) >= threshold
