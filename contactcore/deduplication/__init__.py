"""
Contact identity resolution.

Duplicate detection (exact phone, similar name), operator dismissals,
merges with association union and an append-only audit trail.
"""

from .audit_system import MergeAudit
from .clustering import DuplicateClusterer
from .core_engine import DeduplicationEngine, DeduplicationResult
from .dismissals import DismissalFilter, canonical_pair
from .merge_proposals import MergeEngine, union_ids
from .similarity_scoring import (
    ConfidenceThresholds,
    SimilarityScorer,
    jaro_similarity,
    jaro_winkler_similarity,
)

__all__ = [
    "DeduplicationEngine",
    "DeduplicationResult",
    "DuplicateClusterer",
    "DismissalFilter",
    "MergeEngine",
    "MergeAudit",
    "SimilarityScorer",
    "ConfidenceThresholds",
    "canonical_pair",
    "union_ids",
    "jaro_similarity",
    "jaro_winkler_similarity",
]
