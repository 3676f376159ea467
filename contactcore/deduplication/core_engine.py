"""
Core Deduplication Engine

Orchestrates duplicate detection for one account: runs the clustering
strategies, hides dismissed sets and hands confirmed sets to the merge engine.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional

from ..config import DeduplicationConfig
from ..models import Actor, ContactWithRelations, DuplicateDismissal, DuplicateSet, MergeData
from ..repositories.base import ContactStore
from .audit_system import MergeAudit
from .clustering import DuplicateClusterer
from .dismissals import DismissalFilter
from .merge_proposals import MergeEngine
from .similarity_scoring import ConfidenceThresholds, SimilarityScorer

logger = logging.getLogger(__name__)


@dataclass
class DeduplicationResult:
    """Results of a duplicate scan."""
    account_id: str
    duplicate_sets: List[DuplicateSet] = field(default_factory=list)
    detected: int = 0
    dismissed: int = 0
    processing_time: float = 0.0

    @property
    def type_distribution(self) -> Dict[str, int]:
        distribution: Dict[str, int] = {}
        for duplicate_set in self.duplicate_sets:
            distribution[duplicate_set.type] = distribution.get(duplicate_set.type, 0) + 1
        return distribution


class DeduplicationEngine:
    """
    Duplicate detection and resolution for contacts.

    Detection is read-only and produces ephemeral duplicate sets; dismissals
    and merges are the only writes.
    """

    def __init__(self, store: ContactStore, config: Optional[DeduplicationConfig] = None):
        self.store = store
        self.config = config or DeduplicationConfig()

        self.similarity_scorer = SimilarityScorer(
            ConfidenceThresholds(similar_name=self.config.name_similarity_threshold)
        )
        self.clusterer = DuplicateClusterer(
            store.contacts,
            scorer=self.similarity_scorer,
            name_threshold=self.config.name_similarity_threshold,
            min_name_length=self.config.min_name_length,
        )
        self.dismissal_filter = DismissalFilter(store.contacts, store.dismissals)
        self.audit_system = MergeAudit(store.merge_audits)
        self.merge_engine = MergeEngine(store, audit=self.audit_system)

        self.stats = {
            "scans_performed": 0,
            "sets_detected": 0,
            "sets_dismissed": 0,
        }

    def analyze_account(self, account_id: str) -> DeduplicationResult:
        """Detect duplicate sets and drop the dismissed ones."""
        start_time = time.time()
        logger.info(f"🔍 Starting duplicate detection for account {account_id}")

        detected = self.clusterer.detect_all(account_id)
        visible = self.dismissal_filter.filter_dismissed(account_id, detected)

        result = DeduplicationResult(
            account_id=account_id,
            duplicate_sets=visible,
            detected=len(detected),
            dismissed=len(detected) - len(visible),
            processing_time=time.time() - start_time,
        )

        self.stats["scans_performed"] += 1
        self.stats["sets_detected"] += result.detected
        self.stats["sets_dismissed"] += result.dismissed

        logger.info(f"✅ Duplicate detection complete for account {account_id}")
        logger.info(f"   🎯 Visible sets: {len(visible)} (dismissed {result.dismissed})")
        logger.info(f"   ⏱️  Processing time: {result.processing_time:.2f} seconds")

        return result

    def get_duplicates(self, account_id: str) -> List[DuplicateSet]:
        return self.analyze_account(account_id).duplicate_sets

    def dismiss_duplicate(
        self, account_id: str, contact_id_a: str, contact_id_b: str, dismissed_by: Actor
    ) -> DuplicateDismissal:
        return self.dismissal_filter.dismiss_duplicate(
            account_id, contact_id_a, contact_id_b, dismissed_by
        )

    def merge_contacts(
        self,
        account_id: str,
        contact_ids: List[str],
        merge_data: Optional[MergeData] = None,
        merged_by: Optional[Actor] = None,
    ) -> ContactWithRelations:
        return self.merge_engine.merge(account_id, contact_ids, merge_data, merged_by)

    def get_statistics(self) -> Dict[str, Any]:
        """Get engine statistics."""
        return {
            **self.stats,
            "merges": dict(self.merge_engine.stats),
            "audit": dict(self.audit_system.stats),
        }
