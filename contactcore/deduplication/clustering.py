"""
Duplicate set detection.

Three strategies over one account's contacts:

- exact phone: contacts whose normalized phones are equal
- similar phone: reserved for format-tolerant phone matching; today it
  groups exactly like the exact-phone strategy
- similar name: greedy single-link clustering around a seed contact

Name clusters are built from the seed only. A contact joins when it is
similar to the seed; two members of one cluster need not be similar to each
other, so a chain like "Ana Lima" ~ "Ana Lina" ~ "Ina Lina" can land in one
set or in two depending on which contact is seen first.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from itertools import combinations
from typing import Dict, List, Optional

from ..models import Contact, DuplicateSet, DuplicateType
from ..normalization import normalize_phone
from ..repositories.base import ContactRepository
from .similarity_scoring import SimilarityScorer

logger = logging.getLogger(__name__)

DEFAULT_NAME_THRESHOLD = 0.8
DEFAULT_MIN_NAME_LENGTH = 3


class DuplicateClusterer:
    """Detects duplicate sets among the contacts of an account."""

    def __init__(
        self,
        contacts: ContactRepository,
        scorer: Optional[SimilarityScorer] = None,
        name_threshold: float = DEFAULT_NAME_THRESHOLD,
        min_name_length: int = DEFAULT_MIN_NAME_LENGTH,
    ):
        self.contacts = contacts
        self.scorer = scorer or SimilarityScorer()
        self.name_threshold = name_threshold
        self.min_name_length = min_name_length

    def detect_exact_phone_duplicates(self, account_id: str) -> List[DuplicateSet]:
        """Group contacts that share a normalized phone number."""
        groups: Dict[str, List[Contact]] = {}
        for contact in self.contacts.list_by_account(account_id):
            phone = normalize_phone(contact.phone)
            if phone is None:
                continue
            groups.setdefault(phone, []).append(contact)

        sets = [
            DuplicateSet(type=DuplicateType.EXACT_PHONE, contacts=members, similarity=1.0)
            for members in groups.values()
            if len(members) >= 2
        ]
        logger.debug(f"Exact phone detection found {len(sets)} sets for {account_id}")
        return sets

    def detect_similar_phone_duplicates(self, account_id: str) -> List[DuplicateSet]:
        # TODO: tolerate missing country/area prefixes (e.g. "11999990002" vs
        # "5511999990002") once a per-account default region is stored.
        return self.detect_exact_phone_duplicates(account_id)

    def detect_similar_name_duplicates(
        self, account_id: str, threshold: Optional[float] = None
    ) -> List[DuplicateSet]:
        """Cluster contacts whose names are similar to a seed contact's name."""
        if threshold is None:
            threshold = self.name_threshold

        candidates = [
            c for c in self.contacts.list_by_account(account_id)
            if c.name and len(c.name.strip()) >= self.min_name_length
        ]

        processed = set()
        sets = []

        for i, seed in enumerate(candidates):
            if seed.id in processed:
                continue
            processed.add(seed.id)

            cluster = [seed]
            pair_score = None
            for other in candidates[i + 1:]:
                if other.id in processed:
                    continue
                score = self.scorer.similarity(seed.name, other.name)
                if score >= threshold:
                    cluster.append(other)
                    processed.add(other.id)
                    pair_score = score

            if len(cluster) < 2:
                continue

            if len(cluster) == 2:
                similarity = pair_score
            else:
                scores = [
                    self.scorer.similarity(a.name, b.name)
                    for a, b in combinations(cluster, 2)
                ]
                similarity = sum(scores) / len(scores)

            sets.append(
                DuplicateSet(
                    type=DuplicateType.SIMILAR_NAME,
                    contacts=cluster,
                    similarity=similarity,
                )
            )

        logger.debug(f"Similar name detection found {len(sets)} sets for {account_id}")
        return sets

    def detect_all(self, account_id: str) -> List[DuplicateSet]:
        """Run every strategy concurrently and concatenate their sets.

        A set identical to one already emitted (same type, same members) is
        dropped, which keeps the similar-phone alias from doubling results.
        """
        with ThreadPoolExecutor(max_workers=3) as executor:
            futures = [
                executor.submit(self.detect_exact_phone_duplicates, account_id),
                executor.submit(self.detect_similar_phone_duplicates, account_id),
                executor.submit(self.detect_similar_name_duplicates, account_id),
            ]
            results = [f.result() for f in futures]

        seen = set()
        combined = []
        for sets in results:
            for duplicate_set in sets:
                key = (duplicate_set.type, frozenset(duplicate_set.contact_ids))
                if key in seen:
                    continue
                seen.add(key)
                combined.append(duplicate_set)

        return combined
