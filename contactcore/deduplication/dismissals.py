"""
Duplicate dismissals.

Operators mark a pair of contacts as "not the same person". Dismissals are
stored with the pair sorted, and any duplicate set containing a dismissed
pair is hidden as a whole.
"""

from itertools import combinations
from typing import List, Set, Tuple

from ..errors import ErrorContext, InvalidInputError, NotFoundError
from ..logging_config import get_logger
from ..models import Actor, DuplicateDismissal, DuplicateSet
from ..repositories.base import ContactRepository, DismissalRepository, UniqueConstraintError

logger = get_logger(__name__)


def canonical_pair(contact_id_a: str, contact_id_b: str) -> Tuple[str, str]:
    """Order two ids so a pair and its reverse resolve to one record."""
    first, second = sorted([contact_id_a, contact_id_b])
    return first, second


class DismissalFilter:
    """Suppresses dismissed duplicate sets and records new dismissals."""

    def __init__(self, contacts: ContactRepository, dismissals: DismissalRepository):
        self.contacts = contacts
        self.dismissals = dismissals

    def dismissed_pairs(self, account_id: str) -> Set[Tuple[str, str]]:
        return {d.pair for d in self.dismissals.list_by_account(account_id)}

    def filter_dismissed(self, account_id: str, duplicate_sets: List[DuplicateSet]) -> List[DuplicateSet]:
        """Drop every set in which any pair of members has been dismissed."""
        try:
            dismissed = self.dismissed_pairs(account_id)
        except Exception as e:
            logger.warning("Failed to fetch dismissals", error=str(e), account_id=account_id)
            return list(duplicate_sets)

        if not dismissed:
            return list(duplicate_sets)

        kept = []
        for duplicate_set in duplicate_sets:
            is_dismissed = any(
                (a, b) in dismissed or (b, a) in dismissed
                for a, b in combinations(duplicate_set.contact_ids, 2)
            )
            if not is_dismissed:
                kept.append(duplicate_set)

        logger.info(
            "Dismissed duplicates filtered",
            account_id=account_id,
            total_sets=len(duplicate_sets),
            filtered_sets=len(kept),
            dismissed_count=len(duplicate_sets) - len(kept),
        )
        return kept

    def dismiss_duplicate(
        self, account_id: str, contact_id_a: str, contact_id_b: str, dismissed_by: Actor
    ) -> DuplicateDismissal:
        """Record that two contacts are not duplicates.

        Dismissing an already dismissed pair, in either order, succeeds.

        Raises:
            InvalidInputError: If both ids are the same
            NotFoundError: If either contact is missing from the account
        """
        context = ErrorContext(
            operation="dismiss_duplicate",
            resource_type="contact",
            account_id=account_id,
            metadata={"contact_ids": [contact_id_a, contact_id_b]},
        )

        if contact_id_a == contact_id_b:
            raise InvalidInputError(
                "Cannot dismiss a contact against itself",
                field="contact_ids",
                code="DUPLICATE_PAIR_INVALID",
                context=context,
            )

        first, second = canonical_pair(contact_id_a, contact_id_b)
        logger.info(
            "Dismissing duplicate pair",
            account_id=account_id,
            contact_id_1=first,
            contact_id_2=second,
            dismissed_by=dismissed_by.id,
        )

        found = self.contacts.find_by_ids(account_id, [first, second])
        if len(found) != 2:
            raise NotFoundError(
                "One or more contacts not found or access denied",
                code="CONTACT_NOT_FOUND",
                context=context,
            )

        dismissal = DuplicateDismissal(
            account_id=account_id,
            contact_id_1=first,
            contact_id_2=second,
            dismissed_by=dismissed_by.id,
        )

        try:
            self.dismissals.insert(dismissal)
        except UniqueConstraintError:
            logger.info(
                "Duplicate pair already dismissed",
                account_id=account_id,
                contact_id_1=first,
                contact_id_2=second,
            )
            return dismissal

        logger.info(
            "Duplicate pair dismissed",
            account_id=account_id,
            contact_id_1=first,
            contact_id_2=second,
        )
        return dismissal
