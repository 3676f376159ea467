"""Base repositories for contact data access patterns."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple, Iterator
from contextlib import contextmanager
import logging

from ..models import (
    Contact,
    ContactQuery,
    ContactWithRelations,
    DuplicateDismissal,
    Group,
    Inbox,
    MergeAuditRecord,
    Tag,
)


class RepositoryError(Exception):
    """Repository-specific error."""
    pass


class UniqueConstraintError(RepositoryError):
    """A write collided with a unique constraint."""

    def __init__(self, message: str, constraint: Optional[str] = None):
        super().__init__(message)
        self.constraint = constraint


class ContactRepository(ABC):
    """Contacts, always scoped by account."""

    @abstractmethod
    def get_by_id(self, account_id: str, contact_id: str) -> Optional[Contact]:
        """Get contact by ID, or None when it is missing or foreign."""
        pass

    @abstractmethod
    def find_by_ids(self, account_id: str, contact_ids: List[str]) -> List[Contact]:
        """Get every listed contact that exists in the account."""
        pass

    @abstractmethod
    def find_by_phone(self, account_id: str, phone: str) -> Optional[Contact]:
        pass

    @abstractmethod
    def list_by_account(self, account_id: str) -> List[Contact]:
        """All contacts of an account, oldest first."""
        pass

    @abstractmethod
    def search(self, account_id: str, query: ContactQuery) -> Tuple[List[Contact], int]:
        """Filtered, sorted, paginated listing.

        Returns:
            The requested page and the total number of matches
        """
        pass

    @abstractmethod
    def insert(self, contact: Contact) -> Contact:
        """Insert a contact.

        Raises:
            UniqueConstraintError: If the phone is taken in the account
        """
        pass

    @abstractmethod
    def insert_many(self, contacts: List[Contact]) -> List[Contact]:
        """Insert a batch atomically: either every row lands or none does."""
        pass

    @abstractmethod
    def update(self, account_id: str, contact_id: str, changes: Dict[str, Any]) -> Optional[Contact]:
        """Apply field changes; returns None if the contact does not exist."""
        pass

    @abstractmethod
    def delete_many(self, account_id: str, contact_ids: List[str]) -> int:
        """Delete contacts with their memberships and dismissals."""
        pass

    @abstractmethod
    def count(self, account_id: str, has_name: Optional[bool] = None) -> int:
        pass


class TagRepository(ABC):

    @abstractmethod
    def list_by_account(self, account_id: str) -> List[Tag]:
        """Tags ordered by name."""
        pass

    @abstractmethod
    def get_by_id(self, account_id: str, tag_id: str) -> Optional[Tag]:
        pass

    @abstractmethod
    def find_by_ids(self, account_id: str, tag_ids: List[str]) -> List[Tag]:
        pass

    @abstractmethod
    def find_by_name(self, account_id: str, name: str) -> Optional[Tag]:
        pass

    @abstractmethod
    def insert(self, tag: Tag) -> Tag:
        pass

    @abstractmethod
    def delete(self, account_id: str, tag_id: str) -> bool:
        pass

    @abstractmethod
    def count(self, account_id: str) -> int:
        pass


class GroupRepository(ABC):

    @abstractmethod
    def list_by_account(self, account_id: str) -> List[Group]:
        """Groups ordered by name, with member counts filled in."""
        pass

    @abstractmethod
    def get_by_id(self, account_id: str, group_id: str) -> Optional[Group]:
        pass

    @abstractmethod
    def find_by_ids(self, account_id: str, group_ids: List[str]) -> List[Group]:
        pass

    @abstractmethod
    def find_by_name(self, account_id: str, name: str) -> Optional[Group]:
        pass

    @abstractmethod
    def insert(self, group: Group) -> Group:
        pass

    @abstractmethod
    def update(self, account_id: str, group_id: str, changes: Dict[str, Any]) -> Optional[Group]:
        pass

    @abstractmethod
    def delete(self, account_id: str, group_id: str) -> bool:
        pass


class MembershipRepository(ABC):
    """Contact-tag and contact-group join rows."""

    @abstractmethod
    def tag_ids_for(self, contact_ids: List[str]) -> Dict[str, List[str]]:
        """Map each contact id to its tag ids (in insertion order)."""
        pass

    @abstractmethod
    def group_ids_for(self, contact_ids: List[str]) -> Dict[str, List[str]]:
        pass

    @abstractmethod
    def add_tag(self, contact_id: str, tag_id: str) -> None:
        """Raises UniqueConstraintError if the membership exists."""
        pass

    @abstractmethod
    def remove_tags(self, contact_ids: List[str], tag_ids: List[str]) -> int:
        pass

    @abstractmethod
    def replace_tags(self, contact_id: str, tag_ids: List[str]) -> None:
        """Delete the contact's tag memberships, then insert ``tag_ids``."""
        pass

    @abstractmethod
    def add_to_group(self, contact_id: str, group_id: str) -> None:
        """Raises UniqueConstraintError if the membership exists."""
        pass

    @abstractmethod
    def remove_from_group(self, group_id: str, contact_ids: List[str]) -> int:
        pass

    @abstractmethod
    def replace_groups(self, contact_id: str, group_ids: List[str]) -> None:
        pass

    @abstractmethod
    def contact_ids_in_group(self, group_id: str) -> List[str]:
        pass


class DismissalRepository(ABC):

    @abstractmethod
    def insert(self, dismissal: DuplicateDismissal) -> DuplicateDismissal:
        """Raises UniqueConstraintError if the pair is already dismissed."""
        pass

    @abstractmethod
    def list_by_account(self, account_id: str) -> List[DuplicateDismissal]:
        pass


class MergeAuditRepository(ABC):
    """Append-only merge history."""

    @abstractmethod
    def insert(self, record: MergeAuditRecord) -> MergeAuditRecord:
        pass

    @abstractmethod
    def list_by_account(self, account_id: str) -> List[MergeAuditRecord]:
        """Records newest first."""
        pass


class InboxRepository(ABC):

    @abstractmethod
    def get_by_id(self, inbox_id: str) -> Optional[Inbox]:
        """Unscoped lookup so callers can tell missing from foreign inboxes."""
        pass

    @abstractmethod
    def list_by_account(self, account_id: str) -> List[Inbox]:
        pass

    @abstractmethod
    def insert(self, inbox: Inbox) -> Inbox:
        pass


class ContactStore(ABC):
    """Bundle of repositories sharing one persistence backend."""

    contacts: ContactRepository
    tags: TagRepository
    groups: GroupRepository
    memberships: MembershipRepository
    dismissals: DismissalRepository
    merge_audits: MergeAuditRepository
    inboxes: InboxRepository

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes so that an exception rolls all of them back.

        Nested calls join the outermost transaction.
        """
        pass

    def close(self) -> None:
        pass

    def find_with_relations(
        self, account_id: str, contact_ids: List[str]
    ) -> List[ContactWithRelations]:
        """Fetch contacts scoped to the account, hydrated with tags and groups."""
        contacts = self.contacts.find_by_ids(account_id, contact_ids)
        if not contacts:
            return []

        ids = [c.id for c in contacts]
        tag_map = self.memberships.tag_ids_for(ids)
        group_map = self.memberships.group_ids_for(ids)

        all_tag_ids = sorted({t for tids in tag_map.values() for t in tids})
        all_group_ids = sorted({g for gids in group_map.values() for g in gids})
        tags = {t.id: t for t in self.tags.find_by_ids(account_id, all_tag_ids)}
        groups = {g.id: g for g in self.groups.find_by_ids(account_id, all_group_ids)}

        hydrated = []
        for contact in contacts:
            hydrated.append(
                ContactWithRelations(
                    **contact.model_dump(),
                    tags=[tags[t] for t in tag_map.get(contact.id, []) if t in tags],
                    groups=[groups[g] for g in group_map.get(contact.id, []) if g in groups],
                )
            )
        return hydrated

    def get_with_relations(self, account_id: str, contact_id: str) -> Optional[ContactWithRelations]:
        found = self.find_with_relations(account_id, [contact_id])
        return found[0] if found else None
