"""Repository layer for contact data access."""

from .base import (
    RepositoryError,
    UniqueConstraintError,
    ContactRepository,
    TagRepository,
    GroupRepository,
    MembershipRepository,
    DismissalRepository,
    MergeAuditRepository,
    InboxRepository,
    ContactStore,
)
from .memory import MemoryContactStore
from .sqlite import SQLiteContactStore

__all__ = [
    "RepositoryError",
    "UniqueConstraintError",
    "ContactRepository",
    "TagRepository",
    "GroupRepository",
    "MembershipRepository",
    "DismissalRepository",
    "MergeAuditRepository",
    "InboxRepository",
    "ContactStore",
    "MemoryContactStore",
    "SQLiteContactStore",
]
