"""In-memory contact store.

Enforces the same unique constraints and cascades as the SQLite store, so it
doubles as the reference backend for tests and embedders.
"""

import copy
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple

from ..models import (
    Contact,
    ContactQuery,
    DuplicateDismissal,
    Group,
    Inbox,
    MergeAuditRecord,
    Tag,
)
from .base import (
    ContactRepository,
    ContactStore,
    DismissalRepository,
    GroupRepository,
    InboxRepository,
    MembershipRepository,
    MergeAuditRepository,
    TagRepository,
    UniqueConstraintError,
)


class _State:
    """Tables of the in-memory store."""

    def __init__(self):
        self.contacts: Dict[str, Contact] = {}
        self.tags: Dict[str, Tag] = {}
        self.groups: Dict[str, Group] = {}
        self.tag_members: List[Tuple[str, str]] = []
        self.group_members: List[Tuple[str, str]] = []
        self.dismissals: Dict[str, DuplicateDismissal] = {}
        self.merge_audits: List[MergeAuditRecord] = []
        self.inboxes: Dict[str, Inbox] = {}
        self.lock = threading.RLock()

    def snapshot(self) -> Dict[str, Any]:
        return {
            key: copy.deepcopy(value)
            for key, value in self.__dict__.items()
            if key != "lock"
        }

    def restore(self, snapshot: Dict[str, Any]) -> None:
        for key, value in snapshot.items():
            setattr(self, key, value)


def _copy(model):
    return model.model_copy(deep=True) if model is not None else None


def _has_name(contact: Contact) -> bool:
    return bool(contact.name and contact.name.strip())


class MemoryContactRepository(ContactRepository):

    def __init__(self, state: _State):
        self._state = state

    def _check_phone(self, contact: Contact, ignore_id: Optional[str] = None) -> None:
        for existing in self._state.contacts.values():
            if (
                existing.account_id == contact.account_id
                and existing.phone == contact.phone
                and existing.id != ignore_id
            ):
                raise UniqueConstraintError(
                    f"Phone {contact.phone} already exists in account {contact.account_id}",
                    constraint="contacts_account_phone_key",
                )

    def get_by_id(self, account_id: str, contact_id: str) -> Optional[Contact]:
        with self._state.lock:
            contact = self._state.contacts.get(contact_id)
            if contact is None or contact.account_id != account_id:
                return None
            return _copy(contact)

    def find_by_ids(self, account_id: str, contact_ids: List[str]) -> List[Contact]:
        with self._state.lock:
            found = []
            for contact_id in dict.fromkeys(contact_ids):
                contact = self._state.contacts.get(contact_id)
                if contact is not None and contact.account_id == account_id:
                    found.append(_copy(contact))
            return found

    def find_by_phone(self, account_id: str, phone: str) -> Optional[Contact]:
        with self._state.lock:
            for contact in self._state.contacts.values():
                if contact.account_id == account_id and contact.phone == phone:
                    return _copy(contact)
            return None

    def list_by_account(self, account_id: str) -> List[Contact]:
        with self._state.lock:
            return [
                _copy(c) for c in self._state.contacts.values()
                if c.account_id == account_id
            ]

    def search(self, account_id: str, query: ContactQuery) -> Tuple[List[Contact], int]:
        with self._state.lock:
            matches = [c for c in self._state.contacts.values() if c.account_id == account_id]

            if query.search:
                needle = query.search.lower()
                matches = [
                    c for c in matches
                    if needle in (c.name or "").lower() or needle in c.phone.lower()
                ]

            if query.has_name is True:
                matches = [c for c in matches if _has_name(c)]
            elif query.has_name is False:
                matches = [c for c in matches if not _has_name(c)]

            if query.source_inbox_id is not None:
                if query.source_inbox_id in ("", "null"):
                    matches = [c for c in matches if c.source_inbox_id is None]
                else:
                    matches = [c for c in matches if c.source_inbox_id == query.source_inbox_id]

            if query.tag_ids:
                wanted = set(query.tag_ids)
                tagged = {cid for cid, tid in self._state.tag_members if tid in wanted}
                matches = [c for c in matches if c.id in tagged]

            if query.group_id:
                members = {
                    cid for cid, gid in self._state.group_members if gid == query.group_id
                }
                matches = [c for c in matches if c.id in members]

            def sort_key(contact):
                value = getattr(contact, query.sort_by)
                if isinstance(value, str):
                    value = value.lower()
                return (value is None, value if value is not None else "")

            present = [c for c in matches if getattr(c, query.sort_by) is not None]
            missing = [c for c in matches if getattr(c, query.sort_by) is None]
            present.sort(key=sort_key, reverse=query.sort_order == "desc")
            ordered = present + missing

            offset = (query.page - 1) * query.page_size
            page = ordered[offset:offset + query.page_size]
            return [_copy(c) for c in page], len(ordered)

    def insert(self, contact: Contact) -> Contact:
        with self._state.lock:
            self._check_phone(contact)
            self._state.contacts[contact.id] = _copy(contact)
            return _copy(contact)

    def insert_many(self, contacts: List[Contact]) -> List[Contact]:
        with self._state.lock:
            phones = set()
            for contact in contacts:
                self._check_phone(contact)
                key = (contact.account_id, contact.phone)
                if key in phones:
                    raise UniqueConstraintError(
                        f"Phone {contact.phone} repeated within batch",
                        constraint="contacts_account_phone_key",
                    )
                phones.add(key)
            for contact in contacts:
                self._state.contacts[contact.id] = _copy(contact)
            return [_copy(c) for c in contacts]

    def update(self, account_id: str, contact_id: str, changes: Dict[str, Any]) -> Optional[Contact]:
        with self._state.lock:
            existing = self._state.contacts.get(contact_id)
            if existing is None or existing.account_id != account_id:
                return None
            updated = existing.model_copy(update=changes, deep=True)
            if updated.phone != existing.phone:
                self._check_phone(updated, ignore_id=contact_id)
            self._state.contacts[contact_id] = updated
            return _copy(updated)

    def delete_many(self, account_id: str, contact_ids: List[str]) -> int:
        with self._state.lock:
            doomed = {
                cid for cid in contact_ids
                if cid in self._state.contacts
                and self._state.contacts[cid].account_id == account_id
            }
            for cid in doomed:
                del self._state.contacts[cid]
            self._state.tag_members = [
                m for m in self._state.tag_members if m[0] not in doomed
            ]
            self._state.group_members = [
                m for m in self._state.group_members if m[0] not in doomed
            ]
            self._state.dismissals = {
                did: d for did, d in self._state.dismissals.items()
                if d.contact_id_1 not in doomed and d.contact_id_2 not in doomed
            }
            return len(doomed)

    def count(self, account_id: str, has_name: Optional[bool] = None) -> int:
        with self._state.lock:
            contacts = [c for c in self._state.contacts.values() if c.account_id == account_id]
            if has_name is True:
                contacts = [c for c in contacts if _has_name(c)]
            elif has_name is False:
                contacts = [c for c in contacts if not _has_name(c)]
            return len(contacts)


class MemoryTagRepository(TagRepository):

    def __init__(self, state: _State):
        self._state = state

    def list_by_account(self, account_id: str) -> List[Tag]:
        with self._state.lock:
            tags = [t for t in self._state.tags.values() if t.account_id == account_id]
            return [_copy(t) for t in sorted(tags, key=lambda t: t.name)]

    def get_by_id(self, account_id: str, tag_id: str) -> Optional[Tag]:
        with self._state.lock:
            tag = self._state.tags.get(tag_id)
            return _copy(tag) if tag and tag.account_id == account_id else None

    def find_by_ids(self, account_id: str, tag_ids: List[str]) -> List[Tag]:
        with self._state.lock:
            return [
                _copy(self._state.tags[t]) for t in tag_ids
                if t in self._state.tags and self._state.tags[t].account_id == account_id
            ]

    def find_by_name(self, account_id: str, name: str) -> Optional[Tag]:
        with self._state.lock:
            for tag in self._state.tags.values():
                if tag.account_id == account_id and tag.name == name:
                    return _copy(tag)
            return None

    def insert(self, tag: Tag) -> Tag:
        with self._state.lock:
            if self.find_by_name(tag.account_id, tag.name):
                raise UniqueConstraintError(
                    f"Tag {tag.name!r} already exists", constraint="contact_tags_account_name_key"
                )
            self._state.tags[tag.id] = _copy(tag)
            return _copy(tag)

    def delete(self, account_id: str, tag_id: str) -> bool:
        with self._state.lock:
            tag = self._state.tags.get(tag_id)
            if tag is None or tag.account_id != account_id:
                return False
            del self._state.tags[tag_id]
            self._state.tag_members = [m for m in self._state.tag_members if m[1] != tag_id]
            return True

    def count(self, account_id: str) -> int:
        with self._state.lock:
            return sum(1 for t in self._state.tags.values() if t.account_id == account_id)


class MemoryGroupRepository(GroupRepository):

    def __init__(self, state: _State):
        self._state = state

    def _with_count(self, group: Group) -> Group:
        count = sum(1 for _, gid in self._state.group_members if gid == group.id)
        return group.model_copy(update={"contact_count": count}, deep=True)

    def list_by_account(self, account_id: str) -> List[Group]:
        with self._state.lock:
            groups = [g for g in self._state.groups.values() if g.account_id == account_id]
            return [self._with_count(g) for g in sorted(groups, key=lambda g: g.name)]

    def get_by_id(self, account_id: str, group_id: str) -> Optional[Group]:
        with self._state.lock:
            group = self._state.groups.get(group_id)
            if group is None or group.account_id != account_id:
                return None
            return self._with_count(group)

    def find_by_ids(self, account_id: str, group_ids: List[str]) -> List[Group]:
        with self._state.lock:
            return [
                self._with_count(self._state.groups[g]) for g in group_ids
                if g in self._state.groups and self._state.groups[g].account_id == account_id
            ]

    def find_by_name(self, account_id: str, name: str) -> Optional[Group]:
        with self._state.lock:
            for group in self._state.groups.values():
                if group.account_id == account_id and group.name == name:
                    return self._with_count(group)
            return None

    def insert(self, group: Group) -> Group:
        with self._state.lock:
            if self.find_by_name(group.account_id, group.name):
                raise UniqueConstraintError(
                    f"Group {group.name!r} already exists",
                    constraint="contact_groups_account_name_key",
                )
            self._state.groups[group.id] = _copy(group)
            return self._with_count(group)

    def update(self, account_id: str, group_id: str, changes: Dict[str, Any]) -> Optional[Group]:
        with self._state.lock:
            group = self._state.groups.get(group_id)
            if group is None or group.account_id != account_id:
                return None
            new_name = changes.get("name")
            if new_name and new_name != group.name:
                other = self.find_by_name(account_id, new_name)
                if other and other.id != group_id:
                    raise UniqueConstraintError(
                        f"Group {new_name!r} already exists",
                        constraint="contact_groups_account_name_key",
                    )
            updated = group.model_copy(update=changes, deep=True)
            self._state.groups[group_id] = updated
            return self._with_count(updated)

    def delete(self, account_id: str, group_id: str) -> bool:
        with self._state.lock:
            group = self._state.groups.get(group_id)
            if group is None or group.account_id != account_id:
                return False
            del self._state.groups[group_id]
            self._state.group_members = [
                m for m in self._state.group_members if m[1] != group_id
            ]
            return True


class MemoryMembershipRepository(MembershipRepository):

    def __init__(self, state: _State):
        self._state = state

    @staticmethod
    def _collect(rows: List[Tuple[str, str]], contact_ids: List[str]) -> Dict[str, List[str]]:
        result: Dict[str, List[str]] = {cid: [] for cid in contact_ids}
        for cid, other in rows:
            if cid in result:
                result[cid].append(other)
        return result

    def tag_ids_for(self, contact_ids: List[str]) -> Dict[str, List[str]]:
        with self._state.lock:
            return self._collect(self._state.tag_members, contact_ids)

    def group_ids_for(self, contact_ids: List[str]) -> Dict[str, List[str]]:
        with self._state.lock:
            return self._collect(self._state.group_members, contact_ids)

    def add_tag(self, contact_id: str, tag_id: str) -> None:
        with self._state.lock:
            if (contact_id, tag_id) in self._state.tag_members:
                raise UniqueConstraintError(
                    "Tag membership already exists", constraint="contact_tag_members_key"
                )
            self._state.tag_members.append((contact_id, tag_id))

    def remove_tags(self, contact_ids: List[str], tag_ids: List[str]) -> int:
        with self._state.lock:
            before = len(self._state.tag_members)
            self._state.tag_members = [
                (cid, tid) for cid, tid in self._state.tag_members
                if not (cid in contact_ids and tid in tag_ids)
            ]
            return before - len(self._state.tag_members)

    def replace_tags(self, contact_id: str, tag_ids: List[str]) -> None:
        with self._state.lock:
            self._state.tag_members = [
                m for m in self._state.tag_members if m[0] != contact_id
            ]
            for tag_id in dict.fromkeys(tag_ids):
                self._state.tag_members.append((contact_id, tag_id))

    def add_to_group(self, contact_id: str, group_id: str) -> None:
        with self._state.lock:
            if (contact_id, group_id) in self._state.group_members:
                raise UniqueConstraintError(
                    "Group membership already exists", constraint="contact_group_members_key"
                )
            self._state.group_members.append((contact_id, group_id))

    def remove_from_group(self, group_id: str, contact_ids: List[str]) -> int:
        with self._state.lock:
            before = len(self._state.group_members)
            self._state.group_members = [
                (cid, gid) for cid, gid in self._state.group_members
                if not (gid == group_id and cid in contact_ids)
            ]
            return before - len(self._state.group_members)

    def replace_groups(self, contact_id: str, group_ids: List[str]) -> None:
        with self._state.lock:
            self._state.group_members = [
                m for m in self._state.group_members if m[0] != contact_id
            ]
            for group_id in dict.fromkeys(group_ids):
                self._state.group_members.append((contact_id, group_id))

    def contact_ids_in_group(self, group_id: str) -> List[str]:
        with self._state.lock:
            return [cid for cid, gid in self._state.group_members if gid == group_id]


class MemoryDismissalRepository(DismissalRepository):

    def __init__(self, state: _State):
        self._state = state

    def insert(self, dismissal: DuplicateDismissal) -> DuplicateDismissal:
        with self._state.lock:
            for existing in self._state.dismissals.values():
                if (
                    existing.account_id == dismissal.account_id
                    and existing.pair == dismissal.pair
                ):
                    raise UniqueConstraintError(
                        "Pair already dismissed",
                        constraint="contact_duplicate_dismissals_pair_key",
                    )
            self._state.dismissals[dismissal.id] = _copy(dismissal)
            return _copy(dismissal)

    def list_by_account(self, account_id: str) -> List[DuplicateDismissal]:
        with self._state.lock:
            return [
                _copy(d) for d in self._state.dismissals.values()
                if d.account_id == account_id
            ]


class MemoryMergeAuditRepository(MergeAuditRepository):

    def __init__(self, state: _State):
        self._state = state

    def insert(self, record: MergeAuditRecord) -> MergeAuditRecord:
        with self._state.lock:
            self._state.merge_audits.append(_copy(record))
            return _copy(record)

    def list_by_account(self, account_id: str) -> List[MergeAuditRecord]:
        with self._state.lock:
            records = [r for r in self._state.merge_audits if r.account_id == account_id]
            return [_copy(r) for r in reversed(records)]


class MemoryInboxRepository(InboxRepository):

    def __init__(self, state: _State):
        self._state = state

    def get_by_id(self, inbox_id: str) -> Optional[Inbox]:
        with self._state.lock:
            return _copy(self._state.inboxes.get(inbox_id))

    def list_by_account(self, account_id: str) -> List[Inbox]:
        with self._state.lock:
            inboxes = [i for i in self._state.inboxes.values() if i.account_id == account_id]
            return [_copy(i) for i in sorted(inboxes, key=lambda i: i.created_at)]

    def insert(self, inbox: Inbox) -> Inbox:
        with self._state.lock:
            self._state.inboxes[inbox.id] = _copy(inbox)
            return _copy(inbox)


class MemoryContactStore(ContactStore):
    """Contact store backed by process memory."""

    def __init__(self):
        super().__init__()
        self._state = _State()
        self._depth = 0
        self.contacts = MemoryContactRepository(self._state)
        self.tags = MemoryTagRepository(self._state)
        self.groups = MemoryGroupRepository(self._state)
        self.memberships = MemoryMembershipRepository(self._state)
        self.dismissals = MemoryDismissalRepository(self._state)
        self.merge_audits = MemoryMergeAuditRepository(self._state)
        self.inboxes = MemoryInboxRepository(self._state)

    @contextmanager
    def transaction(self):
        with self._state.lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            snapshot = self._state.snapshot()
            self._depth = 1
            try:
                yield
            except Exception:
                self.logger.warning("Rolling back in-memory transaction")
                self._state.restore(snapshot)
                raise
            finally:
                self._depth = 0
