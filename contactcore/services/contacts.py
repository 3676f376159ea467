"""
Contacts service.

Account-scoped facade over the contact store: CRUD for contacts, tags and
groups, bulk imports, identity resolution and the legacy export migration.
Every operation takes the account id first and never reads or writes rows
belonging to another account.
"""

from typing import Any, Dict, List, Optional

from ..config import Config
from ..deduplication import DeduplicationEngine
from ..errors import (
    AccessDeniedError,
    AlreadyExistsError,
    ContactsError,
    ErrorContext,
    InvalidInputError,
    NotFoundError,
)
from ..importing import ContactSourceClient, ImportReconciler, WuzapiContactSource
from ..logging_config import get_logger
from ..models import (
    Actor,
    Contact,
    ContactPage,
    ContactQuery,
    ContactSource,
    ContactStats,
    ContactWithRelations,
    DuplicateDismissal,
    DuplicateSet,
    Group,
    ImportResult,
    InboxSummary,
    LegacyMigrationResult,
    MergeAuditRecord,
    MergeData,
    RawContactRecord,
    Tag,
    utcnow,
)
from ..normalization import normalize_phone
from ..repositories.base import ContactStore, UniqueConstraintError

logger = get_logger(__name__)

CONTACT_UPDATABLE_FIELDS = ("phone", "name", "avatar_url", "whatsapp_jid", "metadata")
GROUP_UPDATABLE_FIELDS = ("name", "description")


class ContactsService:
    """Contact management for one store."""

    def __init__(
        self,
        store: ContactStore,
        config: Optional[Config] = None,
        contact_source: Optional[ContactSourceClient] = None,
    ):
        self.store = store
        self.config = config or Config()
        self.contact_source = contact_source or WuzapiContactSource(
            base_url=self.config.contact_source.base_url,
            timeout=self.config.contact_source.timeout,
        )
        self.deduplication = DeduplicationEngine(store, self.config.deduplication)
        self.reconciler = ImportReconciler(store.contacts, self.config.importing)

    # ==================== CONTACTS ====================

    def get_contacts(self, account_id: str, query: Optional[ContactQuery] = None) -> ContactPage:
        """List contacts with filters, sorting and pagination.

        The page size is capped at the configured maximum.
        """
        query = query or ContactQuery(page_size=self.config.pagination.default_page_size)
        limit = min(query.page_size, self.config.pagination.max_page_size)
        if limit != query.page_size:
            query = query.model_copy(update={"page_size": limit})

        contacts, total = self.store.contacts.search(account_id, query)
        return ContactPage(data=contacts, total=total, page=query.page, page_size=limit)

    def get_contact_by_id(self, account_id: str, contact_id: str) -> Optional[ContactWithRelations]:
        return self.store.get_with_relations(account_id, contact_id)

    def get_contact_by_phone(self, account_id: str, phone: str) -> Optional[Contact]:
        normalized = normalize_phone(phone)
        if normalized is None:
            return None
        return self.store.contacts.find_by_phone(account_id, normalized)

    def _require_phone(self, phone: Optional[str]) -> str:
        normalized = normalize_phone(phone)
        if normalized is None:
            raise InvalidInputError(
                "Phone is required", field="phone", value=phone, code="INVALID_PHONE"
            )
        return normalized

    def create_contact(
        self,
        account_id: str,
        tenant_id: Optional[str],
        contact_data: Dict[str, Any],
        created_by: Actor,
    ) -> Contact:
        """Create a contact. The phone is stored normalized and must be unused."""
        phone = self._require_phone(contact_data.get("phone"))
        context = ErrorContext(
            operation="create_contact", resource_type="contact", account_id=account_id
        )

        if self.store.contacts.find_by_phone(account_id, phone):
            raise AlreadyExistsError(
                f"Contact with phone {phone} already exists",
                code="CONTACT_PHONE_EXISTS",
                context=context,
            )

        contact = Contact(
            account_id=account_id,
            tenant_id=tenant_id,
            phone=phone,
            name=contact_data.get("name") or None,
            avatar_url=contact_data.get("avatar_url") or None,
            whatsapp_jid=contact_data.get("whatsapp_jid") or None,
            source=contact_data.get("source") or ContactSource.MANUAL,
            metadata=contact_data.get("metadata") or {},
            created_by=created_by.id,
            created_by_type=created_by.type,
        )

        try:
            contact = self.store.contacts.insert(contact)
        except UniqueConstraintError as e:
            raise AlreadyExistsError(
                f"Contact with phone {phone} already exists",
                code="CONTACT_PHONE_EXISTS",
                context=context,
                cause=e,
            )

        logger.info("Contact created", contact_id=contact.id, account_id=account_id)
        return contact

    def update_contact(
        self,
        account_id: str,
        contact_id: str,
        updates: Dict[str, Any],
        updated_by: Actor,
    ) -> Contact:
        """Apply the given fields. Keys absent from ``updates`` are left as they are."""
        context = ErrorContext(
            operation="update_contact",
            resource_type="contact",
            resource_id=contact_id,
            account_id=account_id,
        )

        existing = self.store.contacts.get_by_id(account_id, contact_id)
        if existing is None:
            raise NotFoundError("Contact not found", code="CONTACT_NOT_FOUND", context=context)

        changes = {k: updates[k] for k in CONTACT_UPDATABLE_FIELDS if k in updates}
        if "phone" in changes:
            changes["phone"] = self._require_phone(changes["phone"])
            if changes["phone"] != existing.phone and self.store.contacts.find_by_phone(
                account_id, changes["phone"]
            ):
                raise AlreadyExistsError(
                    f"Contact with phone {changes['phone']} already exists",
                    code="CONTACT_PHONE_EXISTS",
                    context=context,
                )

        changes.update(
            updated_at=utcnow(),
            updated_by=updated_by.id,
            updated_by_type=updated_by.type,
        )

        try:
            contact = self.store.contacts.update(account_id, contact_id, changes)
        except UniqueConstraintError as e:
            raise AlreadyExistsError(
                "Contact phone already exists",
                code="CONTACT_PHONE_EXISTS",
                context=context,
                cause=e,
            )

        logger.info("Contact updated", contact_id=contact_id, account_id=account_id)
        return contact

    def delete_contacts(self, account_id: str, contact_ids: List[str]) -> int:
        if not contact_ids:
            return 0
        deleted = self.store.contacts.delete_many(account_id, contact_ids)
        logger.info("Contacts deleted", count=deleted, account_id=account_id)
        return deleted

    # ==================== TAGS ====================

    def get_tags(self, account_id: str) -> List[Tag]:
        return self.store.tags.list_by_account(account_id)

    def create_tag(self, account_id: str, tenant_id: Optional[str], tag_data: Dict[str, Any]) -> Tag:
        name = (tag_data.get("name") or "").strip()
        if not name:
            raise InvalidInputError("Tag name is required", field="name", code="TAG_NAME_REQUIRED")

        tag = Tag(account_id=account_id, tenant_id=tenant_id, name=name)
        if tag_data.get("color"):
            tag.color = tag_data["color"]

        try:
            tag = self.store.tags.insert(tag)
        except UniqueConstraintError as e:
            raise AlreadyExistsError(
                f"Tag {name!r} already exists",
                code="TAG_NAME_EXISTS",
                context=ErrorContext(operation="create_tag", resource_type="tag", account_id=account_id),
                cause=e,
            )

        logger.info("Tag created", tag_id=tag.id, account_id=account_id)
        return tag

    def delete_tag(self, account_id: str, tag_id: str) -> bool:
        deleted = self.store.tags.delete(account_id, tag_id)
        if deleted:
            logger.info("Tag deleted", tag_id=tag_id, account_id=account_id)
        return deleted

    def add_tags_to_contacts(self, account_id: str, contact_ids: List[str], tag_ids: List[str]) -> int:
        """Attach tags to contacts, ignoring memberships that already exist.

        Contacts and tags outside the account are skipped. Returns the number
        of memberships created.
        """
        contacts = self.store.contacts.find_by_ids(account_id, contact_ids)
        tags = self.store.tags.find_by_ids(account_id, tag_ids)

        added = 0
        for contact in contacts:
            for tag in tags:
                try:
                    self.store.memberships.add_tag(contact.id, tag.id)
                    added += 1
                except UniqueConstraintError:
                    continue

        logger.info(
            "Tags added to contacts",
            account_id=account_id,
            contact_count=len(contacts),
            tag_count=len(tags),
            added=added,
        )
        return added

    def remove_tags_from_contacts(self, account_id: str, contact_ids: List[str], tag_ids: List[str]) -> int:
        owned = [c.id for c in self.store.contacts.find_by_ids(account_id, contact_ids)]
        if not owned:
            return 0
        removed = self.store.memberships.remove_tags(owned, tag_ids)
        logger.info("Tags removed from contacts", account_id=account_id, removed=removed)
        return removed

    # ==================== GROUPS ====================

    def get_groups(self, account_id: str) -> List[Group]:
        return self.store.groups.list_by_account(account_id)

    def create_group(self, account_id: str, tenant_id: Optional[str], group_data: Dict[str, Any]) -> Group:
        name = (group_data.get("name") or "").strip()
        if not name:
            raise InvalidInputError("Group name is required", field="name", code="GROUP_NAME_REQUIRED")

        group = Group(
            account_id=account_id,
            tenant_id=tenant_id,
            name=name,
            description=group_data.get("description") or None,
        )

        try:
            group = self.store.groups.insert(group)
        except UniqueConstraintError as e:
            raise AlreadyExistsError(
                f"Group {name!r} already exists",
                code="GROUP_NAME_EXISTS",
                context=ErrorContext(operation="create_group", resource_type="group", account_id=account_id),
                cause=e,
            )

        logger.info("Group created", group_id=group.id, account_id=account_id)
        return group

    def update_group(self, account_id: str, group_id: str, updates: Dict[str, Any]) -> Group:
        context = ErrorContext(
            operation="update_group",
            resource_type="group",
            resource_id=group_id,
            account_id=account_id,
        )

        existing = self.store.groups.get_by_id(account_id, group_id)
        if existing is None:
            raise NotFoundError("Group not found", code="GROUP_NOT_FOUND", context=context)

        changes = {k: updates[k] for k in GROUP_UPDATABLE_FIELDS if k in updates}
        if "name" in changes and changes["name"] != existing.name:
            holder = self.store.groups.find_by_name(account_id, changes["name"])
            if holder is not None and holder.id != group_id:
                raise AlreadyExistsError(
                    f"Group {changes['name']!r} already exists",
                    code="GROUP_NAME_EXISTS",
                    context=context,
                )
        changes["updated_at"] = utcnow()

        try:
            group = self.store.groups.update(account_id, group_id, changes)
        except UniqueConstraintError as e:
            raise AlreadyExistsError(
                "Group name already exists", code="GROUP_NAME_EXISTS", context=context, cause=e
            )

        logger.info("Group updated", group_id=group_id, account_id=account_id)
        return group

    def delete_group(self, account_id: str, group_id: str) -> bool:
        deleted = self.store.groups.delete(account_id, group_id)
        if deleted:
            logger.info("Group deleted", group_id=group_id, account_id=account_id)
        return deleted

    def add_contacts_to_group(self, account_id: str, group_id: str, contact_ids: List[str]) -> int:
        """Add contacts to a group, skipping foreign contacts and existing members."""
        if self.store.groups.get_by_id(account_id, group_id) is None:
            raise NotFoundError(
                "Group not found",
                code="GROUP_NOT_FOUND",
                context=ErrorContext(
                    operation="add_contacts_to_group",
                    resource_type="group",
                    resource_id=group_id,
                    account_id=account_id,
                ),
            )

        added = 0
        for contact in self.store.contacts.find_by_ids(account_id, contact_ids):
            try:
                self.store.memberships.add_to_group(contact.id, group_id)
                added += 1
            except UniqueConstraintError:
                continue

        logger.info("Contacts added to group", group_id=group_id, account_id=account_id, added=added)
        return added

    def remove_contacts_from_group(self, account_id: str, group_id: str, contact_ids: List[str]) -> int:
        if self.store.groups.get_by_id(account_id, group_id) is None:
            return 0
        removed = self.store.memberships.remove_from_group(group_id, contact_ids)
        logger.info("Contacts removed from group", group_id=group_id, account_id=account_id, removed=removed)
        return removed

    # ==================== STATS & INBOXES ====================

    def get_stats(self, account_id: str) -> ContactStats:
        total = self.store.contacts.count(account_id)
        with_name = self.store.contacts.count(account_id, has_name=True)
        return ContactStats(
            total=total,
            with_name=with_name,
            without_name=total - with_name,
            total_tags=self.store.tags.count(account_id),
        )

    def get_account_inboxes(self, account_id: str) -> List[InboxSummary]:
        inboxes = [
            InboxSummary(
                id=inbox.id,
                name=inbox.name or f"Inbox {inbox.phone_number}",
                phone_number=inbox.phone_number,
                is_connected=inbox.connected,
            )
            for inbox in self.store.inboxes.list_by_account(account_id)
        ]
        logger.info(
            "Retrieved account inboxes",
            account_id=account_id,
            inbox_count=len(inboxes),
            connected_count=sum(1 for i in inboxes if i.is_connected),
        )
        return inboxes

    # ==================== IMPORT ====================

    def import_from_whatsapp(
        self,
        account_id: str,
        tenant_id: Optional[str],
        records: List[RawContactRecord],
        created_by: Actor,
    ) -> ImportResult:
        return self.reconciler.reconcile(account_id, tenant_id, records, created_by)

    def import_from_inbox(
        self,
        account_id: str,
        tenant_id: Optional[str],
        inbox_id: str,
        created_by: Actor,
    ) -> ImportResult:
        """Fetch the inbox's address book from the contact source and reconcile it.

        Raises:
            NotFoundError: The inbox does not exist
            AccessDeniedError: The inbox belongs to another account
            InvalidInputError: The inbox is not connected
            ContactSourceError: The contact source failed
        """
        context = ErrorContext(
            operation="import_from_inbox",
            resource_type="inbox",
            resource_id=inbox_id,
            account_id=account_id,
        )
        logger.info("Starting inbox import", account_id=account_id, inbox_id=inbox_id)

        inbox = self.store.inboxes.get_by_id(inbox_id)
        if inbox is None:
            raise NotFoundError("Inbox not found", code="INBOX_NOT_FOUND", context=context)
        if inbox.account_id != account_id:
            raise AccessDeniedError(
                "Inbox belongs to another account", code="INBOX_ACCESS_DENIED", context=context
            )
        if not inbox.connected:
            raise InvalidInputError(
                "Inbox is not connected", field="inbox_id", code="INBOX_NOT_CONNECTED", context=context
            )

        records = self.contact_source.get_contacts(inbox.token)
        return self.reconciler.reconcile(
            account_id, tenant_id, records, created_by, source_inbox_id=inbox_id
        )

    # ==================== IDENTITY RESOLUTION ====================

    def get_duplicates(self, account_id: str) -> List[DuplicateSet]:
        return self.deduplication.get_duplicates(account_id)

    def dismiss_duplicate(
        self, account_id: str, contact_id_a: str, contact_id_b: str, dismissed_by: Actor
    ) -> DuplicateDismissal:
        return self.deduplication.dismiss_duplicate(account_id, contact_id_a, contact_id_b, dismissed_by)

    def merge_contacts(
        self,
        account_id: str,
        contact_ids: List[str],
        merge_data: Optional[MergeData] = None,
        merged_by: Optional[Actor] = None,
    ) -> ContactWithRelations:
        return self.deduplication.merge_contacts(account_id, contact_ids, merge_data, merged_by)

    def get_merge_history(self, account_id: str) -> List[MergeAuditRecord]:
        return self.deduplication.audit_system.history(account_id)

    # ==================== MIGRATION ====================

    def migrate_legacy_export(
        self, account_id: str, tenant_id: Optional[str], data: Dict[str, Any]
    ) -> LegacyMigrationResult:
        """Import tags, groups and contacts from a legacy browser-storage export.

        Old tag and group ids are remapped onto the created rows. Name and
        phone collisions are skipped quietly; other failures are collected.
        """
        result = LegacyMigrationResult()
        created_by = Actor(id=account_id)

        tag_id_map: Dict[str, str] = {}
        for tag in data.get("tags") or []:
            try:
                created = self.create_tag(account_id, tenant_id, tag)
                tag_id_map[tag.get("id")] = created.id
                result.tags += 1
            except AlreadyExistsError:
                continue
            except ContactsError as e:
                result.errors.append(f"Tag {tag.get('name')!r}: {e.message}")

        group_id_map: Dict[str, str] = {}
        for group in data.get("groups") or []:
            try:
                created = self.create_group(account_id, tenant_id, group)
                group_id_map[group.get("id")] = created.id
                result.groups += 1
            except AlreadyExistsError:
                continue
            except ContactsError as e:
                result.errors.append(f"Group {group.get('name')!r}: {e.message}")

        for item in data.get("contacts") or []:
            try:
                contact = self.create_contact(
                    account_id,
                    tenant_id,
                    {
                        "phone": item.get("phone"),
                        "name": item.get("name"),
                        "avatar_url": item.get("avatarUrl"),
                        "whatsapp_jid": item.get("whatsappJid") or item.get("jid"),
                        "source": item.get("source") or ContactSource.IMPORT,
                        "metadata": item.get("metadata") or {},
                    },
                    created_by,
                )
            except AlreadyExistsError:
                continue
            except ContactsError as e:
                result.errors.append(f"Contact {item.get('phone')!r}: {e.message}")
                continue

            new_tag_ids = [tag_id_map[t] for t in item.get("tagIds") or [] if t in tag_id_map]
            if new_tag_ids:
                self.add_tags_to_contacts(account_id, [contact.id], new_tag_ids)
            for old_group_id in item.get("groupIds") or []:
                if old_group_id in group_id_map:
                    self.add_contacts_to_group(account_id, group_id_map[old_group_id], [contact.id])

            result.contacts += 1

        logger.info(
            "Legacy migration completed",
            account_id=account_id,
            contacts=result.contacts,
            tags=result.tags,
            groups=result.groups,
            errors=len(result.errors),
        )
        return result
