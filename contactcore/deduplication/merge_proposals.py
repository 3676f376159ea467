"""
Merge Execution System

Folds a confirmed duplicate set into one surviving contact. The survivor
keeps its own field values unless the operator overrides them, inherits the
union of every member's tags and groups, and the absorbed contacts are
deleted once the audit record has been attempted.
"""

from typing import Any, Dict, List, Optional

from ..errors import AlreadyExistsError, ErrorContext, InvalidInputError, NotFoundError
from ..logging_config import get_logger
from ..models import Actor, ContactWithRelations, MergeData, utcnow
from ..normalization import normalize_phone
from ..repositories.base import ContactStore
from .audit_system import MergeAudit

logger = get_logger(__name__)


def union_ids(id_lists: List[List[str]]) -> List[str]:
    """Union of id lists, in first-seen order."""
    seen: Dict[str, None] = {}
    for ids in id_lists:
        for item in ids:
            seen.setdefault(item, None)
    return list(seen)


class MergeEngine:
    """
    Executes contact merges.

    Association replacement, the audit record and the deletions run inside
    one store transaction, so a failure part-way leaves the account as it was.
    """

    def __init__(self, store: ContactStore, audit: Optional[MergeAudit] = None):
        self.store = store
        self.audit = audit or MergeAudit(store.merge_audits)
        self.stats = {
            "successful_merges": 0,
            "failed_merges": 0,
            "contacts_absorbed": 0,
        }

    def select_primary(self, contact_ids: List[str], merge_data: MergeData) -> str:
        """The requested primary when it is part of the set, else the first id."""
        if merge_data.primary_contact_id and merge_data.primary_contact_id in contact_ids:
            return merge_data.primary_contact_id
        return contact_ids[0]

    def resolve_fields(
        self,
        primary: ContactWithRelations,
        merge_data: MergeData,
        absorbed_ids: List[str],
        merged_by: Actor,
    ) -> Dict[str, Any]:
        """Field values for the survivor: override if given, else the primary's own."""
        now = utcnow()

        phone = primary.phone
        if merge_data.phone:
            phone = normalize_phone(merge_data.phone)
            if phone is None:
                raise InvalidInputError(
                    "Merge phone override has no digits",
                    field="phone",
                    value=merge_data.phone,
                    code="INVALID_PHONE",
                )

        metadata = dict(primary.metadata or {})
        metadata.update(merge_data.metadata or {})
        metadata["mergedAt"] = now.isoformat()
        metadata["mergedFrom"] = list(absorbed_ids)

        return {
            "name": merge_data.name or primary.name,
            "phone": phone,
            "avatar_url": merge_data.avatar_url or primary.avatar_url,
            "whatsapp_jid": merge_data.whatsapp_jid or primary.whatsapp_jid,
            "metadata": metadata,
            "updated_at": now,
            "updated_by": merged_by.id,
            "updated_by_type": merged_by.type,
        }

    def merge(
        self,
        account_id: str,
        contact_ids: List[str],
        merge_data: Optional[MergeData] = None,
        merged_by: Optional[Actor] = None,
    ) -> ContactWithRelations:
        """Merge duplicate contacts into a single contact.

        Args:
            account_id: Account the contacts must belong to
            contact_ids: Contacts to merge, at least two
            merge_data: Field overrides, primary choice and preserve flags
            merged_by: Operator performing the merge

        Returns:
            The surviving contact with its tags and groups

        Raises:
            InvalidInputError: Fewer than two ids, repeated ids or a bad phone
            NotFoundError: Any id is missing from the account (including ids
                already absorbed by an earlier merge)
            AlreadyExistsError: The phone override belongs to another contact
        """
        merge_data = merge_data or MergeData()
        merged_by = merged_by or Actor(id=account_id)
        contact_ids = list(contact_ids or [])

        try:
            return self._merge(account_id, contact_ids, merge_data, merged_by)
        except Exception as e:
            self.stats["failed_merges"] += 1
            logger.error(
                "Failed to merge contacts",
                error=str(e),
                account_id=account_id,
                contact_ids=contact_ids,
            )
            raise

    def _merge(
        self,
        account_id: str,
        contact_ids: List[str],
        merge_data: MergeData,
        merged_by: Actor,
    ) -> ContactWithRelations:
        context = ErrorContext(
            operation="merge_contacts",
            resource_type="contact",
            account_id=account_id,
            metadata={"contact_ids": contact_ids},
        )

        logger.info(
            "Starting contact merge",
            account_id=account_id,
            contact_ids=contact_ids,
            merged_by=merged_by.id,
        )

        if len(contact_ids) < 2:
            raise InvalidInputError(
                "At least 2 contacts required for merge",
                field="contact_ids",
                code="MERGE_TOO_FEW_CONTACTS",
                context=context,
            )
        if len(set(contact_ids)) != len(contact_ids):
            raise InvalidInputError(
                "Contact ids must not repeat",
                field="contact_ids",
                code="MERGE_REPEATED_CONTACTS",
                context=context,
            )

        contacts = self.store.find_with_relations(account_id, contact_ids)
        if len(contacts) != len(contact_ids):
            raise NotFoundError(
                "One or more contacts not found or access denied",
                code="CONTACT_NOT_FOUND",
                context=context,
            )

        by_id = {c.id: c for c in contacts}
        primary_id = self.select_primary(contact_ids, merge_data)
        primary = by_id[primary_id]
        absorbed_ids = [cid for cid in contact_ids if cid != primary_id]

        fields = self.resolve_fields(primary, merge_data, absorbed_ids, merged_by)
        if fields["phone"] != primary.phone:
            holder = self.store.contacts.find_by_phone(account_id, fields["phone"])
            if holder is not None and holder.id not in by_id:
                raise AlreadyExistsError(
                    f"Phone {fields['phone']} already belongs to another contact",
                    code="CONTACT_PHONE_EXISTS",
                    context=context,
                )

        all_tag_ids = union_ids([by_id[cid].tag_ids for cid in contact_ids])
        all_group_ids = union_ids([by_id[cid].group_ids for cid in contact_ids])

        record = self.audit.build_record(
            account_id=account_id,
            merged_contact_id=primary_id,
            source_contact_ids=contact_ids,
            contacts=contacts,
            merge_configuration=merge_data.model_dump(by_alias=True, mode="json"),
            merged_by=merged_by,
        )

        with self.store.transaction():
            if merge_data.preserve_tags:
                self.store.memberships.replace_tags(primary_id, all_tag_ids)
            if merge_data.preserve_groups:
                self.store.memberships.replace_groups(primary_id, all_group_ids)

            self.audit.record(record)

            deleted = self.store.contacts.delete_many(account_id, absorbed_ids)
            # after the deletions, so a phone taken from an absorbed contact is free
            self.store.contacts.update(account_id, primary_id, fields)

        self.stats["successful_merges"] += 1
        self.stats["contacts_absorbed"] += deleted

        logger.info(
            "Contact merge completed",
            account_id=account_id,
            merged_contact_id=primary_id,
            deleted_contacts=deleted,
            preserved_tags=len(all_tag_ids),
            preserved_groups=len(all_group_ids),
        )

        return self.store.get_with_relations(account_id, primary_id)
