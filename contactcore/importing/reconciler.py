"""
Import reconciliation.

Classifies every incoming record against the account's existing contacts by
normalized phone, then uses the import fingerprint to tell real changes from
re-deliveries of the same data. New contacts are inserted in batches; changed
ones are updated one at a time.
"""

from typing import Dict, List, Optional, Set

from ..config import ImportConfig
from ..logging_config import get_logger
from ..models import (
    Actor,
    Contact,
    ContactSource,
    ImportResult,
    RawContactRecord,
    utcnow,
)
from ..normalization import compute_import_fingerprint, normalize_phone
from ..repositories.base import ContactRepository

logger = get_logger(__name__)


class ImportReconciler:
    """Reconciles imported contact lists against stored contacts."""

    def __init__(self, contacts: ContactRepository, config: Optional[ImportConfig] = None):
        self.contacts = contacts
        self.config = config or ImportConfig()

    def _valid_phone(self, record: RawContactRecord) -> Optional[str]:
        phone = normalize_phone(record.phone or record.jid)
        if phone is None:
            return None
        # longer numbers are group or broadcast JIDs
        if not self.config.min_phone_length <= len(phone) <= self.config.max_phone_length:
            return None
        return phone

    def reconcile(
        self,
        account_id: str,
        tenant_id: Optional[str],
        records: List[RawContactRecord],
        actor: Actor,
        source_inbox_id: Optional[str] = None,
    ) -> ImportResult:
        """Insert new contacts, update changed ones and count the rest.

        Args:
            account_id: Account receiving the contacts
            tenant_id: Tenant recorded on inserted contacts
            records: Raw records from an export or an inbox
            actor: Who performs the import
            source_inbox_id: Inbox the records came from, if any

        Returns:
            ImportResult with added, updated, unchanged and skipped counts
        """
        result = ImportResult()
        logger.info(
            "Starting contact import",
            account_id=account_id,
            total_contacts=len(records),
            source_inbox_id=source_inbox_id,
        )

        existing_by_phone: Dict[str, Contact] = {
            c.phone: c for c in self.contacts.list_by_account(account_id)
        }

        now = utcnow()
        seen: Set[str] = set()
        to_insert: List[Contact] = []
        to_update: List[tuple] = []

        for record in records:
            phone = self._valid_phone(record)
            if phone is None or phone in seen:
                result.skipped += 1
                continue
            seen.add(phone)

            fingerprint = compute_import_fingerprint(
                phone,
                name=record.name,
                whatsapp_jid=record.jid,
                avatar_url=record.avatar_url,
                length=self.config.fingerprint_length,
            )

            existing = existing_by_phone.get(phone)
            if existing is None:
                metadata = {"importedAt": now.isoformat()}
                if source_inbox_id:
                    metadata["inboxId"] = source_inbox_id
                to_insert.append(
                    Contact(
                        account_id=account_id,
                        tenant_id=tenant_id,
                        phone=phone,
                        name=record.name or None,
                        avatar_url=record.avatar_url or None,
                        whatsapp_jid=record.jid or None,
                        source=ContactSource.WHATSAPP,
                        source_inbox_id=source_inbox_id,
                        import_hash=fingerprint,
                        last_import_at=now,
                        metadata=metadata,
                        created_by=actor.id,
                        created_by_type=actor.type,
                        created_at=now,
                        updated_at=now,
                    )
                )
            elif existing.import_hash != fingerprint:
                changes = {
                    "name": record.name or existing.name,
                    "whatsapp_jid": record.jid or existing.whatsapp_jid,
                    "avatar_url": record.avatar_url or existing.avatar_url,
                    "import_hash": fingerprint,
                    "last_import_at": now,
                    "updated_at": now,
                    "updated_by": actor.id,
                    "updated_by_type": actor.type,
                }
                if source_inbox_id:
                    changes["source_inbox_id"] = source_inbox_id
                to_update.append((existing.id, changes))
            else:
                result.unchanged += 1

        logger.info(
            "Contacts classified",
            account_id=account_id,
            to_insert=len(to_insert),
            to_update=len(to_update),
            unchanged=result.unchanged,
            skipped=result.skipped,
        )

        result.added = self._insert_batches(to_insert)
        # contacts from a failed batch are reported as skipped
        result.skipped += len(to_insert) - result.added

        for contact_id, changes in to_update:
            try:
                if self.contacts.update(account_id, contact_id, changes) is None:
                    result.skipped += 1
                else:
                    result.updated += 1
            except Exception as e:
                logger.error("Failed to update contact", contact_id=contact_id, error=str(e))
                result.skipped += 1

        result.total_processed = len(records)

        logger.info(
            "Contact import completed",
            account_id=account_id,
            added=result.added,
            updated=result.updated,
            unchanged=result.unchanged,
            skipped=result.skipped,
        )
        return result

    def _insert_batches(self, contacts: List[Contact]) -> int:
        """Insert in fixed-size batches; a failed batch is logged and dropped."""
        added = 0
        batch_size = self.config.batch_size
        for start in range(0, len(contacts), batch_size):
            batch = contacts[start:start + batch_size]
            try:
                added += len(self.contacts.insert_many(batch))
            except Exception as e:
                logger.error(
                    "Failed to insert contact batch",
                    batch_start=start,
                    batch_size=len(batch),
                    error=str(e),
                )
        return added
