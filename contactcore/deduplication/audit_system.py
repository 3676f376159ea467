"""
Merge Audit System

Append-only record of every contact merge: which contacts were folded into
which survivor, what each source looked like beforehand, and the operator's
merge configuration.
"""

from typing import Any, Dict, List, Optional

from ..logging_config import get_logger
from ..models import Actor, ContactSnapshot, ContactWithRelations, MergeAuditRecord
from ..repositories.base import MergeAuditRepository

logger = get_logger(__name__)


class MergeAudit:
    """Best-effort writer for merge audit records."""

    def __init__(self, repository: MergeAuditRepository):
        self.repository = repository
        self.stats = {
            "records_written": 0,
            "write_failures": 0,
        }

    @staticmethod
    def snapshot(contact: ContactWithRelations) -> ContactSnapshot:
        """Capture the pre-merge state of one contact."""
        return ContactSnapshot(
            id=contact.id,
            name=contact.name,
            phone=contact.phone,
            avatar_url=contact.avatar_url,
            tag_ids=contact.tag_ids,
            group_ids=contact.group_ids,
        )

    def build_record(
        self,
        account_id: str,
        merged_contact_id: str,
        source_contact_ids: List[str],
        contacts: List[ContactWithRelations],
        merge_configuration: Dict[str, Any],
        merged_by: Actor,
    ) -> MergeAuditRecord:
        by_id = {c.id: c for c in contacts}
        return MergeAuditRecord(
            account_id=account_id,
            merged_contact_id=merged_contact_id,
            source_contact_ids=list(source_contact_ids),
            original_contacts=[self.snapshot(by_id[cid]) for cid in source_contact_ids],
            merge_configuration=merge_configuration,
            merged_by=merged_by.id,
        )

    def record(self, record: MergeAuditRecord) -> Optional[MergeAuditRecord]:
        """Persist a record. Failures are logged and reported as None."""
        try:
            saved = self.repository.insert(record)
        except Exception as e:
            self.stats["write_failures"] += 1
            logger.warning(
                "Failed to create audit log",
                error=str(e),
                account_id=record.account_id,
                merged_contact_id=record.merged_contact_id,
            )
            return None

        self.stats["records_written"] += 1
        return saved

    def history(self, account_id: str) -> List[MergeAuditRecord]:
        """Merge records for an account, newest first."""
        return self.repository.list_by_account(account_id)
