"""Data models for contacts, tags, groups and identity resolution."""

import uuid
from typing import Dict, List, Any, Optional
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class CamelModel(BaseModel):
    """Base model whose serialized form uses camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_dto(self) -> Dict[str, Any]:
        """Serialize for the calling API layer."""
        return self.model_dump(by_alias=True, mode="json")


class ContactSource(str, Enum):
    """How a contact entered the account."""

    MANUAL = "manual"
    WHATSAPP = "whatsapp"
    IMPORT = "import"


class ActorType(str, Enum):
    ACCOUNT = "account"
    AGENT = "agent"


class DuplicateType(str, Enum):
    """Kinds of duplicate sets produced by detection."""

    EXACT_PHONE = "exact_phone"
    SIMILAR_NAME = "similar_name"


class Actor(CamelModel):
    """Who performs a write: the account owner or one of its agents."""

    id: str
    type: ActorType = ActorType.ACCOUNT


class Contact(CamelModel):
    """A person reachable over WhatsApp, scoped to one account."""

    id: str = Field(default_factory=new_id)
    account_id: str
    tenant_id: Optional[str] = None
    phone: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    whatsapp_jid: Optional[str] = None
    source: ContactSource = ContactSource.MANUAL
    source_inbox_id: Optional[str] = None
    import_hash: Optional[str] = None
    last_import_at: Optional[datetime] = None
    linked_user_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = None
    created_by_type: Optional[ActorType] = None
    updated_by: Optional[str] = None
    updated_by_type: Optional[ActorType] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Tag(CamelModel):
    id: str = Field(default_factory=new_id)
    account_id: str
    tenant_id: Optional[str] = None
    name: str
    color: str = "#1f93ff"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Group(CamelModel):
    id: str = Field(default_factory=new_id)
    account_id: str
    tenant_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    contact_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ContactWithRelations(Contact):
    """Contact hydrated with its tags and groups."""

    tags: List[Tag] = Field(default_factory=list)
    groups: List[Group] = Field(default_factory=list)

    @property
    def tag_ids(self) -> List[str]:
        return [t.id for t in self.tags]

    @property
    def group_ids(self) -> List[str]:
        return [g.id for g in self.groups]


class DuplicateDismissal(CamelModel):
    """An operator's statement that two contacts are not the same person.

    The pair is always stored sorted so (A, B) and (B, A) resolve to one row.
    """

    id: str = Field(default_factory=new_id)
    account_id: str
    contact_id_1: str
    contact_id_2: str
    dismissed_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def pair(self) -> tuple:
        return (self.contact_id_1, self.contact_id_2)


class DuplicateSet(CamelModel):
    """Ephemeral group of contacts suspected to be the same person."""

    type: DuplicateType
    contacts: List[Contact]
    similarity: float = Field(ge=0.0, le=1.0)

    @property
    def contact_ids(self) -> List[str]:
        return [c.id for c in self.contacts]


class MergeData(CamelModel):
    """Operator choices for a merge. Unset fields keep the primary's value."""

    name: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    whatsapp_jid: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    primary_contact_id: Optional[str] = None
    preserve_tags: bool = True
    preserve_groups: bool = True


class ContactSnapshot(CamelModel):
    """Pre-merge state of one source contact."""

    id: str
    name: Optional[str] = None
    phone: str
    avatar_url: Optional[str] = None
    tag_ids: List[str] = Field(default_factory=list)
    group_ids: List[str] = Field(default_factory=list)


class MergeAuditRecord(CamelModel):
    id: str = Field(default_factory=new_id)
    account_id: str
    merged_contact_id: str
    source_contact_ids: List[str]
    original_contacts: List[ContactSnapshot] = Field(default_factory=list)
    merge_configuration: Dict[str, Any] = Field(default_factory=dict)
    merged_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Inbox(CamelModel):
    """A connected WhatsApp number that can act as a contact source."""

    id: str = Field(default_factory=new_id)
    account_id: str
    name: Optional[str] = None
    phone_number: Optional[str] = None
    connected: bool = False
    token: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class InboxSummary(CamelModel):
    id: str
    name: str
    phone_number: Optional[str] = None
    is_connected: bool = False


class RawContactRecord(CamelModel):
    """A contact as delivered by an address-book export or an inbox."""

    phone: Optional[str] = None
    jid: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = None


class ImportResult(CamelModel):
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    total_processed: int = 0


class ContactQuery(CamelModel):
    """Listing filters. An empty ``source_inbox_id`` selects manual contacts."""

    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=50, ge=1)
    search: str = ""
    tag_ids: List[str] = Field(default_factory=list)
    group_id: Optional[str] = None
    has_name: Optional[bool] = None
    source_inbox_id: Optional[str] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"

    @field_validator("sort_by")
    @classmethod
    def check_sort_by(cls, v):
        allowed = {"created_at", "updated_at", "name", "phone"}
        if v not in allowed:
            raise ValueError(f"sort_by must be one of {sorted(allowed)}")
        return v

    @field_validator("sort_order")
    @classmethod
    def check_sort_order(cls, v):
        v = v.lower()
        if v not in ("asc", "desc"):
            raise ValueError("sort_order must be 'asc' or 'desc'")
        return v


class ContactPage(CamelModel):
    data: List[Contact] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 50


class ContactStats(CamelModel):
    total: int = 0
    with_name: int = 0
    without_name: int = 0
    total_tags: int = 0


class LegacyMigrationResult(CamelModel):
    contacts: int = 0
    tags: int = 0
    groups: int = 0
    errors: List[str] = Field(default_factory=list)
