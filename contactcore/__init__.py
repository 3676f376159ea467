"""
contactcore - contact identity resolution for WhatsApp-oriented CRMs.

Detects duplicate contacts, records operator dismissals, merges confirmed
duplicates with an audit trail and reconciles bulk-imported address books.
"""

__version__ = "1.0.0"

from .config import Config, ConfigManager
from .errors import ContactsError, ErrorKind
from .models import Actor, Contact, DuplicateSet, ImportResult, MergeData, RawContactRecord
from .normalization import compute_import_fingerprint, normalize_phone
from .repositories import MemoryContactStore, SQLiteContactStore
from .services import ContactsService

__all__ = [
    "Config",
    "ConfigManager",
    "ContactsError",
    "ErrorKind",
    "Actor",
    "Contact",
    "DuplicateSet",
    "ImportResult",
    "MergeData",
    "RawContactRecord",
    "normalize_phone",
    "compute_import_fingerprint",
    "MemoryContactStore",
    "SQLiteContactStore",
    "ContactsService",
]
