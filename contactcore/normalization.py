"""
Phone canonicalization and import fingerprints.

Both functions are pure: the same input always yields the same output, which
is what lets the import reconciler detect changes without keeping history.
"""

import re
import json
import hashlib
from typing import Optional

# "5511988880001@s.whatsapp.net", "1203630@g.us", "5511...@c.us"
JID_SUFFIX_PATTERN = re.compile(r"@[a-z.]+$", re.IGNORECASE)
NON_DIGIT_PATTERN = re.compile(r"\D")

FINGERPRINT_LENGTH = 64


def normalize_phone(raw: Optional[str]) -> Optional[str]:
    """Reduce a phone number or WhatsApp JID to its digits.

    Returns None when nothing numeric is left.
    """
    if not raw:
        return None

    normalized = JID_SUFFIX_PATTERN.sub("", str(raw).strip())
    normalized = NON_DIGIT_PATTERN.sub("", normalized)

    return normalized or None


def compute_import_fingerprint(
    phone: Optional[str],
    name: Optional[str] = None,
    whatsapp_jid: Optional[str] = None,
    avatar_url: Optional[str] = None,
    length: int = FINGERPRINT_LENGTH,
) -> str:
    """SHA-256 over the importable fields of a contact.

    The canonical document has a fixed key order and compact separators so
    that identical logical inputs always serialize to identical bytes.
    """
    canonical = {
        "phone": phone,
        "name": name or "",
        "whatsappJid": whatsapp_jid or "",
        "avatarUrl": avatar_url or "",
    }
    payload = json.dumps(canonical, separators=(",", ":"), ensure_ascii=False)
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return digest[:length]
