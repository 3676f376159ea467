"""External contact sources for inbox imports."""

from abc import ABC, abstractmethod
from typing import List, Optional

import requests

from ..errors import ContactSourceError
from ..logging_config import get_logger
from ..models import RawContactRecord

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://wzapi.wasend.com.br"


class ContactSourceClient(ABC):
    """Delivers the address book of a connected WhatsApp number."""

    @abstractmethod
    def get_contacts(self, token: str) -> List[RawContactRecord]:
        """Fetch the raw contacts visible to the connection identified by token."""
        pass


class WuzapiContactSource(ContactSourceClient):
    """WUZAPI gateway client (GET /user/contacts)."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def get_contacts(self, token: str) -> List[RawContactRecord]:
        try:
            response = self.session.get(
                f"{self.base_url}/user/contacts",
                headers={"token": token},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            logger.error("Failed to fetch contacts from WUZAPI", error=str(e), status=status)
            if status == 401:
                raise ContactSourceError("WUZAPI token invalid or expired", status_code=401, cause=e)
            if status == 404:
                raise ContactSourceError("WhatsApp instance not found", status_code=404, cause=e)
            raise ContactSourceError(f"WUZAPI request failed: {e}", status_code=status, cause=e)
        except requests.exceptions.Timeout as e:
            logger.error("Failed to fetch contacts from WUZAPI", error=str(e))
            raise ContactSourceError("Timed out connecting to WUZAPI", cause=e)
        except requests.exceptions.ConnectionError as e:
            logger.error("Failed to fetch contacts from WUZAPI", error=str(e))
            raise ContactSourceError("WUZAPI service unavailable", cause=e)

        try:
            payload = response.json()
        except ValueError as e:
            raise ContactSourceError("WUZAPI returned invalid JSON", cause=e)

        entries = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(entries, dict):
            logger.warning("Invalid WUZAPI contacts response", has_data=entries is not None)
            return []

        contacts = []
        for jid, entry in entries.items():
            if not jid or "@" not in jid or not (entry or {}).get("Found"):
                continue
            name = entry.get("FullName") or entry.get("PushName") or entry.get("BusinessName")
            contacts.append(
                RawContactRecord(
                    phone=jid.split("@")[0],
                    jid=jid,
                    name=name or None,
                    avatar_url=entry.get("ProfilePictureUrl") or None,
                )
            )

        logger.info(
            "Contacts fetched from WUZAPI",
            total_entries=len(entries),
            valid_contacts=len(contacts),
        )
        return contacts
