"""Shared fixtures for contactcore tests."""

import pytest
from unittest.mock import Mock

from contactcore.config import Config
from contactcore.models import Actor, Contact, Group, Inbox, Tag
from contactcore.repositories import MemoryContactStore, SQLiteContactStore
from contactcore.services import ContactsService

ACCOUNT_ID = "account-1"
OTHER_ACCOUNT_ID = "account-2"
TENANT_ID = "tenant-1"


@pytest.fixture
def store():
    """In-memory contact store."""
    return MemoryContactStore()


@pytest.fixture
def sqlite_store(tmp_path):
    """SQLite contact store in a temporary directory."""
    store = SQLiteContactStore(tmp_path / "contacts.db")
    yield store
    store.close()


@pytest.fixture
def actor():
    return Actor(id=ACCOUNT_ID)


@pytest.fixture
def contact_source():
    """Contact source client that returns nothing unless told otherwise."""
    source = Mock()
    source.get_contacts.return_value = []
    return source


@pytest.fixture
def service(store, contact_source):
    """Contacts service over the memory store with a mocked contact source."""
    return ContactsService(store, config=Config(), contact_source=contact_source)


@pytest.fixture
def make_contact(store):
    """Insert a contact directly into the store."""

    def _make(phone, name=None, account_id=ACCOUNT_ID, **kwargs):
        return store.contacts.insert(
            Contact(account_id=account_id, tenant_id=TENANT_ID, phone=phone, name=name, **kwargs)
        )

    return _make


@pytest.fixture
def make_tag(store):
    def _make(name, account_id=ACCOUNT_ID):
        return store.tags.insert(Tag(account_id=account_id, tenant_id=TENANT_ID, name=name))

    return _make


@pytest.fixture
def make_group(store):
    def _make(name, account_id=ACCOUNT_ID):
        return store.groups.insert(Group(account_id=account_id, tenant_id=TENANT_ID, name=name))

    return _make


@pytest.fixture
def make_inbox(store):
    def _make(account_id=ACCOUNT_ID, connected=True, token="inbox-token", **kwargs):
        return store.inboxes.insert(
            Inbox(account_id=account_id, connected=connected, token=token, **kwargs)
        )

    return _make
