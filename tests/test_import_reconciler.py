"""Tests for import reconciliation."""

import pytest
from unittest.mock import patch

from contactcore.config import ImportConfig
from contactcore.importing.reconciler import ImportReconciler
from contactcore.models import ContactSource, RawContactRecord
from contactcore.normalization import compute_import_fingerprint

from .conftest import ACCOUNT_ID, TENANT_ID


def _records():
    return [
        RawContactRecord(phone="+55 11 98888-0001", name="Ana"),
        RawContactRecord(jid="5511988880002@s.whatsapp.net", name="Bruno"),
        RawContactRecord(phone="5511988880003", name="Carla", avatar_url="https://example.com/c.jpg"),
    ]


class TestImportReconciler:
    """Test classification into added, updated, unchanged and skipped."""

    @pytest.fixture
    def reconciler(self, store):
        return ImportReconciler(store.contacts)

    def test_first_import_adds_everything(self, reconciler, store, actor):
        result = reconciler.reconcile(ACCOUNT_ID, TENANT_ID, _records(), actor)

        assert (result.added, result.updated, result.unchanged, result.skipped) == (3, 0, 0, 0)
        assert result.total_processed == 3

        contact = store.contacts.find_by_phone(ACCOUNT_ID, "5511988880002")
        assert contact.whatsapp_jid == "5511988880002@s.whatsapp.net"
        assert contact.source == ContactSource.WHATSAPP.value
        assert contact.import_hash == compute_import_fingerprint(
            "5511988880002", "Bruno", "5511988880002@s.whatsapp.net", None
        )
        assert contact.last_import_at is not None
        assert "importedAt" in contact.metadata

    def test_reimport_unchanged(self, reconciler, actor):
        """Test re-importing the same list touches nothing."""
        reconciler.reconcile(ACCOUNT_ID, TENANT_ID, _records(), actor)

        result = reconciler.reconcile(ACCOUNT_ID, TENANT_ID, _records(), actor)

        assert (result.added, result.updated, result.unchanged) == (0, 0, 3)

    def test_one_name_change_updates_one(self, reconciler, store, actor):
        reconciler.reconcile(ACCOUNT_ID, TENANT_ID, _records(), actor)
        records = _records()
        records[0] = RawContactRecord(phone="+55 11 98888-0001", name="Ana Paula")

        result = reconciler.reconcile(ACCOUNT_ID, TENANT_ID, records, actor)

        assert (result.added, result.updated, result.unchanged) == (0, 1, 2)
        assert store.contacts.find_by_phone(ACCOUNT_ID, "5511988880001").name == "Ana Paula"

    def test_update_keeps_existing_values_when_new_ones_empty(self, reconciler, store, actor):
        reconciler.reconcile(ACCOUNT_ID, TENANT_ID, _records(), actor)
        records = [RawContactRecord(phone="5511988880003", name=None)]

        result = reconciler.reconcile(ACCOUNT_ID, TENANT_ID, records, actor)

        assert result.updated == 1
        contact = store.contacts.find_by_phone(ACCOUNT_ID, "5511988880003")
        assert contact.name == "Carla"
        assert contact.avatar_url == "https://example.com/c.jpg"
        assert contact.import_hash == compute_import_fingerprint("5511988880003")

    @pytest.mark.parametrize(
        "record",
        [
            RawContactRecord(phone=None, jid=None),
            RawContactRecord(phone="1234567"),
            RawContactRecord(jid="1203630000000000000@g.us"),
            RawContactRecord(phone="no digits"),
        ],
    )
    def test_invalid_phones_skipped(self, reconciler, record, actor):
        result = reconciler.reconcile(ACCOUNT_ID, TENANT_ID, [record], actor)

        assert result.skipped == 1
        assert result.added == 0

    def test_phone_length_bounds_inclusive(self, reconciler, actor):
        records = [RawContactRecord(phone="12345678"), RawContactRecord(phone="123456789012345")]

        result = reconciler.reconcile(ACCOUNT_ID, TENANT_ID, records, actor)

        assert result.added == 2

    def test_repeated_phone_in_one_run_skipped(self, reconciler, actor):
        """Test the second record with an already-seen phone is skipped."""
        records = [
            RawContactRecord(phone="5511988880001", name="Ana"),
            RawContactRecord(jid="5511988880001@s.whatsapp.net", name="Ana L"),
        ]

        result = reconciler.reconcile(ACCOUNT_ID, TENANT_ID, records, actor)

        assert (result.added, result.skipped) == (1, 1)

    def test_inbox_import_records_source(self, reconciler, store, actor):
        reconciler.reconcile(ACCOUNT_ID, TENANT_ID, _records()[:1], actor, source_inbox_id="inbox-1")

        contact = store.contacts.find_by_phone(ACCOUNT_ID, "5511988880001")
        assert contact.source_inbox_id == "inbox-1"
        assert contact.metadata["inboxId"] == "inbox-1"

    def test_inserts_in_batches(self, store, actor):
        reconciler = ImportReconciler(store.contacts, ImportConfig(batch_size=2))
        records = [RawContactRecord(phone=f"55119000000{i:02d}") for i in range(5)]

        with patch.object(store.contacts, "insert_many", wraps=store.contacts.insert_many) as spy:
            result = reconciler.reconcile(ACCOUNT_ID, TENANT_ID, records, actor)

        assert result.added == 5
        assert [len(call.args[0]) for call in spy.call_args_list] == [2, 2, 1]

    def test_failed_batch_does_not_stop_import(self, store, actor):
        """Test a failing batch is skipped and later batches still land."""
        reconciler = ImportReconciler(store.contacts, ImportConfig(batch_size=2))
        records = [RawContactRecord(phone=f"55119000000{i:02d}") for i in range(4)]
        original = store.contacts.insert_many
        calls = []

        def flaky(batch):
            calls.append(batch)
            if len(calls) == 1:
                raise RuntimeError("connection reset")
            return original(batch)

        with patch.object(store.contacts, "insert_many", side_effect=flaky):
            result = reconciler.reconcile(ACCOUNT_ID, TENANT_ID, records, actor)

        assert result.added == 2
        assert result.skipped == 2
        assert store.contacts.count(ACCOUNT_ID) == 2

    def test_failed_update_counted_as_skipped(self, reconciler, store, actor):
        """Test failing and vanished updates are skipped and the run continues."""
        reconciler.reconcile(ACCOUNT_ID, TENANT_ID, _records(), actor)
        failing = store.contacts.find_by_phone(ACCOUNT_ID, "5511988880001")
        vanished = store.contacts.find_by_phone(ACCOUNT_ID, "5511988880002")
        records = [
            RawContactRecord(phone="5511988880001", name="Ana Paula"),
            RawContactRecord(jid="5511988880002@s.whatsapp.net", name="Bruno Costa"),
            RawContactRecord(phone="5511988880003", name="Carla Dias"),
        ]
        original = store.contacts.update

        def flaky(account_id, contact_id, changes):
            if contact_id == failing.id:
                raise RuntimeError("database is locked")
            if contact_id == vanished.id:
                return None
            return original(account_id, contact_id, changes)

        with patch.object(store.contacts, "update", side_effect=flaky):
            result = reconciler.reconcile(ACCOUNT_ID, TENANT_ID, records, actor)

        assert (result.added, result.updated, result.unchanged, result.skipped) == (0, 1, 0, 2)
        assert result.total_processed == 3
        assert store.contacts.find_by_phone(ACCOUNT_ID, "5511988880001").name == "Ana"
        assert store.contacts.find_by_phone(ACCOUNT_ID, "5511988880003").name == "Carla Dias"
