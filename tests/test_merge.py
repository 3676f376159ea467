"""Tests for contact merges and the merge audit trail."""

import pytest
from unittest.mock import Mock, patch

from contactcore.deduplication.audit_system import MergeAudit
from contactcore.deduplication.merge_proposals import MergeEngine, union_ids
from contactcore.errors import AlreadyExistsError, InvalidInputError, NotFoundError
from contactcore.models import MergeData

from .conftest import ACCOUNT_ID, OTHER_ACCOUNT_ID


class TestUnionIds:

    def test_first_seen_order_without_repeats(self):
        assert union_ids([["t1", "t2"], ["t2", "t3"], ["t1"]]) == ["t1", "t2", "t3"]


class TestMergeEngine:
    """Test merging duplicate contacts."""

    @pytest.fixture
    def engine(self, store):
        return MergeEngine(store)

    @pytest.fixture
    def trio(self, store, make_contact, make_tag, make_group):
        """Three duplicates A, B, C with overlapping tags and groups."""
        a = make_contact("5511988880001", "Ana")
        b = make_contact("5511988880002", "Ana Lima", avatar_url="https://example.com/b.jpg")
        c = make_contact("5511988880003", None)
        vip, lead, cold = make_tag("vip"), make_tag("lead"), make_tag("cold")
        clients = make_group("clients")

        store.memberships.add_tag(a.id, vip.id)
        store.memberships.add_tag(a.id, lead.id)
        store.memberships.add_tag(b.id, lead.id)
        store.memberships.add_tag(c.id, cold.id)
        store.memberships.add_to_group(c.id, clients.id)

        return {"a": a, "b": b, "c": c, "tags": [vip, lead, cold], "group": clients}

    def test_merge_into_chosen_primary(self, engine, store, trio, actor):
        """Test merging [A, B, C] with primary B keeps B with the union of associations."""
        a, b, c = trio["a"], trio["b"], trio["c"]

        merged = engine.merge(
            ACCOUNT_ID, [a.id, b.id, c.id], MergeData(primary_contact_id=b.id), actor
        )

        assert merged.id == b.id
        assert merged.name == "Ana Lima"
        assert merged.phone == "5511988880002"
        assert set(merged.tag_ids) == {t.id for t in trio["tags"]}
        assert merged.group_ids == [trio["group"].id]
        assert store.contacts.get_by_id(ACCOUNT_ID, a.id) is None
        assert store.contacts.get_by_id(ACCOUNT_ID, c.id) is None

        history = store.merge_audits.list_by_account(ACCOUNT_ID)
        assert len(history) == 1
        assert history[0].source_contact_ids == [a.id, b.id, c.id]
        assert history[0].merged_contact_id == b.id
        assert [s.id for s in history[0].original_contacts] == [a.id, b.id, c.id]
        assert set(history[0].original_contacts[0].tag_ids) == {trio["tags"][0].id, trio["tags"][1].id}

    def test_merge_metadata(self, engine, trio, actor):
        a, b = trio["a"], trio["b"]

        merged = engine.merge(ACCOUNT_ID, [a.id, b.id], MergeData(primary_contact_id=a.id), actor)

        assert merged.metadata["mergedFrom"] == [b.id]
        assert "mergedAt" in merged.metadata
        assert merged.updated_by == actor.id

    def test_primary_defaults_to_first_id(self, engine, trio, actor):
        a, b = trio["a"], trio["b"]

        merged = engine.merge(ACCOUNT_ID, [b.id, a.id], MergeData(), actor)
        assert merged.id == b.id

    def test_unknown_primary_falls_back_to_first_id(self, engine, trio, actor):
        a, b = trio["a"], trio["b"]

        merged = engine.merge(ACCOUNT_ID, [a.id, b.id], MergeData(primary_contact_id="other"), actor)
        assert merged.id == a.id

    def test_overrides_win(self, engine, trio, actor):
        """Test explicit overrides replace the primary's values."""
        a, b = trio["a"], trio["b"]

        merged = engine.merge(
            ACCOUNT_ID,
            [a.id, b.id],
            MergeData(name="Ana Maria Lima", avatar_url="https://example.com/new.jpg"),
            actor,
        )

        assert merged.id == a.id
        assert merged.name == "Ana Maria Lima"
        assert merged.avatar_url == "https://example.com/new.jpg"

    def test_phone_override_can_take_absorbed_contacts_phone(self, engine, trio, actor):
        a, b = trio["a"], trio["b"]

        merged = engine.merge(
            ACCOUNT_ID, [a.id, b.id], MergeData(phone="+55 11 98888-0002"), actor
        )

        assert merged.id == a.id
        assert merged.phone == "5511988880002"

    def test_phone_override_collision_outside_set(self, engine, store, trio, make_contact, actor):
        a, b = trio["a"], trio["b"]
        make_contact("5511977770000", "Someone else")

        with pytest.raises(AlreadyExistsError):
            engine.merge(ACCOUNT_ID, [a.id, b.id], MergeData(phone="5511977770000"), actor)

        assert store.contacts.get_by_id(ACCOUNT_ID, b.id) is not None

    def test_preserve_flags_off(self, engine, trio, actor):
        """Test the primary keeps only its own associations when preservation is off."""
        a, c = trio["a"], trio["c"]

        merged = engine.merge(
            ACCOUNT_ID,
            [a.id, c.id],
            MergeData(preserve_tags=False, preserve_groups=False),
            actor,
        )

        assert set(merged.tag_ids) == {trio["tags"][0].id, trio["tags"][1].id}
        assert merged.group_ids == []

    @pytest.mark.parametrize("ids", [[], ["only-one"]])
    def test_too_few_contacts(self, engine, ids, actor):
        with pytest.raises(InvalidInputError):
            engine.merge(ACCOUNT_ID, ids, MergeData(), actor)

    def test_repeated_ids_rejected(self, engine, trio, actor):
        a = trio["a"]
        with pytest.raises(InvalidInputError):
            engine.merge(ACCOUNT_ID, [a.id, a.id], MergeData(), actor)

    def test_foreign_contact_not_found(self, engine, store, trio, make_contact, actor):
        """Test nothing changes when one id belongs to another account."""
        a = trio["a"]
        foreign = make_contact("5511966660000", account_id=OTHER_ACCOUNT_ID)

        with pytest.raises(NotFoundError):
            engine.merge(ACCOUNT_ID, [a.id, foreign.id], MergeData(), actor)

        assert store.contacts.get_by_id(OTHER_ACCOUNT_ID, foreign.id) is not None
        assert store.merge_audits.list_by_account(ACCOUNT_ID) == []

    def test_second_merge_of_absorbed_contact_not_found(self, engine, trio, actor):
        a, b, c = trio["a"], trio["b"], trio["c"]
        engine.merge(ACCOUNT_ID, [a.id, b.id], MergeData(), actor)

        with pytest.raises(NotFoundError):
            engine.merge(ACCOUNT_ID, [b.id, c.id], MergeData(), actor)

    def test_audit_failure_does_not_block_merge(self, store, trio, actor):
        """Test the merge completes when the audit record cannot be written."""
        audits = Mock()
        audits.insert.side_effect = RuntimeError("audit table missing")
        audit = MergeAudit(audits)
        engine = MergeEngine(store, audit=audit)
        a, b = trio["a"], trio["b"]

        merged = engine.merge(ACCOUNT_ID, [a.id, b.id], MergeData(), actor)

        assert merged.id == a.id
        assert store.contacts.get_by_id(ACCOUNT_ID, b.id) is None
        assert audit.stats["write_failures"] == 1

    def test_failure_rolls_back(self, engine, store, trio, actor):
        """Test a failed deletion leaves contacts and associations untouched."""
        a, c = trio["a"], trio["c"]

        with patch.object(store.contacts, "delete_many", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                engine.merge(ACCOUNT_ID, [a.id, c.id], MergeData(), actor)

        restored = store.get_with_relations(ACCOUNT_ID, a.id)
        assert set(restored.tag_ids) == {trio["tags"][0].id, trio["tags"][1].id}
        assert restored.group_ids == []
        assert store.contacts.get_by_id(ACCOUNT_ID, c.id) is not None
        assert engine.stats["failed_merges"] == 1

    def test_audit_written_before_absorbed_contacts_deleted(self, engine, store, trio, actor):
        """Test the audit record is inserted while the absorbed contact still exists."""
        a, b = trio["a"], trio["b"]
        seen = []
        insert = store.merge_audits.insert

        def checking_insert(record):
            seen.append(store.contacts.get_by_id(ACCOUNT_ID, b.id))
            return insert(record)

        with patch.object(store.merge_audits, "insert", side_effect=checking_insert):
            engine.merge(ACCOUNT_ID, [a.id, b.id], MergeData(), actor)

        assert len(seen) == 1
        assert seen[0] is not None
        assert store.contacts.get_by_id(ACCOUNT_ID, b.id) is None
        assert len(store.merge_audits.list_by_account(ACCOUNT_ID)) == 1

    def test_every_failure_is_counted(self, engine, store, trio, make_contact, actor):
        """Test validation, lookup and collision failures all count as failed merges."""
        a, b = trio["a"], trio["b"]
        outsider = make_contact("5511955550000", "Outsider")

        with pytest.raises(InvalidInputError):
            engine.merge(ACCOUNT_ID, [a.id], MergeData(), actor)
        with pytest.raises(InvalidInputError):
            engine.merge(ACCOUNT_ID, [a.id, b.id], MergeData(phone="no digits"), actor)
        with pytest.raises(NotFoundError):
            engine.merge(ACCOUNT_ID, [a.id, "missing"], MergeData(), actor)
        with pytest.raises(AlreadyExistsError):
            engine.merge(ACCOUNT_ID, [a.id, b.id], MergeData(phone=outsider.phone), actor)

        assert engine.stats["failed_merges"] == 4
        assert engine.stats["successful_merges"] == 0
