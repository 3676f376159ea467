"""Tests for the deduplication engine."""

import pytest

from contactcore.config import DeduplicationConfig
from contactcore.deduplication import DeduplicationEngine
from contactcore.models import DuplicateType, MergeData

from .conftest import ACCOUNT_ID


class TestDeduplicationEngine:
    """Test detection, filtering and merge orchestration."""

    @pytest.fixture
    def engine(self, store):
        return DeduplicationEngine(store)

    def test_analyze_account(self, engine, make_contact, actor):
        a = make_contact("+55 11 98888-0001")
        b = make_contact("5511988880001")
        make_contact("5511977770001", "Maria Silva")
        make_contact("5511977770002", "Maria Silvia")
        engine.dismiss_duplicate(ACCOUNT_ID, a.id, b.id, actor)

        result = engine.analyze_account(ACCOUNT_ID)

        assert result.detected == 2
        assert result.dismissed == 1
        assert result.type_distribution == {DuplicateType.SIMILAR_NAME.value: 1}
        assert engine.get_statistics()["sets_dismissed"] == 1

    def test_configured_threshold(self, store, make_contact):
        make_contact("5511977770001", "Maria Silva")
        make_contact("5511977770002", "Maria Silvia")
        engine = DeduplicationEngine(store, DeduplicationConfig(name_similarity_threshold=0.99))

        assert engine.get_duplicates(ACCOUNT_ID) == []

    def test_merge_updates_statistics(self, engine, make_contact, actor):
        a = make_contact("5511988880001", "Ana")
        b = make_contact("5511988880002", "Ana L")

        engine.merge_contacts(ACCOUNT_ID, [a.id, b.id], MergeData(), actor)

        stats = engine.get_statistics()
        assert stats["merges"]["successful_merges"] == 1
        assert stats["merges"]["contacts_absorbed"] == 1
        assert stats["audit"]["records_written"] == 1
