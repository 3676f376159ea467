"""Tests for phone normalization and import fingerprints."""

import hashlib

import pytest

from contactcore.normalization import compute_import_fingerprint, normalize_phone


class TestNormalizePhone:
    """Test phone canonicalization."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("+55 11 98888-0001", "5511988880001"),
            ("(11) 99999-0002", "11999990002"),
            ("5511988880001@s.whatsapp.net", "5511988880001"),
            ("5511988880001@c.us", "5511988880001"),
            ("120363000000@g.us", "120363000000"),
            ("  5511988880001  ", "5511988880001"),
        ],
    )
    def test_strips_formatting_and_jid_suffix(self, raw, expected):
        """Test that formatting and WhatsApp server suffixes are removed."""
        assert normalize_phone(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "abc", "@s.whatsapp.net"])
    def test_returns_none_without_digits(self, raw):
        """Test that inputs with no digits normalize to None."""
        assert normalize_phone(raw) is None

    def test_idempotent(self):
        """Test that normalizing twice changes nothing."""
        once = normalize_phone("+55 (11) 98888-0001@s.whatsapp.net")
        assert normalize_phone(once) == once


class TestImportFingerprint:
    """Test change-detection fingerprints."""

    def test_deterministic(self):
        """Test the same fields always give the same digest."""
        a = compute_import_fingerprint("5511988880001", "Ana", "5511988880001@s.whatsapp.net", None)
        b = compute_import_fingerprint("5511988880001", "Ana", "5511988880001@s.whatsapp.net", None)
        assert a == b
        assert len(a) == 64

    def test_matches_canonical_json_digest(self):
        """Test the digest is SHA-256 over compact JSON in fixed key order."""
        payload = '{"phone":"5511988880001","name":"Ana","whatsappJid":"","avatarUrl":""}'
        expected = hashlib.sha256(payload.encode("utf-8")).hexdigest()
        assert compute_import_fingerprint("5511988880001", "Ana") == expected

    def test_missing_fields_equal_empty_strings(self):
        """Test None and empty string produce the same fingerprint."""
        assert compute_import_fingerprint("5511988880001", None, None, None) == \
            compute_import_fingerprint("5511988880001", "", "", "")

    @pytest.mark.parametrize(
        "changes",
        [
            {"phone": "5511988880002"},
            {"name": "Ana Maria"},
            {"whatsapp_jid": "5511988880001@c.us"},
            {"avatar_url": "https://example.com/a.jpg"},
        ],
    )
    def test_any_field_change_changes_digest(self, changes):
        """Test that changing any single field changes the fingerprint."""
        base = {"phone": "5511988880001", "name": "Ana", "whatsapp_jid": None, "avatar_url": None}
        assert compute_import_fingerprint(**base) != compute_import_fingerprint(**{**base, **changes})

    def test_non_ascii_names(self):
        """Test that accented names hash their UTF-8 form."""
        payload = '{"phone":"5511988880001","name":"João","whatsappJid":"","avatarUrl":""}'
        expected = hashlib.sha256(payload.encode("utf-8")).hexdigest()
        assert compute_import_fingerprint("5511988880001", "João") == expected

    def test_truncated_length(self):
        """Test the digest can be truncated."""
        full = compute_import_fingerprint("5511988880001", "Ana")
        assert compute_import_fingerprint("5511988880001", "Ana", length=16) == full[:16]
