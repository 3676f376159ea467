"""Tests for the command line."""

import json

import pytest
from unittest.mock import patch

from contactcore import cli
from contactcore.repositories import SQLiteContactStore

from .conftest import ACCOUNT_ID, TENANT_ID


@pytest.fixture(autouse=True)
def no_logging_setup():
    with patch.object(cli, "setup_logging"):
        yield


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "cli.db")


@pytest.fixture
def export_file(tmp_path):
    path = tmp_path / "contacts.json"
    path.write_text(json.dumps([
        {"phone": "+55 11 98888-0001", "name": "Maria Silva"},
        {"jid": "5511988880002@s.whatsapp.net", "name": "Maria Silvia"},
        {"phone": "123", "name": "Too short"},
    ]))
    return str(path)


class TestCli:
    """Test the contactcore console script."""

    def test_no_command_prints_help(self):
        assert cli.main([]) == 1

    def test_import_then_stats_and_duplicates(self, db_path, export_file, capsys):
        assert cli.main(["--db", db_path, "import", ACCOUNT_ID, TENANT_ID, export_file]) == 0
        assert cli.main(["--db", db_path, "stats", ACCOUNT_ID]) == 0
        assert cli.main(["--db", db_path, "duplicates", ACCOUNT_ID]) == 0

        output = capsys.readouterr().out
        assert "similar_name" in output

        store = SQLiteContactStore(db_path)
        try:
            assert store.contacts.count(ACCOUNT_ID) == 2
        finally:
            store.close()

    def test_merge_and_dismiss(self, db_path, export_file):
        cli.main(["--db", db_path, "import", ACCOUNT_ID, TENANT_ID, export_file])
        store = SQLiteContactStore(db_path)
        ids = [c.id for c in store.contacts.list_by_account(ACCOUNT_ID)]
        store.close()

        assert cli.main(["--db", db_path, "dismiss", ACCOUNT_ID, ids[0], ids[1]]) == 0
        assert cli.main(
            ["--db", db_path, "merge", ACCOUNT_ID, *ids, "--primary", ids[1], "--name", "Maria"]
        ) == 0

        store = SQLiteContactStore(db_path)
        try:
            remaining = store.contacts.list_by_account(ACCOUNT_ID)
            assert [c.id for c in remaining] == [ids[1]]
            assert remaining[0].name == "Maria"
        finally:
            store.close()

    def test_domain_error_returns_nonzero(self, db_path, capsys):
        assert cli.main(["--db", db_path, "merge", ACCOUNT_ID, "a", "b"]) == 1
        assert "CONTACT_NOT_FOUND" in capsys.readouterr().out

    def test_generate_config(self, tmp_path):
        path = tmp_path / "config.json"
        assert cli.main(["generate-config", "-o", str(path)]) == 0
        assert "deduplication" in json.loads(path.read_text())

    @pytest.mark.parametrize("argv", [["stats", ACCOUNT_ID], ["merge", ACCOUNT_ID, "a", "b"]])
    def test_store_closed_after_command(self, db_path, argv):
        """Test the database is closed whether the command succeeds or fails."""
        with patch.object(
            SQLiteContactStore, "close", autospec=True, side_effect=SQLiteContactStore.close
        ) as close:
            cli.main(["--db", db_path, *argv])

        assert close.call_count == 1
