"""Tests for the WUZAPI contact source."""

import pytest
import requests
from unittest.mock import Mock

from contactcore.errors import ContactSourceError, ErrorKind
from contactcore.importing.sources import WuzapiContactSource


def _response(payload=None, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            f"{status_code} error", response=response
        )
    else:
        response.raise_for_status.return_value = None
    return response


class TestWuzapiContactSource:
    """Test fetching and parsing the address book."""

    @pytest.fixture
    def session(self):
        return Mock()

    @pytest.fixture
    def source(self, session):
        return WuzapiContactSource(base_url="https://wuzapi.test/", timeout=5.0, session=session)

    def test_request_shape(self, source, session):
        session.get.return_value = _response({"data": {}})

        source.get_contacts("secret-token")

        session.get.assert_called_once_with(
            "https://wuzapi.test/user/contacts",
            headers={"token": "secret-token"},
            timeout=5.0,
        )

    def test_parses_found_entries(self, source, session):
        session.get.return_value = _response({
            "data": {
                "5511988880001@s.whatsapp.net": {
                    "Found": True,
                    "FullName": "",
                    "PushName": "Ana",
                    "ProfilePictureUrl": "https://example.com/a.jpg",
                },
                "5511988880002@s.whatsapp.net": {"Found": True, "BusinessName": "Padaria"},
                "5511988880003@s.whatsapp.net": {"Found": False, "FullName": "Gone"},
                "no-server-part": {"Found": True, "FullName": "Broken"},
            }
        })

        contacts = source.get_contacts("token")

        assert [c.jid for c in contacts] == [
            "5511988880001@s.whatsapp.net",
            "5511988880002@s.whatsapp.net",
        ]
        assert contacts[0].phone == "5511988880001"
        assert contacts[0].name == "Ana"
        assert contacts[0].avatar_url == "https://example.com/a.jpg"
        assert contacts[1].name == "Padaria"
        assert contacts[1].avatar_url is None

    def test_missing_data_returns_empty(self, source, session):
        session.get.return_value = _response({"success": True})
        assert source.get_contacts("token") == []

    @pytest.mark.parametrize(
        "status,message",
        [(401, "invalid or expired"), (404, "not found"), (500, "request failed")],
    )
    def test_http_errors(self, source, session, status, message):
        session.get.return_value = _response(status_code=status)

        with pytest.raises(ContactSourceError) as exc_info:
            source.get_contacts("token")

        assert message in str(exc_info.value)
        assert exc_info.value.status_code == status
        assert exc_info.value.kind == ErrorKind.EXTERNAL_SERVICE

    def test_connection_refused(self, source, session):
        session.get.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(ContactSourceError, match="unavailable"):
            source.get_contacts("token")

    def test_timeout(self, source, session):
        session.get.side_effect = requests.exceptions.ReadTimeout("slow")

        with pytest.raises(ContactSourceError, match="Timed out"):
            source.get_contacts("token")
