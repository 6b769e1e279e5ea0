"""
Tests for the POST /c/ws/{uuid}/register endpoint.

Tests cover:
- Contact creation with ISO 639-3 language
- Ignored requests without identifier
- Request errors (bad JSON, bad language, bad identifier, unknown channel)
- Backend failures
"""

from unittest.mock import MagicMock

from wschannel.backend import Backend, BackendError, get_backend
from wschannel.events import Channel
from wschannel.main import app
from wschannel.models import Contact
from wschannel.storage import SessionLocal


def register_path(channel_uuid: str) -> str:
    return f"/c/ws/{channel_uuid}/register"


def get_contacts() -> list:
    with SessionLocal() as s:
        return s.query(Contact).all()


class TestRegisterSuccess:
    """Test successful registrations."""

    def test_register_creates_contact(self, client, channel):
        response = client.post(
            register_path(channel.uuid),
            json={"urn": "5511999999999", "language": "pt-BR"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Events Handled"
        assert len(data["data"]) == 1
        assert data["data"][0]["type"] == "contact"

        contacts = get_contacts()
        assert len(contacts) == 1
        assert contacts[0].uuid == data["data"][0]["contact_uuid"]
        assert contacts[0].urn == "whatsapp:5511999999999"
        assert contacts[0].language == "por"

    def test_register_uses_first_channel_scheme(self, client, ext_channel):
        response = client.post(
            register_path(ext_channel.uuid),
            json={"urn": "user-42", "language": "en-US"},
        )

        assert response.status_code == 200
        contacts = get_contacts()
        assert contacts[0].urn == "ext:user-42"
        assert contacts[0].language == "eng"

    def test_register_twice_reuses_contact(self, client, channel):
        first = client.post(register_path(channel.uuid), json={"urn": "5511999999999", "language": "en"})
        second = client.post(register_path(channel.uuid), json={"urn": "5511999999999", "language": "de"})

        assert first.status_code == 200
        assert second.status_code == 200
        assert first.json()["data"][0]["contact_uuid"] == second.json()["data"][0]["contact_uuid"]

        contacts = get_contacts()
        assert len(contacts) == 1
        assert contacts[0].language == "deu"

    def test_response_includes_request_id_header(self, client, channel):
        response = client.post(register_path(channel.uuid), json={"urn": "5511999999999", "language": "en"})

        assert "x-request-id" in response.headers


class TestRegisterIgnored:
    """Test registrations without identifier."""

    def test_empty_urn_is_ignored(self, client, channel):
        response = client.post(register_path(channel.uuid), json={"urn": "", "language": "en"})

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Ignored"
        assert data["data"] == [{"type": "info", "info": "Ignoring request, no identifier"}]
        assert get_contacts() == []

    def test_missing_urn_is_ignored(self, client, channel):
        response = client.post(register_path(channel.uuid), json={"language": "en"})

        assert response.status_code == 200
        assert response.json()["message"] == "Ignored"

    def test_empty_urn_makes_no_contact_call(self, client):
        backend = MagicMock(spec=Backend)
        backend.get_channel.return_value = Channel(
            uuid="c1", channel_type="WS", address="+1555", schemes=["ext"],
        )
        app.dependency_overrides[get_backend] = lambda: backend

        response = client.post(register_path("c1"), json={"urn": "", "language": "en"})

        assert response.status_code == 200
        backend.get_contact.assert_not_called()
        backend.add_language_to_contact.assert_not_called()


class TestRegisterErrors:
    """Test request errors (400) and backend failures (500)."""

    def test_invalid_json(self, client, channel):
        response = client.post(
            register_path(channel.uuid),
            content="not valid json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        data = response.json()
        assert data["message"] == "Error"
        assert data["data"][0]["type"] == "error"

    def test_invalid_language_creates_no_contact(self, client, channel):
        response = client.post(
            register_path(channel.uuid),
            json={"urn": "5511999999999", "language": "not a language!"},
        )

        assert response.status_code == 400
        assert get_contacts() == []

    def test_empty_language_is_error(self, client, channel):
        response = client.post(register_path(channel.uuid), json={"urn": "5511999999999", "language": ""})

        assert response.status_code == 400

    def test_invalid_identifier_for_scheme(self, client, channel):
        # whatsapp identifiers are digits only
        response = client.post(register_path(channel.uuid), json={"urn": "not-a-number", "language": "en"})

        assert response.status_code == 400
        assert get_contacts() == []

    def test_unknown_channel(self, client):
        response = client.post(
            register_path("00000000-0000-0000-0000-000000000000"),
            json={"urn": "5511999999999", "language": "en"},
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Error"

    def test_backend_failure(self, client):
        backend = MagicMock(spec=Backend)
        backend.get_channel.return_value = Channel(
            uuid="c1", channel_type="WS", address="+1555", schemes=["ext"],
        )
        backend.get_contact.side_effect = BackendError("database unavailable")
        app.dependency_overrides[get_backend] = lambda: backend

        response = client.post(register_path("c1"), json={"urn": "user-1", "language": "en"})

        assert response.status_code == 500
        data = response.json()
        assert data["message"] == "Error"
        assert data["data"] == [{"type": "error", "error": "database unavailable"}]
