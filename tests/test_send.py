"""
Tests for outgoing message delivery.

Tests cover:
- Provider payload (addresses, quick replies, attachments, headers)
- Status promotion to wired only on a successful POST
- Channel logs for every attempt
- The delivery loop writing statuses and logs through the backend
"""

import json

import httpx
import pytest

from conftest import SEND_URL, WS_ADDRESS, RecordingTransport
from wschannel import sender, storage
from wschannel.backend import SQLBackend
from wschannel.events import Channel, Msg, MsgDirection, MsgStatusValue
from wschannel.handlers import HandlerRegistry, WebSocketHandler
from wschannel.models import Message
from wschannel.storage import SessionLocal
from wschannel.urns import URN


def make_channel(**kwargs) -> Channel:
    defaults = {
        "uuid": "8eb23e93-5ecb-45ba-b726-3b064e0c56ab",
        "channel_type": "WS",
        "address": WS_ADDRESS,
        "schemes": ["whatsapp"],
        "config": {"send_url": SEND_URL},
    }
    defaults.update(kwargs)
    return Channel(**defaults)


def make_msg(**kwargs) -> Msg:
    defaults = {
        "channel": make_channel(),
        "urn": URN.from_parts("tel", "+5511999999999"),
        "text": "Hello",
        "id": 10,
        "direction": MsgDirection.OUTGOING,
    }
    defaults.update(kwargs)
    return Msg(**defaults)


def make_handler(transport: httpx.MockTransport) -> WebSocketHandler:
    return WebSocketHandler(httpx.Client(transport=transport))


class TestSendPayload:
    """Test the JSON sent to the provider."""

    def test_text_message_payload(self, provider):
        make_handler(provider).send_msg(make_msg())

        assert len(provider.requests) == 1
        request = provider.requests[0]
        assert request.method == "POST"
        assert str(request.url) == SEND_URL
        assert request.headers["content-type"] == "application/json"
        assert request.headers["accept"] == "application/json"
        assert json.loads(request.content) == {
            "ID": "10",
            "Text": "Hello",
            "To": "+5511999999999",
            "ToNoPlus": "5511999999999",
            "From": "+15551234567",
            "FromNoPlus": "15551234567",
            "Channel": "15551234567",
        }

    def test_quick_replies_in_metadata(self, provider):
        make_handler(provider).send_msg(make_msg(quick_replies=["Yes", "No"]))

        body = json.loads(provider.requests[0].content)
        assert body["Metadata"] == {"quick_replies": ["Yes", "No"]}

    def test_attachments_in_same_payload(self, provider):
        attachments = ["image/jpeg:https://cdn.example.com/a.jpg", "image/jpeg:https://cdn.example.com/b.jpg"]
        make_handler(provider).send_msg(make_msg(attachments=attachments))

        assert len(provider.requests) == 1
        assert json.loads(provider.requests[0].content)["Attachments"] == attachments

    def test_send_url_falls_back_to_address(self, provider):
        channel = make_channel(address="https://provider.example.com/fallback", config={})
        make_handler(provider).send_msg(make_msg(channel=channel))

        assert str(provider.requests[0].url) == "https://provider.example.com/fallback"


class TestSendStatus:
    """Test status assignment."""

    def test_success_is_wired(self, provider):
        status = make_handler(provider).send_msg(make_msg())

        assert status.status == MsgStatusValue.WIRED
        assert status.msg_id == 10
        assert status.external_id == "ext-1"
        assert len(status.logs) == 1
        assert status.logs[0].description == "Message Sent"
        assert status.logs[0].status_code == 200
        assert status.logs[0].error == ""

    def test_response_without_id(self):
        provider = RecordingTransport(lambda request: httpx.Response(200, text="ok"))

        status = make_handler(provider).send_msg(make_msg())

        assert status.status == MsgStatusValue.WIRED
        assert status.external_id is None

    def test_server_error_stays_errored(self):
        provider = RecordingTransport(lambda request: httpx.Response(500, text="oops"))

        status = make_handler(provider).send_msg(make_msg())

        assert len(provider.requests) == 1
        assert status.status == MsgStatusValue.ERRORED
        assert status.logs[0].status_code == 500
        assert status.logs[0].error.startswith("Message Send Error")

    def test_transport_error_stays_errored(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        status = make_handler(RecordingTransport(refuse)).send_msg(make_msg())

        assert status.status == MsgStatusValue.ERRORED
        assert len(status.logs) == 1
        assert status.logs[0].status_code is None
        assert "connection refused" in status.logs[0].error

    def test_empty_message_sends_nothing(self, provider):
        status = make_handler(provider).send_msg(make_msg(text=""))

        assert provider.requests == []
        assert status.status == MsgStatusValue.ERRORED
        assert status.logs == []

    def test_attachment_only_message_is_sent(self, provider):
        status = make_handler(provider).send_msg(make_msg(text="", attachments=["https://cdn.example.com/a.jpg"]))

        assert len(provider.requests) == 1
        assert status.status == MsgStatusValue.WIRED


class TestDeliveryLoop:
    """Test sending through the registry with statuses written to the database."""

    @pytest.fixture
    def queued(self, db, channel):
        return storage.create_outgoing_msg(
            db, channel.uuid, "whatsapp:5511999999999", "Hello", quick_replies=["Yes"],
        )

    def test_send_pending_writes_status_and_logs(self, db, registry, provider, queued):
        with SessionLocal() as s:
            statuses = sender.send_pending(SQLBackend(s), registry)

        assert len(statuses) == 1
        assert statuses[0].status == MsgStatusValue.WIRED
        assert len(provider.requests) == 1
        assert json.loads(provider.requests[0].content)["To"] == "5511999999999"

        with SessionLocal() as s:
            row = s.query(Message).filter(Message.id == queued.id).one()
            logs = storage.get_channel_logs(s, queued.id)
        assert row.status == "W"
        assert row.external_id == "ext-1"
        assert len(logs) == 1
        assert logs[0].url == SEND_URL
        assert logs[0].status_code == 200

    def test_errored_messages_are_not_resent(self, db, queued):
        provider = RecordingTransport(lambda request: httpx.Response(503))
        registry = HandlerRegistry()
        registry.register(WebSocketHandler(httpx.Client(transport=provider)))

        with SessionLocal() as s:
            sender.send_pending(SQLBackend(s), registry)
        with SessionLocal() as s:
            assert sender.send_pending(SQLBackend(s), registry) == []

        assert len(provider.requests) == 1

    def test_ack_after_send(self, client, registry, queued, channel):
        with SessionLocal() as s:
            sender.send_pending(SQLBackend(s), registry)

        response = client.post(
            f"/c/ws/{channel.uuid}/receive",
            json={"instanceId": "42", "ack": [{"id": "ext-1", "status": "delivered"}]},
        )

        assert response.json()["data"][0]["msg_id"] == queued.id
        with SessionLocal() as s:
            assert s.query(Message).filter(Message.id == queued.id).one().status == "D"

    def test_unrecognized_ack_does_not_resend(self, client, registry, provider, queued, channel):
        with SessionLocal() as s:
            sender.send_pending(SQLBackend(s), registry)

        response = client.post(
            f"/c/ws/{channel.uuid}/receive",
            json={"instanceId": "42", "ack": [{"id": "ext-1", "status": "viewed"}]},
        )
        assert response.json()["data"][0]["status"] == "Q"

        with SessionLocal() as s:
            assert sender.send_pending(SQLBackend(s), registry) == []

        assert len(provider.requests) == 1

    def test_unregistered_channel_type(self, db):
        channel = storage.create_channel(db, "TG", "+1555", ["telegram"])
        storage.create_outgoing_msg(db, channel.uuid, "telegram:12345", "Hello")

        with SessionLocal() as s:
            assert sender.send_pending(SQLBackend(s), HandlerRegistry()) == []
