"""
WebSocket (WS) channel handler.

The provider bridges chat clients over websockets and talks to us over
HTTP/JSON webhooks:

- POST register: a client announces a user identifier and language
- POST receive: a batch of new messages and delivery acknowledgements

Outgoing messages are POSTed as JSON to the channel's send URL.
"""

import logging
from datetime import datetime, timezone
from typing import Iterator, Optional, Tuple

import httpx
from fastapi import Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from wschannel.backend import Backend, BackendError, MsgNotFoundError
from wschannel.events import Channel, ChannelLog, Msg, MsgStatus, MsgStatusValue
from wschannel.handlers.base import BaseHandler, Route, decode_and_validate_json
from wschannel.responses import (
    EVENTS_HANDLED,
    contact_registered_data,
    info_data,
    msg_receive_data,
    status_data,
    write_and_log_backend_error,
    write_and_log_request_error,
    write_and_log_request_ignored,
    write_data_response,
)
from wschannel.schemas import MOMessage, MOPayload, SendPayload, UserPayload
from wschannel.urns import URN, iso3_language
from wschannel.utils import channel_log_from_exchange, make_http_request, strip_plus

logger = logging.getLogger(__name__)

CONFIG_SEND_URL = "send_url"

IMAGE_TYPE = "image"

# Matched exactly; anything else the provider reports is treated as queued
ACK_STATUSES = {
    "sent": MsgStatusValue.SENT,
    "delivered": MsgStatusValue.DELIVERED,
}


class WebSocketHandler(BaseHandler):

    def __init__(self, http_client: httpx.Client):
        super().__init__("WS", "WebSocket", http_client)

    def routes(self) -> list[Route]:
        return [
            Route("POST", "register", self.register_user),
            Route("POST", "receive", self.receive_message),
        ]

    # =========================================================================
    # Inbound
    # =========================================================================

    async def register_user(self, channel: Channel, request: Request, backend: Backend) -> JSONResponse:
        """Get or create the contact for a user identifier and set its language."""
        try:
            payload = await decode_and_validate_json(request, UserPayload)
        except ValidationError as e:
            return write_and_log_request_error(request, channel, e)

        if not payload.urn:
            return write_and_log_request_ignored(request, channel, "Ignoring request, no identifier")

        if not channel.schemes:
            return write_and_log_backend_error(request, channel, BackendError("channel has no URN schemes"))

        # Resolve everything we can before touching the backend
        try:
            urn = URN.from_parts(channel.schemes[0], payload.urn)
            language = iso3_language(payload.language)
        except ValueError as e:
            return write_and_log_request_error(request, channel, e)

        try:
            contact = backend.get_contact(channel, urn)
            contact = backend.add_language_to_contact(channel, language, contact)
        except BackendError as e:
            return write_and_log_backend_error(request, channel, e)

        logger.info(f"Contact {contact.uuid} registered with language {language}")
        return write_data_response(
            request, channel, status.HTTP_200_OK, EVENTS_HANDLED, [contact_registered_data(contact.uuid)],
        )

    async def receive_message(self, channel: Channel, request: Request, backend: Backend) -> JSONResponse:
        """Persist new messages and apply delivery acknowledgements."""
        try:
            payload = await decode_and_validate_json(request, MOPayload)
        except ValidationError as e:
            return write_and_log_request_error(request, channel, e)

        if not payload.instance_id:
            return write_and_log_request_ignored(request, channel, "Ignoring request, no message")

        # Normalize the whole batch first so a malformed entry persists nothing
        try:
            incoming = [
                self._normalize_message(channel, message, backend)
                for message in payload.messages
                if not message.from_me
            ]
        except ValueError as e:
            return write_and_log_request_error(request, channel, e)

        data = []
        try:
            for msg in incoming:
                msg = backend.check_external_id_seen(msg)
                backend.write_msg(msg)
                backend.write_external_id_seen(msg)
                data.append(msg_receive_data(msg))

            for ack in payload.ack:
                msg_status = backend.new_msg_status_for_external_id(
                    channel, ack.id, ACK_STATUSES.get(ack.status or "", MsgStatusValue.QUEUED),
                )
                try:
                    backend.write_msg_status(msg_status)
                except MsgNotFoundError:
                    logger.info(f"Ack for unknown message {ack.id} ignored")
                    data.append(info_data("message not found, ignored"))
                    continue
                data.append(status_data(msg_status))
        except BackendError as e:
            return write_and_log_backend_error(request, channel, e, data)

        logger.info(f"Handled {len(incoming)} messages and {len(payload.ack)} acks on channel {channel.uuid}")
        return write_data_response(request, channel, status.HTTP_200_OK, EVENTS_HANDLED, data)

    def _normalize_message(self, channel: Channel, message: MOMessage, backend: Backend) -> Msg:
        """
        Turn a provider message into an incoming message.

        Raises:
            ValueError: if the sender or timestamp cannot be interpreted
        """
        try:
            received_on = datetime.fromtimestamp(message.time or 0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as e:
            raise ValueError(f"invalid time for message {message.id}: {message.time}") from e

        # 5511999999999@c.us -> 5511999999999
        author = message.author or message.chat_id or ""
        phone, _, _ = author.partition("@")
        urn = URN.whatsapp(phone)

        text = message.body or ""
        attachments = []
        if message.type == IMAGE_TYPE:
            text = message.caption or ""
            attachments.append(message.body or "")

        msg = backend.new_incoming_msg(
            channel,
            urn,
            text,
            external_id=message.id,
            received_on=received_on,
            contact_name=(message.sender_name or "").strip(),
        )
        msg.attachments.extend(attachments)
        return msg

    # =========================================================================
    # Outbound
    # =========================================================================

    def send_msg(self, msg: Msg) -> MsgStatus:
        address = msg.channel.address
        api_url = msg.channel.config_for_key(CONFIG_SEND_URL) or address

        payload = SendPayload(
            id=str(msg.id),
            text=msg.text,
            to=msg.urn.path,
            to_no_plus=strip_plus(msg.urn.path),
            from_=address,
            from_no_plus=strip_plus(address),
            channel=strip_plus(address),
            metadata={"quick_replies": list(msg.quick_replies)} if msg.quick_replies else None,
            attachments=list(msg.attachments) if msg.attachments else None,
        )

        msg_status = MsgStatus(channel_uuid=msg.channel.uuid, msg_id=msg.id, status=MsgStatusValue.ERRORED)

        sent_parts = 0
        has_error = False
        for part in self._msg_parts(msg, payload):
            external_id, log, err = self._send_msg_part(msg, api_url, part)
            msg_status.add_log(log)
            if err is not None:
                has_error = True
                break
            sent_parts += 1
            if external_id:
                msg_status.set_external_id(external_id)

        if sent_parts and not has_error:
            msg_status.set_status(MsgStatusValue.WIRED)

        logger.info(f"Message {msg.id} send finished with status {msg_status.status.name.lower()}")
        return msg_status

    def _msg_parts(self, msg: Msg, payload: SendPayload) -> Iterator[SendPayload]:
        """
        Payloads to POST for a message, in order.

        Attachments travel in the same payload as the text, so a message
        yields a single part unless it is empty.
        """
        if msg.text or msg.attachments:
            yield payload

    def _send_msg_part(
        self, msg: Msg, api_url: str, part: SendPayload,
    ) -> Tuple[Optional[str], ChannelLog, Optional[Exception]]:
        try:
            body = part.to_json()
        except ValueError as e:
            log = ChannelLog(
                description="unable to build JSON body",
                channel_uuid=msg.channel.uuid,
                msg_id=msg.id,
                error=str(e),
            )
            return None, log, e

        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        try:
            request = self.http_client.build_request("POST", api_url, content=body, headers=headers)
        except httpx.InvalidURL as e:
            log = ChannelLog(
                description="Message Sent",
                channel_uuid=msg.channel.uuid,
                msg_id=msg.id,
                method="POST",
                url=api_url,
                request=body,
                error=f"Message Send Error: {e}",
            )
            return None, log, e

        response, err, elapsed = make_http_request(self.http_client, request)
        log = channel_log_from_exchange(
            "Message Sent",
            msg.channel.uuid,
            msg.id,
            request,
            response,
            elapsed,
            error=f"Message Send Error: {err}" if err else None,
        )
        if err is not None:
            return None, log, err

        return self._external_id_from(response), log, None

    @staticmethod
    def _external_id_from(response: httpx.Response) -> Optional[str]:
        """The provider's id for the sent message, when it returns one."""
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict) and body.get("id") not in (None, ""):
            return str(body["id"])
        return None
