"""
Outgoing message delivery.

The host decides when to deliver; these functions pick the handler for a
message's channel type, send, and write the resulting status (with its
channel logs) through the backend.
"""

import logging
from typing import Optional

from wschannel.backend import Backend
from wschannel.config import settings
from wschannel.events import Msg, MsgStatus
from wschannel.handlers.base import HandlerRegistry
from wschannel.metrics import record_send_outcome

logger = logging.getLogger(__name__)


def send(backend: Backend, registry: HandlerRegistry, msg: Msg) -> MsgStatus:
    """
    Send one outgoing message and record its status.

    Raises:
        LookupError: if no handler serves the message's channel type
        BackendError: if the status cannot be written
    """
    handler = registry.get(msg.channel.channel_type)
    msg_status = handler.send_msg(msg)
    backend.write_msg_status(msg_status)

    record_send_outcome(handler.channel_type, msg_status.status.name.lower())
    return msg_status


def send_pending(backend: Backend, registry: HandlerRegistry, limit: Optional[int] = None) -> list[MsgStatus]:
    """Send pending outgoing messages, oldest first."""
    msgs = backend.get_pending_msgs(limit or settings.PENDING_BATCH_SIZE)
    logger.info(f"Sending {len(msgs)} pending messages")

    statuses = []
    for msg in msgs:
        try:
            statuses.append(send(backend, registry, msg))
        except LookupError as e:
            logger.error(f"Unable to send message {msg.id}: {e}")
    return statuses
