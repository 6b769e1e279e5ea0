"""
Canonical gateway objects passed between handlers and the backend.

These are plain dataclasses; persistence lives in models.py / storage.py.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from wschannel.urns import URN


class MsgStatusValue(str, Enum):
    """Message lifecycle states, stored as single letters."""
    PENDING = "P"
    QUEUED = "Q"
    WIRED = "W"
    SENT = "S"
    DELIVERED = "D"
    ERRORED = "E"
    FAILED = "F"


class MsgDirection(str, Enum):
    INCOMING = "I"
    OUTGOING = "O"


@dataclass
class Channel:
    uuid: str
    channel_type: str
    address: str
    schemes: list[str]
    name: str = ""
    config: dict = field(default_factory=dict)

    def config_for_key(self, key: str, default=None):
        return self.config.get(key, default)


@dataclass
class Contact:
    uuid: str
    urn: URN
    name: str = ""
    language: Optional[str] = None


@dataclass
class Msg:
    """An incoming or outgoing message."""
    channel: Channel
    urn: URN
    text: str
    uuid: str = field(default_factory=lambda: str(uuid.uuid4()))
    id: Optional[int] = None
    direction: MsgDirection = MsgDirection.INCOMING
    external_id: Optional[str] = None
    received_on: Optional[datetime] = None
    contact_name: str = ""
    contact_uuid: Optional[str] = None
    attachments: list[str] = field(default_factory=list)
    quick_replies: list[str] = field(default_factory=list)
    # Set when the external id was seen before; the write becomes a no-op
    already_written: bool = False


@dataclass
class ChannelLog:
    """One HTTP exchange with the provider, or a failure to start one."""
    description: str
    channel_uuid: str
    msg_id: Optional[int] = None
    method: str = ""
    url: str = ""
    status_code: Optional[int] = None
    request: str = ""
    response: str = ""
    elapsed: timedelta = timedelta(0)
    error: str = ""
    created_on: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class MsgStatus:
    channel_uuid: str
    status: MsgStatusValue
    msg_id: Optional[int] = None
    external_id: Optional[str] = None
    logs: list[ChannelLog] = field(default_factory=list)

    def set_status(self, status: MsgStatusValue) -> None:
        self.status = status

    def set_external_id(self, external_id: Optional[str]) -> None:
        self.external_id = external_id

    def add_log(self, log: ChannelLog) -> None:
        self.logs.append(log)
