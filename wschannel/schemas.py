"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for the provider's webhook payloads
- The provider's outbound send payload
- Response models for the uniform data response
"""

from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field


# =============================================================================
# Pydantic Request Models
# =============================================================================

class UserPayload(BaseModel):
    """Body of POST /register."""
    urn: str = Field(default="", description="Provider-scoped user identifier")
    language: str = Field(default="", description="BCP-47 language tag, e.g. pt-BR")


class MOMessage(BaseModel):
    """
    A message entry of a receive batch.

    Only id is required; the external id is what deduplication and
    acknowledgement matching rely on, so it must be non-empty. The provider
    may send null for any other field, and fields we don't read are
    dropped.
    """
    id: str = Field(..., min_length=1, description="Provider message id")
    body: Optional[str] = Field(default=None, description="Text, or the media payload for media types")
    from_me: Optional[bool] = Field(default=None, alias="fromMe", description="Echo of our own outbound traffic")
    author: Optional[str] = Field(default=None, description="Sender, e.g. 5511999999999@c.us")
    time: Optional[int] = Field(default=None, description="Epoch seconds")
    chat_id: Optional[str] = Field(default=None, alias="chatId")
    type: Optional[str] = Field(default=None, description="chat, image, ...")
    sender_name: Optional[str] = Field(default=None, alias="senderName")
    caption: Optional[str] = Field(default=None)

    model_config = {"populate_by_name": True}


class AckItem(BaseModel):
    """A delivery acknowledgement entry of a receive batch."""
    id: str = Field(..., description="Provider message id being acknowledged")
    status: Optional[str] = Field(default=None, description="sent, delivered, ...")

    model_config = {"populate_by_name": True}


class MOPayload(BaseModel):
    """
    Body of POST /receive.

    A batch may carry messages, acknowledgements or both.
    """
    instance_id: str = Field(default="", alias="instanceId")
    messages: list[MOMessage] = Field(default_factory=list)
    ack: list[AckItem] = Field(default_factory=list)

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [
                {
                    "instanceId": "42",
                    "messages": [
                        {
                            "id": "false_5511999999999@c.us_3EB0",
                            "body": "Hello",
                            "fromMe": False,
                            "author": "5511999999999@c.us",
                            "time": 1700000000,
                            "type": "chat",
                            "senderName": "Ana",
                        }
                    ],
                    "ack": [{"id": "ext-1", "status": "delivered"}],
                }
            ]
        },
    }


# =============================================================================
# Provider Send Payload
# =============================================================================

class SendPayload(BaseModel):
    """JSON body POSTed to the provider for each message part."""
    id: str = Field(..., serialization_alias="ID")
    text: str = Field(..., serialization_alias="Text")
    to: str = Field(..., serialization_alias="To")
    to_no_plus: str = Field(..., serialization_alias="ToNoPlus")
    from_: str = Field(..., serialization_alias="From")
    from_no_plus: str = Field(..., serialization_alias="FromNoPlus")
    channel: str = Field(..., serialization_alias="Channel")
    metadata: Optional[dict[str, list[str]]] = Field(default=None, serialization_alias="Metadata")
    attachments: Optional[list[str]] = Field(default=None, serialization_alias="Attachments")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


# =============================================================================
# Pydantic Response Models
# =============================================================================

class MsgReceiveData(BaseModel):
    type: Literal["msg"] = "msg"
    channel_uuid: str
    msg_uuid: str
    text: str
    urn: str
    external_id: Optional[str] = None
    received_on: Optional[datetime] = None
    attachments: list[str] = Field(default_factory=list)


class StatusData(BaseModel):
    type: Literal["status"] = "status"
    channel_uuid: str
    status: str
    msg_id: Optional[int] = None
    external_id: Optional[str] = None


class InfoData(BaseModel):
    type: Literal["info"] = "info"
    info: str


class ErrorData(BaseModel):
    type: Literal["error"] = "error"
    error: str


class ContactRegisteredData(BaseModel):
    type: Literal["contact"] = "contact"
    contact_uuid: str


EventData = Union[MsgReceiveData, StatusData, InfoData, ErrorData, ContactRegisteredData]


class DataResponse(BaseModel):
    """Uniform response body for every channel request."""
    message: str = Field(..., description="Summary label, e.g. Events Handled")
    data: list[EventData] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
