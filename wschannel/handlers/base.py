"""
Channel handler base class and the handler registry.

A handler declares the webhook routes it serves and knows how to send an
outgoing message for its channel type. Handlers are constructed and added to
a HandlerRegistry by the application at startup; the app then mounts every
route under /c/{channel_type}/{channel_uuid}/{action}.
"""

import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Iterator, NamedTuple, Type, TypeVar

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from wschannel.backend import Backend
from wschannel.events import Channel, Msg, MsgStatus

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

HandlerFunc = Callable[[Channel, Request, Backend], Awaitable[JSONResponse]]


class Route(NamedTuple):
    method: str
    action: str
    func: HandlerFunc


async def decode_and_validate_json(request: Request, model: Type[ModelT]) -> ModelT:
    """
    Parse and validate a JSON request body.

    Raises:
        pydantic.ValidationError: on invalid JSON or a body not matching model
    """
    raw_body = await request.body()
    logger.debug(f"Request body size: {len(raw_body)} bytes")
    return model.model_validate_json(raw_body)


class BaseHandler(ABC):

    def __init__(self, channel_type: str, name: str, http_client: httpx.Client):
        self.channel_type = channel_type.upper()
        self.name = name
        self.http_client = http_client

    @property
    def route_prefix(self) -> str:
        return self.channel_type.lower()

    @abstractmethod
    def routes(self) -> list[Route]:
        """Webhook routes served for each channel of this type."""

    @abstractmethod
    def send_msg(self, msg: Msg) -> MsgStatus:
        """
        Deliver an outgoing message.

        Transport failures are reported through the returned status and its
        channel logs, never raised.
        """


class HandlerRegistry:
    """Handlers by channel type."""

    def __init__(self):
        self._handlers: dict[str, BaseHandler] = {}

    def register(self, handler: BaseHandler) -> BaseHandler:
        if handler.channel_type in self._handlers:
            raise ValueError(f"handler already registered for channel type {handler.channel_type}")
        self._handlers[handler.channel_type] = handler
        logger.info(f"Registered {handler.name} handler for channel type {handler.channel_type}")
        return handler

    def get(self, channel_type: str) -> BaseHandler:
        try:
            return self._handlers[channel_type.upper()]
        except KeyError:
            raise LookupError(f"no handler registered for channel type {channel_type}") from None

    def __iter__(self) -> Iterator[BaseHandler]:
        return iter(self._handlers.values())

    def __len__(self) -> int:
        return len(self._handlers)
