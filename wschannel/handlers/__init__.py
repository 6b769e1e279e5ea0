from .base import BaseHandler, HandlerRegistry, Route
from .websocket import WebSocketHandler

__all__ = [
    "BaseHandler",
    "HandlerRegistry",
    "Route",
    "WebSocketHandler",
]
