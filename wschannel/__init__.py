"""
WebSocket channel handler for the messaging gateway.

Receives provider webhooks (messages, acknowledgements, contact
registration) and delivers outbound messages over HTTP/JSON.
"""

__version__ = "1.0.0"
