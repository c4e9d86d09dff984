"""Error taxonomy for relay sessions.

Each error carries the WebSocket close code a session uses when the error
ends the call. None of these ever leave the session that raised them.
"""

from __future__ import annotations


class RelayError(Exception):
    close_code: int = 1011
    default_detail: str = "Relay error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class ProtocolError(RelayError):
    """Inbound frame is malformed or lacks a required field."""

    close_code = 1007
    default_detail = "Malformed message."

    def __init__(self, detail: str | None = None, *, event: str | None = None) -> None:
        super().__init__(detail)
        self.event = event


class ValidationError(RelayError):
    """Payload is not well-formed base64. Dropped at the frame level."""

    close_code = 1007
    default_detail = "Invalid base64 payload."


class TransportError(RelayError):
    close_code = 1011
    default_detail = "Transport failure."


class UpstreamError(RelayError):
    close_code = 1011
    default_detail = "Provider session could not be established."


class IssuerError(UpstreamError):
    default_detail = "Failed to get signed URL."


class ProviderConnectError(UpstreamError):
    default_detail = "Provider handshake failed."
