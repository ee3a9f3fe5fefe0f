"""Domain-specific errors for actuctl."""

from __future__ import annotations


class ActuctlError(Exception):
    """Base error for actuctl."""

    code = "UNKNOWN"


class ConfigError(ActuctlError):
    """Raised when the settings file is unreadable or fails validation."""

    code = "CONFIG"


class CatalogValidationError(ActuctlError):
    """Raised when a device config file does not conform to schema or semantics."""

    code = "CATALOG"


class CatalogLoadError(ActuctlError):
    """Raised when reading device config sources fails."""

    code = "CATALOG"


class CatalogNotFound(ActuctlError):
    """Raised when no catalog entry matches a discovered device."""

    code = "CATALOG"


class TransportError(ActuctlError):
    """Base transport error."""

    code = "TRANSPORT"


class TransportConnectError(TransportError):
    """Raised when a manager cannot start or a raw channel cannot be opened."""


class TransportSendError(TransportError):
    """Raised when writing to a raw channel fails."""


class TransportTimeoutError(TransportError):
    """Raised when a device does not answer in time."""


class ChannelClosedError(TransportError):
    """Raised by reads once the raw channel or message channel is gone."""


class ProtocolError(ActuctlError):
    """Raised when a translator cannot encode or decode."""

    code = "PROTOCOL"

    def __init__(self, message: str, *, fatal: bool = False) -> None:
        super().__init__(message)
        self.fatal = fatal


class MalformedResponse(ProtocolError):
    """Raised when raw bytes from a device cannot be decoded."""


class DeviceNotAvailable(ActuctlError):
    """Raised when a session id is unknown or already retired."""

    code = "DEVICE_NOT_AVAILABLE"


class UnsupportedFeature(ActuctlError):
    """Raised when a feature index or kind does not fit the device."""

    code = "UNSUPPORTED_FEATURE"


class InvalidCommand(ActuctlError):
    """Raised when a command payload is out of range."""

    code = "INVALID_COMMAND"


class HandshakeError(ActuctlError):
    """Raised on version mismatch or a malformed handshake."""

    code = "HANDSHAKE"


class MessageGrammarError(ActuctlError):
    """Raised when an inbound message fails schema validation."""

    code = "MESSAGE_GRAMMAR"

    def __init__(self, message: str, *, message_id: int | None = None) -> None:
        super().__init__(message)
        self.message_id = message_id


class SessionClosed(ActuctlError):
    """Raised for requests still awaiting a reply when the session ends."""

    code = "SESSION_CLOSED"


class PingTimeout(ActuctlError):
    """Raised when a client stops sending pings within the allowed window."""

    code = "PING_TIMEOUT"


ERRORS_BY_CODE: dict[str, type[ActuctlError]] = {
    cls.code: cls
    for cls in (
        ActuctlError,
        ConfigError,
        CatalogNotFound,
        TransportError,
        ProtocolError,
        DeviceNotAvailable,
        UnsupportedFeature,
        InvalidCommand,
        HandshakeError,
        MessageGrammarError,
        SessionClosed,
        PingTimeout,
    )
}


def error_from_code(code: str, message: str) -> ActuctlError:
    return ERRORS_BY_CODE.get(code, ActuctlError)(message)
