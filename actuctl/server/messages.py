"""Wire message grammar: JSON encoding, schema validation and reply builders."""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Any

from jsonschema import ValidationError

from actuctl.core.errors import ActuctlError, MessageGrammarError
from actuctl.core.model import DeviceInfo, SensorReading
from actuctl.core.yamlio import load_schema, schema_validator

PROTOCOL_VERSION_MIN = 1
PROTOCOL_VERSION_MAX = 2

# Client message type -> first protocol version that defines it.
CLIENT_MESSAGES: dict[str, int] = {
    "Handshake": 1,
    "RequestDeviceList": 1,
    "CommandScalar": 1,
    "SensorRead": 1,
    "StopDevice": 1,
    "StopAll": 1,
    "Ping": 1,
    "Disconnect": 1,
    "CommandRotate": 2,
    "CommandLinear": 2,
    "StartScanning": 2,
    "StopScanning": 2,
}

Message = dict[str, Any]


def encode(message: Message) -> bytes:
    return json.dumps(message, separators=(",", ":")).encode("utf-8")


def parse(data: bytes) -> Message:
    """Decode a raw message far enough to know its id.

    Raises MessageGrammarError without a message id when the payload is not a
    JSON object with an integer ``id``; callers treat that as session-level.
    """
    try:
        message = json.loads(data)
    except (UnicodeDecodeError, ValueError) as exc:
        raise MessageGrammarError(f"Message is not valid JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise MessageGrammarError("Message must be a JSON object")
    message_id = message.get("id")
    if isinstance(message_id, bool) or not isinstance(message_id, int):
        raise MessageGrammarError("Message is missing an integer 'id'")
    return message


@lru_cache(maxsize=None)
def _validator(message_type: str) -> Any:
    schema = load_schema("messages.schema.json")
    return schema_validator(
        {
            "$schema": schema["$schema"],
            "$defs": schema["$defs"],
            "$ref": f"#/$defs/{message_type}",
        }
    )


def validate(message: Message, version: int) -> str:
    """Check a parsed message against the grammar of ``version``; return its type."""
    message_id = message["id"]
    message_type = message.get("type")
    if not isinstance(message_type, str) or message_type not in CLIENT_MESSAGES:
        raise MessageGrammarError(f"Unknown message type {message_type!r}", message_id=message_id)
    if CLIENT_MESSAGES[message_type] > version:
        raise MessageGrammarError(
            f"{message_type} requires protocol version {CLIENT_MESSAGES[message_type]}, "
            f"session negotiated {version}",
            message_id=message_id,
        )
    try:
        _validator(message_type).validate(message)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise MessageGrammarError(
            f"Invalid {message_type}{where}: {exc.message}", message_id=message_id
        ) from exc
    return message_type


def ok(message_id: int) -> Message:
    return {"type": "Ok", "id": message_id}


def error(exc: ActuctlError, message_id: int | None = None) -> Message:
    message: Message = {"type": "Error", "code": exc.code, "message": str(exc)}
    if message_id is not None:
        message["id"] = message_id
    return message


def handshake_ack(message_id: int, version: int, server_name: str, max_ping_time_s: float) -> Message:
    return {
        "type": "HandshakeAck",
        "id": message_id,
        "version": version,
        "server_name": server_name,
        "max_ping_time": int(max_ping_time_s * 1000),
    }


def device_list(message_id: int, devices: list[DeviceInfo]) -> Message:
    return {"type": "DeviceList", "id": message_id, "devices": [d.describe() for d in devices]}


def device_added(device: DeviceInfo) -> Message:
    return {"type": "DeviceAdded", "device": device.describe()}


def device_removed(session_id: int) -> Message:
    return {"type": "DeviceRemoved", "session": session_id}


def _reading_fields(reading: SensorReading) -> Message:
    return {
        "session": reading.session_id,
        "feature": reading.feature_index,
        "value": reading.value,
        "timestamp": reading.timestamp,
    }


def sensor_reading(message_id: int, reading: SensorReading) -> Message:
    return {"type": "SensorReading", "id": message_id, **_reading_fields(reading)}


def sensor_notification(reading: SensorReading) -> Message:
    return {"type": "SensorNotification", **_reading_fields(reading)}
