"""
Command Decoder.

Turns a raw MQTT payload into a `Command`. Example payloads:

    {"Type": "GPIOSetMode", "GPIO": 17, "Mode": "Output"}
    {"Type": "GPIOLevel", "GPIO": 17, "Level": "High"}

Unknown extra fields are ignored, missing (or null) fields take their zero
value. Field names are matched exactly first and case-insensitively as a
fallback, so `{"type": ..., "gpio": ...}` is accepted too.
Decoding is pure: it never touches the pin registry.
"""
import json
import logging
from typing import Any, Dict, Union

from hub_gpio_ctrl.server.errors import DecodeError
from hub_gpio_ctrl.server.models import Command, CommandKind, PinLevel, PinMode

logger = logging.getLogger(__name__)

Payload = Union[bytes, bytearray, str]


def _lookup(message: Dict[str, Any], name: str) -> Any:
    if name in message:
        return message[name]
    folded = name.casefold()
    for key, value in message.items():
        if key.casefold() == folded:
            return value
    return None


def _string_field(message: Dict[str, Any], name: str) -> str:
    value = _lookup(message, name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise DecodeError(f"Field '{name}' must be a string, got {type(value).__name__}")
    return value


def _int_field(message: Dict[str, Any], name: str) -> int:
    value = _lookup(message, name)
    if value is None:
        return 0
    # bool is a subclass of int, but `true` is not a pin number
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"Field '{name}' must be an integer, got {type(value).__name__}")
    return value


def decode_command(payload: Payload) -> Command:
    """
    Decodes one payload into a `Command`.

    Raises `DecodeError` when the payload is not a JSON object or one of
    the known fields has the wrong JSON type. An unrecognized `Type` is
    not a decode failure; it yields a command of kind UNKNOWN.
    """
    if not isinstance(payload, (bytes, bytearray, str)):
        raise DecodeError(f"Unsupported payload type {type(payload).__name__}")

    try:
        message = json.loads(payload)
    except ValueError as e: # JSONDecodeError and UnicodeDecodeError
        raise DecodeError(f"Invalid JSON: {e}") from e

    if not isinstance(message, dict):
        raise DecodeError(f"Expected a JSON object, got {type(message).__name__}")

    type_name = _string_field(message, "Type")
    command = Command(
        kind=CommandKind.from_wire(type_name),
        pin=_int_field(message, "GPIO"),
        mode=PinMode.from_wire(_string_field(message, "Mode")),
        level=PinLevel.from_wire(_string_field(message, "Level")),
        type_name=type_name,
    )
    logger.debug(f"Decoded {command}")
    return command
