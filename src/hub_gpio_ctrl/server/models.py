"""
Data Models for Commands, Pin State and MQTT Payloads.

Wire strings are decoded into these closed enums at the boundary,
so the dispatcher never compares raw strings.
"""
from dataclasses import dataclass, field, asdict
from enum import Enum
import json
import time
from typing import Any, Optional


class CommandKind(str, Enum):
    SET_MODE = "GPIOSetMode"
    SET_LEVEL = "GPIOLevel"
    UNKNOWN = "Unknown"

    @classmethod
    def from_wire(cls, value: str) -> "CommandKind":
        if value in (cls.SET_MODE.value, cls.SET_LEVEL.value):
            return cls(value)
        return cls.UNKNOWN


class PinMode(str, Enum):
    OUTPUT = "Output"
    INPUT = "Input"
    UNSPECIFIED = "Unspecified"

    @classmethod
    def from_wire(cls, value: str) -> "PinMode":
        if value in (cls.OUTPUT.value, cls.INPUT.value):
            return cls(value)
        return cls.UNSPECIFIED


class PinLevel(str, Enum):
    HIGH = "High"
    LOW = "Low"
    UNSPECIFIED = "Unspecified"

    @classmethod
    def from_wire(cls, value: str) -> "PinLevel":
        if value in (cls.HIGH.value, cls.LOW.value):
            return cls(value)
        return cls.UNSPECIFIED


class SystemStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


# --- Commands (network -> hardware) ---

@dataclass(frozen=True, kw_only=True)
class Command:
    """A decoded instruction. Immutable, compared by value."""
    kind: CommandKind
    pin: int = 0
    mode: PinMode = PinMode.UNSPECIFIED
    level: PinLevel = PinLevel.UNSPECIFIED
    type_name: str = "" # raw `Type` string, kept for reporting unknown commands


# --- Pin state (owned by the PinRegistry) ---

@dataclass(kw_only=True)
class PinEntry:
    """
    The registry's record for one pin number.

    `handle` is the pin-control capability bound to this pin. It belongs
    to this entry alone and is released when the registry is torn down.
    """
    pin: int
    handle: Any
    mode: Optional[PinMode] = None
    level: Optional[PinLevel] = None

    def describe(self) -> str:
        mode = self.mode.value if self.mode else "-"
        level = self.level.value if self.level else "-"
        return f"GPIO {self.pin} mode={mode} level={level}"


# --- Outbound payloads ---

@dataclass(frozen=True, kw_only=True)
class BasePayload:
    """Base class for all JSON payloads sent over MQTT."""
    timestamp: float = field(default_factory=time.time)

    def to_json(self) -> str:
        """Converts the object to a JSON string."""
        return json.dumps(asdict(self))

    def to_bytes(self) -> bytes:
        """Converts the object to UTF-8 encoded bytes for MQTT."""
        return self.to_json().encode('utf-8')


@dataclass(frozen=True, kw_only=True)
class SystemStatusPayload(BasePayload):
    """Retained presence message for the optional status topic."""
    status: SystemStatus = field(default=SystemStatus.ONLINE)
