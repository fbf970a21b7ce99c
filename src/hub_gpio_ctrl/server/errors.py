"""
Error taxonomy.

Everything except BusConnectionFailure is scoped to a single message:
it is reported and the message is dropped, the stream keeps going.
"""
from typing import Optional


class GpioCtrlError(Exception):
    """Base class for all hub_gpio_ctrl errors."""


class DecodeError(GpioCtrlError):
    """The payload is not a JSON object of the expected shape."""


class UnknownCommandKind(GpioCtrlError):
    def __init__(self, type_name: str):
        self.type_name = type_name
        super().__init__(f"Unknown command type {type_name!r}")


class PinNotConfigured(GpioCtrlError):
    """A level was requested for a pin whose mode was never set."""
    def __init__(self, pin: int):
        self.pin = pin
        super().__init__(f"GPIO {pin} has no mode set; send GPIOSetMode first")


class UnsupportedPinMode(GpioCtrlError):
    def __init__(self, pin: int, mode_name: str):
        self.pin = pin
        self.mode_name = mode_name
        super().__init__(f"Unsupported mode {mode_name!r} for GPIO {pin}")


class PinControlFailure(GpioCtrlError):
    """The pin-control capability reported a fault or did not answer in time."""
    def __init__(self, message: str, pin: Optional[int] = None, operation: Optional[str] = None):
        self.pin = pin
        self.operation = operation
        super().__init__(message)


class BusConnectionFailure(GpioCtrlError):
    """Could not connect or subscribe to the MQTT broker at startup."""
