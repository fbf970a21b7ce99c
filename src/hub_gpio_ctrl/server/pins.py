"""
Pin Control Capability.

The dispatcher never talks to gpiozero directly, it goes through a
`PinControl`. Two implementations exist:

- `GpioZeroPinControl` drives real pins through a gpiozero pin factory
  (lgpio on a current Pi OS, MockFactory in the tests).
- `NullPinControl` accepts every call and does nothing. It is used when
  GPIO is disabled in the configuration, e.g. to exercise the MQTT side
  on a machine without pins.

Handles returned by `acquire()` are opaque to callers and bound to one
pin number.
"""
import importlib
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from gpiozero import Device

from hub_gpio_ctrl.server.errors import PinControlFailure

logger = logging.getLogger(__name__)

# Names accepted by `gpio.pin_factory`, same spelling as GPIOZERO_PIN_FACTORY
PIN_FACTORIES = {
    "lgpio": ("gpiozero.pins.lgpio", "LGPIOFactory"),
    "rpigpio": ("gpiozero.pins.rpigpio", "RPiGPIOFactory"),
    "pigpio": ("gpiozero.pins.pigpio", "PiGPIOFactory"),
    "native": ("gpiozero.pins.native", "NativeFactory"),
    "mock": ("gpiozero.pins.mock", "MockFactory"),
}
DEFAULT_PIN_FACTORY = "lgpio"


class PinControl(ABC):
    """Contract between the dispatcher and the physical pins."""

    @abstractmethod
    def open(self) -> None:
        """Prepares the GPIO backend. Called once before any pin is used."""

    @abstractmethod
    def close(self) -> None:
        """Shuts the GPIO backend down. Called once after all handles are released."""

    @abstractmethod
    def acquire(self, pin: int) -> Any:
        """Returns a handle bound to `pin`."""

    @abstractmethod
    def release(self, handle: Any) -> None:
        ...

    @abstractmethod
    def configure_output(self, handle: Any) -> None:
        ...

    @abstractmethod
    def configure_input(self, handle: Any) -> None:
        ...

    @abstractmethod
    def drive_high(self, handle: Any) -> None:
        ...

    @abstractmethod
    def drive_low(self, handle: Any) -> None:
        ...


class GpioZeroPinControl(PinControl):
    """
    Pin control on top of gpiozero's low level pin API.

    Handles wrap gpiozero `Pin` objects from `factory.pin(n)`: direction is
    set through `pin.function` and the level through `pin.state`. Any error
    from gpiozero or its backend is re-raised as `PinControlFailure`; the
    backends do not all wrap their own faults (lgpio raises `lgpio.error`).
    """
    factory_name: Optional[str]
    factory: Any

    def __init__(self, factory_name: Optional[str] = None):
        self.factory_name = factory_name
        self.factory = None
        self._owns_factory = False

    def open(self):
        name = self.factory_name or os.environ.get("GPIOZERO_PIN_FACTORY")
        if name is None and Device.pin_factory is not None:
            # Someone (e.g. the test suite) already installed a factory, share it
            self.factory = Device.pin_factory
            logger.info(f"Using existing pin factory {type(self.factory).__name__}")
            return

        name = (name or DEFAULT_PIN_FACTORY).lower()
        if name not in PIN_FACTORIES:
            raise PinControlFailure(f"Unknown pin factory '{name}'. Choose one of {sorted(PIN_FACTORIES)}")
        module_name, class_name = PIN_FACTORIES[name]
        try:
            factory_class = getattr(importlib.import_module(module_name), class_name)
            self.factory = factory_class()
        except Exception as e: # ImportError, gpiozero or backend errors
            raise PinControlFailure(f"Couldn't open GPIO with pin factory '{name}': {e}") from e
        self._owns_factory = True
        logger.info(f"Opened GPIO with pin factory {class_name}")

    def close(self):
        if self.factory is None:
            return
        if self._owns_factory:
            try:
                self.factory.close()
            except Exception as e:
                raise PinControlFailure(f"Error closing GPIO: {e}") from e
            logger.info("GPIO closed.")
        self.factory = None
        self._owns_factory = False

    def _call(self, handle: "GpioHandle", operation: str, action):
        try:
            action(handle.pin)
        except Exception as e:
            raise PinControlFailure(
                f"{operation} failed on GPIO {handle.number}: {e}", pin=handle.number, operation=operation
            ) from e

    def acquire(self, pin: int) -> "GpioHandle":
        if self.factory is None:
            raise PinControlFailure("GPIO is not open", pin=pin, operation="acquire")
        try:
            return GpioHandle(number=pin, pin=self.factory.pin(pin))
        except Exception as e:
            raise PinControlFailure(f"Couldn't acquire GPIO {pin}: {e}", pin=pin, operation="acquire") from e

    def release(self, handle: "GpioHandle"):
        self._call(handle, "release", lambda pin: pin.close())

    def configure_output(self, handle: "GpioHandle"):
        self._call(handle, "configure_output", lambda pin: setattr(pin, "function", "output"))

    def configure_input(self, handle: "GpioHandle"):
        self._call(handle, "configure_input", lambda pin: setattr(pin, "function", "input"))

    def drive_high(self, handle: "GpioHandle"):
        self._call(handle, "drive_high", lambda pin: setattr(pin, "state", 1))

    def drive_low(self, handle: "GpioHandle"):
        self._call(handle, "drive_low", lambda pin: setattr(pin, "state", 0))


@dataclass(frozen=True)
class GpioHandle:
    """A gpiozero pin together with the number it was acquired for."""
    number: int
    pin: Any


class NullPinControl(PinControl):
    """Accepts every call without touching any hardware. Handles are the pin numbers."""

    def open(self):
        logger.warning("GPIO disabled: pin commands will be tracked but not applied.")

    def close(self):
        pass

    def acquire(self, pin: int) -> int:
        return pin

    def release(self, handle):
        pass

    def configure_output(self, handle):
        logger.debug(f"(no GPIO) GPIO {handle} -> output")

    def configure_input(self, handle):
        logger.debug(f"(no GPIO) GPIO {handle} -> input")

    def drive_high(self, handle):
        logger.debug(f"(no GPIO) GPIO {handle} -> high")

    def drive_low(self, handle):
        logger.debug(f"(no GPIO) GPIO {handle} -> low")


def create_pin_control(config: dict) -> PinControl:
    """Builds the pin control described by the `gpio` section of the config."""
    gpio_conf = config.get("gpio", {}) or {}
    if not gpio_conf.get("enabled", True):
        return NullPinControl()
    return GpioZeroPinControl(factory_name=gpio_conf.get("pin_factory"))
