"""
Command Dispatcher.

Applies decoded commands to the pin registry and the pin-control
capability. Per pin number the state machine is:

    Unconfigured --SetMode(Output)--> ConfiguredOutput
    Unconfigured --SetMode(Input)---> ConfiguredInput
    Configured*  --SetMode(...)-----> mode reassigned, handle reused
    Configured*  --SetLevel(...)----> level recorded after the drive call

A SetLevel for a pin without an entry raises `PinNotConfigured` and
issues no pin-control call.
"""
import dataclasses
import logging

from hub_gpio_ctrl.server.errors import PinControlFailure, PinNotConfigured, UnknownCommandKind, UnsupportedPinMode
from hub_gpio_ctrl.server.models import Command, CommandKind, PinEntry, PinLevel, PinMode
from hub_gpio_ctrl.server.pins import PinControl
from hub_gpio_ctrl.server.registry import PinRegistry

logger = logging.getLogger(__name__)


class Dispatcher:
    registry: PinRegistry
    pin_control: PinControl
    strict_modes: bool # reject GPIOSetMode with an unrecognized Mode instead of recording it

    def __init__(self, registry: PinRegistry, pin_control: PinControl, strict_modes: bool = False):
        self.registry = registry
        self.pin_control = pin_control
        self.strict_modes = strict_modes

    def dispatch(self, command: Command) -> PinEntry:
        """
        Applies one command and returns a copy of the affected entry.
        The registry lock is held for the whole command, so concurrent
        callers cannot interleave lookups and updates.
        """
        with self.registry.lock:
            if command.kind is CommandKind.SET_MODE:
                entry = self._set_mode(command)
            elif command.kind is CommandKind.SET_LEVEL:
                entry = self._set_level(command)
            else:
                raise UnknownCommandKind(command.type_name)
            return dataclasses.replace(entry)

    def _set_mode(self, command: Command) -> PinEntry:
        pin = command.pin
        logger.info(f"GPIO {pin} setting mode to {command.mode.value}")

        if command.mode is PinMode.UNSPECIFIED and self.strict_modes:
            raise UnsupportedPinMode(pin, command.mode.value)

        existing = self.registry.get(pin)
        handle = existing.handle if existing else self.pin_control.acquire(pin)

        try:
            if command.mode is PinMode.OUTPUT:
                self.pin_control.configure_output(handle)
            elif command.mode is PinMode.INPUT:
                self.pin_control.configure_input(handle)
            else:
                logger.warning(f"GPIO {pin}: unrecognized mode, recorded without changing the pin direction")
        except PinControlFailure:
            if existing is None:
                self._release_quietly(handle, pin)
            raise

        # A new mode starts a fresh record, the previous level no longer applies
        entry = PinEntry(pin=pin, handle=handle, mode=command.mode)
        self.registry.put(entry)
        return entry

    def _set_level(self, command: Command) -> PinEntry:
        pin = command.pin
        logger.info(f"GPIO {pin} setting level to {command.level.value}")

        entry = self.registry.get(pin)
        if entry is None:
            raise PinNotConfigured(pin)

        if command.level is PinLevel.HIGH:
            self.pin_control.drive_high(entry.handle)
        elif command.level is PinLevel.LOW:
            self.pin_control.drive_low(entry.handle)
        else:
            logger.warning(f"GPIO {pin}: unrecognized level, keeping {entry.describe()}")
            return entry

        entry.level = command.level
        return entry

    def _release_quietly(self, handle, pin: int):
        try:
            self.pin_control.release(handle)
        except PinControlFailure as e:
            logger.error(f"Failed to release GPIO {pin} after a failed mode change: {e}")
