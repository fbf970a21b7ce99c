"""
Pin Registry.

Maps pin numbers to `PinEntry` records for every pin the process has
configured. Entries are created on the first GPIOSetMode for a pin and
are never removed individually; `release_all()` tears the whole registry
down at shutdown.
"""
import dataclasses
import logging
import threading
from typing import Dict, Optional

from hub_gpio_ctrl.server.errors import PinControlFailure
from hub_gpio_ctrl.server.models import PinEntry
from hub_gpio_ctrl.server.pins import PinControl

logger = logging.getLogger(__name__)


class PinRegistry:
    # Re-entrant so the dispatcher can hold it across a whole command
    # while still calling get()/put().
    lock: threading.RLock
    _entries: Dict[int, PinEntry]

    def __init__(self):
        self.lock = threading.RLock()
        self._entries = {}

    def get(self, pin: int) -> Optional[PinEntry]:
        with self.lock:
            return self._entries.get(pin)

    def put(self, entry: PinEntry):
        with self.lock:
            self._entries[entry.pin] = entry

    def __contains__(self, pin: int) -> bool:
        with self.lock:
            return pin in self._entries

    def __len__(self) -> int:
        with self.lock:
            return len(self._entries)

    def snapshot(self) -> Dict[int, PinEntry]:
        """Returns copies of all entries, safe to read from any thread."""
        with self.lock:
            return {pin: dataclasses.replace(entry) for pin, entry in self._entries.items()}

    def release_all(self, pin_control: PinControl):
        """
        Releases every pin handle and empties the registry.
        A failing release is logged and the remaining pins are still released.
        """
        with self.lock:
            for pin, entry in sorted(self._entries.items()):
                try:
                    pin_control.release(entry.handle)
                    logger.debug(f"Released GPIO {pin}")
                except PinControlFailure as e:
                    logger.error(f"Failed to release GPIO {pin}: {e}")
            released = len(self._entries)
            self._entries.clear()
        logger.info(f"Released {released} GPIO handle(s).")
