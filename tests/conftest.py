"""
Pytest Configuration and Fixtures for the hub_gpio_ctrl project.

gpiozero's MockFactory is installed as the pin factory, so the tests run
on any development machine, not just a Raspberry Pi.
"""

import sys
import logging

import pytest
from gpiozero import Device
from gpiozero.pins.mock import MockFactory, MockPWMPin

from hub_gpio_ctrl.server.dispatcher import Dispatcher
from hub_gpio_ctrl.server.pins import GpioZeroPinControl, PinControl
from hub_gpio_ctrl.server.registry import PinRegistry

# --- Configure GPIO Zero to use MockFactory ---
# Any pin requested through Device.pin_factory is a mock pin whose
# function and state can be inspected.
# Read https://gpiozero.readthedocs.io/en/stable/api_pins.html for more details on pin factories.
_mock_factory_instance = MockFactory(pin_class=MockPWMPin)
Device.pin_factory = _mock_factory_instance


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """
    Configures the Python logging framework globally for all tests.
    Because tests bypass main.py, this ensures our logs are formatted
    and visible exactly how we want them during test runs.
    """
    formatter = logging.Formatter(fmt="%(levelname)-8s %(message)s - %(funcName)s:%(lineno)d ")
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(formatter)
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)


@pytest.fixture(autouse=True)
def reset_mock_gpio_pins_before_each_test():
    """
    Resets the MockFactory's pins before each test to ensure a clean state.
    """
    _mock_factory_instance.reset()


@pytest.fixture
def mock_factory():
    return _mock_factory_instance


@pytest.fixture
def pin_control(monkeypatch):
    """A GpioZeroPinControl sharing the MockFactory installed above."""
    monkeypatch.delenv("GPIOZERO_PIN_FACTORY", raising=False)
    control = GpioZeroPinControl()
    control.open()
    yield control
    control.close()


@pytest.fixture
def recording_pin_control(mocker):
    """A PinControl that only records calls. Handles are 'handle-<pin>' strings."""
    control = mocker.MagicMock(spec=PinControl)
    control.acquire.side_effect = lambda pin: f"handle-{pin}"
    return control


@pytest.fixture
def registry():
    return PinRegistry()


@pytest.fixture
def dispatcher(registry, recording_pin_control):
    return Dispatcher(registry, recording_pin_control)
