import asyncio
import threading

import pytest

from hub_gpio_ctrl.server.dispatcher import Dispatcher
from hub_gpio_ctrl.server.errors import PinControlFailure, PinNotConfigured
from hub_gpio_ctrl.server.hardware import HardwareManager
from hub_gpio_ctrl.server.models import Command, CommandKind, PinLevel, PinMode

"""
The Core Bridge (Sync/Async).
Tests the HardwareManager, ensuring commands reach the pins in order,
one at a time, and that the asyncio side never waits forever.
"""


def set_mode(pin, mode=PinMode.OUTPUT):
    return Command(kind=CommandKind.SET_MODE, pin=pin, mode=mode, type_name="GPIOSetMode")


def set_level(pin, level):
    return Command(kind=CommandKind.SET_LEVEL, pin=pin, level=level, type_name="GPIOLevel")


@pytest.fixture
def manager(dispatcher, recording_pin_control):
    manager = HardwareManager(dispatcher=dispatcher, pin_control=recording_pin_control)
    manager.start_worker_thread()
    yield manager
    manager.stop_worker_thread()


@pytest.mark.asyncio
async def test_hardware_manager_command_execution(manager, registry, recording_pin_control):
    entry = await manager.execute(set_mode(17), timeout=1)
    assert entry.mode is PinMode.OUTPUT

    entry = await manager.execute(set_level(17, PinLevel.HIGH), timeout=1)
    assert entry.level is PinLevel.HIGH

    recording_pin_control.configure_output.assert_called_once_with("handle-17")
    recording_pin_control.drive_high.assert_called_once_with("handle-17")
    assert registry.get(17).level is PinLevel.HIGH


@pytest.mark.asyncio
async def test_dispatcher_errors_reach_the_caller(manager):
    with pytest.raises(PinNotConfigured):
        await manager.execute(set_level(4, PinLevel.LOW), timeout=1)

    # the worker survives the failure
    entry = await manager.execute(set_mode(4), timeout=1)
    assert entry.mode is PinMode.OUTPUT


@pytest.mark.asyncio
async def test_commands_are_applied_in_submission_order(manager, recording_pin_control):
    futures = [manager.submit(set_mode(4))]
    for i in range(20):
        futures.append(manager.submit(set_level(4, PinLevel.HIGH if i % 2 else PinLevel.LOW)))

    await asyncio.gather(*(asyncio.wrap_future(f) for f in futures))

    drives = [c[0] for c in recording_pin_control.mock_calls if c[0].startswith("drive_")]
    assert drives == ["drive_high" if i % 2 else "drive_low" for i in range(20)]


@pytest.mark.asyncio
async def test_blocking_pin_control_times_out(manager, recording_pin_control):
    unblock = threading.Event()
    recording_pin_control.configure_output.side_effect = lambda handle: unblock.wait(2)

    with pytest.raises(PinControlFailure) as excinfo:
        await manager.execute(set_mode(4), timeout=0.05)
    assert excinfo.value.pin == 4

    # a command still queued behind the stuck one is cancelled on timeout
    with pytest.raises(PinControlFailure):
        await manager.execute(set_mode(5, PinMode.INPUT), timeout=0.05)

    unblock.set()
    recording_pin_control.configure_output.side_effect = None
    entry = await manager.execute(set_mode(6), timeout=1)
    assert entry.pin == 6
    recording_pin_control.configure_input.assert_not_called()


@pytest.mark.asyncio
async def test_timed_out_command_applied_late_is_logged(manager, registry, recording_pin_control, caplog):
    unblock = threading.Event()
    recording_pin_control.configure_output.side_effect = lambda handle: unblock.wait(2)

    with pytest.raises(PinControlFailure) as excinfo:
        await manager.execute(set_mode(4), timeout=0.05)
    assert "applied late" in str(excinfo.value)
    assert 4 not in registry

    unblock.set()
    for _ in range(100):
        if any("applied late" in r.getMessage() for r in caplog.records):
            break
        await asyncio.sleep(0.01)

    late = [r for r in caplog.records if "applied late" in r.getMessage()]
    assert late and late[0].levelname == "WARNING"
    assert "GPIO 4" in late[0].getMessage()
    assert registry.get(4).mode is PinMode.OUTPUT


def test_submit_without_worker_raises(dispatcher, recording_pin_control):
    manager = HardwareManager(dispatcher=dispatcher, pin_control=recording_pin_control)

    with pytest.raises(RuntimeError):
        manager.submit(set_mode(4))


def test_start_and_stop_worker_thread(dispatcher, recording_pin_control):
    manager = HardwareManager(dispatcher=dispatcher, pin_control=recording_pin_control)

    manager.start_worker_thread()
    assert manager.is_running()
    manager.stop_worker_thread()

    assert not manager.is_running()


def test_open_and_release_pins(dispatcher, registry, recording_pin_control):
    manager = HardwareManager(dispatcher=dispatcher, pin_control=recording_pin_control)
    manager.open_pins()
    manager.start_worker_thread()
    manager.submit(set_mode(4)).result(timeout=1)
    manager.submit(set_mode(17)).result(timeout=1)
    manager.stop_worker_thread()

    manager.release_pins()

    recording_pin_control.open.assert_called_once()
    assert recording_pin_control.release.call_count == 2
    recording_pin_control.close.assert_called_once()
    assert len(registry) == 0
