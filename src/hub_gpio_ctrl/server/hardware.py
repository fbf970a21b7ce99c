"""
Hardware Management and the Async/Sync Bridge.

This module contains the `HardwareManager` class, which is the core
of the concurrency model. It is responsible for:
- Bracketing all pin use with the pin control's open()/close().
- Managing the Command Queue (network -> hardware) for sequential execution.
- Running the single, dedicated worker thread that applies commands
  through the `Dispatcher`, so commands are applied in the order they
  arrived and never concurrently.
- Letting the asyncio side await each command with a bounded timeout.
"""
import asyncio
import concurrent.futures
import functools
import logging as log
import queue
import threading
from typing import Optional, Tuple

from hub_gpio_ctrl.server.dispatcher import Dispatcher
from hub_gpio_ctrl.server.errors import PinControlFailure
from hub_gpio_ctrl.server.models import Command, PinEntry
from hub_gpio_ctrl.server.pins import PinControl

logger = log.getLogger(__name__)

QueueItem = Optional[Tuple[Command, concurrent.futures.Future]]


class HardwareManager:
    dispatcher: Dispatcher
    pin_control: PinControl

    # A standard `queue.Queue` lets the worker thread block on `get()` while
    # the asyncio side keeps enqueueing without blocking.
    inbound_command_queue: queue.Queue # (command, future) pairs, None is the shutdown sentinel

    _worker_thread: threading.Thread | None
    _worker_running: threading.Event

    """
    Owns the pin lifecycle and the worker thread that serializes all pin access.
    """
    def __init__(self, dispatcher: Dispatcher, pin_control: PinControl):
        self.dispatcher = dispatcher
        self.pin_control = pin_control
        self.inbound_command_queue = queue.Queue()
        self._worker_thread = None
        self._worker_running = threading.Event()

    @property
    def registry(self):
        return self.dispatcher.registry

    def open_pins(self):
        """
        Opens the GPIO backend. Raises `PinControlFailure` when no pin
        factory is usable; the caller treats that as fatal.
        """
        self.pin_control.open()
        logger.info("GPIO opened.")

    def release_pins(self):
        """
        Releases every pin handle held by the registry, then closes the GPIO backend.
        Call after the worker thread has stopped.
        """
        self.registry.release_all(self.pin_control)
        try:
            self.pin_control.close()
        except PinControlFailure as e:
            logger.error(f"Error closing GPIO: {e}")

    def start_worker_thread(self):
        """
        Starts the dedicated synchronous worker thread if it's not already running.
        """
        if self._worker_thread is None or not self._worker_thread.is_alive():
            self._worker_running.set()
            self._worker_thread = threading.Thread(target=self._worker_loop, name="HardwareWorker", daemon=True)
            self._worker_thread.start()
            logger.info("Hardware worker thread started.")
        else:
            logger.warning("Attempted to start worker thread, but it's already running.")

    def stop_worker_thread(self):
        """
        Signals the worker thread to stop and waits for it to finish.
        Commands still queued behind the sentinel are cancelled.
        """
        if self._worker_thread and self._worker_thread.is_alive():
            self._worker_running.clear()
            self.inbound_command_queue.put(None) # unblocks the worker if it's waiting
            self._worker_thread.join()
            logger.info("Hardware worker thread stopped.")
        else:
            logger.warning("Attempted to stop worker thread, but it was not running.")
        self._cancel_pending()

    def is_running(self) -> bool:
        return self._worker_thread is not None and self._worker_thread.is_alive()

    def submit(self, command: Command) -> concurrent.futures.Future:
        """
        Queues a command for the worker thread. The returned future resolves
        to the updated `PinEntry` or raises the dispatcher's error.
        """
        if not self._worker_running.is_set():
            raise RuntimeError("Hardware worker thread is not running")
        future: concurrent.futures.Future = concurrent.futures.Future()
        self.inbound_command_queue.put((command, future))
        return future

    async def execute(self, command: Command, timeout: float) -> PinEntry:
        """
        Runs a command on the worker thread and waits at most `timeout`
        seconds for it, raising `PinControlFailure` when the time is up.
        A command still queued at that point is cancelled and never applied.
        One the worker already started cannot be interrupted: it is applied
        late, and its outcome is logged as a warning once it completes.
        """
        future = self.submit(command)
        try:
            return await asyncio.wait_for(asyncio.wrap_future(future), timeout=timeout)
        except asyncio.TimeoutError as e:
            if future.cancel():
                outcome = "cancelled, not applied"
            else:
                future.add_done_callback(functools.partial(_report_late_completion, command))
                outcome = "still running, it may be applied late"
            raise PinControlFailure(
                f"GPIO {command.pin}: no answer from the pin control within {timeout}s ({outcome})",
                pin=command.pin,
                operation=command.kind.value,
            ) from e

    def _worker_loop(self):
        """
        The main loop for the synchronous hardware worker thread.
        It continuously pulls commands from the queue and executes them.
        """
        logger.info("Hardware worker loop has started.")

        while self._worker_running.is_set():
            try:
                # timeout so is_set() is checked regularly for shutdown
                item: QueueItem = self.inbound_command_queue.get(timeout=0.1)
            except queue.Empty:
                continue

            if item is None: # Sentinel value for shutdown
                logger.info("Worker loop received shutdown signal. Unblocking...")
                self.inbound_command_queue.task_done()
                break

            command, future = item
            # False when the waiting side already gave up on this command
            if future.set_running_or_notify_cancel():
                self._execute_command(command, future)
            else:
                logger.warning(f"Skipping cancelled command {command}")
            self.inbound_command_queue.task_done()

        logger.info("Hardware worker loop has stopped.")

    def _execute_command(self, command: Command, future: concurrent.futures.Future):
        try:
            future.set_result(self.dispatcher.dispatch(command))
        except Exception as e:
            # Every failure goes back to the caller, the worker keeps running
            future.set_exception(e)

    def _cancel_pending(self):
        while True:
            try:
                item: QueueItem = self.inbound_command_queue.get_nowait()
            except queue.Empty:
                return
            if item is not None:
                item[1].cancel()
            self.inbound_command_queue.task_done()


def _report_late_completion(command: Command, future: concurrent.futures.Future):
    """Done-callback for commands that finished after their caller timed out."""
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.warning(f"Timed-out command {command} completed late with an error: {error}")
    else:
        logger.warning(f"Timed-out command {command} was applied late: {future.result().describe()}")
