"""
Main entry point for the hub GPIO controller.

This module is responsible for:
- Parsing the command line and merging it with the optional config file.
- Initializing the pin control, the PinRegistry, the Dispatcher and the HardwareManager.
- Connecting the MQTTManager to the broker and subscribing to the command topic.
- Managing the overall application lifecycle (start, signal driven stop).

Usage:
    hub-gpio-ctrl --broker 192.168.1.1:1883 --topic hub/ctrl [--user U --password P]
"""

import argparse
import asyncio
import logging
import signal
import sys

from typing import Dict, Any, List, Optional

from hub_gpio_ctrl import __version__
from hub_gpio_ctrl.server.config_loader import DEFAULT_CONFIG, load_config, merge_config, parse_broker_address
from hub_gpio_ctrl.server.dispatcher import Dispatcher
from hub_gpio_ctrl.server.errors import BusConnectionFailure, PinControlFailure
from hub_gpio_ctrl.server.hardware import HardwareManager
from hub_gpio_ctrl.server.mqtt import MQTTManager
from hub_gpio_ctrl.server.pins import create_pin_control
from hub_gpio_ctrl.server.registry import PinRegistry

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def setup_logging(level: str = "INFO"):
    """
    Configures the global logging settings for the entire application.
    This should be called as early as possible during startup.
    """
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s [%(levelname)-8s] %(name)s.%(funcName)s: %(message)s'
    )

logger = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hub-gpio-ctrl",
        description="Set Raspberry Pi GPIO modes and levels from JSON commands received on an MQTT topic.",
    )
    parser.add_argument("--broker", "--mqttBroker", dest="broker",
                        help="MQTT broker address (mandatory), e.g. 192.168.1.1:1883")
    parser.add_argument("--topic", help="Topic where GPIO commands are received (mandatory)")
    parser.add_argument("--user", "--username", dest="username", help="MQTT username")
    parser.add_argument("--password", help="MQTT password")
    parser.add_argument("--client-id", dest="client_id", help="MQTT client identifier")
    parser.add_argument("--config", help="Path to a YAML config file")
    parser.add_argument("--no-gpio", dest="gpio_enabled", action="store_false", default=None,
                        help="Track commands without touching any pin")
    parser.add_argument("--pin-factory", dest="pin_factory",
                        help="gpiozero pin factory: lgpio, rpigpio, pigpio, native or mock")
    parser.add_argument("--log-level", dest="log_level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def build_config(args: argparse.Namespace, parser: argparse.ArgumentParser) -> Dict[str, Any]:
    """
    Merges defaults, the config file and the command line (in that order).
    Exits with a usage message when the broker or the topic is missing.
    """
    file_config = load_config(args.config) if args.config else {}
    cli_config = {
        "mqtt": {
            "broker": args.broker,
            "topic": args.topic,
            "username": args.username,
            "password": args.password,
            "client_id": args.client_id,
        },
        "gpio": {
            "enabled": args.gpio_enabled,
            "pin_factory": args.pin_factory,
        },
        "logging": {
            "level": args.log_level,
        },
    }
    config = merge_config(merge_config(DEFAULT_CONFIG, file_config), cli_config)

    mqtt_conf = config["mqtt"]
    if not mqtt_conf.get("broker") or not mqtt_conf.get("topic"):
        parser.print_help(sys.stderr)
        parser.exit(EXIT_USAGE, "\nerror: a broker address and a topic are mandatory\n")
    try:
        parse_broker_address(mqtt_conf["broker"])
    except ValueError as e:
        parser.error(str(e))
    return config


async def shutdown(signal_name: str, mqtt_manager: MQTTManager, hardware_manager: HardwareManager):
    """Graceful shutdown handler: stop receiving, drain the worker, release the pins."""
    logger.info(f"Received exit signal {signal_name}...")

    # Stop MQTT Manager (Async), no new commands after this
    await mqtt_manager.stop()

    # Stop Hardware Manager (Sync)
    hardware_manager.stop_worker_thread()

    # Release every acquired pin handle and close GPIO
    hardware_manager.release_pins()
    logger.info("Shutdown complete.")


async def main_application_runner(config: Dict[str, Any]) -> int:
    logger.info("Starting hub GPIO controller...")

    pin_control = create_pin_control(config)
    registry = PinRegistry()
    dispatcher = Dispatcher(registry, pin_control, strict_modes=bool(config["gpio"].get("strict_modes")))
    hardware_manager = HardwareManager(dispatcher=dispatcher, pin_control=pin_control)
    mqtt_manager = MQTTManager(hardware_manager=hardware_manager, config=config)

    # GPIO first, so the very first message already finds the pins usable
    try:
        hardware_manager.open_pins()
    except PinControlFailure as e:
        logger.critical(f"Couldn't open GPIO: {e}")
        return EXIT_FAILURE

    hardware_manager.start_worker_thread()

    try:
        await mqtt_manager.start()
    except BusConnectionFailure as e:
        logger.critical(f"{e}")
        hardware_manager.stop_worker_thread()
        hardware_manager.release_pins()
        return EXIT_FAILURE

    # Setup Signal Handlers for OS interrupts
    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()
    received = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: (received.append(s.name), stop_requested.set()))

    logger.info("Hub GPIO controller is fully operational. Press Ctrl+C to exit.")

    try:
        await stop_requested.wait()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await shutdown(received[0] if received else "cancel", mqtt_manager, hardware_manager)
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    config = build_config(args, parser)
    setup_logging(config["logging"]["level"])

    try:
        return asyncio.run(main_application_runner(config))
    except KeyboardInterrupt:
        # Handled by the signal handler, but good to catch here just in case.
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
