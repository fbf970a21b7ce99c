"""
MQTT Command Subscriber.

This module is responsible for:
- Connecting to the MQTT broker with `aiomqtt` and subscribing to the command topic.
- Handing every received payload to the decoder and the HardwareManager,
  one message at a time and in arrival order.
- Reporting per-message errors without ever stopping the message stream.
- Reconnecting after a lost connection (a failure before the first
  subscription is fatal instead).
- Optionally keeping a retained online/offline presence message on a status topic.
"""
import asyncio
import logging
from typing import Optional, Union

from aiomqtt import Client as MQTTClient, MqttError, ProtocolVersion, Will

from hub_gpio_ctrl.server.config_loader import DEFAULT_MQTT_PORT, parse_broker_address
from hub_gpio_ctrl.server.decoder import decode_command
from hub_gpio_ctrl.server.errors import (
    BusConnectionFailure,
    DecodeError,
    PinControlFailure,
    PinNotConfigured,
    UnknownCommandKind,
    UnsupportedPinMode,
)
from hub_gpio_ctrl.server.hardware import HardwareManager
from hub_gpio_ctrl.server.models import PinEntry, SystemStatus, SystemStatusPayload

logger = logging.getLogger(__name__)

PROTOCOLS = {
    "3.1": ProtocolVersion.V31,
    "3.1.1": ProtocolVersion.V311,
    "5": ProtocolVersion.V5,
}


class MQTTManager:
    hardware_manager: HardwareManager
    config: dict
    host: str
    port: int
    topic: str
    qos: int
    protocol: ProtocolVersion
    keepalive: int
    username: Optional[str]
    password: Optional[str]
    client_id: Optional[str]
    status_topic: Optional[str]
    connect_timeout: float
    reconnect_interval: float
    command_timeout: float
    _main_task: Optional[asyncio.Task]
    _client: Optional[MQTTClient]

    """
    Subscribes to the command topic and feeds the HardwareManager.
    """
    def __init__(self, hardware_manager: HardwareManager, config: dict):
        self.hardware_manager = hardware_manager

        # Configuration extraction with defaults
        self.config = config
        mqtt_conf = self.config.get('mqtt', {}) or {}
        gpio_conf = self.config.get('gpio', {}) or {}
        self.host, self.port = parse_broker_address(mqtt_conf.get('broker') or f"localhost:{DEFAULT_MQTT_PORT}")
        self.topic = mqtt_conf.get('topic')
        self.qos = int(mqtt_conf.get('qos', 0))
        protocol = str(mqtt_conf.get('protocol', '3.1.1'))
        if protocol not in PROTOCOLS:
            raise ValueError(f"Unsupported MQTT protocol {protocol!r}. Choose one of {sorted(PROTOCOLS)}")
        self.protocol = PROTOCOLS[protocol]
        self.keepalive = int(mqtt_conf.get('keepalive', 60))
        self.connect_timeout = float(mqtt_conf.get('connect_timeout', 10))
        self.reconnect_interval = float(mqtt_conf.get('reconnect_interval', 5))
        self.command_timeout = float(gpio_conf.get('command_timeout', 1.0))

        # Identity & Auth: credentials are only used when both are given
        self.client_id = mqtt_conf.get('client_id') or None
        username = mqtt_conf.get('username')
        password = mqtt_conf.get('password')
        self.username, self.password = (username, password) if username and password else (None, None)
        self.status_topic = mqtt_conf.get('status_topic') or None

        # Internal state
        self._main_task = None
        self._client = None
        self._subscribed = asyncio.Event()

    async def start(self):
        """
        Launches the connection loop in the background and waits until the
        command topic is subscribed. Raises `BusConnectionFailure` when that
        does not happen within `connect_timeout` seconds.
        """
        logger.info(f"Starting MQTT Manager, connecting to {self.host}:{self.port}...")
        self._main_task = asyncio.create_task(self._main_loop())
        subscribed = asyncio.create_task(self._subscribed.wait())

        done, _ = await asyncio.wait(
            {self._main_task, subscribed},
            timeout=self.connect_timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
        if subscribed in done:
            return

        subscribed.cancel()
        if self._main_task in done:
            error = self._main_task.exception()
            self._main_task = None
            if isinstance(error, BusConnectionFailure):
                raise error
            raise BusConnectionFailure(f"MQTT loop ended before subscribing: {error}") from error

        await self.stop()
        raise BusConnectionFailure(f"Timed out after {self.connect_timeout}s connecting to {self.host}:{self.port}")

    async def stop(self):
        """
        Publishes the offline status (if configured), then cancels the main
        loop, which closes the connection.
        """
        if self._client is not None and self.status_topic:
            try:
                await self._client.publish(
                    self.status_topic,
                    payload=SystemStatusPayload(status=SystemStatus.OFFLINE).to_bytes(),
                    qos=1,
                    retain=True,
                )
                logger.info(f"Published offline status to {self.status_topic}")
            except MqttError as e:
                logger.error(f"Could not publish offline status: {e}")

        if self._main_task:
            logger.info("Stopping MQTT Manager...")
            self._main_task.cancel()
            try:
                await self._main_task
            except asyncio.CancelledError:
                logger.info("MQTT Manager stopped gracefully.")
            except Exception as e:
                logger.error(f"Error during MQTT stop: {e}")
            self._main_task = None

    def _make_client(self) -> MQTTClient:
        will = None
        if self.status_topic:
            # If we crash, the broker sets the status topic to "offline" (retained)
            will = Will(
                topic=self.status_topic,
                payload=SystemStatusPayload(status=SystemStatus.OFFLINE).to_bytes(),
                qos=1,
                retain=True,
            )
        return MQTTClient(
            self.host,
            self.port,
            protocol=self.protocol,
            identifier=self.client_id,
            username=self.username,
            password=self.password,
            keepalive=self.keepalive,
            will=will,
        )

    async def _main_loop(self):
        """
        The persistent connection loop.
        Before the first subscription any MqttError is fatal; afterwards a lost
        connection is retried every `reconnect_interval` seconds.
        """
        while True:
            try:
                # The connection is ONLY valid inside this block
                async with self._make_client() as client:
                    self._client = client
                    await client.subscribe(self.topic, qos=self.qos)
                    logger.info(f"Connected to MQTT broker at {self.host}:{self.port}, subscribed to topic {self.topic}")
                    if self.status_topic:
                        await client.publish(
                            self.status_topic,
                            payload=SystemStatusPayload(status=SystemStatus.ONLINE).to_bytes(),
                            qos=1,
                            retain=True,
                        )
                    self._subscribed.set()

                    async for message in client.messages:
                        await self.handle_payload(message.payload)

            except asyncio.CancelledError:
                raise # Let the stop() method handle this
            except MqttError as e:
                if not self._subscribed.is_set():
                    raise BusConnectionFailure(f"Error connecting to MQTT broker at {self.host}:{self.port}: {e}") from e
                logger.error(f"MQTT Connection lost: {e}. Retrying in {self.reconnect_interval}s...")
                await asyncio.sleep(self.reconnect_interval)
            finally:
                self._client = None

    async def handle_payload(self, payload: Union[bytes, bytearray, str]) -> Optional[PinEntry]:
        """
        One decode-dispatch cycle. Returns the updated pin entry, or None when
        the message was dropped. Per-message errors are logged, never raised.
        """
        logger.info(f"Message received: {payload!r}")
        try:
            command = decode_command(payload)
            entry = await self.hardware_manager.execute(command, timeout=self.command_timeout)
        except DecodeError as e:
            logger.warning(f"Error parsing JSON: {e}")
        except UnknownCommandKind as e:
            logger.warning(f"Ignoring message: {e}")
        except (PinNotConfigured, UnsupportedPinMode) as e:
            logger.error(f"Rejected command: {e}")
        except PinControlFailure as e:
            logger.error(f"GPIO error: {e}")
        except Exception:
            # Anything unforeseen drops this message only, the stream keeps going
            logger.exception(f"Unexpected error handling {payload!r}")
        else:
            logger.info(f"Applied: {entry.describe()}")
            return entry
        return None
