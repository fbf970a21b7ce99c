"""
Configuration Loader.

Responsible for reading the optional config.yaml file and merging it
with the built-in defaults and the command line.
"""
import copy
import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_MQTT_PORT = 1883

DEFAULT_CONFIG: Dict[str, Any] = {
    "mqtt": {
        "broker": None,             # "host[:port]", mandatory
        "topic": None,              # command topic, mandatory
        "username": None,
        "password": None,
        "client_id": "hub-gpio-ctrl",
        "qos": 0,
        "protocol": "3.1.1",        # "3.1", "3.1.1" or "5"
        "keepalive": 60,
        "connect_timeout": 10,
        "reconnect_interval": 5,
        "status_topic": None,       # retained online/offline presence, off by default
    },
    "gpio": {
        "enabled": True,
        "pin_factory": None,        # lgpio, rpigpio, pigpio, native or mock
        "command_timeout": 1.0,
        "strict_modes": False,
    },
    "logging": {
        "level": "INFO",
    },
}


def load_config(config_path: str = "config.yaml") -> Dict[str, Any]:
    """
    Loads the YAML configuration file.
    """
    path = Path(config_path)
    if not path.exists():
        logger.warning(f"Config file not found at {path}. Using defaults.")
        return {}

    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f) or {}
            logger.info(f"Loaded configuration from {path}")
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse config file: {e}")
        raise

    if not isinstance(config, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(config).__name__}")
    return config


def merge_config(base: Dict[str, Any], override: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Returns a new dict with `override` merged recursively into `base`.
    `None` values in `override` leave the base value untouched.
    """
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def parse_broker_address(address: str) -> Tuple[str, int]:
    """
    Splits "host", "host:port" or "tcp://host:port" into (host, port).
    Raises ValueError for an empty host or a port that is not a number.
    """
    address = address.strip()
    for scheme in ("tcp://", "mqtt://"):
        if address.startswith(scheme):
            address = address[len(scheme):]
    address = address.rstrip("/")

    host, sep, port = address.rpartition(":")
    if not sep:
        host, port = address, str(DEFAULT_MQTT_PORT)
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not host:
        raise ValueError(f"Invalid broker address {address!r}: missing host")
    if not port.isdigit() or not 0 < int(port) < 65536:
        raise ValueError(f"Invalid broker address {address!r}: bad port {port!r}")
    return host, int(port)
