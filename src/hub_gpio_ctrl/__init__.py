"""
hub_gpio_ctrl

This package bridges an MQTT topic to the GPIO pins of a Raspberry Pi:
small JSON commands received on the topic set the direction and the
logic level of individual pins.
"""
__version__ = "0.1.0"
