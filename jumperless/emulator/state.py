#!/usr/bin/env python3
"""
Jumperless Emulator State Management

This module maintains the state of the simulated Jumperless hardware: DAC
and ADC channels, INA sensors, GPIO pins, node definitions and the
connections made between nodes.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from jumperless.common import MAX_DAC_VOLTAGE, MIN_DAC_VOLTAGE
from jumperless.emulator.models import (
    ADCChannel,
    Connection,
    DACChannel,
    GPIOPin,
    HardwareInfo,
    INASensor,
    Node,
)

logger = logging.getLogger(__name__)

DEFAULT_FIRMWARE_VERSION = "5.2.2.0"
GPIO_PIN_COUNT = 10

# dac_set()/dac_get() number the rails after the two DACs.
DAC_CHANNEL_ALIASES = {
    "2": "TOP_RAIL",
    "3": "BOTTOM_RAIL",
}


def default_nodes() -> Dict[str, Node]:
    """Node definitions of a stock board (power rails, DACs and GPIO)."""
    nodes = {
        "GND": Node(number=1, constant="GND", kind="power"),
        "TOP_R": Node(number=2, constant="TOP_R", aliases=["TOP_RAIL"], kind="power"),
        "BOT_R": Node(number=3, constant="BOT_R", aliases=["BOTTOM_RAIL"], kind="power"),
        "DAC_0": Node(number=4, constant="DAC_0", kind="dac"),
        "DAC_1": Node(number=5, constant="DAC_1", kind="dac"),
    }
    for i in range(GPIO_PIN_COUNT):
        name = f"GPIO_{i}"
        nodes[name] = Node(number=10 + i, constant=name, kind="gpio")
    return nodes


class HardwareState:
    """
    Maintains the state of the simulated Jumperless.

    An instance is owned by exactly one response engine. Mutators are lenient
    in the same way the device firmware is: out-of-range values are ignored
    and unknown channels are created on first write.
    """

    def __init__(self,
                 firmware_version: str = DEFAULT_FIRMWARE_VERSION,
                 hardware: Optional[HardwareInfo] = None,
                 dac_channels: Optional[Dict[str, DACChannel]] = None,
                 adc_channels: Optional[Dict[str, ADCChannel]] = None,
                 ina_sensors: Optional[Dict[str, INASensor]] = None,
                 gpio_pins: Optional[Dict[str, GPIOPin]] = None,
                 connections: Optional[List[Connection]] = None,
                 nodes: Optional[Dict[str, Node]] = None):
        self.firmware_version = firmware_version
        self.hardware = hardware or HardwareInfo()
        self.dac_channels: Dict[str, DACChannel] = dac_channels or {}
        self.adc_channels: Dict[str, ADCChannel] = adc_channels or {}
        self.ina_sensors: Dict[str, INASensor] = ina_sensors or {}
        self.gpio_pins: Dict[str, GPIOPin] = gpio_pins or {}
        self.connections: List[Connection] = []
        self.nodes: Dict[str, Node] = nodes or {}

        for conn in connections or ():
            self.connect(conn.node_a, conn.node_b)

    @classmethod
    def default(cls) -> HardwareState:
        """
        Build the state of a freshly powered-on board.
        """
        return cls(
            firmware_version=DEFAULT_FIRMWARE_VERSION,
            hardware=HardwareInfo(generation=5, revision=5, probe_revision=5),
            dac_channels={
                "0": DACChannel(voltage=3.3),
                "1": DACChannel(voltage=0.0),
                "TOP_RAIL": DACChannel(voltage=3.5),
                "BOTTOM_RAIL": DACChannel(voltage=3.5),
            },
            adc_channels={
                "0": ADCChannel(voltage=0.0, max_value=8.0),
                "1": ADCChannel(voltage=0.0, max_value=8.0),
                "2": ADCChannel(voltage=0.0, max_value=8.0),
                "3": ADCChannel(voltage=0.0, max_value=8.0),
                "4": ADCChannel(voltage=0.0, max_value=5.0),
            },
            ina_sensors={
                "0": INASensor(current=0.1, voltage=3.3, bus_voltage=3.3, power=0.33),
                "1": INASensor(current=0.05, voltage=5.0, bus_voltage=5.0, power=0.25),
            },
            gpio_pins={str(i): GPIOPin() for i in range(GPIO_PIN_COUNT)},
            nodes=default_nodes(),
        )

    # DAC / ADC

    def _dac_key(self, channel: str) -> str:
        if channel not in self.dac_channels and channel in DAC_CHANNEL_ALIASES:
            return DAC_CHANNEL_ALIASES[channel]
        return channel

    def get_dac_voltage(self, channel: str) -> Optional[float]:
        dac = self.dac_channels.get(self._dac_key(channel))
        return dac.voltage if dac else None

    def set_dac(self, channel: str, voltage: float) -> bool:
        """
        Set a DAC output.

        Args:
            channel: The DAC channel id (e.g. "0", "TOP_RAIL")
            voltage: The voltage to output

        Returns:
            True if the voltage was applied, False if it was out of range
        """
        if not MIN_DAC_VOLTAGE <= voltage <= MAX_DAC_VOLTAGE:
            logger.debug("Ignoring out of range DAC voltage %s for channel %s", voltage, channel)
            return False

        self.dac_channels.setdefault(self._dac_key(channel), DACChannel()).voltage = voltage
        logger.info("Updated DAC channel %s to %.2fV", channel, voltage)
        return True

    def get_adc_voltage(self, channel: str) -> Optional[float]:
        adc = self.adc_channels.get(channel)
        return adc.voltage if adc else None

    # GPIO

    def get_gpio_value(self, pin: str) -> Optional[int]:
        gpio = self.gpio_pins.get(pin)
        return gpio.value if gpio else None

    def set_gpio(self, pin: str, value: int) -> bool:
        """
        Set a GPIO pin's value, keeping its direction and pull settings.
        """
        if value not in (0, 1):
            logger.debug("Ignoring invalid GPIO value %s for pin %s", value, pin)
            return False

        self.gpio_pins.setdefault(pin, GPIOPin()).value = value
        logger.info("Updated GPIO pin %s to %d", pin, value)
        return True

    # Connections

    def is_connected(self, node_a: str, node_b: str) -> bool:
        return any(conn.joins(node_a, node_b) for conn in self.connections)

    def connect(self, node_a: str, node_b: str) -> bool:
        """
        Connect two nodes. Connecting an already connected pair, in either
        order, is a no-op.

        Returns:
            True if a new connection was added
        """
        if self.is_connected(node_a, node_b):
            return False

        self.connections.append(Connection(node_a=node_a, node_b=node_b))
        logger.info("Connected nodes %s and %s", node_a, node_b)
        return True

    def disconnect(self, node_a: str, node_b: str) -> bool:
        """
        Remove the connection between two nodes, if there is one.
        """
        for i, conn in enumerate(self.connections):
            if conn.joins(node_a, node_b):
                del self.connections[i]
                logger.info("Disconnected nodes %s and %s", node_a, node_b)
                return True
        return False

    def clear_connections(self) -> None:
        self.connections = []
        logger.info("Cleared all connections")
