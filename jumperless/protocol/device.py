#!/usr/bin/env python
# jumperless/protocol/device.py - Serial client for a real Jumperless
# Copyright 2025 jumperless-emu contributors
#
# This library is free software: you can redistribute it and/or modify
# it under the terms of the GNU Lesser General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This library is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Lesser General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public License
# along with this library.  If not, see <http://www.gnu.org/licenses/>.

from __future__ import annotations

from enum import IntEnum
import logging
import threading
import time
from typing import List, Optional, Tuple

import serial
from serial.tools import list_ports

from jumperless.common import (
    CONFIG_QUERY, DEFAULT_BAUD_RATE, FIRMWARE_QUERY, PYTHON_PREFIX,
    ChannelError, DeviceNotFound, ParseErrors)
from jumperless.protocol.models import ConfigSection, Net
from jumperless.protocol.parser import (
    parse_config, parse_dac_reply, parse_firmware_version, parse_nets,
    parse_python_reply)

__all__ = [
    'DACChannel',
    'JumperlessDevice',
    'find_device',
    'get_config',
    'get_nets',
    'get_dac',
]

logger = logging.getLogger(__name__)

READ_TIMEOUT = 1.0
READ_CHUNK_SIZE = 128

PROBE_WAIT = 0.01
CONFIG_WAIT = 0.5
PYTHON_WAIT = 0.01


class DACChannel(IntEnum):
    DAC0 = 0
    DAC1 = 1
    TOP_RAIL = 2
    BOTTOM_RAIL = 3


class JumperlessDevice:
    """
    A Jumperless attached to a serial port.

    Every command is a write followed by reading until the device goes
    quiet; commands are serialised so replies never interleave.

    The port (a real device or the emulator's virtual port) is opened
    lazily: use ``open()``/``close()`` or the instance as a context manager.
    """

    def __init__(self, port_name: str, baud_rate: int = DEFAULT_BAUD_RATE):
        self.port_name = port_name
        self.baud_rate = baud_rate or DEFAULT_BAUD_RATE
        self.version: Optional[str] = None
        self._port: Optional[serial.Serial] = None
        self._lock = threading.Lock()

    def __repr__(self):
        return f'<JumperlessDevice port={self.port_name!r} version={self.version!r}>'

    @property
    def is_open(self) -> bool:
        return self._port is not None

    def open(self) -> None:
        if self._port is not None:
            raise ChannelError(f'serial port {self.port_name} already open')

        with self._lock:
            try:
                self._port = serial.Serial(
                    self.port_name, baudrate=self.baud_rate, timeout=READ_TIMEOUT)
            except serial.SerialException as e:
                raise ChannelError(
                    f'unable to open serial port {self.port_name}: {e}') from e

    def close(self) -> None:
        if self._port is None:
            raise ChannelError(f'serial port {self.port_name} not open')

        with self._lock:
            try:
                self._port.close()
            except serial.SerialException as e:
                raise ChannelError(
                    f'unable to close serial port {self.port_name}: {e}') from e
            finally:
                self._port = None

    def __enter__(self) -> JumperlessDevice:
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def exec_raw_command(self, command: str, wait_for_read: float = PYTHON_WAIT) -> str:
        """
        Send *command* as-is and return everything the device printed.

        Args:
            command: Text to write, without a line terminator.
            wait_for_read: Seconds to wait before starting to read.

        Raises:
            ChannelError: if the port is not open or an I/O error occurs.
        """
        if self._port is None:
            raise ChannelError(f'serial port {self.port_name} not open')

        with self._lock:
            try:
                self._port.reset_input_buffer()
                self._port.reset_output_buffer()
                self._port.write(command.encode('utf-8'))
                self._port.flush()
                self._port.timeout = READ_TIMEOUT

                time.sleep(wait_for_read)

                result = bytearray()
                while True:
                    data = self._port.read(READ_CHUNK_SIZE)
                    if not data:
                        break
                    result.extend(data)
            except serial.SerialException as e:
                raise ChannelError(
                    f'unable to talk to serial port {self.port_name}: {e}') from e

        reply = result.decode('utf-8', errors='replace')
        logger.debug('%s: %r -> %r', self.port_name, command, reply)
        return reply

    def exec_python_command(self, command: str, wait_for_read: float = PYTHON_WAIT) -> str:
        """Run *command* in the device's MicroPython REPL and return its output."""
        return parse_python_reply(self.exec_raw_command(PYTHON_PREFIX + command, wait_for_read))

    def probe(self) -> Optional[str]:
        """Returns the firmware version, or None if this is not a Jumperless."""
        self.version = parse_firmware_version(self.exec_raw_command(FIRMWARE_QUERY, PROBE_WAIT))
        return self.version


def _probe_port(port_name: str, baud_rate: int) -> Optional[JumperlessDevice]:
    device = JumperlessDevice(port_name, baud_rate)
    with device:
        version = device.probe()
    if version is None:
        logger.debug('%s is not a Jumperless device', port_name)
        return None
    logger.info('Found Jumperless firmware %s on %s', version, port_name)
    return device


def find_device(port: Optional[str] = None,
                baud_rate: int = DEFAULT_BAUD_RATE) -> JumperlessDevice:
    """
    Locate a Jumperless and return a closed device handle for it.

    If *port* is None every serial port on the system is probed in turn.

    Raises:
        DeviceNotFound: if no port answered the firmware query.
    """
    if port:
        device = _probe_port(port, baud_rate)
        if device is None:
            raise DeviceNotFound(f'port {port} is not a Jumperless device')
        return device

    ports = list_ports.comports()
    if not ports:
        raise DeviceNotFound('no serial port found')

    errors = []
    for info in ports:
        try:
            device = _probe_port(info.device, baud_rate)
        except ChannelError as e:
            logger.debug('Skipping %s: %s', info.device, e)
            errors.append(e)
            continue
        if device is not None:
            return device

    if errors:
        raise DeviceNotFound(
            'no Jumperless device found: ' + '; '.join(str(e) for e in errors))
    raise DeviceNotFound('no Jumperless device found')


def get_config(device: JumperlessDevice) -> Tuple[List[ConfigSection], Optional[ParseErrors]]:
    return parse_config(device.exec_raw_command(CONFIG_QUERY, CONFIG_WAIT))


def get_nets(device: JumperlessDevice) -> Tuple[List[Net], Optional[ParseErrors]]:
    return parse_nets(device.exec_python_command('print_nets()', PYTHON_WAIT))


def get_dac(device: JumperlessDevice, channel: DACChannel) -> str:
    raw = device.exec_raw_command(f'{PYTHON_PREFIX}dac_get({int(channel)})', PYTHON_WAIT)
    return parse_dac_reply(raw)
