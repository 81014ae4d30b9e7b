#!/usr/bin/env python3
"""
Jumperless Recording Proxy

This module implements a transparent proxy between a client and a real
Jumperless, exposing a virtual serial port to the client, printing all
traffic and recording it as emulator mappings.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from enum import Enum
import logging
from typing import Optional

import colorama
from colorama import Fore, Style
import serial_asyncio

from jumperless.common import DEFAULT_BAUD_RATE, DEFAULT_BUFFER_SIZE, ChannelError
from jumperless.emulator.channel import PtyChannel
from jumperless.emulator.models import Mappings
from jumperless.protocol.device import find_device
from jumperless.proxy.recording import Recorder

# Initialize colorama for cross-platform colored output
colorama.init()

logger = logging.getLogger(__name__)


class Direction(Enum):
    """Direction of traffic flow"""
    TO_DEVICE = "CLIENT→DEVICE"
    FROM_DEVICE = "DEVICE→CLIENT"


class TrafficPrinter:
    """Formats proxied traffic for the terminal"""

    def __init__(self):
        self.counts = {Direction.TO_DEVICE: 0, Direction.FROM_DEVICE: 0}
        self.started_at = datetime.now()

    def format_hex(self, data: bytes) -> str:
        """Format bytes as hex string with ASCII representation"""
        hex_str = ' '.join(f'{b:02X}' for b in data)
        ascii_str = ''.join(chr(b) if 32 <= b < 127 else '.' for b in data)
        return f"{hex_str:<48} | {ascii_str}"

    def format(self, data: bytes, direction: Direction) -> str:
        self.counts[direction] += 1
        color = Fore.CYAN if direction == Direction.TO_DEVICE else Fore.YELLOW
        header = f"{color}━━━ #{self.counts[direction]} {direction.value} ({len(data)} bytes) ━━━{Style.RESET_ALL}"
        lines = [header, f"  {data.decode('utf-8', errors='replace')!r}"]
        for i in range(0, len(data), 16):
            lines.append(f"  {Fore.WHITE}{self.format_hex(data[i:i + 16])}{Style.RESET_ALL}")
        return '\n'.join(lines)

    def print_summary(self):
        """Print session summary"""
        elapsed = (datetime.now() - self.started_at).total_seconds()
        print(f"\n{Fore.CYAN}━━━ Session Summary ━━━{Style.RESET_ALL}")
        print(f"Duration: {elapsed:.1f}s")
        print(f"Requests: {self.counts[Direction.TO_DEVICE]}")
        print(f"Responses: {self.counts[Direction.FROM_DEVICE]}")


class RecordingProxy:
    """Serial proxy that records the conversation with a real device"""

    def __init__(self,
                 real_port: Optional[str] = None,
                 virtual_port: Optional[str] = None,
                 baud_rate: int = DEFAULT_BAUD_RATE,
                 buffer_size: int = DEFAULT_BUFFER_SIZE,
                 recorder: Optional[Recorder] = None,
                 channel: Optional[PtyChannel] = None,
                 quiet: bool = False):
        self.real_port = real_port
        self.baud_rate = baud_rate or DEFAULT_BAUD_RATE
        self.buffer_size = buffer_size or DEFAULT_BUFFER_SIZE
        self.recorder = recorder or Recorder()
        self.channel = channel or PtyChannel(alias=virtual_port)
        self.printer = TrafficPrinter()
        self.quiet = quiet
        self.running = False

        self.device_reader: Optional[asyncio.StreamReader] = None
        self.device_writer: Optional[asyncio.StreamWriter] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._to_device: Optional[asyncio.Queue] = None
        self._tasks = []
        self._client_connected = True

    @property
    def virtual_port_name(self) -> Optional[str]:
        return self.channel.port_name

    def _show(self, data: bytes, direction: Direction) -> None:
        if not self.quiet:
            print(self.printer.format(data, direction))

    async def _detect_real_port(self) -> str:
        logger.info("No real port configured, attempting to detect...")
        loop = asyncio.get_running_loop()
        device = await loop.run_in_executor(None, find_device, None, self.baud_rate)
        logger.info(f"Detected Jumperless port: {device.port_name} (version: {device.version})")
        return device.port_name

    async def connect_to_device(self) -> None:
        """Open the real serial port"""
        if not self.real_port:
            self.real_port = await self._detect_real_port()

        try:
            self.device_reader, self.device_writer = await serial_asyncio.open_serial_connection(
                url=self.real_port, baudrate=self.baud_rate)
        except (OSError, ValueError) as e:
            raise ChannelError(f"failed to open real serial port {self.real_port}: {e}") from e

        port = self.device_writer.transport.serial
        port.reset_input_buffer()
        port.reset_output_buffer()
        logger.info(f"{Fore.GREEN}Connected to real serial port: {self.real_port}{Style.RESET_ALL}")

    async def start(self) -> None:
        """Open both ports and start forwarding"""
        self.channel.open()
        try:
            await self.connect_to_device()
        except BaseException:
            self.channel.close()
            raise

        self._loop = asyncio.get_running_loop()
        self._to_device = asyncio.Queue()
        self.running = True
        self._tasks = [
            asyncio.create_task(self.forward_client_to_device()),
            asyncio.create_task(self.forward_device_to_client()),
        ]
        self._loop.add_reader(self.channel.primary_fd, self._on_client_readable)

        logger.info(f"{Fore.GREEN}Proxy started. Virtual serial port: {self.virtual_port_name}{Style.RESET_ALL}")

    def _on_client_readable(self) -> None:
        try:
            data = self.channel.read(self.buffer_size)
        except ChannelError as e:
            logger.error(f"Error reading from virtual port: {e}")
            return

        if data is None:
            if self._client_connected:
                logger.info("Virtual port client disconnected")
                self._client_connected = False
            return
        if not data:
            return

        self._client_connected = True
        self.recorder.record_request(data)
        self._show(data, Direction.TO_DEVICE)
        self._to_device.put_nowait(data)

    async def forward_client_to_device(self) -> None:
        """Forward requests from the virtual port to the device"""
        while self.running:
            data = await self._to_device.get()
            try:
                self.device_writer.write(data)
                await self.device_writer.drain()
            except OSError as e:
                logger.error(f"Error writing to real port: {e}")

    async def forward_device_to_client(self) -> None:
        """Forward responses from the device to the virtual port"""
        while self.running:
            data = await self.device_reader.read(self.buffer_size)
            if not data:
                logger.warning("Real serial port closed")
                break

            self.recorder.record_response(data)
            self._show(data, Direction.FROM_DEVICE)

            try:
                written = await self.channel.write_all(data)
            except ChannelError as e:
                logger.error(f"Error writing to virtual port: {e}")
                continue
            if written < len(data):
                logger.warning(f"Dropped {len(data) - written} bytes for the virtual port client")

    async def stop(self) -> Mappings:
        """Stop forwarding, close both ports and return the recording"""
        logger.info("Shutting down proxy...")
        self.running = False

        if self._loop is not None and self.channel.primary_fd is not None:
            self._loop.remove_reader(self.channel.primary_fd)

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        if self.device_writer is not None:
            self.device_writer.close()
            self.device_writer = None
            logger.info(f"Closed real serial port: {self.real_port}")

        self.channel.close()

        if not self.quiet:
            self.printer.print_summary()
        return self.recorder.finish()

    async def run(self, stop_event: asyncio.Event) -> Mappings:
        """Proxy until *stop_event* is set, then return the recording"""
        await self.start()
        try:
            await stop_event.wait()
        finally:
            recording = await self.stop()
        return recording
