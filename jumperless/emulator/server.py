#!/usr/bin/env python3
"""
Jumperless Emulator Server

This module exposes the response engine on a virtual serial port and manages
its lifecycle: opening the port, reading requests, serialising them into the
engine and shutting everything down again.
"""

from __future__ import annotations

import asyncio
from enum import Enum
import logging
from typing import Optional

from jumperless.common import DEFAULT_BUFFER_SIZE, ChannelError, JumperlessError
from jumperless.emulator.channel import PtyChannel
from jumperless.emulator.engine import ResponseEngine

logger = logging.getLogger(__name__)

DEFAULT_DRAIN_TIMEOUT = 0.1


class State(Enum):
    STOPPED = 'stopped'
    OPENING = 'opening'
    RUNNING = 'running'
    DRAINING = 'draining'


class VirtualDevice:
    """
    A virtual Jumperless on a pseudo-terminal.

    Every read that leaves non-whitespace in the request buffer is treated as
    one complete request, so a command split across two reads is seen as two
    requests. Requests are answered strictly one after another.
    """

    def __init__(self,
                 engine: ResponseEngine,
                 virtual_port: Optional[str] = None,
                 buffer_size: int = DEFAULT_BUFFER_SIZE,
                 drain_timeout: float = DEFAULT_DRAIN_TIMEOUT,
                 channel: Optional[PtyChannel] = None):
        """
        Initialize the virtual device.

        Args:
            engine: The engine answering requests
            virtual_port: Stable path to publish the port under
            buffer_size: Maximum bytes taken per read
            drain_timeout: Seconds an in-flight response may take to finish on stop
            channel: Channel to serve on, instead of a new PtyChannel
        """
        self.engine = engine
        self.buffer_size = buffer_size or DEFAULT_BUFFER_SIZE
        self.drain_timeout = drain_timeout
        self.channel = channel or PtyChannel(alias=virtual_port)
        self.state = State.STOPPED

        self._buffer = bytearray()
        self._requests: Optional[asyncio.Queue] = None
        self._dispatcher: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._client_connected = True

    @property
    def port_name(self) -> Optional[str]:
        return self.channel.port_name

    async def start(self) -> None:
        """
        Open the virtual port and start serving requests.

        Raises:
            ChannelError: if the port could not be created
        """
        if self.state != State.STOPPED:
            raise JumperlessError(f'cannot start a device that is {self.state.value}')

        self.state = State.OPENING
        try:
            self.channel.open()
        except ChannelError:
            self.state = State.STOPPED
            raise

        self._loop = asyncio.get_running_loop()
        self._requests = asyncio.Queue()
        self._buffer.clear()
        self._dispatcher = asyncio.create_task(self._dispatch())
        self._loop.add_reader(self.channel.primary_fd, self._on_readable)

        self.state = State.RUNNING
        logger.info(f"Jumperless emulator listening on {self.port_name}")

    def _on_readable(self) -> None:
        try:
            data = self.channel.read(self.buffer_size)
        except ChannelError as e:
            logger.error(f"Error reading from virtual port: {e}")
            return

        if data is None:
            if self._client_connected:
                logger.info("Client disconnected")
                self._client_connected = False
            return

        if not data:
            return

        self._client_connected = True
        self.feed(data)

    def feed(self, data: bytes) -> None:
        """
        Add bytes read from the port to the request buffer, queueing the
        buffer as one request if it holds anything but whitespace.
        """
        self._buffer.extend(data)
        request = self._buffer.decode('utf-8', errors='replace').strip()
        if not request:
            return

        self._buffer.clear()
        self._requests.put_nowait(request)

    async def _dispatch(self) -> None:
        while True:
            request = await self._requests.get()
            try:
                await self.engine.handle_request(request, self.channel)
            except ChannelError as e:
                logger.error(f"Error writing response to {request!r}: {e}")
            except Exception:
                logger.exception(f"Unexpected error answering {request!r}")
            finally:
                self._requests.task_done()

    async def stop(self) -> None:
        """
        Stop serving: stop reading, let an in-flight response finish for up to
        drain_timeout seconds, then close the port and remove its alias.
        """
        if self.state in (State.STOPPED, State.DRAINING):
            return

        self.state = State.DRAINING
        logger.info("Shutting down Jumperless emulator...")

        try:
            if self._loop is not None and self.channel.primary_fd is not None:
                self._loop.remove_reader(self.channel.primary_fd)

            if self._dispatcher is not None:
                await self._stop_dispatcher()
        finally:
            try:
                self.channel.close()
            finally:
                self.state = State.STOPPED
                logger.info("Emulator shutdown complete")

    async def _stop_dispatcher(self) -> None:
        try:
            await asyncio.wait_for(self._requests.join(), timeout=self.drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("Abandoning response still in flight after %.2fs", self.drain_timeout)
        finally:
            dispatcher, self._dispatcher = self._dispatcher, None
            dispatcher.cancel()
            try:
                await dispatcher
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Request dispatcher failed")

    async def serve_forever(self, stop_event: asyncio.Event) -> None:
        """Run until *stop_event* is set, then stop."""
        await self.start()
        try:
            await stop_event.wait()
        finally:
            await self.stop()
