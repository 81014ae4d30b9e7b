#!/usr/bin/env python
# jumperless/emulator/channel.py - Pseudo-terminal backed virtual serial port
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

import asyncio
import errno
import logging
import os
import pty
import termios
import tty
from typing import Optional

from jumperless.common import ChannelError
from jumperless.emulator.engine import Channel

__all__ = ['PtyChannel']

logger = logging.getLogger(__name__)

# Seconds a write may wait for the client to make room before giving up.
WRITE_STALL_TIMEOUT = 5.0


class PtyChannel(Channel):
    """
    A virtual serial port.

    Clients open the secondary side of a pseudo-terminal (optionally through
    a stable symlink); we read and write the primary side. The secondary
    stays open on our side too, so a client closing the port does not tear
    the terminal down.
    """

    def __init__(self, alias: Optional[str] = None):
        self.alias = alias or None
        self.primary_fd: Optional[int] = None
        self.secondary_fd: Optional[int] = None
        self.pty_name: Optional[str] = None
        self._alias_created = False

    @property
    def is_open(self) -> bool:
        return self.primary_fd is not None

    @property
    def port_name(self) -> Optional[str]:
        """The name clients should open: the alias if set, else the pty."""
        return self.alias or self.pty_name

    def open(self) -> None:
        """
        Allocate the pseudo-terminal and publish it under the alias.

        Raises:
            ChannelError: if anything fails; nothing stays allocated.
        """
        if self.is_open:
            raise ChannelError('channel already open')

        try:
            self.primary_fd, self.secondary_fd = pty.openpty()
            self.pty_name = os.ttyname(self.secondary_fd)

            # Raw mode, so bytes pass through unmodified (no echo, no CRLF mangling).
            tty.setraw(self.secondary_fd, termios.TCSANOW)
            os.set_blocking(self.primary_fd, False)

            if self.alias and self.alias != self.pty_name:
                self._publish_alias()
        except OSError as e:
            self._release()
            raise ChannelError(f'failed to create virtual serial port: {e}') from e

        if self._alias_created:
            logger.info('Created virtual serial port: %s -> %s', self.alias, self.pty_name)
        else:
            logger.info('Created virtual serial port: %s', self.pty_name)

    def _publish_alias(self) -> None:
        try:
            os.remove(self.alias)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning('Failed to remove existing port %s: %s', self.alias, e)

        os.symlink(self.pty_name, self.alias)
        self._alias_created = True

    def read(self, size: int) -> Optional[bytes]:
        """
        Read up to *size* bytes without blocking.

        Returns b'' when nothing is available and None when the client hung up.
        """
        try:
            return os.read(self.primary_fd, size)
        except BlockingIOError:
            return b''
        except OSError as e:
            # Linux reports EIO on the primary when no client has the port open.
            if e.errno == errno.EIO:
                return None
            raise ChannelError(f'error reading from pty: {e}') from e

    def write(self, data: bytes) -> int:
        if not self.is_open:
            raise ChannelError('channel not open')
        try:
            return os.write(self.primary_fd, data)
        except BlockingIOError:
            return 0
        except OSError as e:
            raise ChannelError(f'error writing to pty: {e}') from e

    async def write_all(self, data: bytes, stall_timeout: float = WRITE_STALL_TIMEOUT) -> int:
        """
        Write all of *data*, waiting whenever the pty buffer is full for the
        client to read from it.

        Returns the number of bytes written, which falls short only when the
        client read nothing for *stall_timeout* seconds.
        """
        loop = asyncio.get_running_loop()
        view = memoryview(data)
        total = 0
        while total < len(data):
            written = self.write(view[total:])
            if written:
                total += written
                continue
            if not await self._wait_writable(loop, stall_timeout):
                logger.warning('Client stopped reading; %d of %d bytes unsent',
                               len(data) - total, len(data))
                break
        return total

    async def _wait_writable(self, loop: asyncio.AbstractEventLoop, timeout: float) -> bool:
        fd = self.primary_fd
        ready = loop.create_future()

        def _on_writable() -> None:
            if not ready.done():
                ready.set_result(None)

        loop.add_writer(fd, _on_writable)
        try:
            await asyncio.wait_for(ready, timeout)
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            loop.remove_writer(fd)

    def _release(self) -> None:
        for fd in (self.primary_fd, self.secondary_fd):
            if fd is None:
                continue
            try:
                os.close(fd)
            except OSError as e:
                logger.debug('Error closing fd %d: %s', fd, e)
        self.primary_fd = None
        self.secondary_fd = None

        if self._alias_created:
            try:
                os.remove(self.alias)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning('Failed to clean up port symlink %s: %s', self.alias, e)
            self._alias_created = False

    def close(self) -> None:
        """Close both sides of the pty and remove the alias."""
        if not self.is_open:
            return
        self._release()
        logger.info('Removed virtual serial port %s', self.port_name)
