#!/usr/bin/env python
# jumperless/daemon/main.py - Entry points for the emulator and recording proxy
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
import logging
import os
import signal
import sys
from typing import List, Optional

from jumperless.common import ConfigurationError, JumperlessError
from jumperless.daemon.cli import parse_emulator_args, parse_proxy_args
from jumperless.emulator.config import load_config
from jumperless.emulator.engine import ResponseEngine
from jumperless.emulator.server import VirtualDevice
from jumperless.logging_config import VERBOSITY_ENV, setup_logging
from jumperless.proxy.proxy import RecordingProxy
from jumperless.proxy.recording import save_recording

logger = logging.getLogger(__name__)


def _configure_logging(option) -> None:
    if option.verbosity:
        os.environ[VERBOSITY_ENV] = option.verbosity
    setup_logging(verbose=option.verbose, log_file=option.log)


def _install_stop_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)


async def _emulator_main(argv: Optional[List[str]] = None) -> int:
    option = parse_emulator_args(argv)
    _configure_logging(option)

    stop_event = asyncio.Event()
    _install_stop_handlers(stop_event)

    try:
        config = load_config(option.config)
        if option.virtual_port:
            config.virtual_port = option.virtual_port
        if option.buffer_size:
            config.buffer_size = option.buffer_size

        engine = ResponseEngine(config.mappings, config.hardware)
        device = VirtualDevice(
            engine,
            virtual_port=config.virtual_port,
            buffer_size=config.buffer_size,
            drain_timeout=config.drain_timeout,
        )
        logger.info('Loaded %d request/response mappings', len(config.mappings))
        await device.serve_forever(stop_event)
    except JumperlessError as e:
        logger.critical('Emulator failed: %s', e, exc_info=True)
        return 1
    return 0


async def _proxy_main(argv: Optional[List[str]] = None) -> int:
    option = parse_proxy_args(argv)
    _configure_logging(option)

    stop_event = asyncio.Event()
    _install_stop_handlers(stop_event)

    try:
        # save_recording checks again, after the session.
        if option.output and os.path.exists(option.output) and not option.overwrite:
            raise ConfigurationError(f'{option.output} already exists; pass --overwrite to replace it')

        proxy = RecordingProxy(
            real_port=option.real_port,
            virtual_port=option.virtual_port,
            baud_rate=option.baud_rate,
            buffer_size=option.buffer_size,
            quiet=option.quiet,
        )
        recording = await proxy.run(stop_event)

        if option.output:
            save_recording(recording, option.output,
                           virtual_port=option.virtual_port,
                           overwrite=option.overwrite)
    except JumperlessError as e:
        logger.critical('Proxy failed: %s', e, exc_info=True)
        return 1
    return 0


def emulator_main():
    # work-around asyncio vs. setuptools console_scripts
    sys.exit(asyncio.run(_emulator_main()))


def proxy_main():
    sys.exit(asyncio.run(_proxy_main()))


if __name__ == '__main__':
    emulator_main()
