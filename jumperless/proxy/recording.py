#!/usr/bin/env python
# jumperless/proxy/recording.py - Turn proxied traffic into emulator mappings
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

import codecs
import logging
import os
import time
from typing import Callable, Optional

from jumperless.common import ConfigurationError
from jumperless.emulator.config import dump_data, mappings_to_list
from jumperless.emulator.engine import ENCODING, ENCODING_ERRORS, quote_chunk
from jumperless.emulator.models import Mappings, ResponseChunk, ResponseOption

__all__ = ['Recorder', 'save_recording']

logger = logging.getLogger(__name__)

# Recorded jitter, as a fraction of the observed delay.
JITTER_FRACTION = 0.1


class Recorder:
    """
    Records a request/response conversation as emulator mappings.

    Each request starts a new response option; every read from the device
    until the next request becomes one chunk of that option, timed relative
    to the event before it. Options for the same request accumulate on one
    mapping, so replaying cycles through the recorded answers.

    Response bytes go through one incremental decoder per option, so a
    character split across reads and bytes that are not UTF-8 replay
    exactly as the device sent them.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.mappings = Mappings()
        self._clock = clock
        self._request: Optional[str] = None
        self._option: Optional[ResponseOption] = None
        self._decoder = None
        self._last_event = 0.0

    def _flush(self) -> None:
        if self._request is not None and self._option is not None:
            tail = self._decoder.decode(b'', final=True)
            if tail:
                self._option.chunks.append(ResponseChunk(data=quote_chunk(tail)))
            logger.debug('Saving recording for request: %r', self._request)
            self.mappings.add_response(self._request, self._option)
        self._request = None
        self._option = None
        self._decoder = None

    def record_request(self, data: bytes) -> None:
        request = data.decode(ENCODING, errors='replace').strip()
        if not request:
            logger.debug('Ignoring blank request %r', data)
            return

        logger.debug('Recording request: %r', request)
        self._flush()
        self._request = request
        self._option = ResponseOption()
        self._decoder = codecs.getincrementaldecoder(ENCODING)(errors=ENCODING_ERRORS)
        self._last_event = self._clock()

    def record_response(self, data: bytes) -> None:
        if self._option is None:
            logger.warning('Received response without preceding request: %r', data)
            return

        now = self._clock()
        delay = max(now - self._last_event, 0.0)
        self._last_event = now

        text = self._decoder.decode(data)
        logger.debug('Recording response chunk: %r', text)
        self._option.chunks.append(ResponseChunk(
            data=quote_chunk(text),
            delay=delay,
            jitter_max=delay * JITTER_FRACTION,
        ))

    def finish(self) -> Mappings:
        """Flush the conversation in progress and return everything recorded."""
        self._flush()
        if self.mappings:
            logger.info('Recorded %d request/response mappings', len(self.mappings))
        else:
            logger.info('No requests/responses recorded')
        return self.mappings


def save_recording(mappings: Mappings, path: str,
                   virtual_port: Optional[str] = None,
                   overwrite: bool = False) -> None:
    """
    Write *mappings* as an emulator configuration file (YAML or JSON by
    extension) that load_config can replay.

    Raises:
        ConfigurationError: if *path* exists and *overwrite* is not set
    """
    if os.path.exists(path) and not overwrite:
        raise ConfigurationError(f'{path} already exists; refusing to overwrite it')

    emulator = {}
    if virtual_port:
        emulator['virtualPort'] = virtual_port
    emulator['mappings'] = mappings_to_list(mappings)

    dump_data({'emulator': emulator}, path)
    logger.info('Saved recording to %s', path)
