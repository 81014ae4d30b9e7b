#!/usr/bin/env python
# jumperless/common.py - Wire constants and error types shared by all modules
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

from typing import List, Sequence

__all__ = [
    'DEFAULT_BAUD_RATE', 'DEFAULT_BUFFER_SIZE', 'END_LINE', 'FIRMWARE_QUERY',
    'CONFIG_QUERY', 'PYTHON_PREFIX', 'PYTHON_PROMPT', 'FIRMWARE_MARKER',
    'MIN_DAC_VOLTAGE', 'MAX_DAC_VOLTAGE', 'NAMED_COLORS',
    'JumperlessError', 'ConfigurationError', 'ParseError', 'ParseErrors',
    'UnexpectedCommandOutput', 'ChannelError', 'DeliveryError',
    'NoResponsesConfigured', 'PartialWrite', 'DeviceNotFound',
]

DEFAULT_BAUD_RATE = 115200
DEFAULT_BUFFER_SIZE = 1024

# The device terminates every line it prints with CR+LF.
END_LINE = '\r\n'

FIRMWARE_QUERY = '?'
CONFIG_QUERY = '~'
PYTHON_PREFIX = '>'
PYTHON_PROMPT = 'Python>'
FIRMWARE_MARKER = 'firmware version:'

MIN_DAC_VOLTAGE = -8.0
MAX_DAC_VOLTAGE = 8.0

# Searched in order by the nets parser; the first prefix match wins.
NAMED_COLORS = (
    'red',
    'orange',
    'amber',
    'yellow',
    'chartreuse',
    'green',
    'seafoam',
    'cyan',
    'blue',
    'royal blue',
    'indigo',
    'violet',
    'purple',
    'pink',
    'magenta',
    'white',
    'black',
    'grey',
)


class JumperlessError(Exception):
    """Base class for all errors raised by this library."""


class ConfigurationError(JumperlessError):
    """Raised when emulator configuration is invalid (bad regex, empty mapping, ...)."""


class ParseError(JumperlessError, ValueError):
    """A single line of device output could not be parsed."""


class ParseErrors(JumperlessError):
    """
    Aggregate of the per-line errors collected while parsing device output.

    Parsers return this alongside whatever they could recover instead of
    raising it, so callers can decide whether partial data is usable.
    """

    def __init__(self, errors: Sequence[Exception]):
        self.errors: List[Exception] = list(errors)
        super().__init__('; '.join(str(e) for e in self.errors))

    def __len__(self) -> int:
        return len(self.errors)

    def __iter__(self):
        return iter(self.errors)

    @classmethod
    def from_list(cls, errors: Sequence[Exception]):
        """Returns None for an empty list, otherwise a ParseErrors."""
        if not errors:
            return None
        return cls(errors)


class UnexpectedCommandOutput(JumperlessError, ValueError):
    """The device did not wrap its reply in the expected prompt envelope."""


class ChannelError(JumperlessError, OSError):
    """The virtual or real byte channel could not be opened, used or closed."""


class DeliveryError(JumperlessError):
    """A response could not be delivered for one request."""


class NoResponsesConfigured(DeliveryError):
    """A mapping matched, but it has no responses to choose from."""


class PartialWrite(DeliveryError):
    """Fewer bytes were written to the channel than the response holds."""


class DeviceNotFound(JumperlessError):
    """No serial port answered like a Jumperless device."""
