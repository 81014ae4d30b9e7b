#!/usr/bin/env python
# jumperless/protocol/parser.py - Parsers for Jumperless device text output
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
"""
Parsers for the human-oriented text the device prints.

The device never speaks a structured protocol: the nets table, the config
dump and Python REPL replies are all terminal output, complete with ANSI
escapes and backspaces. Everything here is pure and stateless.

Example nets table::

    Index\tName\t\tVoltage\t    Nodes\t
    1\t GND\t\t 0 V         GND,9
    4\t DAC 0\t\t 3.33 V      DAC_0,BUF_IN
    Index\tName\t\tColor\t    Nodes          ADC / GPIO
    11\t Net 11\t\t cyan        ADC_3,20  \t    \\b-2.78 V
    12\t Net 12\t\t \\b\\b* red    - f  GP_1,25   \t    input - floating
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple

from jumperless.common import (
    END_LINE, FIRMWARE_MARKER, NAMED_COLORS, PYTHON_PROMPT, ParseError,
    ParseErrors, UnexpectedCommandOutput)
from jumperless.protocol.models import ConfigEntry, ConfigSection, Net

__all__ = [
    'strip_ansi',
    'parse_nets',
    'parse_config',
    'parse_python_reply',
    'parse_dac_reply',
    'parse_firmware_version',
]

logger = logging.getLogger(__name__)

# CSI sequences (cursor movement, colours), OSC sequences and lone
# two-character escapes.
ANSI_ESCAPE_PATTERN = re.compile(
    r'\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)'
    r'|\x1b\[[0-?]*[ -/]*[@-~]'
    r'|\x1b[@-Z\\-_]')

NET_INDEX_PATTERN = re.compile(r'[+-]?\d+', re.ASCII)
INT32_MIN, INT32_MAX = -2 ** 31, 2 ** 31 - 1
GPIO_FLAG_PATTERN = re.compile(r'^- [A-Za-z]')
FIRMWARE_VERSION_PATTERN = re.compile(
    re.escape(FIRMWARE_MARKER) + r'\s*([^\s]+)', re.IGNORECASE)

CONFIG_LINE_PREFIX = '`['
NETS_HEADER_PREFIX = 'Index'


class _DuplicateIndex(Exception):
    """The device started redrawing a table it already printed."""


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from terminal output."""
    return ANSI_ESCAPE_PATTERN.sub('', text)


def _split_nodes(nodes_part: str) -> List[str]:
    return [node.strip() for node in nodes_part.split(',') if node.strip()]


def _parse_net_line(line: str, has_color: bool, current_index: int) -> Net:
    fields = line.split('\t', 2)
    if len(fields) < 3:
        raise ParseError(
            f'expected at least 3 fields, got {len(fields)} for line {line!r}')

    index_field = fields[0].strip()
    index = int(index_field) if NET_INDEX_PATTERN.fullmatch(index_field) else None
    if index is None or not INT32_MIN <= index <= INT32_MAX:
        raise ParseError(
            f'unable to parse index ({fields[0]!r}) from net line {line!r}')

    if index <= current_index:
        raise _DuplicateIndex(index)

    net = Net(index=index, name=fields[1].strip())
    rest = fields[2].strip()

    if not has_color:
        # "3.33 V      DAC_0,BUF_IN"
        before, sep, after = rest.partition(' V')
        if not sep:
            raise ParseError(f'unable to find voltage in net line {line!r}')
        net.voltage = before.strip() + 'V'
        nodes_part = after.strip()
    else:
        # "\b\b* red    - f  GP_1,25   \t    input - floating"
        rest = rest.lstrip('\b')
        if rest.startswith('*'):
            rest = rest[1:]
        rest = rest.strip()

        for color in NAMED_COLORS:
            if rest.startswith(color):
                net.color = color
                rest = rest[len(color):].strip()
                break
        else:
            raise ParseError(f'unable to find color in net line {line!r}')

        flag = GPIO_FLAG_PATTERN.match(rest)
        if flag:
            rest = rest[flag.end():].strip()

        before, sep, after = rest.partition('\t')
        nodes_part = before.strip()
        if sep:
            net.extra_data = after.strip()

    net.nodes = _split_nodes(nodes_part)
    return net


def parse_nets(text: str) -> Tuple[List[Net], Optional[ParseErrors]]:
    """
    Parse the table printed by ``print_nets()``.

    Header lines (starting with ``Index``) switch between the voltage layout
    and the colour layout depending on whether they mention ``Color``. A net
    whose index does not increase is a redraw of the table and is dropped
    silently; any other malformed line is recorded and skipped.

    Args:
        text: Raw table text (ANSI codes already removed).

    Returns:
        The nets that parsed, and a ParseErrors aggregate or None.
    """
    nets: List[Net] = []
    errors: List[Exception] = []
    has_color = False
    current_index = 0

    for line in text.split('\n'):
        trimmed = line.strip()
        if not trimmed:
            continue

        if trimmed.startswith(NETS_HEADER_PREFIX):
            has_color = 'Color' in trimmed
            continue

        try:
            net = _parse_net_line(trimmed, has_color, current_index)
        except _DuplicateIndex as e:
            logger.debug('Dropping redrawn net line with index %s', e.args[0])
            continue
        except ParseError as e:
            errors.append(ParseError(f'unable to parse net line {trimmed!r}: {e}'))
            continue

        current_index = net.index
        nets.append(net)

    return nets, ParseErrors.from_list(errors)


def parse_config(text: str) -> Tuple[List[ConfigSection], Optional[ParseErrors]]:
    """
    Parse the ``~`` configuration dump.

    Only lines of the form ```[section] key = value;`` are considered.
    The first value seen for a key within a section is kept.
    """
    sections: Dict[str, Dict[str, str]] = {}
    errors: List[Exception] = []

    for line in text.split('\n'):
        trimmed = line.strip()
        if not trimmed.startswith(CONFIG_LINE_PREFIX):
            continue

        trimmed = trimmed[len(CONFIG_LINE_PREFIX):]
        section, sep, entry = trimmed.partition(']')
        if not sep:
            errors.append(ParseError(f'unable to parse config line {line!r}'))
            continue

        entries = sections.setdefault(section, {})

        key, sep, value = entry.partition('=')
        if not sep:
            errors.append(ParseError(f'unable to parse config entry line {trimmed!r}'))
            continue

        # Whitespace between the value and the ';' is kept.
        value = value.strip()
        if value.endswith(';'):
            value = value[:-1]

        entries.setdefault(key.strip(), value)

    result = [
        ConfigSection(name=name, entries=[
            ConfigEntry(key=key, value=value) for key, value in entries.items()])
        for name, entries in sections.items()
    ]
    return result, ParseErrors.from_list(errors)


def parse_python_reply(raw: str) -> str:
    """
    Strip the REPL envelope from a reply to a ``>`` command.

    The device echoes the command after a ``Python>`` prompt, prints the
    result and prints the prompt again, so a well-formed reply always has at
    least three CR/LF separated lines.

    Raises:
        UnexpectedCommandOutput: if the envelope is missing or nothing is left
            after removing prompts and blank lines.
    """
    lines = strip_ansi(raw).split(END_LINE)
    if len(lines) < 3:
        raise UnexpectedCommandOutput(
            f'unexpected command output format: expected 3 lines, got {len(lines)}')

    filtered = [
        line.strip() for line in lines
        if line.strip() and not line.strip().startswith(PYTHON_PROMPT)
    ]

    if not filtered:
        raise UnexpectedCommandOutput(
            'unexpected command output format: no output lines after filtering')

    if len(filtered) == 1:
        return filtered[0]

    return '\n'.join(filtered)


def parse_dac_reply(raw: str) -> str:
    """Return the voltage in a ``dac_get()`` reply, always suffixed with ``V``."""
    result = parse_python_reply(raw).strip()
    if not result.endswith('V'):
        result += 'V'
    return result


def parse_firmware_version(text: str) -> Optional[str]:
    """
    Extract the firmware version from the reply to ``?``.

    Returns None if the text does not come from a Jumperless.
    """
    match = FIRMWARE_VERSION_PATTERN.search(strip_ansi(text))
    if not match:
        return None
    return match.group(1)
