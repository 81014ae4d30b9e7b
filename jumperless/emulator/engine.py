#!/usr/bin/env python3
"""
Jumperless Emulator Response Engine

This module turns requests read from the virtual port into replies: it
applies state-changing commands to the hardware state, finds the mapping
that answers the request, picks one of its responses and writes it out
with the configured timing.
"""

from __future__ import annotations

import ast
import asyncio
import json
import logging
import random
import re
from typing import Dict, List, NamedTuple, Optional, Pattern, Sequence, Tuple

from jumperless.common import (
    ConfigurationError, DeliveryError, NoResponsesConfigured, PartialWrite)
from jumperless.emulator.models import (
    RequestResponseMapping,
    ResponseChunk,
    ResponseConfig,
    ResponseOption,
    SelectionMode,
)
from jumperless.emulator.state import HardwareState

logger = logging.getLogger(__name__)

# State changing commands, applied in this order to every request.
SET_DAC_PATTERN = re.compile(r'set_dac\(\s*(\w+)\s*,\s*([^)]*?)\s*\)')
GPIO_SET_PATTERN = re.compile(r'gpio_set\(\s*(\w+)\s*,\s*([^)]*?)\s*\)')
CONNECT_PATTERN = re.compile(r'(?<!\w)connect\(\s*([^,)]+?)\s*,\s*([^)]+?)\s*\)')
DISCONNECT_PATTERN = re.compile(r'(?<!\w)disconnect\(\s*([^,)]+?)\s*,\s*([^)]+?)\s*\)')
CLEAR_PATTERN = re.compile(r'(?<!\w)clear\(\s*\)')

# Live hardware state placeholders
DAC_VOLTAGE_PLACEHOLDER = re.compile(r'\{\{dac_voltage:(\w+)\}\}')
DAC_VALUE_PLACEHOLDER = re.compile(r'\{\{dac_value:(\w+)\}\}')
ADC_VOLTAGE_PLACEHOLDER = re.compile(r'\{\{adc_voltage:(\w+)\}\}')
GPIO_VALUE_PLACEHOLDER = re.compile(r'\{\{gpio_value:(\w+)\}\}')
IS_CONNECTED_PLACEHOLDER = re.compile(r'\{\{is_connected:([^:}]+):([^}]+)\}\}')

CAPTURE_REFERENCE = re.compile(r'\$(?:(\d+)|\{(\d+)\})')

# Bytes that are not valid UTF-8 travel as lone surrogates (surrogateescape).
LONE_SURROGATE = re.compile('[\ud800-\udfff]')

ENCODING = 'utf-8'
ENCODING_ERRORS = 'surrogateescape'


class Channel:
    """
    What the engine writes responses to.

    ``write`` returns the number of bytes accepted, which may be fewer than
    were offered.
    """

    def write(self, data: bytes) -> int:
        raise NotImplementedError

    async def write_all(self, data: bytes) -> int:
        """
        Write *data*, waiting for the reader where the channel supports it.
        Returns the number of bytes written.
        """
        return self.write(data)


class MatchResult(NamedTuple):
    index: int
    mapping: RequestResponseMapping
    match: Optional[re.Match]


def quote_chunk(text: str) -> str:
    """
    Encode *text* as a double-quoted, backslash-escaped literal so control
    characters survive a round trip through a config file. Lone surrogates,
    which stand for bytes that were not UTF-8, are written as ``\\udcXX``.
    """
    quoted = json.dumps(text, ensure_ascii=False)
    return LONE_SURROGATE.sub(lambda m: f'\\u{ord(m.group()):04x}', quoted)


def unquote_chunk(data: str) -> str:
    """
    Decode a literal produced by quote_chunk (or written by hand in the same
    style). Text that is not quoted is returned unchanged; a quoted literal
    that cannot be decoded is sent as-is with a warning.
    """
    if len(data) < 2 or not (data[0] == '"' and data[-1] == '"'):
        return data

    try:
        value = ast.literal_eval(data)
    except (ValueError, SyntaxError) as e:
        logger.warning("Failed to unquote response chunk %r, sending it raw: %s", data, e)
        return data

    if not isinstance(value, str):
        logger.warning("Response chunk %r is not a string literal, sending it raw", data)
        return data

    return value


def expand_captures(template: str, match: re.Match) -> str:
    """Replace ``$1`` / ``${1}`` in *template* with groups of *match*."""
    def _group(m: re.Match) -> str:
        n = int(m.group(1) or m.group(2))
        if n > (match.re.groups or 0):
            return ''
        return match.group(n) or ''

    return CAPTURE_REFERENCE.sub(_group, template)


def _split_open_placeholder(text: str) -> Tuple[str, str]:
    """Split *text* before a ``{{`` that is not closed yet."""
    start = text.rfind('{{')
    if start != -1 and '}}' not in text[start:]:
        return text[:start], text[start:]
    if text.endswith('{'):
        return text[:-1], text[-1:]
    return text, ''


def _format_voltage(voltage: Optional[float], suffix: str = 'V') -> str:
    return f"{voltage if voltage is not None else 0.0:.2f}{suffix}"


def resolve_placeholders(text: str, state: HardwareState) -> str:
    """
    Replace ``{{...}}`` placeholders with values from *state*.

    Unknown channels resolve to a default instead of failing.
    """
    text = DAC_VOLTAGE_PLACEHOLDER.sub(
        lambda m: _format_voltage(state.get_dac_voltage(m.group(1))), text)
    text = DAC_VALUE_PLACEHOLDER.sub(
        lambda m: _format_voltage(state.get_dac_voltage(m.group(1)), suffix=''), text)
    text = ADC_VOLTAGE_PLACEHOLDER.sub(
        lambda m: _format_voltage(state.get_adc_voltage(m.group(1))), text)
    text = GPIO_VALUE_PLACEHOLDER.sub(
        lambda m: str(state.get_gpio_value(m.group(1)) or 0), text)
    text = IS_CONNECTED_PLACEHOLDER.sub(
        lambda m: 'true' if state.is_connected(m.group(1), m.group(2)) else 'false', text)
    return text


def _parse_float(value: str) -> Optional[float]:
    try:
        return float(value)
    except ValueError:
        return None


def _parse_int(value: str) -> Optional[int]:
    try:
        return int(value, 10)
    except ValueError:
        return None


class ResponseEngine:
    """
    Answers requests according to an ordered list of mappings.

    The engine owns the hardware state and the per-mapping request
    counters; callers must hand it one request at a time.
    """

    def __init__(self,
                 mappings: Sequence[RequestResponseMapping],
                 state: Optional[HardwareState] = None,
                 rng: Optional[random.Random] = None):
        """
        Args:
            mappings: Request/response mappings, in match order
            state: Hardware state to serve placeholders from
            rng: Random source for jitter and random/weighted selection

        Raises:
            ConfigurationError: if a regex mapping does not compile
        """
        self.mappings: List[RequestResponseMapping] = list(mappings)
        self.state = state if state is not None else HardwareState.default()
        self.counters: Dict[int, int] = {}
        self._random = rng or random.Random()
        self._patterns: Dict[int, Pattern] = {}

        for index, mapping in enumerate(self.mappings):
            if not mapping.is_regex:
                continue
            try:
                self._patterns[index] = re.compile(mapping.request)
            except re.error as e:
                raise ConfigurationError(
                    f"Invalid regex in mapping {index} ({mapping.request!r}): {e}") from e

    def apply_state_commands(self, request: str) -> None:
        """
        Apply every state changing command found in *request*.

        Malformed or out of range arguments are ignored.
        """
        m = SET_DAC_PATTERN.search(request)
        if m:
            voltage = _parse_float(m.group(2))
            if voltage is not None:
                self.state.set_dac(m.group(1), voltage)

        m = GPIO_SET_PATTERN.search(request)
        if m:
            value = _parse_int(m.group(2))
            if value is not None:
                self.state.set_gpio(m.group(1), value)

        m = CONNECT_PATTERN.search(request)
        if m:
            self.state.connect(m.group(1), m.group(2))

        m = DISCONNECT_PATTERN.search(request)
        if m:
            self.state.disconnect(m.group(1), m.group(2))

        if CLEAR_PATTERN.search(request):
            self.state.clear_connections()

    def match(self, request: str) -> Optional[MatchResult]:
        """
        Find the first mapping that answers *request*.

        Literal patterns match anywhere in the request; regex patterns are
        searched for.
        """
        for index, mapping in enumerate(self.mappings):
            if mapping.is_regex:
                m = self._patterns[index].search(request)
                if m:
                    return MatchResult(index, mapping, m)
            elif mapping.request in request:
                return MatchResult(index, mapping, None)
        return None

    def select_response(self, index: int, mapping: RequestResponseMapping) -> ResponseOption:
        """
        Pick the response for the next request answered by mapping *index*
        and advance that mapping's counter.

        Raises:
            NoResponsesConfigured: if the mapping has no responses
        """
        responses = mapping.responses
        if not responses:
            raise NoResponsesConfigured(
                f"Mapping {index} ({mapping.request!r}) has no responses configured")

        counter = self.counters.get(index, 0)
        n = len(responses)
        mode = mapping.response_config.selection_mode

        if n == 1 or mode == SelectionMode.SEQUENTIAL:
            selected = counter % n
        elif mode == SelectionMode.RANDOM:
            selected = self._random.randrange(n)
        else:
            total = sum(option.effective_weight for option in responses)
            draw = self._random.randrange(total)
            cumulative = 0
            selected = n - 1
            for i, option in enumerate(responses):
                cumulative += option.effective_weight
                if cumulative > draw:
                    selected = i
                    break

        self.counters[index] = counter + 1
        return responses[selected]

    def render(self, chunk: ResponseChunk, result: MatchResult) -> str:
        """
        Produce the text of one chunk with captures expanded. Placeholders
        are left for deliver(), which resolves them across chunk boundaries.
        """
        text = unquote_chunk(chunk.data)
        if result.match is not None:
            text = expand_captures(text, result.match)
        return text

    async def _wait(self, delay: float, jitter_max: float) -> None:
        if delay <= 0 and jitter_max <= 0:
            return
        if jitter_max > 0:
            delay += self._random.uniform(0, jitter_max)
        await asyncio.sleep(delay)

    async def _write(self, channel: Channel, data: bytes) -> None:
        written = await channel.write_all(data)
        if written is not None and written < len(data):
            raise PartialWrite(f"Wrote {written} of {len(data)} bytes")

    async def _send(self, channel: Channel, text: str, config: ResponseConfig) -> None:
        try:
            data = text.encode(ENCODING, errors=ENCODING_ERRORS)
        except UnicodeEncodeError as e:
            raise DeliveryError(f"Cannot encode response chunk {text!r}: {e}") from e

        if not config.chunked or config.chunk_size <= 0:
            await self._write(channel, data)
            return

        for start in range(0, len(data), config.chunk_size):
            end = start + config.chunk_size
            await self._write(channel, data[start:end])
            if end < len(data) and config.chunk_delay > 0:
                await asyncio.sleep(config.chunk_delay)

    async def deliver(self, option: ResponseOption, result: MatchResult, channel: Channel) -> None:
        """
        Write *option* to *channel*, chunk by chunk, honouring every delay.

        A placeholder split over two chunks is held back and sent, resolved,
        with the later chunk.

        Raises:
            PartialWrite: if the channel accepted fewer bytes than offered
            DeliveryError: if a chunk cannot be encoded
        """
        config = result.mapping.response_config
        await self._wait(config.delay, config.jitter_max)

        pending = ''
        last = len(option.chunks) - 1
        for i, chunk in enumerate(option.chunks):
            await self._wait(chunk.delay, chunk.jitter_max)
            text = pending + self.render(chunk, result)
            if i < last:
                text, pending = _split_open_placeholder(text)
            else:
                pending = ''
            if not text:
                continue
            text = resolve_placeholders(text, self.state)
            logger.debug("Sending response chunk: %r", text)
            await self._send(channel, text, config)

    async def handle_request(self, request: str, channel: Channel) -> bool:
        """
        Process one request end to end.

        Returns:
            True if a response was written, False on a miss or delivery error
        """
        logger.info(f"Received request: {request!r}")
        self.apply_state_commands(request)

        result = self.match(request)
        if result is None:
            logger.info(f"No response configured for request: {request!r}")
            return False

        try:
            option = self.select_response(result.index, result.mapping)
            await self.deliver(option, result, channel)
        except DeliveryError as e:
            logger.error(f"Failed to deliver response to {request!r}: {e}")
            return False

        return True


def default_mappings() -> List[RequestResponseMapping]:
    """
    Mappings that make the emulator answer like a stock board: firmware
    query, config dump, ``dac_get()`` and ``print_nets()``.
    """
    return [
        RequestResponseMapping(
            request='?',
            responses=[ResponseOption.from_text("Jumperless firmware version: 5.2.2.0\r\n")],
            response_config=ResponseConfig(delay=0.010, jitter_max=0.005),
        ),
        RequestResponseMapping(
            request='~',
            responses=[ResponseOption.from_text(
                "\r\n\r\ncopy / edit / paste any of these lines\r\n"
                "into the main menu to change a setting\r\n\r\n"
                "Jumperless Config:\r\n\r\n\r\n"
                "`[config] firmware_version = 5.2.2.0;\r\n\r\n"
                "`[hardware] generation = 5;\r\n"
                "`[hardware] revision = 5;\r\n"
                "`[hardware] probe_revision = 5;\r\n\r\n"
                "`[dacs] dac0_voltage = {{dac_voltage:0}};\r\n"
                "`[dacs] dac1_voltage = {{dac_voltage:1}};\r\n"
                "`[dacs] top_rail_voltage = {{dac_voltage:TOP_RAIL}};\r\n"
                "`[dacs] bottom_rail_voltage = {{dac_voltage:BOTTOM_RAIL}};\r\n\r\n")],
            response_config=ResponseConfig(delay=0.015, jitter_max=0.005),
        ),
        RequestResponseMapping(
            request=r'>dac_get\((\d+)\)',
            is_regex=True,
            responses=[ResponseOption.from_text(
                "Python> >dac_get($1)\r\n{{dac_voltage:$1}}\r\n")],
            response_config=ResponseConfig(delay=0.005, jitter_max=0.002),
        ),
        RequestResponseMapping(
            request='>print_nets()',
            responses=[ResponseOption.from_text(
                "Python> >print_nets()\r\n"
                "Index\tName\t\tVoltage\t\tNodes\r\n"
                "1\tGND\t\t 0 V         GND\r\n"
                "2\tTop Rail\t {{dac_value:TOP_RAIL}} V      TOP_R\r\n"
                "3\tBottom Rail\t {{dac_value:BOTTOM_RAIL}} V      BOT_R\r\n"
                "4\tDAC 0\t\t {{dac_value:0}} V      DAC_0\r\n"
                "5\tDAC 1\t\t {{dac_value:1}} V      DAC_1\r\n"
                "\r\n")],
            response_config=ResponseConfig(delay=0.020, jitter_max=0.010),
        ),
    ]
