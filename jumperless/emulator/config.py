#!/usr/bin/env python
# jumperless/emulator/config.py - Emulator configuration files
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
Loading and saving emulator configuration.

Configuration files are JSON or YAML. Keys may be written in camelCase (as
recordings are) or snake_case. A file may keep everything at the top level
or under an ``emulator:`` section; the older layout with ``serial:`` and
``jumperless:`` sections is also understood.

Durations are seconds, or strings with a unit such as ``"10ms"``,
``"1.5s"`` or ``"1m30s"``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import os
import re
from typing import Any, Dict, List, Optional

import yaml

from jumperless.common import (
    DEFAULT_BAUD_RATE, DEFAULT_BUFFER_SIZE, ConfigurationError)
from jumperless.emulator.engine import default_mappings
from jumperless.emulator.models import (
    ADCChannel,
    DACChannel,
    GPIOPin,
    HardwareInfo,
    INASensor,
    Mappings,
    Node,
    RequestResponseMapping,
    ResponseChunk,
    ResponseConfig,
    ResponseOption,
    SelectionMode,
)
from jumperless.emulator.server import DEFAULT_DRAIN_TIMEOUT
from jumperless.emulator.state import HardwareState

__all__ = [
    'EmulatorConfig',
    'load_config',
    'config_from_dict',
    'parse_duration',
    'mappings_to_list',
    'dump_data',
]

logger = logging.getLogger(__name__)

YAML_EXTENSIONS = ('.yaml', '.yml')
JSON_EXTENSIONS = ('.json',)

_DURATION_PART = re.compile(r'([0-9]*\.?[0-9]+)(ns|us|µs|ms|s|m|h)')
_DURATION_UNITS = {
    'ns': 1e-9,
    'us': 1e-6,
    'µs': 1e-6,
    'ms': 1e-3,
    's': 1.0,
    'm': 60.0,
    'h': 3600.0,
}
_CAMEL_BOUNDARY = re.compile(r'(?<=[a-z0-9])(?=[A-Z])')
_ID_KEYED_TABLES = frozenset((
    'dac_channels', 'adc_channels', 'ina_sensors', 'gpio_pins', 'nodes'))


@dataclass
class EmulatorConfig:
    virtual_port: Optional[str] = None
    buffer_size: int = DEFAULT_BUFFER_SIZE
    baud_rate: int = DEFAULT_BAUD_RATE
    drain_timeout: float = DEFAULT_DRAIN_TIMEOUT
    hardware: HardwareState = field(default_factory=HardwareState.default)
    mappings: Mappings = field(default_factory=lambda: Mappings(default_mappings()))


def _normalize_key(key: str) -> str:
    return _CAMEL_BOUNDARY.sub('_', str(key)).replace('-', '_').lower()


def _normalize(data: Any, keep_keys: bool = False) -> Any:
    """Recursively snake_case dictionary keys.

    Hardware tables are keyed by channel ids, which are kept as-is.
    """
    if isinstance(data, dict):
        result = {}
        for k, v in data.items():
            key = str(k) if keep_keys else _normalize_key(k)
            result[key] = _normalize(v, keep_keys=not keep_keys and key in _ID_KEYED_TABLES)
        return result
    if isinstance(data, list):
        return [_normalize(v) for v in data]
    return data


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f'{key} must be a mapping, got {type(value).__name__}')
    return value


def parse_duration(value: Any) -> float:
    """
    Convert a duration from a config file to seconds.

    Raises:
        ConfigurationError: for anything that is not a duration
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise ConfigurationError(f'invalid duration: {value!r}')
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    if not text:
        return 0.0

    try:
        return float(text)
    except ValueError:
        pass

    sign = -1.0 if text.startswith('-') else 1.0
    text = text.lstrip('+-')

    total = 0.0
    pos = 0
    for m in _DURATION_PART.finditer(text):
        if m.start() != pos:
            break
        total += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()

    if pos != len(text) or pos == 0:
        raise ConfigurationError(f'invalid duration: {value!r}')
    return sign * total


def _chunk_from_dict(data: Any) -> ResponseChunk:
    if isinstance(data, str):
        return ResponseChunk(data=data)
    return ResponseChunk(
        data=str(data.get('data', '')),
        delay=parse_duration(data.get('delay')),
        jitter_max=parse_duration(data.get('jitter_max')),
    )


def _option_from_dict(data: Any) -> ResponseOption:
    if isinstance(data, str):
        return ResponseOption.from_text(data)
    if not isinstance(data, dict):
        raise ConfigurationError(f'invalid response option: {data!r}')

    weight = int(data.get('weight') or 1)
    if 'chunks' in data:
        chunks = [_chunk_from_dict(c) for c in data.get('chunks') or []]
        return ResponseOption(chunks=chunks, weight=weight)
    return ResponseOption.from_text(str(data.get('response', '')), weight=weight)


def _response_config_from_dict(data: Dict[str, Any]) -> ResponseConfig:
    mode = data.get('selection_mode') or SelectionMode.SEQUENTIAL.value
    try:
        selection_mode = SelectionMode(mode)
    except ValueError:
        raise ConfigurationError(f'unknown selection mode: {mode!r}') from None

    return ResponseConfig(
        delay=parse_duration(data.get('delay')),
        jitter_max=parse_duration(data.get('jitter_max')),
        chunked=bool(data.get('chunked', False)),
        chunk_size=int(data.get('chunk_size') or 0),
        chunk_delay=parse_duration(data.get('chunk_delay')),
        selection_mode=selection_mode,
    )


def _mapping_from_dict(index: int, data: Dict[str, Any]) -> RequestResponseMapping:
    if 'request' not in data:
        raise ConfigurationError(f'mapping {index} has no request')

    # A single 'response' string takes precedence over a 'responses' list.
    if data.get('response'):
        responses = [ResponseOption.from_text(str(data['response']))]
    else:
        responses = [_option_from_dict(o) for o in data.get('responses') or []]

    if not responses:
        raise ConfigurationError(
            f'mapping {index} ({data["request"]!r}) has no responses configured')

    mapping = RequestResponseMapping(
        request=str(data['request']),
        is_regex=bool(data.get('is_regex', False)),
        responses=responses,
        response_config=_response_config_from_dict(_section(data, 'response_config')),
    )

    if mapping.is_regex:
        try:
            re.compile(mapping.request)
        except re.error as e:
            raise ConfigurationError(
                f'invalid regex in mapping {index} ({mapping.request!r}): {e}') from e

    return mapping


def _hardware_from_dict(data: Dict[str, Any]) -> HardwareState:
    state = HardwareState.default()
    if not data:
        return state

    if 'firmware_version' in data:
        state.firmware_version = str(data['firmware_version'])

    hw = _section(data, 'hardware')
    if hw:
        state.hardware = HardwareInfo(
            generation=int(hw.get('generation', state.hardware.generation)),
            revision=int(hw.get('revision', state.hardware.revision)),
            probe_revision=int(hw.get('probe_revision', state.hardware.probe_revision)),
        )

    for channel, value in _section(data, 'dac_channels').items():
        state.dac_channels[str(channel)] = DACChannel(voltage=float(value.get('voltage', 0.0)))

    for channel, value in _section(data, 'adc_channels').items():
        state.adc_channels[str(channel)] = ADCChannel(
            voltage=float(value.get('voltage', 0.0)),
            max_value=float(value.get('max_value', 8.0)))

    for sensor, value in _section(data, 'ina_sensors').items():
        state.ina_sensors[str(sensor)] = INASensor(
            current=float(value.get('current', 0.0)),
            voltage=float(value.get('voltage', 0.0)),
            bus_voltage=float(value.get('bus_voltage', 0.0)),
            power=float(value.get('power', 0.0)))

    for pin, value in _section(data, 'gpio_pins').items():
        state.gpio_pins[str(pin)] = GPIOPin(
            value=int(value.get('value', 0)),
            direction=str(value.get('direction', 'input')),
            pull=str(value.get('pull', 'none')))

    for name, value in _section(data, 'nodes').items():
        state.nodes[str(name)] = Node(
            number=int(value.get('number', 0)),
            constant=str(value.get('constant', name)),
            aliases=list(value.get('aliases') or []),
            kind=str(value.get('type', value.get('kind', ''))))

    for conn in data.get('connections') or []:
        state.connect(str(conn['node_a']), str(conn['node_b']))

    return state


def config_from_dict(data: Optional[Dict[str, Any]]) -> EmulatorConfig:
    """
    Build an EmulatorConfig from decoded JSON / YAML.

    Raises:
        ConfigurationError: if the data is not a valid configuration
    """
    if data is None:
        return EmulatorConfig()
    if not isinstance(data, dict):
        raise ConfigurationError('configuration must be a mapping')

    data = _normalize(data)
    if isinstance(data.get('emulator'), dict):
        data = data['emulator']

    serial = _section(data, 'serial')
    config = EmulatorConfig()

    try:
        config.virtual_port = data.get('virtual_port') or serial.get('port') or None
        config.buffer_size = int(
            data.get('buffer_size') or serial.get('buffer_size') or DEFAULT_BUFFER_SIZE)
        config.baud_rate = int(
            data.get('baud_rate') or serial.get('baud_rate') or DEFAULT_BAUD_RATE)
        if 'drain_timeout' in data:
            config.drain_timeout = parse_duration(data['drain_timeout'])

        config.hardware = _hardware_from_dict(
            _section(data, 'jumperless') or _section(data, 'hardware_state'))

        if 'mappings' in data:
            config.mappings = Mappings(
                _mapping_from_dict(i, m) for i, m in enumerate(data['mappings'] or []))
    except (TypeError, ValueError, KeyError, AttributeError) as e:
        raise ConfigurationError(f'invalid configuration: {e}') from e

    return config


def load_config(path: Optional[str]) -> EmulatorConfig:
    """
    Load configuration from a JSON or YAML file.

    A missing file is not an error: the default configuration is used.

    Raises:
        ConfigurationError: if the file cannot be read or is invalid
    """
    if not path:
        return EmulatorConfig()

    if not os.path.exists(path):
        logger.warning(f"Configuration file not found: {path}")
        logger.info("Using default configuration")
        return EmulatorConfig()

    logger.info(f"Loading configuration from {path}")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            if path.lower().endswith(YAML_EXTENSIONS):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f'failed to read config file {path}: {e}') from e

    config = config_from_dict(data)
    logger.info(f"Configuration loaded: {len(config.mappings)} mappings")
    return config


def mappings_to_list(mappings: List[RequestResponseMapping]) -> List[Dict[str, Any]]:
    """Render mappings in the camelCase layout recordings are stored in."""
    result = []
    for mapping in mappings:
        entry: Dict[str, Any] = {'request': mapping.request}
        if mapping.is_regex:
            entry['isRegex'] = True
        entry['responses'] = [
            {
                'chunks': [
                    {'data': c.data, 'delay': c.delay, 'jitterMax': c.jitter_max}
                    for c in option.chunks
                ],
                **({'weight': option.weight} if option.weight != 1 else {}),
            }
            for option in mapping.responses
        ]
        result.append(entry)
    return result


def dump_data(data: Dict[str, Any], path: str) -> None:
    """
    Write *data* to *path* as YAML or JSON, chosen by file extension.

    Raises:
        ConfigurationError: for any other extension, or if the file cannot be written
    """
    is_yaml = path.lower().endswith(YAML_EXTENSIONS)
    if not is_yaml and not path.lower().endswith(JSON_EXTENSIONS):
        raise ConfigurationError(f'unsupported output format for {path}; use .yaml, .yml or .json')

    try:
        with open(path, 'w', encoding='utf-8') as f:
            if is_yaml:
                yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
            else:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.write('\n')
    except OSError as e:
        raise ConfigurationError(f'failed to write {path}: {e}') from e
