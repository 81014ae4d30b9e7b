#!/usr/bin/env python
# tests/test_engine.py - Tests for request matching and response delivery
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

import asyncio
import random
import unittest
from unittest.mock import AsyncMock, call, patch

from parameterized import parameterized

from jumperless.common import ConfigurationError, NoResponsesConfigured, PartialWrite
from jumperless.emulator.engine import (
    Channel, ResponseEngine, default_mappings, quote_chunk, resolve_placeholders,
    unquote_chunk)
from jumperless.emulator.models import (
    RequestResponseMapping, ResponseChunk, ResponseConfig, ResponseOption,
    SelectionMode)
from jumperless.emulator.state import HardwareState
from jumperless.protocol.parser import (
    parse_config, parse_dac_reply, parse_firmware_version, parse_nets,
    parse_python_reply)


class RecordingChannel(Channel):
    """Collects every write; optionally accepts at most *accept* bytes."""

    def __init__(self, accept=None):
        self.writes = []
        self.accept = accept

    def write(self, data):
        self.writes.append(bytes(data))
        if self.accept is None:
            return len(data)
        return min(self.accept, len(data))

    @property
    def text(self):
        return b''.join(self.writes).decode('utf-8')


def mapping(request, *texts, is_regex=False, **config):
    return RequestResponseMapping(
        request=request,
        is_regex=is_regex,
        responses=[ResponseOption.from_text(t) for t in texts],
        response_config=ResponseConfig(**config),
    )


def respond(engine, request):
    channel = RecordingChannel()
    handled = asyncio.run(engine.handle_request(request, channel))
    return handled, channel


@patch('jumperless.emulator.engine.asyncio.sleep', new_callable=AsyncMock)
class ResponseEngineTest(unittest.TestCase):

    @parameterized.expand([
        ('numbered', '0', '1.5', '1.50V'),
        ('negative', '1', '-2.25', '-2.25V'),
        ('named', 'TOP_RAIL', '5', '5.00V'),
        ('rounded', '0', '3.333', '3.33V'),
        ('extreme', '1', '8.0', '8.00V'),
    ])
    def test_set_dac_then_placeholder(self, _sleep, _, channel, value, expected):
        engine = ResponseEngine([
            mapping('set_dac', 'OK'),
            mapping('read', '{{dac_voltage:%s}}' % channel),
        ])
        respond(engine, f'>set_dac({channel}, {value})')
        _, out = respond(engine, 'read')
        self.assertEqual(out.text, expected)

    def test_out_of_range_set_dac_keeps_voltage(self, _sleep):
        engine = ResponseEngine([mapping('read', '{{dac_voltage:0}}')])
        respond(engine, '>set_dac(0, 12)')
        respond(engine, '>set_dac(0, volts)')
        _, out = respond(engine, 'read')
        self.assertEqual(out.text, '3.30V')

    def test_state_commands_apply_without_a_mapping(self, _sleep):
        engine = ResponseEngine([])
        respond(engine, '>gpio_set(4, 1)')
        respond(engine, '>connect(D1, GPIO_1)')
        self.assertEqual(engine.state.get_gpio_value('4'), 1)
        self.assertTrue(engine.state.is_connected('GPIO_1', 'D1'))

    def test_disconnect_is_not_read_as_connect(self, _sleep):
        engine = ResponseEngine([])
        respond(engine, '>connect(A, B)')
        respond(engine, '>disconnect(A, B)')
        self.assertEqual(engine.state.connections, [])

    def test_clear(self, _sleep):
        engine = ResponseEngine([])
        respond(engine, '>connect(A, B)')
        respond(engine, '>connect(C, D)')
        respond(engine, '>clear()')
        self.assertEqual(engine.state.connections, [])

    def test_sequential_selection_cycles(self, _sleep):
        engine = ResponseEngine([mapping('ping', 'r0', 'r1', 'r2')])
        seen = [respond(engine, 'ping')[1].text for _ in range(6)]
        self.assertEqual(seen, ['r0', 'r1', 'r2', 'r0', 'r1', 'r2'])

    def test_counters_are_per_mapping(self, _sleep):
        engine = ResponseEngine([mapping('a', 'a0', 'a1'), mapping('b', 'b0', 'b1')])
        self.assertEqual(respond(engine, 'a')[1].text, 'a0')
        self.assertEqual(respond(engine, 'b')[1].text, 'b0')
        self.assertEqual(respond(engine, 'a')[1].text, 'a1')
        self.assertEqual(engine.counters, {0: 2, 1: 1})

    def test_weighted_selection_follows_weights(self, _sleep):
        m = RequestResponseMapping(
            request='x',
            responses=[ResponseOption.from_text('light', weight=1),
                       ResponseOption.from_text('heavy', weight=3)],
            response_config=ResponseConfig(selection_mode=SelectionMode.WEIGHTED),
        )
        engine = ResponseEngine([m], rng=random.Random(1234))

        draws = 4000
        heavy = sum(
            engine.select_response(0, m).chunks[0].data == 'heavy' for _ in range(draws))
        self.assertAlmostEqual(heavy / draws, 0.75, delta=0.05)

    def test_non_positive_weight_counts_as_one(self, _sleep):
        m = RequestResponseMapping(
            request='x',
            responses=[ResponseOption.from_text('a', weight=0),
                       ResponseOption.from_text('b', weight=-5)],
            response_config=ResponseConfig(selection_mode=SelectionMode.WEIGHTED),
        )
        engine = ResponseEngine([m], rng=random.Random(99))
        picked = {engine.select_response(0, m).chunks[0].data for _ in range(200)}
        self.assertEqual(picked, {'a', 'b'})

    def test_random_selection_stays_in_range(self, _sleep):
        m = mapping('x', 'a', 'b', 'c', selection_mode=SelectionMode.RANDOM)
        engine = ResponseEngine([m], rng=random.Random(7))
        picked = {engine.select_response(0, m).chunks[0].data for _ in range(300)}
        self.assertEqual(picked, {'a', 'b', 'c'})
        self.assertEqual(engine.counters[0], 300)

    def test_unmatched_request_sends_nothing(self, _sleep):
        engine = ResponseEngine([mapping('?', 'firmware')])
        handled, out = respond(engine, '>unknown()')
        self.assertFalse(handled)
        self.assertEqual(out.writes, [])

    def test_first_matching_mapping_wins(self, _sleep):
        engine = ResponseEngine([
            mapping('dac', 'literal'),
            mapping(r'dac_get\((\d)\)', 'regex', is_regex=True),
        ])
        self.assertEqual(respond(engine, '>dac_get(1)')[1].text, 'literal')

    def test_literal_matches_substring(self, _sleep):
        engine = ResponseEngine([mapping('print_nets', 'nets')])
        self.assertEqual(respond(engine, '>print_nets()')[1].text, 'nets')

    @parameterized.expand([
        ('dollar', 'value $1 of $2', 'value 7 of b'),
        ('braced', '${1}0', '70'),
        ('missing_group', 'x$9y', 'xy'),
    ])
    def test_regex_captures(self, _sleep, _, template, expected):
        engine = ResponseEngine([
            mapping(r'get\((\d),\s*(\w)\)', template, is_regex=True)])
        self.assertEqual(respond(engine, 'get(7, b)')[1].text, expected)

    def test_capture_feeds_placeholder(self, _sleep):
        engine = ResponseEngine(default_mappings())
        _, out = respond(engine, '>dac_get(0)')
        self.assertEqual(out.text, 'Python> >dac_get(0)\r\n3.30V\r\n')
        self.assertEqual(parse_dac_reply(out.text), '3.30V')

    def test_invalid_regex_rejected(self, _sleep):
        with self.assertRaises(ConfigurationError):
            ResponseEngine([mapping('dac_get((', 'x', is_regex=True)])

    def test_no_responses_configured(self, _sleep):
        engine = ResponseEngine([RequestResponseMapping(request='?')])
        with self.assertRaises(NoResponsesConfigured):
            engine.select_response(0, engine.mappings[0])

        handled, out = respond(engine, '?')
        self.assertFalse(handled)
        self.assertEqual(out.writes, [])

    def test_partial_write_is_reported(self, _sleep):
        engine = ResponseEngine([mapping('?', 'firmware version')])
        channel = RecordingChannel(accept=3)
        result = engine.match('?')
        option = engine.select_response(result.index, result.mapping)

        with self.assertRaises(PartialWrite):
            asyncio.run(engine.deliver(option, result, channel))

        self.assertFalse(asyncio.run(engine.handle_request('?', channel)))

    def test_chunks_are_written_separately_in_order(self, sleep):
        m = RequestResponseMapping(
            request='go',
            responses=[ResponseOption(chunks=[
                ResponseChunk('one', delay=0.01),
                ResponseChunk('two', delay=0.01),
                ResponseChunk('three', delay=0.01),
            ])],
        )
        _, out = respond(ResponseEngine([m]), 'go')
        self.assertEqual(out.writes, [b'one', b'two', b'three'])
        self.assertEqual(sleep.await_count, 3)

    def test_mapping_delay_waited_once_before_chunk_delays(self, sleep):
        m = RequestResponseMapping(
            request='go',
            responses=[ResponseOption(chunks=[
                ResponseChunk('a', delay=0.1),
                ResponseChunk('b', delay=0.2),
            ])],
            response_config=ResponseConfig(delay=0.5),
        )
        respond(ResponseEngine([m]), 'go')
        self.assertEqual(sleep.await_args_list, [call(0.5), call(0.1), call(0.2)])

    def test_jitter_is_added_to_delay(self, sleep):
        engine = ResponseEngine(
            [mapping('go', 'x', delay=0.1, jitter_max=0.05)], rng=random.Random(3))
        respond(engine, 'go')
        waited = sleep.await_args.args[0]
        self.assertGreaterEqual(waited, 0.1)
        self.assertLessEqual(waited, 0.15)

    def test_no_wait_without_delay(self, sleep):
        respond(ResponseEngine([mapping('go', 'x')]), 'go')
        sleep.assert_not_awaited()

    def test_chunked_transmission(self, sleep):
        engine = ResponseEngine([
            mapping('go', 'abcdefghij', chunked=True, chunk_size=4, chunk_delay=0.05)])
        _, out = respond(engine, 'go')
        self.assertEqual(out.writes, [b'abcd', b'efgh', b'ij'])
        self.assertEqual(sleep.await_args_list, [call(0.05), call(0.05)])

    def test_chunked_without_size_is_one_write(self, sleep):
        engine = ResponseEngine([mapping('go', 'abcdef', chunked=True, chunk_size=0)])
        _, out = respond(engine, 'go')
        self.assertEqual(out.writes, [b'abcdef'])

    def test_quoted_chunk_is_unescaped(self, _sleep):
        engine = ResponseEngine([mapping('go', '"line\\r\\n\\tindented"')])
        self.assertEqual(respond(engine, 'go')[1].text, 'line\r\n\tindented')

    def test_default_firmware_query(self, _sleep):
        _, out = respond(ResponseEngine(default_mappings()), '?')
        self.assertEqual(parse_firmware_version(out.text), '5.2.2.0')

    def test_default_config_dump_tracks_dacs(self, _sleep):
        engine = ResponseEngine(default_mappings())
        respond(engine, '>set_dac(TOP_RAIL, 5.0)')
        _, out = respond(engine, '~')

        sections, errors = parse_config(out.text)
        self.assertIsNone(errors)
        dacs = {s.name: s for s in sections}['dacs']
        self.assertEqual(dacs.get('dac0_voltage'), '3.30V')
        self.assertEqual(dacs.get('top_rail_voltage'), '5.00V')

    def test_default_print_nets_parses(self, _sleep):
        engine = ResponseEngine(default_mappings())
        respond(engine, '>set_dac(1, 2.5)')
        _, out = respond(engine, '>print_nets()')

        nets, errors = parse_nets(parse_python_reply(out.text))
        self.assertIsNone(errors)
        self.assertEqual([n.name for n in nets], ['GND', 'Top Rail', 'Bottom Rail', 'DAC 0', 'DAC 1'])
        self.assertEqual(nets[4].voltage, '2.50V')
        self.assertEqual(nets[4].nodes, ['DAC_1'])

    def test_unencodable_chunk_is_a_delivery_error(self, _sleep):
        engine = ResponseEngine([mapping('bad', '"\\ud800"')] + default_mappings())
        channel = RecordingChannel()

        self.assertFalse(asyncio.run(engine.handle_request('bad', channel)))
        self.assertEqual(channel.writes, [])

        self.assertTrue(asyncio.run(engine.handle_request('?', channel)))
        self.assertEqual(parse_firmware_version(channel.text), '5.2.2.0')

    def test_escaped_bytes_are_sent_raw(self, _sleep):
        engine = ResponseEngine([mapping('go', '"ok\\udcff\\udce2"')])
        _, out = respond(engine, 'go')
        self.assertEqual(out.writes, [b'ok\xff\xe2'])

    def test_placeholder_split_across_chunks(self, _sleep):
        m = RequestResponseMapping(
            request='go',
            responses=[ResponseOption(chunks=[
                ResponseChunk('DAC0: {{dac_vol'),
                ResponseChunk('tage:0}} {'),
                ResponseChunk('{gpio_value:1}}\r\n'),
            ])],
        )
        _, out = respond(ResponseEngine([m]), 'go')
        self.assertEqual(out.writes, [b'DAC0: ', b'3.30V ', b'0\r\n'])

    def test_unclosed_braces_are_sent_with_last_chunk(self, _sleep):
        m = RequestResponseMapping(
            request='go',
            responses=[ResponseOption(chunks=[
                ResponseChunk('a {{b'),
                ResponseChunk('c'),
            ])],
        )
        _, out = respond(ResponseEngine([m]), 'go')
        self.assertEqual(out.writes, [b'a ', b'{{bc'])


class PlaceholderTest(unittest.TestCase):

    def setUp(self):
        self.state = HardwareState.default()

    @parameterized.expand([
        ('dac_voltage', '{{dac_voltage:0}}', '3.30V'),
        ('dac_rail_number', '{{dac_voltage:2}}', '3.50V'),
        ('dac_value', '{{dac_value:TOP_RAIL}}', '3.50'),
        ('unknown_dac', '{{dac_voltage:9}}', '0.00V'),
        ('adc_voltage', '{{adc_voltage:4}}', '0.00V'),
        ('gpio_value', '{{gpio_value:1}}', '0'),
        ('unknown_gpio', '{{gpio_value:99}}', '0'),
        ('not_connected', '{{is_connected:A:B}}', 'false'),
        ('unknown_placeholder', '{{flux:1}}', '{{flux:1}}'),
    ])
    def test_resolve(self, _, text, expected):
        self.assertEqual(resolve_placeholders(text, self.state), expected)

    def test_live_values(self):
        self.state.set_gpio('1', 1)
        self.state.connect('A', 'B')
        self.state.adc_channels['0'].voltage = 1.234
        text = '{{gpio_value:1}} {{is_connected:B:A}} {{adc_voltage:0}}'
        self.assertEqual(resolve_placeholders(text, self.state), '1 true 1.23V')


class QuotingTest(unittest.TestCase):

    @parameterized.expand([
        ('plain', 'hello', 'hello'),
        ('escapes', '"a\\r\\nb"', 'a\r\nb'),
        ('unicode_escape', '"\\u00b5s"', 'µs'),
        ('lone_quote', '"', '"'),
        ('unterminated_escape', '"abc\\"', '"abc\\"'),
        ('not_a_string', '"1" + "2"', '"1" + "2"'),
    ])
    def test_unquote(self, _, data, expected):
        self.assertEqual(unquote_chunk(data), expected)

    def test_quote_survives_unquote(self):
        text = 'Python> >dac_get(0)\r\n3.3V\r\n\x1b[0m\t"quoted"\\'
        quoted = quote_chunk(text)
        self.assertTrue(quoted.startswith('"') and quoted.endswith('"'))
        self.assertNotIn('\r', quoted)
        self.assertEqual(unquote_chunk(quoted), text)

    def test_escaped_bytes_are_quoted_as_ascii(self):
        text = b'\xe2\x94\x80 \xff'.decode('utf-8', errors='surrogateescape')
        quoted = quote_chunk(text)
        self.assertEqual(quoted, '"─ \\udcff"')
        self.assertEqual(unquote_chunk(quoted), text)


if __name__ == '__main__':
    unittest.main()
