#!/usr/bin/env python
# tests/test_state.py - Tests for the emulated hardware state
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

import unittest

from parameterized import parameterized

from jumperless.emulator.models import Connection, GPIOPin
from jumperless.emulator.state import HardwareState


class HardwareStateTest(unittest.TestCase):

    def setUp(self):
        self.state = HardwareState.default()

    def test_default_board(self):
        self.assertEqual(self.state.firmware_version, '5.2.2.0')
        self.assertEqual(self.state.get_dac_voltage('0'), 3.3)
        self.assertEqual(self.state.get_dac_voltage('TOP_RAIL'), 3.5)
        self.assertEqual(self.state.get_gpio_value('0'), 0)
        self.assertIn('GND', self.state.nodes)
        self.assertEqual(self.state.connections, [])

    @parameterized.expand([
        ('lower_bound', -8.0),
        ('zero', 0.0),
        ('upper_bound', 8.0),
        ('fraction', 1.234),
    ])
    def test_set_dac_in_range(self, _, voltage):
        self.assertTrue(self.state.set_dac('1', voltage))
        self.assertEqual(self.state.get_dac_voltage('1'), voltage)

    @parameterized.expand([
        ('too_low', -8.01),
        ('too_high', 9.0),
    ])
    def test_set_dac_out_of_range_is_ignored(self, _, voltage):
        self.assertFalse(self.state.set_dac('1', voltage))
        self.assertEqual(self.state.get_dac_voltage('1'), 0.0)

    def test_set_dac_creates_unknown_channel(self):
        self.assertIsNone(self.state.get_dac_voltage('7'))
        self.state.set_dac('7', 2.0)
        self.assertEqual(self.state.get_dac_voltage('7'), 2.0)

    def test_rail_numbers_alias_rail_names(self):
        self.state.set_dac('2', 5.0)
        self.assertEqual(self.state.get_dac_voltage('TOP_RAIL'), 5.0)
        self.assertEqual(self.state.get_dac_voltage('3'), 3.5)

    def test_adc_is_read_only_lookup(self):
        self.assertEqual(self.state.get_adc_voltage('0'), 0.0)
        self.assertIsNone(self.state.get_adc_voltage('99'))

    def test_set_gpio_keeps_pin_configuration(self):
        self.state.gpio_pins['3'] = GPIOPin(value=0, direction='output', pull='up')
        self.assertTrue(self.state.set_gpio('3', 1))

        pin = self.state.gpio_pins['3']
        self.assertEqual(pin.value, 1)
        self.assertEqual(pin.direction, 'output')
        self.assertEqual(pin.pull, 'up')

    @parameterized.expand([
        ('two', 2),
        ('negative', -1),
    ])
    def test_set_gpio_rejects_non_binary(self, _, value):
        self.assertFalse(self.state.set_gpio('0', value))
        self.assertEqual(self.state.get_gpio_value('0'), 0)

    def test_connect_twice_is_one_connection(self):
        self.assertTrue(self.state.connect('A', 'B'))
        self.assertFalse(self.state.connect('A', 'B'))
        self.assertEqual(len(self.state.connections), 1)

    def test_connect_either_order_is_one_connection(self):
        self.state.connect('A', 'B')
        self.state.connect('B', 'A')
        self.assertEqual(self.state.connections, [Connection('A', 'B')])
        self.assertTrue(self.state.is_connected('B', 'A'))

    def test_disconnect_either_order(self):
        self.state.connect('A', 'B')
        self.state.connect('C', 'D')
        self.assertTrue(self.state.disconnect('B', 'A'))
        self.assertFalse(self.state.is_connected('A', 'B'))
        self.assertTrue(self.state.is_connected('C', 'D'))
        self.assertFalse(self.state.disconnect('A', 'B'))

    def test_clear_connections(self):
        self.state.connect('A', 'B')
        self.state.connect('C', 'D')
        self.state.clear_connections()
        self.assertEqual(self.state.connections, [])

    def test_initial_connections_are_deduplicated(self):
        state = HardwareState(connections=[Connection('A', 'B'), Connection('B', 'A')])
        self.assertEqual(len(state.connections), 1)


if __name__ == '__main__':
    unittest.main()
