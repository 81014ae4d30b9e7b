"""Command-line interface definitions for the emulator and the proxy.

This module isolates all `argparse` boiler-plate so that the entry points'
runtime logic can be imported without side-effects and to make argument-parsing
unit-testable.
"""
from __future__ import annotations

import argparse
from argparse import ArgumentParser
import os
from typing import List, Optional

from jumperless.common import DEFAULT_BAUD_RATE, DEFAULT_BUFFER_SIZE
from jumperless.logging_config import VALID_LOG_LEVELS

CONFIG_ENV = 'JUMPERLESS_CONFIG'
VIRTUAL_PORT_ENV = 'JUMPERLESS_VIRTUAL_PORT'


def _add_logging_options(parser: ArgumentParser) -> None:
    group = parser.add_argument_group('Logging options')
    group.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    group.add_argument('--verbosity', dest='verbosity', default=None, choices=tuple(VALID_LOG_LEVELS), help='Verbosity to emit (overrides JUMPERLESS_VERBOSITY)')
    group.add_argument('-l', '--log-file', dest='log', default=None, help='Destination to write logs')


def build_emulator_arg_parser() -> ArgumentParser:
    """Return an `ArgumentParser` pre-configured with all emulator options."""
    parser = ArgumentParser(
        'jumperless-emulator',
        description='Emulate a Jumperless on a virtual serial port',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument('-c', '--config', default=os.environ.get(CONFIG_ENV), help='YAML or JSON emulator configuration')

    # Virtual port --------------------------------------------------------
    group = parser.add_argument_group('Virtual port options')
    group.add_argument('--virtual-port', default=os.environ.get(VIRTUAL_PORT_ENV), metavar='PATH', help='Stable path to publish the virtual port under (overrides the config file)')
    group.add_argument('--buffer-size', type=int, default=None, metavar='BYTES', help=f'Maximum bytes per read (default from config, else {DEFAULT_BUFFER_SIZE})')

    _add_logging_options(parser)
    return parser


def build_proxy_arg_parser() -> ArgumentParser:
    """Return an `ArgumentParser` pre-configured with all recording proxy options."""
    parser = ArgumentParser(
        'jumperless-proxy',
        description='Proxy a real Jumperless onto a virtual serial port and record the traffic',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    # Serial ports --------------------------------------------------------
    group = parser.add_argument_group('Serial port options')
    group.add_argument('--real-port', default=None, metavar='PATH', help='Serial port of the real device (auto-detected when omitted)')
    group.add_argument('--virtual-port', default=os.environ.get(VIRTUAL_PORT_ENV), metavar='PATH', help='Stable path to publish the virtual port under')
    group.add_argument('--baud-rate', type=int, default=DEFAULT_BAUD_RATE, help='Baud rate of the real device')
    group.add_argument('--buffer-size', type=int, default=DEFAULT_BUFFER_SIZE, metavar='BYTES', help='Maximum bytes per read')

    # Recording -----------------------------------------------------------
    group = parser.add_argument_group('Recording options')
    group.add_argument('-o', '--output', default=None, metavar='FILE', help='Save the recording here (.yaml, .yml or .json)')
    group.add_argument('--overwrite', action='store_true', help='Replace the output file if it already exists')
    group.add_argument('-q', '--quiet', action='store_true', help='Do not print proxied traffic')

    _add_logging_options(parser)
    return parser


def parse_emulator_args(argv: Optional[List[str]] = None):
    """Parse *argv* (or *sys.argv* if None) and return the populated Namespace."""
    return build_emulator_arg_parser().parse_args(argv)


def parse_proxy_args(argv: Optional[List[str]] = None):
    """Parse *argv* (or *sys.argv* if None) and return the populated Namespace."""
    return build_proxy_arg_parser().parse_args(argv)
