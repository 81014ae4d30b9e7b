#!/usr/bin/env python
# jumperless/logging_config.py - Centralized logging configuration
# Copyright 2025 jumperless-emu contributors
#
# This library is free software: you can redistribute it and/or modify
# it under the terms of the GNU Lesser General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
"""
Centralized logging configuration for the jumperless library.

This module provides a unified way to configure logging across the emulator,
the proxy and the device client using the JUMPERLESS_VERBOSITY environment
variable.
"""

import logging
import os
import sys
from typing import Optional

import colorlog

# Valid log levels
VALID_LOG_LEVELS = {
    'CRITICAL': logging.CRITICAL,
    'ERROR': logging.ERROR,
    'WARNING': logging.WARNING,
    'INFO': logging.INFO,
    'DEBUG': logging.DEBUG
}

VERBOSITY_ENV = 'JUMPERLESS_VERBOSITY'

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

LOG_COLORS = {
    'DEBUG': 'cyan',
    'INFO': 'green',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'red,bg_white',
}


def resolve_level(default_level: str = 'INFO') -> str:
    """
    Return the level name requested through JUMPERLESS_VERBOSITY.

    Unknown names fall back to *default_level* with a warning on stderr.
    """
    verbosity = os.environ.get(VERBOSITY_ENV, default_level).upper()
    if verbosity not in VALID_LOG_LEVELS:
        print(f"Warning: Invalid {VERBOSITY_ENV} '{verbosity}', using '{default_level}'",
              file=sys.stderr)
        verbosity = default_level
    return verbosity


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> logging.Logger:
    """
    Set up colorized console logging for the command line tools.

    :param verbose: Force DEBUG level regardless of JUMPERLESS_VERBOSITY.
    :param log_file: Optional path that also receives plain log lines.
    :return: The root 'jumperless' logger.
    """
    level = logging.DEBUG if verbose else VALID_LOG_LEVELS[resolve_level()]

    handler = colorlog.StreamHandler()
    handler.setFormatter(colorlog.ColoredFormatter(
        '%(log_color)s' + LOG_FORMAT,
        datefmt=DATE_FORMAT,
        log_colors=LOG_COLORS,
    ))

    logger = logging.getLogger('jumperless')
    logger.setLevel(level)
    logger.handlers = []  # Remove existing handlers
    logger.addHandler(handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(file_handler)

    return logger


