"""
Jumperless Emulator

Answers the device's serial protocol from configured request/response
mappings, tracking enough hardware state to fill in live values.
"""

from jumperless.emulator.config import EmulatorConfig, load_config
from jumperless.emulator.engine import ResponseEngine, default_mappings
from jumperless.emulator.server import VirtualDevice
from jumperless.emulator.state import HardwareState

__all__ = [
    'EmulatorConfig',
    'HardwareState',
    'ResponseEngine',
    'VirtualDevice',
    'default_mappings',
    'load_config',
]
