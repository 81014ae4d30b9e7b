"""
Jumperless emulator

A scriptable virtual Jumperless on a pseudo-terminal, a parser and client for
the real device's text protocol, and a proxy that records real sessions into
emulator configuration.
"""

__version__ = '0.1.0'
