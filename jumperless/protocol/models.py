"""Typed dataclass models for structured device output.

These are the records the parser recovers from the device's text output and
that status reporting is built from.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

__all__ = [
    "Net",
    "ConfigEntry",
    "ConfigSection",
]


@dataclass
class Net:
    index: int
    name: str
    voltage: Optional[str] = None
    color: Optional[str] = None
    nodes: List[str] = field(default_factory=list)
    # Auxiliary ADC / GPIO readings printed after the node list, verbatim.
    extra_data: Optional[str] = None


@dataclass
class ConfigEntry:
    key: str
    value: str


@dataclass
class ConfigSection:
    name: str
    entries: List[ConfigEntry] = field(default_factory=list)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        for entry in self.entries:
            if entry.key == key:
                return entry.value
        return default
