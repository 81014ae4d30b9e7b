from __future__ import annotations

"""Typed dataclass models used by the Jumperless emulator.

Two families live here: the simulated hardware (DAC/ADC channels, GPIO
pins, nodes and connections) and the request/response mappings that drive
the emulator's replies. Durations are in seconds.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

__all__ = [
    "DACChannel",
    "ADCChannel",
    "INASensor",
    "GPIOPin",
    "Connection",
    "Node",
    "HardwareInfo",
    "SelectionMode",
    "ResponseChunk",
    "ResponseOption",
    "ResponseConfig",
    "RequestResponseMapping",
    "Mappings",
]


@dataclass
class DACChannel:
    # -8.0 to +8.0 V
    voltage: float = 0.0


@dataclass
class ADCChannel:
    voltage: float = 0.0
    max_value: float = 8.0


@dataclass
class INASensor:
    current: float = 0.0
    voltage: float = 0.0
    bus_voltage: float = 0.0
    power: float = 0.0


@dataclass
class GPIOPin:
    value: int = 0
    direction: str = "input"  # input | output
    pull: str = "none"  # none | up | down


@dataclass
class Connection:
    """An unordered pair of connected nodes."""

    node_a: str
    node_b: str

    def joins(self, node_a: str, node_b: str) -> bool:
        return ((self.node_a == node_a and self.node_b == node_b)
                or (self.node_a == node_b and self.node_b == node_a))


@dataclass
class Node:
    number: int
    constant: str
    aliases: List[str] = field(default_factory=list)
    kind: str = ""  # gpio, dac, adc, power, ...


@dataclass
class HardwareInfo:
    generation: int = 5
    revision: int = 5
    probe_revision: int = 5


class SelectionMode(str, Enum):
    SEQUENTIAL = "sequential"
    RANDOM = "random"
    WEIGHTED = "weighted"


@dataclass
class ResponseChunk:
    data: str
    delay: float = 0.0
    jitter_max: float = 0.0


@dataclass
class ResponseOption:
    chunks: List[ResponseChunk] = field(default_factory=list)
    weight: int = 1

    @classmethod
    def from_text(cls, text: str, weight: int = 1) -> ResponseOption:
        """An option that sends *text* as a single chunk."""
        return cls(chunks=[ResponseChunk(data=text)], weight=weight)

    @property
    def effective_weight(self) -> int:
        return self.weight if self.weight > 0 else 1


@dataclass
class ResponseConfig:
    # Waited once before the first chunk of a response.
    delay: float = 0.0
    jitter_max: float = 0.0
    chunked: bool = False
    chunk_size: int = 0
    chunk_delay: float = 0.0
    selection_mode: SelectionMode = SelectionMode.SEQUENTIAL


@dataclass
class RequestResponseMapping:
    request: str
    is_regex: bool = False
    responses: List[ResponseOption] = field(default_factory=list)
    response_config: ResponseConfig = field(default_factory=ResponseConfig)


class Mappings(List[RequestResponseMapping]):
    """Ordered mapping list; order decides which mapping answers a request."""

    def get(self, request: str) -> Optional[RequestResponseMapping]:
        """Returns the mapping whose pattern is exactly *request*, if any."""
        for mapping in self:
            if mapping.request == request:
                return mapping
        return None

    def add_response(self, request: str, *responses: ResponseOption) -> RequestResponseMapping:
        """
        Append *responses* to the mapping for *request*, creating the
        mapping at the end of the list if it does not exist yet.
        """
        mapping = self.get(request)
        if mapping is None:
            mapping = RequestResponseMapping(request=request)
            self.append(mapping)
        mapping.responses.extend(responses)
        return mapping
