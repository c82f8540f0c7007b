from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union


DdpVersion = Literal["1", "pre2", "pre1"]

# Newest first; sent as the `support` list of the connect message.
SUPPORTED_DDP_VERSIONS: tuple[str, ...] = ("1", "pre2", "pre1")

# record id -> record
Records = Dict[str, Dict[str, Any]]


class Console(Enum):
    STDOUT = "<stdout>"

    def __str__(self) -> str:
        return self.value


CONSOLE = Console.STDOUT

# Either the console sentinel or a resolved file path.
Destination = Union[str, Console]


class DdpDumpError(Exception):
    pass


class ConfigError(DdpDumpError):
    """Invalid or ambiguous command line configuration."""


class DdpConnectionError(DdpDumpError):
    """The DDP handshake failed or the socket went away."""


class DdpSubscriptionError(DdpDumpError):
    def __init__(self, name: str, message: str, error: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.name = name
        self.message = message
        self.error = error or {}


@dataclass(frozen=True)
class SubscriptionResult:
    name: str
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None
