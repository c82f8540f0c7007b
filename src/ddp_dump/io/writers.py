from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, TextIO

from ..types import Destination, Records


LOGGER = logging.getLogger(__name__)


def stringify(data: Any, compact: bool = False) -> str:
    if compact:
        return json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    return json.dumps(data, ensure_ascii=False, indent=2)


class Sink(Protocol):
    async def write(self, destination: Destination, data: Dict[str, Records], compact: bool) -> None:
        ...


class ConsoleSink:
    """Prints the JSON document to stdout (or any text stream)."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream

    async def write(self, destination: Destination, data: Dict[str, Records], compact: bool) -> None:
        out = self.stream if self.stream is not None else sys.stdout
        out.write(stringify(data, compact))
        out.write("\n")
        out.flush()


def write_json_file(path: str | Path, text: str) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as f:
        f.write(text)
        f.write("\n")


class FileSink:
    """Writes one JSON document per destination path.

    The write runs in a worker thread so several destinations can be
    written while the event loop keeps the DDP socket serviced.
    OSError is left to the caller.
    """

    async def write(self, destination: Destination, data: Dict[str, Records], compact: bool) -> None:
        path = str(destination)
        LOGGER.info('Writing data to file "%s"', path)
        await asyncio.to_thread(write_json_file, path, stringify(data, compact))
