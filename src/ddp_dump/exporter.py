from __future__ import annotations

"""Export orchestration.

connect -> subscribe all -> wait for idle -> discover (--all) -> write all -> close
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .io.writers import ConsoleSink, FileSink, Sink
from .state import DumpSession
from .types import CONSOLE, DdpDumpError, Destination, Records, SubscriptionResult


LOGGER = logging.getLogger(__name__)


class StreamClient(Protocol):
    collections: Dict[str, Records]

    def add_listener(self, listener) -> None: ...

    async def connect(self) -> None: ...

    async def subscribe(self, name: str, params: Sequence[Any] = ()) -> None: ...

    async def close(self) -> None: ...


@dataclass
class ExportResult:
    written: List[Destination] = field(default_factory=list)
    write_errors: Dict[Destination, Exception] = field(default_factory=dict)
    failed_subscriptions: List[SubscriptionResult] = field(default_factory=list)
    discovered: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.write_errors


def row_count(client: StreamClient, name: str) -> int:
    return len(client.collections.get(name) or {})


def gather_data(client: StreamClient, names: Sequence[str]) -> Dict[str, Records]:
    """Snapshot the named collections.

    Collections the server never sent are left out; a failed subscription was
    already reported as a warning.
    """
    data: Dict[str, Records] = {}
    for name in names:
        records = client.collections.get(name)
        if records is None:
            continue
        data[name] = records
    return data


class Exporter:
    def __init__(
        self,
        session: DumpSession,
        client: StreamClient,
        console_sink: Optional[Sink] = None,
        file_sink: Optional[Sink] = None,
    ):
        self.session = session
        self.client = client
        self.console_sink = console_sink or ConsoleSink()
        self.file_sink = file_sink or FileSink()

    async def run(self) -> ExportResult:
        """Run a full export. DdpConnectionError from the handshake propagates."""
        result = ExportResult()
        self.client.add_listener(self.session.detector.touch)
        try:
            await self.client.connect()
            LOGGER.info("DDP connection was successful")

            if self.session.collections:
                result.failed_subscriptions = await self.subscribe_all()

            await self.session.detector.wait()

            if self.session.capture_all:
                result.discovered = self.discover()

            await self.write_all(result)
        finally:
            await self.client.close()
        return result

    async def _subscribe(self, name: str) -> SubscriptionResult:
        LOGGER.info("Subscribing to collection: %s", name)
        try:
            await self.client.subscribe(name)
        except DdpDumpError as e:
            return SubscriptionResult(name, e)
        return SubscriptionResult(name)

    async def subscribe_all(self) -> List[SubscriptionResult]:
        results = await asyncio.gather(*(self._subscribe(name) for name in self.session.collections))
        failed = []
        for r in results:
            if r.ok:
                LOGGER.info('Subscription of "%s" was successful (%s rows)', r.name, row_count(self.client, r.name))
            else:
                LOGGER.warning('Could not subscribe to collection "%s": %s', r.name, r.error)
                failed.append(r)
        return failed

    def discover(self) -> List[str]:
        """Map collections the server sent without being asked for."""
        found = []
        for name in list(self.client.collections):
            if name in self.session.collections:
                continue
            LOGGER.info('Received unknown collection "%s" (%s rows)', name, row_count(self.client, name))
            self.session.mapping.extend(name)
            self.session.collections.append(name)
            found.append(name)
        return found

    def sink_for(self, destination: Destination) -> Sink:
        return self.console_sink if destination is CONSOLE else self.file_sink

    async def _write(self, destination: Destination, names: Sequence[str]) -> Optional[Exception]:
        data = gather_data(self.client, names)
        try:
            await self.sink_for(destination).write(destination, data, self.session.config.compress)
        except (OSError, ValueError) as e:
            # ValueError covers unencodable text (lone surrogates) and bad paths
            return e
        return None

    async def write_all(self, result: ExportResult) -> None:
        entries = list(self.session.mapping.items())
        if not entries:
            LOGGER.info("No collections received")
            return

        errors = await asyncio.gather(*(self._write(dest, names) for dest, names in entries))
        for (dest, _), err in zip(entries, errors):
            if err is None:
                result.written.append(dest)
            else:
                result.write_errors[dest] = err

        if result.write_errors:
            LOGGER.error("An error occurred during saving of files:")
            for dest, err in result.write_errors.items():
                LOGGER.error("  %s: %s", dest, err)
