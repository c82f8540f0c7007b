from __future__ import annotations

"""Idle-timeout completion detection.

DDP has no "all data sent" signal, so we assume the server is done once no
message has arrived for `timeout_ms`. Best effort only: a slow server can
still deliver data after we declared completion.
"""

import asyncio
import time
from typing import Awaitable, Callable, Literal, Optional


State = Literal["WAITING", "FIRING"]


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class IdleCompletionDetector:
    def __init__(
        self,
        timeout_ms: float,
        clock: Callable[[], float] = monotonic_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_complete: Optional[Callable[[], None]] = None,
    ):
        if timeout_ms < 0:
            raise ValueError(f"timeout_ms must be >= 0, got {timeout_ms}")
        self.timeout_ms = timeout_ms
        self._clock = clock
        self._sleep = sleep
        self._on_complete = on_complete
        self.state: State = "WAITING"
        self.last_message_ms: float = clock()

    def touch(self, *_args) -> None:
        """Record an inbound message. Accepts and ignores the message itself."""
        self.last_message_ms = self._clock()

    def idle_ms(self) -> float:
        return self._clock() - self.last_message_ms

    @property
    def fired(self) -> bool:
        return self.state == "FIRING"

    async def wait(self) -> None:
        """Return once the idle gap exceeds the timeout.

        The check is rearmed every `timeout_ms` while still WAITING.
        """
        while self.state == "WAITING":
            await self._sleep(self.timeout_ms / 1000.0)
            if self.idle_ms() > self.timeout_ms:
                self._fire()

    def _fire(self) -> None:
        self.state = "FIRING"
        if self._on_complete is not None:
            self._on_complete()
