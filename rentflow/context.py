"""Invocation context: who is calling and what time it is.

Both collaborators are injected so the lease program stays deterministic
under test. An operation reads the clock once and uses that value for every
timestamp it writes.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, Union

from rentflow.address import Identity
from rentflow.hardening import to_unix_seconds


class Clock(Protocol):
    def now(self) -> int:
        """Current time in signed unix seconds."""
        ...


class SystemClock:
    """Wall clock."""

    def now(self) -> int:
        return int(time.time())


class FixedClock:
    """Manually driven clock for tests and replays."""

    def __init__(self, start: Union[int, str, datetime] = 0):
        self._now = to_unix_seconds(start)
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            return self._now

    def set(self, value: Union[int, str, datetime]) -> None:
        with self._lock:
            self._now = to_unix_seconds(value)

    def advance(self, seconds: int) -> int:
        with self._lock:
            self._now += seconds
            return self._now


@dataclass(frozen=True)
class InvocationContext:
    """The authenticated signer plus the clock for one invocation."""
    signer: Identity
    clock: Clock = field(default_factory=SystemClock)

    def current_signer(self) -> Identity:
        return self.signer

    def current_time(self) -> int:
        return self.clock.now()
