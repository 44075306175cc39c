"""Run registry: single-flight map from conversation id to its active run."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field

from ..errors import ConcurrencyViolation
from ..memory import WorkingMemory
from ..types import Log

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class RunEntry:
    """In-memory record of one active run."""

    conversation_id: str
    done: asyncio.Future
    step: int = 0
    working_memory: WorkingMemory | None = None
    tasks: list[asyncio.Future] = field(default_factory=list)
    _inbox: list[Log] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _closed: bool = False

    def push(self, log: Log) -> bool:
        """Hand an event to the run; picked up at its next step boundary."""
        with self._lock:
            if self._closed:
                return False
            self._inbox.append(log)
            return True

    def drain(self) -> list[Log]:
        with self._lock:
            pending, self._inbox = self._inbox, []
            return pending

    def has_pending(self) -> bool:
        with self._lock:
            return bool(self._inbox)

    def close(self) -> list[Log]:
        with self._lock:
            self._closed = True
            pending, self._inbox = self._inbox, []
            return pending

    async def wait(self) -> list[Log]:
        return await asyncio.shield(self.done)


@dataclass
class RunTicket:
    entry: RunEntry
    joined: bool


class RunRegistry:
    """Maps conversation ids to active runs; at most one run per id.

    Owned by an engine instance. Only ``start_or_join`` and ``complete``
    mutate the map, each under one lock.
    """

    def __init__(self) -> None:
        self._runs: dict[str, RunEntry] = {}
        self._lock = threading.Lock()

    def __contains__(self, conversation_id: str) -> bool:
        with self._lock:
            return conversation_id in self._runs

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)

    def get(self, conversation_id: str) -> RunEntry | None:
        with self._lock:
            return self._runs.get(conversation_id)

    def active(self) -> list[str]:
        with self._lock:
            return list(self._runs)

    def start_or_join(self, conversation_id: str, events: Iterable[Log] = ()) -> RunTicket:
        events = list(events)
        with self._lock:
            entry = self._runs.get(conversation_id)
            if entry is not None:
                for event in events:
                    if not entry.push(event):
                        raise ConcurrencyViolation(conversation_id, "registered run is already closed")
                logger.debug("Run already active for %s, pushed %d event(s)", conversation_id, len(events))
                return RunTicket(entry=entry, joined=True)

            entry = RunEntry(conversation_id=conversation_id, done=asyncio.get_running_loop().create_future())
            for event in events:
                entry.push(event)
            self._runs[conversation_id] = entry
            logger.debug("Registered run for %s", conversation_id)
            return RunTicket(entry=entry, joined=False)

    def complete(self, conversation_id: str, entry: RunEntry) -> list[Log]:
        """Remove the run and return events pushed after its last step boundary."""
        with self._lock:
            current = self._runs.get(conversation_id)
            if current is not entry:
                raise ConcurrencyViolation(conversation_id, "completing a run that is not registered")
            del self._runs[conversation_id]
            leftover = entry.close()
        logger.debug("Removed run for %s", conversation_id)
        return leftover

    @staticmethod
    def settle(entry: RunEntry, result: list[Log] | None = None, error: BaseException | None = None) -> None:
        if entry.done.done():
            return
        if isinstance(error, asyncio.CancelledError):
            entry.done.cancel()
        elif error is not None:
            entry.done.set_exception(error)
            # joined callers may never await; avoid "exception never retrieved"
            entry.done.exception()
        else:
            entry.done.set_result(result or [])
