"""Event emission and streaming for a single orchestration run.

``EventEmitter`` assigns sequence numbers, appends to an optional JSONL
ledger and fans events out to subscribers. ``EventStream`` is the
consumer side: an async iterator the caller drains. Closing the stream
detaches the consumer; the producer observes this at its next batch
boundary and starts no further work.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable

from pricehunt.signals.events import EVENT_ADAPTER, Event, SearchEvent
from pricehunt.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

_END = object()


class EventEmitter:
    """Emits, persists and broadcasts events for one run.

    Events are:
    - Immutable once emitted
    - Assigned monotonic sequence numbers
    - Persisted to a JSONL ledger in append-only mode, when one is configured
    - Pushed to subscribers in emission order
    """

    def __init__(self, run_id: str, ledger_path: Path | None = None) -> None:
        self._run_id = run_id
        self._sequence = 0
        self._ledger_path = ledger_path
        self._subscribers: list[Callable[[Event], Any]] = []
        self._events: list[Event] = []
        self._lock = asyncio.Lock()

        if self._ledger_path:
            self._ledger_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def events(self) -> list[Event]:
        return list(self._events)

    def subscribe(self, callback: Callable[[Event], Any]) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[Event], Any]) -> None:
        self._subscribers = [s for s in self._subscribers if s != callback]

    async def emit(self, event_type: type[SearchEvent], **fields: Any) -> Event:
        """Create and publish an event. The only way events come into being."""
        async with self._lock:
            self._sequence += 1
            event = event_type(sequence=self._sequence, run_id=self._run_id, **fields)
            self._events.append(event)
            if self._ledger_path:
                self._persist(event)
        await self._broadcast(event)
        return event

    def _persist(self, event: SearchEvent) -> None:
        with open(self._ledger_path, "a") as f:
            f.write(event.model_dump_json() + "\n")

    async def _broadcast(self, event: Event) -> None:
        for subscriber in list(self._subscribers):
            try:
                result = subscriber(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                emit_structured_error(
                    logger,
                    code=ErrorCode.EVENT_SUBSCRIBER_FAILURE,
                    message=str(exc),
                    suppressed=True,
                    details={"sequence": event.sequence, "kind": event.kind},
                )

    @staticmethod
    def load_ledger(ledger_path: Path) -> list[Event]:
        """Load all events from a JSONL ledger file."""
        events = []
        if ledger_path.exists():
            with open(ledger_path) as f:
                for line in f:
                    line = line.strip()
                    if line:
                        events.append(EVENT_ADAPTER.validate_json(line))
        return events


class EventStream:
    """Async iterator over a run's events.

    The producer coroutine is started on first iteration. Closing the stream
    (``aclose``, leaving ``async with`` or breaking out of ``async for``)
    detaches the consumer without cancelling the producer. A reader that
    stops draining events is detached once it has been idle for the
    producer's chosen limit.
    """

    def __init__(
        self,
        emitter: EventEmitter,
        producer: Callable[[EventStream], Awaitable[None]],
    ) -> None:
        self._emitter = emitter
        self._producer = producer
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._detached = False
        self._reading = False
        self._progress = asyncio.Event()
        self._push = self._queue.put_nowait
        emitter.subscribe(self._push)

    @property
    def run_id(self) -> str:
        return self._emitter.run_id

    @property
    def detached(self) -> bool:
        return self._detached

    @property
    def emitter(self) -> EventEmitter:
        return self._emitter

    def start(self) -> asyncio.Task[None]:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._producer(self))
            self._task.add_done_callback(lambda _: self._queue.put_nowait(_END))
        return self._task

    def __aiter__(self) -> AsyncIterator[Event]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Event]:
        # Finalised by the event loop when an ``async for`` is abandoned.
        try:
            while True:
                try:
                    event = await self.__anext__()
                except StopAsyncIteration:
                    return
                yield event
        finally:
            self._detach()

    async def __anext__(self) -> Event:
        if self._detached:
            raise StopAsyncIteration
        self._reading = True
        task = self.start()
        item = await self._queue.get()
        self._progress.set()
        if item is _END:
            self._detached = True
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
            raise StopAsyncIteration
        return item

    async def wait_for_reader(self, idle_s: float) -> None:
        """Block until an active reader has taken every emitted event.

        Returns at once when nobody has started reading. A reader that takes
        nothing for ``idle_s`` seconds is detached.
        """
        while self._reading and not self._detached and not self._queue.empty():
            self._progress.clear()
            try:
                await asyncio.wait_for(self._progress.wait(), idle_s)
            except asyncio.TimeoutError:
                logger.info(
                    "Run %s: reader idle for %.1fs with %d unread events",
                    self.run_id,
                    idle_s,
                    self._queue.qsize(),
                )
                self._detach()

    def _detach(self) -> None:
        if not self._detached:
            self._detached = True
            self._emitter.unsubscribe(self._push)
            logger.info("Consumer detached from run %s", self.run_id)
        self._progress.set()

    async def aclose(self) -> None:
        self._detach()

    async def __aenter__(self) -> EventStream:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def collect(self) -> list[Event]:
        """Drain the whole stream."""
        return [event async for event in self]

    async def wait_closed(self) -> None:
        """Wait for the producer to finish, whether or not anyone is reading."""
        task = self.start()
        await task
