"""Tests for event emission and the consumer stream."""

import asyncio

import pytest

from pricehunt.signals.events import Completed, Result, Started
from pricehunt.signals.stream import EventEmitter, EventStream


@pytest.fixture
def tmp_ledger(tmp_path):
    return tmp_path / "events" / "run_001.jsonl"


@pytest.fixture
def emitter(tmp_ledger):
    return EventEmitter(run_id="run_001", ledger_path=tmp_ledger)


class TestEventEmitter:
    """Test event emission, persistence, and broadcasting."""

    @pytest.mark.asyncio
    async def test_emit_creates_event(self, emitter):
        event = await emitter.emit(Started, query="milk", source_count=3)
        assert event.sequence == 1
        assert event.kind == "started"
        assert event.run_id == "run_001"
        assert event.source_count == 3

    @pytest.mark.asyncio
    async def test_monotonic_sequence(self, emitter):
        e1 = await emitter.emit(Started, query="milk", source_count=1)
        e2 = await emitter.emit(Result, source="a", items=[], confidence=0.0)
        e3 = await emitter.emit(Completed, success_count=1, total_count=1)
        assert [e1.sequence, e2.sequence, e3.sequence] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_concurrent_emits_get_distinct_sequences(self, emitter):
        events = await asyncio.gather(
            *(emitter.emit(Result, source=f"s{i}", items=[], confidence=0.0) for i in range(10))
        )
        assert sorted(e.sequence for e in events) == list(range(1, 11))

    @pytest.mark.asyncio
    async def test_events_are_immutable(self, emitter):
        event = await emitter.emit(Started, query="milk", source_count=1)
        with pytest.raises(Exception):
            event.query = "bread"

    @pytest.mark.asyncio
    async def test_persisted_and_loaded(self, emitter, tmp_ledger):
        await emitter.emit(Started, query="milk", source_count=1)
        await emitter.emit(Completed, success_count=0, total_count=1, disabled_sources=["a"])

        lines = tmp_ledger.read_text().strip().split("\n")
        assert len(lines) == 2

        loaded = EventEmitter.load_ledger(tmp_ledger)
        assert [e.kind for e in loaded] == ["started", "completed"]
        assert isinstance(loaded[1], Completed)
        assert loaded[1].disabled_sources == ["a"]

    def test_load_missing_ledger(self, tmp_path):
        assert EventEmitter.load_ledger(tmp_path / "absent.jsonl") == []

    @pytest.mark.asyncio
    async def test_no_ledger(self):
        emitter = EventEmitter(run_id="memory_only")
        await emitter.emit(Started, query="milk", source_count=0)
        assert len(emitter.events) == 1

    @pytest.mark.asyncio
    async def test_subscriber_receives_events(self, emitter):
        received = []
        emitter.subscribe(received.append)
        await emitter.emit(Started, query="milk", source_count=1)
        assert [e.kind for e in received] == ["started"]

    @pytest.mark.asyncio
    async def test_async_subscriber(self, emitter):
        received = []

        async def subscriber(event):
            received.append(event.sequence)

        emitter.subscribe(subscriber)
        await emitter.emit(Started, query="milk", source_count=1)
        assert received == [1]

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_block_others(self, emitter, caplog):
        received = []

        def broken(event):
            raise RuntimeError("subscriber down")

        emitter.subscribe(broken)
        emitter.subscribe(received.append)
        await emitter.emit(Started, query="milk", source_count=1)

        assert len(received) == 1
        assert any(
            getattr(r, "error_code", None) == "EVENT_SUBSCRIBER_FAILURE" for r in caplog.records
        )

    @pytest.mark.asyncio
    async def test_unsubscribe(self, emitter):
        received = []
        emitter.subscribe(received.append)
        emitter.unsubscribe(received.append)
        await emitter.emit(Started, query="milk", source_count=1)
        assert received == []


async def _produce(stream):
    emitter = stream.emitter
    await emitter.emit(Started, query="milk", source_count=1)
    await asyncio.sleep(0)
    await emitter.emit(Completed, success_count=0, total_count=1)


class TestEventStream:
    @pytest.mark.asyncio
    async def test_collect(self):
        stream = EventStream(EventEmitter("run_002"), _produce)
        events = await stream.collect()
        assert [e.kind for e in events] == ["started", "completed"]

    @pytest.mark.asyncio
    async def test_lazy_start(self):
        started = []

        async def producer(stream):
            started.append(True)

        stream = EventStream(EventEmitter("run_003"), producer)
        await asyncio.sleep(0)
        assert started == []
        await stream.collect()
        assert started == [True]

    @pytest.mark.asyncio
    async def test_producer_error_propagates(self):
        async def producer(stream):
            await stream.emitter.emit(Started, query="milk", source_count=0)
            raise RuntimeError("producer crashed")

        stream = EventStream(EventEmitter("run_004"), producer)
        received = []
        with pytest.raises(RuntimeError, match="producer crashed"):
            async for event in stream:
                received.append(event)
        assert [e.kind for e in received] == ["started"]

    @pytest.mark.asyncio
    async def test_detach(self):
        stream = EventStream(EventEmitter("run_005"), _produce)
        async with stream:
            first = await stream.__anext__()
        assert first.kind == "started"
        assert stream.detached is True

        await stream.wait_closed()
        assert [e async for e in stream] == []
        assert [e.kind for e in stream.emitter.events] == ["started", "completed"]

    @pytest.mark.asyncio
    async def test_run_id(self):
        assert EventStream(EventEmitter("run_006"), _produce).run_id == "run_006"


class TestReaderTracking:
    @staticmethod
    def _producer(seen, idle_s):
        async def producer(stream):
            await stream.emitter.emit(Started, query="milk", source_count=2)
            await stream.emitter.emit(Completed, success_count=0, total_count=2)
            await stream.wait_for_reader(idle_s)
            seen.append(stream.detached)

        return producer

    @pytest.mark.asyncio
    async def test_break_detaches(self):
        seen = []
        stream = EventStream(EventEmitter("run_007"), self._producer(seen, idle_s=5.0))
        async for event in stream:
            assert event.kind == "started"
            break
        await stream.wait_closed()
        assert seen == [True]
        assert stream.detached is True

    @pytest.mark.asyncio
    async def test_idle_reader_detached(self):
        seen = []
        stream = EventStream(EventEmitter("run_008"), self._producer(seen, idle_s=0.05))
        first = await stream.__anext__()
        assert first.kind == "started"
        await stream.wait_closed()
        assert seen == [True]

    @pytest.mark.asyncio
    async def test_no_reader_no_wait(self):
        seen = []
        stream = EventStream(EventEmitter("run_009"), self._producer(seen, idle_s=5.0))
        await asyncio.wait_for(stream.wait_closed(), 1.0)
        assert seen == [False]

    @pytest.mark.asyncio
    async def test_draining_reader_stays_attached(self):
        seen = []
        stream = EventStream(EventEmitter("run_010"), self._producer(seen, idle_s=5.0))
        events = await stream.collect()
        assert [e.kind for e in events] == ["started", "completed"]
        assert seen == [False]
