"""
Unit tests for ActorMailboxDispatcher and with_timeout.

Tests verify:
- FIFO order and no overlap per actor
- Different actors run concurrently
- A failing entry does not block the queue
- clear_queue rejects waiting entries only
- Shielded and cancelling timeouts
"""

import asyncio

import pytest

from workforce.core.domain.dispatcher import ActorMailboxDispatcher, with_timeout
from workforce.core.domain.errors import CallTimeoutError, QueueClearedError


@pytest.fixture
def dispatcher(supervisor):
    return ActorMailboxDispatcher(supervisor=supervisor)


class TestMailboxOrdering:
    @pytest.mark.asyncio
    async def test_entries_run_in_fifo_order_without_overlap(self, dispatcher):
        events: list[str] = []
        running = 0
        max_running = 0

        def make(label: str):
            async def work():
                nonlocal running, max_running
                running += 1
                max_running = max(max_running, running)
                events.append(f"start:{label}")
                await asyncio.sleep(0.01)
                events.append(f"end:{label}")
                running -= 1
                return label

            return work

        futures = [dispatcher.enqueue("ceo", make(str(i))) for i in range(3)]
        results = await asyncio.gather(*futures)

        assert results == ["0", "1", "2"]
        assert max_running == 1
        assert events == ["start:0", "end:0", "start:1", "end:1", "start:2", "end:2"]

    @pytest.mark.asyncio
    async def test_different_actors_run_concurrently(self, dispatcher):
        both_started = asyncio.Event()
        started: set[str] = set()

        def make(actor: str):
            async def work():
                started.add(actor)
                if len(started) == 2:
                    both_started.set()
                await asyncio.wait_for(both_started.wait(), timeout=1)
                return actor

            return work

        results = await asyncio.gather(
            dispatcher.enqueue("ceo", make("ceo")),
            dispatcher.enqueue("cfo", make("cfo")),
        )

        assert results == ["ceo", "cfo"]

    @pytest.mark.asyncio
    async def test_failure_rejects_future_and_queue_continues(self, dispatcher):
        async def boom():
            raise RuntimeError("kaputt")

        async def fine():
            return "ok"

        failing = dispatcher.enqueue("dev1", boom)
        following = dispatcher.enqueue("dev1", fine)

        with pytest.raises(RuntimeError, match="kaputt"):
            await failing
        assert await following == "ok"
        assert not dispatcher.is_processing("dev1")

    @pytest.mark.asyncio
    async def test_queue_status(self, dispatcher):
        gate = asyncio.Event()

        async def blocked():
            await gate.wait()

        first = dispatcher.enqueue("dev1", blocked)
        second = dispatcher.enqueue("dev1", blocked)
        await asyncio.sleep(0)

        assert dispatcher.queue_status("dev1") == {"queued": 1, "processing": True}

        gate.set()
        await asyncio.gather(first, second)
        assert dispatcher.queue_status("dev1") == {"queued": 0, "processing": False}


class TestClearQueue:
    @pytest.mark.asyncio
    async def test_clear_rejects_waiting_entries_but_not_running_one(self, dispatcher):
        gate = asyncio.Event()

        async def running():
            await gate.wait()
            return "finished"

        async def never():
            raise AssertionError("should not run")

        current = dispatcher.enqueue("dev1", running)
        waiting = [dispatcher.enqueue("dev1", never) for _ in range(2)]
        await asyncio.sleep(0)

        summary = dispatcher.clear_queue("dev1")

        assert summary == {"queue_cleared": 2, "was_processing": True}
        for future in waiting:
            with pytest.raises(QueueClearedError):
                await future
        gate.set()
        assert await current == "finished"

    @pytest.mark.asyncio
    async def test_clear_idle_actor(self, dispatcher):
        assert dispatcher.clear_queue("nobody") == {"queue_cleared": 0, "was_processing": False}


class TestWithTimeout:
    @pytest.mark.asyncio
    async def test_returns_result_in_time(self, dispatcher):
        async def quick():
            return 42

        assert await with_timeout(dispatcher.enqueue("a", quick), 1, "quick") == 42

    @pytest.mark.asyncio
    async def test_shielded_timeout_lets_work_finish(self, dispatcher):
        done = asyncio.Event()

        async def slow():
            await asyncio.sleep(0.05)
            done.set()
            return "late"

        future = dispatcher.enqueue("cfo", slow)
        with pytest.raises(CallTimeoutError) as exc_info:
            await with_timeout(future, 0.01, "slow call")

        assert exc_info.value.error_type == "timeout"
        await asyncio.wait_for(done.wait(), timeout=1)
        assert await future == "late"

    @pytest.mark.asyncio
    async def test_cancel_on_timeout_stops_the_work(self, dispatcher, supervisor):
        finished = False

        async def slow():
            nonlocal finished
            await asyncio.sleep(0.2)
            finished = True

        future = dispatcher.enqueue("cfo", slow)
        with pytest.raises(CallTimeoutError):
            await with_timeout(future, 0.01, "slow call", cancel_on_timeout=True)

        await supervisor.join(timeout=1)
        assert not finished
        assert not dispatcher.is_processing("cfo")

    @pytest.mark.asyncio
    async def test_no_timeout_waits(self):
        async def work():
            return "x"

        assert await with_timeout(work(), None, "no deadline") == "x"
