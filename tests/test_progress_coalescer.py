import asyncio

import pytest

from lessons_service.application.progress_coalescer import ProgressCoalescer
from fakes import FakeProgressStore, FakeScheduler


def make_coalescer(store=None, scheduler=None, **kwargs):
    return ProgressCoalescer(
        store or FakeProgressStore(),
        "user-1",
        course_id=7,
        debounce_window=5.0,
        scheduler=scheduler or FakeScheduler(),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_reports_within_window_persist_only_the_last():
    store, clock = FakeProgressStore(), FakeScheduler()
    coalescer = make_coalescer(store, clock)

    coalescer.report(1, 10, 30)
    clock.advance(1)
    coalescer.report(1, 20, 60)
    clock.advance(1)
    coalescer.report(1, 30.4, 90.6)
    assert coalescer.pending(1)

    clock.advance(5)
    await coalescer.drain()

    assert len(store.calls) == 1
    call = store.calls[0]
    assert call["progress_percentage"] == 30
    assert call["watch_time_seconds"] == 91
    assert call["completed"] is False
    assert call["course_id"] == 7
    assert not coalescer.pending(1)


@pytest.mark.asyncio
async def test_each_report_restarts_the_window():
    store, clock = FakeProgressStore(), FakeScheduler()
    coalescer = make_coalescer(store, clock)

    coalescer.report(1, 10, 30)
    clock.advance(4)
    coalescer.report(1, 20, 60)
    clock.advance(4)
    await coalescer.drain()
    assert store.calls == []

    clock.advance(1)
    await coalescer.drain()
    assert [c["progress_percentage"] for c in store.calls] == [20]


@pytest.mark.asyncio
async def test_replaced_timer_is_cancelled():
    clock = FakeScheduler()
    coalescer = make_coalescer(scheduler=clock)

    coalescer.report(1, 10, 30)
    coalescer.report(1, 20, 60)

    assert clock.handles[0].cancelled
    assert len(clock.active()) == 1


@pytest.mark.asyncio
async def test_completion_is_written_immediately_and_cancels_pending_timer():
    store, clock = FakeProgressStore(), FakeScheduler()
    coalescer = make_coalescer(store, clock)

    coalescer.report(1, 50, 120)
    coalescer.report(1, 95, 228, completed_hint=True)
    await coalescer.drain()

    assert len(store.calls) == 1
    assert store.calls[0]["completed"] is True
    assert store.calls[0]["progress_percentage"] == 95
    assert not coalescer.pending(1)

    clock.advance(10)
    await coalescer.drain()
    assert len(store.calls) == 1


@pytest.mark.asyncio
async def test_lessons_have_independent_timers():
    store, clock = FakeProgressStore(), FakeScheduler()
    coalescer = make_coalescer(store, clock)

    coalescer.report(1, 10, 10)
    clock.advance(3)
    coalescer.report(2, 20, 20)
    coalescer.complete(3, 100, 300)
    clock.advance(2)
    await coalescer.drain()

    assert sorted(c["lesson_id"] for c in store.calls) == [1, 3]
    assert coalescer.pending(2)

    clock.advance(3)
    await coalescer.drain()
    assert sorted(c["lesson_id"] for c in store.calls) == [1, 2, 3]


@pytest.mark.asyncio
async def test_successful_write_updates_cache():
    saved = []
    store, clock = FakeProgressStore(), FakeScheduler()
    coalescer = make_coalescer(store, clock, on_saved=saved.append)

    assert coalescer.get(1) is None
    coalescer.report(1, 40, 100)
    clock.advance(5)
    await coalescer.drain()

    cached = coalescer.get(1)
    assert cached.progress_percentage == 40
    assert cached.watch_time_seconds == 100
    assert cached.completed is False
    assert saved == [cached]


@pytest.mark.asyncio
async def test_failed_write_notifies_and_keeps_cache():
    errors = []
    store, clock = FakeProgressStore(), FakeScheduler()
    coalescer = make_coalescer(store, clock, on_error=lambda lesson_id, exc: errors.append((lesson_id, exc)))

    coalescer.report(1, 40, 100)
    clock.advance(5)
    await coalescer.drain()
    before = coalescer.get(1)

    store.fail = True
    coalescer.report(1, 60, 150)
    clock.advance(5)
    await coalescer.drain()

    assert len(errors) == 1
    assert errors[0][0] == 1
    assert coalescer.get(1) is before

    # no automatic retry
    clock.advance(60)
    await coalescer.drain()
    assert len(store.calls) == 2
    assert not coalescer.pending(1)


@pytest.mark.asyncio
async def test_completion_sticks_for_later_reports():
    store, clock = FakeProgressStore(), FakeScheduler()
    coalescer = make_coalescer(store, clock)

    coalescer.complete(1, 92, 230)
    await coalescer.drain()
    coalescer.report(1, 40, 100)
    clock.advance(5)
    await coalescer.drain()

    assert [c["completed"] for c in store.calls] == [True, True]
    assert coalescer.get(1).completed is True
    assert coalescer.is_completed(1)


@pytest.mark.asyncio
async def test_flush_writes_pending_reports_now():
    store, clock = FakeProgressStore(), FakeScheduler()
    coalescer = make_coalescer(store, clock)

    coalescer.report(1, 10, 10)
    coalescer.report(2, 20, 20)
    coalescer.flush()
    await coalescer.drain()

    assert sorted(c["lesson_id"] for c in store.calls) == [1, 2]
    assert clock.active() == []


@pytest.mark.asyncio
async def test_aclose_cancels_pending_timers():
    store, clock = FakeProgressStore(), FakeScheduler()
    coalescer = make_coalescer(store, clock)

    coalescer.report(1, 10, 10)
    coalescer.report(2, 20, 20)
    await coalescer.aclose()

    assert all(h.cancelled for h in clock.handles)
    clock.advance(10)
    await coalescer.drain()
    assert store.calls == []


@pytest.mark.asyncio
async def test_prime_fills_cache():
    store = FakeProgressStore()
    record = await store.upsert("user-1", 5, 7, 100, 300, True)
    coalescer = make_coalescer(store)

    coalescer.prime([record])

    assert coalescer.get(5) is record
    assert coalescer.is_completed(5)


@pytest.mark.asyncio
async def test_runs_on_the_event_loop_clock():
    store = FakeProgressStore()
    coalescer = ProgressCoalescer(store, "user-1", debounce_window=0.01)

    coalescer.report(1, 10, 10)
    coalescer.report(1, 15, 15)
    await asyncio.sleep(0.05)
    await coalescer.drain()

    assert [c["progress_percentage"] for c in store.calls] == [15]


@pytest.mark.asyncio
async def test_halves_round_up_before_writing():
    store, clock = FakeProgressStore(), FakeScheduler()
    coalescer = make_coalescer(store, clock)

    coalescer.report(1, 2.5, 0.5)
    coalescer.complete(2, 100, 12.5)
    clock.advance(5)
    await coalescer.drain()

    written = {c["lesson_id"]: (c["progress_percentage"], c["watch_time_seconds"]) for c in store.calls}
    assert written == {1: (3, 1), 2: (100, 13)}
