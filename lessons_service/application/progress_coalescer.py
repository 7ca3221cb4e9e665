"""Debounced persistence of lesson playback progress.

Players report progress many times per second. :class:`ProgressCoalescer`
keeps at most one pending write per lesson: every regular report restarts
that lesson's debounce timer and replaces the pending payload, so only the
latest values reach the store. A completion skips the timer and is written
right away.

All state lives on the event loop thread; call the coalescer from coroutines
or loop callbacks only.
"""
from __future__ import annotations

import asyncio
import math
import dataclasses
from dataclasses import dataclass
from typing import Any, Callable, Iterable

import structlog

from ..config import settings
from ..domain.entities import ProgressRecord
from ..domain.errors import StoreError

logger = structlog.get_logger()


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positive values (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


class IProgressStore:
    async def upsert(
        self,
        user_id: str,
        lesson_id: int,
        course_id: int | None,
        progress_percentage: int,
        watch_time_seconds: int,
        completed: bool,
    ) -> ProgressRecord: ...

    async def query_by_user_and_lessons(self, user_id: str, lesson_ids: Iterable[int]) -> list[ProgressRecord]: ...


@dataclass
class _PendingReport:
    progress_percentage: int
    watch_time_seconds: int


class ProgressCoalescer:
    def __init__(
        self,
        store: IProgressStore,
        user_id: str,
        course_id: int | None = None,
        debounce_window: float | None = None,
        scheduler: Any = None,
        on_saved: Callable[[ProgressRecord], None] | None = None,
        on_error: Callable[[int, StoreError], None] | None = None,
    ):
        self.store = store
        self.user_id = user_id
        self.course_id = course_id
        self.debounce_window = (
            settings.PROGRESS_DEBOUNCE_SECONDS if debounce_window is None else debounce_window
        )
        # anything with loop.call_later() semantics; defaults to the running loop
        self._scheduler = scheduler
        self._on_saved = on_saved
        self._on_error = on_error

        self._timers: dict[int, Any] = {}
        self._pending: dict[int, _PendingReport] = {}
        self._completed: set[int] = set()
        self._cache: dict[int, ProgressRecord] = {}
        self._inflight: set[asyncio.Task] = set()

    # --- reporting

    def report(
        self,
        lesson_id: int,
        progress_percentage: float,
        watch_time_seconds: float,
        completed_hint: bool = False,
    ) -> None:
        if completed_hint:
            self.complete(lesson_id, progress_percentage, watch_time_seconds)
            return

        self._cancel_timer(lesson_id)
        self._pending[lesson_id] = _PendingReport(
            progress_percentage=round_half_up(progress_percentage),
            watch_time_seconds=round_half_up(watch_time_seconds),
        )
        scheduler = self._scheduler or asyncio.get_running_loop()
        self._timers[lesson_id] = scheduler.call_later(self.debounce_window, self._fire, lesson_id)

    def complete(self, lesson_id: int, progress_percentage: float = 100, watch_time_seconds: float = 0) -> None:
        self._cancel_timer(lesson_id)
        self._pending.pop(lesson_id, None)
        self._completed.add(lesson_id)
        self._start_write(lesson_id, round_half_up(progress_percentage), round_half_up(watch_time_seconds), True)

    def flush(self) -> None:
        """Start the pending write of every lesson without waiting for its timer."""
        for lesson_id in list(self._timers):
            self._cancel_timer(lesson_id)
            self._fire(lesson_id)

    async def drain(self) -> None:
        while self._inflight:
            await asyncio.gather(*list(self._inflight))

    async def aclose(self) -> None:
        for lesson_id in list(self._timers):
            self._cancel_timer(lesson_id)
        self._pending.clear()
        await self.drain()

    # --- reads

    def pending(self, lesson_id: int) -> bool:
        return lesson_id in self._timers

    def get(self, lesson_id: int) -> ProgressRecord | None:
        return self._cache.get(lesson_id)

    def is_completed(self, lesson_id: int) -> bool:
        if lesson_id in self._completed:
            return True
        cached = self._cache.get(lesson_id)
        return cached is not None and cached.completed

    def prime(self, records: Iterable[ProgressRecord]) -> None:
        for record in records:
            self._remember(record)

    # --- internals

    def _cancel_timer(self, lesson_id: int) -> None:
        handle = self._timers.pop(lesson_id, None)
        if handle is not None:
            handle.cancel()

    def _fire(self, lesson_id: int) -> None:
        self._timers.pop(lesson_id, None)
        report = self._pending.pop(lesson_id, None)
        if report is None:
            return
        self._start_write(
            lesson_id,
            report.progress_percentage,
            report.watch_time_seconds,
            lesson_id in self._completed,
        )

    def _start_write(self, lesson_id: int, progress_percentage: int, watch_time_seconds: int, completed: bool) -> None:
        task = asyncio.get_running_loop().create_task(
            self._write(lesson_id, progress_percentage, watch_time_seconds, completed)
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _write(self, lesson_id: int, progress_percentage: int, watch_time_seconds: int, completed: bool) -> None:
        try:
            record = await self.store.upsert(
                self.user_id,
                lesson_id,
                self.course_id,
                progress_percentage,
                watch_time_seconds,
                completed,
            )
        except StoreError as exc:
            logger.warning(
                "progress_save_failed",
                user_id=self.user_id,
                lesson_id=lesson_id,
                completed=completed,
                error=str(exc),
            )
            if self._on_error is not None:
                self._on_error(lesson_id, exc)
            return

        record = self._remember(record)
        logger.debug(
            "progress_saved",
            user_id=self.user_id,
            lesson_id=lesson_id,
            progress_percentage=record.progress_percentage,
            completed=record.completed,
        )
        if self._on_saved is not None:
            self._on_saved(record)

    def _remember(self, record: ProgressRecord) -> ProgressRecord:
        cached = self._cache.get(record.lesson_id)
        if cached is not None and cached.completed and not record.completed:
            record = dataclasses.replace(record, completed=True)
        self._cache[record.lesson_id] = record
        return record
