from __future__ import annotations

from typing import Iterable

import structlog

from ..domain.entities import ProgressRecord
from ..domain.errors import StoreError
from .completion import CompletionPolicy
from .progress_coalescer import IProgressStore, ProgressCoalescer, round_half_up

logger = structlog.get_logger()


class ProgressTracker:
    """Turns player ticks for one user and course into coalesced progress writes."""

    def __init__(
        self,
        store: IProgressStore,
        user_id: str,
        course_id: int | None = None,
        policy: CompletionPolicy | None = None,
        coalescer: ProgressCoalescer | None = None,
        **coalescer_options,
    ):
        self.store = store
        self.user_id = user_id
        self.course_id = course_id
        self.policy = policy or CompletionPolicy()
        self.coalescer = coalescer or ProgressCoalescer(
            store, user_id, course_id=course_id, **coalescer_options
        )

    def track_playback(self, lesson_id: int, current_time: float, duration: float) -> None:
        if not duration or duration <= 0:
            return
        ratio = max(0.0, min(current_time / duration, 1.0))
        percentage = ratio * 100

        # A lesson completes once; later ticks go through the debounce window
        # and the coalescer keeps completed=True on them.
        if self.policy.is_complete(ratio) and not self.coalescer.is_completed(lesson_id):
            self.coalescer.complete(lesson_id, percentage, current_time)
        else:
            self.coalescer.report(lesson_id, percentage, current_time)

    def mark_complete(self, lesson_id: int, watch_time: float = 0) -> None:
        self.coalescer.complete(lesson_id, 100, watch_time)

    async def fetch_progress(self, lesson_ids: Iterable[int]) -> dict[int, ProgressRecord]:
        lesson_ids = list(lesson_ids)
        if not lesson_ids:
            return {}
        try:
            records = await self.store.query_by_user_and_lessons(self.user_id, lesson_ids)
        except StoreError as exc:
            logger.warning("progress_fetch_failed", user_id=self.user_id, error=str(exc))
            return {}
        self.coalescer.prime(records)
        return {r.lesson_id: self.coalescer.get(r.lesson_id) for r in records}

    def get_lesson_progress(self, lesson_id: int) -> ProgressRecord:
        cached = self.coalescer.get(lesson_id)
        if cached is not None:
            return cached
        return ProgressRecord(user_id=self.user_id, lesson_id=lesson_id, course_id=self.course_id)

    def is_lesson_completed(self, lesson_id: int) -> bool:
        return self.get_lesson_progress(lesson_id).completed

    def completion_stats(self, lesson_ids: Iterable[int]) -> dict:
        lesson_ids = list(lesson_ids)
        total = len(lesson_ids)
        if total == 0:
            return {"completed": 0, "total": 0, "percentage": 0}
        completed = sum(1 for lesson_id in lesson_ids if self.is_lesson_completed(lesson_id))
        return {"completed": completed, "total": total, "percentage": round_half_up(completed / total * 100)}

    async def aclose(self) -> None:
        await self.coalescer.aclose()
