import asyncio
import weakref
from typing import Iterable, Sequence

import structlog

from ...domain.entities import ApplyResult, InsertOp, Lesson, LessonEntry, ReconciliationPlan, UpdateOp
from ...domain.errors import ReconciliationFailed, StoreError
from .reconcile_lessons import LessonSetReconciler, lesson_values

logger = structlog.get_logger()

# one apply per course at a time inside this process; idle locks are dropped
_course_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()


def _course_lock(course_id: int) -> asyncio.Lock:
    lock = _course_locks.get(course_id)
    if lock is None:
        lock = asyncio.Lock()
        _course_locks[course_id] = lock
    return lock


class ILessonStore:
    async def list_ids(self, course_id: int) -> list[int]: ...
    async def delete_by_ids(self, course_id: int, ids: list[int]) -> None: ...
    async def update(self, course_id: int, lesson_id: int, values: dict) -> Lesson: ...
    async def insert(self, course_id: int, values: dict) -> Lesson: ...


class ReconciliationExecutor:
    def __init__(self, store: ILessonStore):
        self.store = store

    async def apply(self, course_id: int, plan: ReconciliationPlan) -> ApplyResult:
        async with _course_lock(course_id):
            return await self._apply(course_id, plan)

    async def reconcile(
        self,
        course_id: int,
        desired: Sequence[LessonEntry],
        deletions: Iterable[int] = (),
        reconciler: LessonSetReconciler | None = None,
    ) -> tuple[ReconciliationPlan, ApplyResult]:
        """Snapshot the course ordering, compute the plan and apply it under one lock.

        Raises ``ValidationError`` before any write when the request is rejected.
        """
        reconciler = reconciler or LessonSetReconciler()
        async with _course_lock(course_id):
            current_order = await self.store.list_ids(course_id)
            plan = reconciler.compute(desired, deletions, current_order=current_order)
            return plan, await self._apply(course_id, plan)

    async def _apply(self, course_id: int, plan: ReconciliationPlan) -> ApplyResult:
        if plan.deletes:
            ids = [op.id for op in plan.deletes]
            try:
                await self.store.delete_by_ids(course_id, ids)
            except StoreError as exc:
                logger.error("reconciliation_op_failed", course_id=course_id, op="delete", ids=ids, error=str(exc))
                raise ReconciliationFailed("delete", exc) from exc
            logger.info("reconciliation_op_applied", course_id=course_id, op="delete", ids=ids)

        applied: list[Lesson] = []
        for index, op in enumerate(plan.upserts):
            try:
                lesson = await self._apply_upsert(course_id, op)
            except StoreError as exc:
                logger.error(
                    "reconciliation_op_failed",
                    course_id=course_id,
                    op=_op_name(op),
                    index=index,
                    lesson_id=getattr(op, "id", None),
                    error=str(exc),
                )
                raise ReconciliationFailed("upsert", exc, index=index, applied_lessons=applied) from exc
            applied.append(lesson)
            logger.info(
                "reconciliation_op_applied",
                course_id=course_id,
                op=_op_name(op),
                index=index,
                lesson_id=lesson.id,
                order=lesson.order,
            )
        return ApplyResult(applied_lessons=applied)

    async def _apply_upsert(self, course_id: int, op: UpdateOp | InsertOp) -> Lesson:
        if isinstance(op, UpdateOp):
            values = {} if op.fields is None else lesson_values(op.fields)
            values["order"] = op.order
            return await self.store.update(course_id, op.id, values)
        values = lesson_values(op.fields)
        values["order"] = op.order
        return await self.store.insert(course_id, values)


def _op_name(op) -> str:
    return "update" if isinstance(op, UpdateOp) else "insert"
