import re
from typing import Any, Iterable, Sequence

import structlog

from ...domain.entities import (
    DeleteOp,
    ExistingLessonRef,
    InsertOp,
    LessonEntry,
    LessonFields,
    ReconciliationPlan,
    UpdateOp,
)
from ...domain.errors import ValidationError

logger = structlog.get_logger()

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def parse_duration(raw: Any) -> int:
    """Seconds from a free-form duration value; anything unparseable is 0."""
    if raw is None or isinstance(raw, bool):
        return 0
    if isinstance(raw, (int, float)):
        try:
            return max(int(raw), 0)
        except (OverflowError, ValueError):  # inf / nan
            return 0
    match = _LEADING_INT.match(str(raw))
    if not match:
        return 0
    return max(int(match.group(1)), 0)


def lesson_values(fields: LessonFields) -> dict:
    return {
        "title": fields.title,
        "description": fields.description,
        "type": fields.type,
        "content": fields.content,
        "duration": parse_duration(fields.duration_raw),
        "is_preview": fields.is_preview,
    }


class LessonSetReconciler:
    def compute(
        self,
        desired: Sequence[LessonEntry],
        deletions: Iterable[int] = (),
        current_order: Sequence[int] | None = None,
    ) -> ReconciliationPlan:
        """Turn a desired lesson list and a deletion set into a plan.

        Every desired entry gets ``order = position + 1``. When
        ``current_order`` is given, stored lessons the caller neither listed
        nor deleted keep their relative order after the listed ones.
        """
        deleted = list(dict.fromkeys(deletions))
        deleted_set = set(deleted)

        seen: set[int] = set()
        for entry in desired:
            if not isinstance(entry, ExistingLessonRef):
                continue
            if entry.id in deleted_set:
                raise ValidationError(f"lesson {entry.id} is both updated and deleted")
            if entry.id in seen:
                raise ValidationError(f"lesson {entry.id} appears more than once")
            seen.add(entry.id)

        upserts: list[UpdateOp | InsertOp] = []
        for index, entry in enumerate(desired):
            order = index + 1
            if isinstance(entry, ExistingLessonRef):
                upserts.append(UpdateOp(id=entry.id, order=order, fields=entry.fields))
            else:
                upserts.append(InsertOp(fields=entry.fields, order=order))

        if current_order is not None:
            for lesson_id in current_order:
                if lesson_id in seen or lesson_id in deleted_set:
                    continue
                seen.add(lesson_id)
                upserts.append(UpdateOp(id=lesson_id, order=len(upserts) + 1))

        plan = ReconciliationPlan(
            deletes=tuple(DeleteOp(id=lesson_id) for lesson_id in deleted),
            upserts=tuple(upserts),
        )
        logger.info(
            "reconciliation_plan_computed",
            deletes=len(plan.deletes),
            updates=sum(isinstance(op, UpdateOp) for op in plan.upserts),
            inserts=sum(isinstance(op, InsertOp) for op in plan.upserts),
        )
        return plan
