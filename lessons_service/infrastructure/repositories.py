from datetime import datetime, timezone

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .metrics import db_queries_total
from .models import CourseCompletionORM, LessonORM, LessonProgressORM
from ..application.use_cases.apply_reconciliation import ILessonStore
from ..application.use_cases.record_progress import IProgressRepository
from ..domain.entities import Lesson, ProgressRecord
from ..domain.errors import StoreError


def lesson_to_domain(row: LessonORM) -> Lesson:
    return Lesson(
        id=row.id,
        course_id=row.course_id,
        title=row.title,
        description=row.description,
        type=row.type,
        content=row.content,
        duration=row.duration,
        order=row.order,
        is_preview=row.is_preview,
        is_published=row.is_published,
    )


def progress_to_domain(row: LessonProgressORM) -> ProgressRecord:
    return ProgressRecord(
        user_id=row.user_id,
        lesson_id=row.lesson_id,
        course_id=row.course_id,
        progress_percentage=row.progress_percentage,
        watch_time_seconds=row.watch_time,
        completed=row.completed,
        last_watched_at=row.last_watched_at,
    )


class LessonRepository(ILessonStore):
    """Lesson store for reconciliation; each call commits on its own."""

    def __init__(self, db: Session): self.db = db

    async def list_ids(self, course_id: int) -> list[int]:
        return await run_in_threadpool(self._list_ids, course_id)

    async def delete_by_ids(self, course_id: int, ids: list[int]) -> None:
        await run_in_threadpool(self._delete_by_ids, course_id, ids)

    async def update(self, course_id: int, lesson_id: int, values: dict) -> Lesson:
        return await run_in_threadpool(self._update, course_id, lesson_id, values)

    async def insert(self, course_id: int, values: dict) -> Lesson:
        return await run_in_threadpool(self._insert, course_id, values)

    def _list_ids(self, course_id: int) -> list[int]:
        db_queries_total.inc()
        q = select(LessonORM.id).where(LessonORM.course_id == course_id).order_by(LessonORM.order, LessonORM.id)
        return [r[0] for r in self.db.execute(q).all()]

    def _delete_by_ids(self, course_id: int, ids: list[int]) -> None:
        db_queries_total.inc()
        try:
            (self.db.query(LessonORM)
             .filter(LessonORM.course_id == course_id, LessonORM.id.in_(ids))
             .delete(synchronize_session=False))
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreError(f"failed to delete lessons {ids}: {exc}") from exc

    def _update(self, course_id: int, lesson_id: int, values: dict) -> Lesson:
        db_queries_total.inc()
        try:
            row = self.db.query(LessonORM).filter(
                LessonORM.id == lesson_id, LessonORM.course_id == course_id
            ).first()
            if row is None:
                raise StoreError(f"lesson {lesson_id} not found in course {course_id}")
            for key, value in values.items():
                setattr(row, key, value)
            self.db.commit(); self.db.refresh(row)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreError(f"failed to update lesson {lesson_id}: {exc}") from exc
        return lesson_to_domain(row)

    def _insert(self, course_id: int, values: dict) -> Lesson:
        db_queries_total.inc()
        try:
            row = LessonORM(course_id=course_id, **values)
            self.db.add(row); self.db.commit(); self.db.refresh(row)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreError(f"failed to insert lesson: {exc}") from exc
        return lesson_to_domain(row)


class ProgressRepository(IProgressRepository):
    def __init__(self, db: Session): self.db = db

    def upsert(
        self,
        user_id: str,
        lesson_id: int,
        course_id: int | None,
        progress_percentage: int,
        watch_time_seconds: int,
        completed: bool,
    ) -> ProgressRecord:
        db_queries_total.inc()
        now = datetime.now(timezone.utc)
        try:
            row = self.db.query(LessonProgressORM).filter(
                LessonProgressORM.user_id == user_id, LessonProgressORM.lesson_id == lesson_id
            ).first()
            if row is None:
                row = LessonProgressORM(user_id=user_id, lesson_id=lesson_id, completed=False)
                self.db.add(row)
            if course_id is not None:
                row.course_id = course_id
            row.progress_percentage = progress_percentage
            row.watch_time = watch_time_seconds
            # completion never reverts
            row.completed = bool(row.completed) or completed
            row.last_watched_at = now
            self.db.commit(); self.db.refresh(row)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreError(f"failed to save progress for lesson {lesson_id}: {exc}") from exc
        return progress_to_domain(row)

    def list_for_user(self, user_id: str, lesson_ids: list[int]) -> list[ProgressRecord]:
        db_queries_total.inc()
        if not lesson_ids:
            return []
        q = (select(LessonProgressORM)
             .where(LessonProgressORM.user_id == user_id, LessonProgressORM.lesson_id.in_(lesson_ids))
             .order_by(LessonProgressORM.lesson_id))
        try:
            rows = self.db.execute(q).scalars().all()
        except SQLAlchemyError as exc:
            raise StoreError(f"failed to load progress: {exc}") from exc
        return [progress_to_domain(r) for r in rows]

    def mark_course_completed_if_done(self, user_id: str, course_id: int) -> bool:
        db_queries_total.inc()
        try:
            lesson_ids = self.db.execute(
                select(LessonORM.id).where(LessonORM.course_id == course_id, LessonORM.is_published.is_(True))
            ).scalars().all()
            if not lesson_ids:
                return False
            completed_count = self.db.execute(
                select(func.count(LessonProgressORM.id)).where(
                    LessonProgressORM.user_id == user_id,
                    LessonProgressORM.completed.is_(True),
                    LessonProgressORM.lesson_id.in_(lesson_ids),
                )
            ).scalar_one()
            if completed_count != len(lesson_ids):
                return False

            row = self.db.query(CourseCompletionORM).filter(
                CourseCompletionORM.user_id == user_id, CourseCompletionORM.course_id == course_id
            ).first()
            if row is None:
                row = CourseCompletionORM(user_id=user_id, course_id=course_id)
                self.db.add(row)
            row.completed_at = datetime.now(timezone.utc)
            row.completion_percentage = 100
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreError(f"failed to record course completion: {exc}") from exc
        return True
