from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
import structlog

from ....application.use_cases.apply_reconciliation import ReconciliationExecutor
from ....domain.entities import UpdateOp
from ....domain.errors import ReconciliationFailed, ValidationError
from ....infrastructure.db import get_db
from ....infrastructure.models import Course, Lesson
from ....infrastructure.repositories import LessonRepository
from ....infrastructure.cache import get_cache, set_cache, course_lessons_key, invalidate_course_lessons
from ....infrastructure.metrics import (
    cache_hits_total, cache_misses_total, db_queries_total,
    lesson_reconciliations_total, lesson_operations_total,
)
from ..schemas import CourseOut, CourseCreate, LessonOut, BulkLessonsReq, BulkLessonsResp
from ..authz import require_admin

logger = structlog.get_logger()

router = APIRouter(prefix="/api/courses", tags=["courses"])


def _course_exists(db: Session, course_id: int) -> bool:
    db_queries_total.inc()
    return db.query(Course.id).filter(Course.id == course_id).first() is not None


@router.post("", response_model=CourseOut, status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_admin)])
def create_course(payload: CourseCreate, db: Session = Depends(get_db)):
    """Lessons hang off a course, so admins need a way to open one."""
    course = Course(title=payload.title, description=payload.description)
    db.add(course)
    db.commit()
    db.refresh(course)
    logger.info("course_created", course_id=course.id)
    return course


@router.get("/{course_id}/lessons", response_model=list[LessonOut])
def course_lessons(course_id: int, db: Session = Depends(get_db)):
    key = course_lessons_key(course_id)
    lessons = get_cache(key)
    if lessons is not None:
        cache_hits_total.inc()
        return lessons

    cache_misses_total.inc()
    if not _course_exists(db, course_id):
        raise HTTPException(404, "course not found")
    rows = db.query(Lesson).filter(Lesson.course_id == course_id).order_by(Lesson.order, Lesson.id).all()
    lessons = [LessonOut.model_validate(row).model_dump() for row in rows]
    set_cache(key, lessons)
    return lessons


@router.post("/{course_id}/lessons", response_model=BulkLessonsResp, dependencies=[Depends(require_admin)])
async def bulk_update_lessons(course_id: int, payload: BulkLessonsReq, db: Session = Depends(get_db)):
    if payload.action != "bulk_update":
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid action"})
    if not await run_in_threadpool(_course_exists, db, course_id):
        raise HTTPException(404, "course not found")

    executor = ReconciliationExecutor(LessonRepository(db))
    try:
        plan, result = await executor.reconcile(
            course_id,
            [lesson.to_entry() for lesson in payload.lessons],
            payload.deletedLessons,
        )
    except ValidationError as e:
        lesson_reconciliations_total.labels(outcome="rejected").inc()
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid lesson list", "details": str(e)},
        )
    except ReconciliationFailed as e:
        lesson_reconciliations_total.labels(outcome="failed").inc()
        await run_in_threadpool(invalidate_course_lessons, course_id)
        applied = [LessonOut.model_validate(lesson, from_attributes=True).model_dump() for lesson in e.applied_lessons]
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Failed to update lessons",
                "details": str(e.cause),
                "stage": e.stage,
                "failed_at": e.failed_at,
                "lessons": applied,
            },
        )

    lesson_reconciliations_total.labels(outcome="applied").inc()
    if plan.deletes:
        lesson_operations_total.labels(op="delete").inc(len(plan.deletes))
    for op in plan.upserts:
        lesson_operations_total.labels(op="update" if isinstance(op, UpdateOp) else "insert").inc()
    await run_in_threadpool(invalidate_course_lessons, course_id)
    logger.info("lessons_reconciled", course_id=course_id, lessons=len(result.applied_lessons))
    return BulkLessonsResp(
        message="Lessons updated successfully",
        lessons=[LessonOut.model_validate(lesson, from_attributes=True) for lesson in result.applied_lessons],
    )
