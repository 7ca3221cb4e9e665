from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
import structlog

from ....application.use_cases.record_progress import RecordProgress
from ....domain.entities import ProgressRecord
from ....domain.errors import StoreError, ValidationError
from ....infrastructure.db import get_db
from ....infrastructure.metrics import progress_updates_total
from ....infrastructure.repositories import ProgressRepository
from ..schemas import ProgressReq, ProgressResp, ProgressOut

logger = structlog.get_logger()

router = APIRouter(prefix="/api/progress", tags=["progress"])


def to_out(record: ProgressRecord) -> ProgressOut:
    return ProgressOut(
        user_id=record.user_id,
        lesson_id=record.lesson_id,
        course_id=record.course_id,
        progress_percentage=record.progress_percentage,
        watch_time=record.watch_time_seconds,
        completed=record.completed,
        last_watched_at=record.last_watched_at,
    )


@router.post("", response_model=ProgressResp)
def record_progress(payload: ProgressReq, db: Session = Depends(get_db)):
    uc = RecordProgress(repo=ProgressRepository(db))
    try:
        record = uc.execute(
            user_id=payload.user_id,
            lesson_id=payload.lesson_id,
            course_id=payload.course_id,
            progress_percentage=payload.progress_percentage,
            watch_time=payload.watch_time,
            completed=payload.completed,
        )
    except ValidationError as e:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(e)})
    except StoreError as e:
        logger.error("progress_update_failed", user_id=payload.user_id, lesson_id=payload.lesson_id, error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to update progress"},
        )
    progress_updates_total.labels(completed=str(record.completed).lower()).inc()
    return ProgressResp(success=True, progress=to_out(record))


@router.get("", response_model=list[ProgressOut])
def list_progress(
    user_id: str = Query(..., min_length=1),
    lesson_ids: list[int] = Query(default=[]),
    db: Session = Depends(get_db),
):
    try:
        records = ProgressRepository(db).list_for_user(user_id, lesson_ids)
    except StoreError as e:
        logger.error("progress_query_failed", user_id=user_id, error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to load progress"},
        )
    return [to_out(r) for r in records]
