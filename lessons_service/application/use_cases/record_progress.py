import structlog

from ...domain.entities import ProgressRecord
from ...domain.errors import StoreError, ValidationError

logger = structlog.get_logger()


class IProgressRepository:
    def upsert(
        self,
        user_id: str,
        lesson_id: int,
        course_id: int | None,
        progress_percentage: int,
        watch_time_seconds: int,
        completed: bool,
    ) -> ProgressRecord: ...

    def list_for_user(self, user_id: str, lesson_ids: list[int]) -> list[ProgressRecord]: ...

    def mark_course_completed_if_done(self, user_id: str, course_id: int) -> bool: ...


class RecordProgress:
    def __init__(self, repo: IProgressRepository):
        self.repo = repo

    def execute(
        self,
        user_id: str,
        lesson_id: int,
        course_id: int | None = None,
        progress_percentage: float = 0,
        watch_time: float = 0,
        completed: bool = False,
    ) -> ProgressRecord:
        if not user_id:
            raise ValidationError("user_id is required")
        percentage = int(min(100, max(0, progress_percentage)))
        watch_time = int(max(0, watch_time))
        record = self.repo.upsert(user_id, lesson_id, course_id, percentage, watch_time, completed)

        if record.completed and completed and course_id is not None:
            # the lesson write already succeeded; a failed course check is only logged
            try:
                if self.repo.mark_course_completed_if_done(user_id, course_id):
                    logger.info("course_completed", user_id=user_id, course_id=course_id)
            except StoreError as exc:
                logger.error("course_completion_check_failed", user_id=user_id, course_id=course_id, error=str(exc))
        return record
