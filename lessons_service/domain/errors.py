from .entities import Lesson


class LessonServiceError(Exception):
    """Base error of the lessons service."""


class ValidationError(LessonServiceError):
    """Missing or conflicting input, detected before any I/O."""


class StoreError(LessonServiceError):
    """A progress store or lesson store call failed."""


class ReconciliationFailed(LessonServiceError):
    """A reconciliation plan was only partially applied.

    ``applied_lessons`` holds every lesson persisted before the failure, in
    plan order. ``index`` is the position of the failed upsert, or ``None``
    when the batched delete failed.
    """

    def __init__(
        self,
        stage: str,
        cause: BaseException,
        index: int | None = None,
        applied_lessons: list[Lesson] | None = None,
    ):
        self.stage = stage
        self.index = index
        self.cause = cause
        self.applied_lessons = list(applied_lessons or [])
        where = f"{stage}" if index is None else f"{stage}[{index}]"
        super().__init__(f"reconciliation failed at {where}: {cause}")

    @property
    def failed_at(self) -> int | None:
        return self.index
