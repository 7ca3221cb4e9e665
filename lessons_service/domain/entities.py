from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class LessonFields:
    title: str
    description: str | None = None
    type: str = "video"
    content: str | None = None
    duration_raw: Any = None
    is_preview: bool = False


@dataclass(frozen=True)
class ExistingLessonRef:
    id: int
    fields: LessonFields


@dataclass(frozen=True)
class NewLessonSpec:
    fields: LessonFields


LessonEntry = ExistingLessonRef | NewLessonSpec


@dataclass(frozen=True)
class Lesson:
    id: int
    course_id: int
    title: str
    description: str | None
    type: str
    content: str | None
    duration: int
    order: int
    is_preview: bool = False
    is_published: bool = True


@dataclass(frozen=True)
class DeleteOp:
    id: int


@dataclass(frozen=True)
class UpdateOp:
    id: int
    order: int
    # None means only the order changes
    fields: LessonFields | None = None


@dataclass(frozen=True)
class InsertOp:
    fields: LessonFields
    order: int


@dataclass(frozen=True)
class ReconciliationPlan:
    deletes: tuple[DeleteOp, ...] = ()
    upserts: tuple[UpdateOp | InsertOp, ...] = ()

    def operations(self) -> list[DeleteOp | UpdateOp | InsertOp]:
        return [*self.deletes, *self.upserts]


@dataclass
class ApplyResult:
    applied_lessons: list[Lesson] = field(default_factory=list)


@dataclass
class ProgressRecord:
    user_id: str
    lesson_id: int
    progress_percentage: int = 0
    watch_time_seconds: int = 0
    completed: bool = False
    last_watched_at: datetime | None = None
    course_id: int | None = None
