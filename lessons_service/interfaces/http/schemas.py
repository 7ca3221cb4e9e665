from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ...domain.entities import ExistingLessonRef, LessonEntry, LessonFields, NewLessonSpec


class CourseCreate(BaseModel):
    title: str
    description: str | None = None


class CourseOut(BaseModel):
    id: int
    title: str
    description: str | None = None
    class Config: from_attributes = True


class LessonIn(BaseModel):
    id: int | None = None
    title: str
    description: str | None = None
    type: str = "video"
    content: str | None = None
    duration: Any = None
    is_preview: bool = False

    def to_entry(self) -> LessonEntry:
        fields = LessonFields(
            title=self.title,
            description=self.description,
            type=self.type,
            content=self.content,
            duration_raw=self.duration,
            is_preview=self.is_preview,
        )
        if self.id is None:
            return NewLessonSpec(fields=fields)
        return ExistingLessonRef(id=self.id, fields=fields)


class BulkLessonsReq(BaseModel):
    action: str
    lessons: list[LessonIn] = Field(default_factory=list)
    deletedLessons: list[int] = Field(default_factory=list)


class LessonOut(BaseModel):
    id: int
    course_id: int
    title: str
    description: str | None = None
    type: str
    content: str | None = None
    duration: int
    order: int
    is_preview: bool
    class Config: from_attributes = True


class BulkLessonsResp(BaseModel):
    message: str
    lessons: list[LessonOut]


class ProgressReq(BaseModel):
    lesson_id: int
    user_id: str = Field(min_length=1)
    course_id: int | None = None
    progress_percentage: float = 0
    watch_time: float = 0
    completed: bool = False


class ProgressOut(BaseModel):
    user_id: str
    lesson_id: int
    course_id: int | None = None
    progress_percentage: int
    watch_time: int
    completed: bool
    last_watched_at: datetime | None = None


class ProgressResp(BaseModel):
    success: bool
    progress: ProgressOut
