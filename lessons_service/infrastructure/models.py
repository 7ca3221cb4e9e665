# lessons_service/infrastructure/models.py
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Integer,
    String,
    Text,
    TIMESTAMP,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CourseORM(Base):
    __tablename__ = "courses"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    lessons: Mapped[list["LessonORM"]] = relationship(
        "LessonORM",
        back_populates="course",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"CourseORM(id={self.id!r}, title={self.title!r})"


class LessonORM(Base):
    __tablename__ = "lessons"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    course_id: Mapped[int] = mapped_column(
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="video")
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # no unique index on (course_id, order): a bulk update passes through
    # transient collisions while lessons are renumbered one by one
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_preview: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    course: Mapped["CourseORM"] = relationship(
        "CourseORM",
        back_populates="lessons",
    )

    def __repr__(self) -> str:
        return f"LessonORM(id={self.id!r}, course_id={self.course_id!r}, order={self.order!r})"


class LessonProgressORM(Base):
    __tablename__ = "lesson_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    lesson_id: Mapped[int] = mapped_column(Integer, index=True)
    course_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    progress_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    watch_time: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_watched_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        default=_utcnow,
    )

    __table_args__ = (UniqueConstraint("user_id", "lesson_id", name="uq_progress_user_lesson"),)


class CourseCompletionORM(Base):
    __tablename__ = "course_completions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    course_id: Mapped[int] = mapped_column(Integer, index=True)
    completion_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    completed_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        default=_utcnow,
    )

    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uq_completion_user_course"),)


Course = CourseORM
Lesson = LessonORM
LessonProgress = LessonProgressORM
CourseCompletion = CourseCompletionORM

__all__ = [
    "Base",
    "CourseORM",
    "LessonORM",
    "LessonProgressORM",
    "CourseCompletionORM",
    "Course",
    "Lesson",
    "LessonProgress",
    "CourseCompletion",
]
