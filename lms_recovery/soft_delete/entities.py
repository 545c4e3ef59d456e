"""
SQLAlchemy tables for the learning-management records that carry tombstones,
plus the append-only deletion event ledger.

Only the columns the soft delete subsystem needs (identity, ownership foreign
keys and a few descriptive fields used in listings) are mapped here.
"""

import uuid
from typing import Dict, Optional, Type

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

from .graph import ModelKind
from .mixins import TombstoneMixin, register_soft_delete_listeners

Base = declarative_base()


def new_id() -> str:
    """Generate a record or event ID."""
    return str(uuid.uuid4())


class User(Base, TombstoneMixin):  # type: ignore[valid-type,misc]
    __tablename__ = "users"
    __model_kind__ = ModelKind.USER

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="STUDENT")

    @property
    def label(self) -> str:
        return self.name or self.email


class Course(Base, TombstoneMixin):  # type: ignore[valid-type,misc]
    __tablename__ = "courses"
    __model_kind__ = ModelKind.COURSE

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    instructor_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True
    )

    @property
    def label(self) -> str:
        return f"{self.title} ({self.code})"


class Module(Base, TombstoneMixin):  # type: ignore[valid-type,misc]
    __tablename__ = "modules"
    __model_kind__ = ModelKind.MODULE

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    course_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("courses.id"), nullable=False, index=True
    )


class Assignment(Base, TombstoneMixin):  # type: ignore[valid-type,misc]
    __tablename__ = "assignments"
    __model_kind__ = ModelKind.ASSIGNMENT

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    course_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("courses.id"), nullable=False, index=True
    )
    module_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("modules.id"), nullable=True, index=True
    )


class Grade(Base, TombstoneMixin):  # type: ignore[valid-type,misc]
    __tablename__ = "grades"
    __model_kind__ = ModelKind.GRADE

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    points: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    assignment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("assignments.id"), nullable=False, index=True
    )
    student_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True
    )

    @property
    def label(self) -> str:
        if self.points is None:
            return "Ungraded"
        return f"{self.points:g} points"


class Discussion(Base, TombstoneMixin):  # type: ignore[valid-type,misc]
    __tablename__ = "discussions"
    __model_kind__ = ModelKind.DISCUSSION

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    course_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("courses.id"), nullable=False, index=True
    )
    module_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("modules.id"), nullable=True, index=True
    )


class CourseContent(Base, TombstoneMixin):  # type: ignore[valid-type,misc]
    __tablename__ = "course_content"
    __model_kind__ = ModelKind.COURSE_CONTENT

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content_type: Mapped[str] = mapped_column(String(20), nullable=False, default="TEXT")
    course_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("courses.id"), nullable=False, index=True
    )
    module_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("modules.id"), nullable=True, index=True
    )

    @property
    def label(self) -> str:
        return f"{self.title} ({self.content_type})"


class Announcement(Base, TombstoneMixin):  # type: ignore[valid-type,misc]
    __tablename__ = "announcements"
    __model_kind__ = ModelKind.ANNOUNCEMENT

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    course_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("courses.id"), nullable=False, index=True
    )


class Enrollment(Base, TombstoneMixin):  # type: ignore[valid-type,misc]
    __tablename__ = "enrollments"
    __model_kind__ = ModelKind.ENROLLMENT

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False
    )
    course_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("courses.id"), nullable=False, index=True
    )

    @property
    def label(self) -> str:
        return f"Enrollment of user {self.user_id}"


class DeletionEventRecord(Base):  # type: ignore[valid-type,misc]
    """Append-only ledger row for one deletion event."""

    __tablename__ = "deletion_events"
    __append_only__ = True

    event_id = Column(String(36), primary_key=True)
    root_kind = Column(String(50), nullable=False)
    root_id = Column(String(100), nullable=False)
    actor_id = Column(String(100), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    # Ordered lists of {"kind": ..., "id": ...}
    members = Column(JSON, nullable=False)
    tombstoned = Column(JSON, nullable=False)

    __table_args__ = (Index("idx_deletion_events_root", root_kind, root_id),)


ENTITY_REGISTRY: Dict[ModelKind, Type[TombstoneMixin]] = {
    ModelKind.USER: User,
    ModelKind.COURSE: Course,
    ModelKind.MODULE: Module,
    ModelKind.ASSIGNMENT: Assignment,
    ModelKind.GRADE: Grade,
    ModelKind.DISCUSSION: Discussion,
    ModelKind.COURSE_CONTENT: CourseContent,
    ModelKind.ANNOUNCEMENT: Announcement,
    ModelKind.ENROLLMENT: Enrollment,
}

register_soft_delete_listeners(Base)
