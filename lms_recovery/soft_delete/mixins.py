"""
SQLAlchemy mixins for tombstone tracking.

Every entity table that can be soft deleted mixes in ``TombstoneMixin``. The
mixin owns the three tombstone columns plus an optimistic version counter and
is the only place the columns are mutated.
"""

from datetime import datetime
from typing import Any, Dict, Optional, Type

from sqlalchemy import CheckConstraint, DateTime, Integer, String, event
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from .exceptions import AlreadyDeleted, InvariantViolation, NotDeleted
from .graph import ModelKind
from .models import RecordRef


class TombstoneMixin:
    """
    Mixin to add tombstone fields to SQLAlchemy models.

    Provides:
    - deleted_at, deleted_by, deletion_event_id
    - version_id, used by the mapper as an optimistic concurrency counter
    - A check constraint that keeps the tombstone fields all set or all null

    Every mapped subclass must set ``__model_kind__``; the listeners refuse
    to register a class that does not.

    Usage:
        class Course(Base, TombstoneMixin):
            __tablename__ = "courses"
            __model_kind__ = ModelKind.COURSE
            id = mapped_column(String(36), primary_key=True)
    """

    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    deleted_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    deletion_event_id: Mapped[Optional[str]] = mapped_column(
        String(36), nullable=True, index=True
    )

    @declared_attr
    def version_id(cls) -> Mapped[int]:
        return mapped_column(Integer, nullable=False, default=1)

    @declared_attr.directive
    def __mapper_args__(cls) -> Dict[str, Any]:
        return {"version_id_col": cls.version_id}

    @declared_attr.directive
    def __table_args__(cls) -> Any:
        """Add the tombstone consistency constraint."""
        table_name = getattr(cls, "__tablename__", cls.__name__.lower())
        constraint = CheckConstraint(
            "(deleted_at IS NULL AND deleted_by IS NULL "
            "AND deletion_event_id IS NULL) OR "
            "(deleted_at IS NOT NULL AND deleted_by IS NOT NULL "
            "AND deletion_event_id IS NOT NULL)",
            name=f"ck_{table_name}_tombstone_consistency",
        )
        return (constraint,)

    @property
    def is_tombstoned(self) -> bool:
        """True when the record's own tombstone is set."""
        return self.deleted_at is not None

    @property
    def label(self) -> str:
        """Human-readable name shown in deleted record listings."""
        return getattr(self, "title", None) or str(getattr(self, "id"))

    @property
    def record_ref(self) -> RecordRef:
        kind = self.__model_kind__  # type: ignore[attr-defined]
        return RecordRef(kind=kind, id=str(getattr(self, "id")))

    def mark_tombstoned(self, actor_id: str, event_id: str, at: datetime) -> None:
        """
        Tombstone this record under a deletion event.

        Args:
            actor_id: ID of the actor performing the deletion
            event_id: Deletion event that causes the transition
            at: Deletion timestamp

        Raises:
            AlreadyDeleted: If the record is already tombstoned
            ValueError: If actor_id or event_id is empty
        """
        if self.is_tombstoned:
            raise AlreadyDeleted(
                self.__model_kind__.value,  # type: ignore[attr-defined]
                str(getattr(self, "id", "unknown")),
                event_id=self.deletion_event_id,
            )

        if not actor_id or not actor_id.strip():
            raise ValueError("Actor ID is required for deletion")

        if not event_id:
            raise ValueError("Deletion event ID is required for deletion")

        self.deleted_at = at
        self.deleted_by = actor_id.strip()
        self.deletion_event_id = event_id

    def clear_tombstone(self) -> None:
        """
        Clear the tombstone fields.

        Raises:
            NotDeleted: If the record is live
        """
        if not self.is_tombstoned:
            raise NotDeleted(
                self.__model_kind__.value,  # type: ignore[attr-defined]
                str(getattr(self, "id", "unknown")),
            )

        self.deleted_at = None
        self.deleted_by = None
        self.deletion_event_id = None


def prevent_hard_delete(mapper: Any, connection: Any, target: Any) -> None:
    """
    Prevent hard deletes on models with TombstoneMixin.

    This function should be connected to SQLAlchemy's before_delete event.
    """
    if isinstance(target, TombstoneMixin):
        raise RuntimeError(
            f"Hard delete attempted on {target.__class__.__name__}. "
            "Use the soft delete service instead."
        )


def prevent_ledger_mutation(mapper: Any, connection: Any, target: Any) -> None:
    """Reject updates and deletes of append-only rows."""
    raise InvariantViolation(
        f"{target.__class__.__name__} rows are append-only and cannot be "
        "modified or deleted"
    )


def register_soft_delete_listeners(base_class: Type[Any]) -> None:
    """
    Register SQLAlchemy event listeners for soft delete functionality.

    Args:
        base_class: The declarative base class

    Raises:
        InvariantViolation: If a tombstoned entity does not declare its kind
    """
    for mapper in base_class.registry.mappers:
        cls = mapper.class_
        if issubclass(cls, TombstoneMixin):
            if not isinstance(getattr(cls, "__model_kind__", None), ModelKind):
                raise InvariantViolation(
                    f"{cls.__name__} mixes in TombstoneMixin but does not "
                    "declare __model_kind__"
                )
            event.listen(cls, "before_delete", prevent_hard_delete)
        if getattr(cls, "__append_only__", False):
            event.listen(cls, "before_update", prevent_ledger_mutation)
            event.listen(cls, "before_delete", prevent_ledger_mutation)
