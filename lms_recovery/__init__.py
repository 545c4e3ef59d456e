"""
LMS Recovery Toolkit - soft delete and cascading restore for a learning
management backend.

Records across the course hierarchy (courses, modules, assignments, grades,
discussions, content, announcements, enrollments) and users are never
physically removed. Deleting a record tombstones it and every descendant under
one deletion event; restoring brings back only what that event removed, and
every read path hides records whose ancestors are tombstoned.

Quick Start
-----------
>>> from lms_recovery import RecordStore, SoftDeleteService
>>>
>>> store = RecordStore.from_url("sqlite:///./lms.db")
>>> store.create_all()
>>> service = SoftDeleteService(store)
>>>
>>> event = service.delete("course", course_id, actor_id="admin-1")
>>> service.restore("course", course_id, actor_id="admin-1", cascade=True)
"""

__version__ = "1.0.0"

from .config import RecoveryConfig, configure, get_config
from .soft_delete import (
    DeletionEvent,
    ModelKind,
    RecordStore,
    RestoredSet,
    SoftDeleteError,
    SoftDeleteService,
    is_visible,
    live_criterion,
)

__all__ = [
    # Soft Delete
    "SoftDeleteService",
    "RecordStore",
    "ModelKind",
    "DeletionEvent",
    "RestoredSet",
    "SoftDeleteError",
    "is_visible",
    "live_criterion",
    # Configuration
    "RecoveryConfig",
    "get_config",
    "configure",
]
