"""
Soft Delete Module - cascading tombstones with selective restore.

Provides the entity graph, tombstone columns, the deletion event ledger, the
cascade and restore engines, and the visibility filter every read path uses.
"""

from .cascade import CascadeEngine
from .entities import ENTITY_REGISTRY, Base, DeletionEventRecord
from .exceptions import (
    AlreadyDeleted,
    ConcurrentModification,
    InvariantViolation,
    NotDeleted,
    NotFound,
    PartialRestoreConflict,
    SoftDeleteError,
    Timeout,
)
from .graph import DEFAULT_GRAPH, ChildRelation, EntityGraph, ModelKind
from .ledger import DeletionLedger
from .mixins import TombstoneMixin
from .models import (
    DeletionEvent,
    DeletionReport,
    RecordRef,
    RestoredSet,
    RetentionPolicy,
    TombstoneSummary,
)
from .restore import RestoreEngine
from .services import SoftDeleteService
from .store import RecordStore
from .tombstones import TombstoneStore
from .visibility import (
    ancestor_chain,
    is_visible,
    live_criterion,
    select_live,
    select_tombstoned,
    tombstoned_criterion,
)

__all__ = [
    # Graph
    "ModelKind",
    "ChildRelation",
    "EntityGraph",
    "DEFAULT_GRAPH",
    # Storage
    "Base",
    "ENTITY_REGISTRY",
    "DeletionEventRecord",
    "TombstoneMixin",
    "TombstoneStore",
    "RecordStore",
    "DeletionLedger",
    # Engines
    "CascadeEngine",
    "RestoreEngine",
    "SoftDeleteService",
    # Visibility
    "is_visible",
    "ancestor_chain",
    "live_criterion",
    "tombstoned_criterion",
    "select_live",
    "select_tombstoned",
    # Models
    "RecordRef",
    "DeletionEvent",
    "RestoredSet",
    "TombstoneSummary",
    "RetentionPolicy",
    "DeletionReport",
    # Exceptions
    "SoftDeleteError",
    "NotFound",
    "AlreadyDeleted",
    "NotDeleted",
    "ConcurrentModification",
    "Timeout",
    "PartialRestoreConflict",
    "InvariantViolation",
]
