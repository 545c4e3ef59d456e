"""
Service layer for soft delete operations.

The application-facing facade: runs the cascade and restore engines inside
store transactions, exposes the visibility filter and the administrative
listings, and routes failures to the log with the right severity.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from sqlalchemy import Select

from ..config import RecoveryConfig, get_config
from .cascade import CascadeEngine, Clock, utc_now
from .exceptions import InvariantViolation, SoftDeleteError
from .graph import DEFAULT_GRAPH, EntityGraph, ModelKind
from .ledger import DeletionLedger
from .models import (
    DeletionEvent,
    DeletionReport,
    RecordRef,
    RestoredSet,
    RetentionPolicy,
    TombstoneSummary,
    as_utc,
)
from .restore import RestoreEngine
from .store import RecordStore
from .tombstones import TombstoneStore
from .visibility import ancestor_chain, is_visible, select_live

logger = logging.getLogger(__name__)

PermissionChecker = Callable[[str, str, ModelKind], bool]


class SoftDeleteService:
    """
    Service for deleting, restoring and listing tombstoned records.

    The engines are permission-agnostic. When a ``permission_checker`` is
    supplied it is consulted before any transaction starts, with the actor
    ID, the action ("delete", "restore" or "view_deleted") and the kind.
    """

    def __init__(
        self,
        store: RecordStore,
        graph: EntityGraph = DEFAULT_GRAPH,
        clock: Optional[Clock] = None,
        permission_checker: Optional[PermissionChecker] = None,
        config: Optional[RecoveryConfig] = None,
    ):
        """
        Initialize the soft delete service.

        Args:
            store: Transactional record store
            graph: Ownership graph
            clock: Optional clock for timestamps
            permission_checker: Optional function to check permissions
            config: Optional configuration; the global one by default
        """
        self.store = store
        self.graph = graph
        self.clock = clock or utc_now
        self.permission_checker = permission_checker
        self.config = config or get_config()

        self.ledger = DeletionLedger()
        self.cascade_engine = CascadeEngine(
            graph=graph,
            ledger=self.ledger,
            clock=self.clock,
            cascade_enabled=self.config.cascade_delete_enabled,
        )
        self.restore_engine = RestoreEngine(graph=graph, ledger=self.ledger)

        self.retention_policies: Dict[ModelKind, RetentionPolicy] = {}
        self._initialize_default_policies()

    def _initialize_default_policies(self) -> None:
        """One retention policy per kind, from configuration."""
        for kind in self.graph.kinds:
            self.retention_policies[kind] = RetentionPolicy(
                kind=kind, retention_days=self.config.retention_days_for(kind.value)
            )

    def register_retention_policy(self, policy: RetentionPolicy) -> None:
        """Replace the retention policy for the policy's kind."""
        self.retention_policies[policy.kind] = policy

    def _check_permission(self, actor_id: str, action: str, kind: ModelKind) -> None:
        if self.permission_checker and not self.permission_checker(
            actor_id, action, kind
        ):
            raise PermissionError(
                f"User {actor_id} does not have permission to {action} {kind.value}"
            )

    @contextmanager
    def _reporting(self, operation: str, kind: ModelKind, record_id: str) -> Iterator[None]:
        """Log failures with a severity matching their retryability."""
        try:
            yield
        except InvariantViolation as exc:
            logger.critical(
                f"Invariant violation during {operation} of {kind.value} "
                f"{record_id}: {exc}"
            )
            raise
        except SoftDeleteError as exc:
            if exc.retryable:
                logger.warning(
                    f"{operation} of {kind.value} {record_id} failed and may be "
                    f"retried: {exc}"
                )
            else:
                logger.info(f"{operation} of {kind.value} {record_id} rejected: {exc}")
            raise

    def delete(
        self, kind: Union[ModelKind, str], record_id: str, actor_id: str
    ) -> DeletionEvent:
        """
        Soft delete a record and its descendants.

        Args:
            kind: Kind of the record
            record_id: ID of the record
            actor_id: Pre-validated ID of the acting user

        Returns:
            The deletion event, listing every member and the records it
            tombstoned

        Raises:
            PermissionError: Actor lacks delete permission
            NotFound, AlreadyDeleted: The record cannot be deleted
            ConcurrentModification, Timeout: Retry the call
            InvariantViolation: Stored state is inconsistent
        """
        kind = ModelKind(kind)
        self._check_permission(actor_id, "delete", kind)

        with self._reporting("delete", kind, record_id):
            with self.store.transaction() as tombstones:
                return self.cascade_engine.delete(tombstones, kind, record_id, actor_id)

    def restore(
        self,
        kind: Union[ModelKind, str],
        record_id: str,
        actor_id: str,
        cascade: Optional[bool] = None,
    ) -> RestoredSet:
        """
        Restore a tombstoned record.

        Args:
            kind: Kind of the record
            record_id: ID of the record
            actor_id: Pre-validated ID of the acting user
            cascade: Restore same-event descendants too; defaults to
                ``config.default_cascade_restore``

        Returns:
            The restored set, target first

        Raises:
            PermissionError: Actor lacks restore permission
            NotFound, NotDeleted: The record cannot be restored
            ConcurrentModification, Timeout, PartialRestoreConflict: Retry
            InvariantViolation: Stored state is inconsistent
        """
        kind = ModelKind(kind)
        if cascade is None:
            cascade = self.config.default_cascade_restore
        self._check_permission(actor_id, "restore", kind)

        with self._reporting("restore", kind, record_id):
            with self.store.transaction() as tombstones:
                target = tombstones.get(kind, record_id)
                event_id = target.deletion_event_id if target is not None else None
                restored = self.restore_engine.restore(
                    tombstones, kind, record_id, actor_id, cascade=cascade
                )

        return RestoredSet(
            target=RecordRef(kind=kind, id=record_id),
            event_id=event_id,
            cascade=cascade,
            actor_id=actor_id.strip(),
            restored=tuple(restored),
        )

    def list_tombstoned(
        self,
        kind: Union[ModelKind, str],
        limit: Optional[int] = None,
        offset: int = 0,
        actor_id: Optional[str] = None,
    ) -> List[TombstoneSummary]:
        """
        List records of a kind carrying their own tombstone, newest first.

        Records hidden only because an ancestor is tombstoned are not listed.
        At most ``limit`` records are returned, ``listing_page_size`` from the
        configuration when no limit is given.
        """
        kind = ModelKind(kind)
        if actor_id is not None:
            self._check_permission(actor_id, "view_deleted", kind)
        if limit is None:
            limit = self.config.listing_page_size

        with self.store.snapshot() as tombstones:
            records = tombstones.list_tombstoned(kind, limit=limit, offset=offset)
            return [self._summarize(tombstones, kind, record) for record in records]

    def iter_tombstoned(
        self, kind: Union[ModelKind, str], actor_id: Optional[str] = None
    ) -> Iterator[TombstoneSummary]:
        """Every tombstoned record of a kind, fetched one page at a time."""
        page_size = self.config.listing_page_size
        offset = 0
        while True:
            page = self.list_tombstoned(
                kind, limit=page_size, offset=offset, actor_id=actor_id
            )
            yield from page
            if len(page) < page_size:
                return
            offset += page_size

    def list_all_tombstoned(
        self, limit: Optional[int] = None, actor_id: Optional[str] = None
    ) -> Dict[ModelKind, List[TombstoneSummary]]:
        """Tombstoned records of every kind, up to ``limit`` per kind."""
        return {
            kind: self.list_tombstoned(kind, limit=limit, actor_id=actor_id)
            for kind in self.graph.kinds
        }

    def purge_candidates(
        self, kind: Union[ModelKind, str], now: Optional[datetime] = None
    ) -> List[TombstoneSummary]:
        """
        Tombstoned records whose retention period has elapsed.

        Read-only: the purge itself belongs to the external retention job.
        """
        kind = ModelKind(kind)
        policy = self.retention_policies[kind]
        now = as_utc(now or self.clock())
        return [
            summary
            for summary in self.iter_tombstoned(kind)
            if policy.can_purge(summary.deleted_at, now)
        ]

    def is_visible(self, record: Any, chain: List[Any]) -> bool:
        return is_visible(record, chain)

    def is_record_visible(self, kind: Union[ModelKind, str], record_id: str) -> bool:
        """
        Load a record and its ancestors and evaluate visibility.

        Raises:
            NotFound: If the record does not exist
        """
        kind = ModelKind(kind)
        with self.store.snapshot() as tombstones:
            record = tombstones.require(kind, record_id)
            return is_visible(
                record, ancestor_chain(tombstones, kind, record, self.graph)
            )

    def query_live(self, kind: Union[ModelKind, str]) -> Select[Any]:
        """Visibility-filtered ``SELECT`` for callers to refine and execute."""
        return select_live(ModelKind(kind), self.graph, self.store.registry)

    def live_records(self, kind: Union[ModelKind, str]) -> List[Any]:
        """All live records of a kind."""
        stmt = self.query_live(kind)
        with self.store.snapshot() as tombstones:
            return list(tombstones.session.scalars(stmt).all())

    def get_event(self, event_id: str) -> DeletionEvent:
        with self.store.snapshot() as tombstones:
            return self.ledger.get(tombstones.session, event_id)

    def events_for_record(
        self, kind: Union[ModelKind, str], record_id: str
    ) -> List[DeletionEvent]:
        """Deletion events rooted at a record, newest first."""
        with self.store.snapshot() as tombstones:
            return self.ledger.events_for_root(
                tombstones.session, ModelKind(kind), record_id
            )

    def generate_deletion_report(
        self, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None
    ) -> DeletionReport:
        """
        Summarize deletion events in a period and current tombstone counts.

        Args:
            start_date: Report period start; 30 days before end_date by default
            end_date: Report period end; now by default
        """
        end_date = as_utc(end_date or self.clock())
        start_date = as_utc(start_date or end_date - timedelta(days=30))

        report = DeletionReport(start_date=start_date, end_date=end_date)
        with self.store.snapshot() as tombstones:
            for event in self.ledger.events_between(
                tombstones.session, start_date, end_date
            ):
                report.add_event(event)
            for kind in self.graph.kinds:
                report.currently_tombstoned[kind.value] = tombstones.count_tombstoned(
                    kind
                )
        return report

    def _summarize(
        self, tombstones: TombstoneStore, kind: ModelKind, record: Any
    ) -> TombstoneSummary:
        parent = parent_label = None
        owner = self.graph.owner_relation(kind)
        if owner is not None:
            parent_id = getattr(record, owner.foreign_key, None)
            if parent_id is not None:
                parent = RecordRef(kind=owner.kind, id=str(parent_id))
                parent_record = tombstones.get(owner.kind, parent_id)
                if parent_record is not None:
                    parent_label = parent_record.label
        return TombstoneSummary(
            kind=kind,
            id=str(record.id),
            deleted_at=record.deleted_at,
            deleted_by=record.deleted_by,
            deletion_event_id=record.deletion_event_id,
            label=record.label,
            parent=parent,
            parent_label=parent_label,
        )
