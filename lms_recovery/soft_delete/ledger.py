"""
Deletion event ledger.

Append-only record of every delete invocation. Rows are written in the same
transaction as the tombstones they describe and are never updated; restores
only read them.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .entities import DeletionEventRecord
from .exceptions import InvariantViolation, NotFound
from .graph import ModelKind
from .models import DeletionEvent, RecordRef


def _refs_to_json(refs: Any) -> List[Dict[str, str]]:
    return [ref.to_json() for ref in refs]


def _refs_from_json(items: List[Dict[str, str]]) -> List[RecordRef]:
    return [RecordRef(kind=ModelKind(item["kind"]), id=item["id"]) for item in items]


class DeletionLedger:
    """Reads and appends deletion events through a caller-supplied session."""

    def append(self, session: Session, event: DeletionEvent) -> DeletionEventRecord:
        """
        Stage a new ledger row in the caller's transaction.

        Raises:
            InvariantViolation: If the event ID already exists
        """
        if session.get(DeletionEventRecord, event.event_id) is not None:
            raise InvariantViolation(
                f"Deletion event {event.event_id} already exists in the ledger"
            )

        row = DeletionEventRecord(
            event_id=event.event_id,
            root_kind=event.root.kind.value,
            root_id=event.root.id,
            actor_id=event.actor_id,
            timestamp=event.timestamp,
            members=_refs_to_json(event.members),
            tombstoned=_refs_to_json(event.tombstoned),
        )
        session.add(row)
        return row

    def find(self, session: Session, event_id: str) -> Optional[DeletionEvent]:
        row = session.get(DeletionEventRecord, event_id)
        return self.to_event(row) if row is not None else None

    def get(self, session: Session, event_id: str) -> DeletionEvent:
        """
        Load one event.

        Raises:
            NotFound: If the ledger has no such event
        """
        event = self.find(session, event_id)
        if event is None:
            raise NotFound("deletion_event", event_id)
        return event

    def events_for_root(
        self, session: Session, kind: ModelKind, record_id: str
    ) -> List[DeletionEvent]:
        """Events whose root is the given record, newest first."""
        stmt = (
            select(DeletionEventRecord)
            .where(
                DeletionEventRecord.root_kind == kind.value,
                DeletionEventRecord.root_id == record_id,
            )
            .order_by(DeletionEventRecord.timestamp.desc())
        )
        return [self.to_event(row) for row in session.scalars(stmt).all()]

    def events_between(
        self, session: Session, start: datetime, end: datetime
    ) -> List[DeletionEvent]:
        """Events with start <= timestamp <= end, oldest first."""
        stmt = (
            select(DeletionEventRecord)
            .where(
                DeletionEventRecord.timestamp >= start,
                DeletionEventRecord.timestamp <= end,
            )
            .order_by(DeletionEventRecord.timestamp.asc())
        )
        return [self.to_event(row) for row in session.scalars(stmt).all()]

    @staticmethod
    def to_event(row: DeletionEventRecord) -> DeletionEvent:
        return DeletionEvent(
            event_id=row.event_id,
            root=RecordRef(kind=ModelKind(row.root_kind), id=row.root_id),
            actor_id=row.actor_id,
            timestamp=row.timestamp,
            members=tuple(_refs_from_json(row.members)),
            tombstoned=tuple(_refs_from_json(row.tombstoned)),
        )
