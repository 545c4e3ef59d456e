"""
Cascade engine.

Tombstones a record and every descendant reachable through the entity graph,
and writes the matching ledger event, inside the caller's transaction.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .entities import new_id
from .exceptions import AlreadyDeleted
from .graph import DEFAULT_GRAPH, EntityGraph, ModelKind
from .ledger import DeletionLedger
from .models import DeletionEvent, RecordRef, as_utc
from .tombstones import TombstoneStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(timezone.utc)


class CascadeEngine:
    """
    Cascading soft delete.

    Args:
        graph: Ownership graph to traverse
        ledger: Ledger receiving one event per delete
        clock: Zero-argument callable returning the current time
        cascade_enabled: When False only the root is tombstoned; descendants
            stay untouched but are still hidden by the visibility filter
    """

    def __init__(
        self,
        graph: EntityGraph = DEFAULT_GRAPH,
        ledger: Optional[DeletionLedger] = None,
        clock: Optional[Clock] = None,
        cascade_enabled: bool = True,
    ):
        self.graph = graph
        self.ledger = ledger or DeletionLedger()
        self.clock = clock or utc_now
        self.cascade_enabled = cascade_enabled

    def delete(
        self,
        tombstones: TombstoneStore,
        kind: ModelKind,
        record_id: str,
        actor_id: str,
    ) -> DeletionEvent:
        """
        Soft delete a record and cascade to its descendants.

        Already tombstoned descendants are listed as members of the new event
        but keep pointing at the event that originally tombstoned them.

        Args:
            tombstones: Tombstone store bound to the current transaction
            kind: Kind of the record to delete
            record_id: ID of the record to delete
            actor_id: ID of the actor performing the deletion

        Returns:
            The new deletion event

        Raises:
            NotFound: If the record does not exist
            AlreadyDeleted: If the record already carries a tombstone
            ValueError: If actor_id is empty
        """
        if not actor_id or not actor_id.strip():
            raise ValueError("Actor ID is required for deletion")

        root = tombstones.require(kind, record_id)
        if root.is_tombstoned:
            raise AlreadyDeleted(kind.value, record_id, event_id=root.deletion_event_id)

        descendants = []
        if self.cascade_enabled:
            descendants = list(tombstones.walk_descendants(self.graph, kind, root))

        event_id = new_id()
        now = as_utc(self.clock())

        root.mark_tombstoned(actor_id, event_id, now)
        members: List[RecordRef] = [root.record_ref]
        tombstoned: List[RecordRef] = [root.record_ref]

        for _, record in descendants:
            members.append(record.record_ref)
            if not record.is_tombstoned:
                record.mark_tombstoned(actor_id, event_id, now)
                tombstoned.append(record.record_ref)

        event = DeletionEvent(
            event_id=event_id,
            root=root.record_ref,
            actor_id=actor_id.strip(),
            timestamp=now,
            members=tuple(members),
            tombstoned=tuple(tombstoned),
        )
        self.ledger.append(tombstones.session, event)
        tombstones.flush()

        logger.info(
            f"Deleted {event.root} under event {event_id}: "
            f"{len(tombstoned)} tombstoned, "
            f"{len(members) - len(tombstoned)} already deleted"
        )
        return event
