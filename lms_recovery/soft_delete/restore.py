"""
Restore engine.

Clears tombstones. A cascading restore only brings back descendants of the
target that were tombstoned by the same deletion event as the target, so
records deleted independently (under an earlier event) stay deleted.
"""

import logging
from typing import Any, List, Optional

from sqlalchemy.orm.exc import StaleDataError

from .exceptions import InvariantViolation, NotDeleted, PartialRestoreConflict
from .graph import DEFAULT_GRAPH, EntityGraph, ModelKind
from .ledger import DeletionLedger
from .models import RecordRef
from .tombstones import TombstoneStore

logger = logging.getLogger(__name__)


class RestoreEngine:
    """
    Selective restore of tombstoned records.

    Args:
        graph: Ownership graph to traverse
        ledger: Ledger the deletion events are read from
    """

    def __init__(
        self,
        graph: EntityGraph = DEFAULT_GRAPH,
        ledger: Optional[DeletionLedger] = None,
    ):
        self.graph = graph
        self.ledger = ledger or DeletionLedger()

    def restore(
        self,
        tombstones: TombstoneStore,
        kind: ModelKind,
        record_id: str,
        actor_id: str,
        cascade: bool = True,
    ) -> List[RecordRef]:
        """
        Restore a tombstoned record.

        Without cascade only the target is cleared; if an ancestor is still
        tombstoned the target stays invisible until that ancestor returns.
        With cascade, every descendant of the target whose tombstone belongs
        to the target's event is cleared too.

        Args:
            tombstones: Tombstone store bound to the current transaction
            kind: Kind of the record to restore
            record_id: ID of the record to restore
            actor_id: ID of the actor performing the restore
            cascade: Whether to restore same-event descendants

        Returns:
            Restored records, target first, then descendants breadth-first

        Raises:
            NotFound: If the record does not exist
            NotDeleted: If the record is live
            InvariantViolation: If the tombstone and the ledger disagree
            PartialRestoreConflict: If a member changed under a concurrent
                transaction; nothing is restored
        """
        if not actor_id or not actor_id.strip():
            raise ValueError("Actor ID is required for restoration")

        target = tombstones.require(kind, record_id)
        if not target.is_tombstoned:
            raise NotDeleted(kind.value, record_id)

        event_id = target.deletion_event_id
        if not event_id:
            raise InvariantViolation(
                f"{target.record_ref} is tombstoned without a deletion event",
                kind=kind.value,
                record_id=record_id,
            )

        event = self.ledger.find(tombstones.session, event_id)
        if event is None:
            raise InvariantViolation(
                f"{target.record_ref} references deletion event {event_id} "
                "which is missing from the ledger",
                kind=kind.value,
                record_id=record_id,
            )

        plan: List[Any] = [target]
        if cascade:
            plan.extend(
                record
                for _, record in tombstones.walk_descendants(self.graph, kind, target)
                if record.deletion_event_id == event_id
            )

        tombstoned_by_event = set(event.tombstoned)
        for record in plan:
            if record.record_ref not in tombstoned_by_event:
                raise InvariantViolation(
                    f"{record.record_ref} points at deletion event {event_id} "
                    "but the event did not tombstone it",
                    kind=kind.value,
                    record_id=record_id,
                )

        for record in plan:
            record.clear_tombstone()

        try:
            tombstones.flush()
        except StaleDataError as exc:
            raise PartialRestoreConflict(kind.value, record_id, event_id) from exc

        restored = [record.record_ref for record in plan]
        logger.info(
            f"Restored {target.record_ref} from event {event_id} "
            f"(cascade={cascade}): {len(restored)} records, actor {actor_id.strip()}"
        )
        return restored
