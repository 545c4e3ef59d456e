"""
Tombstone store.

Session-bound access to tombstoned records: point lookups, bulk foreign key
lookups for graph traversal, tombstone mutations and administrative listings.
All calls run inside whatever transaction the caller's session holds.
"""

from collections import deque
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Set, Tuple, Type

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .entities import ENTITY_REGISTRY
from .exceptions import InvariantViolation, NotFound
from .graph import ChildRelation, EntityGraph, ModelKind
from .mixins import TombstoneMixin

# Keeps IN (...) lists well under driver bind parameter limits
_IN_CLAUSE_CHUNK = 500


class TombstoneStore:
    """
    Tombstone reads and writes over one SQLAlchemy session.

    Args:
        session: Session holding the current transaction
        registry: Mapping of model kind to its mapped entity class
    """

    def __init__(
        self,
        session: Session,
        registry: Optional[Mapping[ModelKind, Type[TombstoneMixin]]] = None,
    ):
        self.session = session
        self.registry: Dict[ModelKind, Type[TombstoneMixin]] = dict(
            registry or ENTITY_REGISTRY
        )

    def model_for(self, kind: ModelKind) -> Type[Any]:
        """Get the entity class registered for a kind."""
        try:
            return self.registry[kind]
        except KeyError:
            raise ValueError(f"Model kind {kind} is not registered") from None

    def get(self, kind: ModelKind, record_id: str) -> Optional[Any]:
        return self.session.get(self.model_for(kind), record_id)

    def require(self, kind: ModelKind, record_id: str) -> Any:
        """
        Load a record or fail.

        Raises:
            NotFound: If no record of ``kind`` has ``record_id``
        """
        record = self.get(kind, record_id)
        if record is None:
            raise NotFound(kind.value, record_id)
        return record

    def children(self, relation: ChildRelation, parent_ids: Sequence[str]) -> List[Any]:
        """
        Bulk lookup of child records by foreign key.

        Args:
            relation: Child kind and the foreign key pointing at the parent
            parent_ids: IDs of the parent records

        Returns:
            Child records in any tombstone state, ordered by ID
        """
        model = self.model_for(relation.kind)
        foreign_key = getattr(model, relation.foreign_key, None)
        if foreign_key is None:
            raise InvariantViolation(
                f"{model.__name__} has no column {relation.foreign_key} "
                "declared by the entity graph"
            )

        found: List[Any] = []
        for start in range(0, len(parent_ids), _IN_CLAUSE_CHUNK):
            chunk = list(parent_ids[start : start + _IN_CLAUSE_CHUNK])
            stmt = select(model).where(foreign_key.in_(chunk)).order_by(model.id)
            found.extend(self.session.scalars(stmt).all())
        return found

    def walk_descendants(
        self, graph: EntityGraph, kind: ModelKind, root: Any
    ) -> Iterator[Tuple[ModelKind, Any]]:
        """
        Breadth-first walk over every record reachable below ``root``.

        Records reachable by more than one path (an assignment under both its
        course and its module) are yielded once, at their first encounter.
        Tombstone state is ignored; callers decide what to do with each record.
        """
        seen: Set[Tuple[ModelKind, str]] = {(kind, str(root.id))}
        queue = deque([(kind, [str(root.id)])])

        while queue:
            parent_kind, parent_ids = queue.popleft()
            for relation in graph.children_of(parent_kind):
                batch: List[str] = []
                for child in self.children(relation, parent_ids):
                    key = (relation.kind, str(child.id))
                    if key in seen:
                        continue
                    seen.add(key)
                    batch.append(key[1])
                    yield relation.kind, child
                if batch:
                    queue.append((relation.kind, batch))

    def list_tombstoned(
        self, kind: ModelKind, limit: Optional[int] = None, offset: int = 0
    ) -> List[Any]:
        """Records of ``kind`` carrying their own tombstone, newest first."""
        model = self.model_for(kind)
        stmt = (
            select(model)
            .where(model.deleted_at.is_not(None))
            .order_by(model.deleted_at.desc(), model.id)
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt).all())

    def count_tombstoned(self, kind: ModelKind) -> int:
        model = self.model_for(kind)
        stmt = select(func.count()).select_from(model).where(
            model.deleted_at.is_not(None)
        )
        return int(self.session.scalar(stmt) or 0)

    def flush(self) -> None:
        self.session.flush()
