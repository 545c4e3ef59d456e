"""
Visibility filter.

A record is live when neither it nor any ancestor reachable through the
entity graph carries a tombstone. Visibility is always computed at read time;
this module provides the same rule as a Python predicate and as a SQLAlchemy
criterion, so every read path applies identical semantics.
"""

from collections import deque
from typing import Any, Iterable, List, Mapping, Optional, Set, Tuple, Type

from sqlalchemy import Select, and_, exists, not_, select
from sqlalchemy.orm import aliased
from sqlalchemy.sql.elements import ColumnElement

from .entities import ENTITY_REGISTRY
from .graph import DEFAULT_GRAPH, EntityGraph, ModelKind
from .mixins import TombstoneMixin
from .tombstones import TombstoneStore

Registry = Mapping[ModelKind, Type[TombstoneMixin]]


def is_visible(record: Any, ancestor_chain: Iterable[Any]) -> bool:
    """
    Pure visibility predicate.

    Args:
        record: Record to evaluate
        ancestor_chain: Every ancestor of the record (see ``ancestor_chain``)

    Returns:
        True if neither the record nor any ancestor is tombstoned
    """
    if record.deleted_at is not None:
        return False
    return all(ancestor.deleted_at is None for ancestor in ancestor_chain)


def ancestor_chain(
    tombstones: TombstoneStore,
    kind: ModelKind,
    record: Any,
    graph: EntityGraph = DEFAULT_GRAPH,
) -> List[Any]:
    """
    Load every ancestor of a record, nearest first.

    Follows all parent relations with a non-null foreign key, so an
    assignment placed in a module yields the module, the course via the
    assignment and the course via the module only once. A foreign key
    pointing at a missing row contributes nothing.
    """
    chain: List[Any] = []
    seen: Set[Tuple[ModelKind, str]] = set()
    queue = deque([(kind, record)])

    while queue:
        current_kind, current = queue.popleft()
        for relation in graph.parent_relations(current_kind):
            parent_id = getattr(current, relation.foreign_key, None)
            if parent_id is None or (relation.kind, parent_id) in seen:
                continue
            seen.add((relation.kind, parent_id))
            parent = tombstones.get(relation.kind, parent_id)
            if parent is not None:
                chain.append(parent)
                queue.append((relation.kind, parent))
    return chain


def live_criterion(
    entity: Any,
    kind: ModelKind,
    graph: EntityGraph = DEFAULT_GRAPH,
    registry: Optional[Registry] = None,
) -> ColumnElement[bool]:
    """
    SQL criterion selecting live rows of ``entity``.

    ``entity`` is the mapped class or an ``aliased()`` form of it. For every
    parent relation the row must not point at a parent that is itself not
    live; the check recurses up the graph through correlated NOT EXISTS
    subqueries.

    Example:
        stmt = select(Assignment).where(
            live_criterion(Assignment, ModelKind.ASSIGNMENT),
            Assignment.title.ilike("%essay%"),
        )
    """
    registry = registry or ENTITY_REGISTRY
    clauses: List[ColumnElement[bool]] = [entity.deleted_at.is_(None)]

    for relation in graph.parent_relations(kind):
        parent = aliased(registry[relation.kind])
        foreign_key = getattr(entity, relation.foreign_key)
        hidden_parent = exists().where(
            parent.id == foreign_key,
            not_(live_criterion(parent, relation.kind, graph, registry)),
        )
        clauses.append(not_(hidden_parent))

    return and_(*clauses)


def tombstoned_criterion(entity: Any) -> ColumnElement[bool]:
    """Rows carrying their own tombstone; ancestor tombstones are ignored."""
    return entity.deleted_at.is_not(None)


def select_live(
    kind: ModelKind,
    graph: EntityGraph = DEFAULT_GRAPH,
    registry: Optional[Registry] = None,
) -> Select[Any]:
    """``SELECT`` of live records of a kind, ready to be refined by callers."""
    model = (registry or ENTITY_REGISTRY)[kind]
    return select(model).where(live_criterion(model, kind, graph, registry))


def select_tombstoned(kind: ModelKind, registry: Optional[Registry] = None) -> Select[Any]:
    """``SELECT`` of directly tombstoned records of a kind, newest first."""
    model = (registry or ENTITY_REGISTRY)[kind]
    return (
        select(model)
        .where(tombstoned_criterion(model))
        .order_by(model.deleted_at.desc(), model.id)
    )
