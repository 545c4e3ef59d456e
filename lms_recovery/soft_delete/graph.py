"""
Entity graph model.

Static description of the model kinds and the parent to child ownership
edges the cascade and restore engines traverse. The graph is a plain mapping
from kind to ``(child kind, foreign key)`` pairs; nothing here touches the
database.
"""

from collections import deque
from enum import Enum
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Set, Tuple

from .exceptions import InvariantViolation


class ModelKind(str, Enum):
    """Kinds of records that carry tombstones."""

    USER = "user"
    COURSE = "course"
    MODULE = "module"
    ASSIGNMENT = "assignment"
    GRADE = "grade"
    DISCUSSION = "discussion"
    COURSE_CONTENT = "course_content"
    ANNOUNCEMENT = "announcement"
    ENROLLMENT = "enrollment"


class ChildRelation(NamedTuple):
    """Ownership edge seen from the parent: child kind and its foreign key."""

    kind: ModelKind
    foreign_key: str


class ParentRelation(NamedTuple):
    """Ownership edge seen from the child: parent kind and the child's foreign key."""

    kind: ModelKind
    foreign_key: str


class EntityGraph:
    """
    Immutable ownership graph over a finite set of model kinds.

    A kind may hang from more than one parent kind (an assignment belongs to
    its course and, optionally, to a module of that course), but exactly one
    of them is its owning parent. The graph of kinds must be acyclic.

    Args:
        children: Mapping of parent kind to ordered child relations
        parents: Mapping of kind to its owning parent kind

    Raises:
        InvariantViolation: If the description is not closed, names a parent
            that does not list the child, or contains a cycle
    """

    def __init__(
        self,
        children: Mapping[ModelKind, Iterable[ChildRelation]],
        parents: Mapping[ModelKind, ModelKind],
        kinds: Optional[Iterable[ModelKind]] = None,
    ):
        self._children: Dict[ModelKind, Tuple[ChildRelation, ...]] = {
            kind: tuple(ChildRelation(*rel) for rel in rels)
            for kind, rels in children.items()
        }
        self._parents: Dict[ModelKind, ModelKind] = dict(parents)

        declared: Set[ModelKind] = set(kinds) if kinds is not None else set()
        declared.update(self._children)
        declared.update(self._parents)
        declared.update(self._parents.values())
        for rels in self._children.values():
            declared.update(rel.kind for rel in rels)
        self._kinds: Tuple[ModelKind, ...] = tuple(
            kind for kind in ModelKind if kind in declared
        )

        self._incoming: Dict[ModelKind, List[ParentRelation]] = {
            kind: [] for kind in self._kinds
        }
        for parent, rels in self._children.items():
            for rel in rels:
                self._incoming[rel.kind].append(ParentRelation(parent, rel.foreign_key))

        self._validate()

    def _validate(self) -> None:
        for child, parent in self._parents.items():
            if not any(rel.kind == child for rel in self.children_of(parent)):
                raise InvariantViolation(
                    f"{parent.value} is declared as owner of {child.value} "
                    "but has no child relation to it"
                )

        for kind in self._kinds:
            if self._incoming[kind] and kind not in self._parents:
                raise InvariantViolation(
                    f"{kind.value} has parent relations but no owning parent"
                )

        # Kahn's algorithm; anything left over sits on a cycle
        indegree = {kind: len(self._incoming[kind]) for kind in self._kinds}
        ready = deque(kind for kind, degree in indegree.items() if degree == 0)
        visited = 0
        while ready:
            kind = ready.popleft()
            visited += 1
            for rel in self.children_of(kind):
                indegree[rel.kind] -= 1
                if indegree[rel.kind] == 0:
                    ready.append(rel.kind)
        if visited != len(self._kinds):
            cyclic = sorted(k.value for k, degree in indegree.items() if degree > 0)
            raise InvariantViolation(
                f"Ownership graph contains a cycle through: {', '.join(cyclic)}"
            )

    @property
    def kinds(self) -> Tuple[ModelKind, ...]:
        """All kinds known to the graph, in enum order."""
        return self._kinds

    def children_of(self, kind: ModelKind) -> Tuple[ChildRelation, ...]:
        """Ordered child relations owned by ``kind``."""
        return self._children.get(kind, ())

    def parent_of(self, kind: ModelKind) -> Optional[ModelKind]:
        """Owning parent kind, or None for a root kind."""
        return self._parents.get(kind)

    def parent_relations(self, kind: ModelKind) -> Tuple[ParentRelation, ...]:
        """Every incoming edge of ``kind``, in parent declaration order."""
        return tuple(self._incoming.get(kind, ()))

    def owner_relation(self, kind: ModelKind) -> Optional[ParentRelation]:
        """Edge to the owning parent, or None for a root kind."""
        owner = self._parents.get(kind)
        for relation in self._incoming.get(kind, ()):
            if relation.kind == owner:
                return relation
        return None

    def roots(self) -> Tuple[ModelKind, ...]:
        """Kinds without a parent."""
        return tuple(kind for kind in self._kinds if kind not in self._parents)

    def descendant_kinds(self, kind: ModelKind) -> Tuple[ModelKind, ...]:
        """Kinds reachable below ``kind``, breadth-first, without repeats."""
        seen: List[ModelKind] = []
        queue = deque([kind])
        while queue:
            current = queue.popleft()
            for rel in self.children_of(current):
                if rel.kind not in seen:
                    seen.append(rel.kind)
                    queue.append(rel.kind)
        return tuple(seen)


DEFAULT_GRAPH = EntityGraph(
    children={
        ModelKind.COURSE: [
            ChildRelation(ModelKind.MODULE, "course_id"),
            ChildRelation(ModelKind.ASSIGNMENT, "course_id"),
            ChildRelation(ModelKind.DISCUSSION, "course_id"),
            ChildRelation(ModelKind.COURSE_CONTENT, "course_id"),
            ChildRelation(ModelKind.ANNOUNCEMENT, "course_id"),
            ChildRelation(ModelKind.ENROLLMENT, "course_id"),
        ],
        ModelKind.MODULE: [
            ChildRelation(ModelKind.ASSIGNMENT, "module_id"),
            ChildRelation(ModelKind.DISCUSSION, "module_id"),
            ChildRelation(ModelKind.COURSE_CONTENT, "module_id"),
        ],
        ModelKind.ASSIGNMENT: [
            ChildRelation(ModelKind.GRADE, "assignment_id"),
        ],
    },
    parents={
        ModelKind.MODULE: ModelKind.COURSE,
        ModelKind.ASSIGNMENT: ModelKind.COURSE,
        ModelKind.DISCUSSION: ModelKind.COURSE,
        ModelKind.COURSE_CONTENT: ModelKind.COURSE,
        ModelKind.ANNOUNCEMENT: ModelKind.COURSE,
        ModelKind.ENROLLMENT: ModelKind.COURSE,
        ModelKind.GRADE: ModelKind.ASSIGNMENT,
    },
    kinds=list(ModelKind),
)
