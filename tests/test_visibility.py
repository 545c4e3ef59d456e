"""
Tests for the visibility filter.

The Python predicate and the SQL criterion must agree on every record.
"""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from lms_recovery.soft_delete import (
    ModelKind,
    ancestor_chain,
    is_visible,
    live_criterion,
    select_tombstoned,
)
from lms_recovery.soft_delete.entities import ENTITY_REGISTRY, Assignment

NOW = datetime(2026, 3, 2, tzinfo=timezone.utc)


def stub(deleted_at=None):
    return SimpleNamespace(deleted_at=deleted_at)


def visible_in_python(service, store):
    result = set()
    with store.snapshot() as tombstones:
        for kind, model in ENTITY_REGISTRY.items():
            for record in tombstones.session.scalars(select(model)).all():
                chain = ancestor_chain(tombstones, kind, record, service.graph)
                if is_visible(record, chain):
                    result.add((kind, record.id))
    return result


def visible_in_sql(service):
    return {
        (kind, record.id) for kind in ModelKind for record in service.live_records(kind)
    }


class TestPredicate:
    """Test the pure predicate."""

    def test_live_record_without_ancestors(self):
        assert is_visible(stub(), []) is True

    def test_own_tombstone(self):
        assert is_visible(stub(NOW), []) is False

    def test_ancestor_tombstone(self):
        assert is_visible(stub(), [stub(), stub(NOW)]) is False

    def test_all_ancestors_live(self):
        assert is_visible(stub(), [stub(), stub()]) is True


class TestAncestorChain:
    """Test ancestor loading."""

    def test_grade_chain(self, service, course_tree):
        with course_tree.snapshot() as tombstones:
            grade = tombstones.require(ModelKind.GRADE, "g1")
            chain = ancestor_chain(tombstones, ModelKind.GRADE, grade)
            assert [record.id for record in chain] == ["a1", "c1", "m1"]

    def test_unmoduled_assignment(self, service, course_tree):
        with course_tree.snapshot() as tombstones:
            assignment = tombstones.require(ModelKind.ASSIGNMENT, "a2")
            chain = ancestor_chain(tombstones, ModelKind.ASSIGNMENT, assignment)
            assert [record.id for record in chain] == ["c1"]

    def test_root_has_no_chain(self, service, course_tree):
        with course_tree.snapshot() as tombstones:
            course = tombstones.require(ModelKind.COURSE, "c1")
            assert ancestor_chain(tombstones, ModelKind.COURSE, course) == []


class TestPythonAndSqlAgree:
    """Both forms of the filter select the same records."""

    def test_nothing_deleted(self, service, course_tree):
        visible = visible_in_sql(service)
        assert visible == visible_in_python(service, course_tree)
        assert len(visible) == 15

    def test_after_course_delete(self, service, course_tree):
        service.delete(ModelKind.COURSE, "c1", "admin")
        visible = visible_in_sql(service)

        assert visible == visible_in_python(service, course_tree)
        assert visible == {
            (ModelKind.USER, "u1"),
            (ModelKind.USER, "u2"),
            (ModelKind.COURSE, "c2"),
            (ModelKind.MODULE, "m2"),
        }

    def test_restored_child_under_deleted_parent(self, service, course_tree):
        service.delete(ModelKind.COURSE, "c1", "admin")
        service.restore(ModelKind.ASSIGNMENT, "a1", "admin", cascade=True)

        visible = visible_in_sql(service)
        assert visible == visible_in_python(service, course_tree)
        assert (ModelKind.ASSIGNMENT, "a1") not in visible
        assert service.is_record_visible(ModelKind.ASSIGNMENT, "a1") is False

    def test_module_tombstone_hides_through_second_edge(self, service, course_tree):
        """a1 is hidden by its module even though its course is live."""
        service.delete(ModelKind.MODULE, "m1", "admin")
        service.restore(ModelKind.ASSIGNMENT, "a1", "admin", cascade=False)

        visible = visible_in_sql(service)
        assert visible == visible_in_python(service, course_tree)
        assert (ModelKind.ASSIGNMENT, "a1") not in visible
        assert (ModelKind.GRADE, "g1") not in visible
        assert (ModelKind.ASSIGNMENT, "a2") in visible
        assert (ModelKind.GRADE, "g3") in visible

    def test_dangling_foreign_key_is_visible(self, service, course_tree):
        with course_tree.transaction() as tombstones:
            tombstones.session.add(
                Assignment(id="a9", title="Orphan", course_id="c2", module_id="gone")
            )

        assert (ModelKind.ASSIGNMENT, "a9") in visible_in_sql(service)
        assert service.is_record_visible(ModelKind.ASSIGNMENT, "a9") is True


class TestQueries:
    """Test the composable statements."""

    def test_live_criterion_composes(self, service, course_tree):
        service.delete(ModelKind.MODULE, "m1", "admin")
        stmt = select(Assignment).where(
            live_criterion(Assignment, ModelKind.ASSIGNMENT),
            Assignment.title.like("%exam%"),
        )
        with course_tree.snapshot() as tombstones:
            assert [a.id for a in tombstones.session.scalars(stmt)] == ["a2"]

    def test_query_live_can_be_refined(self, service, course_tree):
        stmt = service.query_live(ModelKind.GRADE).order_by(
            ENTITY_REGISTRY[ModelKind.GRADE].points.desc()
        )
        with course_tree.snapshot() as tombstones:
            assert [g.id for g in tombstones.session.scalars(stmt)] == ["g1", "g2", "g3"]

    def test_select_tombstoned_ignores_ancestors(self, service, course_tree, clock):
        service.delete(ModelKind.ASSIGNMENT, "a2", "admin")
        clock.advance(hours=1)
        service.delete(ModelKind.MODULE, "m1", "admin")

        with course_tree.snapshot() as tombstones:
            grades = tombstones.session.scalars(select_tombstoned(ModelKind.GRADE))
            assert [g.id for g in grades] == ["g1", "g2", "g3"]
            courses = tombstones.session.scalars(select_tombstoned(ModelKind.COURSE))
            assert list(courses) == []

    @pytest.mark.parametrize("kind", list(ModelKind))
    def test_every_kind_compiles(self, kind, service):
        assert "deleted_at IS NULL" in str(service.query_live(kind))
