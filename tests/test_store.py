"""
Tests for the transactional record store and error translation.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from lms_recovery.config import IsolationLevel, RecoveryConfig
from lms_recovery.soft_delete import (
    ConcurrentModification,
    InvariantViolation,
    ModelKind,
    NotFound,
    RecordStore,
    Timeout,
)
from lms_recovery.soft_delete.entities import Course
from lms_recovery.soft_delete.store import translate_error


class DriverError(Exception):
    """Stand-in for a DBAPI exception carrying a SQLSTATE."""

    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


def operational(message, pgcode=None):
    return OperationalError("UPDATE courses ...", {}, DriverError(message, pgcode))


class TestTranslateError:
    """Test mapping of driver errors onto the soft delete taxonomy."""

    def test_stale_data(self):
        assert isinstance(translate_error(StaleDataError("0 rows")), ConcurrentModification)

    @pytest.mark.parametrize("pgcode", ["40001", "40P01"])
    def test_conflict_sqlstates(self, pgcode):
        translated = translate_error(operational("conflict", pgcode))
        assert isinstance(translated, ConcurrentModification)
        assert translated.retryable is True

    @pytest.mark.parametrize("pgcode", ["57014", "55P03"])
    def test_timeout_sqlstates(self, pgcode):
        translated = translate_error(operational("canceled", pgcode))
        assert isinstance(translated, Timeout)
        assert translated.retryable is True

    def test_sqlite_locked(self):
        assert isinstance(translate_error(operational("database is locked")), Timeout)

    def test_deadlock_message(self):
        translated = translate_error(operational("deadlock detected"))
        assert isinstance(translated, ConcurrentModification)

    def test_unrelated_driver_error(self):
        assert translate_error(operational("no such table: courses")) is None

    def test_plain_exception(self):
        assert translate_error(ValueError("bad")) is None

    def test_taxonomy_passes_through(self):
        exc = NotFound("course", "c1")
        assert translate_error(exc) is exc

    def test_tombstone_constraint(self):
        exc = IntegrityError(
            "INSERT ...",
            {},
            DriverError("CHECK constraint failed: ck_courses_tombstone_consistency"),
        )
        assert isinstance(translate_error(exc), InvariantViolation)


class TestRecordStore:
    """Test transaction and snapshot scopes."""

    def test_in_memory_store_shares_connection(self, store):
        assert isinstance(store.engine.pool, StaticPool)
        assert store.isolation_level == "SERIALIZABLE"

    def test_from_config(self, tmp_path):
        config = RecoveryConfig(
            database_url=f"sqlite:///{tmp_path / 'lms.db'}",
            isolation_level=IsolationLevel.SERIALIZABLE,
            transaction_timeout_seconds=5,
        )
        file_store = RecordStore.from_config(config)
        file_store.create_all()

        assert file_store.timeout_seconds == 5
        assert (tmp_path / "lms.db").exists()
        file_store.engine.dispose()

    def test_from_url_copies_connect_args(self):
        connect_args = {"timeout": 3}
        memory_store = RecordStore.from_url("sqlite://", connect_args=connect_args)

        assert connect_args == {"timeout": 3}
        assert isinstance(memory_store.engine.pool, StaticPool)
        memory_store.engine.dispose()

    def test_commit(self, store):
        with store.transaction() as tombstones:
            tombstones.session.add(Course(id="c1", title="Biology", code="BIO"))

        with store.snapshot() as tombstones:
            assert tombstones.require(ModelKind.COURSE, "c1").title == "Biology"

    def test_rollback_on_interrupt(self, course_tree):
        now = datetime(2026, 3, 2, tzinfo=timezone.utc)
        with pytest.raises(KeyboardInterrupt):
            with course_tree.transaction() as tombstones:
                tombstones.require(ModelKind.COURSE, "c1").mark_tombstoned(
                    "admin", "evt-1", now
                )
                tombstones.flush()
                raise KeyboardInterrupt

        with course_tree.snapshot() as tombstones:
            assert tombstones.require(ModelKind.COURSE, "c1").is_tombstoned is False

    def test_driver_error_translated_and_chained(self, store):
        with pytest.raises(Timeout) as exc:
            with store.transaction():
                raise operational("database is locked")
        assert isinstance(exc.value.__cause__, OperationalError)

    def test_constraint_violation(self, store):
        with pytest.raises(InvariantViolation):
            with store.transaction() as tombstones:
                tombstones.session.add(
                    Course(
                        id="c1",
                        title="Broken",
                        code="X",
                        deleted_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
                    )
                )

    def test_snapshot_objects_outlive_session(self, course_tree):
        with course_tree.snapshot() as tombstones:
            course = tombstones.require(ModelKind.COURSE, "c1")
        assert course.title == "Biology 101"
        assert course.is_tombstoned is False


class TestTombstoneStore:
    """Test session-bound lookups."""

    def test_require_missing(self, course_tree):
        with course_tree.snapshot() as tombstones:
            with pytest.raises(NotFound) as exc:
                tombstones.require(ModelKind.MODULE, "nope")
        assert exc.value.kind == "module"

    def test_unknown_kind(self, store):
        with store.snapshot() as tombstones:
            tombstones.registry.pop(ModelKind.GRADE)
            with pytest.raises(ValueError):
                tombstones.model_for(ModelKind.GRADE)

    def test_walk_descendants_order(self, course_tree):
        from lms_recovery.soft_delete import DEFAULT_GRAPH

        with course_tree.snapshot() as tombstones:
            root = tombstones.require(ModelKind.MODULE, "m1")
            walked = [
                (kind, record.id)
                for kind, record in tombstones.walk_descendants(
                    DEFAULT_GRAPH, ModelKind.MODULE, root
                )
            ]
        assert walked == [
            (ModelKind.ASSIGNMENT, "a1"),
            (ModelKind.DISCUSSION, "d1"),
            (ModelKind.COURSE_CONTENT, "cc1"),
            (ModelKind.GRADE, "g1"),
            (ModelKind.GRADE, "g2"),
        ]

    def test_list_and_count(self, service, course_tree, clock):
        service.delete(ModelKind.GRADE, "g1", "admin")
        clock.advance(minutes=1)
        service.delete(ModelKind.GRADE, "g3", "admin")

        with course_tree.snapshot() as tombstones:
            assert tombstones.count_tombstoned(ModelKind.GRADE) == 2
            newest = tombstones.list_tombstoned(ModelKind.GRADE, limit=1)
            assert [g.id for g in newest] == ["g3"]
            older = tombstones.list_tombstoned(ModelKind.GRADE, limit=1, offset=1)
            assert [g.id for g in older] == ["g1"]
