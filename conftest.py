"""Pytest configuration for the LMS Recovery Toolkit."""

from datetime import datetime, timedelta, timezone

import pytest

from lms_recovery.config import RecoveryConfig
from lms_recovery.soft_delete import RecordStore, SoftDeleteService
from lms_recovery.soft_delete.entities import (
    Announcement,
    Assignment,
    Course,
    CourseContent,
    Discussion,
    Enrollment,
    Grade,
    Module,
    User,
)


def pytest_configure(config):
    """Configure pytest with custom settings."""
    config.addinivalue_line(
        "markers", "scenario: end-to-end delete and restore scenario"
    )


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def test_config():
    return RecoveryConfig(environment="test", database_url="sqlite://")


@pytest.fixture
def store():
    """In-memory SQLite record store with the schema created."""
    record_store = RecordStore.from_url("sqlite://")
    record_store.create_all()
    yield record_store
    record_store.engine.dispose()


@pytest.fixture
def service(store, clock, test_config):
    return SoftDeleteService(store, clock=clock, config=test_config)


def seed_course_tree(store):
    """
    Seed one course with its full subtree.

    c1
    ├── m1
    │   ├── a1 (also under c1) ── g1, g2
    │   ├── d1 (also under c1)
    │   └── cc1 (also under c1)
    ├── a2 (no module) ── g3
    ├── an1
    └── e1 (student u2)

    c2 is an unrelated course with its own module m2.
    """
    with store.transaction() as tombstones:
        tombstones.session.add_all(
            [
                User(id="u1", email="instructor@example.edu", role="INSTRUCTOR"),
                User(id="u2", email="student@example.edu"),
                Course(id="c1", title="Biology 101", code="BIO101", instructor_id="u1"),
                Course(id="c2", title="Chemistry 101", code="CHEM101"),
                Module(id="m1", title="Cells", course_id="c1"),
                Module(id="m2", title="Atoms", course_id="c2"),
                Assignment(id="a1", title="Cell essay", course_id="c1", module_id="m1"),
                Assignment(id="a2", title="Final exam", course_id="c1"),
                Grade(id="g1", points=90.0, assignment_id="a1", student_id="u2"),
                Grade(id="g2", points=75.0, assignment_id="a1"),
                Grade(id="g3", points=60.0, assignment_id="a2", student_id="u2"),
                Discussion(id="d1", title="Mitosis", course_id="c1", module_id="m1"),
                CourseContent(id="cc1", title="Slides", course_id="c1", module_id="m1"),
                Announcement(id="an1", title="Welcome", course_id="c1"),
                Enrollment(id="e1", user_id="u2", course_id="c1"),
            ]
        )
    return store


@pytest.fixture
def course_tree(store):
    return seed_course_tree(store)


@pytest.fixture
def file_store(tmp_path):
    """
    SQLite file store seeded with the course tree.

    Unlike the in-memory store every transaction gets its own connection,
    so a second transaction can commit while the first is still open.
    """
    record_store = RecordStore.from_url(
        f"sqlite:///{tmp_path / 'lms.db'}", timeout_seconds=5
    )
    record_store.create_all()
    seed_course_tree(record_store)
    yield record_store
    record_store.engine.dispose()
