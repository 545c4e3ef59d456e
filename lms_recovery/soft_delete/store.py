"""
Transactional record store.

Wraps a SQLAlchemy engine and hands out ``TombstoneStore`` objects bound to a
single transaction. Mutating work runs under a serializable transaction with
a bounded timeout; driver errors are translated into the soft delete error
taxonomy so callers can tell retryable conflicts from bugs.
"""

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Dict, Iterator, Mapping, Optional, Type

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from .entities import ENTITY_REGISTRY, Base
from .exceptions import (
    ConcurrentModification,
    InvariantViolation,
    SoftDeleteError,
    Timeout,
)
from .graph import ModelKind
from .mixins import TombstoneMixin
from .tombstones import TombstoneStore

if TYPE_CHECKING:
    from ..config import RecoveryConfig

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATE codes
_CONFLICT_SQLSTATES = {"40001", "40P01"}  # serialization_failure, deadlock_detected
_TIMEOUT_SQLSTATES = {"57014", "55P03"}  # query_canceled, lock_not_available


def translate_error(exc: BaseException) -> Optional[SoftDeleteError]:
    """
    Map a SQLAlchemy or driver error onto the soft delete taxonomy.

    Returns:
        The translated error, or None if the error has no counterpart
    """
    if isinstance(exc, SoftDeleteError):
        return exc

    if isinstance(exc, StaleDataError):
        return ConcurrentModification(
            f"Record changed by a concurrent transaction: {exc}"
        )

    if not isinstance(exc, DBAPIError):
        return None

    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    message = str(orig).lower()

    if sqlstate in _CONFLICT_SQLSTATES:
        return ConcurrentModification(f"Transaction conflict: {orig}")
    if sqlstate in _TIMEOUT_SQLSTATES:
        return Timeout(f"Store did not complete in time: {orig}")
    if "database is locked" in message or "timeout" in message:
        return Timeout(f"Store did not complete in time: {orig}")
    if "could not serialize" in message or "deadlock" in message:
        return ConcurrentModification(f"Transaction conflict: {orig}")
    if isinstance(exc, IntegrityError) and "tombstone_consistency" in message:
        return InvariantViolation(f"Tombstone fields out of step: {orig}")
    return None


class RecordStore:
    """
    Entry point to the relational store.

    Args:
        engine: SQLAlchemy engine
        registry: Mapping of model kind to entity class
        isolation_level: Isolation level for mutating transactions
        timeout_seconds: Upper bound for statements and lock waits
    """

    def __init__(
        self,
        engine: Engine,
        registry: Optional[Mapping[ModelKind, Type[TombstoneMixin]]] = None,
        isolation_level: str = "SERIALIZABLE",
        timeout_seconds: int = 30,
    ):
        self.engine = engine
        self.registry: Dict[ModelKind, Type[TombstoneMixin]] = dict(
            registry or ENTITY_REGISTRY
        )
        self.isolation_level = isolation_level
        self.timeout_seconds = timeout_seconds
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(
        cls,
        url: str,
        isolation_level: str = "SERIALIZABLE",
        timeout_seconds: int = 30,
        **engine_kwargs: Any,
    ) -> "RecordStore":
        """
        Create a store for a database URL.

        SQLite gets its busy timeout from ``timeout_seconds``; in-memory SQLite
        shares one connection so every session sees the same database.
        """
        if url.startswith("sqlite"):
            connect_args = dict(engine_kwargs.pop("connect_args", {}))
            connect_args.setdefault("timeout", timeout_seconds)
            if url in ("sqlite://", "sqlite:///:memory:"):
                connect_args.setdefault("check_same_thread", False)
                engine_kwargs.setdefault("poolclass", StaticPool)
            engine_kwargs["connect_args"] = connect_args

        engine = create_engine(url, **engine_kwargs)
        return cls(
            engine, isolation_level=isolation_level, timeout_seconds=timeout_seconds
        )

    @classmethod
    def from_config(cls, config: "RecoveryConfig") -> "RecordStore":
        return cls.from_url(**config.get_store_config())

    def create_all(self) -> None:
        """Create the entity and ledger tables."""
        Base.metadata.create_all(self.engine)

    def _apply_timeout(self, connection: Connection) -> None:
        if connection.dialect.name == "postgresql":
            millis = int(self.timeout_seconds * 1000)
            connection.execute(text(f"SET LOCAL statement_timeout = {millis}"))
            connection.execute(text(f"SET LOCAL lock_timeout = {millis}"))

    @contextmanager
    def transaction(self) -> Iterator[TombstoneStore]:
        """
        Run a block as one atomic, isolated unit.

        Commits when the block finishes, rolls back on any exception,
        including cancellation and KeyboardInterrupt, and re-raises it.

        Raises:
            ConcurrentModification: The store rejected the transaction
            Timeout: The store exceeded its time bound
        """
        session = self._session_factory()
        try:
            connection = session.connection(
                execution_options={"isolation_level": self.isolation_level}
            )
            self._apply_timeout(connection)
            yield TombstoneStore(session, self.registry)
            session.commit()
        except BaseException as exc:
            session.rollback()
            translated = translate_error(exc)
            if translated is None or translated is exc:
                raise
            logger.debug(f"Rolled back transaction after {type(exc).__name__}")
            raise translated from exc
        finally:
            session.close()

    @contextmanager
    def snapshot(self) -> Iterator[TombstoneStore]:
        """
        Read-only session for visibility-filtered queries.

        Never commits. Closing expunges loaded objects without expiring
        them, so they stay readable after the block exits.
        """
        session = self._session_factory()
        try:
            yield TombstoneStore(session, self.registry)
        except BaseException as exc:
            translated = translate_error(exc)
            if translated is None or translated is exc:
                raise
            raise translated from exc
        finally:
            session.close()
