"""
Data models for soft delete operations.

These models describe deletion events, restore results, tombstone listings,
retention policies and reports. They are plain values handed to callers;
persistence lives in ``entities``.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .graph import ModelKind


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class RecordRef(BaseModel):
    """Identity of one record: its kind and id."""

    model_config = ConfigDict(frozen=True)

    kind: ModelKind = Field(..., description="Model kind of the record")
    id: str = Field(..., description="Record ID", min_length=1, max_length=100)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"

    def to_json(self) -> Dict[str, str]:
        return {"kind": self.kind.value, "id": self.id}


class DeletionEvent(BaseModel):
    """One cascading delete invocation and everything it touched."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(..., description="Unique event ID")
    root: RecordRef = Field(..., description="Record the delete was invoked on")
    actor_id: str = Field(..., description="Actor that performed the delete")
    timestamp: datetime = Field(..., description="When the delete happened")
    members: Tuple[RecordRef, ...] = Field(
        ...,
        description="Root and every descendant visited by the cascade, "
        "including descendants that were already tombstoned",
    )
    tombstoned: Tuple[RecordRef, ...] = Field(
        ..., description="Members that went from live to tombstoned in this event"
    )

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return as_utc(v)

    @property
    def cascaded(self) -> Tuple[RecordRef, ...]:
        """Tombstoned members other than the root."""
        return tuple(ref for ref in self.tombstoned if ref != self.root)


class RestoredSet(BaseModel):
    """Result of a restore call."""

    model_config = ConfigDict(frozen=True)

    target: RecordRef
    event_id: str = Field(..., description="Event the target was tombstoned under")
    cascade: bool
    actor_id: str
    restored: Tuple[RecordRef, ...] = Field(
        ..., description="Restored records, target first"
    )


class TombstoneSummary(BaseModel):
    """Administrative view of one directly tombstoned record."""

    kind: ModelKind
    id: str
    deleted_at: datetime
    deleted_by: Optional[str] = None
    deletion_event_id: Optional[str] = None
    label: str = Field("", description="Title or other name of the record")
    parent: Optional[RecordRef] = Field(None, description="Owning parent record")
    parent_label: Optional[str] = Field(None, description="Name of the owning parent")

    @field_validator("deleted_at")
    @classmethod
    def normalize_deleted_at(cls, v: datetime) -> datetime:
        return as_utc(v)


class RetentionPolicy(BaseModel):
    """Defines how long tombstoned records are kept before a purge may happen."""

    kind: ModelKind = Field(..., description="Kind this policy applies to")
    retention_days: int = Field(
        365, description="Minimum days to retain after deletion", ge=30
    )

    def purge_cutoff(self, now: datetime) -> datetime:
        """Records deleted before this instant are eligible for purging."""
        if self.retention_days % 365 == 0:
            return as_utc(now) - relativedelta(years=self.retention_days // 365)
        return as_utc(now) - timedelta(days=self.retention_days)

    def can_purge(self, deleted_at: datetime, now: datetime) -> bool:
        """
        Check if a tombstoned record may be purged by the retention job.

        Args:
            deleted_at: When the record was tombstoned
            now: Current time

        Returns:
            True if the retention period has elapsed
        """
        return as_utc(deleted_at) <= self.purge_cutoff(now)


class DeletionReport(BaseModel):
    """Summary of deletion activity in a period."""

    start_date: datetime = Field(..., description="Report period start")
    end_date: datetime = Field(..., description="Report period end")
    total_events: int = Field(0, description="Delete events in the period")
    total_tombstoned: int = Field(
        0, description="Records tombstoned by those events"
    )
    by_root_kind: Dict[str, int] = Field(
        default_factory=dict, description="Events by kind of the deleted root"
    )
    by_actor: Dict[str, int] = Field(
        default_factory=dict, description="Events by actor"
    )
    currently_tombstoned: Dict[str, int] = Field(
        default_factory=dict, description="Records currently tombstoned, by kind"
    )
    event_ids: List[str] = Field(default_factory=list)

    def add_event(self, event: DeletionEvent) -> None:
        """Add a deletion event to the report statistics."""
        self.total_events += 1
        self.total_tombstoned += len(event.tombstoned)
        self.event_ids.append(event.event_id)

        root_kind = event.root.kind.value
        self.by_root_kind[root_kind] = self.by_root_kind.get(root_kind, 0) + 1
        self.by_actor[event.actor_id] = self.by_actor.get(event.actor_id, 0) + 1
