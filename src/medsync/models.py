"""Data models for the medication sync system.

This module contains the local entity that is synchronized, its enumerations,
and the result structure reported by every sync operation.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field, asdict, fields
from enum import Enum, IntEnum

from .utils.datetime import now_utc, ensure_aware, to_iso_string, from_iso_string


class Frequency(str, Enum):
    """How often a medication is taken."""
    DAILY = "daily"
    TWICE_DAILY = "twice_daily"
    WEEKLY = "weekly"
    AS_NEEDED = "as_needed"

    @property
    def title(self) -> str:
        return _FREQUENCY_TITLES[self]


_FREQUENCY_TITLES = {
    Frequency.DAILY: "Daily",
    Frequency.TWICE_DAILY: "Twice daily",
    Frequency.WEEKLY: "Weekly",
    Frequency.AS_NEEDED: "As needed",
}


class MedicationStatus(IntEnum):
    """Lifecycle status of a local record."""
    ACTIVE = 0
    DELETED = 1  # Tombstone: kept until the remote delete is confirmed


class SyncStatus(Enum):
    """Sync operation status."""
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"  # Another sync was already in flight


# Fields that are owned by the remote and overwritten on reconciliation
SYNCED_FIELDS = ("id", "username", "name", "dosage", "frequency", "created_at", "updated_at")


@dataclass
class Medication:
    """A medication record in the local store."""

    username: str
    name: str
    dosage: str
    frequency: Frequency
    created_at: datetime = field(default_factory=now_utc)
    updated_at: Optional[datetime] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: MedicationStatus = MedicationStatus.ACTIVE

    # Local-only reminder settings, never sent to the remote
    reminder_alert: bool = False
    reminder_time1: Optional[datetime] = None
    reminder_time2: Optional[datetime] = None

    def __post_init__(self):
        """Normalize enums and timestamps."""
        if not isinstance(self.frequency, Frequency):
            self.frequency = Frequency(self.frequency)
        if not isinstance(self.status, MedicationStatus):
            self.status = MedicationStatus(self.status)
        self.created_at = ensure_aware(self.created_at)
        self.updated_at = ensure_aware(self.updated_at) or self.created_at
        self.reminder_time1 = ensure_aware(self.reminder_time1)
        self.reminder_time2 = ensure_aware(self.reminder_time2)
        if self.updated_at < self.created_at:
            raise ValueError(
                f"updated_at ({self.updated_at}) precedes created_at ({self.created_at})"
            )

    @property
    def is_active(self) -> bool:
        return self.status == MedicationStatus.ACTIVE

    @property
    def is_deleted(self) -> bool:
        return self.status == MedicationStatus.DELETED

    def touch(self, when: Optional[datetime] = None):
        """Advance ``updated_at`` after a local mutation.

        The timestamp never moves backwards, so two edits within the clock's
        resolution still produce a strictly newer value.
        """
        when = ensure_aware(when) or now_utc()
        if when <= self.updated_at:
            when = self.updated_at + timedelta(microseconds=1)
        self.updated_at = when

    def mark_deleted(self, when: Optional[datetime] = None):
        """Soft-delete: turn this record into a tombstone."""
        self.status = MedicationStatus.DELETED
        self.touch(when)

    def synced_values(self) -> Dict[str, Any]:
        """Values of the fields the remote owns."""
        return {name: getattr(self, name) for name in SYNCED_FIELDS}

    def snapshot(self) -> Dict[str, Any]:
        """Shallow copy of every field, used for change detection."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data = asdict(self)
        data['frequency'] = self.frequency.value
        data['status'] = int(self.status)
        for field_name in ['created_at', 'updated_at', 'reminder_time1', 'reminder_time2']:
            data[field_name] = to_iso_string(data[field_name])
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Medication':
        """Create from dictionary representation."""
        data = dict(data)
        for field_name in ['created_at', 'updated_at', 'reminder_time1', 'reminder_time2']:
            if isinstance(data.get(field_name), str):
                data[field_name] = from_iso_string(data[field_name])
        return cls(**data)


@dataclass
class SyncResult:
    """Result of a sync operation."""

    status: SyncStatus
    operation: str
    username: str
    medication_id: Optional[str] = None
    items_created: int = 0          # pushed to the remote as new records
    items_pulled: int = 0           # materialized locally from the remote
    items_updated_local: int = 0    # remote won, local overwritten
    items_updated_remote: int = 0   # local won, pushed as an update
    items_deleted: int = 0          # tombstones purged
    items_unchanged: int = 0
    errors: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == SyncStatus.SUCCESS

    @property
    def items_synced(self) -> int:
        return (self.items_created + self.items_pulled + self.items_updated_local
                + self.items_updated_remote + self.items_deleted)

    def complete(self):
        """Mark sync as completed and calculate duration."""
        self.completed_at = datetime.now(timezone.utc)
        self.duration_seconds = (self.completed_at - self.started_at).total_seconds()

    def add_error(self, error: str):
        """Add an error to the result."""
        self.errors.append(error)
        if self.status == SyncStatus.SUCCESS:
            self.status = SyncStatus.ERROR

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data = asdict(self)
        data['status'] = self.status.value
        data['started_at'] = self.started_at.isoformat()
        if self.completed_at:
            data['completed_at'] = self.completed_at.isoformat()
        data['items_synced'] = self.items_synced
        return data
