"""User-initiated edits of local medications.

Edits never talk to the remote. They stamp ``updated_at`` so the next sync
pushes them, and deletions only mark a tombstone; the reconciler purges it
once the remote has confirmed the delete.
"""

import logging
from datetime import datetime
from typing import List, Optional, Union

from .models import Frequency, Medication
from .store import LocalStore
from .utils.datetime import ensure_aware, now_utc


logger = logging.getLogger(__name__)

# Default for reminder times in update(); None means "clear"
UNCHANGED = object()


def _clean(value: str, field_name: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValueError(f"{field_name} must not be empty")
    return cleaned


class MedicationRepository:
    """Local create/update/soft-delete operations for one store."""

    def __init__(self, store: LocalStore):
        self.store = store

    def get(self, medication_id: str, username: str) -> Optional[Medication]:
        medication = self.store.find_by_id_and_owner(medication_id, username)
        self.store.rollback()
        return medication

    def list_medications(self, username: str, include_deleted: bool = False) -> List[Medication]:
        """List an owner's medications, tombstones hidden unless asked for."""
        medications = self.store.find_all_by_owner(username)
        self.store.rollback()
        if not include_deleted:
            medications = [m for m in medications if m.is_active]
        return sorted(medications, key=lambda m: (m.name.lower(), m.created_at))

    async def create(self, username: str, name: str, dosage: str, frequency: Frequency,
                     reminder_alert: bool = False,
                     reminder_time1: Optional[datetime] = None,
                     reminder_time2: Optional[datetime] = None) -> Medication:
        """Create an active medication with a fresh client-generated id."""
        frequency = Frequency(frequency)
        now = now_utc()
        medication = Medication(
            username=username,
            name=_clean(name, "name"),
            dosage=_clean(dosage, "dosage"),
            frequency=frequency,
            created_at=now,
            updated_at=now,
        )
        self._apply_reminders(medication, reminder_alert, reminder_time1, reminder_time2)
        self.store.insert(medication)
        await self.store.commit()
        logger.info(f"Created local medication {medication.id} for {username}")
        return medication

    async def update(self, medication_id: str, username: str, name: Optional[str] = None,
                     dosage: Optional[str] = None, frequency: Optional[Frequency] = None,
                     reminder_alert: Optional[bool] = None,
                     reminder_time1: Union[datetime, None, object] = UNCHANGED,
                     reminder_time2: Union[datetime, None, object] = UNCHANGED) -> Medication:
        """Edit fields of an active medication and bump ``updated_at``.

        Fields left as None keep their value. The reminder times default to
        :data:`UNCHANGED` instead, so passing None clears a single slot.

        Raises:
            KeyError: If no active medication has this id
        """
        medication = self.store.find_by_id_and_owner(medication_id, username)
        if medication is None or medication.is_deleted:
            self.store.rollback()
            raise KeyError(f"Medication {medication_id} not found")

        if name is not None:
            medication.name = _clean(name, "name")
        if dosage is not None:
            medication.dosage = _clean(dosage, "dosage")
        if frequency is not None:
            medication.frequency = Frequency(frequency)
        if (reminder_alert is not None or reminder_time1 is not UNCHANGED
                or reminder_time2 is not UNCHANGED or frequency is not None):
            self._apply_reminders(
                medication,
                medication.reminder_alert if reminder_alert is None else reminder_alert,
                medication.reminder_time1 if reminder_time1 is UNCHANGED else reminder_time1,
                medication.reminder_time2 if reminder_time2 is UNCHANGED else reminder_time2,
            )

        if not self.store.has_changes:
            self.store.rollback()
            return medication

        medication.touch()
        await self.store.commit()
        logger.info(f"Updated local medication {medication_id}")
        return medication

    async def soft_delete(self, medication_id: str, username: str) -> bool:
        """Mark a medication deleted; returns False if it does not exist."""
        medication = self.store.find_by_id_and_owner(medication_id, username)
        if medication is None or medication.is_deleted:
            self.store.rollback()
            return False
        medication.mark_deleted()
        await self.store.commit()
        logger.info(f"Marked local medication {medication_id} deleted")
        return True

    @staticmethod
    def _apply_reminders(medication: Medication, reminder_alert: bool,
                         reminder_time1: Optional[datetime], reminder_time2: Optional[datetime]):
        # As-needed medications have no schedule; only twice-daily uses slot 2
        alert = bool(reminder_alert) and medication.frequency != Frequency.AS_NEEDED
        medication.reminder_alert = alert
        medication.reminder_time1 = ensure_aware(reminder_time1) if alert else None
        medication.reminder_time2 = (
            ensure_aware(reminder_time2) if alert and medication.frequency == Frequency.TWICE_DAILY else None
        )
