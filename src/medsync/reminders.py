"""Reminder projection and planning.

After a sync the caller re-reads the store and hands the reminder-relevant
fields to a scheduler. This module builds that read-only projection and turns
it into notification requests; delivering them is left to the platform.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Dict, List, Optional

from .models import Frequency, Medication
from .store import LocalStore


logger = logging.getLogger(__name__)

REMINDER_TITLE = "Medication Reminder"


@dataclass(frozen=True)
class ReminderInfo:
    """What a reminder scheduler needs to know about one medication."""
    id: str
    username: str
    name: str
    dosage: str
    frequency: Frequency
    is_active: bool
    reminder_alert: bool = False
    reminder_time1: Optional[datetime] = None
    reminder_time2: Optional[datetime] = None

    @classmethod
    def from_medication(cls, medication: Medication) -> "ReminderInfo":
        return cls(
            id=medication.id,
            username=medication.username,
            name=medication.name,
            dosage=medication.dosage,
            frequency=medication.frequency,
            is_active=medication.is_active,
            reminder_alert=medication.reminder_alert,
            reminder_time1=medication.reminder_time1,
            reminder_time2=medication.reminder_time2,
        )


@dataclass(frozen=True)
class ReminderTrigger:
    """Repeating calendar trigger. ``weekday`` is ISO (1=Monday) or None for daily."""
    hour: int
    minute: int
    weekday: Optional[int] = None
    repeats: bool = True


@dataclass(frozen=True)
class ReminderRequest:
    identifier: str
    title: str
    body: str
    trigger: ReminderTrigger
    user_info: Dict[str, object]


def reminder_infos(store: LocalStore, username: str) -> List[ReminderInfo]:
    """Project an owner's local records, tombstones included as inactive."""
    infos = [ReminderInfo.from_medication(m) for m in store.find_all_by_owner(username)]
    store.rollback()
    return infos


def request_id(medication_id: str, slot: int) -> str:
    return f"medreminder.{medication_id}.{slot}"


def request_ids(reminders: List[ReminderInfo]) -> List[str]:
    """Every identifier that may have been scheduled for these medications."""
    return [request_id(r.id, slot) for r in reminders for slot in (1, 2)]


def make_trigger(frequency: Frequency, time: datetime,
                 tz: Optional[tzinfo] = None) -> Optional[ReminderTrigger]:
    """Build the repeating trigger for a reminder time, or None for as-needed."""
    if frequency == Frequency.AS_NEEDED:
        return None
    local_time = time.astimezone(tz) if tz is not None and time.tzinfo is not None else time
    if frequency == Frequency.WEEKLY:
        return ReminderTrigger(hour=local_time.hour, minute=local_time.minute,
                               weekday=local_time.isoweekday())
    return ReminderTrigger(hour=local_time.hour, minute=local_time.minute)


def plan_reminders(username: str, reminders: List[ReminderInfo],
                   tz: Optional[tzinfo] = None) -> List[ReminderRequest]:
    """Turn reminder infos into notification requests.

    Inactive, as-needed and alert-off medications get nothing. Slot 2 is only
    used by twice-daily medications.

    Args:
        username: Owner the notifications are for
        reminders: Projection from :func:`reminder_infos`
        tz: Timezone the wall-clock times are expressed in (None keeps them as stored)
    """
    requests = []
    for reminder in reminders:
        if not reminder.is_active or not reminder.reminder_alert:
            continue
        if reminder.frequency == Frequency.AS_NEEDED:
            continue

        slots = [(1, reminder.reminder_time1)]
        if reminder.frequency == Frequency.TWICE_DAILY:
            slots.append((2, reminder.reminder_time2))

        for slot, time in slots:
            if time is None:
                continue
            trigger = make_trigger(reminder.frequency, time, tz)
            if trigger is None:
                continue
            requests.append(ReminderRequest(
                identifier=request_id(reminder.id, slot),
                title=REMINDER_TITLE,
                body=f"Time to take {reminder.name} ({reminder.dosage}).",
                trigger=trigger,
                user_info={
                    "username": username,
                    "medicationId": reminder.id,
                    "slot": slot,
                    "frequency": reminder.frequency.value,
                },
            ))

    logger.debug(f"Planned {len(requests)} reminders for {username}")
    return requests
