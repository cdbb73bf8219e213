import logging
import re
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Set, Tuple

from care_models import LocalReminderEntry, Medicine, Schedule
from change_signal import ChangeSignal
from reminder_journal import LocalReminderJournal

logger = logging.getLogger(__name__)

HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def normalize_hhmm(value: Optional[str]) -> str:
    """Normalize time values into HH:MM."""
    if not value:
        return ""
    value = value.strip()
    match = re.match(r"^(\d{1,2}):(\d{2})$", value)
    if not match:
        return value
    hour = int(match.group(1))
    minute = int(match.group(2))
    if hour < 0 or hour > 23 or minute < 0 or minute > 59:
        return value
    return f"{hour:02d}:{minute:02d}"


def is_valid_hhmm(value: Optional[str]) -> bool:
    return bool(value) and HHMM_RE.match(value) is not None


def local_now() -> datetime:
    return datetime.now().astimezone()


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _comparable(dt: datetime, reference: datetime) -> datetime:
    # Naive timestamps are read in the reference's zone (or local time).
    if dt.tzinfo is None and reference.tzinfo is not None:
        return dt.replace(tzinfo=reference.tzinfo)
    if dt.tzinfo is not None and reference.tzinfo is None:
        return dt.astimezone().replace(tzinfo=None)
    return dt


def _is_due(item_time: str, current_hhmm: str, catch_up: bool) -> bool:
    if not is_valid_hhmm(item_time):
        return False
    if item_time == current_hhmm:
        return True
    # Zero-padded HH:MM strings order the same way as the times they name.
    return catch_up and item_time < current_hhmm


def created_today_keys(
    entries: Iterable[LocalReminderEntry],
    user_id: int,
    now: datetime
) -> Set[Tuple[int, str]]:
    midnight = start_of_day(now)
    keys = set()
    for entry in entries:
        if entry.user_id != user_id:
            continue
        if _comparable(entry.created_at, now) >= midnight:
            keys.add((entry.source_id, entry.type))
    return keys


def next_local_id(now: datetime, existing: Iterable[LocalReminderEntry]) -> int:
    candidate = int(now.timestamp() * 1000)
    highest = max((e.id for e in existing), default=0)
    return max(candidate, highest + 1)


def evaluate_due_reminders(
    now: datetime,
    user_id: int,
    schedules: Iterable[Schedule],
    medicines: Iterable[Medicine],
    existing_journal: List[LocalReminderEntry],
    catch_up: bool = False
) -> List[LocalReminderEntry]:
    """
    Work out which reminders should be recorded for user_id at `now`.

    A schedule (while not completed) or medicine is due when its HH:MM time
    equals the current minute, and no journal entry for the same
    (source_id, type) was created since local midnight. With catch_up set,
    earlier times of the current day are due as well. Nothing is written here.
    """
    current_hhmm = now.strftime("%H:%M")
    already = created_today_keys(existing_journal, user_id, now)

    pending = []
    for schedule in schedules:
        if schedule.user_id != user_id or schedule.completed:
            continue
        if not _is_due(schedule.time, current_hhmm, catch_up):
            continue
        key = (schedule.id, "schedule")
        if key in already:
            continue
        already.add(key)
        pending.append({
            "source_id": schedule.id,
            "type": "schedule",
            "title": "Task Reminder",
            "message": f"It's time for: {schedule.title}",
        })

    for medicine in medicines:
        if medicine.user_id != user_id:
            continue
        if not _is_due(medicine.time, current_hhmm, catch_up):
            continue
        key = (medicine.id, "medicine")
        if key in already:
            continue
        already.add(key)
        pending.append({
            "source_id": medicine.id,
            "type": "medicine",
            "title": "Medicine Reminder",
            "message": f"Time for your {medicine.name} ({medicine.dosage})",
        })

    if not pending:
        return []

    base_id = next_local_id(now, existing_journal)
    return [
        LocalReminderEntry(
            id=base_id + index,
            user_id=user_id,
            read=False,
            created_at=now,
            **fields
        )
        for index, fields in enumerate(pending)
    ]


class ReminderTriggerEngine:
    """Records due reminders in the journal and announces the change."""

    def __init__(
        self,
        journal: LocalReminderJournal,
        signal: ChangeSignal,
        clock: Callable[[], datetime] = local_now
    ):
        self.journal = journal
        self.signal = signal
        self.clock = clock

    async def check(
        self,
        user_id: int,
        schedules: Iterable[Schedule],
        medicines: Iterable[Medicine],
        catch_up: bool = False
    ) -> List[LocalReminderEntry]:
        now = self.clock().replace(second=0, microsecond=0)
        existing = self.journal.read_all()
        new_entries = evaluate_due_reminders(
            now, user_id, schedules, medicines, existing, catch_up=catch_up
        )
        if not new_entries:
            return []

        try:
            self.journal.append(new_entries)
        except OSError as e:
            logger.error(f"Failed to record {len(new_entries)} reminder(s) for user {user_id}: {e}")
            return []

        for entry in new_entries:
            logger.info(f"Reminder for user {user_id}: {entry.title} - {entry.message}")
        await self.signal.publish()
        return new_entries
