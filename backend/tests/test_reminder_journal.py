"""
Local reminder journal storage behaviour.
"""

import json
from datetime import datetime, timezone

from care_models import LocalReminderEntry
from reminder_journal import JOURNAL_KEY, FileStorage, LocalReminderJournal, MemoryStorage


def entry(id, user_id=1, read=False, type="schedule"):
    return LocalReminderEntry(
        id=id, user_id=user_id, source_id=id, title="Task Reminder",
        message=f"It's time for: item {id}", type=type, read=read,
        created_at=datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)
    )


# ==================== READING ====================

def test_missing_journal_is_empty():
    assert LocalReminderJournal(MemoryStorage()).read_all() == []


def test_corrupt_journal_is_empty():
    storage = MemoryStorage({JOURNAL_KEY: "{not json"})
    assert LocalReminderJournal(storage).read_all() == []


def test_non_list_journal_is_empty():
    storage = MemoryStorage({JOURNAL_KEY: json.dumps({"id": 1})})
    assert LocalReminderJournal(storage).read_all() == []


def test_malformed_entries_are_skipped():
    good = entry(1).model_dump(mode="json")
    storage = MemoryStorage({JOURNAL_KEY: json.dumps([good, {"id": "x"}])})
    entries = LocalReminderJournal(storage).read_all()
    assert [e.id for e in entries] == [1]


def test_entries_for_filters_by_user():
    journal = LocalReminderJournal(MemoryStorage())
    journal.append([entry(1, user_id=1), entry(2, user_id=2), entry(3, user_id=1)])
    assert [e.id for e in journal.entries_for(1)] == [1, 3]
    assert [e.id for e in journal.entries_for(2)] == [2]


# ==================== WRITING ====================

def test_append_keeps_order():
    journal = LocalReminderJournal(MemoryStorage())
    journal.append([entry(1)])
    journal.append([entry(2), entry(3)])
    assert [e.id for e in journal.read_all()] == [1, 2, 3]


def test_mark_all_read_only_touches_one_user():
    journal = LocalReminderJournal(MemoryStorage())
    journal.append([entry(1, user_id=1), entry(2, user_id=2), entry(3, user_id=1, read=True)])

    assert journal.mark_all_read(1) == 1
    by_id = {e.id: e for e in journal.read_all()}
    assert by_id[1].read is True
    assert by_id[2].read is False
    assert by_id[3].read is True


def test_mark_read_single_entry():
    journal = LocalReminderJournal(MemoryStorage())
    journal.append([entry(1), entry(2)])
    assert journal.mark_read(1, 2) is True
    assert journal.mark_read(1, 99) is False
    assert journal.mark_read(2, 1) is False
    assert [e.read for e in journal.read_all()] == [False, True]


def test_memory_storage_has_no_path():
    assert LocalReminderJournal(MemoryStorage()).path is None


# ==================== FILE STORAGE ====================

def test_file_storage_round_trip(tmp_path):
    journal = LocalReminderJournal(FileStorage(tmp_path / "profile"))
    assert journal.read_all() == []

    journal.append([entry(1), entry(2, user_id=2)])
    assert journal.path == tmp_path / "profile" / f"{JOURNAL_KEY}.json"
    assert journal.path.exists()

    reopened = LocalReminderJournal(FileStorage(tmp_path / "profile"))
    assert [e.id for e in reopened.read_all()] == [1, 2]
    # No temp files left behind
    assert [p.name for p in (tmp_path / "profile").iterdir()] == [f"{JOURNAL_KEY}.json"]


def test_file_storage_corrupt_file(tmp_path):
    storage = FileStorage(tmp_path)
    storage.path_for(JOURNAL_KEY).write_text("[[[", encoding="utf-8")
    assert LocalReminderJournal(storage).read_all() == []


def test_file_storage_undecodable_bytes(tmp_path):
    storage = FileStorage(tmp_path)
    storage.path_for(JOURNAL_KEY).write_bytes(b"[\xff\xfe]")
    journal = LocalReminderJournal(storage)
    assert journal.read_all() == []
    assert journal.entries_for(1) == []


# ==================== FOREIGN ENTRIES ====================

FOREIGN = {"id": 2, "userId": 1, "type": "appointment", "createdAt": "2024-06-01T09:00:00Z", "read": False}


def test_unparseable_entry_survives_append_and_mark_all_read():
    storage = MemoryStorage({JOURNAL_KEY: json.dumps([entry(1).model_dump(mode="json"), FOREIGN])})
    journal = LocalReminderJournal(storage)

    journal.append([entry(3)])
    assert journal.mark_all_read(1) == 2

    stored = json.loads(storage.get_item(JOURNAL_KEY))
    assert [item["id"] for item in stored] == [1, 2, 3]
    assert stored[1] == FOREIGN
    assert [e.read for e in journal.read_all()] == [True, True]


def test_unparseable_entry_survives_mark_read():
    storage = MemoryStorage({JOURNAL_KEY: json.dumps([entry(1).model_dump(mode="json"), FOREIGN])})
    journal = LocalReminderJournal(storage)

    assert journal.mark_read(1, 1) is True
    stored = json.loads(storage.get_item(JOURNAL_KEY))
    assert stored == [entry(1, read=True).model_dump(mode="json"), FOREIGN]
