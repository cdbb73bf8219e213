"""
Reminder agent wiring: catch-up on start, feed push and mark-all-read.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from care_models import Medicine, Notification, Schedule
from notification_client import ApiError
from reminder_agent import ReminderAgent
from reminder_journal import FileStorage, LocalReminderJournal, MemoryStorage

NOW = datetime(2024, 6, 1, 9, 30, tzinfo=timezone(timedelta(hours=-4)))


class FakeApi:
    def __init__(self):
        self.schedules = [
            Schedule(id=7, user_id=1, title="Morning walk", time="09:00"),
            Schedule(id=8, user_id=1, title="Done already", time="08:00", completed=True),
            Schedule(id=9, user_id=1, title="Lunch", time="12:00"),
        ]
        self.medicines = [Medicine(id=3, user_id=1, name="Aspirin", dosage="81mg", time="09:30")]
        self.notifications = [
            Notification(id=1, user_id=1, title="Welcome", message="Hi", created_at=NOW - timedelta(days=1))
        ]
        self.down = False

    async def list_schedules(self, user_id):
        if self.down:
            raise ApiError("down")
        return self.schedules

    async def list_medicines(self, user_id):
        if self.down:
            raise ApiError("down")
        return self.medicines

    async def list_notifications(self, user_id):
        if self.down:
            raise ApiError("down")
        return [n.model_copy() for n in self.notifications]

    async def mark_notification_read(self, notification_id):
        pass

    async def mark_all_notifications_read(self, user_id):
        for n in self.notifications:
            n.read = True
        return True


def test_start_catches_up_and_pushes_feed():
    api = FakeApi()
    journal = LocalReminderJournal(MemoryStorage())
    agent = ReminderAgent(api, journal, 1, clock=lambda: NOW)

    async def go():
        await agent.start()
        try:
            assert agent.scheduler.get_job("due_check:1") is not None
        finally:
            await agent.stop()

    asyncio.run(go())

    entries = journal.entries_for(1)
    assert sorted((e.type, e.source_id) for e in entries) == [("medicine", 3), ("schedule", 7)]
    feed = agent.latest_feed
    assert feed.unread_count == 3
    assert str(feed.items[-1].key) == "server:1"


def test_due_check_uses_last_known_items_when_api_is_down():
    api = FakeApi()
    journal = LocalReminderJournal(MemoryStorage())
    clock_now = {"value": NOW}
    agent = ReminderAgent(api, journal, 1, clock=lambda: clock_now["value"])

    asyncio.run(agent.run_due_check())
    api.down = True
    clock_now["value"] = NOW.replace(hour=12, minute=0)
    created = asyncio.run(agent.run_due_check())
    assert [e.source_id for e in created] == [9]


def test_mark_all_read_through_agent():
    api = FakeApi()
    journal = LocalReminderJournal(MemoryStorage())
    agent = ReminderAgent(api, journal, 1, clock=lambda: NOW)

    async def go():
        await agent.start()
        try:
            return await agent.mark_all_read()
        finally:
            await agent.stop()

    result = asyncio.run(go())
    assert result.ok
    assert agent.latest_feed.unread_count == 0


def test_file_backed_journal_gets_a_watcher(tmp_path):
    journal = LocalReminderJournal(FileStorage(tmp_path))
    agent = ReminderAgent(FakeApi(), journal, 1, clock=lambda: NOW)
    assert agent.watcher is not None
    assert agent.watcher.path == journal.path
