"""
Per-device reminder agent.

Runs the due-check once on start (catching up on reminders already due
today) and then every REMINDER_INTERVAL_SECONDS, keeps the local journal in
the profile directory, and pushes the merged notification feed to listeners
whenever either source changes.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app_config import (
    API_TIMEOUT_SECONDS,
    LOG_FORMAT,
    REMINDER_INTERVAL_SECONDS,
    WELLNESS_API_TOKEN,
    WELLNESS_API_URL,
    WELLNESS_PROFILE_DIR,
    WELLNESS_USER_ID,
)
from care_models import LocalReminderEntry, MarkAllReadResult, Medicine, NotificationFeed, Schedule
from change_signal import ChangeSignal, JournalFileWatcher
from notification_client import ApiError, WellnessApiClient
from notification_feed import NotificationReconciler
from reminder_engine import ReminderTriggerEngine, local_now
from reminder_journal import FileStorage, LocalReminderJournal

logger = logging.getLogger(__name__)


class ReminderAgent:
    def __init__(
        self,
        client: WellnessApiClient,
        journal: LocalReminderJournal,
        user_id: int,
        interval_seconds: int = 60,
        watcher_poll_seconds: float = 2.0,
        clock: Callable[[], datetime] = local_now
    ):
        self.client = client
        self.journal = journal
        self.user_id = user_id
        self.interval_seconds = interval_seconds
        self.signal = ChangeSignal()

        self.watcher: Optional[JournalFileWatcher] = None
        if journal.path is not None:
            self.watcher = JournalFileWatcher(journal.path, self.signal, poll_seconds=watcher_poll_seconds)
            # Our own writes must not come back as "another process changed it".
            self.signal.subscribe(self.watcher.acknowledge)

        self.engine = ReminderTriggerEngine(journal, self.signal, clock=clock)
        self.reconciler = NotificationReconciler(client, journal, self.signal)
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.latest_feed: Optional[NotificationFeed] = None
        self._schedules: List[Schedule] = []
        self._medicines: List[Medicine] = []
        self._unsubscribe_feed = None

    async def _load_items(self):
        try:
            self._schedules = await self.client.list_schedules(self.user_id)
            self._medicines = await self.client.list_medicines(self.user_id)
        except ApiError as e:
            logger.error(f"Could not refresh schedules/medicines for user {self.user_id}, using last known: {e}")

    async def run_due_check(self, catch_up: bool = False) -> List[LocalReminderEntry]:
        await self._load_items()
        active_schedules = [s for s in self._schedules if not s.completed]
        return await self.engine.check(self.user_id, active_schedules, self._medicines, catch_up=catch_up)

    def _on_feed(self, feed: NotificationFeed):
        self.latest_feed = feed
        suffix = " (stale)" if feed.stale else ""
        logger.info(f"User {self.user_id}: {feed.unread_count} unread of {len(feed.items)} notifications{suffix}")

    async def start(self):
        self._unsubscribe_feed = self.reconciler.subscribe(self.user_id, self._on_feed)
        await self.run_due_check(catch_up=True)
        await self.reconciler.refresh()

        # Built here so it binds to the running event loop.
        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.run_due_check,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=f"due_check:{self.user_id}",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()
        if self.watcher is not None:
            self.watcher.start()
        logger.info(f"Reminder agent started for user {self.user_id} (every {self.interval_seconds}s)")

    async def stop(self):
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        if self.watcher is not None:
            await self.watcher.stop()
        if self._unsubscribe_feed is not None:
            self._unsubscribe_feed()
            self._unsubscribe_feed = None
        self.reconciler.close()
        logger.info(f"Reminder agent stopped for user {self.user_id}")

    async def mark_all_read(self) -> MarkAllReadResult:
        return await self.reconciler.mark_all_read(self.user_id)


async def run_agent(user_id: int):
    journal = LocalReminderJournal(FileStorage(WELLNESS_PROFILE_DIR))
    async with WellnessApiClient(WELLNESS_API_URL, WELLNESS_API_TOKEN, timeout=API_TIMEOUT_SECONDS) as client:
        agent = ReminderAgent(client, journal, user_id, interval_seconds=REMINDER_INTERVAL_SECONDS)
        await agent.start()
        try:
            await asyncio.Event().wait()
        finally:
            await agent.stop()


def main():
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    if not WELLNESS_USER_ID.strip().isdigit():
        logger.error("WELLNESS_USER_ID must be set to the numeric id of the user to remind")
        raise SystemExit(2)
    try:
        asyncio.run(run_agent(int(WELLNESS_USER_ID)))
    except KeyboardInterrupt:
        logger.info("Reminder agent interrupted")


if __name__ == "__main__":
    main()
