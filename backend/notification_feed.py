"""
Notification reconciliation.

Durable (server) notifications and local reminder journal entries are merged
into a single per-user feed: filtered to the user, deduplicated on a
source-tagged key, newest first, with an unread count.
"""
import inspect
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Union

from care_models import (
    FeedItem,
    LocalReminderEntry,
    MarkAllReadResult,
    Notification,
    NotificationFeed,
    NotificationKey,
)
from change_signal import ChangeSignal
from notification_client import ApiError
from reminder_journal import LocalReminderJournal

logger = logging.getLogger(__name__)

FeedListener = Callable[[NotificationFeed], Union[None, Awaitable[None]]]


def _sort_key(item: FeedItem) -> float:
    created = item.created_at
    if created.tzinfo is None:
        created = created.astimezone()
    return created.timestamp()


def merge_feed_items(user_id: int, *sources: Iterable[FeedItem]) -> List[FeedItem]:
    """
    Concatenate sources in order, keep only user_id's items, dedupe on key
    (a later duplicate replaces the earlier one) and sort newest first.
    Equal timestamps keep their concatenation order.
    """
    by_key: Dict[NotificationKey, FeedItem] = {}
    for source in sources:
        for item in source:
            if item.user_id != user_id:
                continue
            by_key[item.key] = item
    return sorted(by_key.values(), key=_sort_key, reverse=True)


def build_feed(
    user_id: int,
    server_notifications: Iterable[Notification],
    local_entries: Iterable[LocalReminderEntry],
    stale: bool = False,
    errors: Optional[List[str]] = None
) -> NotificationFeed:
    items = merge_feed_items(
        user_id,
        (FeedItem.from_server(n) for n in server_notifications),
        (FeedItem.from_local(e) for e in local_entries),
    )
    return NotificationFeed(
        user_id=user_id,
        items=items,
        unread_count=sum(1 for i in items if not i.read),
        stale=stale,
        errors=list(errors or [])
    )


class NotificationReconciler:
    def __init__(self, durable_store, journal: LocalReminderJournal, signal: ChangeSignal):
        """
        durable_store needs list_notifications(user_id),
        mark_notification_read(id) and mark_all_notifications_read(user_id)
        coroutines; WellnessApiClient provides them.
        """
        self.durable_store = durable_store
        self.journal = journal
        self.signal = signal
        self._last_durable: Dict[int, List[Notification]] = {}
        self._listeners: Dict[int, List[FeedListener]] = {}
        self._signal_unsubscribe = signal.subscribe(self.refresh)

    async def get_feed(self, user_id: int) -> NotificationFeed:
        errors = []
        stale = False
        try:
            durable = await self.durable_store.list_notifications(user_id)
            self._last_durable[user_id] = durable
        except ApiError as e:
            logger.error(f"Could not fetch durable notifications for user {user_id}: {e}")
            durable = self._last_durable.get(user_id, [])
            stale = True
            errors.append(str(e))

        local_entries = self.journal.entries_for(user_id)
        return build_feed(user_id, durable, local_entries, stale=stale, errors=errors)

    def subscribe(self, user_id: int, listener: FeedListener) -> Callable[[], None]:
        self._listeners.setdefault(user_id, []).append(listener)

        def unsubscribe():
            listeners = self._listeners.get(user_id, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(user_id, None)

        return unsubscribe

    async def refresh(self) -> None:
        """Recompute the feed for every subscribed user and push it out."""
        for user_id, listeners in list(self._listeners.items()):
            feed = await self.get_feed(user_id)
            for listener in list(listeners):
                try:
                    result = listener(feed)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error(f"Feed listener for user {user_id} failed: {e}")

    async def mark_read(self, user_id: int, key: NotificationKey) -> bool:
        if key.source == "server":
            try:
                await self.durable_store.mark_notification_read(key.id)
            except ApiError as e:
                logger.error(f"Could not mark notification {key} read: {e}")
                return False
        else:
            try:
                if not self.journal.mark_read(user_id, key.id):
                    return False
            except OSError as e:
                logger.error(f"Could not mark reminder {key} read: {e}")
                return False
        await self.signal.publish()
        return True

    async def mark_all_read(self, user_id: int) -> MarkAllReadResult:
        """
        Flip read on both stores. The durable update goes first; the local
        rewrite runs whatever its outcome. Each side is reported separately
        and nothing is retried.
        """
        server_ok, server_error = True, None
        try:
            await self.durable_store.mark_all_notifications_read(user_id)
        except ApiError as e:
            server_ok, server_error = False, str(e)
            logger.error(f"Durable mark-all-read failed for user {user_id}: {e}")

        local_ok, local_error, local_updated = True, None, 0
        try:
            local_updated = self.journal.mark_all_read(user_id)
        except OSError as e:
            local_ok, local_error = False, str(e)
            logger.error(f"Local mark-all-read failed for user {user_id}: {e}")

        await self.signal.publish()
        return MarkAllReadResult(
            user_id=user_id,
            server_ok=server_ok,
            local_ok=local_ok,
            server_error=server_error,
            local_error=local_error,
            local_updated=local_updated
        )

    def close(self):
        self._signal_unsubscribe()
