"""
Change signal and journal file watcher.
"""

import asyncio
import os

from change_signal import ChangeSignal, JournalFileWatcher


def test_publish_reaches_sync_and_async_listeners():
    signal = ChangeSignal()
    calls = []

    async def async_listener():
        calls.append("async")

    signal.subscribe(lambda: calls.append("sync"))
    signal.subscribe(async_listener)
    asyncio.run(signal.publish())
    assert calls == ["sync", "async"]


def test_failing_listener_does_not_stop_others():
    signal = ChangeSignal()
    calls = []

    def broken():
        raise RuntimeError("nope")

    signal.subscribe(broken)
    signal.subscribe(lambda: calls.append(1))
    asyncio.run(signal.publish())
    assert calls == [1]


def test_unsubscribe_during_publish():
    signal = ChangeSignal()
    calls = []
    holder = {}

    def once():
        calls.append(1)
        holder["unsubscribe"]()

    holder["unsubscribe"] = signal.subscribe(once)
    asyncio.run(signal.publish())
    asyncio.run(signal.publish())
    assert calls == [1]
    assert signal.listener_count == 0


def test_watcher_publishes_on_external_write(tmp_path):
    path = tmp_path / "journal.json"
    signal = ChangeSignal()
    calls = []
    signal.subscribe(lambda: calls.append(1))
    watcher = JournalFileWatcher(path, signal)

    assert asyncio.run(watcher.poll_once()) is False

    path.write_text("[]", encoding="utf-8")
    assert asyncio.run(watcher.poll_once()) is True
    assert calls == [1]
    assert asyncio.run(watcher.poll_once()) is False


def test_watcher_ignores_acknowledged_write(tmp_path):
    path = tmp_path / "journal.json"
    path.write_text("[]", encoding="utf-8")
    watcher = JournalFileWatcher(path, ChangeSignal())

    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))
    watcher.acknowledge()
    assert asyncio.run(watcher.poll_once()) is False


def test_watcher_start_and_stop(tmp_path):
    watcher = JournalFileWatcher(tmp_path / "journal.json", ChangeSignal(), poll_seconds=0.01)

    async def go():
        watcher.start()
        await asyncio.sleep(0.03)
        await watcher.stop()

    asyncio.run(go())
    assert watcher._task is None
