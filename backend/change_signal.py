"""
Change signalling for notification state.

A signal carries no payload; it only means "reload notification state now".
ChangeSignal is the in-process transport. JournalFileWatcher bridges writes
made by other agent processes that share the same journal file.
"""
import asyncio
import inspect
import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Union

logger = logging.getLogger(__name__)

Listener = Callable[[], Union[None, Awaitable[None]]]


class ChangeSignal:
    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def publish(self) -> None:
        # Snapshot so listeners may unsubscribe while being notified.
        for listener in list(self._listeners):
            try:
                result = listener()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Change listener {listener!r} failed: {e}")


class JournalFileWatcher:
    """Publish on a ChangeSignal whenever the journal file changes on disk."""

    def __init__(self, path: Path, signal: ChangeSignal, poll_seconds: float = 2.0):
        self.path = Path(path)
        self.signal = signal
        self.poll_seconds = poll_seconds
        self._last_mtime: Optional[int] = None
        self._last_mtime = self._read_mtime()
        self._task: Optional[asyncio.Task] = None

    def _read_mtime(self) -> Optional[int]:
        try:
            return self.path.stat().st_mtime_ns
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error(f"Could not stat journal file {self.path}: {e}")
            return self._last_mtime

    def acknowledge(self) -> None:
        """Record the current mtime as seen, e.g. after this process wrote it."""
        self._last_mtime = self._read_mtime()

    async def poll_once(self) -> bool:
        mtime = self._read_mtime()
        if mtime == self._last_mtime:
            return False
        self._last_mtime = mtime
        logger.debug(f"Journal file {self.path} changed on disk")
        await self.signal.publish()
        return True

    async def _run(self):
        while True:
            await asyncio.sleep(self.poll_seconds)
            await self.poll_once()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.ensure_future(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
