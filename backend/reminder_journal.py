"""
Device-local reminder journal.

Entries live under a single well-known storage key as a JSON array, shared by
every agent process that points at the same profile directory. Reads never
raise: a missing, unreadable or malformed journal is an empty journal.
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from care_models import LocalReminderEntry

logger = logging.getLogger(__name__)

JOURNAL_KEY = "wellnessbuddy_notifications"


class MemoryStorage:
    """Key/value storage held in process memory."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def path_for(self, key: str) -> Optional[Path]:
        return None


class FileStorage:
    """Key/value storage with one JSON file per key inside a profile directory."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(key)
        fd, tmp_name = tempfile.mkstemp(dir=str(self.directory), prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(value)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise


class LocalReminderJournal:
    def __init__(self, storage, key: str = JOURNAL_KEY):
        self.storage = storage
        self.key = key

    @property
    def path(self) -> Optional[Path]:
        return self.storage.path_for(self.key)

    def _read_raw(self) -> List[Any]:
        """The journal's JSON items as stored, including ones this version can't parse."""
        try:
            raw = self.storage.get_item(self.key)
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Could not read reminder journal: {e}")
            return []
        if not raw:
            return []

        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.error(f"Reminder journal is not valid JSON, treating as empty: {e}")
            return []
        if not isinstance(data, list):
            logger.error("Reminder journal is not a JSON array, treating as empty")
            return []
        return data

    @staticmethod
    def _parse(item: Any) -> Optional[LocalReminderEntry]:
        try:
            return LocalReminderEntry.model_validate(item)
        except ValidationError as e:
            logger.warning(f"Skipping malformed reminder journal entry: {e.errors()[:1]}")
            return None

    def read_all(self) -> List[LocalReminderEntry]:
        """All entries of every user, in journal order."""
        entries = []
        for item in self._read_raw():
            entry = self._parse(item)
            if entry is not None:
                entries.append(entry)
        return entries

    def entries_for(self, user_id: int) -> List[LocalReminderEntry]:
        return [e for e in self.read_all() if e.user_id == user_id]

    def _write(self, items: List[Any]) -> None:
        self.storage.set_item(self.key, json.dumps(items))

    def append(self, new_entries: List[LocalReminderEntry]) -> None:
        """Append in one write. Storage errors propagate to the caller."""
        if not new_entries:
            return
        items = self._read_raw()
        items.extend(e.model_dump(mode="json") for e in new_entries)
        self._write(items)

    def _flip_read(self, user_id: int, entry_id: Optional[int] = None) -> Tuple[int, bool]:
        # Unparseable items are written back untouched.
        items = self._read_raw()
        changed = 0
        found = False
        for item in items:
            entry = self._parse(item)
            if entry is None or entry.user_id != user_id:
                continue
            if entry_id is not None and entry.id != entry_id:
                continue
            found = True
            if not entry.read:
                item["read"] = True
                changed += 1
        if entry_id is None or found:
            self._write(items)
        return changed, found

    def mark_all_read(self, user_id: int) -> int:
        changed, _ = self._flip_read(user_id)
        return changed

    def mark_read(self, user_id: int, entry_id: int) -> bool:
        _, found = self._flip_read(user_id, entry_id)
        return found
