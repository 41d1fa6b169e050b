"""
Local user cache for ReplicaChat.

A single JSON file mapping user id to ``{id, email, createdAt}``. It mirrors
the upstream user directory and answers on its own when the upstream is
slow or inconsistent.

The file is always read and written wholesale. Writers hold a lock for the
whole read-modify-write and replace the file atomically, so two requests
resolving different emails at the same time never lose an update.

All methods are synchronous; async callers run them through
``asyncio.to_thread``.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

from replicachat.constants import USER_CACHE_FILE
from replicachat.core.models import UserRecord
from replicachat.upstream.errors import PersistenceError
from replicachat.utils.logging import get_logger

logger = get_logger("user_cache")

# One lock per resolved path, shared by every UserCache in the process.
_locks: dict[Path, threading.Lock] = {}
_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    with _locks_guard:
        return _locks.setdefault(path, threading.Lock())


class UserCache:
    """Durable email → user mapping backed by a JSON file."""

    def __init__(self, path: Path | None = None):
        self.path = Path(path or USER_CACHE_FILE).expanduser()
        self._lock = _lock_for(self.path.resolve())

    def get(self, email: str) -> UserRecord | None:
        """Find a user by email, ignoring case."""
        wanted = email.strip().lower()
        for entry in self._read().values():
            if str(entry.get("email", "")).lower() == wanted:
                return UserRecord.from_dict(entry)
        return None

    def get_by_id(self, user_id: str) -> UserRecord | None:
        entry = self._read().get(user_id)
        return UserRecord.from_dict(entry) if entry else None

    def all(self) -> list[UserRecord]:
        return [UserRecord.from_dict(e) for e in self._read().values()]

    def put(self, user: UserRecord) -> bool:
        """
        Upsert ``user`` keyed by id. Returns False if the write failed.

        Email is the cache's unique key, so any other entry carrying the
        same email is replaced (this is how an upstream id supersedes a
        locally derived one).
        """
        with self._lock:
            users = self._read()
            email = user.email.lower()
            stale = [
                uid for uid, entry in users.items()
                if uid != user.id and str(entry.get("email", "")).lower() == email
            ]
            for uid in stale:
                del users[uid]
            users[user.id] = user.to_dict()
            try:
                self._write(users)
            except PersistenceError as e:
                logger.error("user_cache_write_failed", user_id=user.id, error=str(e))
                return False

        if stale:
            logger.info("user_cache_entry_replaced", user_id=user.id, replaced=stale)
        return True

    def clear(self) -> None:
        """Wipe every entry. Raises PersistenceError if the file can't be written."""
        with self._lock:
            self._write({})
        logger.info("user_cache_cleared", path=str(self.path))

    def __len__(self) -> int:
        return len(self._read())

    # --- File I/O ---

    def _read(self) -> dict[str, dict[str, Any]]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            logger.warning("user_cache_read_failed", path=str(self.path), error=str(e))
            return {}

        try:
            data = json.loads(raw) if raw.strip() else {}
        except ValueError as e:
            logger.warning("user_cache_corrupt", path=str(self.path), error=str(e))
            return {}

        if not isinstance(data, dict):
            logger.warning("user_cache_corrupt", path=str(self.path), error="not an object")
            return {}
        return {
            uid: entry for uid, entry in data.items()
            if isinstance(entry, dict) and "id" in entry and "email" in entry
        }

    def _write(self, users: dict[str, dict[str, Any]]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(users, f, indent=2)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(f"Could not write user cache {self.path}: {e}") from e
