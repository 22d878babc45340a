#!/usr/bin/env python3
"""
Hank TUI Client - History Persistence (history.py)
JSON storage of chat history: the rolling history.json plus optional named
sessions under sessions/<name>.json
"""

import json
import os
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from chatlog import Message

HISTORY_KEY = "history"
SESSIONS_DIR = "sessions"
SESSION_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class PersistenceError(Exception):
    """Reading, writing or deleting a history file failed"""


@dataclass
class HistoryRecord:
    """Contents of one history file"""
    server_url: str
    saved_at: str
    messages: List[Message] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "server_url": self.server_url,
            "saved_at": self.saved_at,
            "messages": [message.to_dict() for message in self.messages],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryRecord":
        if not isinstance(data, dict) or not isinstance(data.get("messages", []), list):
            raise ValueError("history file is not a JSON object with a message list")
        return cls(
            server_url=str(data.get("server_url", "")),
            saved_at=str(data.get("saved_at", "")),
            messages=[Message.from_dict(item) for item in data.get("messages", [])]
        )


def session_key(name: str) -> str:
    """Storage key for a named session"""
    return f"{SESSIONS_DIR}/{name}"


class HistoryStore:
    """
    File-backed message history.

    Each save overwrites the whole file: the previous file is copied to a
    .bak sibling and the new content is written to a .tmp file and moved
    into place. Loading falls back to the .bak copy when the main file is
    unreadable.
    """

    def __init__(self, directory: Path, debug_logger=None):
        self.directory = Path(directory)
        self.debug_logger = debug_logger

    def _log_debug(self, message: str):
        if self.debug_logger:
            self.debug_logger.debug(message, "HISTORY")

    def _log_error(self, message: str):
        if self.debug_logger:
            self.debug_logger.error(message, "HISTORY")

    def path_for(self, key: str) -> Path:
        """File path for a storage key ("history" or "sessions/<name>")"""
        if key == HISTORY_KEY:
            return self.directory / "history.json"
        prefix = f"{SESSIONS_DIR}/"
        if key.startswith(prefix):
            name = key[len(prefix):]
            if SESSION_NAME_PATTERN.match(name):
                return self.directory / SESSIONS_DIR / f"{name}.json"
        raise PersistenceError(f"Invalid history key: {key!r}")

    # =========================================================================
    # LOADING
    # =========================================================================

    def load(self, key: str) -> Optional[List[Message]]:
        """Messages stored under key, or None when there is nothing usable"""
        record = self.load_record(key)
        if record is None:
            return None
        return record.messages

    def load_record(self, key: str) -> Optional[HistoryRecord]:
        """Full history record with backup recovery; None if absent or unreadable"""
        filename = self.path_for(key)
        if not filename.exists():
            self._log_debug(f"No history file at {filename}")
            return None

        try:
            record = self._read(filename)
        except (OSError, ValueError, KeyError, TypeError) as e:
            self._log_error(f"History file unreadable, trying backup: {e}")
            backup = self._backup_path(filename)
            if not backup.exists():
                return None
            try:
                record = self._read(backup)
            except (OSError, ValueError, KeyError, TypeError) as backup_error:
                self._log_error(f"Backup unreadable too: {backup_error}")
                return None
            self._log_debug("Recovered history from backup file")

        self._log_debug(f"Loaded {len(record.messages)} messages from {filename}")
        return record

    def _read(self, filename: Path) -> HistoryRecord:
        with open(filename, "r", encoding="utf-8") as f:
            return HistoryRecord.from_dict(json.load(f))

    # =========================================================================
    # SAVING AND DELETING
    # =========================================================================

    def save(self, key: str, messages: List[Message], server_url: str = "") -> None:
        """Overwrite the file for key with messages"""
        filename = self.path_for(key)
        record = HistoryRecord(
            server_url=server_url,
            saved_at=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            messages=list(messages)
        )
        temp_filename = filename.with_name(filename.name + ".tmp")

        try:
            filename.parent.mkdir(parents=True, exist_ok=True)

            if filename.exists():
                shutil.copy2(filename, self._backup_path(filename))

            with open(temp_filename, "w", encoding="utf-8") as f:
                json.dump(record.to_dict(), f, indent=2, ensure_ascii=False)
            shutil.move(str(temp_filename), str(filename))

        except OSError as e:
            self._log_error(f"Failed to save history to {filename}: {e}")
            if temp_filename.exists():
                try:
                    os.remove(temp_filename)
                except OSError:
                    pass
            raise PersistenceError(str(e)) from e

        self._log_debug(f"Saved {len(record.messages)} messages to {filename}")

    def delete(self, key: str) -> bool:
        """Remove the file for key and its backup; False if there was nothing to remove"""
        filename = self.path_for(key)
        removed = False
        try:
            for path in (filename, self._backup_path(filename)):
                if path.exists():
                    path.unlink()
                    removed = True
        except OSError as e:
            self._log_error(f"Failed to delete {filename}: {e}")
            raise PersistenceError(str(e)) from e

        self._log_debug(f"Deleted history {filename}" if removed else f"No history to delete at {filename}")
        return removed

    def list_sessions(self) -> List[str]:
        """Names of the saved named sessions"""
        sessions_dir = self.directory / SESSIONS_DIR
        if not sessions_dir.is_dir():
            return []
        return sorted(path.stem for path in sessions_dir.glob("*.json"))

    @staticmethod
    def _backup_path(filename: Path) -> Path:
        return filename.with_name(filename.name + ".bak")
