#!/usr/bin/env python3
"""
Hank TUI Client - Chat Log (chatlog.py)
Ordered, role-tagged conversation messages with deduplication of polled
server messages and trimming for persistence
"""

import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from uilib import ViewportScroller

TIME_FORMAT = "%H:%M:%S"
UNKNOWN_TIME = "??:??:??"


class Role(Enum):
    """Message author enumeration"""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    ERROR = "error"

    @classmethod
    def from_wire(cls, value: str) -> "Role":
        """Map a server role string onto a Role; unknown roles display as system"""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.SYSTEM


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


def format_timestamp(timestamp_ms: Optional[int] = None) -> str:
    """Local HH:MM:SS for an epoch-millisecond timestamp (now if omitted)"""
    if timestamp_ms is None:
        return datetime.now().strftime(TIME_FORMAT)
    try:
        return datetime.fromtimestamp(timestamp_ms / 1000).strftime(TIME_FORMAT)
    except (OverflowError, OSError, ValueError):
        return UNKNOWN_TIME


@dataclass(frozen=True)
class Message:
    """Individual conversation message; immutable once created"""
    role: Role
    content: str
    created_at: str
    created_at_ms: Optional[int] = None

    @classmethod
    def create(cls, role: Role, content: str, created_at_ms: Optional[int] = None) -> "Message":
        """New message stamped with the current time unless a timestamp is given"""
        if created_at_ms is None:
            created_at_ms = now_ms()
        return cls(role, content, format_timestamp(created_at_ms), created_at_ms)

    @classmethod
    def banner(cls, content: str) -> "Message":
        """Local display-only system line; carries no timestamp for dedup"""
        return cls(Role.SYSTEM, content, format_timestamp())

    @classmethod
    def from_server(cls, role: str, content: str, timestamp_ms: int) -> "Message":
        return cls(Role.from_wire(role), content, format_timestamp(timestamp_ms), timestamp_ms)

    @property
    def dedup_key(self) -> Optional[Tuple[Role, int]]:
        if self.created_at_ms is None:
            return None
        return self.role, self.created_at_ms

    def to_dict(self) -> Dict[str, Any]:
        """Convert message to dictionary for storage"""
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.created_at,
            "timestamp_ms": self.created_at_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """Create message from dictionary data"""
        if not isinstance(data, dict):
            raise ValueError(f"Message entry is not an object: {data!r}")
        timestamp_ms = data.get("timestamp_ms")
        if timestamp_ms is not None:
            timestamp_ms = int(timestamp_ms)
        created_at = data.get("timestamp") or format_timestamp(timestamp_ms)
        return cls(Role.from_wire(data["role"]), str(data["content"]), str(created_at), timestamp_ms)


class ChatLog:
    """
    Ordered sequence of messages shown in the chat pane.

    Messages are never reordered. Server-sourced messages are deduplicated on
    (role, created_at_ms); local appends are unconditional. `revision` grows
    with every mutation so callers can tell whether the log changed.
    """

    def __init__(self, messages: Optional[Iterable[Message]] = None,
                 scroller: Optional[ViewportScroller] = None, debug_logger=None):
        self.scroller = scroller
        self.debug_logger = debug_logger
        self.messages: List[Message] = []
        self._seen: Set[Tuple[Role, int]] = set()
        self.revision = 0
        for message in messages or []:
            self._store(message)

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.messages)

    def snapshot(self) -> Tuple[Message, ...]:
        return tuple(self.messages)

    def _log_debug(self, message: str):
        if self.debug_logger:
            self.debug_logger.debug(message, "CHATLOG")

    def _store(self, message: Message) -> None:
        self.messages.append(message)
        key = message.dedup_key
        if key is not None:
            self._seen.add(key)
        self.revision += 1

    # =========================================================================
    # MUTATION
    # =========================================================================

    def append(self, message: Message) -> None:
        """Append unconditionally; follows the newest line when auto-scroll is on"""
        self._store(message)
        if self.scroller is not None and self.scroller.auto_scroll:
            self.scroller.scroll_to_bottom()

    def replace(self, messages: Iterable[Message]) -> None:
        """Swap the whole log, used when history is restored"""
        self.messages = []
        self._seen = set()
        for message in messages:
            self._store(message)

    def ingest_remote(self, candidates: Iterable[Message], high_watermark: int) -> Tuple[int, List[Message]]:
        """
        Fold polled server messages into the log.

        Candidates at or below the watermark are skipped, as are candidates
        whose (role, created_at_ms) already appears in the log. Returns the
        highest timestamp seen and the messages actually appended. Feeding
        the same batch twice appends nothing the second time.
        """
        watermark = high_watermark
        appended = []

        for candidate in candidates:
            if candidate.created_at_ms is None or candidate.created_at_ms <= high_watermark:
                continue
            watermark = max(watermark, candidate.created_at_ms)
            if candidate.dedup_key in self._seen:
                continue
            self.append(candidate)
            appended.append(candidate)

        if appended:
            self._log_debug(f"Ingested {len(appended)} server messages, watermark {watermark}")
        return watermark, appended

    def clear(self) -> None:
        self.messages = []
        self._seen = set()
        self.revision += 1

    # =========================================================================
    # QUERIES
    # =========================================================================

    def trim_for_persistence(self, limit: int) -> List[Message]:
        """Newest `limit` messages in original order; the log is untouched"""
        if limit <= 0:
            return []
        return list(self.messages[-limit:])

    def latest_timestamp(self) -> int:
        """Highest created_at_ms in the log, 0 when nothing is timestamped"""
        return max((m.created_at_ms for m in self.messages if m.created_at_ms is not None), default=0)
