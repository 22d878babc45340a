#!/usr/bin/env python3
"""
Hank TUI Client - Session Controller (session.py)
Request lifecycle for one chat session: a single background exchange at a
time, time-gated polling of the server and folding of results into the log
"""

import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from chatapi import ChatClient, ChatError
from chatlog import ChatLog, Message, Role, now_ms
from history import HISTORY_KEY, HistoryStore, PersistenceError
from textbuf import CommandHistory, TextBuffer
from uilib import ViewportScroller

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_HISTORY_LIMIT = 100
DEFAULT_AUTO_SAVE_INTERVAL = 30.0

STATUS_CONNECTED = "Connected"
STATUS_SENDING = "Sending..."
STATUS_ERROR = "Error"
STATUS_DISCONNECTED = "Disconnected"

# =============================================================================
# REQUEST LIFECYCLE
# =============================================================================

class RequestState(Enum):
    """Phase of the current user request"""
    IDLE = "idle"
    SENDING = "sending"
    SETTLED = "settled"


@dataclass(frozen=True)
class Outcome:
    """Single result of a background exchange"""
    ok: bool
    content: str = ""
    reason: str = ""

    @classmethod
    def success(cls, content: str) -> "Outcome":
        return cls(ok=True, content=content)

    @classmethod
    def failure(cls, reason: str) -> "Outcome":
        return cls(ok=False, reason=reason)


class ExchangeTask:
    """
    One background request whose outcome is collected without blocking.

    The worker thread never touches session state; it hands exactly one
    Outcome back through a one-slot queue that the UI thread drains.
    """

    def __init__(self, work: Callable[[], str], debug_logger=None):
        self._work = work
        self._results: "queue.Queue[Outcome]" = queue.Queue(maxsize=1)
        self._outcome: Optional[Outcome] = None
        self.debug_logger = debug_logger
        self.thread = threading.Thread(target=self._run, daemon=True, name="Hank-Exchange")

    def start(self) -> "ExchangeTask":
        self.thread.start()
        return self

    def _run(self):
        try:
            outcome = Outcome.success(self._work())
        except ChatError as e:
            outcome = Outcome.failure(str(e))
        except Exception as e:
            # Any other failure is still reported as this task's outcome
            if self.debug_logger:
                self.debug_logger.error(f"Exchange task crashed: {e}", "SESSION")
            outcome = Outcome.failure(f"Task failed: {e}")
        self._results.put(outcome)

    def done(self) -> bool:
        """Non-blocking completion check"""
        if self._outcome is None:
            try:
                self._outcome = self._results.get_nowait()
            except queue.Empty:
                return False
        return True

    def outcome(self) -> Optional[Outcome]:
        self.done()
        return self._outcome

    def wait(self, timeout: Optional[float] = None) -> Optional[Outcome]:
        """Block up to timeout for the outcome"""
        if self._outcome is None:
            try:
                self._outcome = self._results.get(timeout=timeout)
            except queue.Empty:
                return None
        return self._outcome

# =============================================================================
# SESSION CONTROLLER
# =============================================================================

class SessionController:
    """
    Owns the mutable session state on the UI thread.

    State machine: IDLE -> SENDING -> SETTLED -> IDLE. At most one exchange
    is in flight; polling only runs while idle. Every local User or Assistant
    message also advances the poll watermark, so the server's own copies of
    the exchange are not fetched back.
    """

    def __init__(self, client: ChatClient, log: Optional[ChatLog] = None,
                 buffer: Optional[TextBuffer] = None, scroller: Optional[ViewportScroller] = None,
                 command_history: Optional[CommandHistory] = None,
                 store: Optional[HistoryStore] = None, history_key: str = HISTORY_KEY,
                 history_limit: int = DEFAULT_HISTORY_LIMIT,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 auto_save_interval: float = DEFAULT_AUTO_SAVE_INTERVAL,
                 watermark: Optional[int] = None,
                 clock: Callable[[], float] = time.monotonic, debug_logger=None):
        self.client = client
        self.scroller = scroller or ViewportScroller()
        self.log = log if log is not None else ChatLog(scroller=self.scroller, debug_logger=debug_logger)
        self.buffer = buffer if buffer is not None else TextBuffer()
        self.command_history = command_history if command_history is not None else CommandHistory()
        self.store = store
        self.history_key = history_key
        self.history_limit = history_limit
        self.poll_interval = poll_interval
        self.auto_save_interval = auto_save_interval
        self.clock = clock
        self.debug_logger = debug_logger

        self.state = RequestState.IDLE
        self.connection_status = STATUS_CONNECTED
        self.last_error: Optional[str] = None
        self.watermark = watermark if watermark is not None else max(self.log.latest_timestamp(), now_ms())

        self._task: Optional[ExchangeTask] = None
        self._last_poll = float("-inf")
        self._last_autosave = clock()
        self._saved_revision = self.log.revision

    @property
    def server_url(self) -> str:
        return self.client.server_url

    @property
    def is_idle(self) -> bool:
        return self.state == RequestState.IDLE

    @property
    def is_sending(self) -> bool:
        return self.state == RequestState.SENDING

    @property
    def history_enabled(self) -> bool:
        return self.store is not None

    def _log_debug(self, message: str):
        if self.debug_logger:
            self.debug_logger.debug(message, "SESSION")

    def _log_error(self, message: str):
        if self.debug_logger:
            self.debug_logger.error(message, "SESSION")

    def _append_local(self, message: Message) -> None:
        self.log.append(message)
        if message.created_at_ms is not None:
            self.watermark = max(self.watermark, message.created_at_ms)

    # =========================================================================
    # STARTUP
    # =========================================================================

    def restore_history(self) -> None:
        """Load persisted messages for this session and add the startup banners"""
        if self.store is not None:
            record = self.store.load_record(self.history_key)
            # The rolling history only belongs to the server it was recorded against
            if record is not None and (self.history_key != HISTORY_KEY or record.server_url == self.server_url):
                self.log.replace(record.messages)
                self.log.append(Message.banner(
                    f"History loaded ({len(record.messages)} messages) - {record.saved_at}"))
            else:
                self.log.append(Message.banner(f"New session for {self.server_url}"))

        state = "enabled" if self.history_enabled else "disabled"
        self.log.append(Message.banner(f"Connected to {self.server_url} (history {state})"))

        self.watermark = max(self.watermark, self.log.latest_timestamp())
        self._saved_revision = self.log.revision
        self._log_debug(f"Session ready with {len(self.log)} messages, watermark {self.watermark}")

    # =========================================================================
    # SENDING
    # =========================================================================

    def submit(self, text: str) -> bool:
        """Send text to the server in the background; False when nothing was sent"""
        text = text.strip()
        if not text or not self.is_idle:
            return False

        self.command_history.record(text)
        self._append_local(Message.create(Role.USER, text))
        self.buffer.clear()
        self.scroller.reset_input_scroll()
        self.scroller.scroll_to_bottom()

        self.state = RequestState.SENDING
        self.connection_status = STATUS_SENDING
        self.last_error = None
        self._task = ExchangeTask(lambda: self.client.send_message(text).content,
                                  debug_logger=self.debug_logger).start()
        self._log_debug(f"Exchange started: {len(text)} chars")
        return True

    def check_exchange(self) -> Optional[Outcome]:
        """Fold a finished exchange into the log; None while nothing has finished"""
        if self._task is None or not self._task.done():
            return None

        outcome = self._task.outcome()
        self._task = None
        self.state = RequestState.SETTLED

        if outcome.ok:
            self._append_local(Message.create(Role.ASSISTANT, outcome.content))
            self.connection_status = STATUS_CONNECTED
            self.last_error = None
            self._log_debug(f"Exchange succeeded: {len(outcome.content)} chars")
        else:
            self._append_local(Message.create(Role.ERROR, outcome.reason))
            self.connection_status = STATUS_ERROR
            self.last_error = outcome.reason
            self._log_error(f"Exchange failed: {outcome.reason}")

        self.state = RequestState.IDLE
        return outcome

    def wait_for_exchange(self, timeout: Optional[float] = None) -> Optional[Outcome]:
        """Block until the current exchange settles, then fold it in"""
        if self._task is None:
            return None
        if self._task.wait(timeout) is None:
            return None
        return self.check_exchange()

    # =========================================================================
    # POLLING
    # =========================================================================

    def poll_server(self, now: Optional[float] = None) -> int:
        """Fetch messages newer than the watermark when due; returns how many were added"""
        now = self.clock() if now is None else now
        if not self.is_idle or now - self._last_poll < self.poll_interval:
            return 0
        self._last_poll = now

        try:
            remote = self.client.fetch_messages(self.watermark)
        except ChatError as e:
            self.connection_status = STATUS_DISCONNECTED
            self._log_error(f"Poll failed: {e}")
            return 0

        if self.connection_status == STATUS_DISCONNECTED:
            self.connection_status = STATUS_CONNECTED

        candidates = [Message.from_server(m.role, m.content, m.timestamp) for m in remote]
        self.watermark, appended = self.log.ingest_remote(candidates, self.watermark)
        return len(appended)

    # =========================================================================
    # LOG COMMANDS
    # =========================================================================

    def update_input_scroll(self, width: int, visible_lines: int) -> int:
        line, _ = self.buffer.cursor_line_col(width)
        return self.scroller.update_input_scroll(line, visible_lines)

    def clear_chat(self) -> None:
        """Clear the displayed log; the persisted history is untouched"""
        self.log.clear()
        self.log.append(Message.banner(f"Chat cleared. Connected to {self.server_url}"))
        self.scroller.scroll_to_bottom()
        self.last_error = None

    def delete_history(self) -> bool:
        """Remove the persisted history file, then clear the display"""
        if self.store is None:
            self.last_error = "History is disabled (--no-history)"
            return False

        try:
            self.store.delete(self.history_key)
        except PersistenceError as e:
            self.last_error = f"Failed to delete history: {e}"
            return False

        self.log.clear()
        self.log.append(Message.banner("Chat history deleted."))
        self.scroller.scroll_to_bottom()
        self.last_error = None
        self._saved_revision = self.log.revision
        return True

    def save_history(self) -> bool:
        """Persist the newest messages; failures become the last_error notice"""
        if self.store is None:
            return False

        try:
            self.store.save(self.history_key, self.log.trim_for_persistence(self.history_limit),
                            self.server_url)
        except PersistenceError as e:
            self.last_error = f"Failed to save history: {e}"
            return False

        self._saved_revision = self.log.revision
        return True

    def autosave(self, now: Optional[float] = None) -> bool:
        """Save when the interval elapsed and the log changed since the last save"""
        if self.store is None or self.auto_save_interval <= 0:
            return False
        now = self.clock() if now is None else now
        if now - self._last_autosave < self.auto_save_interval:
            return False
        self._last_autosave = now
        if self.log.revision == self._saved_revision:
            return False
        return self.save_history()

    # =========================================================================
    # STATUS
    # =========================================================================

    def status_text(self, show_scroll: bool = False) -> str:
        """One-line status: server, scroll position, history size, connection"""
        scroll_info = ""
        if show_scroll and not self.scroller.auto_scroll:
            scroll_info = f" Scroll: {self.scroller.scrolled_back} |"
        return (f" {self.server_url} |{scroll_info} History: {len(self.command_history)}"
                f" | {self.connection_status}")
