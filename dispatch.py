#!/usr/bin/env python3
"""
Hank TUI Client - Event Dispatcher (dispatch.py)
Focus state machine and key routing for the chat client
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import pyperclip

from session import SessionController


class Focus(Enum):
    """Which pane receives keys"""
    INPUT = "input"
    CHAT = "chat"
    HELP = "help"


class Key(Enum):
    """Logical keys reported by the terminal surface"""
    CHAR = "char"
    ENTER = "enter"
    BACKSPACE = "backspace"
    DELETE = "delete"
    LEFT = "left"
    RIGHT = "right"
    UP = "up"
    DOWN = "down"
    HOME = "home"
    END = "end"
    PAGE_UP = "page_up"
    PAGE_DOWN = "page_down"
    TAB = "tab"
    ESCAPE = "escape"
    F1 = "f1"
    RESIZE = "resize"


@dataclass(frozen=True)
class KeyEvent:
    """One key press with modifier flags; char is set for Key.CHAR"""
    key: Key
    char: str = ""
    ctrl: bool = False
    alt: bool = False
    shift: bool = False

    @property
    def plain(self) -> bool:
        return not (self.ctrl or self.alt)

# =============================================================================
# CLIPBOARD
# =============================================================================

class ClipboardError(Exception):
    """Clipboard could not be read"""


def read_clipboard() -> str:
    """System clipboard text via pyperclip"""
    try:
        text = pyperclip.paste()
    except pyperclip.PyperclipException as e:
        raise ClipboardError(str(e)) from e
    if not text:
        raise ClipboardError("Clipboard is empty")
    return text

# =============================================================================
# DISPATCHER
# =============================================================================

class EventDispatcher:
    """
    Routes key events to the session according to the current focus.

    Help is modal: any key closes it and does nothing else. While a request
    is in flight only the exit keys are honored. Every edit in the input pane
    drops the command-history index so the edited text becomes the new draft.
    """

    def __init__(self, session: SessionController,
                 clipboard: Callable[[], str] = read_clipboard, debug_logger=None):
        self.session = session
        self.clipboard = clipboard
        self.debug_logger = debug_logger
        self.focus = Focus.INPUT
        self.quit_requested = False

    def _log_debug(self, message: str):
        if self.debug_logger:
            self.debug_logger.debug(message, "DISPATCH")

    # =========================================================================
    # FOCUS
    # =========================================================================

    def toggle_focus(self) -> None:
        self.focus = Focus.CHAT if self.focus == Focus.INPUT else Focus.INPUT

    def toggle_help(self) -> None:
        self.focus = Focus.INPUT if self.focus == Focus.HELP else Focus.HELP

    @staticmethod
    def is_exit_key(event: KeyEvent) -> bool:
        if event.key == Key.ESCAPE:
            return True
        return event.key == Key.CHAR and event.ctrl and event.char.lower() == 'c'

    # =========================================================================
    # ROUTING
    # =========================================================================

    def handle(self, event: KeyEvent, input_width: int) -> bool:
        """Apply one key event; returns True when it changed something"""
        if self.focus == Focus.HELP:
            self.focus = Focus.INPUT
            return True

        if self.is_exit_key(event):
            self._log_debug("Exit requested")
            self.quit_requested = True
            return True

        if self.session.is_sending:
            return False

        if event.key == Key.F1 or (event.key == Key.CHAR and event.char == '?'
                                   and event.plain and self.focus != Focus.INPUT):
            self.toggle_help()
            return True

        if event.key == Key.CHAR and event.ctrl:
            return self._handle_control_chord(event)

        if event.key == Key.TAB:
            self.toggle_focus()
            return True

        if event.key == Key.PAGE_UP:
            self.session.scroller.page_up()
            return True
        if event.key == Key.PAGE_DOWN:
            self.session.scroller.page_down()
            return True

        if event.alt and event.key in (Key.UP, Key.DOWN):
            self._scroll_chat(event.key)
            return True

        if self.focus == Focus.INPUT:
            return self._handle_input_key(event, input_width)
        return self._handle_chat_key(event)

    def _handle_control_chord(self, event: KeyEvent) -> bool:
        letter = event.char.lower()

        if letter == 'l':
            self.session.clear_chat()
            return True
        if letter == 'd':
            self.session.delete_history()
            return True

        if self.focus != Focus.INPUT:
            return False

        if letter == 'v':
            self.paste()
            return True
        if letter == 's':
            return self.session.submit(self.session.buffer.text)
        return False

    def _scroll_chat(self, key: Key) -> None:
        if key == Key.UP:
            self.session.scroller.scroll_up()
        else:
            self.session.scroller.scroll_down()

    # =========================================================================
    # INPUT FOCUS
    # =========================================================================

    def _handle_input_key(self, event: KeyEvent, width: int) -> bool:
        buffer = self.session.buffer

        if event.key in (Key.UP, Key.DOWN) and event.ctrl:
            return self._recall(event.key)

        if event.key == Key.ENTER:
            if event.alt or event.shift:
                return self._edit(lambda: buffer.insert('\n'))
            return self.session.submit(buffer.text)

        if event.key == Key.CHAR:
            if not event.plain:
                return False
            return self._edit(lambda: buffer.insert(event.char))
        if event.key == Key.BACKSPACE:
            return self._edit(buffer.delete_before_cursor)
        if event.key == Key.DELETE:
            return self._edit(buffer.delete_at_cursor)

        if event.key == Key.LEFT:
            return buffer.move_left()
        if event.key == Key.RIGHT:
            return buffer.move_right()
        if event.key == Key.UP:
            return buffer.move_up(width)
        if event.key == Key.DOWN:
            return buffer.move_down(width)
        if event.key == Key.HOME:
            buffer.move_to_line_start(width)
            return True
        if event.key == Key.END:
            buffer.move_to_line_end(width)
            return True

        return False

    def _edit(self, operation: Callable[[], Optional[bool]]) -> bool:
        result = operation()
        self.session.command_history.reset()
        return result is not False

    def _recall(self, key: Key) -> bool:
        history = self.session.command_history
        buffer = self.session.buffer
        if key == Key.UP:
            text = history.previous(buffer.text)
        else:
            text = history.next(buffer.text)
        if text is None:
            return False
        buffer.set_text(text)
        return True

    def paste(self) -> bool:
        """Insert clipboard text at the cursor"""
        try:
            text = self.clipboard()
        except ClipboardError as e:
            self.session.last_error = f"Clipboard error: {e}"
            return False
        self.session.buffer.insert_text(text)
        self.session.command_history.reset()
        return True

    # =========================================================================
    # CHAT FOCUS
    # =========================================================================

    def _handle_chat_key(self, event: KeyEvent) -> bool:
        scroller = self.session.scroller

        if event.ctrl:
            return False
        if event.key in (Key.UP, Key.DOWN):
            self._scroll_chat(event.key)
            return True
        if event.key == Key.HOME:
            scroller.scroll_to_top()
            return True
        if event.key == Key.END:
            scroller.scroll_to_bottom()
            return True
        return False
