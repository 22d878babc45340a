#!/usr/bin/env python3
"""
Hank TUI Client - NCurses Interface (ncui.py)
Pure frame building from an immutable view snapshot, the curses terminal
surface and the cooperative UI loop.

build_frame() knows nothing about curses: it turns a ViewSnapshot into panes
of styled spans plus one optional cursor cell. TerminalSurface owns the
terminal (raw mode, colors, key decoding) and paints frames.
"""

import curses
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

from wcwidth import wcwidth

from chatlog import Message, Role
from dispatch import EventDispatcher, Focus, Key, KeyEvent
from session import SessionController
from textbuf import char_cells, display_width, layout_positions, wrap_lines
from uilib import (
    BoxCoordinates, ColorManager, LayoutGeometry, TerminalManager,
    DEFAULT_INPUT_HEIGHT, MIN_SCREEN_HEIGHT, MIN_SCREEN_WIDTH,
    calculate_box_layout, centered_box, chat_window_offset
)

ESC_DELAY_MS = 25
HELP_WIDTH = 55
THINKING_TEXT = "Hank is thinking..."

# Label and style per role; every Role must have an entry
ROLE_LABELS: Dict[Role, Tuple[str, str]] = {
    Role.USER: ("You: ", "user"),
    Role.ASSISTANT: ("Hank: ", "assistant"),
    Role.SYSTEM: ("", "system"),
    Role.ERROR: ("Error: ", "error"),
}

HELP_LINES = [
    "Keyboard Shortcuts",
    "",
    "Enter / Ctrl+S     Send message",
    "Alt+Enter          New line",
    "Tab                Switch focus (input / chat)",
    "Up / Down          Move cursor / scroll chat",
    "Ctrl+Up / Down     Previous / next sent message",
    "Alt+Up / Down      Scroll chat from anywhere",
    "PgUp / PgDn        Scroll chat by a page",
    "Home / End         Line start / end, chat top / end",
    "Ctrl+V             Paste clipboard",
    "Ctrl+L             Clear chat display",
    "Ctrl+D             Delete saved history",
    "F1 / ?             Toggle this help",
    "Esc / Ctrl+C       Quit",
    "",
    "Press any key to close",
]

# =============================================================================
# FRAME MODEL
# =============================================================================

@dataclass(frozen=True)
class Span:
    """Run of text drawn with one style"""
    text: str
    style: str = "default"
    bold: bool = False


@dataclass(frozen=True)
class Pane:
    """Rectangular region of the frame; unbordered when border_style is None"""
    box: BoxCoordinates
    lines: List[List[Span]]
    title: str = ""
    border_style: Optional[str] = None
    fill_style: Optional[str] = None


@dataclass(frozen=True)
class Frame:
    """Everything needed to paint one screen"""
    width: int
    height: int
    geometry: LayoutGeometry
    panes: List[Pane]
    cursor: Optional[Tuple[int, int]]
    chat_total_lines: int


@dataclass(frozen=True)
class ViewSnapshot:
    """Immutable copy of the session state a frame is built from"""
    messages: Tuple[Message, ...]
    input_text: str
    cursor: int
    input_scroll: int
    auto_scroll: bool
    scrolled_back: int
    focus: Focus
    sending: bool
    last_error: Optional[str]
    status: str

    @classmethod
    def capture(cls, session: SessionController, focus: Focus) -> "ViewSnapshot":
        scroller = session.scroller
        return cls(
            messages=session.log.snapshot(),
            input_text=session.buffer.text,
            cursor=session.buffer.cursor,
            input_scroll=scroller.input_scroll,
            auto_scroll=scroller.auto_scroll,
            scrolled_back=scroller.scrolled_back,
            focus=focus,
            sending=session.is_sending,
            last_error=session.last_error,
            status=session.status_text(show_scroll=focus == Focus.CHAT)
        )

# =============================================================================
# FRAME BUILDING
# =============================================================================

def input_wrap_width(geometry: LayoutGeometry) -> int:
    """Wrap width of the input pane; one column stays free for the cursor"""
    return max(1, geometry.input_box.inner_width - 1)


def wrap_spans(spans: List[Span], width: int) -> List[List[Span]]:
    """Wrap one logical line of spans with the same layout as the input buffer"""
    text = "".join(span.text for span in spans)
    cells = char_cells(text, width)
    rows: List[List[Span]] = [[] for _ in range(layout_positions(text, width)[-1][0] + 1)]

    index = 0
    for span in spans:
        for ch in span.text:
            row = rows[cells[index][0]]
            index += 1
            if ch == '\n':
                continue
            if row and row[-1].style == span.style and row[-1].bold == span.bold:
                row[-1] = Span(row[-1].text + ch, span.style, span.bold)
            else:
                row.append(Span(ch, span.style, span.bold))
    return rows


def message_lines(message: Message) -> List[List[Span]]:
    """Logical display lines of one message, before wrapping"""
    label, style = ROLE_LABELS[message.role]
    content_lines = message.content.split('\n')

    if message.role == Role.SYSTEM:
        return [[Span(line, style)] for line in content_lines]

    stamp = f"{message.created_at} "
    lines = [[Span(stamp, "dim"), Span(label, style, bold=True), Span(content_lines[0], style)]]
    indent = " " * display_width(stamp + label)
    for line in content_lines[1:]:
        lines.append([Span(indent), Span(line, style)])
    return lines


def chat_lines(snapshot: ViewSnapshot, width: int) -> List[List[Span]]:
    """All wrapped chat rows: messages, the thinking line and the error notice"""
    logical: List[List[Span]] = []
    for message in snapshot.messages:
        logical.extend(message_lines(message))
        logical.append([])

    if snapshot.sending:
        logical.append([Span(THINKING_TEXT, "warning")])
    if snapshot.last_error:
        logical.append([Span(f"⚠ {snapshot.last_error}", "error")])

    rows = []
    for line in logical:
        rows.extend(wrap_spans(line, width))
    return rows


def _chat_title(focus: Focus) -> str:
    if focus == Focus.CHAT:
        return " Chat [FOCUSED - ↑↓=Scroll, Tab=Switch] "
    return " Chat [Tab=Focus] "


def _input_title(snapshot: ViewSnapshot) -> str:
    if snapshot.sending:
        return " Waiting... "
    if snapshot.focus == Focus.INPUT:
        return " Message [Enter=Send, Alt+Enter=New line, F1=Help] "
    return " Message [Tab=Focus] "


def build_frame(snapshot: ViewSnapshot, width: int, height: int,
                input_height: int = DEFAULT_INPUT_HEIGHT) -> Frame:
    """
    Lay out one screen from a snapshot. The sending view is the same frame
    with a dimmed input pane, no cursor and a thinking line in the chat.

    Raises ValueError when the terminal is below the minimum size.
    """
    geometry = calculate_box_layout(width, height, input_height)
    panes = []

    # Chat pane
    chat_box = geometry.chat_box
    rows = chat_lines(snapshot, chat_box.inner_width)
    offset = chat_window_offset(len(rows), chat_box.inner_height, snapshot.auto_scroll,
                                snapshot.scrolled_back)
    panes.append(Pane(
        box=chat_box,
        lines=rows[offset:offset + chat_box.inner_height],
        title=_chat_title(snapshot.focus),
        border_style="focus" if snapshot.focus == Focus.CHAT else "border"
    ))

    # Input pane
    input_box = geometry.input_box
    wrap_width = input_wrap_width(geometry)
    text_style = "dim" if snapshot.sending else "default"
    visible = wrap_lines(snapshot.input_text, wrap_width)[
        snapshot.input_scroll:snapshot.input_scroll + input_box.inner_height]
    input_focused = snapshot.focus == Focus.INPUT and not snapshot.sending
    panes.append(Pane(
        box=input_box,
        lines=[[Span(line, text_style)] for line in visible],
        title=_input_title(snapshot),
        border_style="input_focus" if input_focused else "border"
    ))

    # Status line
    panes.append(Pane(box=geometry.status_line, lines=[[Span(snapshot.status, "status")]]))

    cursor = None
    if input_focused:
        line, col = layout_positions(snapshot.input_text, wrap_width)[snapshot.cursor]
        visual_line = line - snapshot.input_scroll
        if 0 <= visual_line < input_box.inner_height:
            cursor = (input_box.inner_top + visual_line, input_box.inner_left + col)

    # Help overlay
    if snapshot.focus == Focus.HELP:
        help_box = centered_box(width, height, HELP_WIDTH, len(HELP_LINES) + 2)
        if help_box is not None:
            panes.append(Pane(
                box=help_box,
                lines=[[Span(line, "help", bold=index == 0)] for index, line in enumerate(HELP_LINES)],
                title=" Help ",
                border_style="help_border",
                fill_style="help"
            ))

    return Frame(width=width, height=height, geometry=geometry, panes=panes,
                 cursor=cursor, chat_total_lines=len(rows))

# =============================================================================
# KEY DECODING
# =============================================================================

ESC_CHAR = '\x1b'

KEY_CODES: Dict[int, Key] = {
    curses.KEY_UP: Key.UP,
    curses.KEY_DOWN: Key.DOWN,
    curses.KEY_LEFT: Key.LEFT,
    curses.KEY_RIGHT: Key.RIGHT,
    curses.KEY_HOME: Key.HOME,
    curses.KEY_END: Key.END,
    curses.KEY_PPAGE: Key.PAGE_UP,
    curses.KEY_NPAGE: Key.PAGE_DOWN,
    curses.KEY_BACKSPACE: Key.BACKSPACE,
    curses.KEY_DC: Key.DELETE,
    curses.KEY_ENTER: Key.ENTER,
    curses.KEY_F1: Key.F1,
    curses.KEY_RESIZE: Key.RESIZE,
}

# xterm-style modified keys reported by keyname(), e.g. kUP5 is Ctrl+Up
MODIFIED_KEY_PATTERN = re.compile(r"^(kUP|kDN|kLFT|kRIT|kHOM|kEND|kPRV|kNXT|kDC)([2-8])$")
MODIFIED_KEY_NAMES: Dict[str, Key] = {
    "kUP": Key.UP,
    "kDN": Key.DOWN,
    "kLFT": Key.LEFT,
    "kRIT": Key.RIGHT,
    "kHOM": Key.HOME,
    "kEND": Key.END,
    "kPRV": Key.PAGE_UP,
    "kNXT": Key.PAGE_DOWN,
    "kDC": Key.DELETE,
}


def decode_key(raw: Union[str, int], alt: bool = False, keyname: Optional[str] = None) -> Optional[KeyEvent]:
    """Turn one get_wch() result into a KeyEvent; None for keys the client ignores"""
    if isinstance(raw, str):
        return _decode_char(raw, alt)

    if raw in KEY_CODES:
        return KeyEvent(KEY_CODES[raw], alt=alt)
    if raw == curses.KEY_BTAB:
        return KeyEvent(Key.TAB, shift=True)

    match = MODIFIED_KEY_PATTERN.match(keyname or "")
    if match:
        modifiers = int(match.group(2)) - 1
        return KeyEvent(MODIFIED_KEY_NAMES[match.group(1)],
                        shift=bool(modifiers & 1),
                        alt=alt or bool(modifiers & 2),
                        ctrl=bool(modifiers & 4))
    return None


def _decode_char(raw: str, alt: bool) -> Optional[KeyEvent]:
    if raw == '\r':
        return KeyEvent(Key.ENTER, alt=alt)
    if raw == '\n':
        # Ctrl+J, also what many terminals send for Ctrl+Enter
        return KeyEvent(Key.ENTER, ctrl=True, alt=alt)
    if raw == '\t':
        return KeyEvent(Key.TAB, alt=alt)
    if raw in ('\x08', '\x7f'):
        return KeyEvent(Key.BACKSPACE, alt=alt)
    if raw == ESC_CHAR:
        return KeyEvent(Key.ESCAPE)

    code = ord(raw)
    if code == 0:
        return None
    if code < 32:
        return KeyEvent(Key.CHAR, char=chr(code + 96), ctrl=True, alt=alt)
    return KeyEvent(Key.CHAR, char=raw, alt=alt)

# =============================================================================
# TERMINAL SURFACE
# =============================================================================

class TerminalError(Exception):
    """The terminal could not be acquired for the UI"""


def printable(text: str) -> str:
    """Replace characters curses cannot place in one cell"""
    return "".join(' ' if ch == '\t' else '?' if wcwidth(ch) < 0 else ch for ch in text)


def clip_to_width(text: str, width: int) -> str:
    """Longest prefix of text that fits in width cells"""
    used = 0
    for index, ch in enumerate(text):
        used += display_width(ch)
        if used > width:
            return text[:index]
    return text


class TerminalSurface:
    """
    Curses terminal held as a scoped resource.

    Entering puts the terminal in raw mode with keypad decoding and colors;
    leaving restores it on every exit path, exceptions included.
    """

    def __init__(self, color_manager: ColorManager, input_height: int = DEFAULT_INPUT_HEIGHT,
                 debug_logger=None):
        self.color_manager = color_manager
        self.input_height = input_height
        self.debug_logger = debug_logger
        self.stdscr = None
        self.terminal_manager: Optional[TerminalManager] = None

    def _log_debug(self, message: str):
        if self.debug_logger:
            self.debug_logger.debug(message, "NCUI")

    def _log_error(self, message: str):
        if self.debug_logger:
            self.debug_logger.error(message, "NCUI")

    def __enter__(self) -> "TerminalSurface":
        try:
            self.stdscr = curses.initscr()
            curses.noecho()
            curses.raw()
            curses.nonl()
            self.stdscr.keypad(True)
            curses.set_escdelay(ESC_DELAY_MS)
        except curses.error as e:
            self._restore()
            raise TerminalError(f"Failed to initialize terminal: {e}") from e

        if self.color_manager.init_colors():
            self._log_debug(f"Colors initialized with {self.color_manager.theme.value} theme")
        else:
            self._log_debug("Running without color support")

        self.terminal_manager = TerminalManager(self.stdscr, self.input_height)
        self.terminal_manager.check_resize(force=True)
        if self.terminal_manager.is_too_small():
            width, height = self.terminal_manager.get_size()
            self._restore()
            raise TerminalError(f"Terminal too small: {width}x{height} "
                                f"(minimum: {MIN_SCREEN_WIDTH}x{MIN_SCREEN_HEIGHT})")

        self._log_debug(f"Terminal acquired: {self.terminal_manager.width}x{self.terminal_manager.height}")
        return self

    def __exit__(self, exc_type, exc, tb):
        self._restore()
        return False

    def _restore(self):
        if self.stdscr is None:
            return
        try:
            self.stdscr.keypad(False)
            curses.noraw()
            curses.nl()
            curses.echo()
            curses.endwin()
        except curses.error as e:
            self._log_error(f"Terminal restore failed: {e}")
        self.stdscr = None
        self._log_debug("Terminal restored")

    # -------------------------------------------------------------------------
    # Painting
    # -------------------------------------------------------------------------

    def draw(self, frame: Frame):
        """Paint a frame and place the cursor"""
        self.stdscr.erase()
        for pane in frame.panes:
            self._draw_pane(pane)

        try:
            if frame.cursor is None:
                curses.curs_set(0)
            else:
                curses.curs_set(1)
                self.stdscr.move(*frame.cursor)
        except curses.error:
            pass

        self.stdscr.noutrefresh()
        curses.doupdate()

    def _draw_pane(self, pane: Pane):
        box = pane.box

        if pane.fill_style:
            fill_attr = self.color_manager.get_attr(pane.fill_style)
            for y in range(box.top, box.bottom + 1):
                self._put(y, box.left, " " * box.width, fill_attr)

        if pane.border_style:
            self._draw_border(box, self.color_manager.get_attr(pane.border_style), pane.title)

        for row, spans in enumerate(pane.lines[:box.inner_height]):
            x = box.inner_left
            remaining = box.inner_width
            for span in spans:
                text = clip_to_width(printable(span.text), remaining)
                if text:
                    self._put(box.inner_top + row, x, text,
                              self.color_manager.get_attr(span.style, span.bold))
                used = display_width(text)
                x += used
                remaining -= used
                if remaining <= 0:
                    break

    def _draw_border(self, box: BoxCoordinates, attr: int, title: str):
        """Draw box border characters and the title"""
        try:
            self.stdscr.attron(attr)
            self.stdscr.hline(box.top, box.left, curses.ACS_HLINE, box.width)
            self.stdscr.hline(box.bottom, box.left, curses.ACS_HLINE, box.width)
            self.stdscr.vline(box.top, box.left, curses.ACS_VLINE, box.height)
            self.stdscr.vline(box.top, box.right, curses.ACS_VLINE, box.height)
            self.stdscr.addch(box.top, box.left, curses.ACS_ULCORNER)
            self.stdscr.addch(box.top, box.right, curses.ACS_URCORNER)
            self.stdscr.addch(box.bottom, box.left, curses.ACS_LLCORNER)
            self.stdscr.addch(box.bottom, box.right, curses.ACS_LRCORNER)
        except curses.error:
            pass
        finally:
            self.stdscr.attroff(attr)

        title = clip_to_width(title, box.width - 4)
        if title:
            self._put(box.top, box.left + 2, title, attr | curses.A_BOLD)

    def _put(self, y: int, x: int, text: str, attr: int):
        try:
            self.stdscr.addstr(y, x, text, attr)
        except curses.error:
            pass

    def show_too_small(self):
        self.terminal_manager.show_too_small_message()

    # -------------------------------------------------------------------------
    # Input
    # -------------------------------------------------------------------------

    def read_key(self, timeout_ms: int) -> Optional[KeyEvent]:
        """Wait up to timeout_ms for one key; ESC followed by a key means Alt"""
        self.stdscr.timeout(timeout_ms)
        try:
            raw = self.stdscr.get_wch()
        except curses.error:
            return None

        alt = False
        if raw == ESC_CHAR:
            self.stdscr.timeout(0)
            try:
                raw = self.stdscr.get_wch()
            except curses.error:
                return KeyEvent(Key.ESCAPE)
            finally:
                self.stdscr.timeout(timeout_ms)
            if raw == ESC_CHAR:
                return KeyEvent(Key.ESCAPE)
            alt = True

        keyname = None
        if isinstance(raw, int):
            try:
                keyname = curses.keyname(raw).decode("ascii", "replace")
            except ValueError:
                keyname = None
        return decode_key(raw, alt=alt, keyname=keyname)

# =============================================================================
# UI CONTROLLER
# =============================================================================

class NCursesUIController:
    """
    Cooperative UI loop for the chat client.

    Each tick polls the server if due, folds in a finished exchange,
    autosaves if due, redraws and then waits briefly for one key.
    """

    def __init__(self, session: SessionController, dispatcher: EventDispatcher,
                 color_manager: Optional[ColorManager] = None, refresh_rate: float = 0.1,
                 input_height: int = DEFAULT_INPUT_HEIGHT, debug_logger=None):
        self.session = session
        self.dispatcher = dispatcher
        self.color_manager = color_manager or ColorManager()
        self.refresh_rate = refresh_rate
        self.input_height = input_height
        self.debug_logger = debug_logger
        self.running = False

    def _log_debug(self, message: str):
        if self.debug_logger:
            self.debug_logger.debug(message, "NCUI")

    def run(self) -> int:
        """Run the interface until the user quits; TerminalError if the terminal is unusable"""
        with TerminalSurface(self.color_manager, self.input_height, self.debug_logger) as surface:
            self.running = True
            self._log_debug("Starting UI main loop")
            try:
                self._main_loop(surface)
            finally:
                self.running = False
        self._log_debug("UI main loop finished")
        return 0

    def _main_loop(self, surface: TerminalSurface):
        timeout_ms = max(1, int(self.refresh_rate * 1000))

        while not self.dispatcher.quit_requested:
            self.session.poll_server()
            self.session.check_exchange()
            self.session.autosave()

            wrap_width = self._render(surface)

            event = surface.read_key(timeout_ms)
            if event is None:
                continue

            if event.key == Key.RESIZE:
                surface.terminal_manager.check_resize(force=True)
                continue

            if wrap_width is None:
                # Too small to draw: only listen for quit
                if self.dispatcher.is_exit_key(event):
                    self.dispatcher.quit_requested = True
                continue

            self.dispatcher.handle(event, wrap_width)

    def _render(self, surface: TerminalSurface) -> Optional[int]:
        """Draw one frame; returns the input wrap width, or None when too small"""
        manager = surface.terminal_manager
        manager.check_resize()
        geometry = manager.get_box_layout()
        if geometry is None:
            surface.show_too_small()
            return None

        wrap_width = input_wrap_width(geometry)
        self.session.update_input_scroll(wrap_width, geometry.input_box.inner_height)

        snapshot = ViewSnapshot.capture(self.session, self.dispatcher.focus)
        frame = build_frame(snapshot, geometry.terminal_width, geometry.terminal_height,
                            self.input_height)
        surface.draw(frame)

        self.session.scroller.clamp_chat_scroll(frame.chat_total_lines, geometry.chat_box.inner_height)
        return wrap_width
