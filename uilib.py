#!/usr/bin/env python3
"""
Hank TUI Client - UI Library (uilib.py)
Box layout geometry, terminal size tracking, color themes and the viewport
scroller shared by the input pane and the chat pane
"""

import curses
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

# Configuration constants
MIN_SCREEN_WIDTH = 20
MIN_SCREEN_HEIGHT = 10
DEFAULT_INPUT_HEIGHT = 5
CHAT_PAGE_SIZE = 10
SCROLL_BACK_LIMIT = 10000

# =============================================================================
# BOX LAYOUT
# =============================================================================

@dataclass(frozen=True)
class BoxCoordinates:
    """Box coordinate system with outer boundaries and inner text fields"""
    # Outer box boundaries (including borders)
    top: int
    left: int
    bottom: int
    right: int

    # Inner text field boundaries (excluding borders)
    inner_top: int
    inner_left: int
    inner_bottom: int
    inner_right: int

    # Calculated dimensions
    width: int
    height: int
    inner_width: int
    inner_height: int


@dataclass(frozen=True)
class LayoutGeometry:
    """Complete terminal layout with all box definitions"""
    terminal_height: int
    terminal_width: int

    chat_box: BoxCoordinates
    input_box: BoxCoordinates
    status_line: BoxCoordinates


def bordered_box(top: int, left: int, height: int, width: int) -> BoxCoordinates:
    """Box with a one-cell border on every side"""
    return BoxCoordinates(
        top=top,
        left=left,
        bottom=top + height - 1,
        right=left + width - 1,
        inner_top=top + 1,
        inner_left=left + 1,
        inner_bottom=top + height - 2,
        inner_right=left + width - 2,
        width=width,
        height=height,
        inner_width=max(1, width - 2),
        inner_height=max(1, height - 2)
    )


def calculate_box_layout(width: int, height: int,
                         input_height: int = DEFAULT_INPUT_HEIGHT) -> LayoutGeometry:
    """
    Split the terminal into chat pane, input pane and status line:

    1. Validate minimum terminal size
    2. Reserve 1 line for status at bottom
    3. Give the input pane its fixed outer height (borders included)
    4. Hand everything above it to the chat pane
    """
    if width < MIN_SCREEN_WIDTH or height < MIN_SCREEN_HEIGHT:
        raise ValueError(f"Terminal too small: {width}x{height} "
                         f"(minimum: {MIN_SCREEN_WIDTH}x{MIN_SCREEN_HEIGHT})")

    status_height = 1
    available_height = height - status_height

    # Chat pane keeps at least one line of content
    input_outer_height = max(3, min(input_height, available_height - 3))
    chat_outer_height = available_height - input_outer_height

    chat_box = bordered_box(0, 0, chat_outer_height, width)
    input_box = bordered_box(chat_outer_height, 0, input_outer_height, width)

    status_top = height - status_height
    status_line = BoxCoordinates(
        top=status_top,
        left=0,
        bottom=status_top,
        right=width - 1,
        inner_top=status_top,
        inner_left=0,
        inner_bottom=status_top,
        inner_right=width - 1,
        width=width,
        height=status_height,
        inner_width=width,
        inner_height=status_height
    )

    if input_box.bottom >= status_line.top:
        raise ValueError(f"Layout overflow detected: input bottom ({input_box.bottom}) "
                         f">= status top ({status_line.top})")

    return LayoutGeometry(
        terminal_height=height,
        terminal_width=width,
        chat_box=chat_box,
        input_box=input_box,
        status_line=status_line
    )


def centered_box(width: int, height: int, box_width: int, box_height: int) -> Optional[BoxCoordinates]:
    """Bordered box centered on the screen, shrunk to fit; None if nothing fits"""
    box_width = min(box_width, width - 2)
    box_height = min(box_height, height - 2)
    if box_width < 3 or box_height < 3:
        return None
    top = (height - box_height) // 2
    left = (width - box_width) // 2
    return bordered_box(top, left, box_height, box_width)

# =============================================================================
# TERMINAL MANAGEMENT
# =============================================================================

class TerminalManager:
    """Terminal size tracking with cached box layout"""

    def __init__(self, stdscr, input_height: int = DEFAULT_INPUT_HEIGHT):
        self.stdscr = stdscr
        self.input_height = input_height
        self.width = 0
        self.height = 0
        self.last_check = 0.0
        self.too_small = False
        self.current_layout: Optional[LayoutGeometry] = None

    def check_resize(self, force: bool = False) -> Tuple[bool, int, int]:
        """
        Check for terminal size changes
        Returns (resized, new_width, new_height)
        """
        current_time = time.time()

        # Polled every 0.5 seconds unless a resize event forces it
        if not force and current_time - self.last_check < 0.5:
            return False, self.width, self.height

        self.last_check = current_time

        try:
            new_height, new_width = self.stdscr.getmaxyx()
        except curses.error:
            return False, self.width, self.height

        if new_width == self.width and new_height == self.height:
            return False, self.width, self.height

        self.width, self.height = new_width, new_height
        if self.validate_size():
            self.too_small = False
            self.current_layout = calculate_box_layout(new_width, new_height, self.input_height)
        else:
            self.too_small = True
            self.current_layout = None
        return True, new_width, new_height

    def get_box_layout(self) -> Optional[LayoutGeometry]:
        """Current box layout, or None while the terminal is too small"""
        if self.current_layout is None and not self.too_small and self.validate_size():
            self.current_layout = calculate_box_layout(self.width, self.height, self.input_height)
        return self.current_layout

    def get_size(self) -> Tuple[int, int]:
        return self.width, self.height

    def is_too_small(self) -> bool:
        return self.too_small

    def validate_size(self, width: int = None, height: int = None) -> bool:
        """Validate if given or current size meets minimum requirements"""
        check_width = width if width is not None else self.width
        check_height = height if height is not None else self.height
        return check_width >= MIN_SCREEN_WIDTH and check_height >= MIN_SCREEN_HEIGHT

    def show_too_small_message(self):
        """Show message when terminal is too small"""
        try:
            self.stdscr.erase()

            max_y, max_x = self.stdscr.getmaxyx()
            start_y = max(0, max_y // 2 - 2)

            lines = [
                f"Terminal too small: {self.width}x{self.height}",
                f"Required: {MIN_SCREEN_WIDTH}x{MIN_SCREEN_HEIGHT}",
                "",
                "Resize or press Esc to quit",
            ]
            for offset, text in enumerate(lines):
                if start_y + offset >= max_y:
                    break
                text = text[:max(0, max_x - 1)]
                self.stdscr.addstr(start_y + offset, max(0, (max_x - len(text)) // 2), text)
            self.stdscr.refresh()

        except curses.error:
            # Extremely small terminals cannot even fit the message
            try:
                self.stdscr.addstr(0, 0, "Too small!")
                self.stdscr.refresh()
            except curses.error:
                pass

# =============================================================================
# COLOR MANAGEMENT
# =============================================================================

class ColorTheme(Enum):
    """Available color themes"""
    CLASSIC = "classic"
    DARK = "dark"
    NORD = "nord"           # Arctic-inspired theme
    MONOKAI = "monokai"     # High-contrast vibrant


# Style name -> (foreground, background, extra attributes); -1 is the terminal default
THEME_STYLES: Dict[ColorTheme, Dict[str, Tuple[int, int, int]]] = {
    ColorTheme.CLASSIC: {
        'user': (curses.COLOR_CYAN, -1, 0),
        'assistant': (curses.COLOR_GREEN, -1, 0),
        'system': (curses.COLOR_WHITE, -1, curses.A_DIM),
        'error': (curses.COLOR_RED, -1, 0),
        'warning': (curses.COLOR_YELLOW, -1, 0),
        'dim': (curses.COLOR_WHITE, -1, curses.A_DIM),
        'border': (curses.COLOR_WHITE, -1, curses.A_DIM),
        'focus': (curses.COLOR_YELLOW, -1, 0),
        'input_focus': (curses.COLOR_CYAN, -1, 0),
        'status': (curses.COLOR_WHITE, -1, curses.A_DIM),
        'help': (curses.COLOR_WHITE, curses.COLOR_BLACK, 0),
        'help_border': (curses.COLOR_CYAN, curses.COLOR_BLACK, 0),
    },
    ColorTheme.DARK: {
        'user': (curses.COLOR_WHITE, -1, 0),
        'assistant': (curses.COLOR_CYAN, -1, 0),
        'system': (curses.COLOR_MAGENTA, -1, 0),
        'error': (curses.COLOR_RED, -1, 0),
        'warning': (curses.COLOR_YELLOW, -1, 0),
        'dim': (curses.COLOR_WHITE, -1, curses.A_DIM),
        'border': (curses.COLOR_WHITE, -1, curses.A_DIM),
        'focus': (curses.COLOR_MAGENTA, -1, 0),
        'input_focus': (curses.COLOR_WHITE, -1, 0),
        'status': (curses.COLOR_WHITE, -1, curses.A_DIM),
        'help': (curses.COLOR_WHITE, curses.COLOR_BLACK, 0),
        'help_border': (curses.COLOR_MAGENTA, curses.COLOR_BLACK, 0),
    },
    ColorTheme.NORD: {
        'user': (curses.COLOR_WHITE, -1, 0),         # Snow storm white
        'assistant': (curses.COLOR_CYAN, -1, 0),     # Frost cyan
        'system': (curses.COLOR_BLUE, -1, 0),        # Polar night blue
        'error': (curses.COLOR_RED, -1, 0),
        'warning': (curses.COLOR_YELLOW, -1, 0),
        'dim': (curses.COLOR_BLUE, -1, curses.A_DIM),
        'border': (curses.COLOR_BLUE, -1, 0),
        'focus': (curses.COLOR_CYAN, -1, 0),
        'input_focus': (curses.COLOR_CYAN, -1, 0),
        'status': (curses.COLOR_BLUE, -1, 0),
        'help': (curses.COLOR_WHITE, curses.COLOR_BLUE, 0),
        'help_border': (curses.COLOR_CYAN, curses.COLOR_BLUE, 0),
    },
    ColorTheme.MONOKAI: {
        'user': (curses.COLOR_WHITE, -1, 0),         # Foreground white
        'assistant': (curses.COLOR_GREEN, -1, 0),    # String green
        'system': (curses.COLOR_YELLOW, -1, 0),      # Keyword yellow
        'error': (curses.COLOR_RED, -1, 0),          # Error red
        'warning': (curses.COLOR_YELLOW, -1, curses.A_BOLD),
        'dim': (curses.COLOR_WHITE, -1, curses.A_DIM),
        'border': (curses.COLOR_MAGENTA, -1, 0),     # Function magenta
        'focus': (curses.COLOR_GREEN, -1, 0),
        'input_focus': (curses.COLOR_MAGENTA, -1, curses.A_BOLD),
        'status': (curses.COLOR_WHITE, -1, curses.A_DIM),
        'help': (curses.COLOR_WHITE, curses.COLOR_BLACK, 0),
        'help_border': (curses.COLOR_GREEN, curses.COLOR_BLACK, 0),
    },
}

STYLE_NAMES: List[str] = list(THEME_STYLES[ColorTheme.CLASSIC])


class ColorManager:
    """Named text styles backed by curses color pairs, with theme switching"""

    def __init__(self, theme: ColorTheme = ColorTheme.CLASSIC):
        self.theme = theme
        self.colors_available = False
        # Pair 0 is reserved by curses
        self.pair_ids = {name: index + 1 for index, name in enumerate(STYLE_NAMES)}

    @classmethod
    def from_name(cls, theme_name: str) -> "ColorManager":
        """Build a manager for a theme name, falling back to classic"""
        try:
            return cls(ColorTheme(theme_name))
        except ValueError:
            return cls(ColorTheme.CLASSIC)

    def init_colors(self) -> bool:
        """Initialize color pairs for the current theme"""
        if not curses.has_colors():
            self.colors_available = False
            return False

        try:
            curses.start_color()
            curses.use_default_colors()
            for name, (fg, bg, _) in THEME_STYLES[self.theme].items():
                curses.init_pair(self.pair_ids[name], fg, bg)
            self.colors_available = True
            return True
        except curses.error:
            self.colors_available = False
            return False

    def get_attr(self, style: str, bold: bool = False) -> int:
        """Curses attribute for a style name; unknown styles render plain"""
        attr = curses.A_BOLD if bold else curses.A_NORMAL
        spec = THEME_STYLES[self.theme].get(style)
        if spec is None:
            return attr
        attr |= spec[2]
        if self.colors_available:
            attr |= curses.color_pair(self.pair_ids[style])
        return attr

# =============================================================================
# VIEWPORT SCROLLING
# =============================================================================

def chat_window_offset(total_lines: int, visible_lines: int, auto_scroll: bool, scrolled_back: int) -> int:
    """First visible chat line for a given scroll-back distance"""
    max_scroll = max(0, total_lines - visible_lines)
    if auto_scroll:
        return max_scroll
    return max(0, max_scroll - scrolled_back)


class ViewportScroller:
    """
    Scroll offsets for the input pane and the chat pane.

    The input pane keeps the cursor line visible with minimal movement. The
    chat pane counts how far the user has scrolled back from the newest line;
    while auto_scroll is on the view follows the end of the log.
    """

    def __init__(self):
        self.input_scroll = 0
        self.scrolled_back = 0
        self.auto_scroll = True

    # -------------------------------------------------------------------------
    # Input pane
    # -------------------------------------------------------------------------

    def update_input_scroll(self, cursor_line: int, visible_lines: int) -> int:
        """Adjust the input offset so cursor_line is inside the visible range"""
        if visible_lines <= 0:
            return self.input_scroll

        if cursor_line < self.input_scroll:
            self.input_scroll = cursor_line
        elif cursor_line >= self.input_scroll + visible_lines:
            self.input_scroll = cursor_line - visible_lines + 1

        self.input_scroll = max(0, self.input_scroll)
        return self.input_scroll

    def reset_input_scroll(self) -> None:
        self.input_scroll = 0

    # -------------------------------------------------------------------------
    # Chat pane
    # -------------------------------------------------------------------------

    def scroll_up(self, lines: int = 1) -> None:
        self.auto_scroll = False
        self.scrolled_back = min(SCROLL_BACK_LIMIT, self.scrolled_back + lines)

    def scroll_down(self, lines: int = 1) -> None:
        self.scrolled_back = max(0, self.scrolled_back - lines)
        if self.scrolled_back == 0:
            self.auto_scroll = True

    def page_up(self) -> None:
        self.scroll_up(CHAT_PAGE_SIZE)

    def page_down(self) -> None:
        if self.scrolled_back > CHAT_PAGE_SIZE:
            self.scroll_down(CHAT_PAGE_SIZE)
        else:
            self.scroll_to_bottom()

    def scroll_to_top(self) -> None:
        self.auto_scroll = False
        self.scrolled_back = SCROLL_BACK_LIMIT

    def scroll_to_bottom(self) -> None:
        self.scrolled_back = 0
        self.auto_scroll = True

    def chat_offset(self, total_lines: int, visible_lines: int) -> int:
        """Index of the first chat line to render"""
        return chat_window_offset(total_lines, visible_lines, self.auto_scroll, self.scrolled_back)

    def clamp_chat_scroll(self, total_lines: int, visible_lines: int) -> None:
        """Cap scrolled_back at the real maximum without moving the view"""
        max_scroll = max(0, total_lines - visible_lines)
        if self.scrolled_back > max_scroll:
            self.scrolled_back = max_scroll
            if self.scrolled_back == 0:
                self.auto_scroll = True
