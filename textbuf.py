#!/usr/bin/env python3
"""
Hank TUI Client - Input Text Buffer (textbuf.py)
Multi-line input buffer with character-wrapped layout and cursor arithmetic.

Display and cursor math are both derived from one layout pass, so the
wrapped text on screen and the blinking cursor always agree on which cell a
character occupies.
"""

from typing import List, Optional, Tuple

from wcwidth import wcwidth

# =============================================================================
# WRAP LAYOUT
# =============================================================================

def char_width(ch: str) -> int:
    """Display width of one character in terminal cells (0, 1 or 2)"""
    if ch == '\n':
        return 0
    width = wcwidth(ch)
    if width < 0:
        # Control characters are painted as a single placeholder cell
        return 1
    return width


def _layout(text: str, width: int) -> Tuple[List[Tuple[int, int]], List[Tuple[int, int]]]:
    """Cursor positions and character cells for text wrapped at width"""
    cursors = []
    cells = []
    line = 0
    col = 0

    for ch in text:
        # A cursor before a wrapped character stays at the end of the old line
        cursors.append((line, col))
        if ch == '\n':
            cells.append((line, col))
            line += 1
            col = 0
            continue

        ch_width = char_width(ch)
        if width > 0 and col > 0 and col + ch_width > width:
            line += 1
            col = 0

        cells.append((line, col))
        col += ch_width

    cursors.append((line, col))
    return cursors, cells


def layout_positions(text: str, width: int) -> List[Tuple[int, int]]:
    """
    Visual (line, column) for every cursor position in text.

    Entry i is where a cursor standing before character i is drawn; the last
    entry is the end-of-text position, so the list has len(text) + 1 items.
    A character that would overflow the width is moved to the start of a new
    visual line before it is placed (wrap-before, not word-wrap), but the
    cursor in front of it is still drawn after the last glyph of the old
    line, so a line end can sit at column == width. A width of zero or less
    disables wrapping.
    """
    return _layout(text, width)[0]


def char_cells(text: str, width: int) -> List[Tuple[int, int]]:
    """Visual (line, column) where each character of text is drawn"""
    return _layout(text, width)[1]


def wrap_lines(text: str, width: int) -> List[str]:
    """Split text into visual lines exactly as char_cells places them"""
    cursors, cells = _layout(text, width)
    lines = [""] * (cursors[-1][0] + 1)

    for ch, (line, _) in zip(text, cells):
        if ch != '\n':
            lines[line] += ch

    return lines


def display_width(text: str) -> int:
    """Total cell width of a single-line string"""
    return sum(char_width(ch) for ch in text)

# =============================================================================
# TEXT BUFFER
# =============================================================================

class TextBuffer:
    """
    Multi-line input text with a cursor held as a character offset.

    The cursor always lies in [0, len(text)]. Python strings are indexed by
    code point, so every cursor value is a valid character boundary. All edits
    are total: deleting or moving past an edge is a no-op.
    """

    def __init__(self, text: str = ""):
        self.text = text
        self.cursor = len(text)

    def __len__(self) -> int:
        return len(self.text)

    # -------------------------------------------------------------------------
    # Editing
    # -------------------------------------------------------------------------

    def insert(self, char: str) -> None:
        """Insert a single character at the cursor"""
        self.text = self.text[:self.cursor] + char + self.text[self.cursor:]
        self.cursor += len(char)

    def insert_text(self, text: str) -> None:
        """Insert a string at the cursor, normalizing line endings"""
        text = text.replace('\r\n', '\n').replace('\r', '\n')
        self.text = self.text[:self.cursor] + text + self.text[self.cursor:]
        self.cursor += len(text)

    def delete_before_cursor(self) -> bool:
        """Backspace"""
        if self.cursor == 0:
            return False
        self.text = self.text[:self.cursor - 1] + self.text[self.cursor:]
        self.cursor -= 1
        return True

    def delete_at_cursor(self) -> bool:
        """Delete"""
        if self.cursor >= len(self.text):
            return False
        self.text = self.text[:self.cursor] + self.text[self.cursor + 1:]
        return True

    def clear(self) -> None:
        self.text = ""
        self.cursor = 0

    def set_text(self, text: str) -> None:
        """Replace the whole buffer and park the cursor at the end"""
        self.text = text
        self.cursor = len(text)

    # -------------------------------------------------------------------------
    # Horizontal movement
    # -------------------------------------------------------------------------

    def move_left(self) -> bool:
        if self.cursor == 0:
            return False
        self.cursor -= 1
        return True

    def move_right(self) -> bool:
        if self.cursor >= len(self.text):
            return False
        self.cursor += 1
        return True

    def move_to_line_start(self, width: int) -> None:
        """
        Move in front of the first character drawn on the cursor's visual line.

        On a wrap-induced line that cursor is drawn after the last glyph of
        the previous line, the same spot where typing inserts before the
        line's first character.
        """
        cursors, cells = _layout(self.text, width)
        line = cursors[self.cursor][0]
        for index, (cell_line, _) in enumerate(cells):
            if cell_line == line:
                self.cursor = index
                return
            if cell_line > line:
                break
        # Only the empty line after a trailing newline holds no character
        self.cursor = _line_span(cursors, line)[0]

    def move_to_line_end(self, width: int) -> None:
        """
        Move to the last position of the visual line holding the cursor.

        For a line closed by a newline this is just before the newline; for a
        wrapped line it is after the last glyph.
        """
        positions = layout_positions(self.text, width)
        _, last = _line_span(positions, positions[self.cursor][0])
        self.cursor = last

    # -------------------------------------------------------------------------
    # Vertical movement
    # -------------------------------------------------------------------------

    def move_up(self, width: int) -> bool:
        """Move to the previous visual line, keeping the visual column"""
        positions = layout_positions(self.text, width)
        line, col = positions[self.cursor]
        if line == 0:
            return False
        self.cursor = _column_target(positions, line - 1, col)
        return True

    def move_down(self, width: int) -> bool:
        """Move to the next visual line, keeping the visual column"""
        positions = layout_positions(self.text, width)
        line, col = positions[self.cursor]
        if line >= positions[-1][0]:
            return False
        self.cursor = _column_target(positions, line + 1, col)
        return True

    # -------------------------------------------------------------------------
    # Layout queries
    # -------------------------------------------------------------------------

    def cursor_line_col(self, width: int) -> Tuple[int, int]:
        """Visual (line, column) of the cursor at the given width"""
        return layout_positions(self.text, width)[self.cursor]

    def total_lines(self, width: int) -> int:
        """Number of visual lines at the given width (at least one)"""
        return layout_positions(self.text, width)[-1][0] + 1

    def render_wrapped(self, width: int) -> str:
        """Text with a newline inserted at every wrap break"""
        return '\n'.join(wrap_lines(self.text, width))


def _line_span(positions: List[Tuple[int, int]], line: int) -> Tuple[int, int]:
    """First and last cursor index drawn on a visual line"""
    first = None
    last = None
    for index, (pos_line, _) in enumerate(positions):
        if pos_line == line:
            if first is None:
                first = index
            last = index
        elif pos_line > line:
            break
    # Every visual line owns at least one cursor position
    return first, last


def _column_target(positions: List[Tuple[int, int]], line: int, target_col: int) -> int:
    """Last index on line whose column does not pass target_col, else the line's first index"""
    first, last = _line_span(positions, line)
    target = first
    for index in range(first, last + 1):
        if positions[index][1] > target_col:
            break
        target = index
    return target

# =============================================================================
# COMMAND HISTORY
# =============================================================================

class CommandHistory:
    """
    Previously submitted messages with an optional navigation index.

    Navigation starts from the newest entry. The text being edited when
    navigation began is kept as the draft and handed back when the user walks
    past either end of the history.
    """

    def __init__(self, entries: Optional[List[str]] = None):
        self.entries: List[str] = list(entries or [])
        self.index: Optional[int] = None
        self.draft = ""

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def navigating(self) -> bool:
        return self.index is not None

    def record(self, text: str) -> None:
        if text:
            self.entries.append(text)
        self.reset()

    def reset(self) -> None:
        """Forget the navigation index (called on every edit and submit)"""
        self.index = None
        self.draft = ""

    def previous(self, current: str) -> Optional[str]:
        """Step to an older entry; returns the text to load or None"""
        if not self.entries:
            return None

        if self.index is None:
            self.draft = current
            self.index = len(self.entries) - 1
            return self.entries[self.index]

        if self.index == 0:
            return self._leave()

        self.index -= 1
        return self.entries[self.index]

    def next(self, current: str) -> Optional[str]:
        """Step to a newer entry; returns the text to load or None"""
        if self.index is None:
            return None

        if self.index >= len(self.entries) - 1:
            return self._leave()

        self.index += 1
        return self.entries[self.index]

    def _leave(self) -> str:
        draft = self.draft
        self.reset()
        return draft
