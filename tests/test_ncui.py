"""Unit tests for frame building and key decoding."""
import curses

import pytest

from chatlog import Message, Role
from dispatch import Focus, Key, KeyEvent
from ncui import (
    HELP_LINES,
    ROLE_LABELS,
    THINKING_TEXT,
    Span,
    ViewSnapshot,
    build_frame,
    chat_lines,
    clip_to_width,
    decode_key,
    message_lines,
    printable,
    wrap_spans,
)
from session import SessionController


def snapshot(messages=(), input_text="", cursor=None, focus=Focus.INPUT, sending=False,
             last_error=None, auto_scroll=True, scrolled_back=0, input_scroll=0) -> ViewSnapshot:
    return ViewSnapshot(
        messages=tuple(messages),
        input_text=input_text,
        cursor=len(input_text) if cursor is None else cursor,
        input_scroll=input_scroll,
        auto_scroll=auto_scroll,
        scrolled_back=scrolled_back,
        focus=focus,
        sending=sending,
        last_error=last_error,
        status=" http://localhost:8080 | History: 0 | Connected"
    )


def row_text(row) -> str:
    return "".join(span.text for span in row)


class TestMessageLines:
    """Tests for message and chat line layout."""

    def test_every_role_has_a_label(self):
        """Test the role table is exhaustive."""
        assert set(ROLE_LABELS) == set(Role)

    def test_user_message_with_continuation(self):
        """Test the timestamp, bold label and indented continuation line."""
        message = Message.create(Role.USER, "first\nsecond", 1_700_000_000_000)
        lines = message_lines(message)

        assert lines[0] == [Span(f"{message.created_at} ", "dim"), Span("You: ", "user", bold=True),
                            Span("first", "user")]
        assert row_text(lines[1]) == " " * len(f"{message.created_at} You: ") + "second"

    def test_system_message_is_unlabelled(self):
        """Test banners."""
        assert message_lines(Message.banner("Connected")) == [[Span("Connected", "system")]]

    def test_wrap_spans_splits_and_merges(self):
        """Test wrapping a styled line at width 10."""
        rows = wrap_spans([Span("hello ", "user"), Span("world!", "assistant")], 10)
        assert rows == [[Span("hello ", "user"), Span("worl", "assistant")], [Span("d!", "assistant")]]

    def test_wrap_spans_empty_line(self):
        """Test that a blank separator line stays one row."""
        assert wrap_spans([], 10) == [[]]

    def test_chat_lines_spacing_thinking_and_error(self):
        """Test blank separators, the thinking line and the error notice."""
        view = snapshot(messages=[Message.banner("a"), Message.banner("b")], sending=True, last_error="boom")
        rows = [row_text(row) for row in chat_lines(view, 40)]
        assert rows == ["a", "", "b", "", THINKING_TEXT, "⚠ boom"]


class TestBuildFrame:
    """Tests for build_frame."""

    def test_panes_and_titles(self):
        """Test the normal input-focused frame."""
        frame = build_frame(snapshot(input_text="hello"), 80, 24)
        chat, message_input, status = frame.panes

        assert chat.title == " Chat [Tab=Focus] "
        assert chat.border_style == "border"
        assert message_input.title == " Message [Enter=Send, Alt+Enter=New line, F1=Help] "
        assert message_input.border_style == "input_focus"
        assert message_input.lines == [[Span("hello")]]
        assert status.border_style is None
        assert frame.cursor == (19, 6)

    def test_chat_focus_has_no_cursor(self):
        """Test the chat-focused frame."""
        frame = build_frame(snapshot(focus=Focus.CHAT), 80, 24)
        assert frame.panes[0].title == " Chat [FOCUSED - ↑↓=Scroll, Tab=Switch] "
        assert frame.panes[0].border_style == "focus"
        assert frame.panes[1].title == " Message [Tab=Focus] "
        assert frame.cursor is None

    def test_sending_view(self):
        """Test the dimmed input and thinking line while waiting."""
        frame = build_frame(snapshot(input_text="draft", sending=True), 80, 24)
        chat, message_input, _ = frame.panes

        assert message_input.title == " Waiting... "
        assert message_input.lines == [[Span("draft", "dim")]]
        assert row_text(chat.lines[-1]) == THINKING_TEXT
        assert frame.cursor is None

    def test_help_overlay(self):
        """Test the help pane on top of the frame."""
        frame = build_frame(snapshot(focus=Focus.HELP), 80, 24)
        help_pane = frame.panes[-1]

        assert len(frame.panes) == 4
        assert help_pane.title == " Help "
        assert help_pane.fill_style == "help"
        assert [row_text(row) for row in help_pane.lines] == HELP_LINES
        assert frame.cursor is None

    def test_auto_scroll_shows_newest_lines(self):
        """Test the chat window at the bottom of the log."""
        messages = [Message.banner(str(i)) for i in range(30)]
        frame = build_frame(snapshot(messages=messages), 80, 24)
        chat = frame.panes[0]

        assert frame.chat_total_lines == 60
        assert len(chat.lines) == chat.box.inner_height
        assert row_text(chat.lines[-2]) == "29"

    def test_scrolled_back_window(self):
        """Test the chat window after scrolling up."""
        messages = [Message.banner(str(i)) for i in range(30)]
        frame = build_frame(snapshot(messages=messages, auto_scroll=False, scrolled_back=2), 80, 24)
        assert row_text(frame.panes[0].lines[-2]) == "28"

    def test_wrapped_input_cursor_and_scroll(self):
        """Test the cursor on a wrapped, scrolled input."""
        text = "x" * 77 + "yy"
        frame = build_frame(snapshot(input_text=text), 80, 24)
        assert frame.panes[1].lines == [[Span("x" * 77)], [Span("yy")]]
        assert frame.cursor == (20, 3)

        scrolled = build_frame(snapshot(input_text=text, input_scroll=1), 80, 24)
        assert scrolled.panes[1].lines == [[Span("yy")]]
        assert scrolled.cursor == (19, 3)

    def test_too_small_raises(self):
        """Test the minimum size."""
        with pytest.raises(ValueError):
            build_frame(snapshot(), 10, 5)

    def test_capture_from_session(self):
        """Test taking a snapshot of a live session."""
        class Client:
            server_url = "http://localhost:8080"

        session = SessionController(Client(), watermark=0)
        session.buffer.set_text("typed")
        view = ViewSnapshot.capture(session, Focus.INPUT)

        assert view.input_text == "typed"
        assert view.cursor == 5
        assert view.sending is False
        assert view.status.endswith("Connected")


class TestDecodeKey:
    """Tests for decode_key."""

    @pytest.mark.parametrize("raw, expected", [
        ("a", KeyEvent(Key.CHAR, "a")),
        ("\r", KeyEvent(Key.ENTER)),
        ("\n", KeyEvent(Key.ENTER, ctrl=True)),
        ("\t", KeyEvent(Key.TAB)),
        ("\x7f", KeyEvent(Key.BACKSPACE)),
        ("\x08", KeyEvent(Key.BACKSPACE)),
        ("\x1b", KeyEvent(Key.ESCAPE)),
        ("\x16", KeyEvent(Key.CHAR, "v", ctrl=True)),
        ("\x03", KeyEvent(Key.CHAR, "c", ctrl=True)),
        ("你", KeyEvent(Key.CHAR, "你")),
    ])
    def test_characters(self, raw, expected):
        """Test decoding character input."""
        assert decode_key(raw) == expected

    def test_nul_is_ignored(self):
        """Test Ctrl+Space."""
        assert decode_key("\x00") is None

    def test_alt_prefix(self):
        """Test characters after ESC."""
        assert decode_key("\r", alt=True) == KeyEvent(Key.ENTER, alt=True)
        assert decode_key("x", alt=True) == KeyEvent(Key.CHAR, "x", alt=True)

    @pytest.mark.parametrize("raw, expected", [
        (curses.KEY_UP, Key.UP),
        (curses.KEY_NPAGE, Key.PAGE_DOWN),
        (curses.KEY_F1, Key.F1),
        (curses.KEY_DC, Key.DELETE),
        (curses.KEY_RESIZE, Key.RESIZE),
    ])
    def test_function_keys(self, raw, expected):
        """Test curses key codes."""
        assert decode_key(raw) == KeyEvent(expected)

    def test_back_tab(self):
        """Test Shift+Tab."""
        assert decode_key(curses.KEY_BTAB) == KeyEvent(Key.TAB, shift=True)

    def test_modified_arrows_from_keyname(self):
        """Test xterm modifier suffixes."""
        assert decode_key(566, keyname="kUP5") == KeyEvent(Key.UP, ctrl=True)
        assert decode_key(525, keyname="kDN3") == KeyEvent(Key.DOWN, alt=True)
        assert decode_key(600, keyname="kRIT2") == KeyEvent(Key.RIGHT, shift=True)

    def test_unknown_code(self):
        """Test codes the client ignores."""
        assert decode_key(999, keyname="kFOO") is None
        assert decode_key(999) is None


class TestTextCleanup:
    """Tests for printable and clip_to_width."""

    def test_printable(self):
        """Test replacing tabs and control characters."""
        assert printable("a\tb\x01") == "a b?"

    def test_clip_to_width(self):
        """Test clipping by display cells."""
        assert clip_to_width("你好", 3) == "你"
        assert clip_to_width("hello", 10) == "hello"
        assert clip_to_width("hello", 0) == ""
