"""Unit tests for focus handling and key routing."""
import threading

import pyperclip
import pytest

from chatapi import ChatReply
from dispatch import ClipboardError, EventDispatcher, Focus, Key, KeyEvent, read_clipboard
from session import SessionController
from textbuf import CommandHistory

WIDTH = 40


class GatedClient:
    """Chat client double that holds each reply until released."""

    server_url = "http://localhost:8080"

    def __init__(self):
        self.gate = threading.Event()
        self.sent = []

    def send_message(self, text):
        self.sent.append(text)
        self.gate.wait(5)
        return ChatReply("ok")

    def fetch_messages(self, since):
        return []


def char(c, **mods) -> KeyEvent:
    return KeyEvent(Key.CHAR, c, **mods)


@pytest.fixture
def client():
    client = GatedClient()
    yield client
    client.gate.set()


@pytest.fixture
def dispatcher(client):
    session = SessionController(client, watermark=0, command_history=CommandHistory(["first", "second"]))
    return EventDispatcher(session, clipboard=lambda: "pasted\r\ntext")


def type_text(dispatcher, text):
    for c in text:
        dispatcher.handle(char(c), WIDTH)


class TestFocus:
    """Tests for focus and help modality."""

    def test_tab_toggles_focus(self, dispatcher):
        """Test switching between input and chat."""
        dispatcher.handle(KeyEvent(Key.TAB), WIDTH)
        assert dispatcher.focus == Focus.CHAT
        dispatcher.handle(KeyEvent(Key.TAB), WIDTH)
        assert dispatcher.focus == Focus.INPUT

    def test_help_closes_on_any_key_without_acting(self, dispatcher):
        """Test that the key closing help is not applied."""
        dispatcher.handle(KeyEvent(Key.F1), WIDTH)
        assert dispatcher.focus == Focus.HELP

        dispatcher.handle(char("x"), WIDTH)
        assert dispatcher.focus == Focus.INPUT
        assert dispatcher.session.buffer.text == ""

    def test_escape_in_help_only_closes_help(self, dispatcher):
        """Test that exit keys close help first."""
        dispatcher.toggle_help()
        dispatcher.handle(KeyEvent(Key.ESCAPE), WIDTH)
        assert dispatcher.quit_requested is False
        assert dispatcher.focus == Focus.INPUT

    def test_question_mark_types_in_input(self, dispatcher):
        """Test that '?' is text while the input has focus."""
        dispatcher.handle(char("?"), WIDTH)
        assert dispatcher.session.buffer.text == "?"
        assert dispatcher.focus == Focus.INPUT

    def test_question_mark_opens_help_from_chat(self, dispatcher):
        """Test '?' in the chat pane."""
        dispatcher.toggle_focus()
        dispatcher.handle(char("?"), WIDTH)
        assert dispatcher.focus == Focus.HELP

    @pytest.mark.parametrize("event", [KeyEvent(Key.ESCAPE), char("c", ctrl=True), char("C", ctrl=True)])
    def test_exit_keys(self, dispatcher, event):
        """Test Escape and Ctrl+C."""
        assert dispatcher.handle(event, WIDTH) is True
        assert dispatcher.quit_requested is True


class TestInputKeys:
    """Tests for keys routed to the input buffer."""

    def test_typing_and_editing(self, dispatcher):
        """Test character insertion, backspace and arrows."""
        type_text(dispatcher, "helo")
        dispatcher.handle(KeyEvent(Key.LEFT), WIDTH)
        dispatcher.handle(char("l"), WIDTH)
        dispatcher.handle(KeyEvent(Key.END), WIDTH)
        dispatcher.handle(KeyEvent(Key.BACKSPACE), WIDTH)
        assert dispatcher.session.buffer.text == "hell"

    def test_backspace_on_empty_buffer(self, dispatcher):
        """Test a no-op edit."""
        assert dispatcher.handle(KeyEvent(Key.BACKSPACE), WIDTH) is False

    def test_enter_submits(self, dispatcher, client):
        """Test sending with Enter."""
        type_text(dispatcher, "hi")
        assert dispatcher.handle(KeyEvent(Key.ENTER), WIDTH) is True
        assert dispatcher.session.is_sending
        assert dispatcher.session.buffer.text == ""
        client.gate.set()
        dispatcher.session.wait_for_exchange(5)
        assert client.sent == ["hi"]

    @pytest.mark.parametrize("event", [KeyEvent(Key.ENTER, alt=True), KeyEvent(Key.ENTER, shift=True)])
    def test_modified_enter_inserts_newline(self, dispatcher, event):
        """Test Alt+Enter and Shift+Enter."""
        type_text(dispatcher, "a")
        dispatcher.handle(event, WIDTH)
        type_text(dispatcher, "b")
        assert dispatcher.session.buffer.text == "a\nb"
        assert dispatcher.session.is_idle

    def test_ctrl_s_submits(self, dispatcher, client):
        """Test the alternate send chord."""
        type_text(dispatcher, "yo")
        assert dispatcher.handle(char("s", ctrl=True), WIDTH) is True
        client.gate.set()
        dispatcher.session.wait_for_exchange(5)
        assert client.sent == ["yo"]

    def test_keys_ignored_while_sending(self, dispatcher):
        """Test that only exit keys work during an exchange."""
        type_text(dispatcher, "hi")
        dispatcher.handle(KeyEvent(Key.ENTER), WIDTH)

        assert dispatcher.handle(char("x"), WIDTH) is False
        assert dispatcher.handle(KeyEvent(Key.TAB), WIDTH) is False
        assert dispatcher.session.buffer.text == ""
        assert dispatcher.focus == Focus.INPUT

        dispatcher.handle(char("c", ctrl=True), WIDTH)
        assert dispatcher.quit_requested is True

    def test_history_recall(self, dispatcher):
        """Test Ctrl+Up and Ctrl+Down."""
        type_text(dispatcher, "draft")
        dispatcher.handle(KeyEvent(Key.UP, ctrl=True), WIDTH)
        assert dispatcher.session.buffer.text == "second"
        dispatcher.handle(KeyEvent(Key.UP, ctrl=True), WIDTH)
        assert dispatcher.session.buffer.text == "first"
        dispatcher.handle(KeyEvent(Key.DOWN, ctrl=True), WIDTH)
        dispatcher.handle(KeyEvent(Key.DOWN, ctrl=True), WIDTH)
        assert dispatcher.session.buffer.text == "draft"

    def test_editing_recalled_entry_resets_navigation(self, dispatcher):
        """Test that an edit makes the recalled text the new draft."""
        dispatcher.handle(KeyEvent(Key.UP, ctrl=True), WIDTH)
        dispatcher.handle(char("!"), WIDTH)
        assert dispatcher.session.command_history.navigating is False
        assert dispatcher.session.buffer.text == "second!"

    def test_paste_normalizes_line_endings(self, dispatcher):
        """Test Ctrl+V."""
        dispatcher.handle(char("v", ctrl=True), WIDTH)
        assert dispatcher.session.buffer.text == "pasted\ntext"

    def test_clipboard_error_sets_notice(self, dispatcher):
        """Test a failed paste."""
        def broken():
            raise ClipboardError("no clipboard")

        dispatcher.clipboard = broken
        assert dispatcher.paste() is False
        assert dispatcher.session.last_error == "Clipboard error: no clipboard"
        assert dispatcher.session.buffer.text == ""

    def test_alt_char_is_not_inserted(self, dispatcher):
        """Test that Alt+letter is not text."""
        assert dispatcher.handle(char("x", alt=True), WIDTH) is False
        assert dispatcher.session.buffer.text == ""


class TestChatKeys:
    """Tests for scrolling keys."""

    def test_arrows_scroll_in_chat_focus(self, dispatcher):
        """Test Up and Down with chat focus."""
        dispatcher.toggle_focus()
        dispatcher.handle(KeyEvent(Key.UP), WIDTH)
        dispatcher.handle(KeyEvent(Key.UP), WIDTH)
        dispatcher.handle(KeyEvent(Key.DOWN), WIDTH)
        assert dispatcher.session.scroller.scrolled_back == 1

    def test_home_and_end(self, dispatcher):
        """Test jumping to the oldest and newest lines."""
        dispatcher.toggle_focus()
        dispatcher.handle(KeyEvent(Key.HOME), WIDTH)
        assert dispatcher.session.scroller.auto_scroll is False
        dispatcher.handle(KeyEvent(Key.END), WIDTH)
        assert dispatcher.session.scroller.auto_scroll is True

    def test_page_keys_work_from_input(self, dispatcher):
        """Test PgUp and PgDn regardless of focus."""
        dispatcher.handle(KeyEvent(Key.PAGE_UP), WIDTH)
        assert dispatcher.session.scroller.scrolled_back == 10
        dispatcher.handle(KeyEvent(Key.PAGE_DOWN), WIDTH)
        assert dispatcher.session.scroller.auto_scroll is True

    def test_alt_arrows_scroll_from_input(self, dispatcher):
        """Test Alt+Up with input focus."""
        dispatcher.handle(KeyEvent(Key.UP, alt=True), WIDTH)
        assert dispatcher.session.scroller.scrolled_back == 1

    def test_ctrl_v_ignored_in_chat(self, dispatcher):
        """Test that paste only applies to the input pane."""
        dispatcher.toggle_focus()
        assert dispatcher.handle(char("v", ctrl=True), WIDTH) is False
        assert dispatcher.session.buffer.text == ""


class TestLogChords:
    """Tests for Ctrl+L and Ctrl+D."""

    def test_ctrl_l_clears_chat(self, dispatcher):
        """Test clearing the display."""
        dispatcher.session.restore_history()
        dispatcher.handle(char("l", ctrl=True), WIDTH)
        assert [m.content for m in dispatcher.session.log] == ["Chat cleared. Connected to http://localhost:8080"]

    def test_ctrl_d_without_history(self, dispatcher):
        """Test deleting history when it is disabled."""
        dispatcher.handle(char("d", ctrl=True), WIDTH)
        assert dispatcher.session.last_error == "History is disabled (--no-history)"


class TestReadClipboard:
    """Tests for the pyperclip wrapper."""

    def test_empty_clipboard(self, monkeypatch):
        """Test that an empty clipboard is an error."""
        monkeypatch.setattr(pyperclip, "paste", lambda: "")
        with pytest.raises(ClipboardError):
            read_clipboard()

    def test_unavailable_clipboard(self, monkeypatch):
        """Test a missing clipboard mechanism."""
        def fail():
            raise pyperclip.PyperclipException("no mechanism")

        monkeypatch.setattr(pyperclip, "paste", fail)
        with pytest.raises(ClipboardError, match="no mechanism"):
            read_clipboard()

    def test_clipboard_text(self, monkeypatch):
        """Test a successful read."""
        monkeypatch.setattr(pyperclip, "paste", lambda: "abc")
        assert read_clipboard() == "abc"
