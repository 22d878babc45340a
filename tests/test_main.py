"""Unit tests for configuration, argument handling and startup."""
import argparse
import json

import pytest

from history import HISTORY_KEY
from main import (
    ApplicationConfig,
    ConfigError,
    DebugLogger,
    config_dir,
    history_key_for,
    initialize_application,
    main,
    port_number,
    resolve_server,
    setup_argument_parser,
)


@pytest.fixture
def config(tmp_path):
    return ApplicationConfig(tmp_path / "config.json")


class TestApplicationConfig:
    """Tests for ApplicationConfig."""

    def test_defaults(self, config):
        """Test values without a config file."""
        assert config.load() is False
        assert config.get("server.host") == "localhost"
        assert config.get("server.port") == 8080
        assert config.get("history.max_messages") == 100
        assert config.get("server.missing", "fallback") == "fallback"

    def test_file_overlays_defaults(self, config):
        """Test merging a partial config file."""
        config.config_file.write_text(json.dumps({"server": {"port": 9000}, "ui": {"theme": "nord"}}),
                                      encoding="utf-8")
        assert config.load() is True
        assert config.get("server.port") == 9000
        assert config.get("server.host") == "localhost"
        assert config.get("ui.theme") == "nord"
        assert config.get("ui.input_height") == 5

    @pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
    def test_malformed_file(self, config, content):
        """Test unreadable config files."""
        config.config_file.write_text(content, encoding="utf-8")
        with pytest.raises(ConfigError):
            config.load()

    def test_set_and_save(self, config):
        """Test writing values back."""
        config.set("server.host", "chat.local")
        config.set("extra.nested.value", 1)
        assert config.save() is True

        data = json.loads(config.config_file.read_text(encoding="utf-8"))
        assert data["server"]["host"] == "chat.local"
        assert data["extra"]["nested"]["value"] == 1

    @pytest.mark.parametrize("value", ["big", None, [5], {"rows": 5}, True, 0, -3, "nan"])
    def test_unusable_number_falls_back_to_default(self, config, value):
        """Test a numeric setting holding the wrong type or a non-positive value."""
        config.config_file.write_text(json.dumps({"ui": {"input_height": value}}), encoding="utf-8")
        config.load()
        assert config.get_number("ui.input_height", int) == 5
        assert config.invalid_numbers() == ["ui.input_height"]

    def test_numeric_strings_are_accepted(self, config):
        """Test numbers written as strings."""
        config.set("server.chat_timeout", "30")
        config.set("history.max_messages", "20")
        assert config.get_number("server.chat_timeout") == 30.0
        assert config.get_number("history.max_messages", int) == 20
        assert config.invalid_numbers() == []


class TestResolveServer:
    """Tests for host and port precedence."""

    def test_defaults(self, config):
        """Test with nothing set."""
        assert resolve_server(None, None, config, {}) == ("localhost", 8080)

    def test_config_over_defaults(self, config):
        """Test config file values."""
        config.set("server.host", "saved.host")
        config.set("server.port", 7000)
        assert resolve_server(None, None, config, {}) == ("saved.host", 7000)

    def test_environment_over_config(self, config):
        """Test HANK_HOST and HANK_PORT."""
        config.set("server.host", "saved.host")
        environ = {"HANK_HOST": "env.host", "HANK_PORT": "7100"}
        assert resolve_server(None, None, config, environ) == ("env.host", 7100)

    def test_command_line_over_environment(self, config):
        """Test that arguments win."""
        environ = {"HANK_HOST": "env.host", "HANK_PORT": "7100"}
        assert resolve_server("cli.host", 7200, config, environ) == ("cli.host", 7200)

    def test_invalid_environment_port_ignored(self, config):
        """Test a malformed HANK_PORT."""
        config.set("server.port", 7000)
        assert resolve_server(None, None, config, {"HANK_PORT": "abc"}) == ("localhost", 7000)


class TestArguments:
    """Tests for argument parsing helpers."""

    def test_port_number(self):
        """Test port validation."""
        assert port_number("8080") == 8080
        with pytest.raises(argparse.ArgumentTypeError):
            port_number("0")
        with pytest.raises(argparse.ArgumentTypeError):
            port_number("http")

    def test_parser(self):
        """Test the command line options."""
        args = setup_argument_parser().parse_args(["-H", "h", "-p", "9000", "--no-history", "--session", "s"])
        assert (args.host, args.port, args.no_history, args.session) == ("h", 9000, True, "s")
        assert args.debug is False

    def test_history_key_for(self):
        """Test session name validation."""
        assert history_key_for(None) == HISTORY_KEY
        assert history_key_for("work") == "sessions/work"
        with pytest.raises(ConfigError):
            history_key_for("../escape")

    def test_config_dir_follows_xdg(self, tmp_path):
        """Test the XDG base directory."""
        assert config_dir({"XDG_CONFIG_HOME": str(tmp_path)}) == tmp_path / "hank-tui"


class TestDebugLogger:
    """Tests for DebugLogger."""

    def test_writes_categorized_lines(self, tmp_path):
        """Test the log line format."""
        log_file = tmp_path / "logs" / "debug.log"
        logger = DebugLogger(True, log_file)
        logger.debug("hello", "SESSION")
        logger.error("bad", "CHATAPI")

        lines = log_file.read_text(encoding="utf-8").splitlines()
        assert lines[1].startswith("--- Debug session started")
        assert lines[2].endswith("SESSION: hello")
        assert lines[3].endswith("CHATAPI: ERROR: bad")

    def test_disabled_writes_nothing(self, tmp_path):
        """Test a disabled logger."""
        log_file = tmp_path / "debug.log"
        DebugLogger(False, log_file).debug("hello")
        assert not log_file.exists()


class TestInitializeApplication:
    """Tests for startup wiring."""

    def test_persists_resolved_server(self, tmp_path):
        """Test that the chosen host and port are saved to the config file."""
        environ = {"XDG_CONFIG_HOME": str(tmp_path)}
        args = setup_argument_parser().parse_args(["-H", "chat.local", "-p", "9000"])
        app = initialize_application(args, environ)

        assert app.session.server_url == "http://chat.local:9000"
        assert app.session.history_enabled
        data = json.loads((tmp_path / "hank-tui" / "config.json").read_text(encoding="utf-8"))
        assert data["server"]["host"] == "chat.local"
        assert data["server"]["port"] == 9000

    def test_no_history(self, tmp_path):
        """Test --no-history."""
        args = setup_argument_parser().parse_args(["--no-history"])
        app = initialize_application(args, {"XDG_CONFIG_HOME": str(tmp_path)})
        assert app.session.store is None

    def test_named_session(self, tmp_path):
        """Test --session."""
        args = setup_argument_parser().parse_args(["--session", "work"])
        app = initialize_application(args, {"XDG_CONFIG_HOME": str(tmp_path)})
        assert app.session.history_key == "sessions/work"

    def test_invalid_session_name_exits_with_error(self, monkeypatch, tmp_path, capsys):
        """Test the exit code for a bad session name."""
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        monkeypatch.setattr("main.init", lambda **kwargs: None)
        assert main(["--session", "../x"]) == 2
        assert "Invalid session name" in capsys.readouterr().out

    def test_list_sessions(self, monkeypatch, tmp_path, capsys):
        """Test --list-sessions."""
        sessions = tmp_path / "hank-tui" / "sessions"
        sessions.mkdir(parents=True)
        (sessions / "work.json").write_text("{}", encoding="utf-8")
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        monkeypatch.setattr("main.init", lambda **kwargs: None)

        assert main(["--list-sessions"]) == 0
        assert "work" in capsys.readouterr().out

    def test_wrong_typed_settings_use_defaults(self, tmp_path, capsys):
        """Test startup with unusable numeric settings in the config file."""
        directory = tmp_path / "hank-tui"
        directory.mkdir()
        (directory / "config.json").write_text(json.dumps({
            "server": {"chat_timeout": "soon", "poll_interval": None},
            "ui": {"input_height": "big", "refresh_rate": [0.1]},
            "history": {"max_messages": {"n": 1}}
        }), encoding="utf-8")

        args = setup_argument_parser().parse_args([])
        app = initialize_application(args, {"XDG_CONFIG_HOME": str(tmp_path)})

        assert app.session.client.chat_timeout == 120.0
        assert app.session.poll_interval == 2.0
        assert app.session.history_limit == 100
        assert "Ignoring ui.input_height='big'" in capsys.readouterr().out
