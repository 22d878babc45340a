#!/usr/bin/env python3
"""
Hank TUI Client - Main Application Entry Point (main.py)

Argument parsing, configuration precedence, debug logging and startup
checks. All modules live in the root directory with a flat file structure.
"""

import argparse
import json
import os
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from colorama import Fore, Style, init

from chatapi import ChatClient, DEFAULT_HOST, DEFAULT_PORT, build_server_url
from chatlog import ChatLog
from dispatch import EventDispatcher
from history import HISTORY_KEY, SESSION_NAME_PATTERN, HistoryStore, session_key
from ncui import NCursesUIController, TerminalError
from session import SessionController
from uilib import ColorManager, ViewportScroller, MIN_SCREEN_HEIGHT, MIN_SCREEN_WIDTH

# Configuration constants
APP_NAME = "hank-tui"
CONFIG_FILE_NAME = "config.json"
DEBUG_LOG_FILE = "debug.log"
ENV_HOST = "HANK_HOST"
ENV_PORT = "HANK_PORT"

# Numeric settings and the type each one is read as
NUMERIC_SETTINGS = {
    "server.chat_timeout": float,
    "server.poll_timeout": float,
    "server.poll_interval": float,
    "ui.refresh_rate": float,
    "ui.auto_save_interval": float,
    "ui.input_height": int,
    "history.max_messages": int,
}


class ConfigError(Exception):
    """Configuration file or command line value is unusable"""


def config_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Per-user configuration directory ($XDG_CONFIG_HOME/hank-tui)"""
    environ = os.environ if environ is None else environ
    base = environ.get("XDG_CONFIG_HOME")
    if base:
        return Path(base) / APP_NAME
    return Path.home() / ".config" / APP_NAME

# =============================================================================
# DEBUG LOGGING
# =============================================================================

class DebugLogger:
    """Simple debug logging functionality"""

    def __init__(self, enabled: bool = False, log_file: Path = Path(DEBUG_LOG_FILE)):
        self.enabled = enabled
        self.log_file = Path(log_file)

        if enabled:
            self._initialize_log_file()

    def _initialize_log_file(self):
        """Initialize debug log file"""
        try:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_file, 'a', encoding='utf-8') as f:
                f.write(f"\n--- Debug session started: {datetime.now().isoformat()} ---\n")
        except OSError:
            pass

    def debug(self, message: str, category: str = "MAIN"):
        """Log debug message"""
        if not self.enabled:
            return

        try:
            timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
            with open(self.log_file, 'a', encoding='utf-8') as f:
                f.write(f"[{timestamp}] {category}: {message}\n")
        except OSError:
            pass

    def error(self, message: str, category: str = "ERROR"):
        """Log error message"""
        self.debug(f"ERROR: {message}", category)

    def system(self, message: str):
        """Log system message"""
        self.debug(message, "SYSTEM")

# =============================================================================
# CONFIGURATION
# =============================================================================

class ApplicationConfig:
    """Configuration with built-in defaults overlaid by a JSON file"""

    def __init__(self, config_file: Path):
        self.config_file = Path(config_file)
        self.defaults = self._load_default_config()
        self.config_data = self._load_default_config()

    def _load_default_config(self) -> Dict[str, Any]:
        return {
            "server": {
                "host": DEFAULT_HOST,
                "port": DEFAULT_PORT,
                "chat_timeout": 120,
                "poll_timeout": 2,
                "poll_interval": 2
            },
            "ui": {
                "refresh_rate": 0.1,
                "input_height": 5,
                "theme": "classic",
                "auto_save_interval": 30
            },
            "history": {
                "enabled": True,
                "max_messages": 100
            }
        }

    def load(self) -> bool:
        """Overlay the config file onto the defaults; False if there is no file"""
        if not self.config_file.exists():
            return False
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError(f"Cannot read {self.config_file}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{self.config_file} does not hold a JSON object")
        _merge(self.config_data, data)
        return True

    def save(self) -> bool:
        """Write the current configuration back to the config file"""
        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, 'w', encoding='utf-8') as f:
                json.dump(self.config_data, f, indent=2)
            return True
        except OSError:
            return False

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation"""
        value = self.config_data
        for k in key_path.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key_path: str, value: Any):
        """Set configuration value using dot notation"""
        keys = key_path.split('.')
        section = self.config_data
        for k in keys[:-1]:
            if not isinstance(section.get(k), dict):
                section[k] = {}
            section = section[k]
        section[keys[-1]] = value

    def get_number(self, key_path: str, kind=float):
        """Positive number at key_path, falling back to the built-in default"""
        number = _positive_number(self.get(key_path), kind)
        if number is None:
            return kind(self._default(key_path))
        return number

    def invalid_numbers(self) -> List[str]:
        """Numeric settings whose configured value cannot be used"""
        return [key for key, kind in NUMERIC_SETTINGS.items()
                if _positive_number(self.get(key), kind) is None]

    def _default(self, key_path: str) -> Any:
        value = self.defaults
        for k in key_path.split('.'):
            value = value[k]
        return value


def _positive_number(value: Any, kind):
    """value as kind if it is a positive number, else None"""
    if isinstance(value, bool):
        return None
    try:
        number = kind(value)
    except (TypeError, ValueError, OverflowError):
        return None
    # NaN fails this comparison too
    if not number > 0:
        return None
    return number


def _merge(target: Dict[str, Any], overlay: Dict[str, Any]):
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = value


def port_number(value: str) -> int:
    """argparse type for TCP ports"""
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port: {value!r}")
    if not 1 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range: {port}")
    return port


def resolve_server(cli_host: Optional[str], cli_port: Optional[int], config: ApplicationConfig,
                   environ: Optional[Mapping[str, str]] = None) -> Tuple[str, int]:
    """Host and port by precedence: command line, environment, config file, defaults"""
    environ = os.environ if environ is None else environ

    host = cli_host or environ.get(ENV_HOST) or config.get("server.host") or DEFAULT_HOST

    port = cli_port
    if port is None:
        try:
            port = port_number(environ.get(ENV_PORT, ""))
        except argparse.ArgumentTypeError:
            # Unset or malformed environment values fall through to the config
            port = None
    if port is None:
        try:
            port = port_number(str(config.get("server.port", DEFAULT_PORT)))
        except argparse.ArgumentTypeError:
            port = DEFAULT_PORT

    return host, port


def history_key_for(session_name: Optional[str]) -> str:
    """Storage key for the rolling history or a named session"""
    if session_name is None:
        return HISTORY_KEY
    if not SESSION_NAME_PATTERN.match(session_name):
        raise ConfigError(f"Invalid session name: {session_name!r} "
                          "(use letters, digits, '.', '_' or '-')")
    return session_key(session_name)

# =============================================================================
# APPLICATION
# =============================================================================

class HankTUIClient:
    """Wires the session, dispatcher and UI together and runs them"""

    def __init__(self, config: ApplicationConfig, server_url: str, store: Optional[HistoryStore],
                 history_key: str = HISTORY_KEY, debug_logger: Optional[DebugLogger] = None):
        self.config = config
        self.debug_logger = debug_logger

        client = ChatClient(
            server_url,
            chat_timeout=config.get_number("server.chat_timeout"),
            poll_timeout=config.get_number("server.poll_timeout"),
            debug_logger=debug_logger
        )
        scroller = ViewportScroller()
        self.session = SessionController(
            client,
            log=ChatLog(scroller=scroller, debug_logger=debug_logger),
            scroller=scroller,
            store=store,
            history_key=history_key,
            history_limit=config.get_number("history.max_messages", int),
            poll_interval=config.get_number("server.poll_interval"),
            auto_save_interval=config.get_number("ui.auto_save_interval"),
            debug_logger=debug_logger
        )
        self.dispatcher = EventDispatcher(self.session, debug_logger=debug_logger)
        self.ui = NCursesUIController(
            self.session,
            self.dispatcher,
            color_manager=ColorManager.from_name(str(config.get("ui.theme", "classic"))),
            refresh_rate=config.get_number("ui.refresh_rate"),
            input_height=config.get_number("ui.input_height", int),
            debug_logger=debug_logger
        )

        signal.signal(signal.SIGTERM, self._signal_handler)
        self._log_system(f"Hank TUI client created for {server_url}")

    def _log_system(self, message: str):
        if self.debug_logger:
            self.debug_logger.system(message)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals"""
        self._log_system(f"Signal {signum} received, requesting shutdown")
        self.dispatcher.quit_requested = True

    def run(self) -> int:
        self.session.restore_history()

        try:
            exit_code = self.ui.run()
        except TerminalError as e:
            print(Fore.RED + f"[Fatal Error] {e}")
            return 1

        if self.session.history_enabled and not self.session.save_history():
            print(Fore.YELLOW + f"[Warning] {self.session.last_error}")

        self._log_system(f"Client info at exit: {self.session.client.get_client_info()}")
        return exit_code

# =============================================================================
# STARTUP
# =============================================================================

def setup_argument_parser() -> argparse.ArgumentParser:
    """Setup command line argument parser"""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Hank TUI - terminal chat client for the Hank server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Examples:
  {APP_NAME}                          # Connect to the saved server (default localhost:8080)
  {APP_NAME} -H chat.local -p 9000    # Connect elsewhere and remember it
  {APP_NAME} --session research       # Keep this conversation in a named session
  {APP_NAME} --no-history --debug     # Nothing saved, debug log written

Environment: {ENV_HOST} and {ENV_PORT} override the config file.
        """
    )

    parser.add_argument('-H', '--host', help='Server host')
    parser.add_argument('-p', '--port', type=port_number, help='Server port')
    parser.add_argument('--no-history', action='store_true',
                        help='Do not load or save chat history')
    parser.add_argument('--session', metavar='NAME',
                        help='Use a named session instead of the rolling history')
    parser.add_argument('--list-sessions', action='store_true',
                        help='List saved named sessions and exit')
    parser.add_argument('--config', type=Path,
                        help=f'Configuration file (default: {config_dir() / CONFIG_FILE_NAME})')
    parser.add_argument('--debug', action='store_true',
                        help=f'Enable debug logging to {DEBUG_LOG_FILE} in the config directory')

    return parser


def check_terminal_requirements():
    """Warn before curses starts if the terminal looks too small"""
    try:
        size = os.get_terminal_size()
    except OSError:
        print(Fore.YELLOW + "[Warning] Standard output is not a terminal")
        return
    if size.columns < MIN_SCREEN_WIDTH or size.lines < MIN_SCREEN_HEIGHT:
        print(Fore.YELLOW + f"[Warning] Terminal size {size.columns}x{size.lines} is below "
              f"the minimum {MIN_SCREEN_WIDTH}x{MIN_SCREEN_HEIGHT}")


def show_startup_info(server_url: str, history_enabled: bool, history_key: str):
    """Show startup information"""
    print(Fore.GREEN + "Hank TUI - connecting to " + Style.BRIGHT + server_url)
    if not history_enabled:
        print(Fore.CYAN + "[Info] History disabled")
    elif history_key != HISTORY_KEY:
        print(Fore.CYAN + f"[Info] Using session '{history_key.split('/', 1)[1]}'")


def initialize_application(args, environ: Optional[Mapping[str, str]] = None) -> HankTUIClient:
    """Resolve configuration and build the client"""
    directory = config_dir(environ)
    debug_logger = DebugLogger(True, directory / DEBUG_LOG_FILE) if args.debug else None

    if debug_logger:
        debug_logger.system("Hank TUI client starting")
        debug_logger.system(f"Arguments: {vars(args)}")

    config = ApplicationConfig(args.config or directory / CONFIG_FILE_NAME)
    try:
        if config.load() and debug_logger:
            debug_logger.system(f"Configuration loaded from {config.config_file}")
    except ConfigError as e:
        print(Fore.YELLOW + f"[Warning] {e} - using defaults")
        if debug_logger:
            debug_logger.error(str(e), "CONFIG")

    for key in config.invalid_numbers():
        print(Fore.YELLOW + f"[Warning] Ignoring {key}={config.get(key)!r} in {config.config_file} - using default")
        if debug_logger:
            debug_logger.error(f"Invalid value for {key}: {config.get(key)!r}", "CONFIG")

    host, port = resolve_server(args.host, args.port, config, environ)
    config.set("server.host", host)
    config.set("server.port", port)
    if not config.save() and debug_logger:
        debug_logger.error(f"Could not write {config.config_file}", "CONFIG")

    history_key = history_key_for(args.session)
    history_enabled = not args.no_history and bool(config.get("history.enabled", True))
    store = HistoryStore(directory, debug_logger=debug_logger) if history_enabled else None

    server_url = build_server_url(host, port)
    show_startup_info(server_url, history_enabled, history_key)

    return HankTUIClient(config, server_url, store, history_key, debug_logger)


def list_sessions(environ: Optional[Mapping[str, str]] = None) -> int:
    names = HistoryStore(config_dir(environ)).list_sessions()
    if not names:
        print(Fore.CYAN + "No saved sessions")
    for name in names:
        print(name)
    return 0


def main(argv=None):
    """Main application entry point"""
    init(autoreset=True)
    parser = setup_argument_parser()
    args = parser.parse_args(argv)

    try:
        if args.list_sessions:
            return list_sessions()

        check_terminal_requirements()
        app = initialize_application(args)
        return app.run()

    except ConfigError as e:
        print(Fore.RED + f"[Error] {e}")
        return 2
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        return 0
    except Exception as e:
        print(Fore.RED + f"[Fatal Error] {e}")
        if args.debug:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
