#!/usr/bin/env python3
"""
Hank TUI Client - Chat Server Communication (chatapi.py)
HTTP client for the Hank chat server: POST /chat for a reply and
GET /messages for polling messages posted by other parties
"""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

# Server configuration defaults
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 8080
DEFAULT_CHAT_TIMEOUT = 120.0
DEFAULT_POLL_TIMEOUT = 2.0

# =============================================================================
# ERRORS
# =============================================================================

class ChatError(Exception):
    """Base class for failures talking to the chat server"""


class TransportError(ChatError):
    """Connection failure, timeout or non-2xx status"""


class DecodeError(ChatError):
    """Response body that is not the expected JSON shape"""

# =============================================================================
# WIRE TYPES
# =============================================================================

@dataclass(frozen=True)
class ChatReply:
    """Reply to POST /chat"""
    content: str
    complete: bool = True


@dataclass(frozen=True)
class ServerMessage:
    """One entry of GET /messages"""
    role: str
    content: str
    timestamp: int


@dataclass
class ClientState:
    """Request bookkeeping for diagnostics"""
    connected: bool = False
    last_request_time: float = 0.0
    request_count: int = 0
    failure_count: int = 0


def build_server_url(host: str, port: int) -> str:
    return f"http://{host}:{port}"

# =============================================================================
# CLIENT
# =============================================================================

class ChatClient:
    """
    Blocking facade over httpx.AsyncClient.

    Every call runs one request on a private event loop bounded by an
    explicit timeout, so it is safe to call from a worker thread while the
    UI thread keeps drawing. Failures are raised as ChatError subclasses.
    """

    def __init__(self, server_url: str, chat_timeout: float = DEFAULT_CHAT_TIMEOUT,
                 poll_timeout: float = DEFAULT_POLL_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None, debug_logger=None):
        self.server_url = server_url.rstrip('/')
        self.chat_timeout = chat_timeout
        self.poll_timeout = poll_timeout
        self.transport = transport
        self.debug_logger = debug_logger
        self.state = ClientState()

    def _log_debug(self, message: str):
        if self.debug_logger:
            self.debug_logger.debug(message, "CHATAPI")

    def _log_error(self, message: str):
        if self.debug_logger:
            self.debug_logger.error(message, "CHATAPI")

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def send_message(self, message: str) -> ChatReply:
        """POST /chat and wait up to chat_timeout for the reply"""
        self._log_debug(f"Sending message: {len(message)} chars")
        start_time = time.time()

        data = self._request("POST", "/chat", self.chat_timeout, json={"message": message})
        reply = self._parse_chat_reply(data)

        self._log_debug(f"Reply received: {len(reply.content)} chars in {time.time() - start_time:.2f}s")
        return reply

    def fetch_messages(self, since: int) -> List[ServerMessage]:
        """GET /messages newer than `since` (epoch ms), bounded by poll_timeout"""
        data = self._request("GET", "/messages", self.poll_timeout, params={"since": since})
        return self._parse_messages(data)

    def get_client_info(self) -> Dict[str, Any]:
        """Basic client information for diagnostics"""
        return {
            "server_url": self.server_url,
            "connected": self.state.connected,
            "last_request_time": self.state.last_request_time,
            "request_count": self.state.request_count,
            "failure_count": self.state.failure_count,
        }

    # =========================================================================
    # REQUEST EXECUTION
    # =========================================================================

    def _request(self, method: str, path: str, timeout: float, **kwargs) -> Any:
        """Run one request on a fresh event loop and return the decoded JSON body"""
        self.state.last_request_time = time.time()
        self.state.request_count += 1

        async def _send():
            async with httpx.AsyncClient(base_url=self.server_url, timeout=timeout,
                                         transport=self.transport) as client:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                return response

        loop = asyncio.new_event_loop()
        try:
            response = loop.run_until_complete(asyncio.wait_for(_send(), timeout))
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise self._fail(TransportError(f"Request timed out after {timeout:g}s"))
        except httpx.HTTPStatusError as e:
            raise self._fail(TransportError(f"Server returned HTTP {e.response.status_code}"))
        except httpx.HTTPError as e:
            raise self._fail(TransportError(f"Connection error: {e}"))
        finally:
            loop.close()

        self.state.connected = True
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise self._fail(DecodeError(f"Failed to parse response: {e}"))

    def _fail(self, error: ChatError) -> ChatError:
        self.state.failure_count += 1
        if isinstance(error, TransportError):
            self.state.connected = False
        self._log_error(str(error))
        return error

    # =========================================================================
    # RESPONSE VALIDATION
    # =========================================================================

    def _parse_chat_reply(self, data: Any) -> ChatReply:
        if not isinstance(data, dict) or not isinstance(data.get("content"), str):
            raise self._fail(DecodeError("Failed to parse response: missing 'content'"))
        complete = data.get("complete", True)
        if not isinstance(complete, bool):
            # Only an explicit false marks a partial reply
            complete = True
        return ChatReply(content=data["content"], complete=complete)

    def _parse_messages(self, data: Any) -> List[ServerMessage]:
        if not isinstance(data, list):
            raise self._fail(DecodeError("Failed to parse response: expected a list of messages"))

        messages = []
        for entry in data:
            if not self._validate_message(entry):
                raise self._fail(DecodeError(f"Failed to parse response: malformed message {entry!r}"))
            messages.append(ServerMessage(entry["role"], entry["content"], entry["timestamp"]))
        return messages

    def _validate_message(self, entry: Any) -> bool:
        """Check one GET /messages entry"""
        return (isinstance(entry, dict) and
                isinstance(entry.get("role"), str) and
                isinstance(entry.get("content"), str) and
                isinstance(entry.get("timestamp"), int) and
                not isinstance(entry.get("timestamp"), bool) and
                entry["timestamp"] >= 0)
