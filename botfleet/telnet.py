"""
TelnetConnection - Line-oriented protocol client for text game servers.

Opens a TCP connection, answers the login prompts, then publishes every
received line as a chat event. Used as the default connection factory
so the pool works against any telnet-style server out of the box.
"""

import logging
import re
import socket
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from . import config
from .ansi import clean_line
from .connection import Connection
from .errors import ConnectFailure
from .models import AuthKind, ConnectOptions

# Telnet IAC negotiation, matched on raw bytes before decoding
IAC_PATTERN = re.compile(rb'\xff[\xfb-\xfe].|\xff[\xf0-\xfa]', re.DOTALL)


@dataclass
class LoginConfig:
    """
    Configuration for the login flow.

    Attributes:
        steps: List of (prompt_pattern, response) tuples; "{username}" in
            a response is replaced with the identity's username
        success_patterns: Patterns that indicate the client is in the game;
            empty means any output after the last step counts
        failure_patterns: Patterns that mean the server refused the login
    """
    steps: List[Tuple[str, str]] = field(default_factory=lambda: [
        (r'(name|login)[^\n]*[:?]\s*$', "{username}"),
    ])
    success_patterns: List[str] = field(default_factory=list)
    failure_patterns: List[str] = field(default_factory=lambda: [
        r'[Ii]nvalid',
        r'[Ii]ncorrect',
        r'[Bb]anned',
    ])


class TelnetConnection(Connection):
    """
    Telnet client speaking plain text lines.

    Basic usage:
        conn = TelnetConnection(options)
        conn.on("chat", print)
        conn.start()
        conn.send_chat("look")
        conn.disconnect()

    The TCP connect happens on the reader thread started by start(), so
    construction never blocks; a failed connect is reported as an error
    event followed by end. Managed identities are not supported;
    construction raises ConnectFailure for them.
    """

    READ_CHUNK_SIZE = 4096

    def __init__(
        self,
        options: ConnectOptions,
        login_config: Optional[LoginConfig] = None,
        timeout: float = config.CONNECT_TIMEOUT,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Prepare the connection. Nothing is opened until start().

        Args:
            options: Connection parameters
            login_config: Login prompts to answer (default: username prompt)
            timeout: Connect timeout in seconds

        Raises:
            ConnectFailure: If the auth kind is unsupported
        """
        super().__init__(options, logger=logger)
        if options.auth != AuthKind.OFFLINE.value:
            raise ConnectFailure(f"{options.auth} auth is not supported over telnet")
        if options.version:
            self.logger.debug(f"Ignoring protocol version {options.version} for telnet")

        self.login_config = login_config or LoginConfig()
        self._step = 0
        self._spawned = False
        self._closing = False
        self._send_lock = threading.Lock()
        self.timeout = timeout
        self._thread: Optional[threading.Thread] = None
        self._socket: Optional[socket.socket] = None
        self._ended = False

    @property
    def is_connected(self) -> bool:
        return self._socket is not None and not self._closing

    def start(self) -> None:
        """Connect and read on a background thread. Listeners must be registered first."""
        if self._thread is not None or self._ended:
            return
        self._thread = threading.Thread(
            target=self._run,
            name=f"telnet-{self.options.host}:{self.options.port}",
            daemon=True,
        )
        self._thread.start()

    def send_chat(self, text: str) -> None:
        self._send(f"{text}\n")

    def send_command(self, text: str) -> None:
        # Text servers take commands as plain lines
        self._send(f"{text}\n")

    def disconnect(self) -> None:
        """Close the socket; the reader thread reports end afterwards."""
        self._closing = True
        sock = self._socket
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass  # Already closed by the peer
        if self._thread is None:
            self._finish("disconnect.quitting")
        self.logger.info("Disconnected")

    def _send(self, data: str) -> None:
        sock = self._socket
        if sock is None or self._closing:
            return
        try:
            with self._send_lock:
                sock.sendall(data.encode('utf-8'))
            self.logger.debug(f"Sent: {data!r}")
        except OSError as e:
            self.logger.warning(f"Send failed, dropping {data!r}: {e}")

    def _close_socket(self) -> None:
        if self._socket:
            try:
                self._socket.close()
            except OSError as e:
                self.logger.debug(f"Close failed: {e}")
            self._socket = None

    def _finish(self, reason: str) -> None:
        """Close the socket and report end exactly once."""
        self._close_socket()
        if self._ended:
            return
        self._ended = True
        self.logger.info(f"Connection ended: {reason}")
        self.emit("end", reason)

    def _run(self) -> None:
        try:
            sock = socket.create_connection(
                (self.options.host, self.options.port),
                timeout=self.timeout,
            )
        except OSError as e:
            if self._closing:
                self._finish("disconnect.quitting")
                return
            self.logger.error(f"Connect to {self.options.host}:{self.options.port} failed: {e}")
            self.emit("error", ConnectFailure(e))
            self._finish(str(e))
            return

        sock.settimeout(None)
        if self.options.keep_alive:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        self._socket = sock
        if self._closing:
            # disconnect() ran while the connect was in flight
            self._finish("disconnect.quitting")
            return
        self.logger.info(f"Connected to {self.options.host}:{self.options.port}")
        self._read_loop()

    def _read_loop(self) -> None:
        reason = "socket closed"
        buffer = ""
        try:
            buffer = self._advance_login(buffer)
            while True:
                chunk = self._socket.recv(self.READ_CHUNK_SIZE)
                if not chunk:
                    break
                buffer += self._decode(chunk)
                buffer = self._process(buffer)
        except ConnectionResetError:
            reason = "connection reset"
        except OSError as e:
            if not self._closing:
                self.logger.error(f"Read error: {e}")
                self.emit("error", e)
                reason = str(e)

        if self._closing:
            reason = "disconnect.quitting"
        self._finish(reason)

    def _decode(self, chunk: bytes) -> str:
        chunk = IAC_PATTERN.sub(b'', chunk).replace(b'\xff\xff', b'\xff')
        return chunk.decode('utf-8', errors='replace')

    def _advance_login(self, buffer: str) -> str:
        """Answer login prompts in order; emits login after the last one."""
        steps = self.login_config.steps
        while self._step < len(steps):
            pattern, response = steps[self._step]
            if not re.search(pattern, clean_line(buffer), re.IGNORECASE | re.MULTILINE):
                return buffer
            self._send(response.format(username=self.options.username) + "\n")
            self._step += 1
            buffer = ""
            if self._step == len(steps):
                break
        if self._step == len(steps):
            self._step += 1
            self.emit("login")
        return buffer

    def _process(self, buffer: str) -> str:
        if self._step <= len(self.login_config.steps):
            return self._advance_login(buffer)

        if not self._spawned:
            text = clean_line(buffer)
            for pattern in self.login_config.failure_patterns:
                if re.search(pattern, text):
                    self.logger.warning(f"Login refused - matched: {pattern}")
                    self.emit("kicked", text.strip() or pattern)
                    self.disconnect()
                    return ""
            rest = self._after_spawn_line(buffer)
            if rest is None:
                return buffer
            self._spawned = True
            self.emit("spawn", None)
            buffer = rest

        while "\n" in buffer:
            line, buffer = buffer.split("\n", 1)
            line = clean_line(line)
            if line:
                self.emit("chat", line)
        return buffer

    def _after_spawn_line(self, buffer: str) -> Optional[str]:
        """
        Find the line that puts the client in the game.

        Returns:
            The text following that line, or None if it has not arrived yet
        """
        patterns = self.login_config.success_patterns
        lines = buffer.splitlines(keepends=True)
        for i in range(len(lines)):
            text = clean_line("".join(lines[:i + 1]))
            if patterns:
                matched = any(re.search(p, text) for p in patterns)
            else:
                matched = bool(text.strip())
            if matched:
                return "".join(lines[i + 1:])
        return None
