"""Single-use loopback HTTP listener for capturing the OAuth2 redirect.

The provider redirects the user's browser to ``http://localhost:<port>`` with
the authorization result in the query string. :class:`LoopbackCallbackServer`
binds that port on ``127.0.0.1``, waits for exactly one connection with a
wall-clock deadline, reads the request head, answers with a fixed
``200 OK`` page, and closes. It never accepts a second connection.

Lifecycle::

    IDLE -> BOUND -> LISTENING -> RECEIVED -> CLOSED
                         |
                         +-> TIMED_OUT | FAILED

The wait is a non-blocking ``accept`` polled every ``poll_interval`` seconds,
so a user who never finishes the consent step cannot hang the process.
The listening socket is released on every exit path.

Uses only the standard library (``socket``, ``time``).
"""

from __future__ import annotations

import enum
import socket
import time
from collections.abc import Iterable
from typing import BinaryIO, Optional

from oauthloop.exceptions import CallbackTimeoutError, NoPortAvailableError, TransportError
from oauthloop.models import CallbackResult
from oauthloop.oauth.urls import parse_query_string
from oauthloop.output import OutputManager, get_output

LOOPBACK_HOST = "127.0.0.1"
DEFAULT_PORT_RANGE = range(15000, 29000)
DEFAULT_TIMEOUT = 120.0
DEFAULT_POLL_INTERVAL = 0.05
# Upper bound for reading the request head once a connection is accepted
READ_TIMEOUT = 10.0

_MAX_LINE = 8192
_MAX_HEADER_LINES = 200

ACK_BODY = b"Authorization received. You can close this window and return to the terminal.\n"
ACK_RESPONSE = (
    b"HTTP/1.1 200 OK\r\n"
    b"Content-Type: text/plain; charset=utf-8\r\n"
    b"Content-Length: " + str(len(ACK_BODY)).encode("ascii") + b"\r\n"
    b"Cache-Control: no-store\r\n"
    b"Connection: close\r\n"
    b"\r\n" + ACK_BODY
)


class ServerState(str, enum.Enum):
    """Lifecycle states of :class:`LoopbackCallbackServer`."""

    IDLE = "idle"
    BOUND = "bound"
    LISTENING = "listening"
    RECEIVED = "received"
    CLOSED = "closed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


# --- Port reservation ---


def _port_is_free(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        try:
            probe.bind((host, port))
        except OSError:
            return False
    return True


def reserve_port(host: str = LOOPBACK_HOST, ports: Iterable[int] = DEFAULT_PORT_RANGE) -> int:
    """Return the first port in *ports* that can be bound on *host*.

    Each candidate is bound and immediately released. Another process can
    still take the port before the real listener binds it; that race is
    reported by :meth:`LoopbackCallbackServer.await_callback` as a
    :class:`~oauthloop.exceptions.TransportError`.

    Raises:
        NoPortAvailableError: If every candidate is in use.
    """
    for port in ports:
        if _port_is_free(host, port):
            return port
    raise NoPortAvailableError(f"No free loopback port available on {host}")


# --- Request parsing ---


def read_request_head(stream: BinaryIO) -> list[str]:
    """Read request lines up to the first empty line (end of headers).

    The body, if any, is never read. Stops early at EOF. Lines are decoded
    as UTF-8 so a browser that sends unescaped non-ASCII query text keeps
    it intact; undecodable bytes become U+FFFD.
    """
    lines: list[str] = []
    while len(lines) < _MAX_HEADER_LINES:
        raw = stream.readline(_MAX_LINE)
        if not raw:
            break
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        if not line:
            break
        lines.append(line)
    return lines


def query_from_request_line(request_line: str) -> str:
    """Extract the raw query string from ``METHOD SP PATH SP VERSION``.

    Returns an empty string unless the line is a well-formed ``GET`` whose
    path carries a query string.
    """
    parts = request_line.split(" ")
    if len(parts) != 3 or parts[0] != "GET":
        return ""
    path = parts[1]
    if "?" not in path:
        return ""
    return path.split("?", 1)[1]


def parse_callback_request(lines: list[str]) -> dict[str, str]:
    """Return the decoded query parameters of a request head (first line only)."""
    if not lines:
        return {}
    return parse_query_string(query_from_request_line(lines[0]))


def extract_callback_result(params: dict[str, str]) -> CallbackResult:
    """Turn parsed query parameters into a :class:`~oauthloop.models.CallbackResult`.

    ``error`` is read first; when present and non-empty the callback is a
    provider denial and ``code`` / ``state`` are not inspected. Otherwise an
    absent ``code`` or ``state`` becomes an empty string.
    """
    error = params.get("error", "")
    if error:
        return CallbackResult(
            error=error,
            error_description=params.get("error_description") or None,
        )
    return CallbackResult(code=params.get("code", ""), state=params.get("state", ""))


# --- Server ---


class LoopbackCallbackServer:
    """Ephemeral, single-use loopback listener for one OAuth2 redirect.

    Use as a context manager so the port is released even when the caller
    fails between :meth:`reserve_port` and :meth:`await_callback`::

        with LoopbackCallbackServer() as server:
            port = server.reserve_port()
            ...
            result = server.await_callback(timeout=120)

    Args:
        host: Bind address (default ``"127.0.0.1"``).
        ports: Candidate ports probed by :meth:`reserve_port`.
        poll_interval: Seconds between non-blocking ``accept`` attempts.
        log: Logger for diagnostics; defaults to the global
            :class:`~oauthloop.output.OutputManager`.
    """

    def __init__(
        self,
        host: str = LOOPBACK_HOST,
        ports: Iterable[int] = DEFAULT_PORT_RANGE,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        log: Optional[OutputManager] = None,
    ) -> None:
        self._host = host
        self._ports = ports
        self._poll_interval = poll_interval
        self._log = log or get_output()
        self._port: Optional[int] = None
        self._socket: Optional[socket.socket] = None
        self.state = ServerState.IDLE

    @property
    def port(self) -> Optional[int]:
        """The reserved or bound port, or ``None`` before reservation."""
        return self._port

    @property
    def redirect_uri(self) -> str:
        """The redirect URI to register with the provider for this run."""
        if self._port is None:
            raise TransportError("No loopback port reserved yet")
        return f"http://localhost:{self._port}"

    def __enter__(self) -> LoopbackCallbackServer:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def reserve_port(self) -> int:
        """Pick a free port from the configured range and remember it."""
        self._port = reserve_port(self._host, self._ports)
        return self._port

    def await_callback(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        port: Optional[int] = None,
    ) -> CallbackResult:
        """Bind, wait for exactly one connection, and parse its request.

        Args:
            timeout: Seconds to wait for a connection before giving up.
            port: Port to bind; defaults to the one from :meth:`reserve_port`,
                reserving one now if none was.

        Returns:
            The :class:`~oauthloop.models.CallbackResult` of the request.

        Raises:
            CallbackTimeoutError: If no connection arrives within *timeout*.
            TransportError: If the port cannot be bound, ``accept`` fails
                unrecoverably, or the server was already used.
        """
        if self.state is not ServerState.IDLE:
            raise TransportError(
                f"Callback server is single-use (current state: {self.state.value})"
            )
        if port is None:
            port = self._port if self._port is not None else self.reserve_port()
        self._port = port

        try:
            listener = self._bind(port)
            conn = self._accept(listener, timeout)
            self.state = ServerState.RECEIVED
            with conn:
                params = self._handle(conn)
            return extract_callback_result(params)
        finally:
            self.close()

    def close(self) -> None:
        """Release the listening socket. Idempotent."""
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        if self.state not in (ServerState.IDLE, ServerState.TIMED_OUT, ServerState.FAILED):
            self.state = ServerState.CLOSED

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _bind(self, port: int) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            if hasattr(socket, "SO_EXCLUSIVEADDRUSE"):
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_EXCLUSIVEADDRUSE, 1)
            else:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self._host, port))
            self._socket = sock
            self.state = ServerState.BOUND
            sock.listen(1)
            sock.setblocking(False)
        except OSError as exc:
            sock.close()
            self._socket = None
            self.state = ServerState.FAILED
            raise TransportError(f"Cannot listen on {self._host}:{port}: {exc}") from exc

        self.state = ServerState.LISTENING
        self._log.info(f"Waiting for the authorization callback on {self._host}:{port}...")
        return sock

    def _accept(self, listener: socket.socket, timeout: float) -> socket.socket:
        started = time.monotonic()
        while True:
            try:
                conn, peer = listener.accept()
            except (BlockingIOError, InterruptedError):
                pass
            except OSError as exc:
                self.state = ServerState.FAILED
                raise TransportError(f"Accepting the callback connection failed: {exc}") from exc
            else:
                self._log.debug(f"Callback connection from {peer[0]}:{peer[1]}")
                return conn

            if time.monotonic() - started >= timeout:
                self.state = ServerState.TIMED_OUT
                raise CallbackTimeoutError(
                    f"No authorization callback received within {timeout:g} seconds",
                    timeout=timeout,
                )
            time.sleep(self._poll_interval)

    def _handle(self, conn: socket.socket) -> dict[str, str]:
        """Read the request head, always acknowledge, and return the query parameters."""
        conn.settimeout(READ_TIMEOUT)
        lines: list[str] = []
        try:
            with conn.makefile("rb") as stream:
                lines = read_request_head(stream)
        except socket.timeout:
            self._log.warning("Callback request head was not received in time")
        except OSError as exc:
            self.state = ServerState.FAILED
            raise TransportError(f"Reading the callback request failed: {exc}") from exc

        try:
            conn.sendall(ACK_RESPONSE)
        except OSError as exc:
            # The browser may already have gone away; the parameters are still valid.
            self._log.debug(f"Could not acknowledge callback: {exc}")

        if lines:
            self._log.debug(f"Callback request: {lines[0].split('?', 1)[0]} ...")
        return parse_callback_request(lines)
