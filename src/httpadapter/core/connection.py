"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps one accepted client socket: buffered reading of request heads, a
lazy body stream bound to the socket, response writing and a clean close.

=============================================================================
TCP IS A BYTE STREAM
=============================================================================

recv() boundaries mean nothing. One request can arrive in ten pieces, and
one recv() can hold the tail of one request and the start of the next:

    recv() → "GET / HTTP/1.1\\r\\nHo"
    recv() → "st: x\\r\\n\\r\\nPOST /c HTTP/1.1\\r\\n..."

So the connection keeps a buffer. read_head() consumes up to the blank
line and leaves the rest; the body stream then takes exactly
Content-Length bytes from the same buffer (and the socket after it), and
whatever follows is the next pipelined request.

=============================================================================
HEAD NOW, BODY ON DEMAND
=============================================================================

    read_head()                      → b"POST /c HTTP/1.1\\r\\n...\\r\\n\\r\\n"
    body_stream(content_length)      → BodyStream (nothing read yet)
        app calls env.body.read()    → recv() happens here
    body.drain()                     → skip what the app left unread

If the peer hangs up before Content-Length bytes arrived, the stream
raises BodyReadError and the server aborts the connection.

=============================================================================
CONNECTION STATES
=============================================================================

    NEW ──► READING ──► PROCESSING ──► WRITING ──► KEEP_ALIVE ──┐
              ▲                                                 │
              └─────────────────────────────────────────────────┘
     any state ──► CLOSING ──► CLOSED

=============================================================================
"""

import socket
import time
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Iterator, Optional, Tuple
import uuid

from ..http.environment import BodyStream
from ..http.errors import BodyReadError, HTTPParseError


logger = logging.getLogger(__name__)

HEAD_TERMINATOR = b"\r\n\r\n"


class ConnectionState(Enum):
    """Connection lifecycle states, used for logging and cleanup."""
    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    One client connection.

    Attributes:
        socket: The accepted client socket.
        address: Client's (ip, port) tuple.
        id: Short identifier for log lines.
        state: Current ConnectionState.
        requests_handled: Heads read so far; after the first one the
                          shorter keep-alive timeout applies.
    """

    socket: socket.socket
    address: Tuple[str, int]

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0

    buffer_size: int = 8192
    timeout: float = 30.0
    keep_alive_timeout: float = 5.0
    max_header_size: int = 64 * 1024

    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def client_port(self) -> int:
        return self.address[1]

    @property
    def age(self) -> float:
        """Connection age in seconds."""
        return time.time() - self.created_at

    @property
    def idle_time(self) -> float:
        return time.time() - self.last_activity

    # =========================================================================
    # READING
    # =========================================================================

    def read_head(self) -> Optional[bytes]:
        """
        Read one request head, up to and including the blank line.

        Bytes after the head stay buffered for the body stream.

        Returns:
            The head bytes, or None when the client closed the connection
            (or went idle on a keep-alive connection) before sending one.

        Raises:
            TimeoutError: The first request did not arrive in time.
            HTTPParseError: The head exceeds max_header_size (431).
        """
        self.state = ConnectionState.READING
        self.last_activity = time.time()

        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            while HEAD_TERMINATOR not in self._buffer:
                if len(self._buffer) > self.max_header_size:
                    raise HTTPParseError(
                        f"Request head too large: over {self.max_header_size} bytes",
                        status_code=431,
                    )
                chunk = self._recv()
                if not chunk:
                    if self._buffer:
                        logger.debug(f"[{self.id}] Client closed mid-head")
                    return None
                self._buffer += chunk

        except socket.timeout:
            if self.requests_handled > 0 and not self._buffer:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")

        finally:
            self.socket.settimeout(self.timeout)

        head_end = self._buffer.find(HEAD_TERMINATOR) + len(HEAD_TERMINATOR)
        head, self._buffer = self._buffer[:head_end], self._buffer[head_end:]

        self.requests_handled += 1
        self.state = ConnectionState.PROCESSING
        return head

    def body_stream(self, content_length: int) -> BodyStream:
        """
        A BodyStream that pulls exactly ``content_length`` bytes from this
        connection, lazily.
        """
        return BodyStream(self._iter_body(content_length), length=content_length)

    def _iter_body(self, remaining: int) -> Iterator[bytes]:
        while remaining > 0:
            if self._buffer:
                chunk = self._buffer[:remaining]
                self._buffer = self._buffer[len(chunk):]
            else:
                try:
                    chunk = self.socket.recv(min(self.buffer_size, remaining))
                except socket.timeout as e:
                    raise BodyReadError("Timed out reading request body") from e
                except OSError as e:
                    raise BodyReadError(f"Connection lost reading request body: {e}") from e
                if not chunk:
                    raise BodyReadError(
                        f"Client closed connection with {remaining} body bytes outstanding"
                    )
                self.last_activity = time.time()
            remaining -= len(chunk)
            yield chunk

    def _recv(self) -> bytes:
        """socket.recv() that reports a reset peer as a closed one."""
        try:
            data = self.socket.recv(self.buffer_size)
            self.last_activity = time.time()
            return data
        except (ConnectionResetError, BrokenPipeError):
            return b""

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(self, data: bytes) -> bool:
        """
        Send a serialized response with sendall().

        Returns:
            False if the client is gone.
        """
        self.state = ConnectionState.WRITING
        self.last_activity = time.time()

        try:
            self.socket.sendall(data)
            self.last_activity = time.time()
            return True
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False

    def set_keep_alive(self):
        self.state = ConnectionState.KEEP_ALIVE

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close gracefully: send FIN, drain briefly, release the descriptor.
        """
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # peer already gone

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except OSError:
            pass

        self._release()
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def abort(self):
        """Close immediately without the shutdown handshake."""
        if self.state == ConnectionState.CLOSED:
            return
        self._release()
        logger.debug(f"[{self.id}] Connection aborted")

    def _release(self):
        try:
            self.socket.close()
        except OSError:
            pass
        self.state = ConnectionState.CLOSED

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
