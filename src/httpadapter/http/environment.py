"""
=============================================================================
REQUEST ENVIRONMENT
=============================================================================

The Environment is everything an application is told about one inbound
request. The dispatch server builds it from bytes on a socket; the test
browser builds it in-process. The application only ever reads it.

=============================================================================
ENVIRONMENT ANATOMY
=============================================================================

    GET /blog/posts?page=2 HTTP/1.1           Environment(
    Host: example.com               ──────►     method=Method.GET,
    Accept: text/html                           path="/blog/posts",
                                                query="page=2",
    <body bytes, read lazily>                   headers=Headers({...}),
                                                body=BodyStream(...),
                                                version="HTTP/1.1",
                                                client_address=(ip, port),
                                              )

    It is also a read-only Mapping with a FIXED key order:

        list(env) == ["method", "path", "query", "headers",
                      "body", "version", "client_address"]

=============================================================================
THE BODY IS SINGLE-PASS
=============================================================================

Request bodies can be arbitrarily large and arrive from a socket, so the
body is a stream, not a buffer:

    env.body.read(4096)   → up to 4096 bytes
    env.body.read()       → everything that is left
    env.body.read()       → b""   (end of stream, reported exactly once)
    env.body.read()       → BodyConsumedError

There is no seek() and no rewind. An application that needs the bytes
twice must keep its own copy.

=============================================================================
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Union
from urllib.parse import unquote

from .errors import BodyConsumedError, BodyReadError, HTTPParseError
from .headers import Headers, HeaderSource


class Method(str, Enum):
    """
    The request methods an Environment can carry.

    Inherits from ``str`` so ``env.method == "GET"`` reads naturally.
    """

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, token: Union[str, "Method"]) -> "Method":
        """
        Coerce a method token (any case) to a Method.

        Raises:
            ValueError: If the token is not one of the supported methods.
        """
        if isinstance(token, cls):
            return token
        try:
            return cls(str(token).upper())
        except ValueError:
            raise ValueError(f"Unsupported method: {token!r}") from None


class BodyStream:
    """
    Lazily-read, single-pass request body.

    Wraps any iterable of byte chunks. The dispatch server feeds it from
    the client socket, the test browser from an in-memory ``bytes``.
    Chunks are pulled only when the application asks for data.

    Attributes:
        length: The declared size (Content-Length), or None when unknown.
    """

    def __init__(self, chunks: Iterable[bytes], length: Optional[int] = None):
        self.length = length
        self._chunks = iter(chunks)
        self._buffer = b""
        self._eof = False        # producer has no more chunks
        self._consumed = False   # reader has been handed the final b""

    @classmethod
    def from_bytes(cls, data: bytes = b"") -> "BodyStream":
        return cls([data] if data else [], length=len(data))

    @classmethod
    def empty(cls) -> "BodyStream":
        return cls.from_bytes(b"")

    @property
    def consumed(self) -> bool:
        """True once end-of-stream has been reported to the reader."""
        return self._consumed

    def read(self, size: int = -1) -> bytes:
        """
        Read up to ``size`` bytes (everything left when ``size`` < 0).

        Returns ``b""`` once at end-of-stream; reading again after that
        raises ``BodyConsumedError``.

        Raises:
            BodyReadError: If the underlying producer fails mid-stream.
        """
        if self._consumed:
            raise BodyConsumedError("Request body has already been consumed")

        if size == 0:
            return b""

        if size is None or size < 0:
            parts = [self._buffer]
            self._buffer = b""
            parts.extend(self._pull_remaining())
            data = b"".join(parts)
        else:
            while len(self._buffer) < size and not self._eof:
                self._fill()
            data, self._buffer = self._buffer[:size], self._buffer[size:]

        if not data:
            self._consumed = True
        return data

    def __iter__(self) -> Iterator[bytes]:
        if self._consumed:
            raise BodyConsumedError("Request body has already been consumed")
        return self._iter_chunks()

    def drain(self) -> int:
        """
        Discard whatever the application left unread.

        The server calls this before reusing a keep-alive connection so
        the next request starts at the right byte. Returns the number of
        bytes discarded.
        """
        if self._consumed:
            return 0
        discarded = len(self._buffer)
        self._buffer = b""
        for chunk in self._pull_remaining():
            discarded += len(chunk)
        self._consumed = True
        return discarded

    def _iter_chunks(self) -> Iterator[bytes]:
        if self._buffer:
            pending, self._buffer = self._buffer, b""
            yield pending
        yield from self._pull_remaining()
        self._consumed = True

    def _pull_remaining(self) -> List[bytes]:
        chunks = []
        while not self._eof:
            chunk = self._next_chunk()
            if chunk:
                chunks.append(chunk)
        return chunks

    def _fill(self) -> None:
        chunk = self._next_chunk()
        if chunk:
            self._buffer += chunk

    def _next_chunk(self) -> bytes:
        try:
            return bytes(next(self._chunks))
        except StopIteration:
            self._eof = True
            return b""
        except BodyReadError:
            self._eof = True
            raise
        except OSError as e:
            self._eof = True
            raise BodyReadError(f"Failed to read request body: {e}") from e

    def __repr__(self) -> str:
        state = "consumed" if self._consumed else "open"
        return f"<BodyStream length={self.length} {state}>"


_ENVIRONMENT_KEYS = ("method", "path", "query", "headers", "body", "version", "client_address")


@dataclass(frozen=True, eq=False)
class Environment(Mapping):
    """
    One inbound HTTP request, as the application sees it.

    Frozen: attributes cannot be reassigned, ``headers`` has no mutators
    and ``body`` can only move forward. Built by the dispatch server or
    the test browser, one per request, never shared.
    """

    method: Method
    path: str
    query: str = ""
    headers: Headers = field(default_factory=Headers)
    body: BodyStream = field(default_factory=BodyStream.empty)
    version: str = "HTTP/1.1"
    client_address: tuple = ("", 0)

    def __post_init__(self):
        # Coercion has to go through object.__setattr__ on a frozen dataclass.
        object.__setattr__(self, "method", Method.parse(self.method))

        if not isinstance(self.path, str) or not self.path.startswith("/"):
            raise ValueError(f"Environment path must start with '/': {self.path!r}")

        if not isinstance(self.query, str):
            raise ValueError(f"Environment query must be a string: {self.query!r}")

        if not isinstance(self.headers, Headers):
            object.__setattr__(self, "headers", Headers(self.headers))

        if isinstance(self.body, (bytes, bytearray)):
            object.__setattr__(self, "body", BodyStream.from_bytes(bytes(self.body)))

    # -------------------------------------------------------------------------
    # Mapping protocol
    # -------------------------------------------------------------------------

    def __getitem__(self, key: str):
        if key not in _ENVIRONMENT_KEYS:
            raise KeyError(key)
        return getattr(self, key)

    def __iter__(self) -> Iterator[str]:
        return iter(_ENVIRONMENT_KEYS)

    def __len__(self) -> int:
        return len(_ENVIRONMENT_KEYS)

    # -------------------------------------------------------------------------
    # Convenience accessors
    # -------------------------------------------------------------------------

    @property
    def target(self) -> str:
        """The request target as it would appear on the wire: path[?query]."""
        return f"{self.path}?{self.query}" if self.query else self.path

    @property
    def content_type(self) -> Optional[str]:
        """Content-Type without parameters ("text/html; charset=utf-8" → "text/html")."""
        value = self.headers.get("content-type", "")
        return value.split(";")[0].strip().lower() or None

    @property
    def is_keep_alive(self) -> bool:
        """
        Whether the client asked for the connection to stay open.

        HTTP/1.1 keeps alive unless "Connection: close"; HTTP/1.0 closes
        unless "Connection: keep-alive".
        """
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"


def normalize_path(raw: str) -> str:
    """
    Normalize a request path.

    - percent-decodes the path
    - collapses repeated slashes and "." segments
    - resolves ".." segments
    - keeps a trailing slash ("/blog/" stays "/blog/")

    Examples:
        "/"                 → "/"
        "//blog/./posts"    → "/blog/posts"
        "/blog/../about"    → "/about"
        "/a%20b"            → "/a b"

    Raises:
        HTTPParseError: If the path is not absolute or a ".." climbs above
                        the root ("/../etc/passwd").
    """
    path = unquote(raw)
    if not path.startswith("/"):
        raise HTTPParseError(f"Invalid path: must start with '/': {raw}")

    segments: List[str] = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if not segments:
                raise HTTPParseError(f"Invalid path: escapes root: {raw}")
            segments.pop()
        else:
            segments.append(segment)

    normalized = "/" + "/".join(segments)
    if segments and path.endswith("/"):
        normalized += "/"
    return normalized


def make_environment(
    method: Union[str, Method] = Method.GET,
    path: str = "/",
    query: Optional[str] = None,
    headers: HeaderSource = None,
    body: Union[bytes, BodyStream] = b"",
    version: str = "HTTP/1.1",
    client_address: tuple = ("", 0),
) -> Environment:
    """
    Build an Environment the way the server would.

    A "?query" suffix on ``path`` is split off when ``query`` is not
    given explicitly, and the path is normalized.

    Example:
        env = make_environment("POST", "/comments?draft=1", body=b"hi")
        env.path   # "/comments"
        env.query  # "draft=1"
    """
    if query is None:
        path, _, query = path.partition("?")

    if not isinstance(body, BodyStream):
        body = BodyStream.from_bytes(bytes(body))

    return Environment(
        method=Method.parse(method),
        path=normalize_path(path or "/"),
        query=query,
        headers=Headers(headers),
        body=body,
        version=version,
        client_address=client_address,
    )
