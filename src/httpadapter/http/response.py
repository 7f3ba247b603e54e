"""
=============================================================================
HTTP RESPONSE MODEL
=============================================================================

What an application hands back: a triple of

    (status, headers, body)

    status   int in [100, 599]
    headers  dict of header name → value
    body     ordered iterable of byte chunks; concatenation is the entity

The dispatch server serializes the triple onto the wire; the test browser
keeps it as the "current page". Either way it is consumed exactly once.

=============================================================================
WIRE FORMAT
=============================================================================

    HTTP/1.1 200 OK\\r\\n                     ← status line
    Content-Type: text/html; charset=utf-8\\r\\n
    Content-Length: 8\\r\\n                   ← ALWAYS computed from the body
    Date: Sat, 17 Oct 2026 12:00:00 GMT\\r\\n ← added when absent
    Server: httpadapter/1.0\\r\\n             ← added when absent
    \\r\\n
    Welcome!

=============================================================================
CONTENT-LENGTH NORMALIZATION
=============================================================================

The application may set Content-Length, may set it wrong, or may not set
it at all. finalize_headers() drops whatever it said (any spelling, plus
Transfer-Encoding) and writes the real byte count. The server and the
test browser both go through it, so what a test sees is what a client
would see.

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union
import json
import re

from .errors import HTTPParseError
from .status_codes import HTTPStatus, is_valid_status, reason_phrase


BodyChunk = Union[bytes, bytearray, str]

# Headers owned by the framing layer, never trusted from the application.
_FRAMING_HEADERS = ("content-length", "transfer-encoding")

DEFAULT_SERVER_NAME = "httpadapter/1.0"


def _encode_chunk(chunk: BodyChunk) -> bytes:
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    if isinstance(chunk, (bytes, bytearray, memoryview)):
        return bytes(chunk)
    raise TypeError(f"Response body chunks must be bytes or str, got {type(chunk).__name__}")


def allows_body(status: int) -> bool:
    """1xx, 204 and 304 responses never carry a body (RFC 7230 3.3.3)."""
    return not (100 <= status < 200 or status in (204, 304))


@dataclass
class Response:
    """
    One outbound HTTP response.

    ``body`` may be a single ``bytes``/``str`` or any iterable of chunks
    (a list, a generator...). It is materialized into a tuple the first
    time ``content`` is read, so a generator runs once and only once.

    Example:
        Response(200, {"Content-Type": "text/plain"}, [b"Hello, ", b"world"])
    """

    status: int = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: Iterable[BodyChunk] = ()
    version: str = "HTTP/1.1"

    def __post_init__(self):
        if not is_valid_status(self.status):
            raise ValueError(f"Response status must be an int in [100, 599], got {self.status!r}")
        if isinstance(self.body, (bytes, bytearray, str)):
            self.body = (_encode_chunk(self.body),) if self.body else ()

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    @property
    def status_line(self) -> str:
        """"HTTP/1.1 404 Not Found" - reason phrase derived from the code."""
        return f"{self.version} {int(self.status)} {reason_phrase(self.status)}"

    @property
    def content(self) -> bytes:
        """The full entity: every chunk, concatenated."""
        return b"".join(self.materialize().body)

    def materialize(self) -> "Response":
        """
        Drain the body iterable into a tuple of bytes chunks.

        Idempotent. Any exception raised by a body generator propagates
        from here, which is how the adapter boundary catches it.
        """
        if not isinstance(self.body, tuple):
            self.body = tuple(_encode_chunk(chunk) for chunk in self.body)
        return self

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default

    def set_header(self, name: str, value: str) -> "Response":
        """
        Set a header, replacing any existing spelling of the same name.

        Returns self for chaining.
        """
        lowered = name.lower()
        for key in [k for k in self.headers if k.lower() == lowered]:
            del self.headers[key]
        self.headers[name] = value
        return self

    def validate(self) -> None:
        """
        Check that the triple is serializable.

        Raises:
            ValueError: On a header that is not a str → str pair or that
                        contains CR/LF (header injection).
        """
        for name, value in self.headers.items():
            if not isinstance(name, str) or not isinstance(value, str):
                raise ValueError(f"Header names and values must be str: {name!r}: {value!r}")
            if not _HEADER_NAME.match(name):
                raise ValueError(f"Invalid header name: {name!r}")
            if "\r" in value or "\n" in value:
                raise ValueError(f"Header value contains a line break: {name!r}")

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def to_bytes(
        self,
        server_name: str = DEFAULT_SERVER_NAME,
        include_body: bool = True,
    ) -> bytes:
        """
        Serialize to HTTP/1.1 wire format.

        Args:
            server_name:  Value for the Server header when the app set none.
            include_body: False for HEAD responses; Content-Length still
                          describes the body that would have been sent.
        """
        body = self.content if allows_body(self.status) else b""
        headers = finalize_headers(self.headers, len(body), self.status)

        if "date" not in _lower_keys(headers):
            headers["Date"] = format_http_date(datetime.now(timezone.utc))
        if "server" not in _lower_keys(headers):
            headers["Server"] = server_name

        lines = [self.status_line]
        lines.extend(f"{name}: {value}" for name, value in headers.items())
        lines.append("")

        head = "\r\n".join(lines).encode("iso-8859-1", errors="replace") + b"\r\n"
        return head + body if include_body else head


_HEADER_NAME = re.compile(r"^[!#$%&'*+.^_`|~0-9A-Za-z-]+$")
_STATUS_LINE = re.compile(r"^(HTTP/[0-9]\.[0-9]) ([0-9]{3})(?: (.*))?$")
_DIGITS = re.compile(r"[0-9]+")


def _lower_keys(headers: Dict[str, str]) -> set:
    return {name.lower() for name in headers}


def finalize_headers(
    headers: Dict[str, str],
    body_length: int,
    status: int = HTTPStatus.OK,
) -> Dict[str, str]:
    """
    Return a copy of ``headers`` with framing headers recomputed.

    Whatever Content-Length / Transfer-Encoding the application supplied
    is discarded; Content-Length is set from ``body_length``. Statuses
    that cannot carry a body get no Content-Length at all.

    Example:
        finalize_headers({"content-length": "99"}, 8)
        # {"Content-Length": "8"}
    """
    result = {
        name: value
        for name, value in headers.items()
        if name.lower() not in _FRAMING_HEADERS
    }
    if allows_body(status):
        result["Content-Length"] = str(body_length)
    return result


def parse_response(data: bytes) -> Response:
    """
    Parse serialized response bytes back into a Response.

    Used to check what actually went over the wire. Repeated header
    names are joined with ", ".

    Raises:
        HTTPParseError: On a malformed status line or header, or a body
                        shorter than its Content-Length.
    """
    header_end = data.find(b"\r\n\r\n")
    if header_end == -1:
        raise HTTPParseError("Incomplete response: no header terminator")

    lines = data[:header_end].decode("iso-8859-1").split("\r\n")
    match = _STATUS_LINE.match(lines[0])
    if not match:
        raise HTTPParseError(f"Invalid status line: {lines[0]!r}")
    version, status = match.group(1), int(match.group(2))

    headers: Dict[str, str] = {}
    for line in lines[1:]:
        name, sep, value = line.partition(":")
        if not sep or not name:
            raise HTTPParseError(f"Invalid header line: {line!r}")
        name, value = name.strip(), value.strip()
        headers[name] = f"{headers[name]}, {value}" if name in headers else value

    body = data[header_end + 4:]
    length = next((v for k, v in headers.items() if k.lower() == "content-length"), None)
    if length is not None:
        if not _DIGITS.fullmatch(length):
            raise HTTPParseError(f"Invalid Content-Length: {length!r}")
        if len(body) < int(length):
            raise HTTPParseError(
                f"Incomplete body: expected {length} bytes, got {len(body)}"
            )
        body = body[:int(length)]

    return Response(status=status, headers=headers, body=body, version=version)


class ResponseBuilder:
    """
    Fluent builder for Response objects.

        response = (ResponseBuilder()
            .status(HTTPStatus.OK)
            .html("<h1>Welcome!</h1>")
            .header("X-Frame-Options", "DENY")
            .build())

    Every method except build() returns self.
    """

    def __init__(self):
        self._status: int = HTTPStatus.OK
        self._headers: Dict[str, str] = {}
        self._body: List[bytes] = []

    def status(self, status: int) -> "ResponseBuilder":
        self._status = status
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._headers[name] = value
        return self

    def headers(self, headers: Dict[str, str]) -> "ResponseBuilder":
        self._headers.update(headers)
        return self

    def content_type(self, content_type: str) -> "ResponseBuilder":
        return self.header("Content-Type", content_type)

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        """Set the raw body. Prefer text(), html() or json() for typed content."""
        self._body = [_encode_chunk(body)]
        return self

    def text(self, text: str, content_type: str = "text/plain; charset=utf-8") -> "ResponseBuilder":
        self._body = [text.encode("utf-8")]
        return self.content_type(content_type)

    def html(self, html: str) -> "ResponseBuilder":
        self._body = [html.encode("utf-8")]
        return self.content_type("text/html; charset=utf-8")

    def json(self, data: Any, pretty: bool = False) -> "ResponseBuilder":
        indent = 2 if pretty else None
        self._body = [json.dumps(data, indent=indent, ensure_ascii=False).encode("utf-8")]
        return self.content_type("application/json; charset=utf-8")

    def redirect(self, location: str, permanent: bool = False) -> "ResponseBuilder":
        """301 when ``permanent``, otherwise 302, with a Location header."""
        self._status = HTTPStatus.MOVED_PERMANENTLY if permanent else HTTPStatus.FOUND
        return self.header("Location", location)

    def no_cache(self) -> "ResponseBuilder":
        self._headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
        self._headers["Pragma"] = "no-cache"
        return self

    def close_connection(self) -> "ResponseBuilder":
        return self.header("Connection", "close")

    def build(self) -> Response:
        return Response(
            status=self._status,
            headers=dict(self._headers),
            body=tuple(self._body),
        )


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an RFC 7231 HTTP-date.

    Example: "Thu, 15 Jan 2026 12:30:45 GMT". Always GMT.
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def ok(body: Union[str, bytes, dict, list] = "", content_type: Optional[str] = None) -> Response:
    """
    200 OK. dict/list → JSON, str → text/plain, bytes → as given.
    """
    builder = ResponseBuilder().status(HTTPStatus.OK)
    if isinstance(body, (dict, list)):
        builder.json(body)
    elif isinstance(body, str):
        builder.text(body, content_type or "text/plain; charset=utf-8")
    else:
        builder.body(body)
        if content_type:
            builder.content_type(content_type)
    return builder.build()


def html(markup: str, status: int = HTTPStatus.OK) -> Response:
    """An HTML page with the given status."""
    return ResponseBuilder().status(status).html(markup).build()


def redirect(location: str, permanent: bool = False) -> Response:
    return ResponseBuilder().redirect(location, permanent).build()


def error_response(status: int, message: Optional[str] = None) -> Response:
    """
    A small JSON error body: {"error": "<message>"}.

    The message defaults to the reason phrase. Used for every response
    the server produces on its own (parse errors, timeouts, faults).
    """
    return (ResponseBuilder()
        .status(status)
        .json({"error": message or reason_phrase(status)})
        .build())


def bad_request(message: str = "Bad Request") -> Response:
    return error_response(HTTPStatus.BAD_REQUEST, message)


def not_found(message: str = "Not Found") -> Response:
    return error_response(HTTPStatus.NOT_FOUND, message)


def method_not_allowed(allowed_methods: List[str]) -> Response:
    """405 with the Allow header RFC 7231 requires."""
    response = error_response(HTTPStatus.METHOD_NOT_ALLOWED)
    return response.set_header("Allow", ", ".join(allowed_methods))


def internal_error(message: str = "Internal Server Error") -> Response:
    """500. Keep ``message`` generic: it is shown to the client."""
    return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, message)
