"""
=============================================================================
HTTP REQUEST PARSER
=============================================================================

Turns the bytes of an HTTP/1.1 request head into an Environment.
Implements the request side of RFC 7230 (message syntax).

=============================================================================
TWO-PHASE PARSING
=============================================================================

The body is NOT parsed here. The server reads the head, parses it, and
only then hands the application a lazy body stream bound to the socket:

    socket bytes
         │
         ▼
    ┌───────────────────────────────┐
    │ head (up to \\r\\n\\r\\n)         │──► RequestParser.parse_head() ──► RequestHead
    └───────────────────────────────┘                                    │
    ┌───────────────────────────────┐                                    │
    │ body (Content-Length bytes)   │──► BodyStream (pulled on demand) ──┤
    └───────────────────────────────┘                                    ▼
                                           RequestParser.build_environment()
                                                          │
                                                          ▼
                                                     Environment

For tests and tools that already hold the full request in memory,
``parse()`` / ``parse_request()`` do both phases in one call.

=============================================================================
WHAT COUNTS AS MALFORMED
=============================================================================

    Request line not "METHOD SP TARGET SP HTTP/x.y"   → 400
    Method outside GET/POST/PUT/PATCH/DELETE/HEAD/OPTIONS → 405
    Version other than HTTP/1.0 or HTTP/1.1           → 505
    Target not origin-form ("/...") or absolute-form  → 400
    Path climbing above "/"                           → 400
    Header line without "name:" or with obs-fold      → 400
    Missing Host on HTTP/1.1                          → 400
    Content-Length not a number, or conflicting       → 400
    Transfer-Encoding (chunked uploads)               → 411
    Head larger than max_header_size                  → 431
    Content-Length larger than max_request_size       → 413

Malformed requests never reach the application.

=============================================================================
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple
from urllib.parse import urlsplit
import re

from .environment import BodyStream, Environment, Method, normalize_path
from .errors import HTTPParseError
from .headers import Headers


@dataclass
class RequestHead:
    """Parsed request line and header block, before the body is attached."""

    method: Method
    path: str
    query: str
    version: str
    headers: Headers
    content_length: int = 0

    @property
    def is_keep_alive(self) -> bool:
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"


class RequestParser:
    """
    Parses raw request heads into RequestHead / Environment objects.

    Args:
        max_request_size: Largest Content-Length accepted (413 above it).
        max_header_size:  Largest head accepted, in bytes (431 above it).
        require_host:     Enforce the HTTP/1.1 Host header requirement.
    """

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Za-z]+) ([^ ]+) (HTTP/[0-9]\.[0-9])$")

    # field-name is an RFC 7230 token; no whitespace allowed before the colon
    HEADER_PATTERN = re.compile(r"^([!#$%&'*+.^_`|~0-9A-Za-z-]+):[ \t]*(.*?)[ \t]*$")

    # ASCII digits only; str.isdigit() also accepts "²"
    CONTENT_LENGTH_PATTERN = re.compile(r"[0-9]+")

    SUPPORTED_VERSIONS = ("HTTP/1.0", "HTTP/1.1")

    def __init__(
        self,
        max_request_size: int = 10 * 1024 * 1024,
        max_header_size: int = 64 * 1024,
        require_host: bool = True,
    ):
        self.max_request_size = max_request_size
        self.max_header_size = max_header_size
        self.require_host = require_host

    # =========================================================================
    # PHASE 1: HEAD
    # =========================================================================

    def parse_head(self, data: bytes) -> RequestHead:
        """
        Parse a request head (request line + headers, with or without the
        trailing blank line).

        Raises:
            HTTPParseError: If the head is malformed.
        """
        if len(data) > self.max_header_size:
            raise HTTPParseError(
                f"Request head too large: {len(data)} bytes",
                status_code=431,
            )

        # Header bytes are ISO-8859-1 per RFC 7230; decoding cannot fail.
        text = data.decode("iso-8859-1")
        if text.endswith("\r\n\r\n"):
            text = text[:-4]

        lines = text.split("\r\n")
        if not lines or not lines[0]:
            raise HTTPParseError("Empty request line")

        method, path, query, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        if self.require_host and version == "HTTP/1.1" and "host" not in headers:
            raise HTTPParseError("Missing Host header")

        if "transfer-encoding" in headers:
            raise HTTPParseError(
                "Transfer-Encoding request bodies are not supported",
                status_code=411,
            )

        content_length = self._parse_content_length(headers)
        if content_length > self.max_request_size:
            raise HTTPParseError(
                f"Request body too large: {content_length} bytes",
                status_code=413,
            )

        return RequestHead(
            method=method,
            path=path,
            query=query,
            version=version,
            headers=headers,
            content_length=content_length,
        )

    def _parse_request_line(self, line: str) -> Tuple[Method, str, str, str]:
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line!r}")

        token, target, version = match.groups()

        # Methods are case-sensitive: "get" is not GET.
        if token not in Method.__members__:
            raise HTTPParseError(f"Invalid method: {token}", status_code=405)
        method = Method[token]

        if version not in self.SUPPORTED_VERSIONS:
            raise HTTPParseError(
                f"Unsupported HTTP version: {version}",
                status_code=505,
            )

        # origin-form "/path?query" or absolute-form "http://host/path?query"
        if target.startswith("/"):
            raw_path, _, query = target.partition("?")
        elif target.lower().startswith(("http://", "https://")):
            parts = urlsplit(target)
            raw_path, query = parts.path or "/", parts.query
        else:
            raise HTTPParseError(f"Invalid request target: {target!r}")

        return method, normalize_path(raw_path), query, version

    def _parse_headers(self, lines: List[str]) -> Headers:
        pairs = []
        for line in lines:
            if not line:
                continue
            if line[0] in (" ", "\t"):
                # obs-fold is deprecated; RFC 7230 3.2.4 says reject it
                raise HTTPParseError("Obsolete header line folding is not allowed")

            match = self.HEADER_PATTERN.match(line)
            if not match:
                raise HTTPParseError(f"Invalid header line: {line!r}")
            pairs.append(match.groups())

        # Content-Length must not be combined like other repeated fields
        lengths = {value for name, value in pairs if name.lower() == "content-length"}
        if len(lengths) > 1:
            raise HTTPParseError("Conflicting Content-Length headers")
        pairs = _dedupe_content_length(pairs)

        return Headers(pairs)

    def _parse_content_length(self, headers: Headers) -> int:
        value = headers.get("content-length")
        if value is None:
            return 0
        if not self.CONTENT_LENGTH_PATTERN.fullmatch(value):
            raise HTTPParseError(f"Invalid Content-Length: {value!r}")
        return int(value)

    # =========================================================================
    # PHASE 2: ENVIRONMENT
    # =========================================================================

    def build_environment(
        self,
        head: RequestHead,
        body: Optional[BodyStream] = None,
        client_address: tuple = ("", 0),
    ) -> Environment:
        """Attach a body stream and client metadata to a parsed head."""
        return Environment(
            method=head.method,
            path=head.path,
            query=head.query,
            headers=head.headers,
            body=body if body is not None else BodyStream.empty(),
            version=head.version,
            client_address=client_address,
        )

    def parse(self, data: bytes, client_address: tuple = ("", 0)) -> Environment:
        """
        Parse a complete in-memory request (head + body) into an Environment.

        Bytes past Content-Length are ignored; a short body is an error.

        Raises:
            HTTPParseError: If the request is malformed or incomplete.
        """
        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        head = self.parse_head(data[:header_end + 4])
        body = data[header_end + 4:]

        if len(body) < head.content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {head.content_length} bytes, got {len(body)}"
            )

        return self.build_environment(
            head,
            BodyStream.from_bytes(body[:head.content_length]),
            client_address,
        )


def _dedupe_content_length(pairs: List[Tuple[str, str]]) -> List[Tuple[str, str]]:
    seen = False
    result = []
    for name, value in pairs:
        if name.lower() == "content-length":
            if seen:
                continue
            seen = True
        result.append((name, value))
    return result


def parse_request(
    data: bytes,
    client_address: tuple = ("", 0),
    max_size: int = 10 * 1024 * 1024,
) -> Environment:
    """
    One-shot helper: parse a complete request with default limits.

    Use RequestParser directly to reuse limits across many requests.
    """
    return RequestParser(max_request_size=max_size).parse(data, client_address)
