"""
Exceptions raised by the HTTP layer.

Each one maps to a distinct handling policy in the dispatch server:

    HTTPParseError     → reject with a 4xx/5xx status, never call the app
    BodyReadError      → abort the connection, no response is attempted
    BodyConsumedError  → programming error inside the application
"""


class HTTPParseError(Exception):
    """
    Raised when an inbound request cannot be parsed.

    Carries the HTTP status code the server should answer with:

        400 Bad Request                      - malformed syntax
        405 Method Not Allowed               - method outside the supported set
        413 Payload Too Large                - body over the configured limit
        431 Request Header Fields Too Large  - head over the configured limit
        505 HTTP Version Not Supported       - not HTTP/1.0 or HTTP/1.1
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class BodyReadError(ConnectionError):
    """The peer went away (or the socket failed) before the body was complete."""


class BodyConsumedError(RuntimeError):
    """A single-pass request body was read again after reaching end-of-stream."""
