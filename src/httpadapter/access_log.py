"""
=============================================================================
ACCESS LOGGING
=============================================================================

One line per completed request on the "httpadapter.access" logger, in
either of two formats:

    TEXT (default)
    127.0.0.1 - - [17/Oct/2026:12:00:00 +0000] "GET /" 200 8 0.42ms

    JSON
    {"method": "GET", "path": "/", "client_ip": "127.0.0.1",
     "status_code": 200, "content_length": 8, "duration_ms": 0.42, ...}

Requests rejected before parsing completed (4xx, 408, 503) are logged with "-" for the
fields that are not known.

The access logger is namespaced so it can be routed separately:

    logging.getLogger("httpadapter.access").addHandler(file_handler)

=============================================================================
"""

import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Optional


logger = logging.getLogger("httpadapter.access")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class RequestLog:
    """Structured access-log entry."""

    method: str
    path: str
    client_ip: str
    status_code: int
    content_length: int
    duration_ms: float
    query: str = ""
    user_agent: str = "-"
    connection_id: str = "-"
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = time.strftime("%d/%b/%Y:%H:%M:%S %z")

    def to_dict(self) -> dict:
        entry = asdict(self)
        entry["duration_ms"] = round(self.duration_ms, 2)
        return entry

    def to_text(self) -> str:
        """Apache-style line: ip - - [time] "METHOD path" status size latency."""
        target = f"{self.path}?{self.query}" if self.query else self.path
        return (
            f'{self.client_ip} - - [{self.timestamp}] '
            f'"{self.method} {target}" {self.status_code} '
            f'{self.content_length} {self.duration_ms:.2f}ms'
        )

    def emit(self, log_format: str = "text", level: int = logging.INFO) -> None:
        if log_format == "json":
            logger.log(level, json.dumps(self.to_dict()))
        else:
            logger.log(level, self.to_text())


def configure_logging(level: str = "INFO", fmt: Optional[str] = None) -> None:
    """
    Wire the root logger and the package loggers to ``level``.

    Safe to call more than once; basicConfig only installs a handler the
    first time.
    """
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric, format=fmt or LOG_FORMAT, datefmt=DATE_FORMAT)
    logging.getLogger("httpadapter").setLevel(numeric)
