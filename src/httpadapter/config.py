"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Every tunable of the dispatch server in one dataclass.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    Priority (highest to lowest):

    1. Command-line arguments     httpadapter --port 3000
    2. Environment variables      HTTP_PORT=3000 httpadapter
    3. Entry-point file           port = 3000   (in Appfile)
    4. Defaults in this dataclass

The CLI starts from ServerConfig.from_env() and overrides fields with
dataclasses.replace(); validate() runs once, before anything is bound.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("text", "json")


@dataclass
class ServerConfig:
    """
    Configuration for the dispatch server.

    NETWORK
        host, port, backlog, buffer_size, timeout

    HTTP
        keep_alive, keep_alive_timeout, max_request_size, max_header_size

    CONCURRENCY
        min_workers, max_workers, queue_size, handler_timeout

    LOGGING / IDENTITY
        log_level, log_format, server_name

    Example (tests):
        ServerConfig(port=0, handler_timeout=1.0)
    """

    host: str = "127.0.0.1"

    port: int = 8080
    """0 lets the OS pick a free port; read it back from server.address."""

    backlog: int = 128

    buffer_size: int = 8192
    """recv() size in bytes."""

    timeout: Optional[float] = 30.0
    """Socket timeout for the first request on a connection (408 past it)."""

    keep_alive: bool = True

    keep_alive_timeout: float = 5.0
    """Idle time allowed between requests on a kept-alive connection."""

    max_request_size: int = 10 * 1024 * 1024
    """Largest accepted Content-Length (413 above it)."""

    max_header_size: int = 64 * 1024
    """Largest accepted request head (431 above it)."""

    min_workers: int = 4
    max_workers: int = 16

    queue_size: int = 100
    """Connections waiting for a worker; beyond this new ones get 503."""

    handler_timeout: Optional[float] = 30.0
    """
    Seconds an adapter call may take before the server answers 504.
    None waits forever.
    """

    log_level: str = "INFO"
    log_format: str = "text"

    server_name: str = "httpadapter/1.0"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        HTTP_HOST              bind address
        HTTP_PORT              port (0 = any free port)
        HTTP_WORKERS           max worker threads
        HTTP_QUEUE_SIZE        pending connection limit
        HTTP_TIMEOUT           request read timeout, seconds
        HTTP_HANDLER_TIMEOUT   adapter call limit, seconds ("none" disables)
        HTTP_KEEP_ALIVE        "0"/"false"/"no" disables keep-alive
        HTTP_MAX_REQUEST_SIZE  body limit, bytes
        HTTP_LOG_LEVEL         DEBUG / INFO / WARNING / ERROR
        HTTP_LOG_FORMAT        text / json

        Raises:
            ValueError: If a variable holds an unparseable value.
        """
        defaults = cls()
        max_workers = _env_int("HTTP_WORKERS", defaults.max_workers)
        return cls(
            host=os.getenv("HTTP_HOST", defaults.host),
            port=_env_int("HTTP_PORT", defaults.port),
            max_workers=max_workers,
            min_workers=min(defaults.min_workers, max_workers),
            queue_size=_env_int("HTTP_QUEUE_SIZE", defaults.queue_size),
            timeout=_env_float("HTTP_TIMEOUT", defaults.timeout),
            handler_timeout=_env_float("HTTP_HANDLER_TIMEOUT", defaults.handler_timeout),
            keep_alive=_env_bool("HTTP_KEEP_ALIVE", defaults.keep_alive),
            max_request_size=_env_int("HTTP_MAX_REQUEST_SIZE", defaults.max_request_size),
            log_level=os.getenv("HTTP_LOG_LEVEL", defaults.log_level).upper(),
            log_format=os.getenv("HTTP_LOG_FORMAT", defaults.log_format).lower(),
        )

    def validate(self) -> None:
        """
        Check every value up front.

        Raises:
            ValueError: Naming the first offending field.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")

        if self.queue_size < 1:
            raise ValueError("queue_size must be >= 1")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.keep_alive_timeout <= 0:
            raise ValueError("keep_alive_timeout must be > 0")

        if self.handler_timeout is not None and self.handler_timeout <= 0:
            raise ValueError("handler_timeout must be > 0 or None")

        if self.max_request_size < 0:
            raise ValueError("max_request_size must be >= 0")

        if self.max_header_size < 1024:
            raise ValueError("max_header_size must be >= 1024")

        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {', '.join(LOG_FORMATS)}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    if raw.strip().lower() == "none":
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off")
