"""
=============================================================================
DISPATCH SERVER
=============================================================================

Serves ONE application over HTTP/1.1. The application is injected at
construction and never changes:

    server = DispatchServer(Blog(), ServerConfig(port=8080))
    server.run()                       # blocks until shutdown()

=============================================================================
ARCHITECTURE
=============================================================================

    ┌──────────────┐  Connection   ┌──────────────┐
    │ SocketServer │ ────────────► │  ThreadPool  │  one worker per connection
    │ accept loop  │               │  (bounded)   │  full queue → 503
    └──────────────┘               └──────┬───────┘
                                          │ _process_connection(conn)
                                          ▼
          read_head ──► RequestParser.parse_head ──► build_environment
                                │                           │
                      HTTPParseError → 4xx/505, close       ▼
                                                    dispatch(env)
                                                            │
                          handler executor, handler_timeout │ → 504, close
                                                            ▼
                                              AdapterBoundary.handle(env)
                                                            │
                                                            ▼
                                render(response, env) ──► send ──► access log
                                                            │
                                                 keep-alive? loop : close

=============================================================================
PER-REQUEST GUARANTEES
=============================================================================

- The application is called exactly once per well-formed request and
  never for a malformed one.
- Content-Length on the wire is the real body size, whatever the
  application put in its headers.
- HEAD responses carry the headers of the GET but no body.
- A request body the application did not read is drained before the next
  request on the same connection is parsed.
- A client that disappears mid-body (BodyReadError) gets no response:
  the connection is dropped.

=============================================================================
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Optional, Tuple

from .access_log import RequestLog
from .app import AdapterBoundary, as_application
from .config import ServerConfig
from .core.connection import Connection
from .core.socket_server import SocketServer
from .core.thread_pool import ThreadPool
from .http.environment import Environment, Method
from .http.errors import BodyReadError, HTTPParseError
from .http.request import RequestParser
from .http.response import Response, allows_body, error_response
from .http.status_codes import HTTPStatus


logger = logging.getLogger(__name__)


class DispatchServer:
    """
    HTTP/1.1 server for a single application.

    Args:
        app:    An Application (``handle(env)``) or a plain function.
        config: Server configuration; validated here, before binding.

    Raises:
        TypeError:  If ``app`` is not an application.
        ValueError: If the configuration is invalid.
    """

    def __init__(self, app: Any, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig()
        self.config.validate()

        self.app = as_application(app)
        self._boundary = AdapterBoundary(self.app)

        self._socket_server = SocketServer(self.config)
        self._thread_pool = ThreadPool(
            min_workers=self.config.min_workers,
            max_workers=self.config.max_workers,
            queue_size=self.config.queue_size,
        )
        self._parser = RequestParser(
            max_request_size=self.config.max_request_size,
            max_header_size=self.config.max_header_size,
        )

        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()
        self._running = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port); the real port once bound with port=0."""
        return self._socket_server.address

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict:
        """Connection pool counters: workers, queue depth, served, rejected."""
        return self._thread_pool.stats

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the server is accepting connections. False on timeout."""
        return self._socket_server.wait_until_ready(timeout)

    def run(self):
        """
        Serve until shutdown() or SIGINT/SIGTERM (main thread only).

        Raises:
            OSError: If the address cannot be bound.
        """
        self._running = True
        self._thread_pool.start()

        logger.info(f"Serving {self.app!r} with {self.config.min_workers}-"
                    f"{self.config.max_workers} workers")
        try:
            self._socket_server.start(self._handle_connection)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._shutdown()

    def shutdown(self):
        """Ask a running server to stop. Safe from any thread."""
        self._running = False
        self._socket_server.shutdown()

    def _shutdown(self):
        logger.info("Shutting down server...")
        self._running = False
        logger.info(f"Connection stats: {self._thread_pool.stats}")
        self._thread_pool.shutdown(wait=True, timeout=self.config.keep_alive_timeout)

        with self._executor_lock:
            if self._executor is not None:
                # Timed-out handlers may still be running; do not wait for them.
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._executor = None

        logger.info("Server stopped")

    # =========================================================================
    # ADAPTER INVOCATION
    # =========================================================================

    def dispatch(self, env: Environment) -> Response:
        """
        Call the application for ``env`` through the adapter boundary.

        With a handler_timeout, the call runs on the handler executor and
        a 504 (marked Connection: close) is returned when it overruns.
        The overrunning call is cancelled if it has not started yet and
        otherwise left to finish on its own.

        Raises:
            BodyReadError: The client went away while the body was read.
        """
        timeout = self.config.handler_timeout
        if timeout is None:
            return self._boundary.handle(env)

        future = self._get_executor().submit(self._boundary.handle, env)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            future.cancel()
            logger.error(
                f"Application exceeded handler_timeout ({timeout}s) on "
                f"{env.method} {env.target}"
            )
            response = error_response(HTTPStatus.GATEWAY_TIMEOUT, "Handler timed out")
            return response.set_header("Connection", "close")

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.config.max_workers,
                    thread_name_prefix="httpadapter-handler",
                )
            return self._executor

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def render(self, response: Response, env: Environment) -> bytes:
        """
        Serialize ``response`` for ``env``: connection headers, computed
        Content-Length, and no body for HEAD.
        """
        if self._should_keep_alive(env, response):
            response.set_header("Connection", "keep-alive")
            response.set_header("Keep-Alive", f"timeout={int(self.config.keep_alive_timeout)}")
        else:
            response.set_header("Connection", "close")

        return response.to_bytes(
            self.config.server_name,
            include_body=env.method != Method.HEAD,
        )

    def _should_keep_alive(self, env: Environment, response: Response) -> bool:
        if not self.config.keep_alive or not env.is_keep_alive:
            return False
        return (response.get_header("Connection") or "").lower() != "close"

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """Hand an accepted connection to the pool, or turn it away."""
        try:
            submitted = self._thread_pool.submit(self._process_connection, conn)
        except RuntimeError:
            conn.abort()
            return

        if not submitted:
            start_time = time.time()
            logger.warning(f"[{conn.id}] Thread pool full, rejecting connection")
            size = self._send_error(conn, HTTPStatus.SERVICE_UNAVAILABLE, "Server overloaded")
            self._log_access(conn, None, HTTPStatus.SERVICE_UNAVAILABLE, size, start_time)
            conn.close()

    def _process_connection(self, conn: Connection):
        """Keep-alive loop for one connection (runs in a pool worker)."""
        with conn:
            while self._running:
                start_time = time.time()
                try:
                    if not self._serve_one(conn, start_time):
                        break
                except Exception as e:
                    logger.exception(f"[{conn.id}] Connection error: {e}")
                    break
                conn.set_keep_alive()

    def _serve_one(self, conn: Connection, start_time: float) -> bool:
        """
        Read, dispatch and answer one request.

        Returns:
            True if the connection should stay open for another request.
        """
        try:
            raw_head = conn.read_head()
            if raw_head is None:
                return False
            head = self._parser.parse_head(raw_head)
        except TimeoutError:
            size = self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
            self._log_access(conn, None, HTTPStatus.REQUEST_TIMEOUT, size, start_time)
            return False
        except HTTPParseError as e:
            logger.info(f"[{conn.id}] Rejected request: {e}")
            size = self._send_error(conn, e.status_code, str(e))
            self._log_access(conn, None, e.status_code, size, start_time)
            return False

        body = conn.body_stream(head.content_length)
        env = self._parser.build_environment(head, body, conn.address)

        try:
            response = self.dispatch(env)
            keep_alive = self._should_keep_alive(env, response)
            if keep_alive:
                env.body.drain()
        except BodyReadError as e:
            logger.warning(f"[{conn.id}] {e}; dropping connection")
            conn.abort()
            return False

        sent = conn.send_response(self.render(response, env))

        size = len(response.content) if allows_body(response.status) else 0
        self._log_access(conn, env, response.status, size, start_time)

        return sent and keep_alive

    def _send_error(self, conn: Connection, status: int, message: str) -> int:
        """Answer with a JSON error and Connection: close. Returns body size."""
        response = error_response(status, message).set_header("Connection", "close")
        if status == HTTPStatus.METHOD_NOT_ALLOWED:
            response.set_header("Allow", ", ".join(m.value for m in Method))
        conn.send_response(response.to_bytes(self.config.server_name))
        return len(response.content)

    def _log_access(
        self,
        conn: Connection,
        env: Optional[Environment],
        status: int,
        size: int,
        start_time: float,
    ):
        RequestLog(
            method=str(env.method) if env is not None else "-",
            path=env.path if env is not None else "-",
            query=env.query if env is not None else "",
            client_ip=conn.client_ip,
            user_agent=(env.headers.get("user-agent") if env is not None else None) or "-",
            status_code=int(status),
            content_length=size,
            duration_ms=(time.time() - start_time) * 1000,
            connection_id=conn.id,
        ).emit(self.config.log_format)
