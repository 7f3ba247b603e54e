"""
=============================================================================
HTTPADAPTER - Plug Any Application Into an HTTP/1.1 Server
=============================================================================

An application is anything with ``handle(env) -> Response``. This package
supplies the request/response model that contract is written in, a
dispatch server that serves one application over real sockets, and a
simulated browser that drives the same application in-process.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    httpadapter/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI (httpadapter / python -m httpadapter)
    ├── app.py               # Application protocol, AdapterBoundary, WelcomeApp
    ├── server.py            # DispatchServer
    ├── config.py            # ServerConfig dataclass
    ├── access_log.py        # RequestLog, configure_logging
    ├── loader.py            # module:attribute targets, Appfile
    ├── core/                # TCP layer
    │   ├── socket_server.py # bind / listen / accept loop
    │   ├── connection.py    # buffered reads, lazy body, close
    │   └── thread_pool.py   # bounded connection workers
    ├── http/                # Request / response model
    │   ├── environment.py   # Environment, Method, BodyStream
    │   ├── headers.py       # case-insensitive read-only Headers
    │   ├── request.py       # wire bytes → Environment
    │   ├── response.py      # Response, builder, serialization
    │   ├── router.py        # exact-match Router (optional helper)
    │   ├── status_codes.py  # HTTPStatus, reason phrases
    │   └── errors.py        # HTTPParseError, BodyReadError, ...
    └── testing/
        └── browser.py       # Browser, HarnessUsageError

=============================================================================
QUICK START
=============================================================================

    from httpadapter import DispatchServer, ServerConfig, html

    class Blog:
        def handle(self, env):
            return html("<h1>Welcome!</h1>")

    DispatchServer(Blog(), ServerConfig(port=8080)).run()

And in a test:

    from httpadapter.testing import Browser

    browser = Browser(Blog()).visit("/")
    assert browser.current_page_contains("Welcome!")

=============================================================================
"""

__version__ = "1.0.0"

from .app import AdapterBoundary, Application, WelcomeApp, as_application, welcome
from .config import ServerConfig
from .http.environment import BodyStream, Environment, Method, make_environment
from .http.errors import BodyConsumedError, BodyReadError, HTTPParseError
from .http.headers import Headers
from .http.response import Response, ResponseBuilder, html, ok
from .http.router import Router
from .http.status_codes import HTTPStatus
from .server import DispatchServer

__all__ = [
    "__version__",
    # Adapter contract
    "Application",
    "AdapterBoundary",
    "as_application",
    "WelcomeApp",
    "welcome",
    # Request model
    "Environment",
    "Method",
    "Headers",
    "BodyStream",
    "make_environment",
    # Response model
    "Response",
    "ResponseBuilder",
    "HTTPStatus",
    "ok",
    "html",
    # Server
    "DispatchServer",
    "ServerConfig",
    "Router",
    # Errors
    "HTTPParseError",
    "BodyReadError",
    "BodyConsumedError",
]
