"""
=============================================================================
THE APPLICATION ADAPTER CONTRACT
=============================================================================

Everything the server knows about an application is one call:

    response = app.handle(env)        Environment → Response

The server never looks inside the application, and the application
never sees a socket. The same adapter is driven by the dispatch server
in production and by the test Browser in-process.

=============================================================================
WHAT COUNTS AS AN APPLICATION
=============================================================================

    class Blog:                         def blog(env):
        def handle(self, env):              return html("...")
            return html("...")

    as_application(Blog())   ✓          as_application(blog)   ✓
    as_application(Blog)     ✗ (a class, not an instance)
    as_application("blog")   ✗

=============================================================================
THE ADAPTER BOUNDARY
=============================================================================

Both drivers call through AdapterBoundary, which turns an application
fault into a 500 instead of letting it escape:

    env ──► AdapterBoundary ──► app.handle(env)
                 │                     │
                 │     raises ─────────┤──► 500 (logged with traceback)
                 │     not a Response ─┤──► 500
                 │     body raises ────┤──► 500  (body materialized here)
                 │     bad headers ────┘──► 500
                 │
                 └── BodyReadError is NOT a fault: the client went away,
                     so it propagates and the server drops the connection.

The 500 body is a fixed message. Tracebacks go to the log only.

=============================================================================
"""

import logging
from typing import Any, Callable, Protocol, runtime_checkable

from .http.environment import Environment
from .http.errors import BodyReadError
from .http.response import Response, html, internal_error


logger = logging.getLogger(__name__)


@runtime_checkable
class Application(Protocol):
    """Anything with ``handle(env) -> Response``."""

    def handle(self, env: Environment) -> Response:
        ...


class FunctionApplication:
    """Adapts a plain ``env -> Response`` function to the Application protocol."""

    def __init__(self, func: Callable[[Environment], Response]):
        self.func = func

    def handle(self, env: Environment) -> Response:
        return self.func(env)

    def __repr__(self) -> str:
        return f"<FunctionApplication {getattr(self.func, '__qualname__', self.func)!r}>"


def as_application(obj: Any) -> Application:
    """
    Accept an object with a ``handle`` method or a plain function.

    Raises:
        TypeError: For anything else, including an Application class that
                   has not been instantiated.
    """
    if isinstance(obj, type):
        raise TypeError(
            f"{obj.__name__} is a class; pass an instance, e.g. {obj.__name__}()"
        )
    if callable(getattr(obj, "handle", None)):
        return obj
    if callable(obj):
        return FunctionApplication(obj)
    raise TypeError(
        f"Expected an object with a handle(env) method or a function, got {type(obj).__name__}"
    )


class AdapterBoundary:
    """
    The single place where an application is called.

    Guarantees the caller a fully materialized, serializable Response.
    """

    def __init__(self, app: Any):
        self.app = as_application(app)

    def handle(self, env: Environment) -> Response:
        try:
            response = self.app.handle(env)
            if not isinstance(response, Response):
                raise TypeError(
                    f"Application returned {type(response).__name__}, expected Response"
                )
            response.materialize()
            response.validate()
            return response
        except BodyReadError:
            raise
        except Exception:
            logger.exception(f"Application fault handling {env.method} {env.target}")
            return internal_error()

    __call__ = handle

    def __repr__(self) -> str:
        return f"<AdapterBoundary {self.app!r}>"


class WelcomeApp:
    """
    The smallest useful application.

    Answers every request with 200 and an HTML greeting, whatever the
    path or method. It is the built-in default the CLI serves.
    """

    def __init__(self, greeting: str = "Welcome!"):
        self.greeting = greeting

    def handle(self, env: Environment) -> Response:
        return html(self.greeting)

    def __repr__(self) -> str:
        return f"<WelcomeApp {self.greeting!r}>"


welcome = WelcomeApp()
