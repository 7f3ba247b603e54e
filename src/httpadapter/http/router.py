"""
=============================================================================
EXACT-MATCH ROUTER
=============================================================================

An application-level helper, not part of the adapter contract. A Router
is itself an Application: it has handle(env), so it can be served or
tested directly.

=============================================================================
MATCHING RULES
=============================================================================

    router = Router()

    @router.get("/")
    def index(env):
        return html("<h1>Welcome!</h1>")

    @router.post("/comments")
    def add_comment(env):
        ...

    GET  /            → index
    POST /comments    → add_comment
    GET  /comments    → fallback   (default: 405, Allow: POST)
    GET  /blog        → fallback   (default: 404)

- Paths match exactly, after the same normalization the server applies.
  No parameters, no wildcards, no prefixes.
- One handler per (method, path). Registering the same pair again keeps
  the FIRST handler and logs a warning.
- Anything unmatched goes to ``fallback``.

=============================================================================
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Union

from .environment import Environment, Method, normalize_path
from .response import Response, method_not_allowed, not_found


logger = logging.getLogger(__name__)

Handler = Callable[[Environment], Response]


@dataclass(frozen=True)
class Route:
    method: Method
    path: str
    handler: Handler

    @property
    def name(self) -> str:
        return getattr(self.handler, "__name__", repr(self.handler))


def default_fallback(router: "Router", env: Environment) -> Response:
    """405 with Allow when the path is known under other methods, else 404."""
    allowed = router.allowed_methods(env.path)
    if allowed:
        return method_not_allowed(allowed)
    return not_found(f"No route matches {env.path}")


class Router:
    """
    Maps (method, path) pairs to handlers.

    Args:
        fallback: Called with the Environment for unmatched requests.
                  Defaults to a 404 (405 for a known path).
    """

    def __init__(self, fallback: Optional[Handler] = None):
        self._routes: Dict[Tuple[Method, str], Route] = {}
        self._fallback = fallback

    def add_route(
        self,
        path: str,
        handler: Handler,
        methods: Union[str, Method, List[Union[str, Method]]] = Method.GET,
    ) -> None:
        """
        Register ``handler`` for ``path`` under one or more methods.

        Raises:
            ValueError: If the path is not absolute or a method is unknown.
        """
        if not path.startswith("/"):
            raise ValueError(f"Route path must start with '/': {path!r}")
        path = normalize_path(path)

        if isinstance(methods, (str, Method)):
            methods = [methods]

        for method in methods:
            key = (Method.parse(method), path)
            if key in self._routes:
                logger.warning(
                    f"Route {key[0]} {path} already registered to "
                    f"{self._routes[key].name}, ignoring {getattr(handler, '__name__', handler)}"
                )
                continue
            self._routes[key] = Route(method=key[0], path=path, handler=handler)

    def route(self, path: str, methods=Method.GET) -> Callable[[Handler], Handler]:
        """Decorator form of add_route()."""
        def decorator(handler: Handler) -> Handler:
            self.add_route(path, handler, methods)
            return handler
        return decorator

    def get(self, path: str) -> Callable[[Handler], Handler]:
        return self.route(path, Method.GET)

    def post(self, path: str) -> Callable[[Handler], Handler]:
        return self.route(path, Method.POST)

    def put(self, path: str) -> Callable[[Handler], Handler]:
        return self.route(path, Method.PUT)

    def patch(self, path: str) -> Callable[[Handler], Handler]:
        return self.route(path, Method.PATCH)

    def delete(self, path: str) -> Callable[[Handler], Handler]:
        return self.route(path, Method.DELETE)

    def fallback(self, handler: Handler) -> Handler:
        """Decorator replacing the handler for unmatched requests."""
        self._fallback = handler
        return handler

    def match(self, method: Union[str, Method], path: str) -> Optional[Route]:
        return self._routes.get((Method.parse(method), path))

    def allowed_methods(self, path: str) -> List[str]:
        """Methods registered for ``path``, sorted, for the Allow header."""
        return sorted(str(method) for method, route_path in self._routes if route_path == path)

    def handle(self, env: Environment) -> Response:
        route = self.match(env.method, env.path)
        if route is not None:
            return route.handler(env)
        if self._fallback is not None:
            return self._fallback(env)
        return default_fallback(self, env)

    @property
    def routes(self) -> List[Route]:
        return list(self._routes.values())

    def __len__(self) -> int:
        return len(self._routes)
