"""
=============================================================================
SIMULATED BROWSER
=============================================================================

Drives an application in-process, with no socket and no server thread:

    browser = Browser(Blog())
    browser.visit("/")
    assert browser.status_code() == 200
    assert browser.current_page_contains("Welcome!")
    assert browser.response_headers()["Content-Length"] == "8"

The browser builds the same Environment the server would, calls the app
through the same AdapterBoundary, and derives Content-Length with the
same finalize_headers(). An application fault shows up as a 500 page,
not as an exception in the test.

=============================================================================
STATES
=============================================================================

    NoPageLoaded ──visit()/request()──► PageLoaded ──visit()──► PageLoaded

Asking about the page before loading one is a mistake in the test, and
raises HarnessUsageError.

=============================================================================
"""

import re
from collections.abc import Mapping
from typing import Dict, Optional, Union

from ..app import AdapterBoundary
from ..http.environment import Method, make_environment
from ..http.headers import HeaderSource
from ..http.response import Response, allows_body, finalize_headers


_CHARSET = re.compile(r"charset=([\w.-]+)", re.IGNORECASE)


class HarnessUsageError(Exception):
    """The browser was asked about a page before any page was loaded."""


class Browser:
    """
    One simulated browser tab: a single current page, nothing shared
    with other instances.
    """

    def __init__(self, app, client_address: tuple = ("127.0.0.1", 0)):
        self._boundary = AdapterBoundary(app)
        self._client_address = client_address
        self._page: Optional[Response] = None

    # =========================================================================
    # NAVIGATION
    # =========================================================================

    def visit(self, path: str) -> "Browser":
        """GET ``path`` and make the response the current page."""
        return self.request(Method.GET, path)

    def request(
        self,
        method: Union[str, Method],
        path: str,
        *,
        query: Optional[str] = None,
        headers: HeaderSource = None,
        body: bytes = b"",
    ) -> "Browser":
        """
        Send any request and make the response the current page.

        A Host header is added when none is given, as a browser would.
        """
        pairs = list(headers.items()) if isinstance(headers, Mapping) else list(headers or ())
        names = {str(name).lower() for name, _ in pairs}
        if "host" not in names:
            pairs.append(("Host", "localhost"))
        if body and "content-length" not in names:
            pairs.append(("Content-Length", str(len(body))))

        env = make_environment(
            method=method,
            path=path,
            query=query,
            headers=pairs,
            body=body,
            client_address=self._client_address,
        )
        self._page = self._boundary.handle(env)
        return self

    # =========================================================================
    # ASSERTIONS
    # =========================================================================

    def status_code(self) -> int:
        return int(self._current_page().status)

    def page_content(self) -> str:
        """The body decoded with the Content-Type charset (UTF-8 by default)."""
        page = self._current_page()
        return page.content.decode(self._charset(page), errors="replace")

    def current_page_contains(self, text: str) -> bool:
        return text in self.page_content()

    def response_headers(self) -> Dict[str, str]:
        """
        The page's headers as a client would receive them, including the
        Content-Length computed from the body.
        """
        page = self._current_page()
        length = len(page.content) if allows_body(page.status) else 0
        return finalize_headers(page.headers, length, page.status)

    def _current_page(self) -> Response:
        if self._page is None:
            raise HarnessUsageError("No page loaded; call visit() first")
        return self._page

    @staticmethod
    def _charset(page: Response) -> str:
        match = _CHARSET.search(page.get_header("Content-Type") or "")
        return match.group(1) if match else "utf-8"
