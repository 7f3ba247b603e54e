"""
HTTP request/response model.

    Environment, Method, BodyStream, Headers   what the application reads
    Response, ResponseBuilder, ok, html, ...   what it returns
    RequestParser                              wire bytes → Environment
    Router                                     optional exact-match helper
"""

from .environment import BodyStream, Environment, Method, make_environment, normalize_path
from .errors import BodyConsumedError, BodyReadError, HTTPParseError
from .headers import Headers
from .request import RequestHead, RequestParser, parse_request
from .response import (
    Response,
    ResponseBuilder,
    finalize_headers,
    parse_response,
    format_http_date,
    ok,
    html,
    redirect,
    error_response,
    bad_request,
    not_found,
    method_not_allowed,
    internal_error,
)
from .router import Route, Router
from .status_codes import HTTPStatus, is_valid_status, reason_phrase

__all__ = [
    # Request side
    "Environment",
    "Method",
    "BodyStream",
    "Headers",
    "make_environment",
    "normalize_path",
    "RequestHead",
    "RequestParser",
    "parse_request",
    # Response side
    "Response",
    "ResponseBuilder",
    "finalize_headers",
    "parse_response",
    "format_http_date",
    "ok",
    "html",
    "redirect",
    "error_response",
    "bad_request",
    "not_found",
    "method_not_allowed",
    "internal_error",
    # Routing
    "Router",
    "Route",
    # Status codes
    "HTTPStatus",
    "is_valid_status",
    "reason_phrase",
    # Errors
    "HTTPParseError",
    "BodyReadError",
    "BodyConsumedError",
]
