"""
Unit tests for the request environment model.
"""

import dataclasses

import pytest

from httpadapter.http.environment import (
    BodyStream,
    Environment,
    Method,
    make_environment,
    normalize_path,
)
from httpadapter.http.errors import BodyConsumedError, BodyReadError, HTTPParseError
from httpadapter.http.headers import Headers


class TestMethod:
    """Tests for the Method enum."""

    def test_parse_any_case(self):
        assert Method.parse("get") is Method.GET
        assert Method.parse("Delete") is Method.DELETE
        assert Method.parse(Method.HEAD) is Method.HEAD

    def test_parse_unknown(self):
        with pytest.raises(ValueError, match="Unsupported method"):
            Method.parse("BREW")

    def test_compares_as_string(self):
        assert Method.POST == "POST"
        assert str(Method.OPTIONS) == "OPTIONS"


class TestHeaders:
    """Tests for the case-insensitive Headers mapping."""

    def test_case_insensitive_lookup(self):
        headers = Headers([("Content-Type", "text/html"), ("X-Id", "1")])

        assert headers["content-type"] == "text/html"
        assert headers["CONTENT-TYPE"] == "text/html"
        assert "x-ID" in headers
        assert headers.get("X-Missing") is None
        assert headers.get("X-Missing", "default") == "default"

    def test_iterates_lowercase_names_in_order(self):
        headers = Headers({"Host": "a", "Accept": "b"})
        assert list(headers) == ["host", "accept"]

    def test_repeated_fields_are_joined(self):
        headers = Headers([("Accept", "text/html"), ("accept", "application/json")])

        assert len(headers) == 1
        assert headers["Accept"] == "text/html, application/json"

    def test_equals_plain_dict_ignoring_case(self):
        assert Headers([("Host", "x")]) == {"HOST": "x"}
        assert Headers([("Host", "x")]) != {"host": "y"}

    def test_is_read_only(self):
        headers = Headers({"Host": "x"})

        with pytest.raises(TypeError):
            headers["Host"] = "y"
        with pytest.raises(AttributeError):
            headers.update({"Host": "y"})


class TestBodyStream:
    """Tests for the single-pass request body."""

    def test_partial_then_remaining_reads(self):
        body = BodyStream.from_bytes(b"hello")

        assert body.read(2) == b"he"
        assert body.read() == b"llo"
        assert body.read() == b""

    def test_end_of_stream_reported_once(self):
        body = BodyStream.from_bytes(b"x")
        body.read()
        assert body.read() == b""
        assert body.consumed is True

        with pytest.raises(BodyConsumedError):
            body.read()

    def test_empty_body(self):
        body = BodyStream.empty()

        assert body.length == 0
        assert body.read() == b""
        with pytest.raises(BodyConsumedError):
            body.read(10)

    def test_sized_reads_span_chunks(self):
        body = BodyStream([b"ab", b"cd", b"ef"], length=6)

        assert body.read(3) == b"abc"
        assert body.read(3) == b"def"
        assert body.read(3) == b""

    def test_chunks_are_pulled_lazily(self):
        pulled = []

        def producer():
            for chunk in (b"one", b"two"):
                pulled.append(chunk)
                yield chunk

        body = BodyStream(producer())
        assert pulled == []

        body.read(3)
        assert pulled == [b"one"]

    def test_iteration_is_single_pass(self):
        body = BodyStream([b"a", b"b"])

        assert list(body) == [b"a", b"b"]
        with pytest.raises(BodyConsumedError):
            iter(body)

    def test_drain_discards_unread_bytes(self):
        body = BodyStream.from_bytes(b"abcdef")
        body.read(2)

        assert body.drain() == 4
        assert body.drain() == 0
        with pytest.raises(BodyConsumedError):
            body.read()

    def test_producer_failure_is_body_read_error(self):
        def producer():
            yield b"partial"
            raise ConnectionResetError("peer reset")

        body = BodyStream(producer())

        with pytest.raises(BodyReadError) as exc_info:
            body.read()
        assert isinstance(exc_info.value, ConnectionError)


class TestNormalizePath:
    """Tests for request path normalization."""

    @pytest.mark.parametrize("raw, expected", [
        ("/", "/"),
        ("//blog/./posts", "/blog/posts"),
        ("/blog/../about", "/about"),
        ("/a%20b", "/a b"),
        ("/blog/", "/blog/"),
        ("/blog//", "/blog/"),
    ])
    def test_normalization(self, raw, expected):
        assert normalize_path(raw) == expected

    def test_escaping_root_is_rejected(self):
        with pytest.raises(HTTPParseError) as exc_info:
            normalize_path("/../etc/passwd")
        assert exc_info.value.status_code == 400

    def test_relative_path_is_rejected(self):
        with pytest.raises(HTTPParseError):
            normalize_path("blog")


class TestEnvironment:
    """Tests for the Environment mapping."""

    def test_fixed_key_order(self):
        env = make_environment()

        assert list(env) == [
            "method", "path", "query", "headers", "body", "version", "client_address",
        ]
        assert len(env) == 7
        assert env["method"] is Method.GET
        with pytest.raises(KeyError):
            env["cookies"]

    def test_is_frozen(self):
        env = make_environment()

        with pytest.raises(dataclasses.FrozenInstanceError):
            env.path = "/admin"

    def test_coerces_method_headers_and_body(self):
        env = Environment(method="post", path="/c", headers={"Host": "x"}, body=b"hi")

        assert env.method is Method.POST
        assert isinstance(env.headers, Headers)
        assert env.headers["host"] == "x"
        assert env.body.read() == b"hi"

    def test_rejects_relative_path(self):
        with pytest.raises(ValueError):
            Environment(method="GET", path="blog")

    def test_rejects_unknown_method(self):
        with pytest.raises(ValueError):
            Environment(method="BREW", path="/")

    def test_make_environment_splits_query(self):
        env = make_environment("POST", "/comments?draft=1", body=b"hi")

        assert env.path == "/comments"
        assert env.query == "draft=1"
        assert env.target == "/comments?draft=1"
        assert env.body.read() == b"hi"

    def test_explicit_query_is_kept_raw(self):
        env = make_environment(path="/search", query="q=a%20b&q=c")
        assert env.query == "q=a%20b&q=c"

    def test_content_type_without_parameters(self):
        env = make_environment(headers={"Content-Type": "Text/HTML; charset=utf-8"})
        assert env.content_type == "text/html"
        assert make_environment().content_type is None

    @pytest.mark.parametrize("version, connection, expected", [
        ("HTTP/1.1", None, True),
        ("HTTP/1.1", "close", False),
        ("HTTP/1.0", None, False),
        ("HTTP/1.0", "keep-alive", True),
    ])
    def test_keep_alive_rules(self, version, connection, expected):
        headers = {"Connection": connection} if connection else {}
        env = make_environment(headers=headers, version=version)
        assert env.is_keep_alive is expected
