"""
End-to-end tests: a DispatchServer on a real socket.
"""

import json
import logging
import socket
import threading

import pytest

from httpadapter.app import WelcomeApp
from httpadapter.http.response import Response, html, parse_response
from httpadapter.http.router import Router

from conftest import read_one_response, read_until_closed


class Recorder:
    """Application that remembers every environment it was called with."""

    def __init__(self, greeting: str = "Welcome!"):
        self.calls = []
        self.greeting = greeting

    def handle(self, env):
        self.calls.append((str(env.method), env.path, env.query))
        return html(self.greeting)


def echo(env):
    return Response(
        headers={"Content-Type": "application/octet-stream"},
        body=env.body.read(),
    )


class TestBasicRequests:

    def test_welcome(self, serve):
        srv = serve(WelcomeApp())
        response = srv.request("GET", "/")

        assert response.status == 200
        assert response.content == b"Welcome!"
        assert response.get_header("Content-Length") == "8"
        assert response.get_header("Content-Type") == "text/html; charset=utf-8"
        assert response.get_header("Server") == "httpadapter/1.0"
        assert response.get_header("Date") is not None

    def test_query_and_path_reach_the_app(self, serve):
        app = Recorder()
        srv = serve(app)

        srv.request("GET", "/blog/../posts?page=2")

        assert app.calls == [("GET", "/posts", "page=2")]

    def test_post_body(self, serve):
        srv = serve(echo)
        response = srv.request("POST", "/comments", body=b"author=ada&text=hi")

        assert response.status == 200
        assert response.content == b"author=ada&text=hi"

    def test_sample_post_request(self, serve, sample_post_request):
        srv = serve(echo)
        response = parse_response(srv.send_raw(sample_post_request))

        assert response.content == b"author=ada&text=first+comment"

    def test_declared_content_length_is_replaced(self, serve):
        srv = serve(lambda env: Response(headers={"Content-Length": "999"}, body=b"tiny"))
        raw = srv.send_raw(b"GET / HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n")

        assert raw.lower().count(b"content-length") == 1
        assert b"Content-Length: 4\r\n" in raw
        assert raw.endswith(b"\r\n\r\ntiny")

    def test_head_has_length_but_no_body(self, serve):
        srv = serve(WelcomeApp())
        raw = srv.send_raw(b"HEAD / HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n")

        assert raw.startswith(b"HTTP/1.1 200 OK\r\n")
        assert b"Content-Length: 8\r\n" in raw
        assert raw.endswith(b"\r\n\r\n")

    def test_no_content_has_no_length(self, serve):
        srv = serve(lambda env: Response(status=204))
        raw = srv.send_raw(b"DELETE /posts/1 HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n")

        assert raw.startswith(b"HTTP/1.1 204 No Content\r\n")
        assert b"content-length" not in raw.lower()
        assert raw.endswith(b"\r\n\r\n")

    def test_router_application(self, serve):
        router = Router()
        router.get("/")(lambda env: html("home"))
        srv = serve(router)

        assert srv.request("GET", "/").content == b"home"
        assert srv.request("GET", "/missing").status == 404
        assert srv.request("POST", "/").get_header("Allow") == "GET"


class TestMalformedRequests:
    """Bad requests are answered by the server; the app never sees them."""

    @pytest.mark.parametrize("raw, status", [
        (b"GARBAGE\r\n\r\n", 400),
        (b"GET / HTTP/1.1\r\n\r\n", 400),
        (b"GET /../etc HTTP/1.1\r\nHost: x\r\n\r\n", 400),
        (b"GET / HTTP/1.1\r\nHost: x\r\nContent-Length: abc\r\n\r\n", 400),
        (b"POST / HTTP/1.1\r\nHost: x\r\nContent-Length: \xb2\r\n\r\n", 400),
        (b"BREW /pot HTTP/1.1\r\nHost: x\r\n\r\n", 405),
        (b"POST / HTTP/1.1\r\nHost: x\r\nTransfer-Encoding: chunked\r\n\r\n", 411),
        (b"GET / HTTP/2.0\r\nHost: x\r\n\r\n", 505),
    ])
    def test_rejected(self, serve, raw, status):
        app = Recorder()
        srv = serve(app)

        response = parse_response(srv.send_raw(raw))

        assert response.status == status
        assert response.get_header("Connection") == "close"
        assert "error" in json.loads(response.content)
        assert app.calls == []

    def test_unknown_method_lists_allowed(self, serve):
        srv = serve(Recorder())
        response = parse_response(srv.send_raw(b"BREW /pot HTTP/1.1\r\nHost: x\r\n\r\n"))

        assert "GET" in response.get_header("Allow")

    def test_oversized_head(self, serve):
        srv = serve(Recorder(), max_header_size=1024)
        raw = b"GET / HTTP/1.1\r\nHost: x\r\nX-Big: " + b"a" * 4096 + b"\r\n\r\n"

        assert parse_response(srv.send_raw(raw)).status == 431

    def test_oversized_body(self, serve):
        srv = serve(echo, max_request_size=16)
        raw = b"POST / HTTP/1.1\r\nHost: x\r\nContent-Length: 1000\r\n\r\n"

        assert parse_response(srv.send_raw(raw)).status == 413


class TestKeepAlive:

    def test_two_requests_on_one_connection(self, serve):
        app = Recorder()
        srv = serve(app)

        with srv.connect() as sock:
            sock.sendall(b"GET /one HTTP/1.1\r\nHost: x\r\n\r\n")
            first = parse_response(read_one_response(sock))
            sock.sendall(b"GET /two HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n")
            second = parse_response(read_until_closed(sock))

        assert first.get_header("Connection") == "keep-alive"
        assert first.get_header("Keep-Alive") == "timeout=1"
        assert second.get_header("Connection") == "close"
        assert [c[1] for c in app.calls] == ["/one", "/two"]

    def test_http10_closes_by_default(self, serve):
        srv = serve(WelcomeApp())
        raw = srv.send_raw(b"GET / HTTP/1.0\r\n\r\n")

        assert parse_response(raw).get_header("Connection") == "close"

    def test_keep_alive_disabled(self, serve):
        srv = serve(WelcomeApp(), keep_alive=False)

        with srv.connect() as sock:
            sock.sendall(b"GET / HTTP/1.1\r\nHost: x\r\n\r\n")
            response = parse_response(read_until_closed(sock))

        assert response.get_header("Connection") == "close"

    def test_unread_body_is_drained(self, serve):
        app = Recorder()
        srv = serve(app)

        with srv.connect() as sock:
            sock.sendall(
                b"POST /comments HTTP/1.1\r\nHost: x\r\nContent-Length: 11\r\n\r\nhello world"
                b"GET /after HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n"
            )
            first = parse_response(read_one_response(sock))
            second = parse_response(read_until_closed(sock))

        assert first.status == 200
        assert second.status == 200
        assert app.calls == [("POST", "/comments", ""), ("GET", "/after", "")]

    def test_app_can_close_the_connection(self, serve):
        srv = serve(lambda env: html("bye").set_header("Connection", "close"))

        with srv.connect() as sock:
            sock.sendall(b"GET / HTTP/1.1\r\nHost: x\r\n\r\n")
            response = parse_response(read_until_closed(sock))

        assert response.content == b"bye"
        assert response.get_header("Connection") == "close"


class TestFaults:

    def test_exception_is_500(self, serve):
        def broken(env):
            raise RuntimeError("secret detail")

        srv = serve(broken)
        response = srv.request("GET", "/error")

        assert response.status == 500
        assert b"secret" not in response.content

        # the server keeps serving after a fault
        assert srv.request("GET", "/").status == 500

    def test_handler_timeout_is_504(self, serve):
        release = threading.Event()

        def slow(env):
            release.wait(5.0)
            return html("late")

        srv = serve(slow, handler_timeout=0.3)
        try:
            response = srv.request("GET", "/slow")
        finally:
            release.set()

        assert response.status == 504
        assert response.get_header("Connection") == "close"

    def test_client_disconnect_mid_body(self, serve):
        seen = []

        def reader(env):
            seen.append(env.body.read())
            return html("unreachable")

        srv = serve(reader)
        with srv.connect() as sock:
            sock.sendall(b"POST / HTTP/1.1\r\nHost: x\r\nContent-Length: 100\r\n\r\nonly ten b")
            sock.shutdown(socket.SHUT_WR)
            data = read_until_closed(sock)

        assert data == b""
        assert seen == []

    def test_slow_request_head_is_408(self, serve, caplog):
        caplog.set_level(logging.INFO, logger="httpadapter.access")
        srv = serve(Recorder(), timeout=0.5)

        with srv.connect() as sock:
            sock.sendall(b"GET / HTTP/1.1\r\nHost: ")
            response = parse_response(read_until_closed(sock))

        assert response.status == 408
        assert any('"- -" 408 ' in r.getMessage() for r in caplog.records)

    def test_full_pool_is_503(self, serve, caplog):
        caplog.set_level(logging.INFO, logger="httpadapter.access")
        entered = threading.Event()
        release = threading.Event()

        def blocking(env):
            entered.set()
            release.wait(5.0)
            return html("done")

        srv = serve(blocking, min_workers=1, max_workers=1, queue_size=1)

        busy = srv.connect()
        queued = None
        try:
            busy.sendall(b"GET / HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n")
            assert entered.wait(5.0)

            # busy holds the only worker; queued fills the queue
            queued = srv.connect()
            queued.sendall(b"GET / HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n")
            rejected = parse_response(srv.send_raw(b"GET / HTTP/1.1\r\nHost: x\r\n\r\n"))

            assert rejected.status == 503
            assert rejected.get_header("Connection") == "close"
            assert srv.server.stats["rejected"] == 1
            assert any('"- -" 503 ' in r.getMessage() for r in caplog.records)
        finally:
            release.set()
            busy.close()
            if queued is not None:
                queued.close()


class TestAccessLog:

    def test_request_is_logged(self, serve, caplog):
        caplog.set_level(logging.INFO, logger="httpadapter.access")
        srv = serve(WelcomeApp())

        srv.request("GET", "/blog?page=2")

        lines = [r.getMessage() for r in caplog.records if r.name == "httpadapter.access"]
        assert len(lines) == 1
        assert '"GET /blog?page=2" 200 8 ' in lines[0]
        assert lines[0].startswith("127.0.0.1 - - [")

    def test_json_format(self, serve, caplog):
        caplog.set_level(logging.INFO, logger="httpadapter.access")
        srv = serve(WelcomeApp(), log_format="json")

        srv.request("POST", "/comments", body=b"x")

        records = [r for r in caplog.records if r.name == "httpadapter.access"]
        entry = json.loads(records[-1].getMessage())
        assert entry["method"] == "POST"
        assert entry["path"] == "/comments"
        assert entry["status_code"] == 200
        assert entry["content_length"] == 8

    def test_rejected_request_is_logged(self, serve, caplog):
        caplog.set_level(logging.INFO, logger="httpadapter.access")
        srv = serve(Recorder())

        srv.send_raw(b"GARBAGE\r\n\r\n")

        lines = [r.getMessage() for r in caplog.records if r.name == "httpadapter.access"]
        assert len(lines) == 1
        assert '"- -" 400 ' in lines[0]
