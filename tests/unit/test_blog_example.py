"""
Tests for the blog application in examples/.
"""

import importlib.util
from pathlib import Path

import pytest

from httpadapter.testing import Browser


BLOG_APP = Path(__file__).parent.parent.parent / "examples" / "blog_app.py"


@pytest.fixture
def blog():
    """A freshly imported blog module, so posts do not leak between tests."""
    spec = importlib.util.spec_from_file_location("blog_app_under_test", BLOG_APP)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestBlogExample:

    def test_front_page_lists_posts(self, blog):
        browser = Browser(blog.application).visit("/")

        assert browser.status_code() == 200
        assert browser.current_page_contains("<li>First post</li>")

    def test_create_post(self, blog):
        browser = Browser(blog.application).request("POST", "/posts", body=b"Second post")

        assert browser.status_code() == 201
        assert browser.visit("/").current_page_contains("<li>Second post</li>")

    def test_post_text_is_escaped(self, blog):
        browser = Browser(blog.application)
        browser.request("POST", "/posts", body=b"<script>alert(1)</script>")

        browser.visit("/")

        assert browser.current_page_contains("&lt;script&gt;alert(1)&lt;/script&gt;")
        assert not browser.current_page_contains("<script>")

    def test_empty_post_rejected(self, blog):
        assert Browser(blog.application).request("POST", "/posts").status_code() == 400

    def test_unknown_method_on_known_path(self, blog):
        browser = Browser(blog.application).request("DELETE", "/posts")

        assert browser.status_code() == 405
        assert browser.response_headers()["Allow"] == "GET, POST"

    def test_unknown_page_shows_front_page(self, blog):
        assert Browser(blog.application).visit("/about").current_page_contains("<h1>Blog</h1>")
