"""
=============================================================================
EXAMPLE: A SMALL BLOG
=============================================================================

A Router-based application served by DispatchServer. Run it directly:

    python examples/blog_app.py

or through the command line, from the examples directory:

    cd examples
    python -m httpadapter blog_app:application --port 8080

Then:

    curl http://127.0.0.1:8080/
    curl http://127.0.0.1:8080/posts
    curl -X POST -d 'Hello, world' http://127.0.0.1:8080/posts
    curl -I http://127.0.0.1:8080/about           # HEAD on the fallback: headers only
    curl -X DELETE http://127.0.0.1:8080/posts     # 405, Allow: GET, POST

=============================================================================
"""

import sys
import threading
from html import escape
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from httpadapter import DispatchServer, ServerConfig
from httpadapter.access_log import configure_logging
from httpadapter.http import ResponseBuilder, Router, bad_request, html, ok
from httpadapter.http.router import default_fallback


# =============================================================================
# IN-MEMORY STORE
# =============================================================================
# Requests run on several worker threads; every access takes the lock.

posts = [{"id": 1, "text": "First post"}]
posts_lock = threading.Lock()


# =============================================================================
# ROUTES
# =============================================================================

application = Router()


@application.get("/")
def index(env):
    with posts_lock:
        snapshot = list(posts)
    items = "".join(f"<li>{escape(p['text'])}</li>" for p in snapshot)
    return html(f"<h1>Blog</h1><ul>{items}</ul>")


@application.get("/posts")
def list_posts(env):
    with posts_lock:
        return ok(list(posts))


@application.post("/posts")
def create_post(env):
    text = env.body.read().decode("utf-8", errors="replace").strip()
    if not text:
        return bad_request("Post text is required")

    with posts_lock:
        post = {"id": len(posts) + 1, "text": text}
        posts.append(post)

    return ResponseBuilder().status(201).json(post).build()


@application.fallback
def not_routed(env):
    # Unknown pages get the front page rather than a bare 404.
    if application.allowed_methods(env.path):
        return default_fallback(application, env)
    return index(env)


if __name__ == "__main__":
    configure_logging("INFO")
    DispatchServer(application, ServerConfig(port=8080)).run()
