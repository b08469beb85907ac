"""
Tests for the dev server — lookup order, index fallback, reload client.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from flask.testing import FlaskClient

from sitepipe.core.services.event_bus import EventBus
from sitepipe.ui.web.routes_events import RELOAD_CLIENT, RELOAD_PATH, inject_reload_client
from sitepipe.ui.web.server import create_app, resolve_request
from tests.helpers import write


@pytest.fixture()
def served(tmp_path: Path) -> tuple[Path, Path]:
    """A project root with a built development output."""
    root = tmp_path / "site"
    out = root / "test"
    write(out / "index" / "index.html", "<html><body><h1>Home</h1></body></html>")
    write(out / "about" / "index.html", "<html><body><h1>About</h1></body></html>")
    write(out / "about.css", "body{}")
    write(root / "node_modules" / "libx" / "libx.js", "var libx;")
    return root, out


@pytest.fixture()
def client(served) -> FlaskClient:
    root, out = served
    app = create_app(out, root, EventBus())
    app.config["TESTING"] = True
    return app.test_client()


class TestServe:
    def test_route_directory_serves_index(self, client: FlaskClient):
        resp = client.get("/about/")
        assert resp.status_code == 200
        body = resp.get_data(as_text=True)
        assert "<h1>About</h1>" in body
        assert RELOAD_CLIENT in body

    def test_directory_without_slash_redirects(self, client: FlaskClient):
        resp = client.get("/about")
        assert resp.status_code == 308
        assert resp.headers["Location"].endswith("/about/")

        resp = client.get("/about?v=1")
        assert resp.headers["Location"].endswith("/about/?v=1")

    def test_colocated_file_after_redirect(self, client: FlaskClient, served):
        _, out = served
        write(out / "about" / "main.css", "h1{}")
        resp = client.get("/about", follow_redirects=True)
        assert resp.status_code == 200
        assert "<h1>About</h1>" in resp.get_data(as_text=True)

        resp = client.get("/about/main.css")
        assert resp.mimetype == "text/css"
        assert resp.get_data(as_text=True) == "h1{}"

    def test_file_is_not_redirected(self, client: FlaskClient):
        assert client.get("/about.css").status_code == 200

    def test_static_file_from_output(self, client: FlaskClient):
        resp = client.get("/about.css")
        assert resp.status_code == 200
        assert resp.get_data(as_text=True) == "body{}"
        assert RELOAD_CLIENT not in resp.get_data(as_text=True)

    def test_vendor_file_from_project_root(self, client: FlaskClient):
        resp = client.get("/node_modules/libx/libx.js")
        assert resp.status_code == 200
        assert resp.get_data(as_text=True) == "var libx;"

    def test_root_falls_back_to_index_route(self, client: FlaskClient):
        resp = client.get("/")
        assert resp.status_code == 200
        assert "<h1>Home</h1>" in resp.get_data(as_text=True)

    def test_unknown_path_falls_back_to_index_route(self, client: FlaskClient):
        resp = client.get("/no/such/page")
        assert resp.status_code == 200
        assert "<h1>Home</h1>" in resp.get_data(as_text=True)

    def test_404_without_index_route(self, tmp_path: Path):
        app = create_app(tmp_path / "test", tmp_path, EventBus())
        resp = app.test_client().get("/anything")
        assert resp.status_code == 404

    def test_reload_stream_is_sse(self, client: FlaskClient):
        resp = client.get(RELOAD_PATH)
        try:
            assert resp.status_code == 200
            assert resp.mimetype == "text/event-stream"
        finally:
            resp.close()


class TestResolveRequest:
    def test_traversal_rejected(self, served):
        root, out = served
        write(root.parent / "secret.txt", "no")
        assert resolve_request("../../secret.txt", out, root) == out / "index" / "index.html"

    def test_none_when_nothing_matches(self, tmp_path: Path):
        assert resolve_request("x.js", tmp_path / "test", tmp_path) is None


class TestInjectReloadClient:
    def test_before_last_body_close(self):
        html = "<body><p>a</p></BODY>"
        assert inject_reload_client(html) == "<body><p>a</p>" + RELOAD_CLIENT + "</BODY>"

    def test_appended_without_body(self):
        assert inject_reload_client("<p>fragment</p>") == "<p>fragment</p>" + RELOAD_CLIENT


class TestEventBus:
    def test_subscriber_gets_ready_then_reload(self):
        bus = EventBus()
        sub = bus.subscribe(heartbeat_interval=0.1)
        ready = next(sub)
        assert ready["type"] == "sys:ready"

        bus.publish("build:reload", key="styles")
        event = next(sub)
        assert event["type"] == "build:reload"
        assert event["key"] == "styles"

        sub.close()
        assert bus.subscriber_count == 0

    def test_replay_since(self):
        bus = EventBus()
        bus.publish("build:reload", key="markup")
        second = bus.publish("build:reload", key="styles")

        sub = bus.subscribe(since=1, heartbeat_interval=0.1)
        next(sub)  # sys:ready
        assert next(sub)["seq"] == second["seq"]
        sub.close()

    def test_latest_per_stage(self):
        bus = EventBus()
        bus.publish("build:reload", key="styles")
        last = bus.publish("build:reload", key="styles")
        assert bus.latest()["styles"]["seq"] == last["seq"]
