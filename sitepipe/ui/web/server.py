"""
Dev server — Flask app serving the development output.

Lookup order for a request path:
  1. the output root (``test/`` by default),
  2. the project root, so ``/node_modules/...`` references resolve
     without extraction during development,
  3. the site's index route (``index/index.html``) as the fallback.

A directory resolves to its ``index.html``; requested without a trailing
slash it is redirected (308) to the slashed URL first. HTML responses get the
reload client injected; ``/__reload`` streams reload events.
"""

from __future__ import annotations

import logging
import mimetypes
import webbrowser
from pathlib import Path

from flask import Flask, Response, abort, redirect, request, send_file
from werkzeug.security import safe_join

from sitepipe.core.services.event_bus import EventBus
from sitepipe.ui.web.routes_events import events_bp, inject_reload_client

logger = logging.getLogger(__name__)

INDEX_FILE = "index.html"
FALLBACK_ROUTE = "index/index.html"


def create_app(
    output_root: Path,
    project_root: Path,
    bus: EventBus,
    *,
    encoding: str = "utf-8",
) -> Flask:
    """Create and configure the dev server application.

    Args:
        output_root: Development output directory (served first).
        project_root: Project root (served second).
        bus: Event bus the pipeline publishes reload events on.
        encoding: Encoding of the HTML files, for reload injection.

    Returns:
        Configured Flask application.
    """
    app = Flask(__name__, static_folder=None)

    app.config["OUTPUT_ROOT"] = str(output_root)
    app.config["PROJECT_ROOT"] = str(project_root)
    app.config["EVENT_BUS"] = bus
    app.config["SITE_ENCODING"] = encoding

    app.register_blueprint(events_bp)

    @app.route("/", defaults={"path": ""})
    @app.route("/<path:path>")
    def serve(path: str):  # type: ignore[no-untyped-def]
        matched = match_request(path, output_root, project_root)
        if matched is not None and matched.is_dir() and not request.path.endswith("/"):
            # Relative references in the page resolve against the directory.
            query = request.query_string.decode()
            return redirect(f"{request.path}/" + (f"?{query}" if query else ""), code=308)

        target = resolve_request(path, output_root, project_root)
        if target is None:
            abort(404)
        if target.suffix == ".html":
            html = target.read_text(encoding=encoding)
            return Response(inject_reload_client(html), mimetype="text/html")
        mimetype = mimetypes.guess_type(target.name)[0]
        return send_file(target, mimetype=mimetype, max_age=0)

    logger.info("Dev server app created (root=%s)", output_root)
    return app


def match_request(path: str, output_root: Path, project_root: Path) -> Path | None:
    """First file, or directory holding an index, that a request path names."""
    for base in (output_root, project_root):
        joined = safe_join(str(base), path) if path else str(base)
        if joined is None:
            continue
        candidate = Path(joined)
        if candidate.is_file() or (candidate / INDEX_FILE).is_file():
            return candidate
    return None


def resolve_request(path: str, output_root: Path, project_root: Path) -> Path | None:
    """Map a request path to a file, applying the index fallback."""
    matched = match_request(path, output_root, project_root)
    if matched is not None:
        return matched / INDEX_FILE if matched.is_dir() else matched

    fallback = output_root / FALLBACK_ROUTE
    return fallback if fallback.is_file() else None


def run_server(
    app: Flask,
    host: str = "127.0.0.1",
    port: int = 8080,
    open_browser: bool = False,
) -> None:
    """Run the Flask development server (blocking, threaded for SSE)."""
    url = f"http://{host}:{port}/index/"
    logger.info("Serving %s on %s", app.config["OUTPUT_ROOT"], url)
    if open_browser:
        webbrowser.open(url)
    app.run(host=host, port=port, debug=False, use_reloader=False, threaded=True)
