"""
SSE reload endpoint.

Provides ``GET /__reload`` — a Server-Sent Events stream fed by the
app's EventBus. The client injected into served pages reloads on
``build:reload``.

Wire format (text/event-stream)::

    event: build:reload
    id: 47
    data: {"v":1,"ts":1739648400.123,"seq":47,"type":"build:reload","key":"styles","data":{}}
"""

from __future__ import annotations

import json

from flask import Blueprint, Response, current_app, request

events_bp = Blueprint("events", __name__)

RELOAD_PATH = "/__reload"

RELOAD_CLIENT = (
    "<script>(function(){"
    f"var es=new EventSource('{RELOAD_PATH}');"
    "es.addEventListener('build:reload',function(){location.reload();});"
    "})();</script>"
)


@events_bp.route(RELOAD_PATH)
def reload_stream():  # type: ignore[no-untyped-def]
    """SSE endpoint — streams reload events to the browser.

    ``Last-Event-Id`` (sent by EventSource on reconnect) resumes from
    the bus's replay buffer.
    """
    since = request.args.get("since", 0, type=int)
    last_event_id = request.headers.get("Last-Event-Id")
    if last_event_id is not None:
        try:
            since = max(since, int(last_event_id))
        except (ValueError, TypeError):
            pass

    bus = current_app.config["EVENT_BUS"]

    def generate():  # type: ignore[no-untyped-def]
        for event in bus.subscribe(since=since):
            yield (
                f"event: {event['type']}\n"
                f"id: {event['seq']}\n"
                f"data: {json.dumps(event, default=str)}\n\n"
            )

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "X-Accel-Buffering": "no",
            "Connection": "keep-alive",
        },
    )


def inject_reload_client(html: str) -> str:
    """Insert the reload client before </body>, or append it."""
    idx = html.lower().rfind("</body>")
    if idx == -1:
        return html + RELOAD_CLIENT
    return html[:idx] + RELOAD_CLIENT + html[idx:]
