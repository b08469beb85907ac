"""
Tests for the site watcher — change→stage mapping and single-flight re-runs.
"""

from __future__ import annotations

import os
import threading
import time

from sitepipe.core.services.site_watcher import (
    SiteWatcher,
    StageDispatcher,
    changed_paths,
    stage_for,
    stages_for_changes,
)
from tests.helpers import write


class TestStageFor:
    def test_table(self, make_ctx):
        ctx = make_ctx()
        assert stage_for(ctx.html_root / "pages" / "about.html", ctx) == "markup"
        assert stage_for(ctx.html_root / "partials" / "nav.html", ctx) == "markup"
        assert stage_for(ctx.styles_root / "about.scss", ctx) == "styles"
        assert stage_for(ctx.styles_root / "_vars.sass", ctx) == "styles"
        assert stage_for(ctx.scripts_root / "about" / "util.js", ctx) == "scripts"
        assert stage_for(ctx.assets_root / "img" / "logo.svg", ctx) == "assets"

    def test_shared_partials_next_to_pages(self, make_ctx):
        ctx = make_ctx()
        assert stage_for(ctx.styles_root.parent / "_mixins.scss", ctx) == "styles"
        assert stage_for(ctx.scripts_root.parent / "lib" / "util.js", ctx) == "scripts"

    def test_shared_root_never_widens_to_project(self, make_ctx):
        ctx = make_ctx(paths={"styles": "styles"})
        assert stage_for(ctx.project_root / "other.scss", ctx) is None
        assert stage_for(ctx.project_root / "styles" / "a.scss", ctx) == "styles"

    def test_unwatched(self, make_ctx):
        ctx = make_ctx()
        assert stage_for(ctx.html_root / "notes.md", ctx) is None
        assert stage_for(ctx.project_root / "site.yml", ctx) is None
        assert stage_for(ctx.output_root / "about" / "index.html", ctx) is None

    def test_distinct_stages_in_table_order(self, make_ctx):
        ctx = make_ctx()
        paths = [
            ctx.assets_root / "a.png",
            ctx.html_root / "a.html",
            ctx.html_root / "b.html",
        ]
        assert stages_for_changes(paths, ctx) == ["markup", "assets"]


class TestChangedPaths:
    def test_added_modified_removed(self, tmp_path):
        a, b, c = tmp_path / "a", tmp_path / "b", tmp_path / "c"
        before = {a: 1.0, b: 1.0}
        after = {a: 1.0, b: 2.0, c: 1.0}
        assert changed_paths(before, after) == {b, c}
        assert changed_paths(after, {a: 1.0}) == {b, c}


class TestStageDispatcher:
    def test_triggers_during_a_run_coalesce_into_one(self):
        calls: list[str] = []
        active = 0
        max_active = 0
        lock = threading.Lock()
        gate = threading.Event()
        started = threading.Event()

        def run(stage: str) -> None:
            nonlocal active, max_active
            with lock:
                active += 1
                max_active = max(max_active, active)
                calls.append(stage)
            started.set()
            gate.wait(5)
            with lock:
                active -= 1

        dispatcher = StageDispatcher(run)
        assert dispatcher.trigger("styles") is True
        assert started.wait(5)
        assert dispatcher.is_running("styles")
        assert dispatcher.trigger("styles") is False
        assert dispatcher.trigger("styles") is False

        gate.set()
        assert dispatcher.wait_idle(5)
        assert calls == ["styles", "styles"]
        assert max_active == 1
        assert not dispatcher.is_running("styles")

    def test_failed_run_does_not_stop_dispatching(self):
        calls: list[str] = []

        def run(stage: str) -> None:
            calls.append(stage)
            raise RuntimeError("compiler crashed")

        dispatcher = StageDispatcher(run)
        dispatcher.trigger("scripts")
        assert dispatcher.wait_idle(5)
        dispatcher.trigger("scripts")
        assert dispatcher.wait_idle(5)
        assert calls == ["scripts", "scripts"]


class TestSiteWatcher:
    def _watcher(self, ctx):
        triggered: list[str] = []
        dispatcher = StageDispatcher(triggered.append)
        return SiteWatcher(ctx, dispatcher, poll_interval=0.01), dispatcher, triggered

    def test_no_change_no_trigger(self, make_ctx):
        watcher, _, triggered = self._watcher(make_ctx())
        assert watcher.poll_once() == []
        assert triggered == []

    def test_new_stylesheet_triggers_styles(self, make_ctx):
        ctx = make_ctx()
        watcher, dispatcher, triggered = self._watcher(ctx)
        write(ctx.styles_root / "contact.scss", "a { b: c; }")

        assert watcher.poll_once() == ["styles"]
        assert dispatcher.wait_idle(5)
        assert triggered == ["styles"]

    def test_modified_layout_triggers_markup(self, make_ctx):
        ctx = make_ctx()
        layout = ctx.html_root / "layouts" / "base.html"
        watcher, dispatcher, triggered = self._watcher(ctx)

        stat = layout.stat()
        os.utime(layout, (stat.st_atime, stat.st_mtime + 10))
        assert watcher.poll_once() == ["markup"]
        assert dispatcher.wait_idle(5)
        assert triggered == ["markup"]

    def test_deleted_script_triggers_scripts(self, make_ctx):
        ctx = make_ctx()
        watcher, _, _ = self._watcher(ctx)
        (ctx.scripts_root / "about" / "main.js").unlink()
        assert watcher.poll_once() == ["scripts"]

    def test_run_loop_stops(self, make_ctx):
        watcher, _, _ = self._watcher(make_ctx())
        thread = watcher.start()
        time.sleep(0.05)
        watcher.stop()
        thread.join(2)
        assert not thread.is_alive()
