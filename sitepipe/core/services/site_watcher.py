"""
Site watcher — mtime polling that re-runs the affected stage.

Every change maps through WATCH_TABLE to exactly one stage:

    <html root>/**/*.html            → markup
    <styles root>/../**/*.scss|sass  → styles
    <scripts root>/../**/*.js        → scripts
    <assets root>/**                 → assets

Stylesheet and script rules watch one level above the pages directory
(``src/scss``, ``src/js``), where shared partials live.

Design decisions
────────────────
1. **Mtime polling** (not inotify/watchdog): a few hundred stat() calls
   per poll for a typical site, no extra dependency.
2. **Single-flight per stage**: StageDispatcher never runs the same stage
   twice at once. Triggers that arrive while it runs coalesce into one
   follow-up run. Different stages run independently, so a stalled
   stylesheet compile only holds back stylesheet changes.
3. **Never fatal**: a failed re-run is logged and the watcher keeps
   polling for the next edit.
4. **Daemon threads**: everything stops when the dev server exits.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from sitepipe.core.config.environment import BuildContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WatchRule:
    """One row of the event→stage table."""

    root: str                           # BuildContext attribute: "html_root", …
    suffixes: tuple[str, ...]           # empty = any file
    stage: str
    shared: bool = False                # also watch the root's parent (shared partials)

    def watch_root(self, ctx: BuildContext) -> Path:
        root: Path = getattr(ctx, self.root)
        if self.shared and ctx.project_root in root.parent.parents:
            return root.parent
        return root


WATCH_TABLE: tuple[WatchRule, ...] = (
    WatchRule("html_root", (".html",), "markup"),
    WatchRule("styles_root", (".scss", ".sass"), "styles", shared=True),
    WatchRule("scripts_root", (".js",), "scripts", shared=True),
    WatchRule("assets_root", (), "assets"),
)

Snapshot = dict[Path, float]


# ── Event → stage ───────────────────────────────────────────────────


def stage_for(path: Path, ctx: BuildContext, table: Iterable[WatchRule] = WATCH_TABLE) -> str | None:
    """The stage a changed file belongs to, or None if nothing watches it."""
    for rule in table:
        root = rule.watch_root(ctx)
        if root not in path.parents:
            continue
        if rule.suffixes and path.suffix not in rule.suffixes:
            continue
        return rule.stage
    return None


def snapshot(ctx: BuildContext, table: Iterable[WatchRule] = WATCH_TABLE) -> Snapshot:
    """mtime of every watched file."""
    result: Snapshot = {}
    for rule in table:
        root = rule.watch_root(ctx)
        if not root.is_dir():
            continue
        for p in root.rglob("*"):
            if rule.suffixes and p.suffix not in rule.suffixes:
                continue
            try:
                if p.is_file():
                    result[p] = p.stat().st_mtime
            except OSError:
                continue  # vanished between rglob and stat
    return result


def changed_paths(before: Snapshot, after: Snapshot) -> set[Path]:
    """Files added, removed, or modified between two snapshots."""
    changed = {p for p, m in after.items() if before.get(p) != m}
    changed.update(p for p in before if p not in after)
    return changed


def stages_for_changes(paths: Iterable[Path], ctx: BuildContext) -> list[str]:
    """Distinct affected stages, in table order."""
    hit = {stage_for(p, ctx) for p in paths}
    return [rule.stage for rule in WATCH_TABLE if rule.stage in hit]


# ── Single-flight dispatcher ────────────────────────────────────────


class StageDispatcher:
    """Runs stage re-builds with at most one run in flight per stage.

    ``trigger(stage)`` while that stage is running marks it pending; when
    the run ends, one more run starts and clears the flag. Any number of
    triggers during a run collapse into that single follow-up.
    """

    def __init__(self, run: Callable[[str], object]) -> None:
        self._run = run
        self._cond = threading.Condition()
        self._running: set[str] = set()
        self._pending: set[str] = set()

    def trigger(self, stage: str) -> bool:
        """Request a run. Returns False if it was coalesced into a pending one."""
        with self._cond:
            if stage in self._running:
                self._pending.add(stage)
                logger.debug("Stage %s busy, re-run queued", stage)
                return False
            self._running.add(stage)

        threading.Thread(
            target=self._loop, args=(stage,), daemon=True, name=f"rebuild-{stage}",
        ).start()
        return True

    def is_running(self, stage: str) -> bool:
        with self._cond:
            return stage in self._running

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no stage is running or pending. False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._running and not self._pending, timeout)

    def _loop(self, stage: str) -> None:
        while True:
            try:
                self._run(stage)
            except Exception:
                logger.exception("Re-running stage %s crashed", stage)

            with self._cond:
                if stage in self._pending:
                    self._pending.discard(stage)
                    continue
                self._running.discard(stage)
                self._cond.notify_all()
                return


# ── Poll loop ───────────────────────────────────────────────────────


class SiteWatcher:
    """Polls the source trees and dispatches affected stages."""

    def __init__(
        self,
        ctx: BuildContext,
        dispatcher: StageDispatcher,
        *,
        poll_interval: float | None = None,
    ) -> None:
        self.ctx = ctx
        self.dispatcher = dispatcher
        self.poll_interval = poll_interval if poll_interval is not None else ctx.site.watch.poll_interval
        self._stop = threading.Event()
        self._last: Snapshot = snapshot(ctx)

    def poll_once(self) -> list[str]:
        """Take one snapshot, trigger affected stages, return their names."""
        current = snapshot(self.ctx)
        changed = changed_paths(self._last, current)
        self._last = current
        if not changed:
            return []

        stages = stages_for_changes(changed, self.ctx)
        for stage in stages:
            logger.info("Change detected → %s", stage)
            self.dispatcher.trigger(stage)
        return stages

    def run(self) -> None:
        while not self._stop.wait(self.poll_interval):
            try:
                self.poll_once()
            except OSError as e:
                logger.warning("Watcher poll failed: %s", e)

    def start(self) -> threading.Thread:
        t = threading.Thread(target=self.run, daemon=True, name="site-watcher")
        t.start()
        logger.info("Watching sources (poll every %.1fs)", self.poll_interval)
        return t

    def stop(self) -> None:
        self._stop.set()


def start_watcher(ctx: BuildContext) -> SiteWatcher:
    """Start the watcher for a dev run, re-building through rebuild_stage()."""
    from sitepipe.core.services.site_engine import rebuild_stage

    watcher = SiteWatcher(ctx, StageDispatcher(lambda stage: rebuild_stage(ctx, stage)))
    watcher.start()
    return watcher
