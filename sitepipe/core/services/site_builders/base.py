"""
Site builder base — stage model and the stage-graph runner.

Pipeline model
──────────────
A build is a fixed table of **named stages**. Each stage:
  - Declares the stages it needs (its upstream dependencies).
  - Declares the build environments it is active in.
  - Yields log lines as it runs.
  - Records non-fatal issues (a stylesheet that failed to compile, a
    missing vendor file) without failing.
  - Fails by raising a fatal BuildError; any OSError counts as one.

The runner resolves the graph once, then runs every stage whose needs
are complete, concurrently, on a thread pool:

    clean ─┬─ markup ─┐
           ├─ styles ─┤
           ├─ scripts ┼─ extract ─ rewrite ─ minify-markup ─ minify-scripts
           └─ assets ─┘

After the first failed stage nothing new is started; stages already in
flight finish and everything left is marked "skipped".
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from collections.abc import Callable, Generator, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sitepipe.core.config.environment import BuildContext, BuildEnvironment
from sitepipe.core.services.site_builders.errors import BuildError, OutputError

logger = logging.getLogger(__name__)


# ── Log line type alias ─────────────────────────────────────────────

LogStream = Generator[str, None, None]
"""A generator that yields log line strings, one at a time."""

StageFn = Callable[[BuildContext, list[BuildError]], LogStream]
"""A stage body: (context, issues) → log lines. Appends non-fatal errors to issues."""

BOTH = frozenset(BuildEnvironment)
PRODUCTION_ONLY = frozenset({BuildEnvironment.PRODUCTION})


# ── Data Models ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Stage:
    """Declaration of a pipeline stage."""

    name: str                           # Machine name: "markup", "extract", etc.
    label: str                          # Human label: "Compose Pages"
    run: StageFn
    needs: tuple[str, ...] = ()
    environments: frozenset[BuildEnvironment] = BOTH

    def active_in(self, env: BuildEnvironment) -> bool:
        return env in self.environments


@dataclass
class StageResult:
    """Result of executing one pipeline stage."""

    name: str
    label: str
    status: str = "pending"             # "pending" | "running" | "done" | "error" | "skipped"
    duration_ms: int = 0
    log_lines: list[str] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)
    error: str = ""
    error_kind: str = ""                # BuildError subclass name, e.g. "CompositionError"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "label": self.label,
            "status": self.status,
            "duration_ms": self.duration_ms,
            "issues": list(self.issues),
            "error": self.error,
            "error_kind": self.error_kind,
        }


@dataclass
class PipelineResult:
    """Result of a full pipeline execution."""

    target: str
    environment: str
    output_dir: str = ""
    stages: list[StageResult] = field(default_factory=list)
    ok: bool = False
    total_duration_ms: int = 0

    def stage(self, name: str) -> StageResult | None:
        for sr in self.stages:
            if sr.name == name:
                return sr
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "environment": self.environment,
            "output_dir": self.output_dir,
            "ok": self.ok,
            "total_duration_ms": self.total_duration_ms,
            "stages": [s.to_dict() for s in self.stages],
        }


# ── File helpers ────────────────────────────────────────────────────


def write_text_atomic(path: Path, content: str, encoding: str = "utf-8") -> None:
    """Write a file so readers never observe a partial write."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as fh:
            fh.write(content)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


# ── Graph resolution ────────────────────────────────────────────────


def select_stages(stages: Iterable[Stage], env: BuildEnvironment) -> list[Stage]:
    """Active stages for an environment, with dependency order validated.

    Needs pointing at inactive stages are dropped (they can never run);
    needs pointing at unknown stages, and cycles, are errors.

    Raises:
        ValueError: On unknown needs or a dependency cycle.
    """
    stages = list(stages)
    known = {s.name for s in stages}
    for s in stages:
        unknown = [n for n in s.needs if n not in known]
        if unknown:
            raise ValueError(f"Stage '{s.name}' needs unknown stage(s): {', '.join(unknown)}")

    active = [s for s in stages if s.active_in(env)]
    active_names = {s.name for s in active}
    active = [
        Stage(s.name, s.label, s.run, tuple(n for n in s.needs if n in active_names), s.environments)
        for s in active
    ]
    topological_order(active)
    return active


def topological_order(stages: list[Stage]) -> list[str]:
    """Return stage names in dependency order (stable w.r.t. declaration order)."""
    remaining = {s.name: set(s.needs) for s in stages}
    order: list[str] = []
    while remaining:
        ready = [s.name for s in stages if s.name in remaining and not remaining[s.name]]
        if not ready:
            raise ValueError(f"Dependency cycle between stages: {', '.join(sorted(remaining))}")
        for name in ready:
            del remaining[name]
            order.append(name)
        for deps in remaining.values():
            deps.difference_update(ready)
    return order


# ── Stage execution ─────────────────────────────────────────────────


def execute_stage(stage: Stage, ctx: BuildContext) -> StageResult:
    """Run one stage to completion, capturing logs, issues and errors."""
    sr = StageResult(name=stage.name, label=stage.label, status="running")
    issues: list[BuildError] = []
    start = time.monotonic()

    try:
        for line in stage.run(ctx, issues):
            sr.log_lines.append(line)
            logger.debug("[%s] %s", stage.name, line)
        sr.status = "done"
        ctx.notify_reload(stage.name)
    except BuildError as e:
        sr.status = "error"
        sr.error = str(e)
        sr.error_kind = type(e).__name__
    except OSError as e:
        sr.status = "error"
        sr.error = str(OutputError(e.strerror or str(e), e.filename))
        sr.error_kind = OutputError.__name__

    sr.issues = [str(i) for i in issues]
    sr.duration_ms = int((time.monotonic() - start) * 1000)

    for issue in sr.issues:
        logger.warning("[%s] %s", stage.name, issue)
    if sr.status == "error":
        logger.error("[%s] %s", stage.name, sr.error)
    else:
        logger.info("[%s] done in %dms", stage.name, sr.duration_ms)
    return sr


def run_stages(
    stages: Iterable[Stage],
    ctx: BuildContext,
    *,
    target: str = "",
    max_workers: int = 4,
    on_stage_done: Callable[[StageResult], None] | None = None,
) -> PipelineResult:
    """Run the active stages of a graph for ctx.environment.

    Returns:
        PipelineResult with one StageResult per active stage, in
        declaration order.
    """
    active = select_stages(stages, ctx.environment)
    by_name = {s.name: s for s in active}
    result = PipelineResult(
        target=target,
        environment=ctx.environment.value,
        output_dir=str(ctx.output_root),
    )

    results: dict[str, StageResult] = {}
    done: set[str] = set()
    failed = False
    total_start = time.monotonic()

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="stage") as pool:
        running: dict[Future[StageResult], str] = {}

        while True:
            if not failed:
                for s in active:
                    if s.name in results or s.name in running.values():
                        continue
                    if all(n in done for n in s.needs):
                        logger.debug("Starting stage %s", s.name)
                        running[pool.submit(execute_stage, s, ctx)] = s.name

            if not running:
                break

            finished, _ = wait(running, return_when=FIRST_COMPLETED)
            for fut in finished:
                name = running.pop(fut)
                sr = fut.result()
                results[name] = sr
                if sr.status == "done":
                    done.add(name)
                else:
                    failed = True
                if on_stage_done is not None:
                    on_stage_done(sr)

    for s in active:
        sr = results.get(s.name)
        if sr is None:
            sr = StageResult(name=s.name, label=by_name[s.name].label, status="skipped")
        result.stages.append(sr)

    result.ok = not failed
    result.total_duration_ms = int((time.monotonic() - total_start) * 1000)
    return result
