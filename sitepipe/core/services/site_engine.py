"""
Site engine — the build orchestrator.

Owns the stage table and the named targets:

    common  clean + compose + compile + bundle + copy
    dev     common, then serve + watch (started by the CLI)
    build   common, then extract → rewrite → minify markup → minify scripts

Ordering lives in each stage's ``needs``, not in call order; the
runner in site_builders.base enforces it. Which stages run is decided
by the BuildContext's environment.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from pathlib import Path

from sitepipe.core.config.environment import BuildContext
from sitepipe.core.services.site_builders.base import (
    PRODUCTION_ONLY,
    LogStream,
    PipelineResult,
    Stage,
    StageResult,
    execute_stage,
    run_stages,
)
from sitepipe.core.services.site_builders.compose import compose_pages
from sitepipe.core.services.site_builders.errors import (
    BuildError,
    BundleError,
    CompileError,
    OutputError,
)
from sitepipe.core.services.site_builders.tools import (
    bundle_script,
    compile_stylesheet,
    minify_in_place,
)
from sitepipe.core.services.site_builders.vendor import (
    ASSETS_DIR,
    LIB_DIR,
    extract_stage,
    rendered_pages,
    rewrite_stage,
)

logger = logging.getLogger(__name__)

STYLESHEET_SUFFIXES = (".scss", ".sass")


# ── Common stages ───────────────────────────────────────────────────


def clean_stage(ctx: BuildContext, issues: list[BuildError]) -> LogStream:
    """Remove every known output root, whichever environment wrote it."""
    for root in ctx.all_output_roots():
        root = root.resolve()
        if root == ctx.project_root or ctx.project_root not in root.parents:
            raise OutputError("refusing to clean an output root outside the project", root)
        if root.exists():
            shutil.rmtree(root)
            yield f"Removed {root}"


def styles_stage(ctx: BuildContext, issues: list[BuildError]) -> LogStream:
    """Compile every page stylesheet to <root>/<rel>.css (+ .map)."""
    root = ctx.styles_root
    sources = sorted(
        p for p in root.rglob("*")
        if p.suffix in STYLESHEET_SUFFIXES and not p.name.startswith("_")
    ) if root.is_dir() else []
    if not sources:
        yield f"No stylesheets under {root}"
        return

    compiled = 0
    for src in sources:
        dest = ctx.output_root / src.relative_to(root).with_suffix(".css")
        try:
            compile_stylesheet(ctx.runner, ctx.site.tools.stylesheet, src, dest)
        except CompileError as e:
            issues.append(e)
            yield f"✗ {src.relative_to(root)}"
            continue
        compiled += 1
        yield f"✓ {src.relative_to(root)} → {dest.relative_to(ctx.output_root)}"

    yield f"Compiled {compiled}/{len(sources)} stylesheet(s)"


def scripts_stage(ctx: BuildContext, issues: list[BuildError]) -> LogStream:
    """Bundle every <scripts>/<page>/<entry> to <root>/<page>/<entry> (+ .map)."""
    root = ctx.scripts_root
    entry_name = ctx.site.paths.script_entry
    entries = sorted(root.glob(f"*/{entry_name}")) if root.is_dir() else []
    if not entries:
        yield f"No script entry points under {root}"
        return

    bundled = 0
    for entry in entries:
        dest = ctx.output_root / entry.parent.name / entry_name
        try:
            bundle_script(ctx.runner, ctx.site.tools.bundler, entry, dest)
        except BundleError as e:
            issues.append(e)
            yield f"✗ {entry.relative_to(root)}"
            continue
        bundled += 1
        yield f"✓ {entry.relative_to(root)} → {dest.relative_to(ctx.output_root)}"

    yield f"Bundled {bundled}/{len(entries)} entry point(s)"


def assets_stage(ctx: BuildContext, issues: list[BuildError]) -> LogStream:
    """Copy the static asset tree verbatim to <root>/assets."""
    src = ctx.assets_root
    if not src.is_dir():
        yield f"No assets under {src}"
        return
    dest = ctx.output_root / ASSETS_DIR
    shutil.copytree(src, dest, dirs_exist_ok=True)
    count = sum(1 for p in dest.rglob("*") if p.is_file())
    yield f"Copied {count} asset file(s)"


# ── Production stages ───────────────────────────────────────────────


def minify_markup_stage(ctx: BuildContext, issues: list[BuildError]) -> LogStream:
    pages = rendered_pages(ctx.output_root)
    for page in pages:
        minify_in_place(ctx.runner, ctx.site.tools.minify_markup, page)
    yield f"Minified {len(pages)} page(s)"


def minify_scripts_stage(ctx: BuildContext, issues: list[BuildError]) -> LogStream:
    entry_name = ctx.site.paths.script_entry
    scripts = [
        p for p in sorted(ctx.output_root.rglob(entry_name))
        if p.relative_to(ctx.output_root).parts[0] not in (LIB_DIR, ASSETS_DIR)
    ]
    for script in scripts:
        minify_in_place(ctx.runner, ctx.site.tools.minify_scripts, script)
    yield f"Minified {len(scripts)} script(s)"


# ── Stage table and targets ─────────────────────────────────────────

COMMON = ("markup", "styles", "scripts", "assets")

STAGES: tuple[Stage, ...] = (
    Stage("clean", "Clean Output", clean_stage),
    Stage("markup", "Compose Pages", compose_pages, needs=("clean",)),
    Stage("styles", "Compile Stylesheets", styles_stage, needs=("clean",)),
    Stage("scripts", "Bundle Scripts", scripts_stage, needs=("clean",)),
    Stage("assets", "Copy Assets", assets_stage, needs=("clean",)),
    Stage("extract", "Extract Vendor Files", extract_stage, needs=COMMON, environments=PRODUCTION_ONLY),
    Stage("rewrite", "Rewrite References", rewrite_stage, needs=("extract",), environments=PRODUCTION_ONLY),
    Stage("minify-markup", "Minify Markup", minify_markup_stage, needs=("rewrite",), environments=PRODUCTION_ONLY),
    Stage("minify-scripts", "Minify Scripts", minify_scripts_stage, needs=("minify-markup",), environments=PRODUCTION_ONLY),
)

TARGETS: dict[str, tuple[str, ...]] = {
    "common": ("clean",) + COMMON,
    "dev": ("clean",) + COMMON,
    "build": tuple(s.name for s in STAGES),
}

# Stages the watcher may re-run on their own
REBUILDABLE = COMMON


def get_stage(name: str) -> Stage:
    for stage in STAGES:
        if stage.name == name:
            return stage
    raise KeyError(f"Unknown stage: {name}")


def run_target(
    ctx: BuildContext,
    target: str,
    *,
    on_stage_done: Callable[[StageResult], None] | None = None,
) -> PipelineResult:
    """Run a named target's stages for the context's environment.

    Raises:
        KeyError: If the target is unknown.
    """
    if target not in TARGETS:
        raise KeyError(f"Unknown target: {target}")
    names = set(TARGETS[target])
    stages = [s for s in STAGES if s.name in names]

    logger.info("Running target '%s' (%s) → %s", target, ctx.environment.value, ctx.output_root)
    result = run_stages(stages, ctx, target=target, on_stage_done=on_stage_done)
    if result.ok:
        logger.info("Target '%s' finished in %dms", target, result.total_duration_ms)
    else:
        logger.error("Target '%s' failed", target)
    return result


def rebuild_stage(ctx: BuildContext, name: str) -> StageResult:
    """Re-run one common stage in place (watch mode). Never raises on build errors."""
    if name not in REBUILDABLE:
        raise KeyError(f"Stage '{name}' cannot be re-run on its own")
    ctx.output_root.mkdir(parents=True, exist_ok=True)
    return execute_stage(get_stage(name), ctx)


def clean_outputs(ctx: BuildContext) -> list[Path]:
    """Remove all output roots. Returns the roots that existed."""
    existed = [r for r in ctx.all_output_roots() if r.exists()]
    for _line in clean_stage(ctx, []):
        pass
    return existed
