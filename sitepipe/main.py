"""
sitepipe — CLI entrypoint.

Usage:
    python -m sitepipe.main --help
    sitepipe common --env=production
    sitepipe dev
    sitepipe build --env=production
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from sitepipe import __version__
from sitepipe.core.config.environment import BuildContext, make_context, resolve_environment
from sitepipe.core.config.loader import ConfigError, find_site_file, load_site, site_root
from sitepipe.core.observability.logging_config import (
    LOG_FILE_LEVEL_VAR,
    LOG_FILE_VAR,
    level_from_flags,
    setup_logging,
)
from sitepipe.core.services.event_bus import EventBus
from sitepipe.core.services.site_builders.base import PipelineResult, StageResult


@click.group()
@click.version_option(version=__version__, prog_name="sitepipe")
@click.option("--verbose", "-v", is_flag=True, help="Show stage progress and tool output.")
@click.option("--quiet", "-q", is_flag=True, help="Only report errors.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to site.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """sitepipe — build a multi-page static site from fragments and layouts."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=level_from_flags(debug=debug, verbose=verbose, quiet=quiet),
        log_file=os.environ.get(LOG_FILE_VAR),
        log_file_level=os.environ.get(LOG_FILE_LEVEL_VAR),
        quiet_third_party=not debug,
    )


env_option = click.option(
    "--env",
    "env_flag",
    type=click.Choice(["development", "production"], case_sensitive=False),
    default=None,
    help="Build environment (default: $SITEPIPE_ENV, then development).",
)
json_option = click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")


def _build_context(ctx: click.Context, env_flag: str | None, bus: EventBus | None = None) -> BuildContext:
    """Load site.yml and resolve the environment, exiting on config errors."""
    config_path: Path | None = ctx.obj.get("config_path") or find_site_file()
    try:
        site = load_site(config_path)
        environment = resolve_environment(env_flag)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)
    return make_context(site_root(config_path), site, environment, bus=bus)


_STATUS_STYLE = {
    "done": ("✓", "green"),
    "error": ("✗", "red"),
    "skipped": ("⊘", "yellow"),
}


def _echo_stage(sr: StageResult, verbose: bool) -> None:
    icon, color = _STATUS_STYLE.get(sr.status, ("•", "white"))
    click.secho(f"   {icon} {sr.label}", fg=color, nl=False)
    click.echo(f" ({sr.duration_ms}ms)" if sr.status != "skipped" else " (skipped)")
    if verbose:
        for line in sr.log_lines:
            click.echo(f"     │ {line}")
    for issue in sr.issues:
        click.secho(f"     ⚠ {issue}", fg="yellow")
    if sr.error:
        click.secho(f"     │ {sr.error}", fg="red")


def _report(result: PipelineResult, *, as_json: bool, verbose: bool, quiet: bool) -> None:
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if not quiet:
        click.secho(f"\n🔨 {result.target} [{result.environment}] → {result.output_dir}", fg="cyan", bold=True)
        for sr in result.stages:
            _echo_stage(sr, verbose)
        click.echo()

    if result.ok:
        if not quiet:
            click.secho(f"✅ Done in {result.total_duration_ms}ms", fg="green", bold=True)
    else:
        click.secho("❌ Build failed", fg="red", bold=True)


def _run_one_shot(ctx: click.Context, target: str, env_flag: str | None, as_json: bool) -> None:
    from sitepipe.core.services.site_engine import run_target

    build_ctx = _build_context(ctx, env_flag)
    result = run_target(build_ctx, target)
    _report(result, as_json=as_json, verbose=ctx.obj["verbose"], quiet=ctx.obj["quiet"])
    if not result.ok:
        sys.exit(1)


# ── Targets ─────────────────────────────────────────────────────────


@cli.command()
@env_option
@json_option
@click.pass_context
def common(ctx: click.Context, env_flag: str | None, as_json: bool) -> None:
    """Clean, then compose pages, compile styles, bundle scripts, copy assets."""
    _run_one_shot(ctx, "common", env_flag, as_json)


@cli.command()
@env_option
@json_option
@click.pass_context
def build(ctx: click.Context, env_flag: str | None, as_json: bool) -> None:
    """Common stages, then vendor extraction, rewrite and minification.

    The production stages only run with --env=production (or
    SITEPIPE_ENV=production).
    """
    _run_one_shot(ctx, "build", env_flag, as_json)


@cli.command()
@env_option
@click.option("--host", default=None, help="Bind address (default: server.host).")
@click.option("--port", "-p", default=None, type=int, help="Port number (default: server.port).")
@click.option("--open/--no-open", "open_browser", default=None, help="Open the site in a browser.")
@click.pass_context
def dev(
    ctx: click.Context,
    env_flag: str | None,
    host: str | None,
    port: int | None,
    open_browser: bool | None,
) -> None:
    """Build, then serve with live reload and rebuild on change."""
    from sitepipe.core.services.site_engine import run_target
    from sitepipe.core.services.site_watcher import start_watcher
    from sitepipe.ui.web.server import create_app, run_server

    bus = EventBus()
    build_ctx = _build_context(ctx, env_flag, bus=bus)
    if not build_ctx.is_development:
        click.secho("❌ The dev target needs the development environment", fg="red")
        sys.exit(1)

    result = run_target(build_ctx, "dev")
    _report(result, as_json=False, verbose=ctx.obj["verbose"], quiet=ctx.obj["quiet"])
    if any(sr.error_kind == "OutputError" for sr in result.stages):
        sys.exit(1)

    server = build_ctx.site.server
    host = host or server.host
    port = port or server.port

    start_watcher(build_ctx)
    app = create_app(
        build_ctx.output_root,
        build_ctx.project_root,
        bus,
        encoding=build_ctx.site.templates.encoding,
    )

    click.echo()
    click.secho(f"⚡ {build_ctx.site.name} — dev server", bold=True)
    click.echo(f"   Site:    http://{host}:{port}/index/")
    click.echo(f"   Output:  {build_ctx.output_root}")
    click.echo()

    run_server(
        app,
        host=host,
        port=port,
        open_browser=server.open_browser if open_browser is None else open_browser,
    )


# ── Utilities ───────────────────────────────────────────────────────


@cli.command()
@env_option
@json_option
@click.pass_context
def routes(ctx: click.Context, env_flag: str | None, as_json: bool) -> None:
    """List pages and the output file each one maps to."""
    from sitepipe.core.services.site_builders.compose import (
        discover_pages,
        output_path,
        page_name,
        route_for,
    )

    build_ctx = _build_context(ctx, env_flag)
    rows = []
    for page in discover_pages(build_ctx.pages_root):
        name = page_name(page, build_ctx.pages_root)
        rows.append({
            "page": name,
            "route": route_for(name),
            "output": str(output_path(build_ctx.output_root, name).relative_to(build_ctx.project_root)),
        })

    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return

    if not rows:
        click.secho(f"No pages under {build_ctx.pages_root}", fg="yellow")
        return

    click.secho(f"📄 Pages ({len(rows)}):", fg="cyan", bold=True)
    for row in rows:
        click.echo(f"   • {row['page']} → {row['output']}")


@cli.command()
@click.pass_context
def clean(ctx: click.Context) -> None:
    """Remove every output root (development and production)."""
    from sitepipe.core.services.site_builders.errors import OutputError
    from sitepipe.core.services.site_engine import clean_outputs

    build_ctx = _build_context(ctx, None)
    try:
        removed = clean_outputs(build_ctx)
    except (OutputError, OSError) as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    if not removed:
        click.echo("Nothing to clean.")
        return
    for root in removed:
        click.secho(f"🗑  Removed {root}", fg="green")


if __name__ == "__main__":
    cli()
