"""
Site model — what the pipeline builds and with which tools.

Loaded from site.yml. Every section has defaults, so an empty file (or
no file at all) describes the conventional layout:

    src/html/pages/*.html     → pages
    src/html/**               → layouts and includes
    src/scss/pages/**/*.scss  → per-page stylesheets
    src/js/pages/*/main.js    → per-page script entry points
    src/assets/**             → static assets
    node_modules/             → shared third-party directory
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


SlotPolicy = Literal["fallback", "empty", "strict"]


class SitePaths(BaseModel):
    """Source locations, relative to the project root."""

    html: str = "src/html"
    pages: str = "pages"                # relative to `html`
    styles: str = "src/scss/pages"
    scripts: str = "src/js/pages"
    script_entry: str = "main.js"
    assets: str = "src/assets"
    vendor: str = "node_modules"


class OutputRoots(BaseModel):
    """Output root per build environment."""

    development: str = "test"
    production: str = "build"


class TemplateOptions(BaseModel):
    slot_policy: SlotPolicy = "fallback"
    encoding: str = "utf-8"


class ServerOptions(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8080
    open_browser: bool = False


class WatchOptions(BaseModel):
    poll_interval: float = 0.5


class ToolCommands(BaseModel):
    """Argv templates for the external compilers.

    Placeholders: ``{input}``, ``{output}``, ``{map}`` (``{output}.map``)
    and ``{name}`` (file name of the final output).
    """

    stylesheet: list[str] = Field(default_factory=lambda: [
        "npx", "sass", "--style=compressed", "--source-map", "{input}", "{output}",
    ])
    bundler: list[str] = Field(default_factory=lambda: [
        "npx", "esbuild", "{input}", "--bundle", "--sourcemap", "--outfile={output}",
    ])
    minify_markup: list[str] = Field(default_factory=lambda: [
        "npx", "html-minifier-terser",
        "--collapse-whitespace", "--remove-comments",
        "--output", "{output}", "{input}",
    ])
    minify_scripts: list[str] = Field(default_factory=lambda: [
        "npx", "terser", "{input}", "--compress", "--mangle",
        "--source-map", "content='{input}.map',url='{name}.map'",
        "--output", "{output}",
    ])
    timeout: int = 300


class SiteConfig(BaseModel):
    """Root site configuration — loaded from site.yml."""

    version: int = 1

    name: str = "site"
    paths: SitePaths = Field(default_factory=SitePaths)
    output: OutputRoots = Field(default_factory=OutputRoots)
    templates: TemplateOptions = Field(default_factory=TemplateOptions)
    server: ServerOptions = Field(default_factory=ServerOptions)
    watch: WatchOptions = Field(default_factory=WatchOptions)
    tools: ToolCommands = Field(default_factory=ToolCommands)

    def output_roots(self) -> list[str]:
        """All known output roots, for cleaning."""
        return [self.output.development, self.output.production]
