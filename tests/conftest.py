"""
Shared test fixtures — a small site tree and an in-process tool runner.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from sitepipe.core.config.environment import BuildContext, BuildEnvironment, make_context
from sitepipe.core.models.site import SiteConfig
from sitepipe.core.services.event_bus import EventBus
from tests.helpers import ABOUT_PAGE, BASE_LAYOUT, FAKE_TOOLS, INDEX_PAGE, FakeToolRunner, write


@pytest.fixture
def site_dir(tmp_path: Path) -> Path:
    """A conventional project tree with two pages and one vendor package."""
    root = tmp_path / "site"
    html = root / "src" / "html"
    write(html / "layouts" / "base.html", BASE_LAYOUT)
    write(html / "partials" / "header.html", "<header>Site</header>")
    write(html / "pages" / "index.html", INDEX_PAGE)
    write(html / "pages" / "about.html", ABOUT_PAGE)

    write(root / "src" / "scss" / "pages" / "about.scss", "body { color: red; }\n")
    write(root / "src" / "scss" / "pages" / "_vars.scss", "$red: red;\n")
    write(root / "src" / "js" / "pages" / "about" / "main.js", "console.log('about');\n")
    write(root / "src" / "assets" / "logo.png", b"\x89PNG fake")

    write(root / "node_modules" / "libx" / "dist" / "libx.min.js", "var libx = 1;\n")
    write(root / "node_modules" / "libx" / "dist" / "libx.min.js.map", '{"version":3}')
    write(root / "node_modules" / "@scope" / "pkg" / "index.js", "export default 1;\n")
    return root


@pytest.fixture
def fake_runner() -> FakeToolRunner:
    return FakeToolRunner()


@pytest.fixture
def make_ctx(site_dir: Path, fake_runner: FakeToolRunner) -> Callable[..., BuildContext]:
    """Factory: BuildContext over site_dir with the fake runner."""

    def _make(
        env: str = "development",
        *,
        bus: EventBus | None = None,
        **site_fields,
    ) -> BuildContext:
        data = {"name": "fixture-site", "tools": dict(FAKE_TOOLS), **site_fields}
        site = SiteConfig.model_validate(data)
        return make_context(site_dir, site, BuildEnvironment(env), bus=bus, runner=fake_runner)

    return _make
