"""
Tests for CLI commands — targets, routes, clean, and global options.
"""

import json
import sys
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from sitepipe.main import cli
from tests.helpers import write

COPY = [sys.executable, "-c", "import shutil, sys; shutil.copy(sys.argv[1], sys.argv[2])", "{input}", "{output}"]
SQUEEZE = [
    sys.executable, "-c",
    "import sys; open(sys.argv[2], 'w').write(' '.join(open(sys.argv[1]).read().split()))",
    "{input}", "{output}",
]


@pytest.fixture
def config(site_dir: Path) -> Path:
    """site.yml for the fixture site, with tools that need no Node install."""
    path = site_dir / "site.yml"
    path.write_text(yaml.safe_dump({
        "name": "cli-site",
        "tools": {
            "stylesheet": COPY,
            "bundler": COPY,
            "minify_markup": SQUEEZE,
            "minify_scripts": SQUEEZE,
        },
    }))
    return path


class TestCLIGlobal:
    """Tests for global CLI behavior."""

    def test_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "sitepipe" in result.output
        for command in ("common", "dev", "build", "routes", "clean"):
            assert command in result.output

    def test_version(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_bad_env_flag(self, config: Path):
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(config), "common", "--env", "staging"])
        assert result.exit_code == 2

    def test_bad_env_variable(self, config: Path, monkeypatch):
        monkeypatch.setenv("SITEPIPE_ENV", "staging")
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(config), "common"])
        assert result.exit_code == 1
        assert "Unknown build environment" in result.output

    def test_missing_config(self, tmp_path: Path):
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(tmp_path / "nope.yml"), "routes"])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestTargets:
    def test_common(self, config: Path, site_dir: Path):
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(config), "common"])
        assert result.exit_code == 0, result.output
        assert "Compose Pages" in result.output
        assert "Done" in result.output
        assert (site_dir / "test" / "about" / "index.html").is_file()
        assert (site_dir / "test" / "about.css").is_file()

    def test_common_json(self, config: Path):
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(config), "common", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["ok"] is True
        assert data["environment"] == "development"
        assert [s["name"] for s in data["stages"]] == ["clean", "markup", "styles", "scripts", "assets"]

    def test_common_fails_on_broken_page(self, config: Path, site_dir: Path):
        write(site_dir / "src" / "html" / "pages" / "broken.html", '<include src="partials/gone.html"></include>')
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(config), "common"])
        assert result.exit_code == 1
        assert "Build failed" in result.output
        assert "partials/gone.html" in result.output

    def test_build_production(self, config: Path, site_dir: Path):
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(config), "build", "--env", "production"])
        assert result.exit_code == 0, result.output

        about = (site_dir / "build" / "about" / "index.html").read_text()
        assert 'src="../lib/libx/dist/libx.min.js"' in about
        assert "\n" not in about
        assert (site_dir / "build" / "lib" / "@scope" / "pkg" / "index.js").is_file()

    def test_build_env_from_variable(self, config: Path, site_dir: Path, monkeypatch):
        monkeypatch.setenv("SITEPIPE_ENV", "production")
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(config), "build", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["environment"] == "production"
        assert (site_dir / "build" / "lib").is_dir()


class TestUtilities:
    def test_routes(self, config: Path):
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(config), "routes"])
        assert result.exit_code == 0
        assert "about → test/about/index.html" in result.output

    def test_routes_json_production(self, config: Path):
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(config), "routes", "--env", "production", "--json"])
        assert result.exit_code == 0
        rows = json.loads(result.output)
        assert {"page": "index", "route": "index/index", "output": "build/index/index.html"} in rows

    def test_clean(self, config: Path, site_dir: Path):
        write(site_dir / "test" / "x.html", "")
        write(site_dir / "build" / "y.html", "")
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(config), "clean"])
        assert result.exit_code == 0
        assert not (site_dir / "test").exists()
        assert not (site_dir / "build").exists()

    def test_clean_nothing(self, config: Path):
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(config), "clean"])
        assert result.exit_code == 0
        assert "Nothing to clean" in result.output
