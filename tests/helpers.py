"""
Test helpers — site fixtures content and an in-process tool runner.
"""

from __future__ import annotations

import textwrap
from pathlib import Path

from sitepipe.core.services.site_builders.tools import ToolResult

BASE_LAYOUT = textwrap.dedent("""\
    <!DOCTYPE html>
    <html>
    <head><title><slot name="title">Untitled</slot></title><slot name="head"></slot></head>
    <body>
    <include src="partials/header.html"></include>
    <main><slot name="main"></slot></main>
    </body>
    </html>
""")

INDEX_PAGE = textwrap.dedent("""\
    <layout src="layouts/base.html">
      <fill name="title">Home</fill>
      <fill name="head" type="append"><script src="/node_modules/libx/dist/libx.min.js"></script></fill>
      <fill name="main"><p>Welcome</p></fill>
    </layout>
""")

ABOUT_PAGE = textwrap.dedent("""\
    <layout src="layouts/base.html">
      <fill name="title">About</fill>
      <fill name="head" type="append"><script src="../../node_modules/libx/dist/libx.min.js"></script><script src="/node_modules/@scope/pkg/index.js"></script></fill>
      <fill name="main"><img src="../../assets/logo.png"><p>About us</p></fill>
    </layout>
""")


class FakeToolRunner:
    """Stands in for ToolRunner: copies or squeezes files, records calls.

    The first argument of a template picks the behavior:
        "compile" / "bundle"  copy input → output, write output.map
        "minify"              collapse whitespace, carry input.map over
    Inputs whose file name (or "kind:name") is in ``fail`` exit with status 1.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, Path, Path]] = []
        self.fail: set[str] = set()

    def run(self, template: list[str], *, input: Path, output: Path, name: str | None = None) -> ToolResult:
        kind = template[0]
        self.calls.append((kind, input, output))
        if input.name in self.fail or f"{kind}:{input.name}" in self.fail:
            return ToolResult(template, 1, f"{kind}: cannot process {input.name}")

        text = input.read_text(encoding="utf-8")
        if kind == "minify":
            output.write_text(" ".join(text.split()), encoding="utf-8")
            source_map = Path(f"{input}.map")
            if source_map.is_file():
                Path(f"{output}.map").write_text(source_map.read_text(encoding="utf-8"), encoding="utf-8")
        else:
            output.write_text(f"/* {kind} */\n{text}", encoding="utf-8")
            Path(f"{output}.map").write_text('{"version":3}', encoding="utf-8")
        return ToolResult(template, 0, "")

    def kinds(self) -> list[str]:
        return [kind for kind, _, _ in self.calls]


FAKE_TOOLS = {
    "stylesheet": ["compile", "{input}", "{output}"],
    "bundler": ["bundle", "{input}", "{output}"],
    "minify_markup": ["minify", "{input}", "{output}"],
    "minify_scripts": ["minify", "{input}", "{output}"],
}


def write(path: Path, content: str | bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")
    return path

