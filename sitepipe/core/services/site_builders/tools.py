"""
External compilers — the contract the pipeline expects from them.

Stylesheet compilation, script bundling and minification are not done
in-process. Each tool is an argv template from site.yml (``tools:``)
with these placeholders:

    {input}   source file
    {output}  file the tool must write
    {map}     {output}.map — the source-map sidecar
    {name}    file name of the final output (for sourceMappingURL)

Exit status 0 is success. Anything else, including a missing
executable, is reported with the tool's combined output attached.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from sitepipe.core.services.site_builders.errors import BundleError, CompileError, ToolError

logger = logging.getLogger(__name__)

_PLACEHOLDERS = ("input", "output", "map", "name")


@dataclass
class ToolResult:
    argv: list[str]
    returncode: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, lines: int = 10) -> str:
        return "\n".join(self.output.strip().splitlines()[-lines:])


def expand_argv(template: list[str], **values: str) -> list[str]:
    """Substitute placeholders in every argument of an argv template.

    Only the known placeholders are touched, so literal braces in other
    arguments survive.
    """
    argv = []
    for arg in template:
        for key in _PLACEHOLDERS:
            if key in values:
                arg = arg.replace("{" + key + "}", values[key])
        argv.append(arg)
    return argv


class ToolRunner:
    """Runs external tools from the project root and captures their output."""

    def __init__(self, cwd: Path, timeout: int = 300) -> None:
        self.cwd = cwd
        self.timeout = timeout

    def run(self, template: list[str], *, input: Path, output: Path, name: str | None = None) -> ToolResult:
        argv = expand_argv(
            template,
            input=str(input),
            output=str(output),
            map=f"{output}.map",
            name=name or output.name,
        )
        logger.debug("▶ %s", " ".join(argv))

        try:
            proc = subprocess.run(
                argv,
                cwd=str(self.cwd),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                timeout=self.timeout,
            )
        except FileNotFoundError:
            return ToolResult(argv, 127, f"Executable not found: {argv[0]}")
        except subprocess.TimeoutExpired:
            return ToolResult(argv, -1, f"Timed out after {self.timeout}s")

        return ToolResult(argv, proc.returncode, proc.stdout or "")


# ── Compiler contracts ──────────────────────────────────────────────


def compile_stylesheet(runner: ToolRunner, template: list[str], source: Path, dest: Path) -> ToolResult:
    """Compile one stylesheet to dest (+ dest.map).

    Raises:
        CompileError: If the compiler fails.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    res = runner.run(template, input=source, output=dest)
    if not res.ok:
        raise CompileError(res.tail() or f"compiler exited with {res.returncode}", source)
    return res


def bundle_script(runner: ToolRunner, template: list[str], entry: Path, dest: Path) -> ToolResult:
    """Bundle one script entry point to dest (+ dest.map).

    Raises:
        BundleError: If the bundler fails.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    res = runner.run(template, input=entry, output=dest)
    if not res.ok:
        raise BundleError(res.tail() or f"bundler exited with {res.returncode}", entry)
    return res


def minify_in_place(runner: ToolRunner, template: list[str], path: Path) -> ToolResult:
    """Minify a file, replacing it (and its .map sidecar) atomically.

    The tool writes to a temporary sibling; only a successful run
    replaces the original, so a failed minifier leaves the pre-image.

    Raises:
        ToolError: If the minifier fails or writes nothing.
    """
    tmp = path.with_name(f".{path.name}.min")
    tmp_map = Path(f"{tmp}.map")
    try:
        res = runner.run(template, input=path, output=tmp, name=path.name)
        if not res.ok:
            raise ToolError(res.tail() or f"minifier exited with {res.returncode}", path)
        if not tmp.is_file():
            raise ToolError("minifier produced no output", path)
        os.replace(tmp, path)
        if tmp_map.is_file():
            os.replace(tmp_map, Path(f"{path}.map"))
        return res
    finally:
        tmp.unlink(missing_ok=True)
        tmp_map.unlink(missing_ok=True)
