"""
Vendor extraction — relocate third-party files referenced by pages.

Production pages may reference files straight out of the shared
third-party directory (``/node_modules/libX/dist/libX.min.js``). That
directory is not deployed, so two passes make the output self-contained:

  extract — copy every referenced file, once per (package, file), into
            ``<root>/lib/<package>/<file>``. One bundle per package name
            no matter how many pages use it.
  rewrite — replace each extracted reference with the relative path
            ``../`` * depth + ``lib/<package>/<file>``, and correct the
            ``(../)+assets/`` prefix to the page's route depth.

Both passes are idempotent: a rewritten reference no longer contains
the vendor segment, and the assets correction is a fixed point. A
package nested in another (``a/node_modules/b/x.js``) is bundled as
``lib/b/x.js``, copied from its full location under the vendor root.

Package names come from a segment split on both "/" and "\\", so a
reference is parsed the same whatever separator it was written with.
"""

from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from sitepipe.core.config.environment import BuildContext
from sitepipe.core.services.site_builders.base import LogStream, write_text_atomic
from sitepipe.core.services.site_builders.compose import route_depth
from sitepipe.core.services.site_builders.errors import BuildError, ExtractionError

logger = logging.getLogger(__name__)

LIB_DIR = "lib"
ASSETS_DIR = "assets"

_SEP_RE = re.compile(r"[\\/]+")
_TOKEN_CHARS = r"""[^\s"'()<>,=]"""
_ASSETS_RE = re.compile(r"""(?<=["'(\s=])(?:\.\./)+assets/""")


@dataclass(frozen=True)
class DependencyReference:
    """One vendor reference as written in a page."""

    raw: str            # exactly as it appears in the markup
    package: str        # "libX" or "@scope/libX"
    file: str           # path inside the package, "/"-separated
    source: str = ""    # path below the vendor root; differs from package/file when nested
    suffix: str = ""    # "?v=1" / "#frag", kept on rewrite

    @property
    def lib_path(self) -> str:
        return f"{LIB_DIR}/{self.package}/{self.file}"


@dataclass
class ExtractionReport:
    """Outcome of the extract pass."""

    bundles: dict[str, list[str]] = field(default_factory=dict)   # package → files
    copied: int = 0
    missing: list[str] = field(default_factory=list)


# ── Reference parsing ───────────────────────────────────────────────


def split_segments(path: str) -> list[str]:
    """Normalized path segments: both separators, no empty or "." parts."""
    return [s for s in _SEP_RE.split(path) if s and s != "."]


def parse_reference(raw: str, marker: str = "node_modules") -> DependencyReference | None:
    """Parse a vendor reference into (package, file), or None if it isn't one.

    The marker must be a whole segment; the package is the segment after
    the last marker (two segments for ``@scope/name``), so a package
    nested inside another one is bundled under its own name. ``source``
    keeps everything after the first marker, the file's location below
    the vendor root. References that climb out with ".." are rejected.
    """
    cut = len(raw)
    for ch in "?#":
        idx = raw.find(ch)
        if idx != -1:
            cut = min(cut, idx)
    path, suffix = raw[:cut], raw[cut:]

    segments = split_segments(path)
    if marker not in segments:
        return None
    below = segments[segments.index(marker) + 1:]
    last = len(segments) - 1 - segments[::-1].index(marker)
    rest = segments[last + 1:]

    width = 2 if rest and rest[0].startswith("@") else 1
    if len(rest) <= width or ".." in below:
        return None

    return DependencyReference(
        raw=raw,
        package="/".join(rest[:width]),
        file="/".join(rest[width:]),
        source="/".join(below),
        suffix=suffix,
    )


def _reference_pattern(marker: str) -> re.Pattern[str]:
    return re.compile(rf"{_TOKEN_CHARS}*(?<![\w.@-]){re.escape(marker)}[\\/]{_TOKEN_CHARS}+")


def find_references(markup: str, marker: str = "node_modules") -> list[DependencyReference]:
    """Every dependency reference in a page, in document order."""
    refs = []
    for m in _reference_pattern(marker).finditer(markup):
        ref = parse_reference(m.group(0), marker)
        if ref is not None:
            refs.append(ref)
    return refs


# ── Page discovery ──────────────────────────────────────────────────


def rendered_pages(output_root: Path) -> list[Path]:
    """Rendered route documents under the output root (not lib/ or assets/)."""
    if not output_root.is_dir():
        return []
    pages = []
    for p in sorted(output_root.rglob("index.html")):
        top = p.relative_to(output_root).parts[0]
        if top in (LIB_DIR, ASSETS_DIR) or p.parent == output_root:
            continue
        pages.append(p)
    return pages


def vendor_marker(ctx: BuildContext) -> str:
    """The segment that marks a vendor reference: last part of paths.vendor."""
    return split_segments(ctx.site.paths.vendor)[-1]


# ── Passes ──────────────────────────────────────────────────────────


def extract(ctx: BuildContext, issues: list[BuildError] | None = None) -> ExtractionReport:
    """Copy referenced vendor files into <root>/lib/<package>/, once each."""
    marker = vendor_marker(ctx)
    encoding = ctx.site.templates.encoding
    report = ExtractionReport()
    wanted: dict[tuple[str, str], tuple[str, Path]] = {}

    for page in rendered_pages(ctx.output_root):
        for ref in find_references(page.read_text(encoding=encoding), marker):
            wanted.setdefault((ref.package, ref.file), (ref.source, page))

    for (package, file), (below, page) in sorted(wanted.items()):
        source = ctx.vendor_root.joinpath(*below.split("/"))
        if not source.is_file():
            err = ExtractionError(f"no such vendor file: {package}/{file}", page)
            report.missing.append(f"{package}/{file}")
            if issues is not None:
                issues.append(err)
            else:
                logger.warning("%s", err)
            continue

        dest = ctx.output_root.joinpath(LIB_DIR, package, *file.split("/"))
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest)
        report.copied += 1

        sidecar = Path(f"{source}.map")
        if sidecar.is_file():
            shutil.copy2(sidecar, Path(f"{dest}.map"))

        report.bundles.setdefault(package, []).append(file)

    return report


def rewrite_markup(markup: str, depth: int, output_root: Path, marker: str = "node_modules") -> str:
    """Rewrite extracted vendor references and the assets prefix in one page."""
    up = "../" * depth

    def _relocate(m: re.Match) -> str:
        ref = parse_reference(m.group(0), marker)
        if ref is None:
            return m.group(0)
        if not output_root.joinpath(LIB_DIR, ref.package, *ref.file.split("/")).is_file():
            return m.group(0)  # not extracted; leave the original reference visible
        return f"{up}{ref.lib_path}{ref.suffix}"

    markup = _reference_pattern(marker).sub(_relocate, markup)
    return _ASSETS_RE.sub(f"{up}{ASSETS_DIR}/", markup)


def rewrite(ctx: BuildContext) -> int:
    """Rewrite every rendered page in place. Returns the number of pages changed."""
    marker = vendor_marker(ctx)
    encoding = ctx.site.templates.encoding
    changed = 0

    for page in rendered_pages(ctx.output_root):
        before = page.read_text(encoding=encoding)
        route = page.relative_to(ctx.output_root).with_suffix("").as_posix()
        after = rewrite_markup(before, route_depth(route), ctx.output_root, marker)
        if after != before:
            write_text_atomic(page, after, encoding)
            changed += 1
    return changed


# ── Stages ──────────────────────────────────────────────────────────


def extract_stage(ctx: BuildContext, issues: list[BuildError]) -> LogStream:
    report = extract(ctx, issues)
    for package, files in sorted(report.bundles.items()):
        yield f"lib/{package}: {len(files)} file(s)"
    if report.missing:
        yield f"Skipped {len(report.missing)} missing reference(s)"
    yield f"Extracted {report.copied} file(s) into {len(report.bundles)} bundle(s)"


def rewrite_stage(ctx: BuildContext, issues: list[BuildError]) -> LogStream:
    changed = rewrite(ctx)
    yield f"Rewrote references in {changed} page(s)"
