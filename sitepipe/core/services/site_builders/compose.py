"""
Template composer — layouts, slots, fills and includes.

Directive syntax (paths are relative to the HTML root):

    <layout src="layouts/base.html">
      <fill name="main">…</fill>
      <fill name="head" type="append">…</fill>
    </layout>

    <slot name="main">default content</slot>   or   <slot name="main" />
    <include src="partials/header.html"></include>   or   <include src="…" />

A page is resolved in this order:
  1. expand its layout chain (a layout may itself declare a layout),
  2. substitute fills into slots of the same name,
  3. expand includes recursively until none remain,
  4. apply the slot policy to every slot still unfilled.

Fill types: "replace" (default), "append" (slot default + fill),
"prepend" (fill + slot default).

Slot policies: "fallback" renders the slot's own content, "empty"
renders nothing, "strict" raises CompositionError.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path, PurePosixPath

from sitepipe.core.config.environment import BuildContext
from sitepipe.core.services.site_builders.base import LogStream, write_text_atomic
from sitepipe.core.services.site_builders.errors import BuildError, CompositionError

logger = logging.getLogger(__name__)

_FLAGS = re.IGNORECASE | re.DOTALL

_ATTR_RE = re.compile(r"""([\w:-]+)\s*=\s*(?:"([^"]*)"|'([^']*)')""")
_LAYOUT_RE = re.compile(r"<layout\b(?P<attrs>[^>]*)>(?P<body>.*)</layout\s*>", _FLAGS)
_FILL_RE = re.compile(r"<fill\b(?P<attrs>[^>]*)>(?P<body>.*?)</fill\s*>", _FLAGS)
_SLOT_RE = re.compile(r"<slot\b(?P<attrs>[^>]*?)(?:/>|>(?P<body>.*?)</slot\s*>)", _FLAGS)
_INCLUDE_RE = re.compile(r"<include\b(?P<attrs>[^>]*?)(?:/>|>(?P<body>.*?)</include\s*>)", _FLAGS)

FILL_TYPES = ("replace", "append", "prepend")
SLOT_POLICIES = ("fallback", "empty", "strict")


# ── Routing ─────────────────────────────────────────────────────────


def page_name(page_path: Path, pages_root: Path) -> str:
    """Page name: path below the pages root, without suffix, "/"-separated."""
    rel = page_path.relative_to(pages_root).with_suffix("")
    return PurePosixPath(*rel.parts).as_posix()


def route_for(name: str) -> str:
    """Route of a page: ``about`` → ``about/index``."""
    return f"{name}/index"


def output_path(output_root: Path, name: str) -> Path:
    """Output file of a page: ``about`` → ``<root>/about/index.html``."""
    return output_root.joinpath(*route_for(name).split("/")).with_suffix(".html")


def route_depth(route: str) -> int:
    """Directory depth of a route: ``about/index`` → 1, ``blog/post/index`` → 2."""
    return len(route.split("/")) - 1


def discover_pages(pages_root: Path) -> list[Path]:
    """All page fragments below the pages root, sorted."""
    if not pages_root.is_dir():
        return []
    return sorted(p for p in pages_root.rglob("*.html") if p.is_file())


# ── Composer ────────────────────────────────────────────────────────


def _attrs(raw: str) -> dict[str, str]:
    return {m.group(1).lower(): m.group(2) if m.group(2) is not None else m.group(3) for m in _ATTR_RE.finditer(raw)}


class Composer:
    """Resolves layout/slot/fill/include directives into flat markup."""

    def __init__(self, html_root: Path, slot_policy: str = "fallback", encoding: str = "utf-8") -> None:
        if slot_policy not in SLOT_POLICIES:
            raise ValueError(f"Unknown slot policy '{slot_policy}'")
        self.html_root = html_root
        self.slot_policy = slot_policy
        self.encoding = encoding

    # ── Public API ──────────────────────────────────────────────────

    def compose(self, page_path: Path) -> str:
        """Compose one page into a flat rendered document.

        Raises:
            CompositionError: Missing layout/include target, cycle, or an
                unfilled slot under the strict policy.
        """
        page_path = page_path.resolve()
        markup = self._read(page_path, page_path)
        markup = self._resolve_layout(markup, page_path, (page_path,))
        markup = self._expand_includes(markup, page_path, (page_path,))
        return self._apply_slot_policy(markup, page_path)

    # ── Layouts and fills ───────────────────────────────────────────

    def _resolve_layout(self, markup: str, origin: Path, chain: tuple[Path, ...]) -> str:
        m = _LAYOUT_RE.search(markup)
        if m is None:
            return markup

        src = _attrs(m.group("attrs")).get("src")
        if not src:
            raise CompositionError("<layout> without a src attribute", origin)

        layout_path = self._locate(src, origin, "layout")
        if layout_path in chain:
            raise CompositionError(f"layout cycle: {self._describe(chain + (layout_path,))}", origin)

        frame = self._read(layout_path, origin)
        frame = self._resolve_layout(frame, layout_path, chain + (layout_path,))
        frame = self._fill_slots(frame, m.group("body"), origin)
        return markup[: m.start()] + frame + markup[m.end():]

    def _fill_slots(self, frame: str, body: str, origin: Path) -> str:
        fills: dict[str, tuple[str, str]] = {}
        for fm in _FILL_RE.finditer(body):
            attrs = _attrs(fm.group("attrs"))
            name = attrs.get("name", "")
            mode = attrs.get("type", "replace").lower()
            if not name:
                raise CompositionError("<fill> without a name attribute", origin)
            if mode not in FILL_TYPES:
                raise CompositionError(f"unknown fill type '{mode}' for '{name}'", origin)
            fills[name] = (mode, fm.group("body"))

        used: set[str] = set()

        def _substitute(sm: re.Match) -> str:
            name = _attrs(sm.group("attrs")).get("name", "")
            if name not in fills:
                return sm.group(0)
            used.add(name)
            mode, content = fills[name]
            default = sm.group("body") or ""
            if mode == "append":
                return default + content
            if mode == "prepend":
                return content + default
            return content

        frame = _SLOT_RE.sub(_substitute, frame)

        for name in fills.keys() - used:
            logger.warning("%s: fill '%s' matches no slot in its layout", origin, name)
        return frame

    def _apply_slot_policy(self, markup: str, origin: Path) -> str:
        def _resolve(sm: re.Match) -> str:
            name = _attrs(sm.group("attrs")).get("name", "")
            if self.slot_policy == "strict":
                raise CompositionError(f"slot '{name}' has no fill", origin)
            if self.slot_policy == "empty":
                return ""
            return sm.group("body") or ""

        return _SLOT_RE.sub(_resolve, markup)

    # ── Includes ────────────────────────────────────────────────────

    def _expand_includes(self, markup: str, origin: Path, chain: tuple[Path, ...]) -> str:
        def _inline(im: re.Match) -> str:
            src = _attrs(im.group("attrs")).get("src")
            if not src:
                raise CompositionError("<include> without a src attribute", origin)
            target = self._locate(src, origin, "include")
            if target in chain:
                raise CompositionError(f"include cycle: {self._describe(chain + (target,))}", chain[0])
            content = self._read(target, origin)
            return self._expand_includes(content, target, chain + (target,))

        return _INCLUDE_RE.sub(_inline, markup)

    # ── Helpers ─────────────────────────────────────────────────────

    def _locate(self, src: str, origin: Path, kind: str) -> Path:
        target = (self.html_root / src.lstrip("/")).resolve()
        if not target.is_file():
            raise CompositionError(f"{kind} target not found: {src}", origin)
        return target

    def _read(self, path: Path, origin: Path) -> str:
        try:
            return path.read_text(encoding=self.encoding)
        except OSError as e:
            raise CompositionError(f"cannot read {path}: {e.strerror or e}", origin) from e
        except UnicodeDecodeError as e:
            raise CompositionError(f"cannot decode {path} as {self.encoding}: {e.reason}", origin) from e

    def _describe(self, chain: tuple[Path, ...]) -> str:
        parts = []
        for p in chain:
            try:
                parts.append(p.relative_to(self.html_root.resolve()).as_posix())
            except ValueError:
                parts.append(str(p))
        return " → ".join(parts)


# ── Stage ───────────────────────────────────────────────────────────


def compose_pages(ctx: BuildContext, issues: list[BuildError]) -> LogStream:
    """Markup stage: compose every page into <root>/<route>.html.

    A page that fails to compose does not stop the others; the stage
    fails at the end if any page did.
    """
    pages = discover_pages(ctx.pages_root)
    if not pages:
        yield f"No pages under {ctx.pages_root}"
        return

    composer = Composer(
        ctx.html_root,
        slot_policy=ctx.site.templates.slot_policy,
        encoding=ctx.site.templates.encoding,
    )
    failures: list[CompositionError] = []

    for page in pages:
        name = page_name(page, ctx.pages_root)
        try:
            document = composer.compose(page)
        except CompositionError as e:
            failures.append(e)
            issues.append(e)
            yield f"✗ {name}: {e.message}"
            continue

        write_text_atomic(output_path(ctx.output_root, name), document, ctx.site.templates.encoding)
        yield f"✓ {name} → {route_for(name)}.html"

    if failures:
        raise CompositionError(f"{len(failures)} of {len(pages)} page(s) failed to compose")
