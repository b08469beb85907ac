"""
Build errors — one class per failure kind.

Fatal errors fail the stage that raised them; the stage runner then
stops scheduling and the one-shot CLI exits non-zero. Non-fatal errors
are caught by the stage itself, recorded as issues on the StageResult,
and the stage carries on with its remaining inputs.
"""

from __future__ import annotations

from pathlib import Path


class BuildError(RuntimeError):
    """Base for every pipeline failure. Carries the offending source path."""

    fatal = True

    def __init__(self, message: str, path: Path | str | None = None) -> None:
        self.message = message
        self.path = str(path) if path is not None else None
        super().__init__(f"{self.path}: {message}" if self.path else message)


class CompositionError(BuildError):
    """Unresolved layout/include target, inclusion cycle, or strict slot miss."""


class CompileError(BuildError):
    """Stylesheet compiler failed for one file."""

    fatal = False


class BundleError(BuildError):
    """Script bundler failed for one entry point."""

    fatal = False


class ExtractionError(BuildError):
    """A dependency reference matches no file on disk."""

    fatal = False


class ToolError(BuildError):
    """A minifier failed; production output would be incomplete."""


class OutputError(BuildError):
    """Filesystem failure while cleaning, writing or copying."""
