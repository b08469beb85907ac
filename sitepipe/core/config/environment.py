"""
Environment resolver — fixes the build environment once per run.

Precedence:
    --env flag  >  SITEPIPE_ENV variable  >  development

The result is folded into a BuildContext, which the orchestrator hands
to every stage. Nothing else reads the flag or the variable.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sitepipe.core.config.loader import ConfigError
from sitepipe.core.models.site import SiteConfig

if TYPE_CHECKING:
    from sitepipe.core.services.event_bus import EventBus
    from sitepipe.core.services.site_builders.tools import ToolRunner

logger = logging.getLogger(__name__)

ENV_VAR = "SITEPIPE_ENV"


class BuildEnvironment(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"

    @classmethod
    def parse(cls, value: str) -> BuildEnvironment:
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid = ", ".join(e.value for e in cls)
            raise ConfigError(
                f"Unknown build environment '{value}' (expected one of: {valid})"
            ) from None

    def output_dir(self, site: SiteConfig) -> str:
        """Output root (relative to the project root) for this environment."""
        if self is BuildEnvironment.PRODUCTION:
            return site.output.production
        return site.output.development


def resolve_environment(
    flag: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> BuildEnvironment:
    """Resolve the build environment from the flag, the variable, or the default."""
    environ = os.environ if environ is None else environ

    if flag:
        source, value = "--env", flag
    elif environ.get(ENV_VAR):
        source, value = ENV_VAR, environ[ENV_VAR]
    else:
        source, value = "default", BuildEnvironment.DEVELOPMENT.value

    env = BuildEnvironment.parse(value)
    logger.debug("Build environment: %s (from %s)", env.value, source)
    return env


@dataclass(frozen=True)
class BuildContext:
    """Everything a stage needs to know about the current run."""

    environment: BuildEnvironment
    project_root: Path
    site: SiteConfig
    runner: ToolRunner
    bus: EventBus | None = None

    @property
    def is_development(self) -> bool:
        return self.environment is BuildEnvironment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        return self.environment is BuildEnvironment.PRODUCTION

    @property
    def output_root(self) -> Path:
        return self.project_root / self.environment.output_dir(self.site)

    @property
    def html_root(self) -> Path:
        return self.project_root / self.site.paths.html

    @property
    def pages_root(self) -> Path:
        return self.html_root / self.site.paths.pages

    @property
    def styles_root(self) -> Path:
        return self.project_root / self.site.paths.styles

    @property
    def scripts_root(self) -> Path:
        return self.project_root / self.site.paths.scripts

    @property
    def assets_root(self) -> Path:
        return self.project_root / self.site.paths.assets

    @property
    def vendor_root(self) -> Path:
        return self.project_root / self.site.paths.vendor

    def all_output_roots(self) -> list[Path]:
        return [self.project_root / root for root in self.site.output_roots()]

    def notify_reload(self, stage: str, **data: Any) -> None:
        """Ask the dev server to reload connected browsers (development only)."""
        if self.bus is None or not self.is_development:
            return
        self.bus.publish("build:reload", key=stage, data=data)


def make_context(
    project_root: Path,
    site: SiteConfig,
    environment: BuildEnvironment,
    *,
    bus: EventBus | None = None,
    runner: ToolRunner | None = None,
) -> BuildContext:
    """Build the single BuildContext for a run."""
    from sitepipe.core.services.site_builders.tools import ToolRunner

    root = project_root.resolve()
    return BuildContext(
        environment=environment,
        project_root=root,
        site=site,
        runner=runner or ToolRunner(cwd=root, timeout=site.tools.timeout),
        bus=bus,
    )
