"""
Domain models — Pydantic types for the site pipeline.

    from sitepipe.core.models import SiteConfig, SlotPolicy
"""

from sitepipe.core.models.site import (
    OutputRoots,
    ServerOptions,
    SiteConfig,
    SitePaths,
    SlotPolicy,
    TemplateOptions,
    ToolCommands,
    WatchOptions,
)

__all__ = [
    "OutputRoots",
    "ServerOptions",
    "SiteConfig",
    "SitePaths",
    "SlotPolicy",
    "TemplateOptions",
    "ToolCommands",
    "WatchOptions",
]
