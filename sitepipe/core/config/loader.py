"""
Configuration loader — reads site.yml into the site model.

This is the primary entry point for loading site configuration.
It reads YAML, validates against Pydantic schemas, and returns
a typed SiteConfig. A project without site.yml builds with defaults.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from sitepipe.core.models.site import SiteConfig

logger = logging.getLogger(__name__)

# Default config filename
SITE_CONFIG_FILE = "site.yml"


class ConfigError(Exception):
    """Raised when site configuration is invalid or missing."""


def find_site_file(start_dir: Path | None = None) -> Path | None:
    """Search for site.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to site.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / SITE_CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_site(path: Path | None = None) -> SiteConfig:
    """Load and validate site configuration.

    Args:
        path: Explicit path to site.yml. If None, searches upward and
            falls back to defaults when nothing is found.

    Returns:
        Validated SiteConfig model.

    Raises:
        ConfigError: If an explicit file is missing, or any file is invalid.
    """
    if path is None:
        path = find_site_file()
        if path is None:
            logger.debug("No %s found, using defaults", SITE_CONFIG_FILE)
            return SiteConfig()

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading site config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # The YAML may wrap everything under a "site" key or be flat
    site_data = data["site"] if isinstance(data.get("site"), dict) else data

    try:
        site = SiteConfig.model_validate(site_data)
    except Exception as e:
        raise ConfigError(f"Invalid site configuration: {e}") from e

    logger.info("Loaded site '%s' from %s", site.name, path)
    return site


def site_root(config_path: Path | None) -> Path:
    """Get the project root directory from a config file path."""
    return config_path.parent.resolve() if config_path else Path.cwd().resolve()
