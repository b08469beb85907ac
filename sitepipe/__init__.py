"""sitepipe — build a multi-page static site from fragments, layouts and assets."""

__version__ = "0.1.0"
