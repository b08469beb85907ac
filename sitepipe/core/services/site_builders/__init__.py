"""
Site builders — the pieces the build pipeline is assembled from.

    base      stage model, results, and the concurrent stage-graph runner
    compose   layouts, slots, fills and includes → flat route documents
    vendor    third-party extraction and reference rewriting
    tools     external compiler / bundler / minifier contract
    errors    one BuildError subclass per failure kind
"""

from sitepipe.core.services.site_builders.base import (
    PipelineResult,
    Stage,
    StageResult,
    execute_stage,
    run_stages,
)
from sitepipe.core.services.site_builders.compose import Composer, compose_pages
from sitepipe.core.services.site_builders.errors import (
    BuildError,
    BundleError,
    CompileError,
    CompositionError,
    ExtractionError,
    OutputError,
    ToolError,
)

__all__ = [
    "BuildError",
    "BundleError",
    "CompileError",
    "Composer",
    "CompositionError",
    "ExtractionError",
    "OutputError",
    "PipelineResult",
    "Stage",
    "StageResult",
    "ToolError",
    "compose_pages",
    "execute_stage",
    "run_stages",
]
