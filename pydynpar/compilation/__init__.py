"""
Ahead-of-time kernel compilation and artifact caching.
"""

from pydynpar.compilation.cache import ArtifactCache, artifact_path
from pydynpar.compilation.compiler import (
    CompilationOptions,
    CompiledArtifact,
    NvccCompiler,
    prepare_default_artifact,
)

__all__ = [
    "NvccCompiler",
    "CompilationOptions",
    "CompiledArtifact",
    "ArtifactCache",
    "artifact_path",
    "prepare_default_artifact",
]
