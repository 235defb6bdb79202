"""Dependency graph resolution."""

from .builder import DependencyGraphBuilder, ResolutionResult
from .source import ArtifactSource, HttpArtifactSource, InMemoryArtifactSource, call_with_retry

__all__ = [
    "ArtifactSource",
    "DependencyGraphBuilder",
    "HttpArtifactSource",
    "InMemoryArtifactSource",
    "ResolutionResult",
    "call_with_retry",
]
