"""
Royalty Indexer

Indexes artifact publications and sales, builds transitive dependency graphs
and distributes depth-decayed royalties to every author in the graph.
"""

import importlib.metadata

__version__ = importlib.metadata.version("royalty-indexer")

from .events import (
    ArtifactPublished,
    ArtifactRef,
    EventKind,
    RoyaltyParametersUpdated,
    SaleMade,
)
from .royalties.calculator import RoyaltyParameters, allocate, rate

__all__ = [
    "ArtifactPublished",
    "ArtifactRef",
    "EventKind",
    "RoyaltyParameters",
    "RoyaltyParametersUpdated",
    "SaleMade",
    "allocate",
    "rate",
]
