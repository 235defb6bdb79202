"""
Dependency graph builder.

Resolves the transitive dependency closure of an artifact with the minimum
depth to every dependency. Immediate dependencies come from the artifact
source the first time an artifact is seen and from stored depth-1 edges after
that. The traversal is depth-first with a visited set scoped to one call, so
accidental cycles terminate; each dependency's stored closure is projected
onto its parent at ``1 + child depth`` with a keep-minimum upsert.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..db.services import DependencyEdgeService, PublicationService
from ..errors import StorageFailure, UpstreamUnavailable
from ..events import ArtifactRef
from .source import ArtifactSource

logger = logging.getLogger(__name__)

DEFAULT_MAX_TRAVERSAL_DEPTH = 256


@dataclass
class ResolutionResult:
    """Closure of one artifact."""

    root: ArtifactRef
    dependencies: List[Tuple[ArtifactRef, int]] = field(default_factory=list)
    unavailable: List[ArtifactRef] = field(default_factory=list)
    truncated: bool = False

    @property
    def complete(self) -> bool:
        return not self.unavailable and not self.truncated

    def depth_of(self, artifact: ArtifactRef) -> Optional[int]:
        for dependency, depth in self.dependencies:
            if dependency == artifact:
                return depth
        return None

    def to_dict(self) -> Dict:
        return {
            "origin": self.root.origin,
            "local_id": self.root.local_id,
            "dependencies": [
                {"origin": dep.origin, "local_id": dep.local_id, "depth": depth}
                for dep, depth in self.dependencies
            ],
            "unavailable": [dep.key for dep in self.unavailable],
            "truncated": self.truncated,
        }


@dataclass
class _Traversal:
    visited: Set[ArtifactRef] = field(default_factory=set)
    unavailable: List[ArtifactRef] = field(default_factory=list)
    truncated: bool = False


class DependencyGraphBuilder:
    """Builds and stores dependency closures."""

    def __init__(
        self,
        session_factory: sessionmaker,
        source: ArtifactSource,
        max_closure_size: int = 10_000,
        max_traversal_depth: int = DEFAULT_MAX_TRAVERSAL_DEPTH,
    ):
        self.session_factory = session_factory
        self.source = source
        self.max_closure_size = max_closure_size
        self.max_traversal_depth = max_traversal_depth

    async def resolve_dependencies(self, artifact: ArtifactRef) -> ResolutionResult:
        """Resolve, store and return the closure of ``artifact``.

        Upstream failures are contained per artifact: the failed branch is
        skipped, recorded in ``unavailable`` and siblings are still resolved.
        """
        state = _Traversal()
        db = self.session_factory()
        try:
            await self._analyze(db, artifact, 0, state)
            closure = [
                (dependency, depth)
                for dependency, depth in DependencyEdgeService(db).edges_from(artifact)
                if dependency != artifact
            ]
        finally:
            db.close()

        if state.unavailable or state.truncated:
            logger.warning(
                f"Partial closure for {artifact}: {len(closure)} dependencies, "
                f"unavailable={[a.key for a in state.unavailable]}, "
                f"truncated={state.truncated}"
            )
        else:
            logger.info(f"Resolved {len(closure)} dependencies for {artifact}")

        return ResolutionResult(
            root=artifact,
            dependencies=closure,
            unavailable=state.unavailable,
            truncated=state.truncated,
        )

    async def _analyze(
        self, db: Session, node: ArtifactRef, level: int, state: _Traversal
    ) -> None:
        if node in state.visited:
            return
        if len(state.visited) >= self.max_closure_size or level > self.max_traversal_depth:
            logger.warning(f"Dependency traversal bound reached at {node} (level {level})")
            state.truncated = True
            return
        state.visited.add(node)

        dependencies = await self._immediate_dependencies(db, node, state)
        if not dependencies:
            return

        edges = DependencyEdgeService(db)
        for dependency in dependencies:
            await self._analyze(db, dependency, level + 1, state)

            for target, depth in edges.edges_from(dependency):
                if target == node:
                    continue
                edges.upsert(node, target, depth + 1)
            self._commit(db, f"projecting {dependency} onto {node}")

    async def _immediate_dependencies(
        self, db: Session, node: ArtifactRef, state: _Traversal
    ) -> List[ArtifactRef]:
        publications = PublicationService(db)
        edges = DependencyEdgeService(db)

        publication = publications.get(node)
        if publication is not None and publication.dependencies_indexed_at is not None:
            return edges.direct_dependencies(node)

        try:
            fetched = await self.source.get_dependencies(node)
        except UpstreamUnavailable as e:
            logger.error(f"Skipping dependencies of {node}: {e}")
            state.unavailable.append(node)
            return []

        # Preserve declaration order, drop duplicates and self-references
        dependencies = [dep for dep in dict.fromkeys(fetched) if dep != node]
        for dependency in dependencies:
            edges.upsert(node, dependency, 1)
            logger.debug(f"Stored dependency: {node} -> {dependency} (depth 1)")
        publications.mark_dependencies_indexed(node)
        self._commit(db, f"storing dependencies of {node}")
        return dependencies

    @staticmethod
    def _commit(db: Session, operation: str) -> None:
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageFailure(operation, e) from e
