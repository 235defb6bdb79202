"""
Wiring of the indexer's long-lived components.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import sessionmaker

from .config import Settings, get_settings
from .db.base import get_session_local
from .graph.builder import DependencyGraphBuilder
from .graph.source import ArtifactSource, HttpArtifactSource, InMemoryArtifactSource
from .pipeline.processor import EventProcessor
from .royalties.ledger import RoyaltyLedger
from .worker.sweep import MaintenanceSweep

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    session_factory: sessionmaker
    source: ArtifactSource
    builder: DependencyGraphBuilder
    ledger: RoyaltyLedger
    processor: EventProcessor
    sweep: MaintenanceSweep

    async def close(self) -> None:
        await self.sweep.stop()
        await self.processor.stop(drain=False)
        if isinstance(self.source, HttpArtifactSource):
            await self.source.close()


def default_source(settings: Settings) -> ArtifactSource:
    """HTTP source when a URL is configured, otherwise an empty in-memory one."""
    if settings.artifact_source_url:
        return HttpArtifactSource.from_settings(settings)
    logger.warning("ARTIFACT_SOURCE_URL not set; dependencies will resolve as empty")
    return InMemoryArtifactSource()


def build_runtime(
    session_factory: Optional[sessionmaker] = None,
    source: Optional[ArtifactSource] = None,
    settings: Optional[Settings] = None,
) -> Runtime:
    settings = settings or get_settings()
    session_factory = session_factory or get_session_local()
    source = source if source is not None else default_source(settings)

    builder = DependencyGraphBuilder(
        session_factory, source, max_closure_size=settings.max_closure_size
    )
    ledger = RoyaltyLedger(session_factory, builder, source=source, settings=settings)
    return Runtime(
        settings=settings,
        session_factory=session_factory,
        source=source,
        builder=builder,
        ledger=ledger,
        processor=EventProcessor(session_factory, ledger, settings=settings),
        sweep=MaintenanceSweep(
            session_factory,
            ledger,
            interval_seconds=settings.sweep_interval_seconds,
            settings=settings,
        ),
    )
