"""
Event processor.

A single consumer drains an inbound queue and applies events one at a time in
arrival order. Each fact write commits together with its processed-event
marker, so a duplicate delivery is either rejected up front or rolled back by
the marker's primary key. Sales are settled right after they are recorded;
a failed settlement is logged and left for the maintenance sweep.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..config import Settings, get_settings
from ..db.services import (
    ParameterService,
    ProcessedEventService,
    PublicationService,
    SaleService,
)
from ..errors import DuplicateEvent, RoyaltyIndexerError, StorageFailure
from ..events import ArtifactPublished, InboundEvent, RoyaltyParametersUpdated, SaleMade
from ..royalties.ledger import RoyaltyLedger

logger = structlog.get_logger()


@dataclass
class ReplaySummary:
    """Counts from replaying a batch of events."""

    applied: int = 0
    duplicates: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "applied": self.applied,
            "duplicates": self.duplicates,
            "failed": self.failed,
        }


class EventProcessor:
    """Applies inbound events to the fact store and settles sales."""

    def __init__(
        self,
        session_factory: sessionmaker,
        ledger: RoyaltyLedger,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.ledger = ledger
        self.settings = settings or get_settings()
        self.queue: asyncio.Queue = asyncio.Queue()
        self.is_running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the consumer task."""
        if self.is_running:
            return
        self.is_running = True
        self._task = asyncio.create_task(self._process_events())
        logger.info("event_processor_started")

    async def stop(self, drain: bool = True) -> None:
        """Stop the consumer, first waiting for queued events when ``drain``."""
        if drain and self.is_running:
            await self.queue.join()

        self.is_running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("event_processor_stopped", pending=self.queue.qsize())

    async def submit(self, event: InboundEvent) -> None:
        """Queue an event for the consumer."""
        await self.queue.put(event)
        logger.debug("event_submitted", event_id=event.event_id, kind=event.kind)

    async def _process_events(self) -> None:
        while self.is_running:
            try:
                event = await asyncio.wait_for(self.queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            try:
                await self.handle(event)
            except Exception as e:
                logger.error("event_failed", event_id=event.event_id, error=str(e))
            finally:
                self.queue.task_done()

    async def handle(self, event: InboundEvent) -> bool:
        """Apply one event.

        Returns:
            True if the event was applied, False if it was a duplicate

        Raises:
            StorageFailure: the fact write could not be committed
        """
        event_id = event.event_id
        event_logger = logger.bind(event_id=event_id, kind=event.kind)

        try:
            self._record(event)
        except DuplicateEvent:
            event_logger.debug("event_duplicate")
            return False
        event_logger.info("event_applied", block_number=event.block_number)

        if isinstance(event, SaleMade):
            try:
                result = await self.ledger.settle(event_id, actor_id="processor")
                event_logger.info(
                    "sale_settlement",
                    status=result.status,
                    total=str(result.total),
                    incomplete=result.incomplete,
                )
            except RoyaltyIndexerError as e:
                # The sweep retries unsettled sales
                event_logger.error("sale_settlement_failed", error=e.message, code=e.code)
            except Exception as e:
                event_logger.exception("sale_settlement_failed", error=str(e))

        return True

    async def replay(self, events: Iterable[InboundEvent]) -> ReplaySummary:
        """Apply events in order, counting outcomes instead of raising."""
        summary = ReplaySummary()
        for event in events:
            try:
                applied = await self.handle(event)
            except RoyaltyIndexerError as e:
                logger.error("event_failed", event_id=event.event_id, error=e.message)
                summary.failed += 1
                continue
            except Exception as e:
                logger.exception("event_failed", event_id=event.event_id, error=str(e))
                summary.failed += 1
                continue
            if applied:
                summary.applied += 1
            else:
                summary.duplicates += 1
        logger.info("replay_complete", **summary.to_dict())
        return summary

    def _record(self, event: InboundEvent) -> None:
        """Write an event's facts and its processed marker in one transaction."""
        event_id = event.event_id
        db = self.session_factory()
        try:
            processed = ProcessedEventService(db)
            if processed.is_processed(event_id):
                raise DuplicateEvent(event_id)

            self._apply(db, event)
            processed.mark_processed(event_id, event.kind)
            db.commit()
        except IntegrityError as e:
            # A concurrent delivery committed the same marker first
            db.rollback()
            raise DuplicateEvent(event_id) from e
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageFailure(f"recording event {event_id}", e) from e
        finally:
            db.close()

    def _apply(self, db: Session, event: InboundEvent) -> Any:
        if isinstance(event, ArtifactPublished):
            return PublicationService(db).record(event)

        if isinstance(event, SaleMade):
            publications = PublicationService(db)
            if publications.get(event.artifact) is None:
                # The seller stands in for the author until the publication arrives
                logger.warning(
                    "sale_for_unpublished_artifact",
                    artifact=event.artifact.key,
                    seller=event.seller,
                )
                publications.ensure_placeholder(
                    event.artifact,
                    event.seller,
                    block_number=event.block_number,
                    publish_time=event.timestamp,
                )
            return SaleService(db).record(event)

        if isinstance(event, RoyaltyParametersUpdated):
            return ParameterService(db).record(
                event,
                default_max_depth=self.settings.default_max_depth,
                default_floor_rate=self.settings.default_floor_rate,
            )

        raise ValueError(f"Unsupported event kind: {event.kind}")
