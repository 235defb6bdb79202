"""
Maintenance sweep - settles sales the event processor could not.

Flow:
1. Poll: Page through sales with settled=false, oldest first
2. Settle: Each through the ledger (the conditional update on ``settled``
   makes overlapping sweeps and processor settlements safe)
3. Reconcile: Settled sales flagged resolution_incomplete get the
   allocations that were missing when they were settled

Each sale is isolated: a failure is logged and the sweep moves on.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Tuple

import structlog
from sqlalchemy.orm import sessionmaker

from ..config import Settings, get_settings
from ..db.services import SaleService
from ..royalties.ledger import RECONCILED, SETTLED, RoyaltyLedger

logger = structlog.get_logger()


@dataclass
class SweepReport:
    """Outcome of one sweep pass."""

    settled: List[str] = field(default_factory=list)
    reconciled: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "settled": self.settled,
            "reconciled": self.reconciled,
            "failed": self.failed,
        }


class MaintenanceSweep:
    """Periodic settlement and reconciliation of outstanding sales."""

    def __init__(
        self,
        session_factory: sessionmaker,
        ledger: RoyaltyLedger,
        interval_seconds: Optional[int] = None,
        batch_size: int = 500,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.ledger = ledger
        self.interval_seconds = interval_seconds or self.settings.sweep_interval_seconds
        self.batch_size = batch_size
        self.is_running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Run the sweep every ``interval_seconds`` until stopped."""
        if self.is_running:
            return
        self.is_running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("sweep_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Cancel the periodic task.

        Settlement transactions contain no awaits, so cancellation lands
        between transactions and never leaves one half applied.
        """
        self.is_running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("sweep_stopped")

    async def _loop(self) -> None:
        while self.is_running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception("sweep_pass_failed", error=str(e))
            await asyncio.sleep(self.interval_seconds)

    def _walk(self, fetch_page: Callable[..., List[Tuple[int, str]]]) -> Iterator[str]:
        """Yield sale ids page by page so a failing prefix never hides later sales."""
        after: Optional[Tuple[int, str]] = None
        while True:
            db = self.session_factory()
            try:
                page = fetch_page(SaleService(db), self.batch_size, after)
            finally:
                db.close()
            for _, sale_id in page:
                yield sale_id
            if len(page) < self.batch_size:
                return
            after = page[-1]

    async def run_once(self) -> SweepReport:
        """One pass over unsettled and incompletely resolved sales."""
        report = SweepReport()

        for sale_id in self._walk(SaleService.unsettled_page):
            try:
                result = await self.ledger.settle(sale_id, actor_id="sweep")
            except Exception as e:
                logger.error("sweep_settle_failed", sale_id=sale_id, error=str(e))
                report.failed[sale_id] = str(e)
                continue
            if result.status == SETTLED:
                report.settled.append(sale_id)

        for sale_id in self._walk(SaleService.incomplete_page):
            try:
                result = await self.ledger.reconcile(sale_id, actor_id="sweep")
            except Exception as e:
                logger.error("sweep_reconcile_failed", sale_id=sale_id, error=str(e))
                report.failed[sale_id] = str(e)
                continue
            if result.status == RECONCILED:
                report.reconciled.append(sale_id)

        if report.settled or report.reconciled or report.failed:
            logger.info(
                "sweep_pass_complete",
                settled=len(report.settled),
                reconciled=len(report.reconciled),
                failed=len(report.failed),
            )
        return report
