"""
Royalty ledger.

Settlement runs in two phases. The dependency closure and any missing
dependency authors are resolved first, outside any ledger transaction, since
those writes are idempotent. The allocations are then computed in memory and
applied in a single transaction that starts by claiming the sale with a
conditional update on ``settled``. Only the transaction that flips the flag
inserts allocations and credits balances, so concurrent settlements of the
same sale credit it exactly once.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..config import Settings, get_settings
from ..db.audit_service import AuditService
from ..db.services import (
    AllocationService,
    BalanceService,
    ParameterService,
    PublicationService,
    SaleService,
)
from ..errors import (
    MissingPublicationRecord,
    NothingToWithdraw,
    SaleNotFound,
    StorageFailure,
    UpstreamUnavailable,
)
from ..events import ArtifactRef
from ..graph.builder import DependencyGraphBuilder
from ..graph.source import ArtifactSource
from .calculator import RoyaltyParameters, allocate

logger = logging.getLogger(__name__)

SETTLED = "settled"
ALREADY_SETTLED = "already_settled"
RECONCILED = "reconciled"
NOTHING_TO_RECONCILE = "nothing_to_reconcile"


@dataclass(frozen=True)
class PlannedAllocation:
    """One computed share of a sale."""

    beneficiary: str
    artifact: ArtifactRef
    depth: int
    amount: int
    rate: Decimal

    def to_dict(self) -> Dict:
        return {
            "beneficiary": self.beneficiary,
            "origin": self.artifact.origin,
            "local_id": self.artifact.local_id,
            "depth": self.depth,
            "amount": str(self.amount),
            "rate": str(self.rate),
        }


@dataclass
class SettlementResult:
    """Outcome of settling or reconciling a sale."""

    sale_id: str
    status: str
    total: int = 0
    allocations: List[PlannedAllocation] = field(default_factory=list)
    incomplete: bool = False

    def to_dict(self) -> Dict:
        return {
            "sale_id": self.sale_id,
            "status": self.status,
            "total": str(self.total),
            "allocations": [allocation.to_dict() for allocation in self.allocations],
            "incomplete": self.incomplete,
        }


def plan_allocations(
    price: int,
    candidates: Iterable[Tuple[ArtifactRef, int, str]],
    params: RoyaltyParameters,
    already_allocated: int = 0,
) -> List[PlannedAllocation]:
    """Compute allocations for ``(artifact, depth, beneficiary)`` candidates.

    Candidates are taken in the order given. Each amount is clamped so the
    running total, starting from ``already_allocated``, never exceeds the
    price.
    """
    planned = []
    running = already_allocated
    for artifact, depth, beneficiary in candidates:
        share = allocate(price, depth, params)
        amount = max(0, min(share.amount, price - running))
        running += amount
        planned.append(
            PlannedAllocation(
                beneficiary=beneficiary,
                artifact=artifact,
                depth=depth,
                amount=amount,
                rate=share.rate,
            )
        )
    return planned


class RoyaltyLedger:
    """Settles sales into allocations and pending balances."""

    def __init__(
        self,
        session_factory: sessionmaker,
        builder: DependencyGraphBuilder,
        source: Optional[ArtifactSource] = None,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.builder = builder
        self.source = source or builder.source
        self.settings = settings or get_settings()

    def current_parameters(self, db: Session) -> RoyaltyParameters:
        """Latest recorded parameter set, or the configured defaults."""
        latest = ParameterService(db).latest()
        if latest is None:
            return RoyaltyParameters.defaults(self.settings)
        return RoyaltyParameters.from_model(latest)

    async def settle(self, sale_id: str, actor_id: str = "system") -> SettlementResult:
        """Settle a sale at most once.

        Raises:
            SaleNotFound: the sale does not exist
            MissingPublicationRecord: the sale's artifact has no publication
            StorageFailure: the settlement transaction failed and was rolled back
        """
        db = self.session_factory()
        try:
            sale = SaleService(db).get(sale_id)
            if sale is None:
                raise SaleNotFound(sale_id)
            if sale.settled:
                logger.debug(f"Sale {sale_id} already settled")
                return SettlementResult(
                    sale_id, ALREADY_SETTLED, total=int(sale.royalty_amount or 0)
                )

            artifact = ArtifactRef(origin=sale.origin, local_id=sale.local_id)
            publication = PublicationService(db).get(artifact)
            if publication is None:
                raise MissingPublicationRecord(artifact.key)

            author = publication.author
            price = int(sale.price)
            params = self.current_parameters(db)
        finally:
            db.close()

        candidates, incomplete = await self._candidates(artifact, params, exclude=set())
        planned = plan_allocations(price, [(artifact, 0, author)] + candidates, params)
        total = sum(allocation.amount for allocation in planned)

        db = self.session_factory()
        try:
            if not SaleService(db).claim_settlement(sale_id, total, incomplete):
                db.rollback()
                logger.info(f"Sale {sale_id} was settled concurrently")
                return SettlementResult(sale_id, ALREADY_SETTLED)

            self._apply(db, sale_id, planned)
            AuditService(db).log_settlement(
                sale_id,
                after={
                    "settled": True,
                    "royalty_amount": str(total),
                    "allocations": len(planned),
                    "resolution_incomplete": incomplete,
                },
                actor_id=actor_id,
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageFailure(f"settling sale {sale_id}", e) from e
        finally:
            db.close()

        logger.info(
            f"Settled sale {sale_id}: {total} across {len(planned)} allocations"
            + (" (incomplete)" if incomplete else "")
        )
        return SettlementResult(sale_id, SETTLED, total, planned, incomplete)

    async def reconcile(self, sale_id: str, actor_id: str = "system") -> SettlementResult:
        """Add allocations missing from a sale settled with an incomplete closure.

        Artifacts already allocated for the sale are never allocated again.
        """
        db = self.session_factory()
        try:
            sale = SaleService(db).get(sale_id)
            if sale is None:
                raise SaleNotFound(sale_id)
            if not sale.settled or not sale.resolution_incomplete:
                return SettlementResult(
                    sale_id, NOTHING_TO_RECONCILE, total=int(sale.royalty_amount or 0)
                )

            artifact = ArtifactRef(origin=sale.origin, local_id=sale.local_id)
            price = int(sale.price)
            previous_total = int(sale.royalty_amount or 0)
            allocated = AllocationService(db).allocated_artifacts(sale_id)
            params = self.current_parameters(db)
        finally:
            db.close()

        candidates, incomplete = await self._candidates(artifact, params, exclude=allocated)
        planned = plan_allocations(price, candidates, params, already_allocated=previous_total)
        total = previous_total + sum(allocation.amount for allocation in planned)
        if not planned and incomplete:
            return SettlementResult(
                sale_id, NOTHING_TO_RECONCILE, total=previous_total, incomplete=True
            )

        db = self.session_factory()
        try:
            if not SaleService(db).claim_reconciliation(sale_id, total, incomplete):
                db.rollback()
                return SettlementResult(sale_id, NOTHING_TO_RECONCILE, total=previous_total)

            self._apply(db, sale_id, planned)
            AuditService(db).log_reconciliation(
                sale_id,
                before={"royalty_amount": str(previous_total), "resolution_incomplete": True},
                after={
                    "royalty_amount": str(total),
                    "resolution_incomplete": incomplete,
                    "allocations_added": len(planned),
                },
                actor_id=actor_id,
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageFailure(f"reconciling sale {sale_id}", e) from e
        finally:
            db.close()

        logger.info(f"Reconciled sale {sale_id}: added {len(planned)} allocations")
        return SettlementResult(sale_id, RECONCILED, total, planned, incomplete)

    def withdraw(self, beneficiary: str, actor_id: str = "system") -> int:
        """Drain a beneficiary's pending balance and return the amount.

        Raises:
            NothingToWithdraw: the balance is zero or was never credited
        """
        db = self.session_factory()
        try:
            amount = BalanceService(db).drain(beneficiary)
            if amount == 0:
                db.rollback()
                raise NothingToWithdraw(beneficiary)
            AuditService(db).log_withdrawal(beneficiary, amount, actor_id=actor_id)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageFailure(f"withdrawing for {beneficiary}", e) from e
        finally:
            db.close()

        logger.info(f"Withdrew {amount} for {beneficiary}")
        return amount

    async def _candidates(
        self, artifact: ArtifactRef, params: RoyaltyParameters, exclude: Set[str]
    ) -> Tuple[List[Tuple[ArtifactRef, int, str]], bool]:
        """Dependencies within ``max_depth`` paired with their authors.

        Returns the candidates ordered by ascending depth and whether anything
        could not be resolved.
        """
        resolution = await self.builder.resolve_dependencies(artifact)
        incomplete = not resolution.complete

        pending = [
            (dependency, depth)
            for dependency, depth in sorted(
                resolution.dependencies,
                key=lambda item: (item[1], item[0].origin, item[0].local_id),
            )
            if depth <= params.max_depth and dependency.key not in exclude
        ]
        authors = await self._authors([dependency for dependency, _ in pending])

        candidates = []
        for dependency, depth in pending:
            author = authors.get(dependency)
            if author is None:
                logger.warning(f"No author known for dependency {dependency}; skipping")
                incomplete = True
                continue
            candidates.append((dependency, depth, author))
        return candidates, incomplete

    async def _authors(self, artifacts: List[ArtifactRef]) -> Dict[ArtifactRef, str]:
        """Authors of ``artifacts``; unknown ones are asked of the artifact source
        and recorded as placeholder publications."""
        authors: Dict[ArtifactRef, str] = {}
        db = self.session_factory()
        try:
            publications = PublicationService(db)
            for artifact in artifacts:
                publication = publications.get(artifact)
                if publication is not None:
                    authors[artifact] = publication.author
        finally:
            db.close()

        discovered: Dict[ArtifactRef, str] = {}
        for artifact in artifacts:
            if artifact in authors:
                continue
            try:
                author = await self.source.get_author(artifact)
            except UpstreamUnavailable as e:
                logger.error(f"Could not resolve author of {artifact}: {e}")
                continue
            if author:
                discovered[artifact] = author

        if discovered:
            db = self.session_factory()
            try:
                publications = PublicationService(db)
                for artifact, author in discovered.items():
                    publications.ensure_placeholder(artifact, author)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StorageFailure("recording dependency authors", e) from e
            finally:
                db.close()
            authors.update(discovered)

        return authors

    @staticmethod
    def _apply(db: Session, sale_id: str, planned: List[PlannedAllocation]) -> None:
        allocations = AllocationService(db)
        balances = BalanceService(db)
        for allocation in planned:
            allocations.add(
                sale_id,
                allocation.beneficiary,
                allocation.artifact,
                allocation.depth,
                allocation.amount,
                str(allocation.rate),
            )
            if allocation.amount > 0:
                balances.credit(allocation.beneficiary, allocation.amount)
