"""
Fact store services for the Royalty Indexer.

Services add and update rows in the caller's session but never commit: the
caller owns the unit of work, so a fact write, its processed-event marker and
any ledger mutation commit or roll back together.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional, Set, Tuple

from sqlalchemy import and_, desc, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from ..events import ArtifactPublished, ArtifactRef, RoyaltyParametersUpdated, SaleMade
from .models import (
    DependencyEdgeModel,
    PendingRoyaltyModel,
    ProcessedEventModel,
    PublicationModel,
    RoyaltyAllocationModel,
    RoyaltyParametersModel,
    SaleModel,
)


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class ProcessedEventService:
    """Deduplication markers for inbound events."""

    def __init__(self, db: Session):
        self.db = db

    def is_processed(self, event_id: str) -> bool:
        """Check whether an event id has already been applied."""
        return self.db.get(ProcessedEventModel, event_id) is not None

    def mark_processed(self, event_id: str, kind: str) -> ProcessedEventModel:
        """Record an event id as applied (committed by the caller)."""
        marker = ProcessedEventModel(id=event_id, kind=kind, processed_at=utc_now())
        self.db.add(marker)
        return marker


class PublicationService:
    """Service for artifact publications."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, artifact: ArtifactRef) -> Optional[PublicationModel]:
        """Get a publication by artifact."""
        return self.db.get(PublicationModel, artifact.key)

    def record(self, event: ArtifactPublished) -> PublicationModel:
        """Record a publication, upgrading a placeholder in place."""
        existing = self.get(event.artifact)
        if existing is not None:
            if existing.is_placeholder:
                existing.author = event.author
                existing.publish_time = event.publish_time
                existing.block_number = event.block_number
                existing.is_placeholder = False
            return existing

        publication = PublicationModel(
            id=event.artifact.key,
            origin=event.origin,
            local_id=event.local_id,
            author=event.author,
            publish_time=event.publish_time,
            block_number=event.block_number,
            is_placeholder=False,
        )
        self.db.add(publication)
        return publication

    def ensure_placeholder(
        self,
        artifact: ArtifactRef,
        author: str,
        block_number: int = 0,
        publish_time: int = 0,
    ) -> PublicationModel:
        """Return the publication for an artifact, creating a placeholder if absent."""
        existing = self.get(artifact)
        if existing is not None:
            return existing

        placeholder = PublicationModel(
            id=artifact.key,
            origin=artifact.origin,
            local_id=artifact.local_id,
            author=author,
            publish_time=publish_time,
            block_number=block_number,
            is_placeholder=True,
        )
        self.db.add(placeholder)
        return placeholder

    def mark_dependencies_indexed(self, artifact: ArtifactRef) -> bool:
        """Flag an artifact's immediate dependencies as fetched.

        Returns False when the artifact has no publication row yet.
        """
        publication = self.get(artifact)
        if publication is None:
            return False
        if publication.dependencies_indexed_at is None:
            publication.dependencies_indexed_at = utc_now()
        return True

    def list(self, limit: int = 1000, offset: int = 0) -> List[PublicationModel]:
        """List publications, newest first."""
        return (
            self.db.query(PublicationModel)
            .order_by(desc(PublicationModel.publish_time), PublicationModel.id)
            .offset(offset)
            .limit(limit)
            .all()
        )


class SaleService:
    """Service for sales."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, sale_id: str) -> Optional[SaleModel]:
        """Get a sale by ID."""
        return self.db.get(SaleModel, sale_id)

    def record(self, event: SaleMade) -> SaleModel:
        """Record a sale; an existing sale with the same id is returned unchanged."""
        sale_id = event.event_id
        existing = self.get(sale_id)
        if existing is not None:
            return existing

        sale = SaleModel(
            id=sale_id,
            origin=event.origin,
            local_id=event.local_id,
            price=str(event.price),
            buyer=event.buyer,
            seller=event.seller,
            timestamp=event.timestamp,
            block_number=event.block_number,
            id_synthesized=not event.has_origin_id,
            settled=False,
            resolution_incomplete=False,
        )
        self.db.add(sale)
        return sale

    def list(
        self,
        beneficiary: Optional[str] = None,
        limit: int = 1000,
        offset: int = 0,
    ) -> List[SaleModel]:
        """List sales newest first, optionally only those crediting a beneficiary."""
        query = self.db.query(SaleModel)

        if beneficiary:
            credited = select(RoyaltyAllocationModel.sale_id).where(
                RoyaltyAllocationModel.beneficiary == beneficiary
            )
            query = query.filter(SaleModel.id.in_(credited))

        return (
            query.order_by(desc(SaleModel.timestamp), desc(SaleModel.block_number))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def unsettled_ids(self, limit: int = 500) -> List[str]:
        """IDs of sales awaiting settlement, oldest first."""
        return [sale_id for _, sale_id in self.unsettled_page(limit)]

    def incomplete_ids(self, limit: int = 500) -> List[str]:
        """IDs of settled sales whose dependency allocations are incomplete."""
        return [sale_id for _, sale_id in self.incomplete_page(limit)]

    def unsettled_page(
        self, limit: int = 500, after: Optional[Tuple[int, str]] = None
    ) -> List[Tuple[int, str]]:
        """``(timestamp, id)`` of unsettled sales ordered after ``after``."""
        return self._page(SaleModel.settled.is_(False), limit, after)

    def incomplete_page(
        self, limit: int = 500, after: Optional[Tuple[int, str]] = None
    ) -> List[Tuple[int, str]]:
        """``(timestamp, id)`` of incompletely allocated sales ordered after ``after``."""
        return self._page(
            and_(SaleModel.settled.is_(True), SaleModel.resolution_incomplete.is_(True)),
            limit,
            after,
        )

    def _page(
        self, condition: Any, limit: int, after: Optional[Tuple[int, str]]
    ) -> List[Tuple[int, str]]:
        query = select(SaleModel.timestamp, SaleModel.id).where(condition)
        if after is not None:
            timestamp, sale_id = after
            query = query.where(
                or_(
                    SaleModel.timestamp > timestamp,
                    and_(SaleModel.timestamp == timestamp, SaleModel.id > sale_id),
                )
            )
        rows = self.db.execute(query.order_by(SaleModel.timestamp, SaleModel.id).limit(limit))
        return [(row[0], row[1]) for row in rows]

    def claim_settlement(
        self, sale_id: str, royalty_amount: int, incomplete: bool
    ) -> bool:
        """Mark a sale settled if nobody else has.

        The conditional update is the serialization point for concurrent
        settlements: only one transaction can flip ``settled`` from false.
        """
        result = self.db.execute(
            update(SaleModel)
            .where(SaleModel.id == sale_id, SaleModel.settled.is_(False))
            .values(
                settled=True,
                royalty_amount=str(royalty_amount),
                settled_at=utc_now(),
                resolution_incomplete=incomplete,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def claim_reconciliation(
        self, sale_id: str, royalty_amount: int, incomplete: bool
    ) -> bool:
        """Update a settled sale's total if it is still flagged incomplete."""
        result = self.db.execute(
            update(SaleModel)
            .where(
                SaleModel.id == sale_id,
                SaleModel.settled.is_(True),
                SaleModel.resolution_incomplete.is_(True),
            )
            .values(
                royalty_amount=str(royalty_amount),
                resolution_incomplete=incomplete,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class ParameterService:
    """Service for the royalty parameter history."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        event: RoyaltyParametersUpdated,
        default_max_depth: int,
        default_floor_rate: Decimal,
    ) -> RoyaltyParametersModel:
        """Append a parameter set; fields missing from the event use defaults."""
        existing = self.db.get(RoyaltyParametersModel, event.event_id)
        if existing is not None:
            return existing

        params = RoyaltyParametersModel(
            id=event.event_id,
            initial_rate=str(event.initial_rate),
            decay_factor=event.decay_factor,
            max_depth=event.max_depth if event.max_depth is not None else default_max_depth,
            floor_rate=str(
                event.floor_rate if event.floor_rate is not None else default_floor_rate
            ),
            decay_period=event.decay_period,
            timestamp=event.timestamp,
            block_number=event.block_number,
        )
        self.db.add(params)
        return params

    def latest(self) -> Optional[RoyaltyParametersModel]:
        """Most recently published parameter set."""
        return (
            self.db.query(RoyaltyParametersModel)
            .order_by(
                desc(RoyaltyParametersModel.timestamp),
                desc(RoyaltyParametersModel.block_number),
                desc(RoyaltyParametersModel.created_at),
            )
            .first()
        )


class DependencyEdgeService:
    """Service for dependency edges with minimum-depth upserts."""

    def __init__(self, db: Session):
        self.db = db

    def upsert(self, source: ArtifactRef, target: ArtifactRef, depth: int) -> None:
        """Insert an edge or lower its depth; never raises an existing depth."""
        values = {
            "origin": source.origin,
            "local_id": source.local_id,
            "dep_origin": target.origin,
            "dep_local_id": target.local_id,
            "depth": depth,
        }
        dialect = self.db.get_bind().dialect.name

        if dialect in ("sqlite", "postgresql"):
            insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
            stmt = insert(DependencyEdgeModel).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["origin", "local_id", "dep_origin", "dep_local_id"],
                set_={"depth": stmt.excluded.depth},
                where=DependencyEdgeModel.depth > stmt.excluded.depth,
            )
            self.db.execute(stmt)
            return

        existing = (
            self.db.query(DependencyEdgeModel)
            .filter_by(
                origin=source.origin,
                local_id=source.local_id,
                dep_origin=target.origin,
                dep_local_id=target.local_id,
            )
            .with_for_update()
            .first()
        )
        if existing is None:
            self.db.add(DependencyEdgeModel(**values))
        elif depth < existing.depth:
            existing.depth = depth

    def edges_from(self, source: ArtifactRef) -> List[Tuple[ArtifactRef, int]]:
        """All recorded dependencies of an artifact with their minimum depth."""
        rows = self.db.execute(
            select(
                DependencyEdgeModel.dep_origin,
                DependencyEdgeModel.dep_local_id,
                DependencyEdgeModel.depth,
            )
            .where(
                DependencyEdgeModel.origin == source.origin,
                DependencyEdgeModel.local_id == source.local_id,
            )
            .order_by(
                DependencyEdgeModel.depth,
                DependencyEdgeModel.dep_origin,
                DependencyEdgeModel.dep_local_id,
            )
        )
        return [
            (ArtifactRef(origin=origin, local_id=local_id), depth)
            for origin, local_id, depth in rows
        ]

    def direct_dependencies(self, source: ArtifactRef) -> List[ArtifactRef]:
        """Immediate dependencies: edges at depth 1."""
        return [target for target, depth in self.edges_from(source) if depth == 1]

    def edges_to(self, target: ArtifactRef) -> List[Tuple[ArtifactRef, int]]:
        """All artifacts that depend on ``target`` with their minimum depth."""
        rows = self.db.execute(
            select(
                DependencyEdgeModel.origin,
                DependencyEdgeModel.local_id,
                DependencyEdgeModel.depth,
            )
            .where(
                DependencyEdgeModel.dep_origin == target.origin,
                DependencyEdgeModel.dep_local_id == target.local_id,
            )
            .order_by(
                DependencyEdgeModel.depth,
                DependencyEdgeModel.origin,
                DependencyEdgeModel.local_id,
            )
        )
        return [
            (ArtifactRef(origin=origin, local_id=local_id), depth)
            for origin, local_id, depth in rows
        ]


class BalanceService:
    """Service for pending royalty balances."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, beneficiary: str) -> int:
        """Pending balance for a beneficiary (zero when none recorded)."""
        row = self.db.get(PendingRoyaltyModel, beneficiary)
        return int(row.amount) if row else 0

    def _locked(self, beneficiary: str) -> Optional[PendingRoyaltyModel]:
        return (
            self.db.query(PendingRoyaltyModel)
            .filter(PendingRoyaltyModel.beneficiary == beneficiary)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def credit(self, beneficiary: str, amount: int) -> int:
        """Add to a beneficiary's balance and return the new balance."""
        row = self._locked(beneficiary)
        if row is None:
            row = PendingRoyaltyModel(beneficiary=beneficiary, amount="0")
            self.db.add(row)
            # Later credits in this transaction must find the row
            self.db.flush()
        new_amount = int(row.amount) + amount
        row.amount = str(new_amount)
        row.last_updated = utc_now()
        return new_amount

    def drain(self, beneficiary: str) -> int:
        """Zero a beneficiary's balance and return what it held."""
        row = self._locked(beneficiary)
        if row is None:
            return 0
        amount = int(row.amount)
        if amount:
            row.amount = "0"
            row.last_updated = utc_now()
        return amount


class AllocationService:
    """Service for per-sale royalty allocations."""

    def __init__(self, db: Session):
        self.db = db

    def add(
        self,
        sale_id: str,
        beneficiary: str,
        artifact: ArtifactRef,
        depth: int,
        amount: int,
        rate: str,
    ) -> RoyaltyAllocationModel:
        """Add an allocation row (committed by the caller)."""
        allocation = RoyaltyAllocationModel(
            sale_id=sale_id,
            beneficiary=beneficiary,
            origin=artifact.origin,
            local_id=artifact.local_id,
            depth=depth,
            amount=str(amount),
            rate=rate,
        )
        self.db.add(allocation)
        return allocation

    def for_sale(self, sale_id: str) -> List[RoyaltyAllocationModel]:
        """Allocations of a sale ordered by ascending depth."""
        return (
            self.db.query(RoyaltyAllocationModel)
            .filter(RoyaltyAllocationModel.sale_id == sale_id)
            .order_by(
                RoyaltyAllocationModel.depth,
                RoyaltyAllocationModel.origin,
                RoyaltyAllocationModel.local_id,
            )
            .all()
        )

    def allocated_artifacts(self, sale_id: str) -> Set[str]:
        """Keys of artifacts already allocated for a sale."""
        return {
            f"{allocation.origin}-{allocation.local_id}"
            for allocation in self.for_sale(sale_id)
        }
