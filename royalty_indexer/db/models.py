"""
SQLAlchemy models for the Royalty Indexer.

Monetary amounts are stored as decimal strings of integer smallest-unit values
so repeated additions never drift.
"""

from typing import Any, Dict

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from .base import Base


class PublicationModel(Base):
    """A published artifact and its author."""

    __tablename__ = "artifact_publications"

    id = Column(String(300), primary_key=True)  # "{origin}-{local_id}"
    origin = Column(String(128), nullable=False)
    local_id = Column(BigInteger, nullable=False)
    author = Column(String(128), nullable=False, index=True)
    publish_time = Column(BigInteger, nullable=False)
    block_number = Column(BigInteger, nullable=False)

    # Created from a sale that referenced an artifact not yet seen as published
    is_placeholder = Column(Boolean, nullable=False, default=False)
    # Set once immediate dependencies have been fetched from the artifact source
    dependencies_indexed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        UniqueConstraint("origin", "local_id", name="uq_publications_artifact"),
        Index("ix_publications_publish_time", "publish_time"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "origin": self.origin,
            "local_id": self.local_id,
            "author": self.author,
            "publish_time": self.publish_time,
            "block_number": self.block_number,
            "is_placeholder": self.is_placeholder,
            "dependencies_indexed_at": (
                self.dependencies_indexed_at.isoformat()
                if self.dependencies_indexed_at
                else None
            ),
        }


class SaleModel(Base):
    """A sale of an artifact license."""

    __tablename__ = "sales"

    id = Column(String(200), primary_key=True)
    origin = Column(String(128), nullable=False)
    local_id = Column(BigInteger, nullable=False)
    price = Column(String(80), nullable=False)
    buyer = Column(String(128), nullable=False)
    seller = Column(String(128), nullable=False)
    timestamp = Column(BigInteger, nullable=False)
    block_number = Column(BigInteger, nullable=False)

    # Fallback id derived from the payload, not from tx hash + log index
    id_synthesized = Column(Boolean, nullable=False, default=False)

    # Settlement state
    settled = Column(Boolean, nullable=False, default=False, index=True)
    royalty_amount = Column(String(80), nullable=True)
    settled_at = Column(DateTime(timezone=True), nullable=True)
    resolution_incomplete = Column(Boolean, nullable=False, default=False, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        Index("ix_sales_artifact", "origin", "local_id"),
        Index("ix_sales_timestamp", "timestamp"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "origin": self.origin,
            "local_id": self.local_id,
            "price": self.price,
            "buyer": self.buyer,
            "seller": self.seller,
            "timestamp": self.timestamp,
            "block_number": self.block_number,
            "id_synthesized": self.id_synthesized,
            "settled": self.settled,
            "royalty_amount": self.royalty_amount,
            "settled_at": self.settled_at.isoformat() if self.settled_at else None,
            "resolution_incomplete": self.resolution_incomplete,
        }


class PendingRoyaltyModel(Base):
    """Accumulated, unwithdrawn royalties for one beneficiary."""

    __tablename__ = "pending_royalties"

    beneficiary = Column(String(128), primary_key=True)
    amount = Column(String(80), nullable=False, default="0")
    last_updated = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "beneficiary": self.beneficiary,
            "amount": self.amount,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


class ProcessedEventModel(Base):
    """Marker for an inbound event that has been applied."""

    __tablename__ = "processed_events"

    id = Column(String(200), primary_key=True)
    kind = Column(String(50), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "kind": self.kind,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }


class DependencyEdgeModel(Base):
    """Edge from an artifact to one of its (possibly transitive) dependencies.

    ``depth`` is the minimum number of hops from the source artifact to the
    dependency over every path discovered so far.
    """

    __tablename__ = "dependency_edges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    origin = Column(String(128), nullable=False)
    local_id = Column(BigInteger, nullable=False)
    dep_origin = Column(String(128), nullable=False)
    dep_local_id = Column(BigInteger, nullable=False)
    depth = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "origin", "local_id", "dep_origin", "dep_local_id", name="uq_dependency_edge"
        ),
        Index("ix_dependency_edges_source", "origin", "local_id"),
        Index("ix_dependency_edges_target", "dep_origin", "dep_local_id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "origin": self.origin,
            "local_id": self.local_id,
            "dep_origin": self.dep_origin,
            "dep_local_id": self.dep_local_id,
            "depth": self.depth,
        }


class RoyaltyAllocationModel(Base):
    """One beneficiary's share of one sale."""

    __tablename__ = "royalty_allocations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sale_id = Column(String(200), ForeignKey("sales.id"), nullable=False, index=True)
    beneficiary = Column(String(128), nullable=False, index=True)
    origin = Column(String(128), nullable=False)
    local_id = Column(BigInteger, nullable=False)
    depth = Column(Integer, nullable=False)
    amount = Column(String(80), nullable=False)
    rate = Column(String(40), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        UniqueConstraint("sale_id", "origin", "local_id", name="uq_allocation_sale_artifact"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "sale_id": self.sale_id,
            "beneficiary": self.beneficiary,
            "origin": self.origin,
            "local_id": self.local_id,
            "depth": self.depth,
            "amount": self.amount,
            "rate": self.rate,
        }


class RoyaltyParametersModel(Base):
    """A published royalty policy; the latest row is in force."""

    __tablename__ = "royalty_parameters"

    id = Column(String(200), primary_key=True)
    initial_rate = Column(String(40), nullable=False)
    decay_factor = Column(Integer, nullable=False)
    max_depth = Column(BigInteger, nullable=False)
    floor_rate = Column(String(40), nullable=False)
    decay_period = Column(BigInteger, nullable=True)
    timestamp = Column(BigInteger, nullable=False, index=True)
    block_number = Column(BigInteger, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "initial_rate": self.initial_rate,
            "decay_factor": self.decay_factor,
            "max_depth": self.max_depth,
            "floor_rate": self.floor_rate,
            "decay_period": self.decay_period,
            "timestamp": self.timestamp,
            "block_number": self.block_number,
        }
