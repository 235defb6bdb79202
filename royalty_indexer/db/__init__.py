"""
Database package for the Royalty Indexer.
"""

from .base import Base, create_db_engine, get_db, get_engine, get_session_local, init_database
from .models import (
    DependencyEdgeModel,
    PendingRoyaltyModel,
    ProcessedEventModel,
    PublicationModel,
    RoyaltyAllocationModel,
    RoyaltyParametersModel,
    SaleModel,
)

__all__ = [
    "Base",
    "create_db_engine",
    "get_db",
    "get_engine",
    "get_session_local",
    "init_database",
    "DependencyEdgeModel",
    "PendingRoyaltyModel",
    "ProcessedEventModel",
    "PublicationModel",
    "RoyaltyAllocationModel",
    "RoyaltyParametersModel",
    "SaleModel",
]
