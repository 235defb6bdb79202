"""Background maintenance for the Royalty Indexer."""

from .sweep import MaintenanceSweep, SweepReport

__all__ = ["MaintenanceSweep", "SweepReport"]
