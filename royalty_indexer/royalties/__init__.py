"""Royalty calculation and the royalty ledger."""

from .calculator import Allocation, RoyaltyParameters, allocate, rate, rate_basis_points
from .ledger import PlannedAllocation, RoyaltyLedger, SettlementResult, plan_allocations

__all__ = [
    "Allocation",
    "PlannedAllocation",
    "RoyaltyLedger",
    "RoyaltyParameters",
    "SettlementResult",
    "allocate",
    "plan_allocations",
    "rate",
    "rate_basis_points",
]
