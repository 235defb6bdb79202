"""
Depth-decayed royalty rates.

Rates are percentages of the sale price. Internally they are tracked in basis
points so every decay step truncates exactly the way integer currency math
does:

    bp(0) = initial_rate * 100
    bp(d) = bp(d - 1) * decay_factor // 100
    rate(d) = max(floor_bp, bp(d)) / 100

and an allocation is ``price * bp // 10000``, or nothing beyond ``max_depth``.
The initial rate is honoured to basis-point precision.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Any, Dict, Optional

from ..config import Settings, get_settings

BASIS_POINTS = 10_000


@dataclass(frozen=True)
class RoyaltyParameters:
    """A royalty policy."""

    initial_rate: Decimal = Decimal("10")
    decay_factor: int = 65
    max_depth: int = 5
    floor_rate: Decimal = Decimal("0.1")
    decay_period: Optional[int] = None

    def __post_init__(self) -> None:
        if not Decimal("0") <= self.initial_rate <= Decimal("100"):
            raise ValueError(f"initial_rate must be within 0..100, got {self.initial_rate}")
        if not 0 <= self.decay_factor <= 100:
            raise ValueError(f"decay_factor must be within 0..100, got {self.decay_factor}")
        if self.max_depth < 0:
            raise ValueError(f"max_depth must be non-negative, got {self.max_depth}")
        if self.floor_rate < 0:
            raise ValueError(f"floor_rate must be non-negative, got {self.floor_rate}")

    @classmethod
    def defaults(cls, settings: Optional[Settings] = None) -> "RoyaltyParameters":
        """Parameters in force before any update event is recorded."""
        settings = settings or get_settings()
        return cls(
            initial_rate=Decimal(settings.default_initial_rate),
            decay_factor=settings.default_decay_factor,
            max_depth=settings.default_max_depth,
            floor_rate=Decimal(settings.default_floor_rate),
            decay_period=settings.default_decay_period,
        )

    @classmethod
    def from_model(cls, model: Any) -> "RoyaltyParameters":
        """Build parameters from a ``RoyaltyParametersModel`` row."""
        return cls(
            initial_rate=Decimal(model.initial_rate),
            decay_factor=model.decay_factor,
            max_depth=model.max_depth,
            floor_rate=Decimal(model.floor_rate),
            decay_period=model.decay_period,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initial_rate": str(self.initial_rate),
            "decay_factor": self.decay_factor,
            "max_depth": self.max_depth,
            "floor_rate": str(self.floor_rate),
            "decay_period": self.decay_period,
        }


@dataclass(frozen=True)
class Allocation:
    """Amount owed at one depth and the rate that produced it."""

    amount: int
    rate: Decimal
    basis_points: int


def to_basis_points(percentage: Decimal) -> int:
    """Convert a percentage to basis points, truncating toward zero."""
    return int((Decimal(percentage) * 100).to_integral_value(rounding=ROUND_DOWN))


def rate_basis_points(depth: int, params: RoyaltyParameters) -> int:
    """Rate at ``depth`` in basis points, never below the floor."""
    if depth < 0:
        raise ValueError(f"depth must be non-negative, got {depth}")

    initial = to_basis_points(params.initial_rate)
    if depth == 0:
        return initial

    # A floor above the initial rate would make deeper levels earn more
    floor = min(to_basis_points(params.floor_rate), initial)
    current = initial
    for _ in range(depth):
        current = current * params.decay_factor // 100
        if current <= floor:
            return floor
    return current


def rate(depth: int, params: RoyaltyParameters) -> Decimal:
    """Effective royalty percentage at ``depth``."""
    return Decimal(rate_basis_points(depth, params)) / 100


def allocate(price: int, depth: int, params: RoyaltyParameters) -> Allocation:
    """Amount owed on ``price`` to the author at ``depth``."""
    if price < 0:
        raise ValueError(f"price must be non-negative, got {price}")
    bp = rate_basis_points(depth, params)
    amount = 0 if depth > params.max_depth else price * bp // BASIS_POINTS
    return Allocation(amount=amount, rate=rate(depth, params), basis_points=bp)
