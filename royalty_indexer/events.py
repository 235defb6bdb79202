"""
Inbound event models for the Royalty Indexer.

Events arrive from the originating ledger as normalized records. Each one
carries a block reference and, when the origin provides them, the transaction
hash and log index used to derive a stable event id.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

SYNTHETIC_ID_PREFIX = "synthetic-"

# Largest value a signed 64-bit SQL INTEGER column holds
MAX_SQL_INTEGER = 2**63 - 1


class EventKind(str, Enum):
    """Kinds of inbound events."""

    ARTIFACT_PUBLISHED = "ArtifactPublished"
    SALE_MADE = "SaleMade"
    ROYALTY_PARAMETERS_UPDATED = "RoyaltyParametersUpdated"


class ArtifactRef(BaseModel):
    """An artifact identified by its origin namespace and local id."""

    model_config = ConfigDict(frozen=True)

    origin: str = Field(..., min_length=1, max_length=128)
    local_id: int = Field(..., ge=0, le=MAX_SQL_INTEGER)

    @property
    def key(self) -> str:
        return f"{self.origin}-{self.local_id}"

    def __str__(self) -> str:
        return self.key


class InboundEvent(BaseModel):
    """Fields shared by every inbound event."""

    model_config = ConfigDict(extra="forbid")

    kind: str
    block_number: int = Field(..., ge=0, le=MAX_SQL_INTEGER)
    tx_hash: Optional[str] = Field(None, min_length=1, max_length=128)
    log_index: Optional[int] = Field(None, ge=0, le=MAX_SQL_INTEGER)

    @property
    def has_origin_id(self) -> bool:
        return self.tx_hash is not None and self.log_index is not None

    @property
    def event_id(self) -> str:
        """Stable event id.

        Uses ``{tx_hash}-{log_index}`` when both are known. Otherwise a
        deterministic digest of the canonical payload is used, prefixed so it
        can never collide with an origin-provided id.
        """
        if self.has_origin_id:
            return f"{self.tx_hash}-{self.log_index}"
        payload = self.model_dump(mode="json", exclude={"tx_hash", "log_index"})
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
        return f"{SYNTHETIC_ID_PREFIX}{digest}"


class ArtifactPublished(InboundEvent):
    """An artifact was published by its author."""

    kind: Literal["ArtifactPublished"] = "ArtifactPublished"
    origin: str = Field(..., min_length=1, max_length=128)
    local_id: int = Field(..., ge=0, le=MAX_SQL_INTEGER)
    author: str = Field(..., min_length=1, max_length=128)
    publish_time: int = Field(..., ge=0, le=MAX_SQL_INTEGER)

    @property
    def artifact(self) -> ArtifactRef:
        return ArtifactRef(origin=self.origin, local_id=self.local_id)


class SaleMade(InboundEvent):
    """A license for an artifact was sold."""

    kind: Literal["SaleMade"] = "SaleMade"
    origin: str = Field(..., min_length=1, max_length=128)
    local_id: int = Field(..., ge=0, le=MAX_SQL_INTEGER)
    price: int = Field(..., ge=0, description="Price in the smallest currency unit")
    timestamp: int = Field(..., ge=0, le=MAX_SQL_INTEGER)
    buyer: str = Field(..., min_length=1, max_length=128)
    seller: str = Field(..., min_length=1, max_length=128)

    @field_validator("price", mode="before")
    @classmethod
    def parse_price(cls, value: Any) -> Any:
        # Ledger clients hand out big integers as strings
        if isinstance(value, str):
            return int(value)
        return value

    @property
    def artifact(self) -> ArtifactRef:
        return ArtifactRef(origin=self.origin, local_id=self.local_id)


class RoyaltyParametersUpdated(InboundEvent):
    """The royalty policy was changed."""

    kind: Literal["RoyaltyParametersUpdated"] = "RoyaltyParametersUpdated"
    initial_rate: Decimal = Field(..., ge=0, le=100)
    decay_factor: int = Field(..., ge=0, le=100)
    decay_period: Optional[int] = Field(None, ge=0, le=MAX_SQL_INTEGER)
    max_depth: Optional[int] = Field(None, ge=0, le=MAX_SQL_INTEGER)
    floor_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    timestamp: int = Field(..., ge=0, le=MAX_SQL_INTEGER)


AnyEvent = Annotated[
    Union[ArtifactPublished, SaleMade, RoyaltyParametersUpdated],
    Field(discriminator="kind"),
]

_event_adapter: TypeAdapter = TypeAdapter(AnyEvent)


def parse_event(data: Dict[str, Any]) -> InboundEvent:
    """Parse a raw event record into its typed model."""
    return _event_adapter.validate_python(data)
