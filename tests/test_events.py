"""Tests for inbound event models."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from royalty_indexer.events import (
    MAX_SQL_INTEGER,
    SYNTHETIC_ID_PREFIX,
    ArtifactPublished,
    ArtifactRef,
    RoyaltyParametersUpdated,
    SaleMade,
    parse_event,
)

from helpers import sale


class TestEventIds:
    """Test cases for event id derivation."""

    def test_origin_id(self):
        event = sale("nft", 1, 100, tx_hash="0xabc", log_index=3)
        assert event.has_origin_id
        assert event.event_id == "0xabc-3"

    def test_synthetic_id_is_deterministic(self):
        first = sale("nft", 1, 100, tx_hash=None, log_index=None)
        second = sale("nft", 1, 100, tx_hash=None, log_index=None)

        assert not first.has_origin_id
        assert first.event_id.startswith(SYNTHETIC_ID_PREFIX)
        assert first.event_id == second.event_id

    def test_synthetic_id_depends_on_payload(self):
        first = sale("nft", 1, 100, tx_hash=None, log_index=None)
        second = sale("nft", 1, 101, tx_hash=None, log_index=None)
        assert first.event_id != second.event_id

    def test_partial_origin_id_is_synthesized(self):
        """A tx hash without a log index cannot identify a log entry."""
        event = sale("nft", 1, 100, tx_hash="0xabc", log_index=None)
        assert event.event_id.startswith(SYNTHETIC_ID_PREFIX)


class TestParseEvent:
    """Test cases for parse_event."""

    def test_parses_each_kind(self):
        publication = parse_event(
            {
                "kind": "ArtifactPublished",
                "origin": "nft",
                "local_id": 1,
                "author": "0xalice",
                "publish_time": 10,
                "block_number": 1,
            }
        )
        sold = parse_event(
            {
                "kind": "SaleMade",
                "origin": "nft",
                "local_id": 1,
                "price": "5000000000000000000",
                "timestamp": 11,
                "buyer": "0xbuyer",
                "seller": "0xseller",
                "block_number": 2,
                "tx_hash": "0xdef",
                "log_index": 0,
            }
        )
        params = parse_event(
            {
                "kind": "RoyaltyParametersUpdated",
                "initial_rate": "12.5",
                "decay_factor": 60,
                "timestamp": 12,
                "block_number": 3,
            }
        )

        assert isinstance(publication, ArtifactPublished)
        assert publication.artifact == ArtifactRef(origin="nft", local_id=1)
        assert isinstance(sold, SaleMade)
        assert sold.price == 5 * 10**18
        assert isinstance(params, RoyaltyParametersUpdated)
        assert params.initial_rate == Decimal("12.5")
        assert params.max_depth is None

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            parse_event({"kind": "Transfer", "block_number": 1})

    def test_unknown_fields_rejected(self):
        with pytest.raises(ValidationError):
            parse_event(
                {
                    "kind": "ArtifactPublished",
                    "origin": "nft",
                    "local_id": 1,
                    "author": "0xalice",
                    "publish_time": 10,
                    "block_number": 1,
                    "developer": "0xalice",
                }
            )

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError):
            sale("nft", 1, -1)

    def test_local_id_beyond_integer_column_rejected(self):
        with pytest.raises(ValidationError):
            ArtifactRef(origin="nft", local_id=MAX_SQL_INTEGER + 1)
        with pytest.raises(ValidationError):
            sale("nft", 2**70, 100)

    def test_rate_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            RoyaltyParametersUpdated(
                initial_rate=Decimal("150"), decay_factor=50, timestamp=1, block_number=1
            )


class TestArtifactRef:
    """Test cases for ArtifactRef."""

    def test_key_and_hash(self):
        artifact = ArtifactRef(origin="nft", local_id=42)
        assert artifact.key == "nft-42"
        assert str(artifact) == "nft-42"
        assert {artifact, ArtifactRef(origin="nft", local_id=42)} == {artifact}
