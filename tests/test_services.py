"""Tests for the fact store services."""

from royalty_indexer.db.models import DependencyEdgeModel
from royalty_indexer.db.services import (
    BalanceService,
    DependencyEdgeService,
    ProcessedEventService,
    PublicationService,
    SaleService,
)

from helpers import published, ref, sale


class TestDependencyEdgeService:
    """Minimum-depth edge upserts."""

    def test_upsert_keeps_minimum_depth(self, db_session):
        edges = DependencyEdgeService(db_session)

        edges.upsert(ref("nft", 1), ref("nft", 2), 3)
        edges.upsert(ref("nft", 1), ref("nft", 2), 1)
        edges.upsert(ref("nft", 1), ref("nft", 2), 2)
        db_session.commit()

        assert edges.edges_from(ref("nft", 1)) == [(ref("nft", 2), 1)]
        assert db_session.query(DependencyEdgeModel).count() == 1

    def test_reverse_edges(self, db_session):
        edges = DependencyEdgeService(db_session)
        edges.upsert(ref("nft", 1), ref("nft", 3), 2)
        edges.upsert(ref("nft", 2), ref("nft", 3), 1)
        db_session.commit()

        assert edges.edges_to(ref("nft", 3)) == [(ref("nft", 2), 1), (ref("nft", 1), 2)]
        assert edges.direct_dependencies(ref("nft", 1)) == []


class TestSaleService:
    """Settlement claims."""

    def test_claim_settlement_only_once(self, db_session):
        event = sale("nft", 1, 10_000)
        SaleService(db_session).record(event)
        db_session.commit()

        sales = SaleService(db_session)
        assert sales.claim_settlement(event.event_id, 1000, incomplete=False)
        assert not sales.claim_settlement(event.event_id, 1000, incomplete=False)
        db_session.commit()

        assert sales.unsettled_ids() == []

    def test_list_filters_by_beneficiary(self, db_session):
        SaleService(db_session).record(sale("nft", 1, 10_000))
        db_session.commit()

        assert len(SaleService(db_session).list()) == 1
        assert SaleService(db_session).list(beneficiary="0xnobody") == []


class TestPublicationService:
    """Publication recording and placeholders."""

    def test_placeholder_upgraded_in_place(self, db_session):
        publications = PublicationService(db_session)
        publications.ensure_placeholder(ref("nft", 1), "0xseller")
        db_session.commit()

        publications.record(published("nft", 1, "0xalice"))
        db_session.commit()

        publication = publications.get(ref("nft", 1))
        assert publication.author == "0xalice"
        assert not publication.is_placeholder

    def test_publication_is_immutable(self, db_session):
        publications = PublicationService(db_session)
        publications.record(published("nft", 1, "0xalice"))
        db_session.commit()

        publications.record(published("nft", 1, "0xmallory", tx_hash="0xother"))
        db_session.commit()

        assert publications.get(ref("nft", 1)).author == "0xalice"


class TestBalanceService:
    """Pending balances."""

    def test_credit_accumulates_and_drain_zeroes(self, db_session):
        balances = BalanceService(db_session)

        assert balances.credit("0xalice", 10) == 10
        assert balances.credit("0xalice", 5) == 15
        db_session.commit()

        assert balances.drain("0xalice") == 15
        db_session.commit()
        assert balances.get("0xalice") == 0
        assert balances.drain("0xalice") == 0


class TestProcessedEventService:
    """Deduplication markers."""

    def test_mark_processed(self, db_session):
        markers = ProcessedEventService(db_session)
        assert not markers.is_processed("0xabc-0")

        markers.mark_processed("0xabc-0", "SaleMade")
        db_session.commit()

        assert markers.is_processed("0xabc-0")
