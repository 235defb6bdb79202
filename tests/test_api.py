"""API-level tests for the read-only query endpoints."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from royalty_indexer.api import app
from royalty_indexer.db.base import get_db
from royalty_indexer.runtime import build_runtime

from helpers import published, ref, sale


@pytest.fixture
def client(session_factory):
    """Test client reading from the per-test in-memory database."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def indexed(session_factory, source, settings):
    """Two artifacts (nft-1 depends on nft-2) and two sales of nft-1."""
    source.add(ref("nft", 1), [ref("nft", 2)])
    runtime = build_runtime(session_factory=session_factory, source=source, settings=settings)
    older = sale("nft", 1, 10_000, tx_hash="0xolder", timestamp=1_700_000_500)
    newer = sale("nft", 1, 20_000, tx_hash="0xnewer", timestamp=1_700_000_900)
    asyncio.run(
        runtime.processor.replay(
            [
                published("nft", 2, "0xbob"),
                published("nft", 1, "0xalice"),
                older,
                newer,
            ]
        )
    )
    return {"older": older.event_id, "newer": newer.event_id}


class TestSystemEndpoints:
    """Health and version endpoints."""

    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_version(self, client):
        response = client.get("/version")
        assert response.status_code == 200
        assert "version" in response.json()

    def test_unknown_path(self, client):
        assert client.get("/nope").status_code == 404


class TestRoyaltyEndpoints:
    """Royalty, sale and artifact projections."""

    def test_royalties_for_beneficiary(self, client, indexed):
        response = client.get("/royalties/0xbob")

        assert response.status_code == 200
        data = response.json()
        assert data["beneficiary"] == "0xbob"
        assert data["pending"] == str(650 + 1300)
        assert [s["id"] for s in data["sales"]] == [indexed["newer"], indexed["older"]]

    def test_royalties_for_unknown_beneficiary(self, client, indexed):
        data = client.get("/royalties/0xnobody").json()
        assert data["pending"] == "0"
        assert data["sales"] == []

    def test_sales_newest_first(self, client, indexed):
        response = client.get("/sales")

        assert response.status_code == 200
        sales = response.json()
        assert [s["id"] for s in sales] == [indexed["newer"], indexed["older"]]
        assert all(s["settled"] for s in sales)
        assert sales[0]["royalty_amount"] == str(2000 + 1300)

    def test_publications(self, client, indexed):
        publications = client.get("/publications").json()
        assert {p["id"] for p in publications} == {"nft-1", "nft-2"}
        assert publications[0]["publish_time"] >= publications[1]["publish_time"]

    def test_parameters_default(self, client):
        data = client.get("/parameters").json()
        assert data["source"] == "default"
        assert data["initial_rate"] == "10"
        assert data["decay_factor"] == 65

    def test_dependencies(self, client, indexed):
        response = client.get("/dependencies/nft/1")

        assert response.status_code == 200
        assert response.json() == {
            "origin": "nft",
            "local_id": 1,
            "dependencies": [
                {"origin": "nft", "local_id": 2, "depth": 1, "author": "0xbob"}
            ],
        }

    def test_graph(self, client, indexed):
        data = client.get("/graph/nft/2").json()

        assert data["artifact"] == {"origin": "nft", "local_id": 2, "author": "0xbob"}
        assert data["dependencies"] == []
        assert data["dependents"] == [{"origin": "nft", "local_id": 1, "depth": 1}]

    def test_royalty_tree(self, client, indexed):
        response = client.get(f"/royaltytree/{indexed['older']}")

        assert response.status_code == 200
        data = response.json()
        assert data["sale_id"] == indexed["older"]
        assert data["sale"]["price"] == "10000"
        assert [(a["beneficiary"], a["depth"], a["amount"]) for a in data["royalty_distribution"]] == [
            ("0xalice", 0, "1000"),
            ("0xbob", 1, "650"),
        ]

    def test_royalty_tree_unknown_sale(self, client):
        response = client.get("/royaltytree/0xmissing-0")
        assert response.status_code == 404
        assert response.json()["detail"] == "Sale not found"


class TestErrorHandling:
    """Unhandled errors surface as a generic 500."""

    def test_internal_error_hides_detail(self, session_factory):
        def broken_db():
            raise RuntimeError("connection string with secrets")
            yield  # pragma: no cover

        app.dependency_overrides[get_db] = broken_db
        try:
            client = TestClient(app, raise_server_exceptions=False)
            response = client.get("/sales")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 500
        assert response.json() == {"detail": "Internal Server Error"}
