"""Event builders shared by the tests."""

from royalty_indexer.events import ArtifactPublished, ArtifactRef, SaleMade

ETH = 10**18


def ref(origin: str, local_id: int) -> ArtifactRef:
    return ArtifactRef(origin=origin, local_id=local_id)


def published(origin: str, local_id: int, author: str, **overrides) -> ArtifactPublished:
    fields = {
        "origin": origin,
        "local_id": local_id,
        "author": author,
        "publish_time": 1_700_000_000 + local_id,
        "block_number": 100 + local_id,
        "tx_hash": f"0xpub{origin}{local_id}",
        "log_index": 0,
    }
    fields.update(overrides)
    return ArtifactPublished(**fields)


def sale(origin: str, local_id: int, price: int, **overrides) -> SaleMade:
    fields = {
        "origin": origin,
        "local_id": local_id,
        "price": price,
        "timestamp": 1_700_100_000,
        "buyer": "0xbuyer",
        "seller": "0xseller",
        "block_number": 500,
        "tx_hash": f"0xsale{origin}{local_id}",
        "log_index": 1,
    }
    fields.update(overrides)
    return SaleMade(**fields)
