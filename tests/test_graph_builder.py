"""Tests for dependency closure resolution."""

import httpx
import pytest

from royalty_indexer.db.services import DependencyEdgeService, PublicationService
from royalty_indexer.graph.builder import DependencyGraphBuilder
from royalty_indexer.graph.source import HttpArtifactSource

from helpers import published, ref

A, B, C, D, E = (ref("nft", i) for i in range(1, 6))


def publish(session_factory, *artifacts):
    with session_factory() as db:
        for artifact in artifacts:
            PublicationService(db).record(
                published(artifact.origin, artifact.local_id, f"0xauthor{artifact.local_id}")
            )
        db.commit()


@pytest.fixture
def builder(session_factory, source):
    return DependencyGraphBuilder(session_factory, source)


class TestResolveDependencies:
    """Test cases for DependencyGraphBuilder.resolve_dependencies."""

    @pytest.mark.asyncio
    async def test_no_dependencies(self, builder, session_factory):
        """An artifact without dependencies has an empty closure and no edges."""
        result = await builder.resolve_dependencies(A)

        assert result.dependencies == []
        assert result.complete
        with session_factory() as db:
            assert DependencyEdgeService(db).edges_from(A) == []

    @pytest.mark.asyncio
    async def test_chain(self, builder, source, session_factory):
        """A -> B -> C yields B at depth 1 and C at depth 2."""
        source.add(A, [B])
        source.add(B, [C])

        result = await builder.resolve_dependencies(A)

        assert result.dependencies == [(B, 1), (C, 2)]
        with session_factory() as db:
            assert DependencyEdgeService(db).edges_from(B) == [(C, 1)]

    @pytest.mark.asyncio
    async def test_minimum_depth_over_paths(self, builder, source):
        """The shortest path wins even when a longer one is explored first."""
        source.add(A, [C, B])
        source.add(C, [E])
        source.add(E, [D])
        source.add(B, [D])

        result = await builder.resolve_dependencies(A)

        assert result.depth_of(D) == 2
        assert result.depth_of(E) == 2
        assert result.depth_of(B) == 1
        assert result.depth_of(C) == 1

    @pytest.mark.asyncio
    async def test_cycle_terminates(self, builder, source):
        """A cycle back to the root does not loop or create a self-edge."""
        source.add(A, [B])
        source.add(B, [C])
        source.add(C, [A])

        result = await builder.resolve_dependencies(A)

        assert result.dependencies == [(B, 1), (C, 2)]
        assert result.depth_of(A) is None

    @pytest.mark.asyncio
    async def test_self_reference_ignored(self, builder, source):
        source.add(A, [A, B])

        result = await builder.resolve_dependencies(A)

        assert result.dependencies == [(B, 1)]

    @pytest.mark.asyncio
    async def test_upstream_failure_is_contained(self, builder, source):
        """A failing branch is skipped while its siblings still resolve."""
        source.add(A, [B, C])
        source.add(C, [D])
        source.unavailable.add(B)

        result = await builder.resolve_dependencies(A)

        assert result.dependencies == [(B, 1), (C, 1), (D, 2)]
        assert result.unavailable == [B]
        assert not result.complete

    @pytest.mark.asyncio
    async def test_closure_size_bound(self, session_factory, source):
        """Traversal stops expanding once the visit budget is spent."""
        source.add(A, [B])
        source.add(B, [C])
        source.add(C, [D])
        builder = DependencyGraphBuilder(session_factory, source, max_closure_size=2)

        result = await builder.resolve_dependencies(A)

        assert result.truncated
        assert result.dependencies == [(B, 1), (C, 2)]
        assert D not in source.calls

    @pytest.mark.asyncio
    async def test_indexed_dependencies_are_not_refetched(
        self, builder, source, session_factory
    ):
        """Published artifacts have their immediate dependencies fetched once."""
        publish(session_factory, A, B)
        source.add(A, [B])
        source.add(B, [C])

        first = await builder.resolve_dependencies(A)
        calls_after_first = list(source.calls)
        second = await builder.resolve_dependencies(A)

        assert first.dependencies == second.dependencies == [(B, 1), (C, 2)]
        new_calls = source.calls[len(calls_after_first):]
        assert A not in new_calls
        assert B not in new_calls
        # C has no publication row, so nothing marks it indexed
        assert C in new_calls

        with session_factory() as db:
            assert PublicationService(db).get(A).dependencies_indexed_at is not None

    @pytest.mark.asyncio
    async def test_resolution_is_idempotent(self, builder, source, session_factory):
        source.add(A, [B, C])
        source.add(B, [C])

        await builder.resolve_dependencies(A)
        await builder.resolve_dependencies(A)

        with session_factory() as db:
            assert DependencyEdgeService(db).edges_from(A) == [(B, 1), (C, 1)]

    @pytest.mark.asyncio
    async def test_malformed_registry_reply_is_contained(self, session_factory):
        """A registry reply with the wrong shape only loses that branch."""
        replies = {
            "/artifacts/nft/1/dependencies": {
                "dependencies": [{"origin": "nft", "local_id": 2}, {"origin": "nft", "local_id": 3}]
            },
            "/artifacts/nft/2/dependencies": {"dependencies": None},
            "/artifacts/nft/3/dependencies": [],
        }
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json=replies[request.url.path])
            )
        )
        source = HttpArtifactSource(
            "http://registry.test", timeout=1.0, retries=0, client=client, backoff_base=0
        )
        try:
            result = await DependencyGraphBuilder(session_factory, source).resolve_dependencies(A)
        finally:
            await source.close()

        assert result.dependencies == [(B, 1), (C, 1)]
        assert result.unavailable == [B, C]
        assert not result.complete
