"""Tests for artifact source clients."""

import asyncio

import httpx
import pytest

from royalty_indexer.errors import UpstreamUnavailable
from royalty_indexer.graph.source import (
    HttpArtifactSource,
    InMemoryArtifactSource,
    call_with_retry,
)

from helpers import ref


def http_source(handler, retries=1):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpArtifactSource(
        "http://registry.test/", timeout=1.0, retries=retries, client=client, backoff_base=0
    )


class TestCallWithRetry:
    """Test cases for call_with_retry."""

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 2:
                raise httpx.ConnectError("refused")
            return "ok"

        result = await call_with_retry("lookup", ref("nft", 1), flaky, 1.0, 2, backoff_base=0)

        assert result == "ok"
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_timeout_exhausts_retries(self):
        attempts = []

        async def slow():
            attempts.append(1)
            await asyncio.sleep(1)

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await call_with_retry("lookup", ref("nft", 1), slow, 0.01, 1, backoff_base=0)

        assert len(attempts) == 2
        assert exc_info.value.artifact == "nft-1"
        assert exc_info.value.operation == "lookup"


class TestHttpArtifactSource:
    """Test cases for HttpArtifactSource."""

    @pytest.mark.asyncio
    async def test_get_dependencies(self):
        def handler(request):
            assert request.url.path == "/artifacts/nft/1/dependencies"
            return httpx.Response(
                200,
                json={"dependencies": [{"origin": "nft", "local_id": 2}, {"origin": "lib", "local_id": "7"}]},
            )

        source = http_source(handler)
        try:
            assert await source.get_dependencies(ref("nft", 1)) == [ref("nft", 2), ref("lib", 7)]
        finally:
            await source.close()

    @pytest.mark.asyncio
    async def test_get_author(self):
        def handler(request):
            if request.url.path == "/artifacts/nft/1":
                return httpx.Response(200, json={"author": "0xalice"})
            return httpx.Response(404)

        source = http_source(handler)
        try:
            assert await source.get_author(ref("nft", 1)) == "0xalice"
            assert await source.get_author(ref("nft", 2)) is None
        finally:
            await source.close()

    @pytest.mark.asyncio
    async def test_server_error_raises_upstream_unavailable(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        source = http_source(handler, retries=2)
        try:
            with pytest.raises(UpstreamUnavailable):
                await source.get_dependencies(ref("nft", 1))
        finally:
            await source.close()
        assert len(calls) == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [{"dependencies": None}, [], {"dependencies": [7]}, {"dependencies": "nft-2"}],
    )
    async def test_wrong_shape_is_retried_then_unavailable(self, payload):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=payload)

        source = http_source(handler, retries=1)
        try:
            with pytest.raises(UpstreamUnavailable):
                await source.get_dependencies(ref("nft", 1))
        finally:
            await source.close()
        assert len(calls) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [[], {"author": 5}, "0xalice"])
    async def test_author_wrong_shape_raises_upstream_unavailable(self, payload):
        source = http_source(lambda request: httpx.Response(200, json=payload))
        try:
            with pytest.raises(UpstreamUnavailable):
                await source.get_author(ref("nft", 1))
        finally:
            await source.close()

    @pytest.mark.asyncio
    async def test_malformed_payload_raises_upstream_unavailable(self):
        source = http_source(lambda request: httpx.Response(200, json={"dependencies": [{"id": 1}]}))
        try:
            with pytest.raises(UpstreamUnavailable):
                await source.get_dependencies(ref("nft", 1))
        finally:
            await source.close()


class TestInMemoryArtifactSource:
    """Test cases for InMemoryArtifactSource."""

    @pytest.mark.asyncio
    async def test_from_dict(self):
        source = InMemoryArtifactSource.from_dict(
            {
                "artifacts": [
                    {
                        "origin": "nft",
                        "local_id": 1,
                        "author": "0xalice",
                        "dependencies": [{"origin": "nft", "local_id": 2}],
                    }
                ]
            }
        )

        assert await source.get_dependencies(ref("nft", 1)) == [ref("nft", 2)]
        assert await source.get_author(ref("nft", 1)) == "0xalice"
        assert await source.get_dependencies(ref("nft", 2)) == []
        assert await source.get_author(ref("nft", 2)) is None

    @pytest.mark.asyncio
    async def test_unavailable(self):
        source = InMemoryArtifactSource()
        source.unavailable.add(ref("nft", 1))

        with pytest.raises(UpstreamUnavailable):
            await source.get_dependencies(ref("nft", 1))
        with pytest.raises(UpstreamUnavailable):
            await source.get_author(ref("nft", 1))
