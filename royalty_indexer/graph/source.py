"""
Artifact source clients.

The artifact source is the external collaborator that knows each artifact's
immediate dependencies and author. Calls are bounded by a timeout and retried
with exponential backoff before giving up with ``UpstreamUnavailable``.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, TypeVar

import httpx
from pydantic import BaseModel, Field, ValidationError

from ..config import Settings, get_settings
from ..errors import UpstreamUnavailable
from ..events import ArtifactRef

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ArtifactSource(Protocol):
    """Contract for looking up artifact dependencies and authors."""

    async def get_dependencies(self, artifact: ArtifactRef) -> List[ArtifactRef]:
        ...

    async def get_author(self, artifact: ArtifactRef) -> Optional[str]:
        ...


async def call_with_retry(
    operation: str,
    artifact: ArtifactRef,
    call: Callable[[], Awaitable[T]],
    timeout: float,
    retries: int,
    backoff_base: float = 0.5,
) -> T:
    """Run ``call`` with a per-attempt timeout and exponential backoff."""
    last_error: Optional[BaseException] = None

    for attempt in range(retries + 1):
        try:
            return await asyncio.wait_for(call(), timeout=timeout)
        except asyncio.TimeoutError as e:
            last_error = e
            logger.warning(
                f"{operation} for {artifact} timed out after {timeout}s "
                f"(attempt {attempt + 1}/{retries + 1})"
            )
        except (httpx.HTTPError, ValidationError, ValueError, KeyError) as e:
            last_error = e
            logger.warning(
                f"{operation} for {artifact} failed: {e} "
                f"(attempt {attempt + 1}/{retries + 1})"
            )

        if attempt < retries:
            await asyncio.sleep(backoff_base * 2**attempt)

    raise UpstreamUnavailable(operation, artifact.key, repr(last_error))


class DependencyListing(BaseModel):
    """Body of a dependencies response."""

    dependencies: List[ArtifactRef] = Field(default_factory=list)


class AuthorRecord(BaseModel):
    """Body of an artifact response."""

    author: Optional[str] = None


class HttpArtifactSource:
    """
    Artifact source backed by an HTTP registry.

    Endpoints:
        GET {base}/artifacts/{origin}/{local_id}/dependencies
            -> {"dependencies": [{"origin": ..., "local_id": ...}, ...]}
        GET {base}/artifacts/{origin}/{local_id}
            -> {"author": ...}
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        retries: int = 2,
        client: Optional[httpx.AsyncClient] = None,
        backoff_base: float = 0.5,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = retries
        self.backoff_base = backoff_base
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "HttpArtifactSource":
        settings = settings or get_settings()
        if not settings.artifact_source_url:
            raise ValueError("ARTIFACT_SOURCE_URL is not configured")
        return cls(
            settings.artifact_source_url,
            timeout=settings.artifact_source_timeout_seconds,
            retries=settings.artifact_source_retries,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def _get_json(self, path: str) -> Any:
        response = await self.client.get(f"{self.base_url}{path}")
        response.raise_for_status()
        return response.json()

    async def get_dependencies(self, artifact: ArtifactRef) -> List[ArtifactRef]:
        """Immediate dependencies of an artifact."""

        async def fetch() -> List[ArtifactRef]:
            data = await self._get_json(
                f"/artifacts/{artifact.origin}/{artifact.local_id}/dependencies"
            )
            return DependencyListing.model_validate(data).dependencies

        return await call_with_retry(
            "get_dependencies",
            artifact,
            fetch,
            self.timeout,
            self.retries,
            backoff_base=self.backoff_base,
        )

    async def get_author(self, artifact: ArtifactRef) -> Optional[str]:
        """Author of an artifact, or None when the registry does not know it."""

        async def fetch() -> Optional[str]:
            try:
                data = await self._get_json(
                    f"/artifacts/{artifact.origin}/{artifact.local_id}"
                )
            except httpx.HTTPStatusError as e:
                if e.response.status_code == 404:
                    return None
                raise
            return AuthorRecord.model_validate(data).author

        return await call_with_retry(
            "get_author",
            artifact,
            fetch,
            self.timeout,
            self.retries,
            backoff_base=self.backoff_base,
        )


class InMemoryArtifactSource:
    """Artifact source backed by dictionaries; used for replays and tests."""

    def __init__(
        self,
        dependencies: Optional[Dict[ArtifactRef, Iterable[ArtifactRef]]] = None,
        authors: Optional[Dict[ArtifactRef, str]] = None,
    ):
        self.dependencies: Dict[ArtifactRef, List[ArtifactRef]] = {
            artifact: list(deps) for artifact, deps in (dependencies or {}).items()
        }
        self.authors: Dict[ArtifactRef, str] = dict(authors or {})
        self.unavailable: set = set()
        self.calls: List[ArtifactRef] = []

    def add(
        self,
        artifact: ArtifactRef,
        dependencies: Iterable[ArtifactRef] = (),
        author: Optional[str] = None,
    ) -> None:
        self.dependencies[artifact] = list(dependencies)
        if author is not None:
            self.authors[artifact] = author

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InMemoryArtifactSource":
        """Load from ``{"artifacts": [{"origin", "local_id", "author", "dependencies"}]}``."""
        source = cls()
        for item in data.get("artifacts", []):
            artifact = ArtifactRef(origin=item["origin"], local_id=int(item["local_id"]))
            source.add(
                artifact,
                [
                    ArtifactRef(origin=dep["origin"], local_id=int(dep["local_id"]))
                    for dep in item.get("dependencies", [])
                ],
                item.get("author"),
            )
        return source

    async def get_dependencies(self, artifact: ArtifactRef) -> List[ArtifactRef]:
        self.calls.append(artifact)
        if artifact in self.unavailable:
            raise UpstreamUnavailable("get_dependencies", artifact.key, "marked unavailable")
        return list(self.dependencies.get(artifact, []))

    async def get_author(self, artifact: ArtifactRef) -> Optional[str]:
        if artifact in self.unavailable:
            raise UpstreamUnavailable("get_author", artifact.key, "marked unavailable")
        return self.authors.get(artifact)
