"""Thin wrapper around the Qdrant client: index naming, dimension context and collection access."""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any

from qdrant_client import AsyncQdrantClient
from qdrant_client import models as q
from qdrant_client.http.exceptions import UnexpectedResponse

from cr_search.config import Settings
from cr_search.core.constants import FULLTEXT_SPARSE_VEC
from cr_search.core.exceptions import ApiException
from cr_search.core.logging import get_logger
from cr_search.core.models import DimensionValues, target_values
from cr_search.services.dimensions_service import hash_dimensions

logger = get_logger(__name__)


@contextmanager
def api_errors(operation: str) -> Iterator[None]:
    """Translate transport errors of the Qdrant client into ``ApiException``."""
    try:
        yield
    except UnexpectedResponse as exc:
        content = exc.content.decode("utf-8", errors="replace") if exc.content else None
        raise ApiException(
            f"{operation} failed with status {exc.status_code}",
            status_code=exc.status_code,
            response=content,
        ) from exc


class Index:
    """Handle on one physical index (a Qdrant collection); it may not exist yet."""

    def __init__(self, name: str, client: SearchClient):
        self.name = name
        self._client = client

    def __repr__(self) -> str:
        return f"Index({self.name!r})"

    async def exists(self) -> bool:
        return await self._client.collection_exists(self.name)

    async def create(self) -> None:
        await self._client.create_collection(self.name)

    async def delete(self) -> bool:
        return await self._client.delete_collection(self.name)

    async def count(self) -> int:
        return await self._client.count(self.name)

    async def create_payload_index(self, field_name: str, schema: q.PayloadSchemaType) -> None:
        await self._client.create_payload_index(self.name, field_name, schema)


class SearchClient:
    """Owns the Qdrant connection and the dimension context indices are named after."""

    def __init__(
        self,
        settings: Settings,
        aclient: AsyncQdrantClient | None = None,
    ):
        self.settings = settings
        if aclient is not None:
            self.aclient = aclient
        elif settings.qdrant_local_mode:
            self.aclient = AsyncQdrantClient(location=":memory:")
        else:
            self.aclient = AsyncQdrantClient(
                url=settings.qdrant_url,
                api_key=settings.qdrant_api_key,
                prefer_grpc=settings.qdrant_prefer_grpc,
                timeout=settings.qdrant_timeout,
            )
        self._dimensions: DimensionValues = {}

        logger.info("SearchClient initialized for index prefix '%s'", self.index_name_prefix)

    async def aclose(self) -> None:
        """Close the client."""
        await self.aclient.close()

    @property
    def index_name_prefix(self) -> str:
        return self.settings.index_name

    @property
    def dimensions(self) -> DimensionValues:
        return dict(self._dimensions)

    def set_dimensions(self, dimensions: Mapping[str, Any] | None) -> None:
        self._dimensions = target_values(dimensions)

    @contextmanager
    def with_dimensions(self, dimensions: Mapping[str, Any] | None) -> Iterator[None]:
        """Activate a dimension context for the duration of the block."""
        previous = self._dimensions
        self.set_dimensions(dimensions)
        try:
            yield
        finally:
            self._dimensions = previous

    def get_index_name(self) -> str:
        """Name of the index for the active dimensions, which is also its alias name."""
        return f"{self.index_name_prefix}-{hash_dimensions(self._dimensions)}"

    def find_index(self, name: str) -> Index:
        return Index(name, self)

    async def create_collection(self, name: str) -> None:
        """Create a payload-only collection with the fulltext sparse vector slot."""
        with api_errors(f"Creating index '{name}'"):
            await self.aclient.create_collection(
                collection_name=name,
                vectors_config={},
                sparse_vectors_config={
                    FULLTEXT_SPARSE_VEC: q.SparseVectorParams(
                        index=q.SparseIndexParams(on_disk=True),
                        modifier=q.Modifier.IDF,
                    )
                },
                on_disk_payload=True,
            )
        logger.info("Created index '%s'", name)

    async def delete_collection(self, name: str) -> bool:
        with api_errors(f"Deleting index '{name}'"):
            deleted = await self.aclient.delete_collection(collection_name=name)
        logger.info("Deleted index '%s'", name)
        return bool(deleted)

    async def collection_exists(self, name: str) -> bool:
        """Return True if a collection with this exact name exists."""
        with api_errors(f"Checking index '{name}'"):
            return await self.aclient.collection_exists(name)

    async def list_collections(self) -> list[str]:
        with api_errors("Listing indices"):
            response = await self.aclient.get_collections()
        return [collection.name for collection in response.collections]

    async def list_aliases(self) -> list[tuple[str, str]]:
        """Return ``(alias, collection)`` pairs of every native alias."""
        with api_errors("Listing aliases"):
            response = await self.aclient.get_aliases()
        return [(alias.alias_name, alias.collection_name) for alias in response.aliases]

    async def update_aliases(self, operations: Sequence[q.AliasOperations]) -> None:
        """Apply alias changes in one request; the engine applies them atomically."""
        if not operations:
            return
        with api_errors("Updating aliases"):
            await self.aclient.update_collection_aliases(
                change_aliases_operations=list(operations),
            )

    async def retrieve(
        self,
        name: str,
        point_ids: Sequence[str],
        *,
        with_payload: bool = True,
    ) -> list[q.Record]:
        """Fetch records by their IDs."""
        if not point_ids:
            return []

        with api_errors(f"Retrieving from '{name}'"):
            return await self.aclient.retrieve(
                collection_name=name,
                ids=list(point_ids),
                with_payload=with_payload,
                with_vectors=False,
            )

    async def batch_update(
        self,
        name: str,
        operations: Sequence[q.UpdateOperation],
        *,
        wait: bool = True,
    ) -> list[q.UpdateResult]:
        """Submit a batch of point operations, applied in order."""
        if not operations:
            return []

        with api_errors(f"Bulk request on '{name}'"):
            results = await self.aclient.batch_update_points(
                collection_name=name,
                update_operations=list(operations),
                wait=wait,
            )
        logger.debug("Applied %d operations on '%s'", len(operations), name)
        return results

    async def delete(
        self,
        name: str,
        *,
        ids: Sequence[str] | None = None,
        filter_: q.Filter | None = None,
        wait: bool = True,
    ) -> None:
        """Delete points by IDs or filter."""
        points_selector: Any
        if ids is not None:
            if not ids:
                return
            points_selector = q.PointIdsList(points=list(ids))
        elif filter_ is not None:
            points_selector = q.FilterSelector(filter=filter_)
        else:
            raise ValueError("Either ids or filter_ must be provided to delete points")

        with api_errors(f"Deleting points from '{name}'"):
            await self.aclient.delete(
                collection_name=name,
                points_selector=points_selector,
                wait=wait,
            )

    async def retrieve_by_filter(
        self,
        name: str,
        filter_: q.Filter | None = None,
        *,
        limit: int = 100,
    ) -> list[q.Record]:
        """Scroll through records matching a filter."""
        with api_errors(f"Scrolling '{name}'"):
            records, _ = await self.aclient.scroll(
                collection_name=name,
                scroll_filter=filter_,
                limit=limit,
                with_payload=True,
                with_vectors=False,
            )
        return records

    async def count(self, name: str, filter_: q.Filter | None = None) -> int:
        with api_errors(f"Counting '{name}'"):
            response = await self.aclient.count(
                collection_name=name,
                count_filter=filter_,
                exact=True,
            )
        return response.count

    async def create_payload_index(
        self,
        name: str,
        field_name: str,
        schema: q.PayloadSchemaType,
    ) -> None:
        try:
            await self.aclient.create_payload_index(
                collection_name=name,
                field_name=field_name,
                field_schema=schema,
            )
        except UnexpectedResponse as exc:
            # Only ignore already-exists errors; otherwise warn
            if "exists" in str(exc).lower():
                logger.debug("Payload index '%s' already exists on '%s'", field_name, name)
            else:
                logger.warning("Failed to create payload index '%s' on '%s': %s", field_name, name, exc)


__all__ = ["Index", "SearchClient", "api_errors"]
