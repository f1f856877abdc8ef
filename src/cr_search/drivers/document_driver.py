"""Document driver: delete operations and node type change cleanup."""

from __future__ import annotations

from cr_search.core.constants import ACTION_DELETE, K_TYPE_NAME
from cr_search.core.logging import get_logger
from cr_search.core.models import Node, NodeType
from cr_search.drivers.bulk import encode_operation
from cr_search.indexer.identifiers import point_id
from cr_search.services.search_client import Index, SearchClient

logger = get_logger(__name__)


class QdrantDocumentDriver:
    def __init__(self, search_client: SearchClient):
        self._client = search_client

    def delete(self, node: Node, identifier: str) -> list[str | None]:
        return [encode_operation({ACTION_DELETE: {"_id": identifier}})]

    async def delete_duplicate_document_not_matching_type(
        self,
        index: Index,
        identifier: str,
        node_type: NodeType,
    ) -> int:
        """Remove the document if it was stored for a different node type.

        Runs immediately rather than through the bulk buffer, so the following
        write for the same identifier starts from a clean slate.
        """
        if not await index.exists():
            return 0

        records = await self._client.retrieve(index.name, [point_id(identifier)])
        stale = [
            str(record.id)
            for record in records
            if (record.payload or {}).get(K_TYPE_NAME) not in (None, node_type.name)
        ]
        if not stale:
            return 0

        await self._client.delete(index.name, ids=stale)
        logger.debug(
            "Removed document %s from '%s', it was stored for another node type than %s",
            identifier,
            index.name,
            node_type.name,
        )
        return len(stale)
