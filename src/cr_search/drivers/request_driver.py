"""Bulk request driver executing newline-delimited operations against Qdrant."""

from __future__ import annotations

from qdrant_client import models as q

from cr_search.adapters import qdrant_mapper
from cr_search.adapters.qdrant_mapper import BulkItemDecodeError, BulkOperation, PayloadState
from cr_search.core.constants import ACTION_DELETE
from cr_search.core.logging import get_logger
from cr_search.drivers.bulk import (
    STATUS_BAD_REQUEST,
    STATUS_FAILED,
    STATUS_OK,
    BulkItemResult,
    BulkResponse,
)
from cr_search.indexer.identifiers import point_id
from cr_search.services.search_client import Index, SearchClient

logger = get_logger(__name__)

_ACCEPTED = (q.UpdateStatus.COMPLETED, q.UpdateStatus.ACKNOWLEDGED)


class QdrantRequestDriver:
    """Turns one bulk payload into a single ordered ``batch_update_points`` call.

    Fulltext operations are read-modify-write: the documents a payload touches are
    fetched once up front and every operation is applied to that snapshot in line
    order before the batch is sent.
    """

    def __init__(self, search_client: SearchClient):
        self._client = search_client

    async def bulk(self, index: Index, payload: str) -> BulkResponse:
        items: dict[int, BulkItemResult] = {}
        decoded: list[tuple[int, BulkOperation]] = []

        for number, line in enumerate(payload.split("\n")):
            if not line.strip():
                continue
            try:
                decoded.append((number, qdrant_mapper.decode_bulk_line(line)))
            except BulkItemDecodeError as exc:
                items[number] = BulkItemResult(number, None, None, STATUS_BAD_REQUEST, str(exc))

        state = await self._snapshot(index, decoded)

        operations: list[q.UpdateOperation] = []
        submitted: list[tuple[int, BulkOperation]] = []
        for number, operation in decoded:
            update = qdrant_mapper.to_update_operation(operation, state)
            if update is None:
                items[number] = BulkItemResult(number, operation.action, operation.document_id)
                continue
            operations.append(update)
            submitted.append((number, operation))

        results = await self._client.batch_update(index.name, operations)
        for (number, operation), result in zip(submitted, results, strict=True):
            if result.status in _ACCEPTED:
                items[number] = BulkItemResult(number, operation.action, operation.document_id, STATUS_OK)
            else:
                items[number] = BulkItemResult(
                    number,
                    operation.action,
                    operation.document_id,
                    STATUS_FAILED,
                    f"operation {result.operation_id} ended with status {result.status}",
                )

        logger.debug("Bulk request on '%s': %d lines, %d operations", index.name, len(items), len(operations))
        return BulkResponse(items=[items[number] for number in sorted(items)])

    async def _snapshot(self, index: Index, decoded: list[tuple[int, BulkOperation]]) -> PayloadState:
        document_ids = list(dict.fromkeys(operation.document_id for _, operation in decoded))
        state: PayloadState = dict.fromkeys(document_ids)
        if not any(operation.action != ACTION_DELETE for _, operation in decoded):
            return state

        by_point = {point_id(document_id): document_id for document_id in document_ids}
        records = await self._client.retrieve(index.name, list(by_point))
        for record in records:
            document_id = by_point.get(str(record.id))
            if document_id is not None:
                state[document_id] = dict(record.payload or {})
        return state
