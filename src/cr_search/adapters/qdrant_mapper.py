"""Helpers to translate bulk protocol lines into Qdrant transport objects."""

from __future__ import annotations

import json
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from typing import Any

from qdrant_client import models as q

from cr_search.core.constants import (
    ACTION_DELETE,
    ACTION_FULLTEXT,
    ACTION_INDEX,
    FULLTEXT_BUCKETS,
    K_DOCUMENT_IDENTIFIER,
    K_FULLTEXT,
    K_FULLTEXT_PARTS,
)
from cr_search.indexer.identifiers import point_id

# Document identifier -> current payload, None when the document does not exist.
PayloadState = MutableMapping[str, dict[str, Any] | None]


class BulkItemDecodeError(ValueError):
    """A bulk line is not a valid operation."""


@dataclass(frozen=True)
class BulkOperation:
    """One decoded line of a bulk request."""

    action: str
    document_id: str
    source: dict[str, Any] | None = None
    node: str | None = None
    fulltext: dict[str, str] | None = None


def decode_bulk_line(line: str) -> BulkOperation:
    """Parse and validate one bulk line."""
    try:
        decoded = json.loads(line)
    except json.JSONDecodeError as exc:
        raise BulkItemDecodeError(f"invalid JSON: {exc.msg}") from exc

    if not isinstance(decoded, dict) or len(decoded) != 1:
        raise BulkItemDecodeError("a bulk line must hold exactly one action")

    action, body = next(iter(decoded.items()))
    if action not in (ACTION_INDEX, ACTION_DELETE, ACTION_FULLTEXT):
        raise BulkItemDecodeError(f"unknown action '{action}'")
    if not isinstance(body, dict):
        raise BulkItemDecodeError(f"body of '{action}' must be an object")

    document_id = body.get("_id")
    if not isinstance(document_id, str) or not document_id:
        raise BulkItemDecodeError(f"'{action}' requires a non-empty '_id'")

    if action == ACTION_INDEX:
        source = body.get("_source")
        if not isinstance(source, dict):
            raise BulkItemDecodeError("'index' requires a '_source' object")
        return BulkOperation(action, document_id, source=source)

    if action == ACTION_FULLTEXT:
        node = body.get("node")
        fulltext = body.get("fulltext")
        if not isinstance(node, str) or not node:
            raise BulkItemDecodeError("'fulltext' requires a 'node' identifier")
        if not isinstance(fulltext, dict) or not all(
            isinstance(bucket, str) and isinstance(text, str) for bucket, text in fulltext.items()
        ):
            raise BulkItemDecodeError("'fulltext' requires a bucket to text object")
        return BulkOperation(action, document_id, node=node, fulltext=fulltext)

    return BulkOperation(action, document_id)


def aggregate_fulltext(parts: Mapping[str, Mapping[str, str]]) -> dict[str, str]:
    """Join the fulltext parts of all nodes into one text per bucket."""
    aggregated: dict[str, list[str]] = {}
    for part in parts.values():
        for bucket, text in part.items():
            if text:
                aggregated.setdefault(bucket, []).append(text)
    ordered = sorted(
        aggregated,
        key=lambda bucket: FULLTEXT_BUCKETS.index(bucket) if bucket in FULLTEXT_BUCKETS else len(FULLTEXT_BUCKETS),
    )
    return {bucket: " ".join(aggregated[bucket]) for bucket in ordered}


def merge_fulltext_part(
    payload: Mapping[str, Any],
    node_identifier: str,
    fulltext: Mapping[str, str],
) -> dict[str, Any]:
    """Put (or, for an empty mapping, drop) one node's fulltext part on a document payload."""
    merged = dict(payload)
    parts = dict(merged.get(K_FULLTEXT_PARTS) or {})
    if fulltext:
        parts[node_identifier] = dict(fulltext)
    else:
        parts.pop(node_identifier, None)
    merged[K_FULLTEXT_PARTS] = parts
    merged[K_FULLTEXT] = aggregate_fulltext(parts)
    return merged


def document_to_point(document_id: str, payload: dict[str, Any]) -> q.PointStruct:
    """Convert a document payload into a payload-only Qdrant point."""
    return q.PointStruct(id=point_id(document_id), payload=payload, vector={})


def to_update_operation(operation: BulkOperation, state: PayloadState) -> q.UpdateOperation | None:
    """Translate one bulk operation, applying it to ``state``.

    ``state`` must hold an entry for every document the batch touches so that
    later operations of the same batch see the effect of earlier ones.

    Returns:
        The Qdrant operation, or None when the operation has nothing to write.
    """
    existing = state.get(operation.document_id)

    if operation.action == ACTION_DELETE:
        state[operation.document_id] = None
        return q.DeleteOperation(delete=q.PointIdsList(points=[point_id(operation.document_id)]))

    if operation.action == ACTION_INDEX:
        payload = dict(operation.source or {})
        if existing:
            # Fulltext parts are owned by the fulltext operations
            for key in (K_FULLTEXT, K_FULLTEXT_PARTS):
                if key in existing and key not in payload:
                    payload[key] = existing[key]
        state[operation.document_id] = payload
        return _upsert(operation.document_id, payload)

    fulltext = operation.fulltext or {}
    if existing is None:
        if not fulltext:
            return None
        existing = {K_DOCUMENT_IDENTIFIER: operation.document_id}
    payload = merge_fulltext_part(existing, operation.node or "", fulltext)
    state[operation.document_id] = payload
    return _upsert(operation.document_id, payload)


def _upsert(document_id: str, payload: dict[str, Any]) -> q.UpsertOperation:
    return q.UpsertOperation(upsert=q.PointsList(points=[document_to_point(document_id, payload)]))
