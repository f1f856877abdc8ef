"""Indexer driver: serialized document and fulltext write operations."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from cr_search.content.graph import ContentGraphReader
from cr_search.core.constants import ACTION_FULLTEXT, ACTION_INDEX
from cr_search.core.logging import get_logger
from cr_search.core.models import IndexDocument, Node
from cr_search.drivers.bulk import encode_operation
from cr_search.indexer.identifiers import calculate_document_identifier

logger = get_logger(__name__)


class QdrantIndexerDriver:
    """Builds bulk lines writing a node's document and its fulltext part.

    A node's fulltext is stored on the document of its closest fulltext root
    (the node itself when its type is a root), keyed by the node's aggregate id.
    """

    def __init__(self, content_graph: ContentGraphReader):
        self._content_graph = content_graph

    def document(self, node: Node, document: IndexDocument, data: Mapping[str, Any]) -> list[str | None]:
        return [encode_operation({ACTION_INDEX: {"_id": document.identifier, "_source": dict(data)}})]

    def fulltext(
        self,
        node: Node,
        fulltext: Mapping[str, str],
        target_workspace_name: str | None = None,
    ) -> list[str | None] | None:
        root = self.find_closest_fulltext_root(node)
        if root is None:
            logger.debug("No fulltext root found for node %s, skipping fulltext", node.aggregate_id)
            return None

        root_identifier = calculate_document_identifier(root, target_workspace_name)
        return [
            encode_operation(
                {
                    ACTION_FULLTEXT: {
                        "_id": root_identifier,
                        "node": node.aggregate_id,
                        "fulltext": dict(fulltext),
                    }
                }
            )
        ]

    def find_closest_fulltext_root(self, node: Node) -> Node | None:
        current: Node | None = node
        seen: set[str] = set()
        while current is not None and current.aggregate_id not in seen:
            if current.node_type.fulltext_root:
                return current
            seen.add(current.aggregate_id)
            current = self._content_graph.get_parent(current)
        return None
