"""Driver interfaces the indexing engine talks to the search engine through."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from cr_search.core.models import IndexDocument, Node, NodeType
from cr_search.drivers.bulk import BulkResponse
from cr_search.services.search_client import Index


@dataclass(frozen=True)
class AliasAction:
    """One step of an atomic alias update."""

    action: Literal["add", "remove"]
    index: str
    alias: str

    @classmethod
    def add(cls, index: str, alias: str) -> AliasAction:
        return cls("add", index, alias)

    @classmethod
    def remove(cls, index: str, alias: str) -> AliasAction:
        return cls("remove", index, alias)


class DocumentDriver(Protocol):
    """Produces delete operations and cleans up documents of a changed node type."""

    def delete(self, node: Node, identifier: str) -> list[str | None]:
        """Serialized operations removing the document ``identifier``."""
        ...

    async def delete_duplicate_document_not_matching_type(
        self,
        index: Index,
        identifier: str,
        node_type: NodeType,
    ) -> int:
        """Remove the stored document ``identifier`` if it was written for another node type.

        Returns:
            Number of removed documents.
        """
        ...


class IndexerDriver(Protocol):
    """Produces serialized write operations for a node."""

    def document(self, node: Node, document: IndexDocument, data: Mapping[str, Any]) -> list[str | None]:
        ...

    def fulltext(
        self,
        node: Node,
        fulltext: Mapping[str, str],
        target_workspace_name: str | None = None,
    ) -> list[str | None] | None:
        """Operations putting the node's fulltext on its closest fulltext root, if any."""
        ...


class IndexDriver(Protocol):
    """Physical index and alias management."""

    async def create_index(self, name: str) -> None: ...

    async def delete_index(self, name: str) -> bool: ...

    async def index_exists(self, name: str) -> bool: ...

    async def all_indices(self) -> list[str]: ...

    async def indexes_by_prefix(self, prefix: str) -> list[str]: ...

    async def indexes_by_alias(self, alias: str) -> list[str]: ...

    async def alias_actions(self, actions: Sequence[AliasAction]) -> None:
        """Apply every action as one atomic change."""
        ...


class RequestDriver(Protocol):
    """Submits newline-delimited bulk payloads."""

    async def bulk(self, index: Index, payload: str) -> BulkResponse: ...
