"""Node indexer: turns content graph nodes into partitioned bulk requests."""

from __future__ import annotations

import inspect
import json
from collections.abc import Awaitable, Callable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

from cr_search.config import Settings
from cr_search.content.graph import ContentGraphReader
from cr_search.core.constants import K_WORKSPACE, LIVE_WORKSPACE
from cr_search.core.exceptions import ApiException, ConfigurationException, InvalidBulkRequestPartError
from cr_search.core.logging import get_logger
from cr_search.core.models import DimensionCombination, IndexDocument, Node, target_values
from cr_search.drivers.bulk import BulkResponse
from cr_search.drivers.protocols import (
    AliasAction,
    DocumentDriver,
    IndexDriver,
    IndexerDriver,
    RequestDriver,
)
from cr_search.indexer import identifiers
from cr_search.indexer.bulk_request_part import BulkRequestPart
from cr_search.indexer.errors import BulkIndexingError, MalformedBulkRequestError
from cr_search.indexer.extraction import PropertyExtractor
from cr_search.indexer.session import IndexingSession
from cr_search.services.error_handling import ErrorHandlingService
from cr_search.services.search_client import Index, SearchClient

logger = get_logger(__name__)

T = TypeVar("T")

INDEX_PART_SEPARATOR = "-"


def filter_index_names_by_postfix(index_names: Sequence[str], postfix: str) -> list[str]:
    """Keep ``<prefix>-<dimensionsHash>-<postfix>`` names ending in ``postfix``."""
    return [
        name
        for name in index_names
        if len(parts := name.split(INDEX_PART_SEPARATOR)) == 3 and parts[2] == postfix
    ]


class NodeIndexer:
    """Indexes nodes into one physical index per dimension combination.

    Operations are buffered in an ``IndexingSession`` as bulk request parts,
    each tagged with the hash of the dimension combination it belongs to, and
    sent partition by partition on ``flush``. Every entry point accepts an
    explicit ``session``; the indexer's own session is used otherwise.
    """

    def __init__(
        self,
        settings: Settings,
        search_client: SearchClient,
        content_graph: ContentGraphReader,
        *,
        document_driver: DocumentDriver,
        indexer_driver: IndexerDriver,
        index_driver: IndexDriver,
        request_driver: RequestDriver,
        error_handling: ErrorHandlingService,
        extractor: PropertyExtractor | None = None,
        session: IndexingSession | None = None,
    ):
        self.settings = settings
        self._search_client = search_client
        self._content_graph = content_graph
        self._document_driver = document_driver
        self._indexer_driver = indexer_driver
        self._index_driver = index_driver
        self._request_driver = request_driver
        self._error_handling = error_handling
        self._extractor = extractor or PropertyExtractor()
        self.session = session or IndexingSession()
        self._index_name_postfix = ""
        self.unclassified_properties: set[tuple[str, str]] = set()

    # Index naming

    @property
    def index_name_postfix(self) -> str:
        return self._index_name_postfix

    def set_index_name_postfix(self, postfix: str) -> None:
        if INDEX_PART_SEPARATOR in postfix:
            raise ConfigurationException(f"Index name postfix '{postfix}' must not contain '{INDEX_PART_SEPARATOR}'")
        self._index_name_postfix = postfix

    def set_dimensions(self, combination: DimensionCombination | None) -> None:
        self._search_client.set_dimensions(combination)

    def get_index_name(self) -> str:
        """Physical index name for the active dimensions and postfix."""
        index_name = self._search_client.get_index_name()
        if self._index_name_postfix:
            index_name += INDEX_PART_SEPARATOR + self._index_name_postfix
        return index_name

    def get_index(self) -> Index:
        return self._search_client.find_index(self.get_index_name())

    def new_session(self) -> IndexingSession:
        return IndexingSession()

    def calculate_document_identifier(self, node: Node, target_workspace_name: str | None = None) -> str:
        return identifiers.calculate_document_identifier(node, target_workspace_name)

    # Indexing entry points

    async def index_node(
        self,
        node: Node,
        target_workspace_name: str | None = None,
        *,
        session: IndexingSession | None = None,
    ) -> None:
        """Queue the documents of ``node`` in every allowed dimension combination."""
        session = session or self.session
        if not self._is_indexed_workspace(node, target_workspace_name):
            return

        combinations = self._content_graph.get_all_allowed_combinations() or [{}]
        for combination in combinations:
            await self._index_in_combination(node, target_workspace_name, combination, session)

    async def index_node_in_combination(
        self,
        node: Node,
        combination: DimensionCombination,
        target_workspace_name: str | None = None,
        *,
        session: IndexingSession | None = None,
    ) -> None:
        """Queue the document of ``node`` for a single dimension combination."""
        session = session or self.session
        if not self._is_indexed_workspace(node, target_workspace_name):
            return
        await self._index_in_combination(node, target_workspace_name, combination, session)

    async def remove_node(
        self,
        node: Node,
        target_workspace_name: str | None = None,
        *,
        session: IndexingSession | None = None,
    ) -> None:
        """Queue removal of the document of this node materialization and its fulltext part."""
        session = session or self.session
        if not self._is_indexed_workspace(node, target_workspace_name):
            return

        identifier = self.calculate_document_identifier(node, target_workspace_name)
        await self._to_bulk_request(session, node, self._document_driver.delete(node, identifier))
        await self._to_bulk_request(session, node, self._indexer_driver.fulltext(node, {}, target_workspace_name))
        logger.debug("Removed node %s (%s) from the index", node.aggregate_id, identifier)

    async def flush(self, *, session: IndexingSession | None = None) -> None:
        """Send the buffered operations, one bulk request per dimension partition.

        Each partition is dropped from the session as soon as its bulk request
        returned, so a transport error leaves exactly the unsent partitions behind.

        Raises:
            InvalidBulkRequestPartError: The buffer holds something other than a bulk request part.
            ApiException: A bulk request failed at the transport level.
        """
        session = session or self.session
        if not session.parts:
            return

        partitions: dict[str, list[str]] = {}
        for part in session.parts:
            if not isinstance(part, BulkRequestPart):
                raise InvalidBulkRequestPartError()
            for line in part.request:
                if line is None:
                    self._error_handling.log(
                        MalformedBulkRequestError(
                            "Indexing skipped, an operation could not be serialized",
                            item=part.target_dimensions_hash,
                        )
                    )
                    continue
                partitions.setdefault(part.target_dimensions_hash, []).append(line)

        if not partitions:
            session.reset()
            return

        for dimensions_hash, dimensions in session.dimensions.get_dimensions_registry().items():
            lines = partitions.pop(dimensions_hash, None)
            if not lines:
                session.discard_partition(dimensions_hash)
                continue

            with self._search_client.with_dimensions(dimensions):
                index = self.get_index()
                response = await self._request_driver.bulk(index, "\n".join(lines) + "\n")
            self._handle_bulk_response(lines, response)
            session.discard_partition(dimensions_hash)
            logger.info("Flushed %d operations to '%s'", len(lines), index.name)

        for dimensions_hash, lines in partitions.items():
            self._error_handling.log(
                MalformedBulkRequestError(
                    f"Dropped {len(lines)} operations of partition {dimensions_hash}, "
                    "its dimensions were never registered",
                    item=dimensions_hash,
                )
            )
        session.reset()

    @contextmanager
    def bulk_processing(self, *, session: IndexingSession | None = None) -> Iterator[IndexingSession]:
        """Skip the node type change check while the block runs."""
        session = session or self.session
        previous = session.bulk_processing
        session.bulk_processing = True
        try:
            yield session
        finally:
            session.bulk_processing = previous

    async def with_bulk_processing(
        self,
        callback: Callable[[], T | Awaitable[T]],
        *,
        session: IndexingSession | None = None,
    ) -> T:
        """Run ``callback`` in bulk processing mode and return its result."""
        with self.bulk_processing(session=session):
            result = callback()
            if inspect.isawaitable(result):
                return await result
            return result

    # Aliases and index lifecycle

    async def update_index_alias(self) -> None:
        """Point the alias of the active dimensions at the current index in one atomic step.

        Raises:
            ConfigurationException: No postfix is set or the index does not exist.
        """
        if not self._index_name_postfix:
            raise ConfigurationException(
                "update_index_alias is only allowed to be called when an index name postfix has been set"
            )

        alias_name = self._search_client.get_index_name()
        index_name = self.get_index_name()
        if not await self._index_driver.index_exists(index_name):
            raise ConfigurationException(f"The target index '{index_name}' does not exist")

        members = await self._current_alias_members(alias_name)
        if not members and await self._index_driver.delete_index(alias_name):
            # A physical index must not hold the name the alias is about to take
            logger.warning("Deleted index '%s' occupying the alias name", alias_name)

        actions = [AliasAction.remove(name, alias_name) for name in members]
        actions.append(AliasAction.add(index_name, alias_name))
        await self._index_driver.alias_actions(actions)
        logger.info("Alias '%s' now points at '%s'", alias_name, index_name)

    async def update_main_alias(self) -> None:
        """Point the prefix-wide aliases at every dimension index sharing the current postfix."""
        if not self._index_name_postfix:
            raise ConfigurationException(
                "update_main_alias is only allowed to be called when an index name postfix has been set"
            )

        prefix = self._search_client.index_name_prefix
        index_names = filter_index_names_by_postfix(
            await self._index_driver.indexes_by_prefix(prefix + INDEX_PART_SEPARATOR),
            self._index_name_postfix,
        )
        if not index_names:
            logger.warning("No indices with postfix '%s' found, main alias left unchanged", self._index_name_postfix)
            return

        actions: list[AliasAction] = []
        for alias_name in (prefix, prefix + INDEX_PART_SEPARATOR + self._index_name_postfix):
            actions.extend(AliasAction.remove(name, alias_name) for name in await self._current_alias_members(alias_name))
            actions.extend(AliasAction.add(name, alias_name) for name in index_names)
        await self._index_driver.alias_actions(actions)
        logger.info("Main alias '%s' now spans %d indices", prefix, len(index_names))

    async def remove_old_indices(self) -> list[str]:
        """Delete the indices of the active dimensions the alias no longer references.

        Returns:
            Names of the removed indices.
        """
        alias_name = self._search_client.get_index_name()
        live = set(await self._current_alias_members(alias_name))
        candidates = await self._index_driver.indexes_by_prefix(alias_name + INDEX_PART_SEPARATOR)

        removed: list[str] = []
        for index_name in candidates:
            if index_name in live:
                continue
            if await self._index_driver.delete_index(index_name):
                removed.append(index_name)
        if removed:
            logger.info("Removed old indices: %s", ", ".join(removed))
        return removed

    # Internals

    def _is_indexed_workspace(self, node: Node, target_workspace_name: str | None) -> bool:
        if self.settings.index_all_workspaces:
            return True
        if target_workspace_name is not None and target_workspace_name != LIVE_WORKSPACE:
            logger.debug("Skipping node %s, target workspace '%s' is not live", node.aggregate_id, target_workspace_name)
            return False
        if target_workspace_name is None and node.workspace_name != LIVE_WORKSPACE:
            logger.debug("Skipping node %s, workspace '%s' is not live", node.aggregate_id, node.workspace_name)
            return False
        return True

    async def _index_in_combination(
        self,
        node: Node,
        target_workspace_name: str | None,
        combination: DimensionCombination,
        session: IndexingSession,
    ) -> None:
        workspace_name = target_workspace_name or node.workspace_name
        with self._search_client.with_dimensions(combination):
            current = self._content_graph.get_node(node.aggregate_id, workspace_name, combination or None)
            if current is None:
                if node.removed:
                    removed = node.in_context(workspace_name, target_values(combination))
                    await self.remove_node(removed, target_workspace_name, session=session)
                else:
                    logger.debug(
                        "Node %s not found in workspace '%s' for %s, skipping",
                        node.aggregate_id,
                        workspace_name,
                        combination,
                    )
                return
            await self._index_materialization(current, target_workspace_name, session)

    async def _index_materialization(
        self,
        node: Node,
        target_workspace_name: str | None,
        session: IndexingSession,
    ) -> None:
        identifier = self.calculate_document_identifier(node, target_workspace_name)

        if not session.bulk_processing:
            await self._document_driver.delete_duplicate_document_not_matching_type(
                self.get_index(),
                identifier,
                node.node_type,
            )

        extraction = self._extractor.extract(node, self._record_unclassified)
        document = IndexDocument(identifier, node.node_type.name, extraction.properties)
        data = document.get_data()
        if target_workspace_name is not None:
            data[K_WORKSPACE] = target_workspace_name

        if not node.node_type.fulltext_enabled:
            logger.debug("Node type %s has fulltext disabled, node %s not indexed", node.node_type.name, node.aggregate_id)
            return

        await self._to_bulk_request(session, node, self._indexer_driver.document(node, document, data))
        await self._to_bulk_request(
            session,
            node,
            self._indexer_driver.fulltext(node, extraction.fulltext, target_workspace_name),
        )
        logger.debug("Indexed node %s (%s) at %s", node.aggregate_id, identifier, node.path)

    async def _to_bulk_request(
        self,
        session: IndexingSession,
        node: Node,
        request: Sequence[str | None] | None,
    ) -> None:
        if not request:
            return

        # Registered per part, an auto flush in between resets the registry
        dimensions_hash = session.dimensions.hash_by_node(node)
        session.append(BulkRequestPart(dimensions_hash, tuple(request)))
        if len(session) >= self.settings.batch_size_elements or session.size >= self.settings.batch_size_octets:
            await self.flush(session=session)

    async def _current_alias_members(self, alias_name: str) -> list[str]:
        try:
            return await self._index_driver.indexes_by_alias(alias_name)
        except ApiException as exc:
            # An alias that does not exist yet has no members
            if exc.status_code != 404:
                raise
            return []

    def _record_unclassified(self, node: Node, property_name: str) -> None:
        key = (node.node_type.name, property_name)
        if key not in self.unclassified_properties:
            self.unclassified_properties.add(key)
            logger.debug("Property '%s' of node type %s has no indexing rule", property_name, node.node_type.name)

    def _handle_bulk_response(self, lines: list[str], response: BulkResponse) -> None:
        for item in response.failed_items():
            request = [lines[item.line]] if 0 <= item.line < len(lines) else []
            error = BulkIndexingError(request=request, response=item.to_dict())
            self._error_handling.log(error)
            self._persist_bulk_error(error)

    def _persist_bulk_error(self, error: BulkIndexingError) -> Path:
        directory = Path(self.settings.bulk_error_log_directory)
        directory.mkdir(parents=True, exist_ok=True)
        stamp = error.created_at.strftime("%Y%m%d%H%M%S%f")
        path = directory / f"BulkIndexing_Error_{stamp}.json"
        suffix = 1
        while path.exists():
            path = directory / f"BulkIndexing_Error_{stamp}_{suffix}.json"
            suffix += 1
        content: dict[str, Any] = {"request": error.request, "response": error.response, "message": error.message()}
        path.write_text(json.dumps(content, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info("Bulk indexing error details written to %s", path)
        return path
