"""Indexes every node of a workspace."""

from __future__ import annotations

from collections.abc import Callable

from cr_search.content.graph import ContentGraphReader
from cr_search.core.logging import get_logger
from cr_search.core.models import DimensionCombination
from cr_search.indexer.extraction import NodeTypeIndexingConfiguration
from cr_search.indexer.node_indexer import NodeIndexer
from cr_search.indexer.session import IndexingSession

logger = get_logger(__name__)

# Called with the workspace name, the number of indexed nodes and the combination.
ProgressCallback = Callable[[str, int, DimensionCombination], None]


class WorkspaceIndexer:
    def __init__(
        self,
        node_indexer: NodeIndexer,
        content_graph: ContentGraphReader,
        indexing_configuration: NodeTypeIndexingConfiguration | None = None,
    ):
        self._node_indexer = node_indexer
        self._content_graph = content_graph
        self._indexing_configuration = indexing_configuration or NodeTypeIndexingConfiguration()

    async def index_workspace(
        self,
        workspace_name: str,
        limit: int | None = None,
        callback: ProgressCallback | None = None,
        *,
        session: IndexingSession | None = None,
    ) -> int:
        """Index the workspace in every allowed dimension combination.

        Returns:
            Number of indexed nodes over all combinations.
        """
        count = 0
        for combination in self._content_graph.get_all_allowed_combinations() or [{}]:
            count += await self.index_workspace_with_dimensions(
                workspace_name,
                combination,
                limit,
                callback,
                session=session,
            )
        return count

    async def index_workspace_with_dimensions(
        self,
        workspace_name: str,
        combination: DimensionCombination,
        limit: int | None = None,
        callback: ProgressCallback | None = None,
        *,
        session: IndexingSession | None = None,
    ) -> int:
        """Index the workspace in one dimension combination, in bulk processing mode.

        Args:
            workspace_name: Workspace to walk.
            combination: Dimension combination the nodes are read in.
            limit: Stop after this many nodes.
            callback: Progress callback invoked once the combination is done.
            session: Indexing session to buffer into.

        Returns:
            Number of indexed nodes.
        """

        async def index_nodes() -> int:
            indexed = 0
            for node in self._content_graph.find_nodes(workspace_name, combination or None):
                if limit is not None and indexed >= limit:
                    break
                if not self._indexing_configuration.is_indexable(node.node_type):
                    logger.debug("Node type %s is excluded from indexing", node.node_type.name)
                    continue
                await self._node_indexer.index_node_in_combination(node, combination, session=session)
                indexed += 1
            return indexed

        count = await self._node_indexer.with_bulk_processing(index_nodes, session=session)
        logger.info("Indexed %d nodes of workspace '%s' for %s", count, workspace_name, combination or "no dimensions")
        if callback is not None:
            callback(workspace_name, count, combination)
        return count
