"""Index maintenance commands behind the ``cr-search`` CLI."""

from __future__ import annotations

import time
from collections.abc import Iterable

from cr_search.content.graph import ContentGraphReader
from cr_search.core.exceptions import ApiException
from cr_search.core.logging import get_logger
from cr_search.core.models import DimensionCombination, Node, NodeType
from cr_search.drivers.protocols import IndexDriver
from cr_search.indexer.node_indexer import NodeIndexer
from cr_search.mapping.node_type_mapping_builder import NodeTypeMappingBuilder
from cr_search.services.error_handling import ErrorHandlingService
from cr_search.services.workspace_indexer import WorkspaceIndexer

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


class IndexCommands:
    """Show the mapping, index single nodes, rebuild and clean up indices.

    Every command returns a process exit code.
    """

    def __init__(
        self,
        node_indexer: NodeIndexer,
        workspace_indexer: WorkspaceIndexer,
        content_graph: ContentGraphReader,
        index_driver: IndexDriver,
        error_handling: ErrorHandlingService,
        node_types: Iterable[NodeType],
        mapping_builder: NodeTypeMappingBuilder | None = None,
    ):
        self._node_indexer = node_indexer
        self._workspace_indexer = workspace_indexer
        self._content_graph = content_graph
        self._index_driver = index_driver
        self._error_handling = error_handling
        self._node_types = list(node_types)
        self._mapping_builder = mapping_builder or NodeTypeMappingBuilder()

    def show_mapping(self) -> dict[str, dict[str, str]]:
        mappings = self._mapping_builder.build_mapping_information(self._node_types)
        for error in self._mapping_builder.last_mapping_errors:
            logger.error("Mapping error: %s", error)
        return {mapping.node_type: mapping.to_dict() for mapping in mappings}

    async def index_node(self, identifier: str, workspace: str | None = None) -> int:
        """Index one node in the given workspace, or in every workspace."""
        workspace_names = self._resolve_workspaces(workspace)
        if workspace_names is None:
            return EXIT_FAILURE

        found = False
        for workspace_name in workspace_names:
            node = self._find_node(identifier, workspace_name)
            if node is None:
                logger.info("Node %s not found in workspace '%s'", identifier, workspace_name)
                continue
            found = True
            await self._node_indexer.index_node(node)
            logger.info("Indexed node %s in workspace '%s'", identifier, workspace_name)

        if not found:
            logger.error("Node %s not found", identifier)
            return EXIT_FAILURE

        await self._node_indexer.flush()
        return self._report_errors()

    async def build(
        self,
        limit: int | None = None,
        update: bool = False,
        workspace: str | None = None,
        postfix: str | None = None,
    ) -> int:
        """Rebuild one index per dimension combination and switch the aliases over.

        Args:
            limit: Index at most this many nodes per workspace and combination.
            update: Index into the live indices instead of building new ones.
            workspace: Only index this workspace.
            postfix: Index name postfix of the new generation, a timestamp by default.
        """
        workspace_names = self._resolve_workspaces(workspace)
        if workspace_names is None:
            return EXIT_FAILURE

        self._node_indexer.set_index_name_postfix("" if update else (postfix or str(int(time.time()))))
        self._error_handling.clear()

        for combination in self._content_graph.get_all_allowed_combinations() or [{}]:
            self._node_indexer.set_dimensions(combination)
            if update:
                if not await self._index_driver.indexes_by_alias(self._node_indexer.get_index_name()):
                    logger.error(
                        "No live index for %s, run a full build first", combination or "no dimensions"
                    )
                    return EXIT_FAILURE
            else:
                await self._create_index()

            for workspace_name in workspace_names:
                await self._workspace_indexer.index_workspace_with_dimensions(
                    workspace_name,
                    combination,
                    limit,
                    self._log_progress,
                )
            await self._node_indexer.flush()

            if not update:
                await self._node_indexer.update_index_alias()

        if not update:
            await self._node_indexer.update_main_alias()
        return self._report_errors()

    async def cleanup(self) -> int:
        """Remove the indices no alias references anymore."""
        exit_code = EXIT_OK
        for combination in self._content_graph.get_all_allowed_combinations() or [{}]:
            self._node_indexer.set_dimensions(combination)
            try:
                removed = await self._node_indexer.remove_old_indices()
            except ApiException as exc:
                logger.error("Cleanup of %s failed: %s (%s)", combination or "no dimensions", exc.message, exc.response)
                exit_code = EXIT_FAILURE
                continue
            if removed:
                for index_name in removed:
                    logger.info("Removed %s", index_name)
            else:
                logger.info("Nothing to remove for %s", combination or "no dimensions")
        return exit_code

    async def _create_index(self) -> None:
        index = self._node_indexer.get_index()
        if await index.exists():
            await self._index_driver.delete_index(index.name)
            logger.info("Deleted index '%s' with the same postfix", index.name)
        await self._index_driver.create_index(index.name)

        for mapping in self._mapping_builder.build_mapping_information(self._node_types):
            await mapping.apply(index)
        for error in self._mapping_builder.last_mapping_errors:
            logger.warning("Mapping error: %s", error)
        logger.info("Created index '%s'", index.name)

    def _resolve_workspaces(self, workspace: str | None) -> list[str] | None:
        if workspace is None:
            return [candidate.name for candidate in self._content_graph.workspaces()]
        if self._content_graph.find_workspace(workspace) is None:
            logger.error("Workspace '%s' does not exist", workspace)
            return None
        return [workspace]

    def _find_node(self, identifier: str, workspace_name: str) -> Node | None:
        for combination in self._content_graph.get_all_allowed_combinations() or [{}]:
            node = self._content_graph.get_node(identifier, workspace_name, combination or None)
            if node is not None:
                return node
        return None

    def _report_errors(self) -> int:
        if not self._error_handling.has_error():
            return EXIT_OK
        logger.error("%d errors occurred while indexing, check the logs for details:", len(self._error_handling))
        for error in self._error_handling:
            logger.error("  %s", error.message())
        return EXIT_FAILURE

    @staticmethod
    def _log_progress(workspace_name: str, count: int, combination: DimensionCombination) -> None:
        logger.info(
            "Workspace '%s' %s: %d nodes indexed",
            workspace_name,
            combination or "without dimensions",
            count,
        )
