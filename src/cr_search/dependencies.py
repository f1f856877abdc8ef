"""Wiring of the indexing stack."""

from dataclasses import dataclass

from qdrant_client import AsyncQdrantClient

from cr_search.config import Settings, get_settings
from cr_search.content.graph import InMemoryContentGraph
from cr_search.drivers.document_driver import QdrantDocumentDriver
from cr_search.drivers.index_driver import QdrantIndexDriver
from cr_search.drivers.indexer_driver import QdrantIndexerDriver
from cr_search.drivers.request_driver import QdrantRequestDriver
from cr_search.indexer.extraction import NodeTypeIndexingConfiguration
from cr_search.indexer.node_indexer import NodeIndexer
from cr_search.services.error_handling import ErrorHandlingService
from cr_search.services.index_commands import IndexCommands
from cr_search.services.search_client import SearchClient
from cr_search.services.workspace_indexer import WorkspaceIndexer

# Module-level cache for SearchClient singleton
_search_client_cache: SearchClient | None = None


def get_search_client(settings: Settings | None = None) -> SearchClient:
    """Get or create a cached SearchClient instance.

    Returns:
        SearchClient instance.
    """
    global _search_client_cache

    if _search_client_cache is None:
        _search_client_cache = SearchClient(settings or get_settings())

    return _search_client_cache


@dataclass
class IndexingStack:
    """Everything needed to index one content graph."""

    settings: Settings
    search_client: SearchClient
    content_graph: InMemoryContentGraph
    error_handling: ErrorHandlingService
    index_driver: QdrantIndexDriver
    node_indexer: NodeIndexer
    workspace_indexer: WorkspaceIndexer
    commands: IndexCommands

    async def aclose(self) -> None:
        global _search_client_cache

        await self.search_client.aclose()
        if _search_client_cache is self.search_client:
            _search_client_cache = None


def build_indexing_stack(
    content_graph: InMemoryContentGraph,
    settings: Settings | None = None,
    aclient: AsyncQdrantClient | None = None,
) -> IndexingStack:
    """Assemble the drivers, indexer and commands around one search client.

    Args:
        content_graph: Content graph to index.
        settings: Settings to use, the cached settings by default.
        aclient: Qdrant client to use instead of the cached search client.

    Returns:
        The assembled stack.
    """
    settings = settings or get_settings()
    if aclient is not None:
        search_client = SearchClient(settings, aclient=aclient)
    else:
        search_client = get_search_client(settings)

    error_handling = ErrorHandlingService()
    index_driver = QdrantIndexDriver(search_client)
    node_indexer = NodeIndexer(
        settings,
        search_client,
        content_graph,
        document_driver=QdrantDocumentDriver(search_client),
        indexer_driver=QdrantIndexerDriver(content_graph),
        index_driver=index_driver,
        request_driver=QdrantRequestDriver(search_client),
        error_handling=error_handling,
    )
    workspace_indexer = WorkspaceIndexer(
        node_indexer,
        content_graph,
        NodeTypeIndexingConfiguration(settings.node_types_indexing),
    )
    commands = IndexCommands(
        node_indexer,
        workspace_indexer,
        content_graph,
        index_driver,
        error_handling,
        content_graph.node_types.values(),
    )
    return IndexingStack(
        settings=settings,
        search_client=search_client,
        content_graph=content_graph,
        error_handling=error_handling,
        index_driver=index_driver,
        node_indexer=node_indexer,
        workspace_indexer=workspace_indexer,
        commands=commands,
    )
