# conftest.py
from collections.abc import Callable
from pathlib import Path

import pytest
import pytest_asyncio
from qdrant_client import AsyncQdrantClient

from cr_search.config import Settings
from cr_search.content.dimensions import ContentDimensionCombinator
from cr_search.content.graph import InMemoryContentGraph
from cr_search.core.models import NodeType, PropertyIndexing, Workspace
from cr_search.dependencies import IndexingStack, build_indexing_stack
from cr_search.services.search_client import SearchClient

LANGUAGE_PRESETS = {"language": {"en": ["en"], "de": ["de", "en"]}}


@pytest_asyncio.fixture
async def aclient_local():
    """In-memory embedded Qdrant for tests."""
    client = AsyncQdrantClient(location=":memory:")
    try:
        yield client
    finally:
        await client.close()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        qdrant_url="http://unused-in-local-mode",
        qdrant_api_key=None,
        qdrant_prefer_grpc=False,
        index_name="testrepo",
        bulk_error_log_directory=tmp_path / "logs",
    )


@pytest.fixture
def search_client(test_settings: Settings, aclient_local: AsyncQdrantClient) -> SearchClient:
    return SearchClient(test_settings, aclient=aclient_local)


@pytest.fixture
def node_types() -> dict[str, NodeType]:
    return {
        "Acme:Site": NodeType(
            "Acme:Site",
            {"title": PropertyIndexing(indexing="value", fulltext="h1")},
            fulltext_root=True,
        ),
        "Acme:Page": NodeType(
            "Acme:Page",
            {
                "title": PropertyIndexing(indexing="value", fulltext="h1"),
                "published": PropertyIndexing(indexing="date", mapping_type="date"),
            },
            fulltext_root=True,
        ),
        "Acme:Text": NodeType(
            "Acme:Text",
            {"text": PropertyIndexing(indexing=None, fulltext="html")},
        ),
        "Acme:Hidden": NodeType("Acme:Hidden", {"title": PropertyIndexing()}, fulltext_enabled=False),
    }


def _populate(graph: InMemoryContentGraph, dimensions: dict[str, str] | None = None) -> InMemoryContentGraph:
    graph.add_node("site", "Acme:Site", name="site", dimensions=dimensions, properties={"title": "Acme"})
    graph.add_node(
        "home",
        "Acme:Page",
        name="home",
        parent_id="site",
        dimensions=dimensions,
        properties={"title": "Home", "published": "2024-05-01T10:00:00"},
    )
    graph.add_node(
        "about",
        "Acme:Page",
        name="about",
        parent_id="site",
        dimensions=dimensions,
        properties={"title": "About us"},
    )
    graph.add_node(
        "text",
        "Acme:Text",
        name="text",
        parent_id="home",
        dimensions=dimensions,
        properties={"text": "<h2>Welcome</h2><p>Hello world</p>", "color": "red"},
    )
    return graph


@pytest.fixture
def content_graph(node_types: dict[str, NodeType]) -> InMemoryContentGraph:
    """Graph without dimensions, a live and a user workspace."""
    graph = InMemoryContentGraph(
        node_types,
        workspaces=[Workspace("live"), Workspace("user-admin", base_workspace="live")],
    )
    return _populate(graph)


@pytest.fixture
def dimension_graph(node_types: dict[str, NodeType]) -> InMemoryContentGraph:
    """Graph with an English tree and a German variant of the home page."""
    graph = InMemoryContentGraph(
        node_types,
        workspaces=[Workspace("live")],
        combinator=ContentDimensionCombinator(LANGUAGE_PRESETS),
    )
    _populate(graph, {"language": "en"})
    graph.add_node(
        "home",
        "Acme:Page",
        name="home",
        parent_id="site",
        dimensions={"language": "de"},
        properties={"title": "Startseite"},
    )
    return graph


@pytest.fixture
def make_stack(
    test_settings: Settings,
    aclient_local: AsyncQdrantClient,
) -> Callable[..., IndexingStack]:
    def factory(graph: InMemoryContentGraph, **overrides: object) -> IndexingStack:
        settings = test_settings.model_copy(update=overrides) if overrides else test_settings
        return build_indexing_stack(graph, settings, aclient=aclient_local)

    return factory


@pytest.fixture
def stack(make_stack: Callable[..., IndexingStack], content_graph: InMemoryContentGraph) -> IndexingStack:
    return make_stack(content_graph)
