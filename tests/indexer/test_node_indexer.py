"""Tests for the node indexer."""

from __future__ import annotations

import hashlib
import json
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from qdrant_client import models as q

from cr_search.config import Settings
from cr_search.content.graph import InMemoryContentGraph
from cr_search.core.constants import K_FULLTEXT, K_IDENTIFIER, K_PATH, K_TYPE_NAME, K_WORKSPACE
from cr_search.core.exceptions import ApiException, InvalidBulkRequestPartError
from cr_search.dependencies import IndexingStack
from cr_search.drivers.bulk import BulkItemResult, BulkResponse
from cr_search.drivers.document_driver import QdrantDocumentDriver
from cr_search.drivers.indexer_driver import QdrantIndexerDriver
from cr_search.drivers.request_driver import QdrantRequestDriver
from cr_search.indexer.bulk_request_part import BulkRequestPart
from cr_search.indexer.errors import BulkIndexingError, MalformedBulkRequestError
from cr_search.indexer.node_indexer import NodeIndexer
from cr_search.services.dimensions_service import hash_dimensions
from cr_search.services.search_client import SearchClient

pytestmark = pytest.mark.asyncio


def _make_indexer(
    stack: IndexingStack,
    *,
    settings: Settings | None = None,
    request_driver: Any = None,
    document_driver: Any = None,
) -> NodeIndexer:
    search_client = stack.search_client
    return NodeIndexer(
        settings or stack.settings,
        search_client,
        stack.content_graph,
        document_driver=document_driver or QdrantDocumentDriver(search_client),
        indexer_driver=QdrantIndexerDriver(stack.content_graph),
        index_driver=stack.index_driver,
        request_driver=request_driver or QdrantRequestDriver(search_client),
        error_handling=stack.error_handling,
    )


def _mock_request_driver() -> AsyncMock:
    driver = AsyncMock()
    driver.bulk.return_value = BulkResponse()
    return driver


async def _documents(search_client: SearchClient, index_name: str, identifier: str) -> list[dict[str, Any]]:
    records = await search_client.retrieve_by_filter(
        index_name,
        q.Filter(must=[q.FieldCondition(key=K_IDENTIFIER, match=q.MatchValue(value=identifier))]),
    )
    return [record.payload or {} for record in records]


async def _create_indices(stack: IndexingStack) -> list[str]:
    names = []
    for combination in stack.content_graph.get_all_allowed_combinations() or [{}]:
        with stack.search_client.with_dimensions(combination):
            name = stack.node_indexer.get_index_name()
        await stack.index_driver.create_index(name)
        names.append(name)
    return names


async def test_index_name_without_dimensions(stack: IndexingStack) -> None:
    assert stack.node_indexer.get_index_name() == "testrepo-default"


async def test_index_name_with_dimensions_is_stable(stack: IndexingStack) -> None:
    stack.node_indexer.set_dimensions({"language": ["de"]})

    expected = "testrepo-" + hash_dimensions({"language": "de"})
    assert stack.node_indexer.get_index_name() == expected
    assert stack.node_indexer.get_index_name() == expected

    stack.node_indexer.set_index_name_postfix("1700000000")
    assert stack.node_indexer.get_index_name() == expected + "-1700000000"


async def test_index_node_writes_document_and_fulltext(stack: IndexingStack) -> None:
    await _create_indices(stack)
    graph = stack.content_graph
    indexer = stack.node_indexer

    await indexer.index_node(graph.get_node("home", "live"))
    await indexer.index_node(graph.get_node("text", "live"))
    await indexer.flush()

    [home] = await _documents(stack.search_client, "testrepo-default", "home")
    assert home[K_PATH] == "/site/home"
    assert home[K_TYPE_NAME] == "Acme:Page"
    assert home[K_WORKSPACE] == "live"
    assert home["published"] == "2024-05-01T10:00:00"
    assert home[K_FULLTEXT] == {"h1": "Home", "h2": "Welcome", "text": "Hello world"}

    [text] = await _documents(stack.search_client, "testrepo-default", "text")
    assert "text" not in text
    assert ("Acme:Text", "color") in indexer.unclassified_properties
    assert len(indexer.session) == 0
    assert not stack.error_handling.has_error()


async def test_index_then_remove_converges(stack: IndexingStack) -> None:
    await _create_indices(stack)
    graph = stack.content_graph
    indexer = stack.node_indexer

    await indexer.index_node(graph.get_node("about", "live"))
    await indexer.flush()
    assert len(await _documents(stack.search_client, "testrepo-default", "about")) == 1

    removed = graph.remove_node("about")
    await indexer.index_node(removed)
    await indexer.flush()

    assert await _documents(stack.search_client, "testrepo-default", "about") == []


async def test_remove_node_queues_delete_and_fulltext_clear(stack: IndexingStack) -> None:
    await _create_indices(stack)
    graph = stack.content_graph
    indexer = stack.node_indexer

    await indexer.index_node(graph.get_node("home", "live"))
    await indexer.index_node(graph.get_node("text", "live"))
    await indexer.flush()

    await indexer.remove_node(graph.get_node("text", "live"))
    assert len(indexer.session) == 2
    await indexer.flush()

    assert await _documents(stack.search_client, "testrepo-default", "text") == []
    [home] = await _documents(stack.search_client, "testrepo-default", "home")
    assert home[K_FULLTEXT] == {"h1": "Home"}


async def test_moved_node_keeps_a_single_document(stack: IndexingStack) -> None:
    await _create_indices(stack)
    graph = stack.content_graph
    indexer = stack.node_indexer

    for identifier in ("site", "home", "about", "text"):
        await indexer.index_node(graph.get_node(identifier, "live"))
    await indexer.flush()

    graph.move_node("text", "about")
    await indexer.index_node(graph.get_node("text", "live"))
    await indexer.flush()

    [text] = await _documents(stack.search_client, "testrepo-default", "text")
    assert text[K_PATH] == "/site/about/text"


async def test_flush_without_operations_is_a_no_op(stack: IndexingStack) -> None:
    request_driver = _mock_request_driver()
    indexer = _make_indexer(stack, request_driver=request_driver)

    await indexer.flush()

    request_driver.bulk.assert_not_awaited()
    assert len(indexer.session) == 0
    assert indexer.session.dimensions.get_dimensions_registry() == {}


async def test_auto_flush_on_element_threshold(stack: IndexingStack) -> None:
    request_driver = _mock_request_driver()
    settings = stack.settings.model_copy(update={"batch_size_elements": 3})
    indexer = _make_indexer(stack, settings=settings, request_driver=request_driver)
    graph = stack.content_graph

    await indexer.index_node(graph.get_node("home", "live"))
    request_driver.bulk.assert_not_awaited()

    await indexer.index_node(graph.get_node("about", "live"))

    assert request_driver.bulk.await_count == 1
    _, payload = request_driver.bulk.await_args.args
    assert len(payload.strip().split("\n")) == 3
    assert len(indexer.session) == 1

    await indexer.flush()

    assert request_driver.bulk.await_count == 2
    _, payload = request_driver.bulk.await_args.args
    assert '"fulltext"' in payload
    assert not stack.error_handling.has_error()


async def test_operations_split_by_auto_flush_all_arrive(
    make_stack: Any,
    content_graph: InMemoryContentGraph,
) -> None:
    stack = make_stack(content_graph, batch_size_elements=3)
    await _create_indices(stack)
    indexer = stack.node_indexer

    for identifier in ("home", "about", "text"):
        await indexer.index_node(content_graph.get_node(identifier, "live"))
    await indexer.flush()

    [home] = await _documents(stack.search_client, "testrepo-default", "home")
    [about] = await _documents(stack.search_client, "testrepo-default", "about")
    assert about[K_FULLTEXT] == {"h1": "About us"}
    assert home[K_FULLTEXT] == {"h1": "Home", "h2": "Welcome", "text": "Hello world"}
    assert len(await _documents(stack.search_client, "testrepo-default", "text")) == 1
    assert not stack.error_handling.has_error()


async def test_unregistered_partition_is_reported(stack: IndexingStack) -> None:
    request_driver = _mock_request_driver()
    indexer = _make_indexer(stack, request_driver=request_driver)
    indexer.session.append(BulkRequestPart("unknown", ('{"delete":{"_id":"a"}}',)))

    await indexer.flush()

    request_driver.bulk.assert_not_awaited()
    errors = list(stack.error_handling)
    assert [type(error) for error in errors] == [MalformedBulkRequestError]
    assert "unknown" in errors[0].message()
    assert len(indexer.session) == 0


async def test_auto_flush_on_octet_threshold(stack: IndexingStack) -> None:
    request_driver = _mock_request_driver()
    settings = stack.settings.model_copy(update={"batch_size_octets": 1})
    indexer = _make_indexer(stack, settings=settings, request_driver=request_driver)

    await indexer.index_node(stack.content_graph.get_node("home", "live"))

    assert request_driver.bulk.await_count == 2
    assert len(indexer.session) == 0


async def test_bulk_processing_skips_type_check(stack: IndexingStack) -> None:
    document_driver = QdrantDocumentDriver(stack.search_client)
    indexer = _make_indexer(stack, request_driver=_mock_request_driver(), document_driver=document_driver)
    node = stack.content_graph.get_node("home", "live")

    with patch.object(
        document_driver,
        "delete_duplicate_document_not_matching_type",
        new=AsyncMock(return_value=0),
    ) as check:
        await indexer.with_bulk_processing(lambda: indexer.index_node(node))
        check.assert_not_awaited()

        await indexer.index_node(node)
        check.assert_awaited_once()


async def test_bulk_processing_flag_restored_on_error(stack: IndexingStack) -> None:
    indexer = stack.node_indexer

    async def failing() -> None:
        assert indexer.session.bulk_processing is True
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        await indexer.with_bulk_processing(failing)
    assert indexer.session.bulk_processing is False

    indexer.session.bulk_processing = True
    assert await indexer.with_bulk_processing(lambda: 42) == 42
    assert indexer.session.bulk_processing is True


async def test_non_live_workspace_is_skipped(stack: IndexingStack) -> None:
    indexer = _make_indexer(stack, request_driver=_mock_request_driver())
    graph = stack.content_graph

    await indexer.index_node(graph.get_node("home", "user-admin"))
    assert len(indexer.session) == 0

    await indexer.index_node(graph.get_node("home", "live"), "user-admin")
    assert len(indexer.session) == 0

    await indexer.index_node(graph.get_node("home", "user-admin"), "live")
    assert len(indexer.session) == 2


async def test_all_workspaces_are_indexed_when_enabled(stack: IndexingStack) -> None:
    settings = stack.settings.model_copy(update={"index_all_workspaces": True})
    indexer = _make_indexer(stack, settings=settings, request_driver=_mock_request_driver())

    await indexer.index_node(stack.content_graph.get_node("home", "user-admin"))

    assert len(indexer.session) == 2


async def test_target_workspace_is_written_on_document(stack: IndexingStack) -> None:
    await _create_indices(stack)
    node = stack.content_graph.get_node("home", "user-admin")

    await stack.node_indexer.index_node(node, "live")
    await stack.node_indexer.flush()

    [home] = await _documents(stack.search_client, "testrepo-default", "home")
    assert home[K_WORKSPACE] == "live"


async def test_target_workspace_resolves_its_own_materialization(stack: IndexingStack) -> None:
    await _create_indices(stack)
    graph = stack.content_graph
    graph.add_node("draft", "Acme:Page", name="draft", parent_id="site", workspace_name="user-admin")
    graph.set_properties("home", {"title": "Draft title"}, workspace_name="user-admin")

    await stack.node_indexer.index_node(graph.get_node("draft", "user-admin"), "live")
    assert len(stack.node_indexer.session) == 0

    await stack.node_indexer.index_node(graph.get_node("home", "user-admin"), "live")
    await stack.node_indexer.flush()

    [home] = await _documents(stack.search_client, "testrepo-default", "home")
    assert home["title"] == "Home"


async def test_fulltext_disabled_node_type_is_not_written(stack: IndexingStack) -> None:
    graph = stack.content_graph
    graph.add_node("hidden", "Acme:Hidden", name="hidden", parent_id="site", properties={"title": "Secret"})
    indexer = _make_indexer(stack, request_driver=_mock_request_driver())

    await indexer.index_node(graph.get_node("hidden", "live"))

    assert len(indexer.session) == 0


async def test_document_identifier_is_pure(stack: IndexingStack) -> None:
    node = stack.content_graph.get_node("home", "live")
    indexer = stack.node_indexer

    identifier = indexer.calculate_document_identifier(node)
    assert identifier == indexer.calculate_document_identifier(node)
    assert identifier == hashlib.sha1(b"home@live").hexdigest()
    assert indexer.calculate_document_identifier(node, "live") == identifier
    assert indexer.calculate_document_identifier(node, "user-admin") != identifier


async def test_transport_error_keeps_unsent_partitions(
    make_stack: Any,
    dimension_graph: InMemoryContentGraph,
) -> None:
    stack = make_stack(dimension_graph)
    request_driver = _mock_request_driver()
    request_driver.bulk.side_effect = [BulkResponse(), ApiException("Bulk request failed", status_code=503)]
    indexer = _make_indexer(stack, request_driver=request_driver)

    await indexer.index_node(dimension_graph.get_node("home", "live", {"language": ["en"]}))
    assert len({part.target_dimensions_hash for part in indexer.session.parts}) == 2

    with pytest.raises(ApiException):
        await indexer.flush()

    remaining = {part.target_dimensions_hash for part in indexer.session.parts}
    assert len(remaining) == 1
    assert len(indexer.session) == 2
    assert list(indexer.session.dimensions.get_dimensions_registry()) == list(remaining)

    request_driver.bulk.side_effect = None
    await indexer.flush()
    assert request_driver.bulk.await_count == 3
    assert len(indexer.session) == 0


async def test_bulk_item_errors_are_logged_and_persisted(stack: IndexingStack) -> None:
    request_driver = _mock_request_driver()
    request_driver.bulk.return_value = BulkResponse(
        items=[
            BulkItemResult(0, "index", "abc", 500, "rejected"),
            BulkItemResult(1, "fulltext", "abc"),
        ]
    )
    indexer = _make_indexer(stack, request_driver=request_driver)

    await indexer.index_node(stack.content_graph.get_node("home", "live"))
    await indexer.flush()

    errors = list(stack.error_handling)
    assert len(errors) == 1
    assert isinstance(errors[0], BulkIndexingError)
    [diagnostic] = list(stack.settings.bulk_error_log_directory.glob("BulkIndexing_Error_*.json"))
    content = json.loads(diagnostic.read_text(encoding="utf-8"))
    assert content["response"]["error"] == "rejected"
    assert len(content["request"]) == 1
    assert '"index"' in content["request"][0]


async def test_unencodable_operation_is_skipped(stack: IndexingStack) -> None:
    await _create_indices(stack)
    graph = stack.content_graph
    graph.set_properties("about", {"title": float("nan")})

    await stack.node_indexer.index_node(graph.get_node("about", "live"))
    await stack.node_indexer.flush()

    errors = list(stack.error_handling)
    assert [type(error) for error in errors] == [MalformedBulkRequestError]
    assert await stack.search_client.count("testrepo-default") == 1
    assert len(stack.node_indexer.session) == 0


async def test_invalid_buffer_entry_raises(stack: IndexingStack) -> None:
    stack.node_indexer.session.parts.append("not a part")  # type: ignore[arg-type]

    with pytest.raises(InvalidBulkRequestPartError):
        await stack.node_indexer.flush()


async def test_index_node_fans_out_over_dimensions(
    make_stack: Any,
    dimension_graph: InMemoryContentGraph,
) -> None:
    stack = make_stack(dimension_graph)
    en_index, de_index = await _create_indices(stack)

    await stack.node_indexer.index_node(dimension_graph.get_node("home", "live", {"language": ["en"]}))
    await stack.node_indexer.index_node(dimension_graph.get_node("text", "live", {"language": ["en"]}))
    await stack.node_indexer.flush()

    [en_home] = await _documents(stack.search_client, en_index, "home")
    [de_home] = await _documents(stack.search_client, de_index, "home")
    assert en_home["title"] == "Home"
    assert de_home["title"] == "Startseite"
    assert de_home[K_FULLTEXT]["h1"] == "Startseite"
    assert len(await _documents(stack.search_client, de_index, "text")) == 1


async def test_node_missing_in_combination_is_skipped(
    make_stack: Any,
    dimension_graph: InMemoryContentGraph,
) -> None:
    dimension_graph.add_node(
        "news",
        "Acme:Page",
        name="news",
        parent_id="site",
        dimensions={"language": "de"},
        properties={"title": "Neuigkeiten"},
    )
    stack = make_stack(dimension_graph)
    en_index, de_index = await _create_indices(stack)

    await stack.node_indexer.index_node(dimension_graph.get_node("news", "live", {"language": ["de", "en"]}))
    await stack.node_indexer.flush()

    assert await _documents(stack.search_client, en_index, "news") == []
    assert len(await _documents(stack.search_client, de_index, "news")) == 1


async def test_changed_node_type_replaces_document(stack: IndexingStack) -> None:
    await _create_indices(stack)
    graph = stack.content_graph
    indexer = stack.node_indexer

    await indexer.index_node(graph.get_node("about", "live"))
    await indexer.flush()

    graph.add_node("about", "Acme:Site", name="about", parent_id="site", properties={"title": "About"})
    await indexer.index_node(graph.get_node("about", "live"))
    await indexer.flush()

    [about] = await _documents(stack.search_client, "testrepo-default", "about")
    assert about[K_TYPE_NAME] == "Acme:Site"
