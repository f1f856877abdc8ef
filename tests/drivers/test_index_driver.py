"""Tests for the index and alias driver."""

from __future__ import annotations

import pytest

from cr_search.drivers.index_driver import QdrantIndexDriver
from cr_search.drivers.protocols import AliasAction
from cr_search.services.search_client import SearchClient

pytestmark = pytest.mark.asyncio


async def _driver_with_indices(search_client: SearchClient, *names: str) -> QdrantIndexDriver:
    driver = QdrantIndexDriver(search_client)
    for name in names:
        await driver.create_index(name)
    return driver


async def test_create_and_list_indices(search_client: SearchClient) -> None:
    driver = await _driver_with_indices(search_client, "repo-b-1", "repo-a-1", "other-a-1")

    assert await driver.index_exists("repo-a-1")
    assert not await driver.index_exists("repo-c-1")
    assert await driver.all_indices() == ["other-a-1", "repo-a-1", "repo-b-1"]
    assert await driver.indexes_by_prefix("repo-") == ["repo-a-1", "repo-b-1"]


async def test_single_target_alias_is_native(search_client: SearchClient) -> None:
    driver = await _driver_with_indices(search_client, "repo-a-1", "repo-a-2")

    await driver.alias_actions([AliasAction.add("repo-a-1", "repo-a")])
    assert await search_client.list_aliases() == [("repo-a", "repo-a-1")]

    await driver.alias_actions([AliasAction.remove("repo-a-1", "repo-a"), AliasAction.add("repo-a-2", "repo-a")])
    assert await search_client.list_aliases() == [("repo-a", "repo-a-2")]
    assert await driver.indexes_by_alias("repo-a") == ["repo-a-2"]


async def test_multi_target_alias_uses_registry(search_client: SearchClient) -> None:
    driver = await _driver_with_indices(search_client, "repo-a-1", "repo-b-1")

    await driver.alias_actions([AliasAction.add("repo-a-1", "repo"), AliasAction.add("repo-b-1", "repo")])

    assert await driver.indexes_by_alias("repo") == ["repo-a-1", "repo-b-1"]
    assert await search_client.list_aliases() == []
    assert driver.registry_name not in await driver.all_indices()

    await driver.alias_actions([AliasAction.remove("repo-a-1", "repo")])

    assert await driver.indexes_by_alias("repo") == ["repo-b-1"]
    assert await search_client.list_aliases() == [("repo", "repo-b-1")]
    assert await search_client.count(driver.registry_name) == 0


async def test_delete_index_drops_alias_entries(search_client: SearchClient) -> None:
    driver = await _driver_with_indices(search_client, "repo-a-1", "repo-b-1")
    await driver.alias_actions(
        [
            AliasAction.add("repo-a-1", "repo-a"),
            AliasAction.add("repo-a-1", "repo"),
            AliasAction.add("repo-b-1", "repo"),
        ]
    )

    assert await driver.delete_index("repo-a-1")

    assert await driver.indexes_by_alias("repo-a") == []
    assert await driver.indexes_by_alias("repo") == ["repo-b-1"]
    assert not await driver.delete_index("repo-a-1")


async def test_unknown_alias_has_no_indices(search_client: SearchClient) -> None:
    driver = QdrantIndexDriver(search_client)

    assert await driver.indexes_by_alias("missing") == []
    await driver.alias_actions([])
