"""Index and alias management on top of Qdrant collections and collection aliases."""

from __future__ import annotations

import uuid
from collections.abc import Sequence

from qdrant_client import models as q

from cr_search.core.constants import K_ALIAS, K_INDEX
from cr_search.core.logging import get_logger
from cr_search.drivers.protocols import AliasAction
from cr_search.services.search_client import SearchClient

logger = get_logger(__name__)

_REGISTRY_NAMESPACE = uuid.UUID("6f1d2c1e-9a47-4f0e-8a55-3c1b2f7d9e10")
_REGISTRY_SCAN_LIMIT = 10_000


class QdrantIndexDriver:
    """Manages physical indices and the aliases pointing at them.

    A Qdrant alias references exactly one collection. Aliases resolving to a single
    index are native aliases, changed in one atomic ``update_collection_aliases``
    call. Aliases spanning several indices are kept as points in an alias registry
    collection instead.
    """

    def __init__(self, search_client: SearchClient):
        self._client = search_client
        self.registry_name = search_client.settings.qdrant_alias_registry

    async def create_index(self, name: str) -> None:
        await self._client.create_collection(name)

    async def delete_index(self, name: str) -> bool:
        """Delete an index together with every alias entry referencing it."""
        if not await self._client.collection_exists(name):
            return False

        native = [alias for alias, collection in await self._client.list_aliases() if collection == name]
        await self._client.update_aliases(
            [q.DeleteAliasOperation(delete_alias=q.DeleteAlias(alias_name=alias)) for alias in native]
        )
        if await self._client.collection_exists(self.registry_name):
            await self._client.delete(
                self.registry_name,
                filter_=q.Filter(must=[q.FieldCondition(key=K_INDEX, match=q.MatchValue(value=name))]),
            )
        return await self._client.delete_collection(name)

    async def index_exists(self, name: str) -> bool:
        return await self._client.collection_exists(name)

    async def all_indices(self) -> list[str]:
        return sorted(name for name in await self._client.list_collections() if name != self.registry_name)

    async def indexes_by_prefix(self, prefix: str) -> list[str]:
        return [name for name in await self.all_indices() if name.startswith(prefix)]

    async def indexes_by_alias(self, alias: str) -> list[str]:
        native = [collection for name, collection in await self._client.list_aliases() if name == alias]
        registered = (await self._registry_entries()).get(alias, set())
        return sorted(set(native) | registered)

    async def alias_actions(self, actions: Sequence[AliasAction]) -> None:
        if not actions:
            return

        native = await self._native_aliases()
        registry = await self._registry_entries()

        targets: dict[str, set[str]] = {}
        for action in actions:
            members = targets.setdefault(
                action.alias,
                ({native[action.alias]} if action.alias in native else set()) | registry.get(action.alias, set()),
            )
            if action.action == "add":
                members.add(action.index)
            else:
                members.discard(action.index)

        alias_operations: list[q.AliasOperations] = []
        stale_entries: list[str] = []
        new_entries: list[q.PointStruct] = []
        for alias, members in targets.items():
            wanted_native = next(iter(members)) if len(members) == 1 else None
            wanted_registry = members if len(members) > 1 else set()

            if native.get(alias) != wanted_native:
                if alias in native:
                    alias_operations.append(q.DeleteAliasOperation(delete_alias=q.DeleteAlias(alias_name=alias)))
                if wanted_native is not None:
                    alias_operations.append(
                        q.CreateAliasOperation(
                            create_alias=q.CreateAlias(collection_name=wanted_native, alias_name=alias)
                        )
                    )

            current_registry = registry.get(alias, set())
            stale_entries.extend(_entry_id(alias, index) for index in current_registry - wanted_registry)
            new_entries.extend(
                q.PointStruct(id=_entry_id(alias, index), payload={K_ALIAS: alias, K_INDEX: index}, vector={})
                for index in sorted(wanted_registry - current_registry)
            )

        if stale_entries or new_entries:
            await self._update_registry(stale_entries, new_entries)
        await self._client.update_aliases(alias_operations)
        logger.info("Applied %d alias actions", len(actions))

    async def _native_aliases(self) -> dict[str, str]:
        return dict(await self._client.list_aliases())

    async def _registry_entries(self) -> dict[str, set[str]]:
        if not await self._client.collection_exists(self.registry_name):
            return {}
        entries: dict[str, set[str]] = {}
        records = await self._client.retrieve_by_filter(self.registry_name, limit=_REGISTRY_SCAN_LIMIT)
        for record in records:
            payload = record.payload or {}
            entries.setdefault(str(payload.get(K_ALIAS)), set()).add(str(payload.get(K_INDEX)))
        return entries

    async def _update_registry(self, stale: list[str], new: list[q.PointStruct]) -> None:
        if not await self._client.collection_exists(self.registry_name):
            await self._client.create_collection(self.registry_name)
        operations: list[q.UpdateOperation] = []
        if stale:
            operations.append(q.DeleteOperation(delete=q.PointIdsList(points=stale)))
        if new:
            operations.append(q.UpsertOperation(upsert=q.PointsList(points=new)))
        await self._client.batch_update(self.registry_name, operations)


def _entry_id(alias: str, index: str) -> str:
    return str(uuid.uuid5(_REGISTRY_NAMESPACE, f"{alias}/{index}"))
