"""Read interface onto the content graph plus an in-memory implementation."""

from __future__ import annotations

import itertools
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Protocol

from cr_search.content.dimensions import ContentDimensionCombinator
from cr_search.core.constants import LIVE_WORKSPACE
from cr_search.core.logging import get_logger
from cr_search.core.models import (
    DimensionCombination,
    DimensionValues,
    Node,
    NodeType,
    PropertyIndexing,
    Workspace,
    target_values,
)
from cr_search.schemas.content import ContentGraphDefinition

logger = get_logger(__name__)

_OriginKey = tuple[tuple[str, str], ...]


class ContentGraphReader(Protocol):
    """What the indexer needs from the content repository."""

    def get_node(
        self,
        identifier: str,
        workspace_name: str,
        dimensions: DimensionCombination | None = None,
    ) -> Node | None:
        """Resolve a node inside a workspace and dimension context, None if absent or removed."""
        ...

    def get_parent(self, node: Node) -> Node | None: ...

    def get_all_allowed_combinations(self) -> list[DimensionCombination]: ...

    def workspaces(self) -> list[Workspace]: ...

    def find_workspace(self, name: str) -> Workspace | None: ...

    def find_nodes(
        self,
        workspace_name: str,
        dimensions: DimensionCombination | None = None,
    ) -> Iterator[Node]: ...


@dataclass
class NodeRecord:
    """A node variant as stored in one workspace with one origin dimension point."""

    aggregate_id: str
    node_type: str
    workspace_name: str
    name: str
    parent_id: str | None = None
    origin: DimensionValues = field(default_factory=dict)
    properties: dict[str, Any] = field(default_factory=dict)
    removed: bool = False

    @property
    def origin_key(self) -> _OriginKey:
        return _origin_key(self.origin)


def _origin_key(values: Mapping[str, str]) -> _OriginKey:
    return tuple(sorted(values.items()))


class InMemoryContentGraph:
    """Content graph held in memory.

    Nodes are resolved through the workspace base chain (nearest workspace wins,
    a removed variant hides the node from that workspace on) and through
    dimension fallback (the preference-ranked values are tried in order).
    """

    def __init__(
        self,
        node_types: Mapping[str, NodeType],
        workspaces: Sequence[Workspace] | None = None,
        combinator: ContentDimensionCombinator | None = None,
    ):
        self.node_types = dict(node_types)
        self._workspaces = {
            workspace.name: workspace for workspace in (workspaces or [Workspace(LIVE_WORKSPACE)])
        }
        self.combinator = combinator or ContentDimensionCombinator()
        self._records: dict[tuple[str, str, _OriginKey], NodeRecord] = {}

    @classmethod
    def from_definition(cls, definition: ContentGraphDefinition) -> InMemoryContentGraph:
        node_types = {
            name: NodeType(
                name=name,
                properties={
                    property_name: PropertyIndexing(
                        indexing=rule.indexing,
                        fulltext=rule.fulltext,
                        mapping_type=rule.mapping_type,
                    )
                    for property_name, rule in type_definition.properties.items()
                },
                fulltext_enabled=type_definition.fulltext_enabled,
                fulltext_root=type_definition.fulltext_root,
            )
            for name, type_definition in definition.node_types.items()
        }
        graph = cls(
            node_types,
            workspaces=[Workspace(w.name, w.base_workspace) for w in definition.workspaces],
            combinator=ContentDimensionCombinator(definition.dimensions),
        )
        for node in definition.nodes:
            graph.add_node(
                node.identifier,
                node.node_type,
                name=node.name,
                parent_id=node.parent,
                workspace_name=node.workspace,
                dimensions=node.dimensions,
                properties=node.properties,
                removed=node.removed,
            )
        return graph

    @classmethod
    def from_file(cls, path: Path) -> InMemoryContentGraph:
        definition = ContentGraphDefinition.model_validate_json(Path(path).read_text(encoding="utf-8"))
        graph = cls.from_definition(definition)
        logger.info("Loaded %d node variants from %s", len(graph._records), path)
        return graph

    # Reading

    def get_all_allowed_combinations(self) -> list[DimensionCombination]:
        return self.combinator.get_all_allowed_combinations()

    def workspaces(self) -> list[Workspace]:
        return list(self._workspaces.values())

    def find_workspace(self, name: str) -> Workspace | None:
        return self._workspaces.get(name)

    def get_node(
        self,
        identifier: str,
        workspace_name: str,
        dimensions: DimensionCombination | None = None,
        *,
        include_removed: bool = False,
    ) -> Node | None:
        record = self._resolve(identifier, workspace_name, dimensions)
        if record is None or (record.removed and not include_removed):
            return None
        return self._materialize(record, workspace_name, dimensions)

    def get_parent(self, node: Node) -> Node | None:
        if node.parent_id is None:
            return None
        return self.get_node(node.parent_id, node.workspace_name, self._combination_for(node.dimensions))

    def find_nodes(
        self,
        workspace_name: str,
        dimensions: DimensionCombination | None = None,
    ) -> Iterator[Node]:
        """Yield every node visible in the context, parents before children."""
        chain = self._workspace_chain(workspace_name)
        identifiers = dict.fromkeys(
            record.aggregate_id for record in self._records.values() if record.workspace_name in chain
        )
        nodes = [
            node
            for node in (self.get_node(identifier, workspace_name, dimensions) for identifier in identifiers)
            if node is not None
        ]
        nodes.sort(key=lambda node: (node.path.count("/"), node.path))
        yield from nodes

    def node_path(self, identifier: str, workspace_name: str, dimensions: DimensionCombination | None = None) -> str | None:
        record = self._resolve(identifier, workspace_name, dimensions)
        if record is None or record.removed:
            return None
        return self._path(record, workspace_name, dimensions)

    # Writing

    def add_node(
        self,
        identifier: str,
        node_type: str,
        *,
        name: str,
        parent_id: str | None = None,
        workspace_name: str = LIVE_WORKSPACE,
        dimensions: Mapping[str, str] | None = None,
        properties: Mapping[str, Any] | None = None,
        removed: bool = False,
    ) -> NodeRecord:
        if node_type not in self.node_types:
            raise KeyError(f"Unknown node type '{node_type}'")
        if workspace_name not in self._workspaces:
            raise KeyError(f"Unknown workspace '{workspace_name}'")
        record = NodeRecord(
            aggregate_id=identifier,
            node_type=node_type,
            workspace_name=workspace_name,
            name=name,
            parent_id=parent_id,
            origin=dict(dimensions or {}),
            properties=dict(properties or {}),
            removed=removed,
        )
        self._records[(identifier, workspace_name, record.origin_key)] = record
        return record

    def set_properties(
        self,
        identifier: str,
        properties: Mapping[str, Any],
        *,
        workspace_name: str = LIVE_WORKSPACE,
        dimensions: Mapping[str, str] | None = None,
    ) -> None:
        record = self._writable(identifier, workspace_name, dimensions)
        record.properties.update(properties)

    def move_node(self, identifier: str, new_parent_id: str, *, workspace_name: str = LIVE_WORKSPACE) -> None:
        """Move every variant of the node below another parent."""
        origins = {
            record.origin_key: record.origin
            for record in self._records.values()
            if record.aggregate_id == identifier and record.workspace_name in self._workspace_chain(workspace_name)
        }
        if not origins:
            raise KeyError(f"Node '{identifier}' not found in workspace '{workspace_name}'")
        for origin in origins.values():
            self._writable(identifier, workspace_name, origin).parent_id = new_parent_id

    def remove_node(
        self,
        identifier: str,
        *,
        workspace_name: str = LIVE_WORKSPACE,
        dimensions: Mapping[str, str] | None = None,
    ) -> Node:
        """Mark a node variant removed and return its (removed) materialization."""
        record = self._writable(identifier, workspace_name, dimensions)
        node = self._materialize(record, workspace_name, None)
        record.removed = True
        return replace(node, removed=True)

    # Internals

    def _workspace_chain(self, workspace_name: str) -> list[str]:
        chain: list[str] = []
        current: str | None = workspace_name
        while current is not None and current not in chain:
            chain.append(current)
            workspace = self._workspaces.get(current)
            current = workspace.base_workspace if workspace else None
        return chain

    def _candidate_origins(self, dimensions: DimensionCombination | None) -> list[_OriginKey]:
        if not dimensions:
            return [()]
        names = sorted(dimensions)
        ranked = [list(dimensions[name]) if not isinstance(dimensions[name], str) else [dimensions[name]] for name in names]
        return [_origin_key(dict(zip(names, values, strict=True))) for values in itertools.product(*ranked)]

    def _resolve(
        self,
        identifier: str,
        workspace_name: str,
        dimensions: DimensionCombination | None,
    ) -> NodeRecord | None:
        for workspace in self._workspace_chain(workspace_name):
            for origin in self._candidate_origins(dimensions):
                record = self._records.get((identifier, workspace, origin))
                if record is not None:
                    return record
        return None

    def _writable(self, identifier: str, workspace_name: str, dimensions: Mapping[str, str] | None) -> NodeRecord:
        origin = _origin_key(dimensions or {})
        record = self._records.get((identifier, workspace_name, origin))
        if record is not None:
            return record
        for workspace in self._workspace_chain(workspace_name)[1:]:
            base = self._records.get((identifier, workspace, origin))
            if base is not None:
                # Copy on write into the requested workspace
                copy = replace(base, workspace_name=workspace_name, properties=dict(base.properties))
                self._records[(identifier, workspace_name, origin)] = copy
                return copy
        raise KeyError(f"Node '{identifier}' not found in workspace '{workspace_name}'")

    def _combination_for(self, values: Mapping[str, str]) -> DimensionCombination | None:
        if not values:
            return None
        for combination in self.get_all_allowed_combinations():
            if target_values(combination) == dict(values):
                return combination
        return {name: [value] for name, value in values.items()}

    def _path(self, record: NodeRecord, workspace_name: str, dimensions: DimensionCombination | None) -> str:
        segments = [record.name]
        seen = {record.aggregate_id}
        parent_id = record.parent_id
        while parent_id is not None and parent_id not in seen:
            seen.add(parent_id)
            parent = self._resolve(parent_id, workspace_name, dimensions)
            if parent is None:
                break
            segments.append(parent.name)
            parent_id = parent.parent_id
        return "/" + "/".join(reversed(segments))

    def _materialize(
        self,
        record: NodeRecord,
        workspace_name: str,
        dimensions: DimensionCombination | None,
    ) -> Node:
        return Node(
            aggregate_id=record.aggregate_id,
            node_type=self.node_types[record.node_type],
            workspace_name=workspace_name,
            path=self._path(record, workspace_name, dimensions),
            name=record.name,
            parent_id=record.parent_id,
            dimensions=target_values(dimensions) if dimensions else dict(record.origin),
            origin_dimensions=dict(record.origin),
            properties=dict(record.properties),
            removed=record.removed,
        )
