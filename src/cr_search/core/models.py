"""Domain models for content nodes and the documents derived from them."""

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from cr_search.core.constants import K_DOCUMENT_IDENTIFIER, K_TYPE_NAME

# Dimension name -> preference-ranked values, e.g. {"language": ["de", "en"]}.
DimensionCombination = dict[str, list[str]]

# Dimension name -> the single value a materialization is presented in.
DimensionValues = dict[str, str]


@dataclass(frozen=True)
class PropertyIndexing:
    """How one node type property ends up in the index."""

    indexing: str | None = "value"
    fulltext: str | None = None
    mapping_type: str = "keyword"


@dataclass(frozen=True)
class NodeType:
    """Schema of a node: indexing rules per property plus fulltext behaviour."""

    name: str
    properties: Mapping[str, PropertyIndexing] = field(default_factory=dict)
    fulltext_enabled: bool = True
    fulltext_root: bool = False


@dataclass(frozen=True)
class Workspace:
    """A named revision line of the content graph."""

    name: str
    base_workspace: str | None = None


@dataclass(frozen=True)
class Node:
    """A point-in-time materialization of a node in one workspace and dimension context.

    ``dimensions`` holds the values the node is presented in (the context's target
    dimensions), ``origin_dimensions`` the values it is actually stored with. They
    differ when the node is visible through dimension fallback.
    """

    aggregate_id: str
    node_type: NodeType
    workspace_name: str
    path: str
    name: str = ""
    parent_id: str | None = None
    dimensions: Mapping[str, str] = field(default_factory=dict)
    origin_dimensions: Mapping[str, str] | None = None
    properties: Mapping[str, Any] = field(default_factory=dict)
    removed: bool = False

    @property
    def context_path(self) -> str:
        return build_context_path(self.aggregate_id, self.workspace_name, self.dimensions)

    @property
    def parent_path(self) -> str:
        parent, _, _ = self.path.rpartition("/")
        return parent or "/"

    @property
    def label(self) -> str:
        title = self.properties.get("title")
        if isinstance(title, str) and title:
            return title
        return self.name or self.aggregate_id

    def in_context(self, workspace_name: str, dimensions: Mapping[str, str]) -> "Node":
        """Return the same node presented in another workspace and dimension context."""
        return replace(self, workspace_name=workspace_name, dimensions=dict(dimensions))


def build_context_path(
    aggregate_id: str,
    workspace_name: str,
    dimensions: Mapping[str, str] | None = None,
) -> str:
    """Compose the context path identifying one materialization of a node."""
    context_path = f"{aggregate_id}@{workspace_name}"
    if dimensions:
        encoded = "&".join(f"{name}={dimensions[name]}" for name in sorted(dimensions))
        context_path += f";{encoded}"
    return context_path


def target_context_path(node: Node, target_workspace_name: str) -> str:
    """Context path of ``node`` as it will look once it lives in the target workspace."""
    return build_context_path(node.aggregate_id, target_workspace_name, node.dimensions)


def target_values(combination: Mapping[str, Any] | None) -> DimensionValues:
    """Reduce preference-ranked dimension values to the first (target) value per dimension."""
    values: DimensionValues = {}
    for name, ranked in (combination or {}).items():
        if isinstance(ranked, str):
            values[name] = ranked
            continue
        candidates = [value for value in ranked if value]
        if candidates:
            values[name] = str(candidates[0])
    return values


@dataclass
class IndexDocument:
    """A search document about to be written for a node."""

    identifier: str
    type_name: str
    properties: dict[str, Any] = field(default_factory=dict)

    def get_data(self) -> dict[str, Any]:
        data = dict(self.properties)
        data[K_DOCUMENT_IDENTIFIER] = self.identifier
        data[K_TYPE_NAME] = self.type_name
        return data
