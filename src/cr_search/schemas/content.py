"""Schemas of the JSON content dump the CLI indexes from."""

from typing import Any

from pydantic import BaseModel, Field


class PropertyDefinition(BaseModel):
    """Indexing rule of one node type property."""

    indexing: str | None = "value"
    fulltext: str | None = None
    mapping_type: str = Field("keyword", alias="mappingType")

    model_config = {"populate_by_name": True}


class NodeTypeDefinition(BaseModel):
    properties: dict[str, PropertyDefinition] = Field(default_factory=dict)
    fulltext_enabled: bool = Field(True, alias="fulltextEnabled")
    fulltext_root: bool = Field(False, alias="fulltextRoot")

    model_config = {"populate_by_name": True}


class WorkspaceDefinition(BaseModel):
    name: str
    base_workspace: str | None = Field(None, alias="baseWorkspace")

    model_config = {"populate_by_name": True}


class NodeDefinition(BaseModel):
    """One stored node variant.

    Example:
    ```json
    {
        "identifier": "a1b2",
        "nodeType": "Acme.Site:Page",
        "name": "about",
        "parent": "site",
        "workspace": "live",
        "dimensions": {"language": "de"},
        "properties": {"title": "Über uns"}
    }
    ```
    """

    identifier: str
    node_type: str = Field(..., alias="nodeType")
    name: str
    parent: str | None = None
    workspace: str = "live"
    dimensions: dict[str, str] = Field(default_factory=dict)
    properties: dict[str, Any] = Field(default_factory=dict)
    removed: bool = False

    model_config = {"populate_by_name": True}


class ContentGraphDefinition(BaseModel):
    """Root of a content dump: dimension presets, node types, workspaces and nodes."""

    dimensions: dict[str, dict[str, list[str]]] = Field(default_factory=dict)
    node_types: dict[str, NodeTypeDefinition] = Field(default_factory=dict, alias="nodeTypes")
    workspaces: list[WorkspaceDefinition] = Field(
        default_factory=lambda: [WorkspaceDefinition(name="live")]
    )
    nodes: list[NodeDefinition] = Field(default_factory=list)

    model_config = {"populate_by_name": True}
