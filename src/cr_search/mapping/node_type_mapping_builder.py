"""Payload index mappings derived from node type indexing rules."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from qdrant_client import models as q

from cr_search.core.constants import (
    K_DIMENSIONS_HASH,
    K_DOCUMENT_IDENTIFIER,
    K_FULLTEXT,
    K_IDENTIFIER,
    K_PARENT_PATH,
    K_PATH,
    K_TYPE_NAME,
    K_WORKSPACE,
)
from cr_search.core.logging import get_logger
from cr_search.core.models import NodeType
from cr_search.services.search_client import Index

logger = get_logger(__name__)

MAPPING_TYPES: dict[str, q.PayloadSchemaType] = {
    "keyword": q.PayloadSchemaType.KEYWORD,
    "text": q.PayloadSchemaType.TEXT,
    "integer": q.PayloadSchemaType.INTEGER,
    "float": q.PayloadSchemaType.FLOAT,
    "boolean": q.PayloadSchemaType.BOOL,
    "date": q.PayloadSchemaType.DATETIME,
    "geo": q.PayloadSchemaType.GEO,
}

SYSTEM_MAPPING: dict[str, q.PayloadSchemaType] = {
    K_IDENTIFIER: q.PayloadSchemaType.KEYWORD,
    K_DOCUMENT_IDENTIFIER: q.PayloadSchemaType.KEYWORD,
    K_PATH: q.PayloadSchemaType.KEYWORD,
    K_PARENT_PATH: q.PayloadSchemaType.KEYWORD,
    K_TYPE_NAME: q.PayloadSchemaType.KEYWORD,
    K_WORKSPACE: q.PayloadSchemaType.KEYWORD,
    K_DIMENSIONS_HASH: q.PayloadSchemaType.KEYWORD,
    f"{K_FULLTEXT}.text": q.PayloadSchemaType.TEXT,
}


@dataclass
class Mapping:
    """Payload fields of one node type and the schema each is indexed with."""

    node_type: str
    properties: dict[str, q.PayloadSchemaType] = field(default_factory=dict)

    def to_dict(self) -> dict[str, str]:
        return {name: schema.value for name, schema in self.properties.items()}

    async def apply(self, index: Index) -> None:
        for field_name, schema in self.properties.items():
            await index.create_payload_index(field_name, schema)
        logger.debug("Applied mapping of %s to '%s'", self.node_type, index.name)


class NodeTypeMappingBuilder:
    """Builds one mapping per node type, collecting problems instead of raising."""

    def __init__(self) -> None:
        self.last_mapping_errors: list[str] = []

    def build_mapping_information(self, node_types: Iterable[NodeType]) -> list[Mapping]:
        self.last_mapping_errors = []
        seen: dict[str, tuple[str, q.PayloadSchemaType]] = {}
        mappings: list[Mapping] = []

        for node_type in sorted(node_types, key=lambda node_type: node_type.name):
            mapping = Mapping(node_type.name, dict(SYSTEM_MAPPING))
            for property_name, rule in node_type.properties.items():
                if rule.indexing is None:
                    continue

                schema = MAPPING_TYPES.get(rule.mapping_type)
                if schema is None:
                    self.last_mapping_errors.append(
                        f"{node_type.name}: unknown mapping type '{rule.mapping_type}' for property '{property_name}'"
                    )
                    continue

                first = seen.setdefault(property_name, (node_type.name, schema))
                if first[1] != schema:
                    self.last_mapping_errors.append(
                        f"{node_type.name}: property '{property_name}' is mapped as {schema.value}, "
                        f"but {first[0]} maps it as {first[1].value}"
                    )
                    continue
                mapping.properties[property_name] = schema
            mappings.append(mapping)

        for error in self.last_mapping_errors:
            logger.warning("Mapping error: %s", error)
        return mappings
