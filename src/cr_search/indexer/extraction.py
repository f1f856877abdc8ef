"""Property and fulltext extraction for node documents."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from cr_search.core.constants import (
    K_DIMENSIONS_HASH,
    K_IDENTIFIER,
    K_LABEL,
    K_PARENT_PATH,
    K_PATH,
    K_TYPE_NAME,
    K_WORKSPACE,
)
from cr_search.core.exceptions import ConfigurationException
from cr_search.core.logging import get_logger
from cr_search.core.models import Node, NodeType
from cr_search.services.dimensions_service import hash_dimensions
from cr_search.text_processing.html_content import extract_html_tags, strip_tags
from cr_search.text_processing.normalize_text import normalize_text

logger = get_logger(__name__)

ValueStrategy = Callable[[Any], Any]
FulltextStrategy = Callable[[Any], dict[str, str]]
UnclassifiedCallback = Callable[[Node, str], None]


def _date_value(value: Any) -> str | None:
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value).isoformat()
        except ValueError:
            logger.warning("Ignoring invalid date value %r", value)
    return None


def _text(value: Any) -> str:
    return normalize_text(str(value)) if value is not None else ""


def _heading(level: str) -> FulltextStrategy:
    def strategy(value: Any) -> dict[str, str]:
        text = strip_tags(str(value)) if value is not None else ""
        return {level: text} if text else {}

    return strategy


DEFAULT_VALUE_STRATEGIES: dict[str, ValueStrategy] = {
    "value": lambda value: value,
    "string": lambda value: None if value is None else str(value),
    "html": lambda value: None if value is None else strip_tags(str(value)),
    "date": _date_value,
}

DEFAULT_FULLTEXT_STRATEGIES: dict[str, FulltextStrategy] = {
    "text": lambda value: {"text": text} if (text := _text(value)) else {},
    "html": lambda value: extract_html_tags(str(value)) if value is not None else {},
    **{level: _heading(level) for level in ("h1", "h2", "h3", "h4", "h5", "h6")},
}


@dataclass
class ExtractionResult:
    """Indexable properties of a node plus its fulltext buckets."""

    properties: dict[str, Any] = field(default_factory=dict)
    fulltext: dict[str, str] = field(default_factory=dict)


class PropertyExtractor:
    """Applies the indexing rules of a node type to a node's properties.

    Strategies are looked up by the names used in the node type's property
    rules; custom strategies can be registered next to the defaults.
    """

    def __init__(
        self,
        value_strategies: Mapping[str, ValueStrategy] | None = None,
        fulltext_strategies: Mapping[str, FulltextStrategy] | None = None,
    ):
        self._value_strategies = {**DEFAULT_VALUE_STRATEGIES, **(value_strategies or {})}
        self._fulltext_strategies = {**DEFAULT_FULLTEXT_STRATEGIES, **(fulltext_strategies or {})}

    def register_value_strategy(self, name: str, strategy: ValueStrategy) -> None:
        self._value_strategies[name] = strategy

    def register_fulltext_strategy(self, name: str, strategy: FulltextStrategy) -> None:
        self._fulltext_strategies[name] = strategy

    def extract(self, node: Node, on_unclassified: UnclassifiedCallback | None = None) -> ExtractionResult:
        """Extract the document properties and fulltext of ``node``.

        Args:
            node: The node materialization to read.
            on_unclassified: Called with the node and property name for every
                property its node type has no indexing rule for.

        Returns:
            The extraction result; unclassified properties are not part of it.
        """
        result = ExtractionResult(properties=self.system_properties(node))
        fulltext: dict[str, list[str]] = {}

        for name, value in node.properties.items():
            rule = node.node_type.properties.get(name)
            if rule is None:
                if on_unclassified is not None:
                    on_unclassified(node, name)
                continue

            if rule.indexing is not None:
                extracted = self._value_strategy(rule.indexing)(value)
                if extracted is not None:
                    result.properties[name] = extracted

            if rule.fulltext is not None:
                for bucket, text in self._fulltext_strategy(rule.fulltext)(value).items():
                    if text:
                        fulltext.setdefault(bucket, []).append(text)

        result.fulltext = {bucket: " ".join(texts) for bucket, texts in fulltext.items()}
        return result

    @staticmethod
    def system_properties(node: Node) -> dict[str, Any]:
        return {
            K_IDENTIFIER: node.aggregate_id,
            K_PATH: node.path,
            K_PARENT_PATH: node.parent_path,
            K_TYPE_NAME: node.node_type.name,
            K_WORKSPACE: node.workspace_name,
            K_DIMENSIONS_HASH: hash_dimensions(node.dimensions),
            K_LABEL: node.label,
        }

    def _value_strategy(self, name: str) -> ValueStrategy:
        try:
            return self._value_strategies[name]
        except KeyError as exc:
            raise ConfigurationException(f"Unknown indexing strategy '{name}'") from exc

    def _fulltext_strategy(self, name: str) -> FulltextStrategy:
        try:
            return self._fulltext_strategies[name]
        except KeyError as exc:
            raise ConfigurationException(f"Unknown fulltext strategy '{name}'") from exc


class NodeTypeIndexingConfiguration:
    """Decides which node types a full rebuild indexes."""

    def __init__(self, rules: Mapping[str, bool] | None = None):
        self._rules = dict(rules or {"*": True})

    def is_indexable(self, node_type: NodeType) -> bool:
        if node_type.name in self._rules:
            return self._rules[node_type.name]
        return self._rules.get("*", False)
