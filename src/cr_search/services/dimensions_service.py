"""Stable hashing of dimension combinations and the per-flush dimension registry."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any

from cr_search.core.constants import DEFAULT_DIMENSIONS_HASH
from cr_search.core.logging import get_logger
from cr_search.core.models import DimensionValues, Node, target_values

logger = get_logger(__name__)

_HASH_LENGTH = 32


def hash_dimensions(combination: Mapping[str, Any] | None) -> str:
    """Compute the partition hash of a dimension combination.

    Only the target value of each dimension is significant, so
    ``{"language": ["de", "en"]}`` and ``{"language": "de"}`` share a hash.
    Dimension order does not matter.

    Args:
        combination: Dimension name to value or preference-ranked values.

    Returns:
        ``"default"`` for an empty combination, otherwise a hex digest prefix.
    """
    values = target_values(combination)
    if not values:
        return DEFAULT_DIMENSIONS_HASH
    encoded = json.dumps(values, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:_HASH_LENGTH]


class DimensionsService:
    """Hashes dimension combinations and remembers every hash seen since the last reset."""

    def __init__(self) -> None:
        self._registry: dict[str, DimensionValues] = {}

    def hash(self, combination: Mapping[str, Any] | None) -> str:
        """Hash a combination and record it in the registry."""
        dimensions_hash = hash_dimensions(combination)
        if dimensions_hash not in self._registry:
            self._registry[dimensions_hash] = target_values(combination)
            logger.debug("Registered dimensions hash %s", dimensions_hash)
        return dimensions_hash

    def hash_by_node(self, node: Node) -> str:
        """Hash the dimension values the node is materialized in."""
        return self.hash(node.dimensions)

    def get_dimensions_registry(self) -> dict[str, DimensionValues]:
        return dict(self._registry)

    def forget(self, dimensions_hash: str) -> None:
        self._registry.pop(dimensions_hash, None)

    def reset(self) -> None:
        self._registry = {}
