"""Enumeration of the allowed dimension combinations."""

from __future__ import annotations

import itertools
from collections.abc import Mapping, Sequence

from cr_search.core.models import DimensionCombination


class ContentDimensionCombinator:
    """Builds every allowed combination from per-dimension presets.

    ``presets`` maps a dimension name to its presets, each preset being the
    preference-ranked list of values, e.g.
    ``{"language": {"en": ["en"], "de": ["de", "en"]}}``.
    """

    def __init__(self, presets: Mapping[str, Mapping[str, Sequence[str]]] | None = None):
        self._presets = {
            dimension: {preset: list(values) for preset, values in dimension_presets.items()}
            for dimension, dimension_presets in (presets or {}).items()
        }

    @property
    def dimension_names(self) -> list[str]:
        return list(self._presets)

    def get_all_allowed_combinations(self) -> list[DimensionCombination]:
        if not self._presets:
            return []
        names = list(self._presets)
        choices = [list(self._presets[name].values()) for name in names]
        return [
            {name: list(values) for name, values in zip(names, combination, strict=True)}
            for combination in itertools.product(*choices)
        ]
