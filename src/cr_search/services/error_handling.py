"""Collects non-fatal indexing errors for logging and end-of-run reporting."""

from __future__ import annotations

from collections.abc import Iterator

from cr_search.core.logging import get_logger
from cr_search.indexer.errors import IndexingError

logger = get_logger(__name__)


class ErrorHandlingService:
    """Error sink shared by the indexer and the commands driving it."""

    def __init__(self) -> None:
        self._errors: list[IndexingError] = []

    def log(self, error: IndexingError) -> None:
        self._errors.append(error)
        logger.error("%s: %s", error.__class__.__name__, error.message())

    def has_error(self) -> bool:
        return bool(self._errors)

    def clear(self) -> None:
        self._errors = []

    def __iter__(self) -> Iterator[IndexingError]:
        return iter(list(self._errors))

    def __len__(self) -> int:
        return len(self._errors)
