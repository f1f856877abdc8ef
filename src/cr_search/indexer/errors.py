"""Error records reported to the error handling service during indexing."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass
class IndexingError:
    """Base record; subclasses describe one non-fatal indexing problem."""

    created_at: datetime = field(default_factory=lambda: datetime.now(UTC), kw_only=True)

    def message(self) -> str:
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.__class__.__name__,
            "message": self.message(),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class MalformedBulkRequestError(IndexingError):
    """An operation could not be serialized before it left the engine."""

    reason: str
    item: Any = None

    def message(self) -> str:
        return self.reason


@dataclass
class BulkIndexingError(IndexingError):
    """The search engine rejected one item of a bulk request."""

    request: list[str]
    response: dict[str, Any]

    def message(self) -> str:
        error = self.response.get("error") or "unknown error"
        return (
            f"Bulk indexing failed for {self.response.get('action')} "
            f"{self.response.get('_id')}: {error}"
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["response"] = self.response
        return data
