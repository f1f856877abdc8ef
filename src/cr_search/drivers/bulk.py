"""Bulk protocol encoding and the structured per-item bulk response."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from cr_search.core.logging import get_logger

logger = get_logger(__name__)

STATUS_OK = 200
STATUS_BAD_REQUEST = 400
STATUS_FAILED = 500


def encode_operation(operation: dict[str, Any]) -> str | None:
    """Serialize one bulk operation to a single JSON line.

    Returns:
        The line, or None when the operation holds values JSON cannot represent.
    """
    try:
        return json.dumps(operation, ensure_ascii=False, allow_nan=False, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        logger.warning("Bulk operation could not be encoded as JSON: %s", exc)
        return None


@dataclass(frozen=True)
class BulkItemResult:
    """Outcome of one line of a bulk request."""

    line: int
    action: str | None
    document_id: str | None
    status: int = STATUS_OK
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "line": self.line,
            "action": self.action,
            "_id": self.document_id,
            "status": self.status,
            "error": self.error,
        }


@dataclass
class BulkResponse:
    """Per-item response of a bulk call, in request line order."""

    items: list[BulkItemResult] = field(default_factory=list)

    @property
    def errors(self) -> bool:
        return any(not item.ok for item in self.items)

    def failed_items(self) -> list[BulkItemResult]:
        return [item for item in self.items if not item.ok]
