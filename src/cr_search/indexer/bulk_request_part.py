"""Value type pairing a dimension hash with a fragment of bulk payload lines."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class BulkRequestPart:
    """Serialized operations of one node operation, tagged with their partition.

    A ``None`` line stands for an operation that could not be serialized; it is
    skipped at flush time.
    """

    target_dimensions_hash: str
    request: tuple[str | None, ...]
    size: int = field(init=False)

    def __post_init__(self) -> None:
        lines = tuple(self.request)
        object.__setattr__(self, "request", lines)
        object.__setattr__(
            self,
            "size",
            sum(len(line.encode("utf-8")) for line in lines if line is not None),
        )
