"""Central constants shared across the indexing stack."""

from typing import Final

LIVE_WORKSPACE: Final[str] = "live"

# Dimension hash used when a node or context carries no dimension values.
DEFAULT_DIMENSIONS_HASH: Final[str] = "default"

# Sparse vector slot reserved on every index for fulltext retrieval.
FULLTEXT_SPARSE_VEC = "fulltext-sparse"

# System payload keys.
K_IDENTIFIER: Final[str] = "__identifier"
K_DOCUMENT_IDENTIFIER: Final[str] = "__documentIdentifier"
K_PATH: Final[str] = "__path"
K_PARENT_PATH: Final[str] = "__parentPath"
K_TYPE_NAME: Final[str] = "__typeName"
K_WORKSPACE: Final[str] = "__workspace"
K_DIMENSIONS_HASH: Final[str] = "__dimensionsHash"
K_LABEL: Final[str] = "__label"

# Fulltext payload keys.
K_FULLTEXT: Final[str] = "__fulltext"
K_FULLTEXT_PARTS: Final[str] = "__fulltextParts"

# Bulk protocol actions.
ACTION_INDEX: Final[str] = "index"
ACTION_DELETE: Final[str] = "delete"
ACTION_FULLTEXT: Final[str] = "fulltext"

# Alias registry payload keys.
K_ALIAS: Final[str] = "alias"
K_INDEX: Final[str] = "index"

FULLTEXT_BUCKETS: Final[tuple[str, ...]] = ("h1", "h2", "h3", "h4", "h5", "h6", "text")
