"""Deterministic document and point identifiers."""

import hashlib
import uuid

from cr_search.core.models import Node, target_context_path


def calculate_document_identifier(node: Node, target_workspace_name: str | None = None) -> str:
    """Return the stable identifier of the document representing ``node``.

    Args:
        node: The node materialization being indexed.
        target_workspace_name: Workspace the node is being published to, if any.

    Returns:
        SHA1 hex digest of the (target) context path.
    """
    context_path = node.context_path
    if target_workspace_name is not None:
        context_path = target_context_path(node, target_workspace_name)
    return hashlib.sha1(context_path.encode("utf-8")).hexdigest()


def point_id(document_identifier: str) -> str:
    """Map a document identifier onto the UUID the search engine stores it under."""
    digest = hashlib.sha1(document_identifier.encode("utf-8")).hexdigest()
    return str(uuid.UUID(hex=digest[:32]))
