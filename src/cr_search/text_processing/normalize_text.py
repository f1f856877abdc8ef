"""Text normalization for indexed values and fulltext."""

import html
import re
import unicodedata
from collections import deque

from cr_search.core.logging import get_logger

logger = get_logger(__name__)

# Regex patterns compiled once for efficiency
_ZW_PATTERN = re.compile(r"[\u200B-\u200D\uFEFF]")  # Zero-width characters
_WHITESPACE_PATTERN = re.compile(r"\s+")
_EOL_HYPHEN_PATTERN = re.compile(r"(\w)-\n(\w)")


def _replace_control_chars(value: str) -> str:
    """Turn tabs and newlines into spaces and drop other control characters."""
    buffer: deque[str] = deque()
    for ch in value:
        if ch in "\t\n":
            buffer.append(" ")
        elif ch >= " ":
            buffer.append(ch)
    return "".join(buffer)


def normalize_text(value: str) -> str:
    """Normalize a text fragment to one line of searchable text.

    Steps:
        1. Unicode normalization (NFKC) and HTML entity decoding.
        2. Standardize line endings and join hyphenated line breaks.
        3. Remove zero-width and control characters.
        4. Collapse all whitespace runs to one space and trim.

    Args:
        value: Raw text.

    Returns:
        Normalized single-line text.
    """
    if value == "":
        return value

    text = unicodedata.normalize("NFKC", value)
    text = html.unescape(text)

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _EOL_HYPHEN_PATTERN.sub(r"\1\2", text)

    text = _replace_control_chars(text)
    text = _ZW_PATTERN.sub("", text)
    text = _WHITESPACE_PATTERN.sub(" ", text).strip()

    logger.debug("Normalized text length from %d to %d chars", len(value), len(text))
    return text
