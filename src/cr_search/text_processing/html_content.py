"""HTML helpers: tag stripping and heading-aware fulltext buckets."""

from bs4 import BeautifulSoup, Comment, NavigableString

from cr_search.text_processing.normalize_text import normalize_text

_HEADINGS = ["h1", "h2", "h3", "h4", "h5", "h6"]
_SKIPPED = ["script", "style", "template"]


def strip_tags(value: str) -> str:
    """Return the visible text of an HTML fragment."""
    if not value:
        return ""
    soup = BeautifulSoup(value, "html.parser")
    for element in soup.find_all(_SKIPPED):
        element.decompose()
    return normalize_text(soup.get_text(" "))


def extract_html_tags(value: str) -> dict[str, str]:
    """Split an HTML fragment into fulltext buckets.

    Heading text goes to the bucket of its level (``h1``..``h6``), all other
    text to ``text``. Empty buckets are left out.

    Args:
        value: HTML fragment.

    Returns:
        Bucket name to normalized text.
    """
    if not value:
        return {}

    soup = BeautifulSoup(value, "html.parser")
    buckets: dict[str, list[str]] = {}
    for element in soup.find_all(_SKIPPED):
        element.decompose()

    for heading in soup.find_all(_HEADINGS):
        buckets.setdefault(heading.name, []).append(heading.get_text(" "))
        heading.decompose()

    buckets.setdefault("text", []).extend(
        str(string)
        for string in soup.descendants
        if isinstance(string, NavigableString) and not isinstance(string, Comment)
    )

    result: dict[str, str] = {}
    for bucket, fragments in buckets.items():
        text = normalize_text(" ".join(fragments))
        if text:
            result[bucket] = text
    return result


__all__ = ["extract_html_tags", "strip_tags"]
