"""Tests for HTML stripping and fulltext bucket extraction."""

from cr_search.text_processing.html_content import extract_html_tags, strip_tags


def test_strip_tags() -> None:
    assert strip_tags("<p>Hello <b>bold</b>&nbsp;world</p>") == "Hello bold world"
    assert strip_tags("") == ""


def test_strip_tags_drops_scripts_and_styles() -> None:
    value = "<style>p {color: red}</style><p>Visible</p><script>alert(1)</script>"

    assert strip_tags(value) == "Visible"


def test_extract_headings_into_buckets() -> None:
    value = "<h1>Title</h1><p>Intro</p><h2>Part one</h2><p>Body</p><h2>Part two</h2>"

    assert extract_html_tags(value) == {
        "h1": "Title",
        "h2": "Part one Part two",
        "text": "Intro Body",
    }


def test_extract_plain_text() -> None:
    assert extract_html_tags("just text") == {"text": "just text"}


def test_extract_skips_comments_and_empty_buckets() -> None:
    value = "<!-- hidden --><h3> </h3><div>Shown</div>"

    assert extract_html_tags(value) == {"text": "Shown"}
    assert extract_html_tags("") == {}
