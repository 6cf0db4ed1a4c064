"""Tests for HTML field extraction."""

from seocrawl.extraction import content_hash, extract_fields

PAGE_HTML = """
<html>
<head>
    <title> Widgets | Example </title>
    <meta name="description" content="All about widgets">
    <meta name="keywords" content="widgets, gadgets">
    <meta name="robots" content="index, follow">
    <meta property="og:title" content="Widgets">
    <link rel="canonical" href="https://example.com/widgets">
    <script type="application/ld+json">{"@type": "Product", "name": "Widget"}</script>
    <script type="application/ld+json">{not json}</script>
    <style>body { color: red; }</style>
</head>
<body>
    <h1>Widgets</h1>
    <h2>Blue widgets</h2>
    <h2>Red widgets</h2>
    <nav itemscope itemtype="https://schema.org/BreadcrumbList"></nav>
    <p>Widgets are great for everyone.</p>
    <a href="/about">About</a>
    <a href="https://partner.com/" rel="nofollow sponsored" target="_blank">Partner</a>
    <a href="mailto:sales@example.com">Mail</a>
    <a href="javascript:void(0)">Menu</a>
    <a href="tel:+15555555">Call</a>
    <img src="/img/w.png" alt="A widget" width="10">
    <script>var hidden = "do not index";</script>
</body>
</html>
"""


class TestExtractFields:
    """Tests for extract_fields."""

    def test_title_and_meta(self):
        fields = extract_fields(PAGE_HTML, "https://example.com/widgets")

        assert fields.title == "Widgets | Example"
        assert fields.meta_description == "All about widgets"
        assert fields.metadata_tags["keywords"] == "widgets, gadgets"
        assert fields.metadata_tags["og:title"] == "Widgets"
        assert fields.robots == "index, follow"
        assert fields.canonical == "https://example.com/widgets"

    def test_headings(self):
        fields = extract_fields(PAGE_HTML, "https://example.com/widgets")

        assert fields.headings["h1"] == ["Widgets"]
        assert fields.headings["h2"] == ["Blue widgets", "Red widgets"]
        assert fields.headings["h3"] == []

    def test_links_are_resolved_and_filtered(self):
        """Test that non-navigational schemes are skipped."""
        fields = extract_fields(PAGE_HTML, "https://example.com/widgets")
        hrefs = [link["href"] for link in fields.links]

        assert hrefs == ["https://example.com/about", "https://partner.com/"]
        assert fields.links[0]["nofollow"] is False
        assert fields.links[1]["nofollow"] is True
        assert fields.links[1]["target"] == "_blank"

    def test_structured_data_skips_invalid_json(self):
        fields = extract_fields(PAGE_HTML, "https://example.com/widgets")

        assert fields.structured_data == [{"@type": "Product", "name": "Widget"}]

    def test_images(self):
        fields = extract_fields(PAGE_HTML, "https://example.com/widgets")

        assert fields.images[0]["src"] == "https://example.com/img/w.png"
        assert fields.images[0]["alt"] == "A widget"

    def test_content_text_excludes_scripts(self):
        fields = extract_fields(PAGE_HTML, "https://example.com/widgets")

        assert "Widgets are great" in fields.content_text
        assert "do not index" not in fields.content_text
        assert "color: red" not in fields.content_text
        assert fields.word_count == len(fields.content_text.split())

    def test_breadcrumbs(self):
        fields = extract_fields(PAGE_HTML, "https://example.com/widgets")

        assert fields.has_breadcrumbs is True

    def test_malformed_urls_are_skipped(self):
        """Test that one unparseable href or src does not lose the page."""
        html = (
            '<a href="/a">ok</a><a href="http://[broken">bad</a>'
            '<img src="http://[broken" alt="bad"><img src="/logo.png" alt="logo">'
        )

        fields = extract_fields(html, "https://example.com/")

        assert [link["href"] for link in fields.links] == ["https://example.com/a"]
        assert [img["src"] for img in fields.images] == ["https://example.com/logo.png"]

    def test_empty_document(self):
        fields = extract_fields("", "https://example.com/")

        assert fields.title is None
        assert fields.links == []
        assert fields.content_text == ""


def test_content_hash():
    assert content_hash("abc") == content_hash("abc")
    assert content_hash("abc") != content_hash("abd")
    assert len(content_hash("")) == 64
