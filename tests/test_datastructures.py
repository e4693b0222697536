"""
Test 15: Core Data Structures (_datastructures.py)

Tests MultiDict, Headers, ParsedContentType and media type negotiation helpers.
"""

import pytest

from arbor._datastructures import (
    Headers,
    MultiDict,
    ParsedContentType,
    best_match,
    coerce_header_value,
    media_type_matches,
    normalize_media_type,
    parse_accept,
)


# ============================================================================
# MultiDict
# ============================================================================

class TestMultiDict:
    """MultiDict - multi-value dictionary for query params and form data."""

    def test_init_from_list(self):
        md = MultiDict([("a", "1"), ("b", "2"), ("a", "3")])
        assert md.get("a") == "1"
        assert md.get_all("a") == ["1", "3"]
        assert md.get("b") == "2"

    def test_init_from_dict(self):
        md = MultiDict({"x": "10", "y": ["20", "30"]})
        assert md.get("x") == "10"
        assert md.get_all("y") == ["20", "30"]

    def test_setitem_replaces(self):
        md = MultiDict([("a", "1"), ("a", "2")])
        md["a"] = "replaced"
        assert md.get_all("a") == ["replaced"]

    def test_missing_keys(self):
        md = MultiDict()
        assert md.get("missing") is None
        assert md.get("missing", "fallback") == "fallback"
        assert md.get_all("missing") == []

    def test_from_query_string(self):
        md = MultiDict.from_query_string(b"a=1&a=2&b=&c=x%20y")
        assert md.to_dict() == {"a": ["1", "2"], "b": "", "c": "x y"}


# ============================================================================
# Headers
# ============================================================================

class TestHeaders:

    @pytest.fixture
    def headers(self):
        return Headers(raw=[
            (b"Content-Type", b"text/plain"),
            (b"X-Tag", b"a"),
            (b"x-tag", b"b"),
        ])

    def test_case_insensitive(self, headers):
        assert headers.get("content-type") == "text/plain"
        assert headers["CONTENT-TYPE"] == "text/plain"
        assert "x-tag" in headers

    def test_get_all(self, headers):
        assert headers.get_all("X-TAG") == ["a", "b"]

    def test_missing(self, headers):
        assert headers.get("accept") is None
        with pytest.raises(KeyError):
            headers["accept"]

    def test_items_are_lowercased(self, headers):
        assert list(headers.items()) == [
            ("content-type", "text/plain"),
            ("x-tag", "a"),
            ("x-tag", "b"),
        ]


# ============================================================================
# Content types
# ============================================================================

class TestParsedContentType:

    def test_parameters(self):
        parsed = ParsedContentType.parse('Text/HTML; Charset="latin-1"')
        assert parsed.media_type == "text/html"
        assert parsed.charset == "latin-1"

    def test_default_charset(self):
        assert ParsedContentType.parse("application/json").charset == "utf-8"

    def test_empty(self):
        assert ParsedContentType.parse(None) is None
        assert ParsedContentType.parse("") is None


class TestMediaTypes:

    @pytest.mark.parametrize("value,expected", [
        ("json", "application/json"),
        (".html", "text/html"),
        ("Text/Plain", "text/plain"),
        ("urlencoded", "application/x-www-form-urlencoded"),
        ("yaml", "application/yaml"),
    ])
    def test_normalize(self, value, expected):
        assert normalize_media_type(value) == expected

    @pytest.mark.parametrize("pattern,media_type,expected", [
        ("*/*", "image/png", True),
        ("text/*", "text/csv", True),
        ("text/*", "application/json", False),
        ("application/json", "application/vnd.api+json", True),
        ("application/json", "application/xml", False),
    ])
    def test_matches(self, pattern, media_type, expected):
        assert media_type_matches(pattern, media_type) is expected

    def test_parse_accept_orders_by_quality(self):
        assert parse_accept("text/html;q=0.5, application/json") == [
            ("application/json", 1.0),
            ("text/html", 0.5),
        ]
        assert parse_accept(None) == [("*/*", 1.0)]

    def test_best_match(self):
        assert best_match(["json", "html"], "text/html") == "html"
        assert best_match(["json"], None) == "json"
        assert best_match(["json"], "text/*") is None
        assert best_match(["text"], "text/*;q=0") is None

    def test_coerce_header_value(self):
        assert coerce_header_value(["a", "b"]) == "a, b"
        assert coerce_header_value(5) == "5"
