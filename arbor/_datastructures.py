"""
Core data structures for Arbor request handling.

Provides:
- MultiDict: Multi-value dictionary for query strings and form data
- Headers: Case-insensitive header access over raw ASGI headers
- ParsedContentType: Content-Type parsing helper
- media type matching used by ``accepts`` and ``is_``
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import (
    Any, Dict, Iterator, List, Mapping, MutableMapping,
    Optional, Tuple, Union
)
from urllib.parse import parse_qsl


# ============================================================================
# MultiDict
# ============================================================================

class MultiDict(MutableMapping[str, List[str]]):
    """
    Dictionary that supports multiple values per key.

    Used for query parameters and form data where keys can repeat.
    """

    def __init__(self, items: Optional[Union[List[Tuple[str, str]], Mapping[str, Union[str, List[str]]]]] = None):
        self._data: Dict[str, List[str]] = {}

        if items:
            if isinstance(items, list):
                for key, value in items:
                    self.add(key, value)
            else:
                for key, value in items.items():
                    self[key] = list(value) if isinstance(value, list) else value

    @classmethod
    def from_query_string(cls, query_string: Union[str, bytes]) -> "MultiDict":
        """Parse ``a=1&a=2&b=3`` style strings."""
        if isinstance(query_string, bytes):
            query_string = query_string.decode("latin-1")
        return cls(parse_qsl(query_string, keep_blank_values=True))

    def __getitem__(self, key: str) -> List[str]:
        return self._data[key]

    def __setitem__(self, key: str, value: Union[str, List[str]]) -> None:
        self._data[key] = value if isinstance(value, list) else [value]

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"MultiDict({dict(self._data)})"

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get first value for a key."""
        values = self._data.get(key)
        return values[0] if values else default

    def get_all(self, key: str) -> List[str]:
        """Get all values for a key."""
        return self._data.get(key, [])

    def add(self, key: str, value: str) -> None:
        """Add a value to a key (appends to list)."""
        self._data.setdefault(key, []).append(value)

    def to_dict(self) -> Dict[str, Union[str, List[str]]]:
        """
        Convert to a plain dict.

        Keys with a single value map to that value, repeated keys map to
        the list of their values.
        """
        return {k: v[0] if len(v) == 1 else list(v) for k, v in self._data.items() if v}


# ============================================================================
# Headers
# ============================================================================

@dataclass
class Headers:
    """
    Case-insensitive header access with raw preservation.

    Normalizes header names while preserving original casing.
    """

    raw: List[Tuple[bytes, bytes]] = field(default_factory=list)
    _index: Dict[str, List[Tuple[bytes, bytes]]] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        self._index = {}
        for name, value in self.raw:
            key = name.decode("latin-1").lower()
            self._index.setdefault(key, []).append((name, value))

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get first value for header (case-insensitive)."""
        pairs = self._index.get(name.lower())
        if pairs:
            return pairs[0][1].decode("latin-1")
        return default

    def get_all(self, name: str) -> List[str]:
        """Get all values for header (case-insensitive)."""
        return [value.decode("latin-1") for _, value in self._index.get(name.lower(), [])]

    def items(self) -> Iterator[Tuple[str, str]]:
        for name, value in self.raw:
            yield name.decode("latin-1").lower(), value.decode("latin-1")

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._index

    def __getitem__(self, name: str) -> str:
        value = self.get(name)
        if value is None:
            raise KeyError(f"Header '{name}' not found")
        return value

    def __repr__(self) -> str:
        return f"Headers({list(self.items())})"


# ============================================================================
# ParsedContentType
# ============================================================================

@dataclass
class ParsedContentType:
    """
    Parsed Content-Type header.

    Extracts media type and parameters (e.g., charset).
    """

    media_type: str
    params: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, content_type: Optional[str]) -> Optional["ParsedContentType"]:
        if not content_type:
            return None

        parts = content_type.split(";")
        media_type = parts[0].strip().lower()

        params = {}
        for part in parts[1:]:
            if "=" in part:
                key, value = part.split("=", 1)
                params[key.strip().lower()] = value.strip().strip('"')

        return cls(media_type=media_type, params=params)

    @property
    def charset(self) -> str:
        """Get charset parameter (default: utf-8)."""
        return self.params.get("charset", "utf-8")


# ============================================================================
# Media type helpers
# ============================================================================

# Short names accepted wherever a media type is expected.
MEDIA_TYPE_ALIASES: Dict[str, str] = {
    "json": "application/json",
    "html": "text/html",
    "text": "text/plain",
    "txt": "text/plain",
    "xml": "application/xml",
    "urlencoded": "application/x-www-form-urlencoded",
    "form": "application/x-www-form-urlencoded",
    "bin": "application/octet-stream",
    "octet-stream": "application/octet-stream",
}


def normalize_media_type(value: str) -> str:
    """Expand short names (``json``) and extensions (``.html``) to media types."""
    value = value.strip().lower()
    if "/" in value:
        return value
    return MEDIA_TYPE_ALIASES.get(value.lstrip("."), f"application/{value.lstrip('.')}")


def media_type_matches(pattern: str, media_type: str) -> bool:
    """
    Match a media type against a pattern that may contain wildcards.

    ``*/*`` matches everything, ``text/*`` matches any text subtype and
    ``+json`` suffixes match ``application/json`` patterns.
    """
    pattern = pattern.lower()
    media_type = media_type.lower()
    if pattern in ("*/*", "*", media_type):
        return True
    p_type, _, p_sub = pattern.partition("/")
    m_type, _, m_sub = media_type.partition("/")
    if p_sub == "*" and p_type == m_type:
        return True
    if m_type == "*" or (m_sub == "*" and p_type == m_type):
        return True
    return p_type == m_type and m_sub.endswith("+" + p_sub)


def parse_accept(header: Optional[str]) -> List[Tuple[str, float]]:
    """
    Parse an Accept header into ``(media_type, quality)`` pairs.

    Pairs are ordered by decreasing quality; entries with ``q=0`` are kept so
    callers can reject them explicitly.
    """
    if not header:
        return [("*/*", 1.0)]

    entries: List[Tuple[str, float, int]] = []
    for position, part in enumerate(header.split(",")):
        parsed = ParsedContentType.parse(part)
        if parsed is None or not parsed.media_type:
            continue
        try:
            quality = float(parsed.params.get("q", "1"))
        except ValueError:
            quality = 0.0
        entries.append((parsed.media_type, quality, position))

    entries.sort(key=lambda entry: (-entry[1], entry[2]))
    return [(media_type, quality) for media_type, quality, _ in entries]


def best_match(offered: List[str], header: Optional[str]) -> Optional[str]:
    """Return the first offered type acceptable for the Accept header."""
    accepted = parse_accept(header)
    for media_type, quality in accepted:
        if quality <= 0:
            continue
        for offer in offered:
            if media_type_matches(media_type, normalize_media_type(offer)):
                return offer
    return None


def coerce_header_value(value: Any) -> str:
    """Render a header value the way it is sent on the wire."""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)
