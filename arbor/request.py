"""
Arbor Request - ASGI-backed request object.

Features:
- Mount-relative ``path`` and ``base_url`` maintained by the router
- Route ``params`` and parsed ``query``
- Case-insensitive headers, ``xhr`` detection and content negotiation
- Single-pass body reading (``read`` / ``stream``), the stream can only be
  drained once per request
- ``body`` slot filled by body parsers
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Tuple

from ._datastructures import (
    Headers,
    MultiDict,
    ParsedContentType,
    best_match,
    media_type_matches,
    normalize_media_type,
)
from .faults import BodyAlreadyConsumed, PayloadTooLarge


Receive = Callable[[], Awaitable[Dict[str, Any]]]


class Request:
    """
    HTTP request wrapper around an ASGI scope and receive channel.

    ``path``, ``base_url`` and ``params`` are rewritten by routers while the
    request travels through nested mounts; ``original_url`` never changes.
    """

    def __init__(self, scope: Dict[str, Any], receive: Optional[Receive] = None, *, app: Any = None):
        self.scope = scope
        self._receive = receive
        self.app = app
        self.response: Any = None

        self.method: str = scope.get("method", "GET").upper()
        self.path: str = scope.get("path") or "/"
        self.base_url: str = ""
        query_string = scope.get("query_string", b"")
        self.query_string: str = (
            query_string.decode("latin-1") if isinstance(query_string, bytes) else query_string
        )
        self.original_url: str = self.path + (f"?{self.query_string}" if self.query_string else "")

        self.params: Dict[str, Any] = {}
        self.query_params = MultiDict.from_query_string(self.query_string)
        self.query: Dict[str, Any] = self.query_params.to_dict()
        self.headers = Headers(raw=list(scope.get("headers", [])))

        # Filled by body parsers
        self.body: Any = None
        self.state: Dict[str, Any] = {}
        self.client: Optional[Tuple[str, int]] = scope.get("client")

        self._consumed = False

    def __repr__(self) -> str:
        return f"<Request {self.method} {self.original_url}>"

    # ========================================================================
    # Header helpers
    # ========================================================================

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get a request header (case-insensitive). ``referrer`` aliases ``referer``."""
        name = name.lower()
        if name in ("referer", "referrer"):
            return self.headers.get("referer", self.headers.get("referrer", default))
        return self.headers.get(name, default)

    header = get

    @property
    def content_type(self) -> Optional[str]:
        parsed = ParsedContentType.parse(self.headers.get("content-type"))
        return parsed.media_type if parsed else None

    @property
    def charset(self) -> str:
        parsed = ParsedContentType.parse(self.headers.get("content-type"))
        return parsed.charset if parsed else "utf-8"

    @property
    def content_length(self) -> Optional[int]:
        length = self.headers.get("content-length")
        if length:
            try:
                return int(length)
            except ValueError:
                return None
        return None

    @property
    def xhr(self) -> bool:
        """True when the request was issued by ``XMLHttpRequest``."""
        return (self.headers.get("x-requested-with") or "").lower() == "xmlhttprequest"

    @property
    def has_body(self) -> bool:
        return "transfer-encoding" in self.headers or bool(self.content_length)

    # ========================================================================
    # Content negotiation
    # ========================================================================

    def accepts(self, *types: str) -> Optional[str]:
        """
        Return the first of ``types`` acceptable according to ``Accept``.

        With no argument, returns the raw Accept header (or ``*/*``).
        """
        accept = self.headers.get("accept")
        if not types:
            return accept or "*/*"
        return best_match(list(types), accept)

    def is_(self, *types: str) -> Optional[str]:
        """
        Return the first of ``types`` matching the request Content-Type.

        Returns ``None`` when the request has no body or no type matches.
        """
        media_type = self.content_type
        if not media_type or not self.has_body:
            return None
        for candidate in types:
            if media_type_matches(normalize_media_type(candidate), media_type):
                return candidate
        return None

    # ========================================================================
    # Body
    # ========================================================================

    @property
    def consumed(self) -> bool:
        """True once the body stream has been drained."""
        return self._consumed

    async def stream(self, limit: Optional[int] = None) -> AsyncIterator[bytes]:
        """
        Stream request body chunks from the ASGI channel.

        Raises:
            BodyAlreadyConsumed: If the body was already read
            PayloadTooLarge: If more than ``limit`` bytes arrive
        """
        if self._consumed:
            raise BodyAlreadyConsumed(metadata={"path": self.original_url})
        self._consumed = True

        if self._receive is None:
            return

        total = 0
        while True:
            message = await self._receive()
            if message["type"] == "http.disconnect":
                break
            chunk = message.get("body", b"")
            if chunk:
                total += len(chunk)
                if limit is not None and total > limit:
                    raise PayloadTooLarge(metadata={"limit": limit, "received": total})
                yield chunk
            if not message.get("more_body", False):
                break

    async def read(self, limit: Optional[int] = None) -> bytes:
        """Read the whole body. Can only be called once per request."""
        chunks = []
        async for chunk in self.stream(limit):
            chunks.append(chunk)
        return b"".join(chunks)
