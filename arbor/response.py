"""
Arbor Response - chainable response object bound to an ASGI send channel.

Features:
- Chainable ``status`` / ``set`` / ``type`` helpers
- Synchronous commit (``send``, ``json``, ``end``, ``send_status``); the bytes
  are flushed on the ASGI channel once the middleware chain settles
- Streaming with ``pipe`` (async iterables, generators, file objects) and ``write``
- ``headers_sent`` flag, ``on_finish`` callbacks
"""

from __future__ import annotations

import asyncio
import dataclasses
import datetime
import decimal
import enum
import inspect
import json
import logging
import uuid
from http import HTTPStatus
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union

from ._datastructures import ParsedContentType, coerce_header_value, normalize_media_type
from .faults import HeadersAlreadySent

logger = logging.getLogger("arbor.response")

Send = Callable[[Dict[str, Any]], Awaitable[None]]

# Statuses that never carry a body
_EMPTY_BODY_STATUSES = frozenset({204, 304})

_CHUNK_SIZE = 64 * 1024


def reason_phrase(status: int) -> str:
    """Standard reason phrase for ``status`` (``"418"`` for unknown codes)."""
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return str(status)


def json_default(value: Any) -> Any:
    """``json.dumps`` fallback for common Python types."""
    if hasattr(value, "to_dict") and callable(value.to_dict):
        return value.to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, (uuid.UUID, decimal.Decimal)):
        return str(value)
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return list(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def is_readable_stream(value: Any) -> bool:
    """
    True for values a response can pipe: async iterables, generators and
    readable file objects. Plain containers and strings are not streams.
    """
    if isinstance(value, (str, bytes, bytearray, memoryview, Mapping, list, tuple, set)):
        return False
    if isinstance(value, Response):
        return False
    if hasattr(value, "__aiter__") or inspect.isgenerator(value):
        return True
    return callable(getattr(value, "read", None))


async def _iterate_stream(source: Any) -> AsyncIterator[bytes]:
    if hasattr(source, "__aiter__"):
        async for chunk in source:
            yield chunk
    elif inspect.isgenerator(source):
        for chunk in source:
            yield chunk
    else:
        while True:
            chunk = source.read(_CHUNK_SIZE)
            if inspect.isawaitable(chunk):
                chunk = await chunk
            if not chunk:
                break
            yield chunk


class Response:
    """
    HTTP response bound to one request.

    ``send``/``json``/``end`` commit the response synchronously: the response
    is marked as sent at once and its bytes are written when the application
    flushes it. ``pipe`` and ``write`` stream immediately.
    """

    def __init__(self, send: Optional[Send] = None, request: Any = None, *, encoding: str = "utf-8"):
        self._send = send
        self.request = request
        self.encoding = encoding

        self.status_code: int = 200
        self.headers: Dict[str, Union[str, List[str]]] = {}
        self.locals: Dict[str, Any] = {}

        # Value handed to send()/json(), kept for finish callbacks
        self.body: Any = None
        self.finished = False
        self.piping = False

        self._committed = False
        self._started = False
        self._streaming = False
        self._payload: Optional[bytes] = None
        self._pipe_task: Optional[asyncio.Task] = None
        self._deferred: Optional[Tuple[Awaitable[Any], Callable[[Any], Any]]] = None
        self._finish_callbacks: List[Callable[..., Any]] = []

    def __repr__(self) -> str:
        return f"<Response [{self.status_code}] sent={self.headers_sent}>"

    # ========================================================================
    # Status & headers
    # ========================================================================

    @property
    def headers_sent(self) -> bool:
        """True once the response has been committed or a stream is piping."""
        return self._committed or self.piping

    def status(self, code: int) -> "Response":
        self.status_code = int(code)
        return self

    def set(self, field: Union[str, Mapping[str, Any]], value: Any = None) -> "Response":
        """
        Set one header, or several from a mapping.

        Raises:
            HeadersAlreadySent: If the response is already committed
        """
        if self.headers_sent:
            raise HeadersAlreadySent("Cannot set headers after they are sent to the client")
        if isinstance(field, Mapping):
            for key, val in field.items():
                self.set(key, val)
            return self
        name = field.lower()
        if isinstance(value, (list, tuple)):
            self.headers[name] = [str(v) for v in value]
        else:
            self.headers[name] = str(value)
        return self

    header = set

    def get(self, field: str) -> Optional[str]:
        value = self.headers.get(field.lower())
        if value is None:
            return None
        return coerce_header_value(value)

    def append(self, field: str, value: Any) -> "Response":
        name = field.lower()
        previous = self.headers.get(name)
        values = value if isinstance(value, (list, tuple)) else [value]
        if previous is None:
            return self.set(name, list(values) if len(values) > 1 else values[0])
        previous = previous if isinstance(previous, list) else [previous]
        return self.set(name, previous + [str(v) for v in values])

    def remove_header(self, field: str) -> "Response":
        self.headers.pop(field.lower(), None)
        return self

    def type(self, media_type: str) -> "Response":
        """Set Content-Type from a media type or a short name (``json``, ``html``)."""
        return self.set("content-type", normalize_media_type(media_type) if "/" not in media_type else media_type)

    content_type = type

    def on_finish(self, callback: Callable[..., Any]) -> "Response":
        """Register ``callback(request, response)`` to run once the response is flushed."""
        self._finish_callbacks.append(callback)
        return self

    # ========================================================================
    # Sending
    # ========================================================================

    def send(self, body: Any = None) -> "Response":
        """
        Commit the response with ``body``.

        - ``None``: empty body
        - ``str``: ``text/html`` unless a Content-Type is set
        - bytes-like: ``application/octet-stream`` unless a Content-Type is set
        - anything else: sent as JSON
        """
        if body is not None and not isinstance(body, (str, bytes, bytearray, memoryview)):
            return self.json(body)
        self._ensure_not_sent()

        if body is None:
            payload = b""
        elif isinstance(body, str):
            if "content-type" not in self.headers:
                self.headers["content-type"] = f"text/html; charset={self.encoding}"
            payload = body.encode(self._charset())
        else:
            if "content-type" not in self.headers:
                self.headers["content-type"] = "application/octet-stream"
            payload = bytes(body)

        self.body = body
        self._commit(payload)
        return self

    def json(self, value: Any = None) -> "Response":
        """Commit the response with ``value`` serialized as JSON."""
        self._ensure_not_sent()
        payload = json.dumps(value, default=json_default, ensure_ascii=False).encode("utf-8")
        if "content-type" not in self.headers:
            self.headers["content-type"] = "application/json; charset=utf-8"
        self.body = value
        self._commit(payload)
        return self

    def end(self, data: Union[str, bytes, None] = None) -> "Response":
        """Commit the response, optionally with raw data and no Content-Type detection."""
        if self._streaming:
            self._committed = True
            return self
        self._ensure_not_sent()
        if isinstance(data, str):
            data = data.encode(self._charset())
        self._commit(data or b"")
        return self

    def send_status(self, code: int) -> "Response":
        """Set the status and send its reason phrase as plain text."""
        self.status(code)
        self.type("text/plain; charset=utf-8")
        return self.send(reason_phrase(code))

    def pipe(self, source: Any) -> "Response":
        """
        Stream ``source`` into the response.

        The stream starts on the next loop iteration; the application waits
        for it before closing the ASGI exchange.
        """
        self._ensure_not_sent()
        if "content-type" not in self.headers:
            self.headers["content-type"] = "application/octet-stream"
        self.piping = True
        self._pipe_task = asyncio.ensure_future(self._pump(source))
        return self

    def commit_later(self, body: Awaitable[Any], sender: Callable[[Any], Any]) -> "Response":
        """
        Commit now, with a body that is not known yet.

        ``body`` is awaited when the response is flushed and its value is
        handed to ``sender`` (``send``, ``json``...). The response counts as
        sent in the meantime.
        """
        self._ensure_not_sent()
        self._committed = True
        self._deferred = (body, sender)
        return self

    async def write(self, chunk: Union[str, bytes]) -> None:
        """Write a chunk immediately, sending headers first if needed."""
        if self._committed and not self._streaming:
            raise HeadersAlreadySent("Cannot write after the response was sent")
        if isinstance(chunk, str):
            chunk = chunk.encode(self._charset())
        self._streaming = True
        await self._start()
        await self._emit(chunk, more_body=True)

    # ========================================================================
    # ASGI plumbing
    # ========================================================================

    async def flush(self) -> None:
        """
        Write the committed response on the ASGI channel and run finish
        callbacks. Called by the application once the chain has settled.
        """
        if self._deferred is not None:
            await self._resolve_deferred()

        if self._pipe_task is not None:
            await self._pipe_task
        elif self._streaming:
            await self._emit(b"", more_body=False)
        elif self._payload is not None:
            payload, self._payload = self._payload, None
            if self.status_code in _EMPTY_BODY_STATUSES:
                payload = b""
            await self._start(content_length=len(payload))
            await self._emit(payload, more_body=False)

        self.finished = True
        for callback in self._finish_callbacks:
            try:
                result = callback(self.request, self)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Response finish callback %r failed", callback)

    async def _resolve_deferred(self) -> None:
        body, sender = self._deferred
        self._deferred = None
        self._committed = False
        try:
            value = await body
        except Exception:
            logger.exception("Deferred response body failed")
            if not self.headers_sent:
                self.headers.pop("content-type", None)
                self.send_status(500)
            return
        # The awaited body may have sent the response itself
        if not self.headers_sent:
            sender(value)

    async def _pump(self, source: Any) -> None:
        await self._start()
        async for chunk in _iterate_stream(source):
            if isinstance(chunk, str):
                chunk = chunk.encode(self._charset())
            if chunk:
                await self._emit(chunk, more_body=True)
        await self._emit(b"", more_body=False)
        self._committed = True

    async def _start(self, content_length: Optional[int] = None) -> None:
        if self._started:
            return
        self._started = True
        self._committed = True

        headers = dict(self.headers)
        if self.status_code in _EMPTY_BODY_STATUSES:
            headers.pop("content-type", None)
            headers.pop("content-length", None)
        elif content_length is not None:
            headers["content-length"] = str(content_length)

        raw_headers = []
        for name, value in headers.items():
            for item in (value if isinstance(value, list) else [value]):
                raw_headers.append((name.encode("latin-1"), str(item).encode("latin-1")))

        if self._send is not None:
            await self._send({
                "type": "http.response.start",
                "status": self.status_code,
                "headers": raw_headers,
            })

    async def _emit(self, chunk: bytes, *, more_body: bool) -> None:
        if self._send is None:
            return
        if self.request is not None and getattr(self.request, "method", "") == "HEAD":
            chunk = b""
        await self._send({"type": "http.response.body", "body": chunk, "more_body": more_body})

    def _commit(self, payload: bytes) -> None:
        self._committed = True
        self._payload = payload

    def _ensure_not_sent(self) -> None:
        if self.headers_sent:
            raise HeadersAlreadySent()

    def _charset(self) -> str:
        parsed = ParsedContentType.parse(self.get("content-type"))
        return parsed.charset if parsed else self.encoding
