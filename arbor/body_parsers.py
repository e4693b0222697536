"""
Body parser middlewares.

Each factory returns a new middleware closure whose ``__name__`` is stable
(``json_parser``, ``urlencoded_parser``...), so two instances can be
recognised as the same kind of middleware. Parsers drain the request stream,
which can only be read once per request.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Optional, Sequence, Union

from ._datastructures import MultiDict
from .faults import InvalidJSON

Types = Union[str, Sequence[str]]


def _limit(request: Any, limit: Optional[int]) -> Optional[int]:
    if limit is not None:
        return limit
    settings = getattr(getattr(request, "app", None), "settings", None)
    return getattr(settings, "body_limit", None)


def _matches(request: Any, types: Types) -> bool:
    if isinstance(types, str):
        types = [types]
    return request.is_(*types) is not None


def json_parser(*, limit: Optional[int] = None, strict: bool = True, type: Types = "json") -> Callable[..., Any]:
    """
    Parse JSON bodies into ``request.body``.

    Args:
        limit: Maximum body size in bytes (defaults to ``settings.body_limit``)
        strict: Only accept objects and arrays at the top level
        type: Media types handled by the parser
    """
    async def json_parser(request, response, next):
        if request.body is None:
            request.body = {}
        if not _matches(request, type):
            return next()

        raw = await request.read(_limit(request, limit))
        if not raw:
            return next()

        try:
            value = json.loads(raw.decode(request.charset))
        except (ValueError, UnicodeDecodeError) as exc:
            raise InvalidJSON(f"Invalid JSON body: {exc}") from exc

        if strict and not isinstance(value, (dict, list)):
            raise InvalidJSON("JSON body must be an object or an array")

        request.body = value
        next()

    return json_parser


def urlencoded_parser(*, limit: Optional[int] = None, type: Types = "urlencoded") -> Callable[..., Any]:
    """Parse ``application/x-www-form-urlencoded`` bodies into ``request.body``."""

    async def urlencoded_parser(request, response, next):
        if request.body is None:
            request.body = {}
        if not _matches(request, type):
            return next()

        raw = await request.read(_limit(request, limit))
        request.body = MultiDict.from_query_string(raw.decode(request.charset)).to_dict()
        next()

    return urlencoded_parser


def text_parser(*, limit: Optional[int] = None, type: Types = "text/plain") -> Callable[..., Any]:
    """Decode text bodies into ``request.body``."""

    async def text_parser(request, response, next):
        if not _matches(request, type):
            return next()

        raw = await request.read(_limit(request, limit))
        request.body = raw.decode(request.charset)
        next()

    return text_parser


def raw_parser(*, limit: Optional[int] = None, type: Types = "application/octet-stream") -> Callable[..., Any]:
    """Store raw bytes into ``request.body``."""

    async def raw_parser(request, response, next):
        if not _matches(request, type):
            return next()

        request.body = await request.read(_limit(request, limit))
        next()

    return raw_parser
