"""
Testing utilities - ASGI scope and receive builders.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Tuple, Union

HeaderValue = Union[str, bytes]


def _latin1(value: HeaderValue) -> bytes:
    return value.encode("latin-1") if isinstance(value, str) else value


def make_test_scope(
    method: str = "GET",
    path: str = "/",
    query_string: Union[str, bytes] = "",
    headers: Optional[Iterable[Tuple[HeaderValue, HeaderValue]]] = None,
    root_path: str = "",
) -> dict:
    """
    Build a minimal ASGI HTTP scope.

    Header names and values may be given as strings or bytes; the
    query string is passed without its leading ``?``.
    """
    if isinstance(query_string, str):
        query_string = query_string.encode("utf-8")

    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method.upper(),
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": query_string,
        "headers": [(_latin1(name), _latin1(value)) for name, value in headers or ()],
        "scheme": "http",
        "server": ("127.0.0.1", 8000),
        "client": ("127.0.0.1", 12345),
        "root_path": root_path,
    }


def make_test_receive(body: bytes = b"", *, chunks: Optional[List[bytes]] = None):
    """
    Create an ASGI ``receive`` callable replaying a request body.

    With ``chunks`` the body is delivered as several ``http.request``
    messages; once exhausted every call reports a disconnect.
    """
    parts = list(chunks) if chunks else [body]
    messages = [
        {"type": "http.request", "body": part, "more_body": index < len(parts) - 1}
        for index, part in enumerate(parts)
    ]

    async def receive() -> dict:
        if messages:
            return messages.pop(0)
        return {"type": "http.disconnect"}

    return receive
