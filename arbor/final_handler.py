"""
Configurable final error handler, to replace the fallback error handler.

Example:
    app.use(final_handler(
        send_as_json="always",
        log="5xx",
        reveal_error_message=True,
        not_found_handler=True,
    ))
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, MutableMapping
from typing import Any, Callable, List, Optional, Union

from .fallback import StatusParser, error_headers, error_message, serialize_error, wants_json

logger = logging.getLogger("arbor.final_handler")

SEND_AS_JSON = ("always", "never", "from-response-type", "from-response-type-or-request")
LOG = ("always", "never", "5xx")

_STRIPPED = ("status", "status_code", "statusCode", "headers")


def _not_found(request, response, next):
    response.status(404)
    next(LookupError(f"Cannot {request.method} {request.base_url}{request.path}"))


def _public_view(err: Any, reveal_message: bool, reveal_name: bool) -> Any:
    if not isinstance(err, BaseException):
        return serialize_error(err, reveal=False)
    data = {key: value for key, value in serialize_error(err, reveal=False).items() if key not in ("message", "name")}
    if reveal_message:
        data["message"] = error_message(err)
    if reveal_name:
        data["name"] = type(err).__name__
    return data


def final_handler(
    *,
    send_as_json: str = "from-response-type-or-request",
    log: str = "5xx",
    logger: Optional[Callable[[Any], Any]] = None,
    reveal_error_message: bool = False,
    reveal_error_name: bool = False,
    clean_status_and_headers: bool = False,
    not_found_handler: Union[bool, Callable[..., Any]] = False,
) -> Union[Callable[..., Any], List[Callable[..., Any]]]:
    """
    Build a global error handler.

    Args:
        send_as_json: ``"always"``, ``"never"`` (forward to ``next``),
            ``"from-response-type"`` or ``"from-response-type-or-request"``
        log: ``"always"``, ``"never"`` or ``"5xx"``
        logger: Custom ``logger(err)`` callable
        reveal_error_message: Include the exception message in JSON bodies
        reveal_error_name: Include the exception class name in JSON bodies
        clean_status_and_headers: Drop ``status``/``headers`` from the error
            once applied to the response
        not_found_handler: ``True`` for a default 404 handler, or a custom
            middleware; the result is then ``[not_found, error_handler]``
    """
    if send_as_json not in SEND_AS_JSON:
        raise ValueError(f"send_as_json must be one of {SEND_AS_JSON}")
    if log not in LOG:
        raise ValueError(f"log must be one of {LOG}")

    log_error = logger or (lambda err: _default_log(err))

    def final_error_handler(err, request, response, next):
        if response.headers_sent:
            return next(err)

        # status
        status = StatusParser.from_props(err)
        if status:
            response.status(status)
        elif not 400 <= response.status_code <= 599:
            response.status(500)

        # headers
        headers = error_headers(err)
        if headers:
            response.set(headers)

        if clean_status_and_headers:
            for name in _STRIPPED:
                if isinstance(err, MutableMapping):
                    err.pop(name, None)
                elif not isinstance(err, Mapping) and hasattr(err, "__dict__"):
                    vars(err).pop(name, None)

        if log == "always" or (log == "5xx" and response.status_code >= 500):
            log_error(err)

        body = _public_view(err, reveal_error_message, reveal_error_name)

        if send_as_json == "always":
            return response.json(body)
        if send_as_json == "from-response-type":
            if wants_json(request, response) and response.get("content-type"):
                return response.json(body)
        if send_as_json == "from-response-type-or-request":
            if wants_json(request, response):
                return response.json(body)

        next(err)

    if not not_found_handler:
        return final_error_handler

    not_found = not_found_handler if callable(not_found_handler) else _not_found
    return [not_found, final_error_handler]


def _default_log(err: Any) -> None:
    logger.error("Unhandled error: %r", err, exc_info=err if isinstance(err, BaseException) else None)
