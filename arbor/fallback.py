"""
Global fallback error handler.

Mounted last by ``register``. It infers the HTTP status of any error value
(exceptions, dicts, status strings such as ``"404: gone"``, bare numbers),
answers JSON clients with a JSON error body and forwards everything else to
the application's final handler. Mounting another error handler with
``use``/``catch`` removes it.
"""

from __future__ import annotations

import json
import logging
import re
import traceback
from collections.abc import Mapping
from typing import Any, Dict, Optional

from .response import json_default

logger = logging.getLogger("arbor.fallback")

FALLBACK_NAME = "arbor.global_error_handler"

_JSON_TYPE = re.compile(r"(.*[^\w\s]|^)json(; ?charset.*)?$", re.MULTILINE)
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


# ============================================================================
# Status inference
# ============================================================================

def _field(err: Any, name: str) -> Any:
    if isinstance(err, Mapping):
        return err.get(name)
    return getattr(err, name, None)


def error_message(err: Any) -> str:
    """Message of an error value, whatever its type."""
    message = _field(err, "message") if not isinstance(err, (str, int, float)) else None
    if message is not None:
        return str(message)
    if isinstance(err, BaseException):
        return str(err)
    if isinstance(err, (str, int, float)):
        return str(err)
    return ""


class StatusParser:
    """Infer HTTP status codes from arbitrary error values."""

    @staticmethod
    def extract_code(err: Any) -> Optional[int]:
        if err is None or isinstance(err, bool):
            return None
        if isinstance(err, int):
            return err
        if isinstance(err, float):
            return int(err) if err.is_integer() else None
        if isinstance(err, str):
            match = _LEADING_INT.match(err)
            return int(match.group(1)) if match else None
        for name in ("status", "status_code", "statusCode"):
            code = StatusParser.extract_code(_field(err, name))
            if code:
                return code
        if isinstance(err, BaseException) or _field(err, "message") is not None:
            return StatusParser.extract_code(error_message(err))
        return None

    @staticmethod
    def from_error(err: Any) -> Optional[int]:
        """Status carried by ``err``, only if it is an error status (400-599)."""
        code = StatusParser.extract_code(err)
        if not code or code < 400 or code > 599:
            return None
        return code

    @staticmethod
    def from_props(err: Any) -> Optional[int]:
        """Status from ``status``/``status_code``/``statusCode`` properties only."""
        if err is None or isinstance(err, (str, int, float)):
            return None
        for name in ("status", "status_code", "statusCode"):
            code = _field(err, name)
            if isinstance(code, int) and not isinstance(code, bool) and 400 <= code <= 599:
                return code
        return None

    @staticmethod
    def from_response(response: Any) -> int:
        code = getattr(response, "status_code", None)
        if not isinstance(code, int) or code < 400 or code > 599:
            return 500
        return code

    @staticmethod
    def normalize(err: Any, status: int) -> Any:
        """
        Turn primitives into ``{"status", "message"}`` dicts and strip the
        leading status token from messages. Errors that already carry an
        explicit status are returned untouched.
        """
        leading_status = re.compile(rf"^{status}(?!\d)\W?\s*", re.MULTILINE)

        if isinstance(err, str):
            return {"status": status, "message": leading_status.sub("", err, count=1)}
        if isinstance(err, (int, float)):
            return {"status": status, "message": ""}
        if _field(err, "status") or _field(err, "status_code") or _field(err, "statusCode"):
            return err

        message = error_message(err)
        if not message:
            return err
        message = leading_status.sub("", message, count=1)
        if isinstance(err, Mapping):
            return {**err, "status": status, "message": message}
        try:
            err.status = status
            err.message = message
        except AttributeError:
            pass
        return err


# ============================================================================
# Serialization helpers
# ============================================================================

def error_headers(err: Any) -> Optional[Dict[str, Any]]:
    headers = _field(err, "headers") if not isinstance(err, (str, int, float)) else None
    return dict(headers) if isinstance(headers, Mapping) else None


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value, default=json_default)
        return value
    except (TypeError, ValueError):
        return repr(value)


def serialize_error(err: Any, *, reveal: bool = True) -> Any:
    """
    JSON-friendly view of an error.

    Exceptions expose their public attributes plus ``message`` (and ``stack``
    when ``reveal`` is set); dicts and primitives are returned as-is.
    """
    if isinstance(err, BaseException):
        data: Dict[str, Any] = {}
        if hasattr(err, "to_dict"):
            data.update(err.to_dict())
        for key, value in vars(err).items():
            if not key.startswith("_"):
                data[key] = _jsonable(value)
        data["message"] = error_message(err)
        if reveal:
            data["stack"] = "".join(traceback.format_exception(type(err), err, err.__traceback__))
        return data
    if isinstance(err, Mapping):
        return {key: _jsonable(value) for key, value in err.items()}
    return _jsonable(err)


def wants_json(request: Any, response: Any) -> bool:
    """
    JSON when the response type is JSON-ish, or when no response type is set
    and the request is XHR or accepts JSON.
    """
    response_type = response.get("content-type")
    if response_type and _JSON_TYPE.search(response_type):
        return True
    if response_type:
        return False
    if request.xhr:
        return True
    return bool(request.get("accept")) and request.accepts("json") is not None


def _reveal(request: Any) -> bool:
    settings = getattr(getattr(request, "app", None), "settings", None)
    return getattr(settings, "reveal_errors", True)


# ============================================================================
# Handler
# ============================================================================

def global_error_handler(err, request, response, next):
    status = StatusParser.from_error(err)
    if status:
        err = StatusParser.normalize(err, status)
    else:
        status = StatusParser.from_response(response)

    if status >= 500:
        logger.error(
            "%s %s failed: %r",
            request.method,
            request.original_url,
            err,
            exc_info=err if isinstance(err, BaseException) else None,
        )

    if response.headers_sent:
        return next(err)

    response.status(status)
    headers = error_headers(err)
    if headers:
        response.set(headers)

    if wants_json(request, response):
        response.json(serialize_error(err, reveal=_reveal(request)))
    else:
        next(err)


global_error_handler.__name__ = FALLBACK_NAME
global_error_handler.__qualname__ = FALLBACK_NAME
