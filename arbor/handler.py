"""
Handler synthesis.

- promisify_handler / promisify_error_handler: uniform async wrappers that
  route raised exceptions to ``next(err)``
- create_handler: turns a controller method into a ``(request, response, next)``
  handler applying parameter injection and the auto-send policy
- NULL: explicit "null" return value, distinct from ``None`` (nothing returned)
"""

from __future__ import annotations

import functools
import inspect
import logging
from typing import Any, Callable, List, Optional, Sequence

from .faults import ConfigurationFault, ResponseObjectSent
from .metadata import SendPolicy
from .response import is_readable_stream
from .routing import ERROR_HANDLER_ATTR

logger = logging.getLogger("arbor.handler")

PROMISIFIED_ATTR = "__arbor_promisified__"


class _Null:
    """Explicit null return value (``None`` means the method returned nothing)."""

    _instance: Optional["_Null"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NULL"

    def __bool__(self) -> bool:
        return False


NULL = _Null()


# ============================================================================
# Wrappers
# ============================================================================

def unwrap_handler(fn: Any) -> Any:
    """Original callable behind a promisified wrapper."""
    while getattr(fn, PROMISIFIED_ATTR, False):
        fn = fn.__wrapped__
    return fn


def promisify_handler(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Wrap a middleware so sync raises and awaited failures reach ``next(err)``."""
    if getattr(fn, PROMISIFIED_ATTR, False) and not getattr(fn, ERROR_HANDLER_ATTR, False):
        return fn

    @functools.wraps(fn)
    async def handler(request, response, next):
        try:
            result = fn(request, response, next)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            if getattr(next, "called", False):
                raise
            next(exc)

    setattr(handler, PROMISIFIED_ATTR, True)
    setattr(handler, ERROR_HANDLER_ATTR, False)
    return handler


def promisify_error_handler(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Same as ``promisify_handler`` for ``(error, request, response, next)`` handlers."""
    if getattr(fn, PROMISIFIED_ATTR, False) and getattr(fn, ERROR_HANDLER_ATTR, False):
        return fn

    @functools.wraps(fn)
    async def error_handler(error, request, response, next):
        try:
            result = fn(error, request, response, next)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            if getattr(next, "called", False):
                raise
            next(exc)

    setattr(error_handler, PROMISIFIED_ATTR, True)
    setattr(error_handler, ERROR_HANDLER_ATTR, True)
    return error_handler


# ============================================================================
# Route handler
# ============================================================================

def _positional_defaults(fn: Callable[..., Any]) -> List[Any]:
    """Defaults of the positional parameters of ``fn`` (``None`` when absent)."""
    from .params import ParamInjector

    defaults = []
    for parameter in inspect.signature(fn).parameters.values():
        if parameter.kind not in (parameter.POSITIONAL_ONLY, parameter.POSITIONAL_OR_KEYWORD):
            break
        default = parameter.default
        if default is parameter.empty or isinstance(default, ParamInjector):
            default = None
        defaults.append(default)
    return defaults


def create_handler(
    controller_class: type,
    instance: Any,
    key: str,
    injectors: Sequence[Any] = (),
    policy: Optional[SendPolicy] = None,
) -> Callable[..., Any]:
    """
    Build the route handler for ``controller_class.key``.

    Args:
        controller_class: Controller class (used for names and errors)
        instance: Controller instance the method is bound to
        key: Method name
        injectors: Resolved parameter injectors, empty to pass the raw
            ``(request, response, next)``
        policy: Auto-send policy, ``None`` to leave sending to the method

    Raises:
        ConfigurationFault: If the member is not callable
    """
    fn = getattr(instance, key, None)
    if not callable(fn):
        raise ConfigurationFault(
            "INVALID_ROUTE_HANDLER",
            f'"{controller_class.__name__}.{key}" should be a function.',
        )

    injectors = list(injectors)
    arg_count = max((param.index for param in injectors), default=-1) + 1
    defaults = _positional_defaults(fn)[:arg_count]
    defaults += [None] * (arg_count - len(defaults))

    def extract(request, response, next) -> List[Any]:
        args = list(defaults)
        for param in injectors:
            args[param.index] = param.injector.extract(request, response, next)
        return args

    async def handler(request, response, next):
        try:
            args = extract(request, response, next) if injectors else (request, response, next)
            result = fn(*args)

            # sending was suppressed, or user code already answered
            if policy is None or response.headers_sent:
                if inspect.isawaitable(result):
                    await result
                return

            if inspect.isawaitable(result):
                result = await result
                if response.headers_sent:
                    return

            await send_value(result, policy, request, response, next)
        except Exception as exc:
            if getattr(next, "called", False):
                raise
            next(exc)

    handler.__name__ = f"{controller_class.__name__}.{key}"
    handler.__qualname__ = handler.__name__
    return handler


async def send_value(value: Any, policy: SendPolicy, request: Any, response: Any, next: Any) -> None:
    """Apply ``policy`` to a route return value."""
    if policy.status:
        response.status(policy.status)

    if value is None and policy.undefined_status:
        response.status(policy.undefined_status)
    elif value is NULL and policy.null_status:
        response.status(policy.null_status)

    if policy.handler is not None:
        result = policy.handler(value, request, response, next)
        if inspect.isawaitable(result):
            await result
        return

    if is_readable_stream(value):
        response.pipe(value)
        return

    if value is response:
        raise ResponseObjectSent()

    if value is None:
        if policy.json and response.get("content-type") is None:
            response.type("application/json; charset=utf-8")
        response.send()
    elif value is NULL:
        if policy.json:
            response.json(None)
        else:
            response.send()
    elif policy.json:
        response.json(value)
    else:
        response.send(value)
