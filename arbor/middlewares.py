"""
Middleware decorators.

Shortcuts built on ``Use`` for common per-controller or per-route concerns:
status codes, response headers, guards, conditional middlewares, body
interceptors and finish callbacks.
"""

from __future__ import annotations

import inspect
from typing import Any, Callable, Mapping, Sequence, Union

from .decorators import Use
from .faults import HTTPError
from .routing import Router


def UseStatus(code: int) -> Callable[[Any], Any]:
    """Set the response status before the handler runs."""

    def use_status(request, response, next):
        response.status(code)
        next()

    return Use(use_status)


def UseSet(field: Union[str, Mapping[str, Any]], value: Any = None) -> Callable[[Any], Any]:
    """
    Set response headers before the handler runs.

    Example:
        @UseSet({"cache-control": "no-store", "x-frame-options": "DENY"})
    """

    def use_set(request, response, next):
        response.set(field, value)
        next()

    return Use(use_set)


UseHeader = UseSet


def UseType(media_type: str) -> Callable[[Any], Any]:
    """Set the response Content-Type (``"json"``, ``"text/csv"``...)."""

    def use_type(request, response, next):
        response.type(media_type)
        next()

    return Use(use_type)


UseContentType = UseType


def UseGuards(*guards: Callable[[Any], Any]) -> Callable[[Any], Any]:
    """
    Authorize requests with ``guard(request)`` predicates (sync or async).

    A falsy result fails with 403 "Access Denied". A guard may also return an
    exception, which is forwarded with status 403.
    """

    def make_guard(guard: Callable[[Any], Any]) -> Callable[..., Any]:
        async def use_guard(request, response, next):
            result = guard(request)
            if inspect.isawaitable(result):
                result = await result

            if isinstance(result, BaseException):
                result.status = 403
                response.status(403)
                next(result)
            elif result:
                next()
            else:
                response.status(403)
                next(HTTPError(403, "Access Denied"))

        use_guard.__name__ = f"guard_{getattr(guard, '__name__', 'anonymous')}"
        return use_guard

    return Use(*[make_guard(guard) for guard in guards])


def UseIf(condition: Callable[[Any], Any], middlewares: Sequence[Callable[..., Any]]) -> Callable[[Any], Any]:
    """Run ``middlewares`` in order only when ``condition(request)`` is truthy."""
    router = Router()
    router.use(*middlewares)

    async def use_if(request, response, next):
        ok = condition(request)
        if inspect.isawaitable(ok):
            ok = await ok
        if ok:
            await router.handle(request, response, next)
        else:
            next()

    return Use(use_if)


_INTERCEPTED = ("send", "json", "end")


def UseInterceptor(transform: Callable[[Any, Any, Any], Any]) -> Callable[[Any], Any]:
    """
    Rewrite the body handed to ``send``/``json``/``end``.

    ``transform(data, request, response)`` returns the new body, directly or
    as an awaitable. Errors (an exception body or a status >= 400) and
    streamed responses are left alone; use ``Catch`` for errors.

    Example:
        @UseInterceptor(lambda data, request, response: {"data": data})
    """

    def use_interceptor(request, response, next):
        originals = {name: getattr(response, name) for name in _INTERCEPTED}

        def restore():
            for name in _INTERCEPTED:
                vars(response).pop(name, None)

        def intercept(name: str) -> Callable[..., Any]:
            original = originals[name]

            def intercepted(body=None):
                # send() hands objects to json(), transform only once
                restore()
                if isinstance(body, BaseException) or response.status_code >= 400:
                    return original(body)
                if name == "end" and (not isinstance(body, (str, bytes)) or response.headers_sent):
                    return original(body)

                result = transform(body, request, response)
                if response.headers_sent:
                    return response
                if inspect.isawaitable(result):
                    return response.commit_later(result, original)
                return original(result)

            intercepted.__name__ = name
            return intercepted

        for name in _INTERCEPTED:
            setattr(response, name, intercept(name))
        next()

    return Use(use_interceptor)


def UseOnFinish(callback: Callable[[Any, Any], Any]) -> Callable[[Any], Any]:
    """
    Run ``callback(request, response)`` once the response is flushed.

    ``response.body`` holds the value passed to ``send``/``json``. Errors
    raised by the callback are logged, never propagated.
    """

    def use_on_finish(request, response, next):
        response.on_finish(callback)
        next()

    return Use(use_on_finish)
