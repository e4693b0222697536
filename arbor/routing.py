"""
Arbor routing - continuation-passing router.

Provides:
- compile_path: ``/users/:id``, ``/files/*``, ``/:lang?`` and compiled regexes
- Next: the continuation handed to every middleware
- Layer: one mounted handler with its path matcher
- Route: per-path handler stack with verb dispatch
- Router: ordered stack of layers, nested routers, error handler layers and
  a removable fallback error handler

Middlewares are ``(request, response, next)`` callables and error handlers
are ``(error, request, response, next)`` callables. Both may be sync or
async; ``next`` may be called and left (the router resumes once the handler
returns) or awaited (the rest of the chain runs inside the handler).
"""

from __future__ import annotations

import functools
import inspect
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Pattern, Tuple, Union
from urllib.parse import unquote

logger = logging.getLogger("arbor.routing")

PathLike = Union[str, Pattern]

METHODS = ("get", "post", "put", "patch", "delete", "head", "options")

# Marker set on callables that must be mounted as error handlers
ERROR_HANDLER_ATTR = "__arbor_error_handler__"

_TOKEN = re.compile(r"(/)?(?::(\w+)(\?)?|(\*))")


# ============================================================================
# Path compilation
# ============================================================================

def compile_path(
    path: PathLike,
    *,
    end: bool = True,
    case_sensitive: bool = False,
    strict: bool = False,
) -> Tuple[Pattern, List[str]]:
    """
    Compile an Express-style path into a regex and its parameter keys.

    ``end=False`` builds a prefix matcher (used for mounted middlewares and
    routers). Unless ``strict``, a trailing slash is optional.
    """
    if isinstance(path, re.Pattern):
        return path, []

    keys: List[str] = []
    parts = ["^"]
    source = path if strict else path.rstrip("/")
    position = 0
    wildcards = 0

    for match in _TOKEN.finditer(source):
        parts.append(re.escape(source[position:match.start()]))
        position = match.end()
        slash, name, optional, star = match.groups()
        slash = slash or ""

        if star:
            keys.append(str(wildcards))
            wildcards += 1
            parts.append(f"{slash}(.*)")
        elif optional:
            keys.append(name)
            parts.append(f"(?:{slash}([^/]+?))?")
        else:
            keys.append(name)
            parts.append(f"{slash}([^/]+?)")

    parts.append(re.escape(source[position:]))
    if not strict:
        parts.append("/?")
    parts.append("$" if end else "(?=/|$)")

    flags = 0 if case_sensitive else re.IGNORECASE
    return re.compile("".join(parts), flags), keys


def handler_name(fn: Any) -> str:
    """Best-effort display name of a handler."""
    if isinstance(fn, functools.partial):
        return "<partial>"
    return getattr(fn, "__name__", None) or type(fn).__name__


def is_error_handler(fn: Any) -> bool:
    """
    True when ``fn`` must be mounted as an error handler: it carries the
    error handler marker, or it takes exactly four positional arguments.
    """
    if isinstance(fn, Router):
        return False
    if getattr(fn, ERROR_HANDLER_ATTR, False):
        return True
    try:
        signature = inspect.signature(fn, follow_wrapped=False)
    except (TypeError, ValueError):
        return False
    positional = 0
    for parameter in signature.parameters.values():
        if parameter.kind == parameter.VAR_POSITIONAL:
            return False
        if parameter.kind in (parameter.POSITIONAL_ONLY, parameter.POSITIONAL_OR_KEYWORD):
            positional += 1
    return positional == 4


def flatten_handlers(handlers: Iterable[Any]) -> List[Any]:
    """Flatten nested lists/tuples of handlers, keeping order."""
    flat: List[Any] = []
    for handler in handlers:
        if isinstance(handler, (list, tuple)):
            flat.extend(flatten_handlers(handler))
        elif handler is not None:
            flat.append(handler)
    return flat


# ============================================================================
# Continuation
# ============================================================================

class _Settled:
    """Awaitable that completes immediately."""

    def __await__(self):
        return
        yield


_SETTLED = _Settled()


class Next:
    """
    Continuation passed as the third argument of middlewares.

    ``next()`` continues the chain, ``next(err)`` switches to error
    handlers, ``next("route")`` skips the rest of the current route and
    ``next("router")`` leaves the current router. The returned object can be
    awaited to run the rest of the chain before the caller resumes.
    """

    __slots__ = ("_resume", "called", "error", "_resumed")

    def __init__(self, resume: Callable[[Any], Awaitable[None]]):
        self._resume = resume
        self.called = False
        self.error: Any = None
        self._resumed = False

    def __call__(self, error: Any = None) -> Union["Next", _Settled]:
        if self.called:
            logger.warning("next() was called more than once, ignoring the extra call")
            return _SETTLED
        self.called = True
        self.error = error
        return self

    def __await__(self):
        self.called = True
        if self._resumed:
            return _SETTLED.__await__()
        self._resumed = True
        return self._resume(self.error).__await__()

    def claim(self) -> bool:
        """
        Called by the dispatcher once the handler returned. True when the
        handler called ``next`` without awaiting it, so the dispatcher must
        continue the chain itself.
        """
        if not self.called or self._resumed:
            return False
        self._resumed = True
        return True


# ============================================================================
# Layer
# ============================================================================

class Layer:
    """A handler mounted on a router or a route."""

    __slots__ = (
        "path", "handle", "route", "method", "end", "fast_slash",
        "regex", "keys", "error_handler", "name",
    )

    def __init__(
        self,
        path: PathLike,
        handle: Callable[..., Any],
        *,
        end: bool = False,
        case_sensitive: bool = False,
        strict: bool = False,
        route: Optional["Route"] = None,
        method: Optional[str] = None,
        error_handler: Optional[bool] = None,
    ):
        self.path = path
        self.handle = handle
        self.route = route
        self.method = method
        self.end = end
        self.fast_slash = not end and path in ("", "/")
        self.regex, self.keys = compile_path(path, end=end, case_sensitive=case_sensitive, strict=strict)
        self.error_handler = is_error_handler(handle) if error_handler is None else error_handler
        self.name = handler_name(handle)

    def __repr__(self) -> str:
        kind = "error" if self.error_handler else "route" if self.route else "use"
        return f"<Layer {kind} {self.path!r} {self.name}>"

    def match(self, path: str) -> Optional[Tuple[str, Dict[str, str]]]:
        """Return ``(matched_prefix, params)`` or ``None``."""
        if self.fast_slash:
            return "", {}
        found = self.regex.match(path)
        if found is None:
            return None
        params: Dict[str, str] = {}
        named = {position - 1 for position in self.regex.groupindex.values()}
        for index, value in enumerate(found.groups()):
            if value is None or index in named:
                continue
            key = self.keys[index] if index < len(self.keys) else str(index)
            params[key] = unquote(value)
        for key, value in found.groupdict().items():
            if value is not None:
                params[key] = unquote(value)
        return found.group(0), params

    async def run(self, error: Any, request: Any, response: Any, nxt: Next) -> None:
        """Invoke the handler, funnelling raised exceptions into ``next``."""
        try:
            if error is not None:
                result = self.handle(error, request, response, nxt)
            else:
                result = self.handle(request, response, nxt)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            if nxt.called:
                logger.error("%s raised after calling next()", self.name, exc_info=exc)
            else:
                nxt(exc)


# ============================================================================
# Route
# ============================================================================

class Route:
    """Handlers for one path, dispatched by HTTP verb."""

    def __init__(self, path: PathLike):
        self.path = path
        self.stack: List[Layer] = []
        self.methods: set = set()

    def __repr__(self) -> str:
        return f"<Route {self.path!r} {sorted(self.methods)}>"

    def handles(self, method: str) -> bool:
        if "_all" in self.methods:
            return True
        method = method.lower()
        if method == "head" and "head" not in self.methods:
            method = "get"
        return method in self.methods

    def add(self, method: str, *handlers: Any) -> "Route":
        """Append handlers for ``method`` (``"all"`` matches every verb)."""
        method = method.lower()
        verb = None if method == "all" else method
        self.methods.add("_all" if verb is None else verb)
        for handler in flatten_handlers(handlers):
            if not callable(handler):
                raise TypeError(f"Route.{method}() requires callable handlers, got {type(handler).__name__}")
            self.stack.append(Layer("/", handler, method=verb))
        return self

    async def dispatch(self, request: Any, response: Any, done: Callable[..., Any]) -> None:
        method = request.method.lower()
        if method == "head" and "head" not in self.methods:
            method = "get"
        await self._step(request, response, done, method, 0, None)

    async def _step(self, request, response, done, method, index, error) -> None:
        while True:
            if error == "route":
                return await done()
            if error == "router":
                return await done(error)

            layer = None
            while index < len(self.stack):
                candidate = self.stack[index]
                index += 1
                if candidate.method is not None and candidate.method != method:
                    continue
                if (error is not None) != candidate.error_handler:
                    continue
                layer = candidate
                break

            if layer is None:
                return await done(error)

            nxt = Next(functools.partial(self._step, request, response, done, method, index))
            await layer.run(error, request, response, nxt)
            if not nxt.claim():
                return
            error = nxt.error


# ============================================================================
# Router
# ============================================================================

class Router:
    """
    Ordered stack of layers.

    A router is itself a middleware: mounting it with ``use`` nests it, and
    the request path it sees is relative to its mount point.
    """

    def __init__(self, *, case_sensitive: bool = False, merge_params: bool = False, strict: bool = False):
        self.case_sensitive = case_sensitive
        self.merge_params = merge_params
        self.strict = strict
        self.stack: List[Layer] = []
        self._fallback: Optional[Layer] = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} layers={len(self.stack)}>"

    async def __call__(self, request: Any, response: Any, next: Callable[..., Any]) -> None:
        await self.handle(request, response, next)

    # ========================================================================
    # Mounting
    # ========================================================================

    def use(self, *args: Any) -> "Router":
        """
        Mount middlewares, error handlers or routers.

        ``use(mw, ...)`` mounts at the root, ``use("/path", mw, ...)`` at a
        prefix. Mounting an error handler removes the fallback error handler.
        """
        path, handlers = self._split_path(args)
        for handler in handlers:
            self._mount(path, handler, None)
        return self

    def catch(self, *args: Any) -> "Router":
        """Mount error handlers, whatever their signature."""
        path, handlers = self._split_path(args)
        for handler in handlers:
            self._mount(path, handler, True)
        return self

    def route(self, path: PathLike) -> Route:
        """Create a route for ``path`` and mount it."""
        route = Route(path)
        layer = Layer(
            path,
            route.dispatch,
            end=True,
            case_sensitive=self.case_sensitive,
            strict=self.strict,
            route=route,
            error_handler=False,
        )
        self.stack.append(layer)
        return route

    def add_route(self, method: str, path: PathLike, *handlers: Any) -> "Router":
        self.route(path).add(method, *handlers)
        return self

    def get(self, path: PathLike, *handlers: Any) -> "Router":
        return self.add_route("get", path, *handlers)

    def post(self, path: PathLike, *handlers: Any) -> "Router":
        return self.add_route("post", path, *handlers)

    def put(self, path: PathLike, *handlers: Any) -> "Router":
        return self.add_route("put", path, *handlers)

    def patch(self, path: PathLike, *handlers: Any) -> "Router":
        return self.add_route("patch", path, *handlers)

    def delete(self, path: PathLike, *handlers: Any) -> "Router":
        return self.add_route("delete", path, *handlers)

    def head(self, path: PathLike, *handlers: Any) -> "Router":
        return self.add_route("head", path, *handlers)

    def options(self, path: PathLike, *handlers: Any) -> "Router":
        return self.add_route("options", path, *handlers)

    def all(self, path: PathLike, *handlers: Any) -> "Router":
        return self.add_route("all", path, *handlers)

    def _split_path(self, args: Tuple[Any, ...]) -> Tuple[PathLike, List[Any]]:
        if args and isinstance(args[0], (str, re.Pattern)):
            path, rest = args[0], args[1:]
        else:
            path, rest = "/", args
        handlers = flatten_handlers(rest)
        if not handlers:
            raise TypeError("use() requires at least one handler")
        return path, handlers

    def _mount(self, path: PathLike, handler: Any, error_handler: Optional[bool]) -> None:
        if not callable(handler):
            raise TypeError(f"use() requires callable handlers, got {type(handler).__name__}")
        layer = Layer(
            path,
            handler,
            end=False,
            case_sensitive=self.case_sensitive,
            strict=False,
            error_handler=error_handler,
        )
        if layer.error_handler and self._fallback is not None:
            logger.debug("Error handler %s replaces the fallback error handler", layer.name)
            self.remove_fallback()
        self.stack.append(layer)

    # ========================================================================
    # Fallback error handler
    # ========================================================================

    def set_fallback(self, handler: Callable[..., Any]) -> None:
        """Mount ``handler`` as the last error handler, replacing any previous fallback."""
        self.remove_fallback()
        self._fallback = Layer("/", handler, end=False, error_handler=True)
        self.stack.append(self._fallback)

    def remove_fallback(self) -> bool:
        layer, self._fallback = self._fallback, None
        if layer is None:
            return False
        for index, candidate in enumerate(self.stack):
            if candidate is layer:
                del self.stack[index]
                return True
        return False

    def has_fallback(self) -> bool:
        return self._fallback is not None

    # ========================================================================
    # Introspection
    # ========================================================================

    def mounted_middlewares(self) -> List[Callable[..., Any]]:
        """Plain middlewares mounted on this router (no routes, routers or error handlers)."""
        return [
            layer.handle
            for layer in self.stack
            if layer.route is None and not layer.error_handler and not isinstance(layer.handle, Router)
        ]

    # ========================================================================
    # Dispatch
    # ========================================================================

    async def handle(self, request: Any, response: Any, done: Callable[..., Any]) -> None:
        """Run ``request`` through the stack, then call ``done(error)``."""
        entry = (request.base_url, request.path, request.params)
        await self._step(request, response, done, entry, 0, None)

    async def _step(self, request, response, done, entry, index, error) -> None:
        base_url, path, parent_params = entry

        while True:
            request.base_url, request.path = base_url, path
            if error == "route":
                error = None
            if error == "router":
                request.params = parent_params
                return await done()

            found = None
            while index < len(self.stack):
                layer = self.stack[index]
                index += 1
                if layer.route is not None:
                    if error is not None or not layer.route.handles(request.method):
                        continue
                elif (error is not None) != layer.error_handler:
                    continue
                matched = layer.match(path)
                if matched is not None:
                    found = layer, matched
                    break

            if found is None:
                request.params = parent_params
                return await done(error)

            layer, (prefix, params) = found
            request.params = {**parent_params, **params} if self.merge_params else params
            if layer.route is None and prefix:
                request.base_url = base_url + prefix.rstrip("/")
                remainder = path[len(prefix):]
                request.path = remainder if remainder.startswith("/") else "/" + remainder

            nxt = Next(functools.partial(self._step, request, response, done, entry, index))
            await layer.run(error, request, response, nxt)
            if not nxt.claim():
                return
            error = nxt.error
