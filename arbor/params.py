"""
Parameter injection.

An injector describes how one positional argument of a route method is
produced from ``(request, response, next)``. Injectors are declared with
``typing.Annotated`` or as parameter defaults::

    @POST("/users")
    def create(self, body: Annotated[dict, Body()], lang=Header("accept-language")):
        ...

Extraction is synchronous and side-effect free; work such as body parsing
belongs to the injector's required middlewares (``use``).
"""

from __future__ import annotations

import functools
import inspect
from typing import Any, Callable, Iterable, Optional, Tuple

from .body_parsers import json_parser, urlencoded_parser
from .faults import ConfigurationFault
from .routing import flatten_handlers, handler_name

PARAM_FACTORY_ATTR = "__arbor_param_factory__"


class ParamInjector:
    """
    Produces one handler argument.

    Attributes:
        mapper: ``mapper(request[, response[, next]])`` returning the value
        use: Middlewares that must run before the handler
        dedupe: Whether ``use`` entries are skipped when a middleware with the
            same name is already scheduled
        name: Display name
    """

    __slots__ = ("mapper", "use", "dedupe", "name", "_arity")

    def __init__(
        self,
        mapper: Callable[..., Any],
        use: Optional[Iterable[Callable[..., Any]]] = None,
        dedupe: bool = False,
        name: Optional[str] = None,
    ):
        self.mapper = mapper
        self.use: Tuple[Callable[..., Any], ...] = tuple(flatten_handlers(use or ()))
        self.dedupe = dedupe
        self.name = name or handler_name(mapper)
        self._arity = _arity(mapper)

    def __repr__(self) -> str:
        return f"<ParamInjector {self.name}>"

    def __call__(self) -> "ParamInjector":
        # ``Req`` and ``Req()`` are interchangeable
        return self

    def extract(self, request: Any, response: Any, next: Any) -> Any:
        value = self.mapper(*(request, response, next)[:self._arity])
        if inspect.isawaitable(value):
            if inspect.iscoroutine(value):
                value.close()
            raise ConfigurationFault(
                "ASYNC_PARAMETER_MAPPER",
                f"Parameter injector {self.name} returned an awaitable, extraction must be synchronous.",
            )
        return value


def _arity(mapper: Callable[..., Any]) -> int:
    try:
        parameters = inspect.signature(mapper).parameters.values()
    except (TypeError, ValueError):
        return 3
    count = 0
    for parameter in parameters:
        if parameter.kind == parameter.VAR_POSITIONAL:
            return 3
        if parameter.kind in (parameter.POSITIONAL_ONLY, parameter.POSITIONAL_OR_KEYWORD):
            count += 1
    return min(count, 3)


def param_factory(fn: Callable[..., ParamInjector]) -> Callable[..., ParamInjector]:
    """Mark an injector factory so it can be used uncalled (``Annotated[dict, Body]``)."""
    setattr(fn, PARAM_FACTORY_ATTR, True)
    return fn


def as_injector(value: Any) -> Optional[ParamInjector]:
    """Injector declared by ``value``, or ``None``."""
    if isinstance(value, ParamInjector):
        return value
    if getattr(value, PARAM_FACTORY_ATTR, False):
        return value()
    return None


def create_param_decorator(
    mapper: Callable[..., Any],
    use: Optional[Iterable[Callable[..., Any]]] = None,
    dedupe: bool = False,
) -> ParamInjector:
    """
    Create a custom parameter injector.

    Example:
        CurrentUser = create_param_decorator(lambda req: req.state["user"], use=[authenticate])

        @GET("/me")
        def me(self, user: Annotated[User, CurrentUser]):
            return user
    """
    return ParamInjector(mapper, use=use, dedupe=dedupe)


# ============================================================================
# Built-ins
# ============================================================================

Req = ParamInjector(lambda request: request, name="Req")
Res = ParamInjector(lambda request, response: response, name="Res")
Next = ParamInjector(lambda request, response, next: next, name="Next")


def _pick(source: Any, key: Optional[str]) -> Any:
    if key is None:
        return source
    if isinstance(source, dict):
        return source.get(key)
    return None


@param_factory
def Body(key: Optional[str] = None) -> ParamInjector:
    """
    Request body (or one of its fields), parsed from JSON or urlencoded data.

    Schedules ``json_parser`` and ``urlencoded_parser`` unless parsers with the
    same names already run for the route.
    """
    return ParamInjector(
        functools.partial(_body, key),
        use=[json_parser(), urlencoded_parser()],
        dedupe=True,
        name="Body",
    )


def _body(key, request):
    return _pick(request.body, key)


@param_factory
def Params(name: Optional[str] = None) -> ParamInjector:
    """Route parameters, or a single one."""
    return ParamInjector(functools.partial(_params, name), name="Params")


def _params(name, request):
    return _pick(request.params, name)


@param_factory
def Query(field: Optional[str] = None) -> ParamInjector:
    """Parsed query string, or a single field."""
    return ParamInjector(functools.partial(_query, field), name="Query")


def _query(field, request):
    return _pick(request.query, field)


@param_factory
def Header(name: Optional[str] = None) -> ParamInjector:
    """Request headers as a dict, or a single header (case-insensitive)."""
    return ParamInjector(functools.partial(_header, name), name="Header")


def _header(name, request):
    if name is None:
        return dict(request.headers.items())
    return request.headers.get(name)
