"""
Descriptor resolvers.

Read the descriptor store for one controller (and optionally one member)
and return fresh, ordered results the composition engine can own.
"""

from __future__ import annotations

import inspect
import typing
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .faults import ConfigurationFault
from .metadata import MISSING, DescriptorStore, SendPolicy, descriptors
from .params import ParamInjector, as_injector


@dataclass(frozen=True)
class ResolvedParam:
    """Injector bound to the positional index of a handler argument."""
    index: int
    injector: ParamInjector
    name: str = ""


def resolve_middlewares(
    cls: type,
    key: Optional[str] = None,
    *,
    store: DescriptorStore = descriptors,
) -> List[Callable[..., Any]]:
    """Class middlewares (``key=None``) or route middlewares, in declaration order."""
    return store.get_middlewares(cls, key)


def resolve_error_handlers(
    cls: type,
    key: Optional[str] = None,
    *,
    store: DescriptorStore = descriptors,
) -> List[Callable[..., Any]]:
    """Class error handlers (``key=None``) or route error handlers, in declaration order."""
    return store.get_error_handlers(cls, key)


def _type_hints(fn: Callable[..., Any]) -> Dict[str, Any]:
    try:
        return typing.get_type_hints(fn, include_extras=True)
    except Exception:
        # unresolvable forward references, fall back to raw annotations
        return dict(getattr(fn, "__annotations__", {}))


def _declared_injectors(parameter: inspect.Parameter, annotation: Any) -> List[ParamInjector]:
    found: List[ParamInjector] = []
    if typing.get_origin(annotation) is typing.Annotated:
        for meta in annotation.__metadata__:
            injector = as_injector(meta)
            if injector is not None:
                found.append(injector)
    if parameter.default is not parameter.empty:
        injector = as_injector(parameter.default)
        if injector is not None:
            found.append(injector)
    return found


def resolve_param_injectors(
    cls: type,
    key: str,
    *,
    store: DescriptorStore = descriptors,
) -> List[ResolvedParam]:
    """
    Injectors of ``cls.key`` ordered by argument index.

    An empty list means the method takes the raw ``(request, response, next)``.

    Raises:
        ConfigurationFault: If a parameter declares more than one injector
    """
    raw = inspect.getattr_static(cls, key, None)
    fn = store.member(cls, key)
    if not callable(fn):
        return []

    try:
        parameters = list(inspect.signature(fn).parameters.values())
    except (TypeError, ValueError):
        return []

    if not isinstance(raw, staticmethod) and parameters:
        # self / cls
        parameters = parameters[1:]

    hints = _type_hints(fn)
    resolved: List[ResolvedParam] = []
    for index, parameter in enumerate(parameters):
        if parameter.kind not in (parameter.POSITIONAL_ONLY, parameter.POSITIONAL_OR_KEYWORD):
            break
        found = _declared_injectors(parameter, hints.get(parameter.name, parameter.annotation))
        if len(found) > 1:
            raise ConfigurationFault(
                "MULTIPLE_PARAMETER_DECORATORS",
                f'"{cls.__name__}.{key}" parameter "{parameter.name}" declares {len(found)} injectors, only one is allowed.',
            )
        if found:
            resolved.append(ResolvedParam(index, found[0], parameter.name))
    return resolved


def resolve_send_policy(
    cls: type,
    key: str,
    app_class: Optional[type] = None,
    *,
    store: DescriptorStore = descriptors,
) -> Optional[SendPolicy]:
    """
    Effective send policy of ``cls.key``.

    Precedence: method ``DontSend`` > method merged over class > class >
    application class > none. ``DontSend`` on the class drops the class and
    application policies but an explicit method policy still applies.
    """
    method = store.get_send_policy(cls, key)
    if method is None:
        return None

    klass = store.get_send_policy(cls)
    if method is not MISSING:
        return method.merged_over(klass if klass is not MISSING else None)

    if klass is not MISSING:
        return klass

    if app_class is not None:
        app = store.get_send_policy(app_class)
        if app is not MISSING:
            return app

    return None
