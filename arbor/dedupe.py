"""
Parameter middleware deduplication.

Parameter injectors may require middlewares (body parsers...) that are
already scheduled upstream: globally, by an ancestor router, by the
controller or by the route itself. Running a stream-consuming middleware
twice fails, so such middlewares are dropped from the route chain:

- always when the very same callable is already scheduled or selected
- by ``__name__`` when the injector is dedupe-eligible (two instances built
  by the same factory share a name)

Callables without a usable name (lambdas, partials, callable objects) are
only compared by reference.
"""

import functools
from typing import Any, Callable, Iterable, List, Optional, Sequence

from .handler import unwrap_handler

Middleware = Callable[..., Any]


def middleware_name(mw: Middleware) -> Optional[str]:
    """Name used for dedupe, ``None`` for anonymous callables."""
    mw = unwrap_handler(mw)
    if isinstance(mw, functools.partial):
        return None
    name = getattr(mw, "__name__", None)
    if not name or name == "<lambda>":
        return None
    return name


def same_middleware(a: Middleware, b: Middleware) -> bool:
    """Reference equality, with bound methods compared by ``==``."""
    a, b = unwrap_handler(a), unwrap_handler(b)
    return a is b or (hasattr(a, "__self__") and hasattr(a, "__func__") and a == b)


def _contains(items: Iterable[Middleware], mw: Middleware) -> bool:
    return any(same_middleware(item, mw) for item in items)


def dedupe_param_middlewares(
    injectors: Sequence[Any],
    scheduled_groups: Sequence[Sequence[Middleware]],
) -> List[Middleware]:
    """
    Middlewares required by ``injectors`` that are not already scheduled.

    Args:
        injectors: Resolved params (``.injector.use``, ``.injector.dedupe``) in
            parameter order
        scheduled_groups: Global, ancestor routers, controller and route
            middlewares, in execution order

    Returns:
        Selected middlewares, in first-seen order
    """
    scheduled = [mw for group in scheduled_groups for mw in group]
    names = set()
    for mw in scheduled:
        name = middleware_name(mw)
        if name:
            names.add(name)

    selected: List[Middleware] = []
    for param in injectors:
        injector = param.injector
        for mw in injector.use:
            if _contains(scheduled, mw) or _contains(selected, mw):
                continue
            name = middleware_name(mw)
            if injector.dedupe and name and name in names:
                continue
            selected.append(mw)
            if name:
                names.add(name)

    return selected
