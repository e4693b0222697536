"""
Descriptor metadata - what the declarative decorators record.

Defines:
- Descriptor types (RouteDescriptor, RouterDescriptor, SendPolicy, RouterMount)
- DescriptorStore: an explicit arena keyed by (target, kind) holding the
  descriptors attached to controller classes, their methods and instances
- The default store used by decorators and ``register``
"""

from __future__ import annotations

import inspect
import weakref
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Pattern, Union

from .faults import ConfigurationFault


# ============================================================================
# Sentinels
# ============================================================================

class _Sentinel:
    __slots__ = ("name",)

    def __init__(self, name: str):
        self.name = name

    def __repr__(self) -> str:
        return self.name

    def __bool__(self) -> bool:
        return False


#: Nothing declared at this scope
MISSING: Any = _Sentinel("MISSING")

#: Router path supplied at registration time with ``RouterMount``
DYNAMIC: Any = _Sentinel("DYNAMIC")


# Descriptor kinds
ROUTES = "routes"
ROUTER = "router"
MIDDLEWARES = "middlewares"
ERROR_HANDLERS = "error_handlers"
SEND = "send"
CHILDREN = "children"
CHILDREN_FACTORY = "children_factory"


# ============================================================================
# Descriptors
# ============================================================================

@dataclass(frozen=True)
class RouteDescriptor:
    """One verb/path pair bound to a controller member."""
    verb: str
    path: Union[str, Pattern]
    key: str = ""


@dataclass(frozen=True)
class RouterDescriptor:
    """
    Marks a controller as owning a sub-router.

    Attributes:
        path: Root path, or ``DYNAMIC`` when supplied at registration
        options: Router options (case_sensitive, merge_params, strict)
        children: Optional ``factory(instance)`` returning child controllers
    """
    path: Any
    options: Dict[str, Any] = field(default_factory=dict)
    children: Optional[Callable[[Any], List[Any]]] = None

    @property
    def dynamic(self) -> bool:
        return self.path is DYNAMIC


@dataclass(frozen=True)
class SendPolicy:
    """
    Auto-send policy for route return values.

    Attributes:
        json: Always send with ``response.json``
        status: Default status applied before sending
        null_status: Status used when the handler returns ``NULL``
        undefined_status: Status used when the handler returns ``None``
        handler: Custom ``handler(value, request, response, next)`` that takes
            over sending
    """
    json: Optional[bool] = None
    status: Optional[int] = None
    null_status: Optional[int] = None
    undefined_status: Optional[int] = None
    handler: Optional[Callable[..., Any]] = None

    def merged_over(self, base: Optional["SendPolicy"]) -> "SendPolicy":
        """Fields explicitly set on ``self`` win over ``base``."""
        if base is None:
            return self
        overrides = {
            name: getattr(self, name)
            for name in ("json", "status", "null_status", "undefined_status", "handler")
            if getattr(self, name) is not None
        }
        return replace(base, **overrides)


@dataclass(frozen=True)
class RouterMount:
    """
    Controller (or plain Router) attached at an explicit path.

    Required for dynamic routers; for static routers the path acts as a
    constraint that must equal the declared root path.
    """
    path: Union[str, Pattern]
    router: Any


# ============================================================================
# DescriptorStore
# ============================================================================

class DescriptorStore:
    """
    Arena of descriptors keyed by target and kind.

    Targets are controller classes (class scope), their member functions
    (method scope) and controller instances (children registered at
    construction). Entries die with their targets.
    """

    def __init__(self):
        self._entries: "weakref.WeakKeyDictionary[Any, Dict[str, Any]]" = weakref.WeakKeyDictionary()

    # ------------------------------------------------------------------
    # Raw access
    # ------------------------------------------------------------------

    def attach(self, kind: str, target: Any, value: Any) -> None:
        self._entries.setdefault(target, {})[kind] = value

    def read(self, kind: str, target: Any, default: Any = MISSING) -> Any:
        entries = self._entries.get(target)
        if entries is None:
            return default
        return entries.get(kind, default)

    def prepend(self, kind: str, target: Any, values: List[Any]) -> None:
        """
        Put ``values`` before the ones already attached.

        Stacked decorators are applied bottom-up, prepending keeps the order
        in which they are written.
        """
        current = self.read(kind, target, [])
        self.attach(kind, target, list(values) + list(current))

    def has(self, target: Any) -> bool:
        return target in self._entries

    # ------------------------------------------------------------------
    # Member lookup
    # ------------------------------------------------------------------

    @staticmethod
    def member(cls: type, key: str) -> Any:
        """Raw member ``key`` of ``cls`` (descriptors unwrapped), or ``None``."""
        try:
            value = inspect.getattr_static(cls, key)
        except AttributeError:
            return None
        if isinstance(value, (staticmethod, classmethod)):
            return value.__func__
        return value

    def _read_member(self, kind: str, cls: type, key: str, default: Any = MISSING) -> Any:
        target = self.member(cls, key)
        if target is None:
            return default
        try:
            return self.read(kind, target, default)
        except TypeError:
            # unhashable or not weak-referenceable members carry nothing
            return default

    # ------------------------------------------------------------------
    # Read interface
    # ------------------------------------------------------------------

    def get_routes(self, cls: type) -> List[RouteDescriptor]:
        """
        Routes of ``cls`` in definition order, inherited ones included.
        Base class members come first; overriding members keep their slot.
        """
        keys: List[str] = []
        for klass in reversed(cls.__mro__):
            if klass is object:
                continue
            for key in vars(klass):
                if key not in keys:
                    keys.append(key)

        routes: List[RouteDescriptor] = []
        for key in keys:
            for verb, path in self._read_member(ROUTES, cls, key, []):
                routes.append(RouteDescriptor(verb=verb, path=path, key=key))
        return routes

    def get_middlewares(self, cls: type, key: Optional[str] = None) -> List[Callable[..., Any]]:
        if key is None:
            return list(self.read(MIDDLEWARES, cls, []))
        return list(self._read_member(MIDDLEWARES, cls, key, []))

    def get_error_handlers(self, cls: type, key: Optional[str] = None) -> List[Callable[..., Any]]:
        if key is None:
            return list(self.read(ERROR_HANDLERS, cls, []))
        return list(self._read_member(ERROR_HANDLERS, cls, key, []))

    def get_router_meta(self, cls: type) -> Optional[RouterDescriptor]:
        meta = self.read(ROUTER, cls, None)
        if meta is not None and meta.children is None:
            factory = self.read(CHILDREN_FACTORY, cls, None)
            if factory is not None:
                meta = replace(meta, children=factory)
        return meta

    def get_send_policy(self, cls: type, key: Optional[str] = None) -> Any:
        """``MISSING`` when nothing is declared, ``None`` when sending is suppressed."""
        if key is None:
            return self.read(SEND, cls, MISSING)
        return self._read_member(SEND, cls, key, MISSING)

    def get_children(self, instance: Any) -> List[Any]:
        try:
            return list(self.read(CHILDREN, instance, []))
        except TypeError:
            return []

    def add_children(self, instance: Any, children: List[Any]) -> None:
        """
        Append ``children`` to the ones already registered by ``instance``.

        Raises:
            ConfigurationFault: If ``instance`` cannot be weakly referenced
        """
        try:
            self.attach(CHILDREN, instance, self.get_children(instance) + list(children))
        except TypeError:
            raise ConfigurationFault(
                "CONTROLLER_NOT_WEAKREFERENCEABLE",
                f'"{type(instance).__name__}" registers children but its instances cannot be weakly '
                f'referenced (add "__weakref__" to its __slots__).',
            ) from None


#: Store used by the decorators unless told otherwise
descriptors = DescriptorStore()
