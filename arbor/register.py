"""
Composition engine - compiles decorated controllers into router chains.

Features:
- Application bootstrap (class-level middlewares and routes, once)
- Router-less controllers mounted route by route on the parent scope
- Router controllers mounted as sub-routers, with nested children
- Parameter middleware deduplication against everything scheduled upstream
- Global fallback error handler appended last

Every chain is built once; requests only walk the composed routers.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional, Sequence

from .dedupe import dedupe_param_middlewares
from .faults import ConfigurationFault
from .fallback import global_error_handler
from .handler import create_handler, promisify_error_handler, promisify_handler, unwrap_handler
from .metadata import DescriptorStore, RouteDescriptor, RouterDescriptor, RouterMount, descriptors
from .resolvers import resolve_param_injectors, resolve_send_policy
from .routing import PathLike, Router, handler_name

logger = logging.getLogger("arbor.register")

Middleware = Callable[..., Any]

_APP_CATCH_ATTR = "_arbor_app_error_handlers"
_BOOTSTRAP_ATTR = "_arbor_bootstrapped"


# ============================================================================
# Attachment records
# ============================================================================

class AttachState(str, enum.Enum):
    """Attachment lifecycle of one controller."""
    UNATTACHED = "unattached"
    RESOLVING_ROUTER = "resolving-router"
    RESOLVING_ROUTES = "resolving-routes"
    MOUNTING_ROUTES = "mounting-routes"
    RECURSING_CHILDREN = "recursing-children"
    MOUNTED = "mounted"


@dataclass
class MountedRoute:
    """One composed route chain, kept for introspection."""
    verb: str
    path: PathLike
    key: str
    chain: List[str] = field(default_factory=list)


@dataclass
class ControllerAttachment:
    """
    Result of attaching one controller declaration.

    Attributes:
        controller: Controller class (or router class for plain routers)
        path: Mount path of the controller's sub-router, ``None`` when its
            routes are mounted on the parent scope
        state: Last lifecycle state reached
        routes: Composed route chains
        children: Attachments of child controllers
    """
    controller: type
    path: Optional[PathLike] = None
    state: AttachState = AttachState.UNATTACHED
    routes: List[MountedRoute] = field(default_factory=list)
    children: List["ControllerAttachment"] = field(default_factory=list)

    def advance(self, state: AttachState) -> None:
        self.state = state
        logger.debug("%s: %s", self.controller.__name__, state.value)


# ============================================================================
# Public API
# ============================================================================

def get_global_middlewares(app: Router) -> List[Middleware]:
    """
    Middlewares mounted on ``app``, unwrapped and unique by reference.

    Used as the outermost dedupe seed, so calling ``register`` several times
    never counts a global middleware twice.
    """
    found: List[Middleware] = []
    for mw in app.mounted_middlewares():
        mw = unwrap_handler(mw)
        if not any(mw is seen for seen in found):
            found.append(mw)
    return found


def register(server: Any, controllers: Iterable[Any] = (), *, store: DescriptorStore = descriptors) -> Any:
    """
    Compile ``controllers`` and mount them on ``server``.

    Args:
        server: Application (or any Router) to mount on. Inside a controller
            constructor, pass ``self`` to declare child controllers instead.
        controllers: Controller classes, instances or ``RouterMount`` objects
        store: Descriptor store to read metadata from

    Returns:
        ``server``

    Raises:
        ConfigurationFault: On invalid declarations
    """
    controllers = list(controllers)

    if not isinstance(server, Router):
        if store.get_router_meta(type(server)) is None:
            raise ConfigurationFault(
                "ROUTER_DECORATOR_MISSING",
                f'"{type(server).__name__}" registers children but is missing the @Router decorator.',
            )
        store.add_children(server, controllers)
        return server

    app = server
    app_class = _application_class(app)
    attachments: List[ControllerAttachment] = []

    first = app_class is not None and not getattr(app, _BOOTSTRAP_ATTR, False)
    if first:
        setattr(app, _BOOTSTRAP_ATTR, True)
        for mw in store.get_middlewares(app_class):
            app.use(promisify_handler(mw))

    global_mws = get_global_middlewares(app)

    if first and store.get_routes(app_class):
        attachment = ControllerAttachment(app_class)
        attachment.advance(AttachState.RESOLVING_ROUTES)
        _mount_routes(
            app, app_class, app, store.get_routes(app_class), attachment,
            shared=[], shared_error=[], scheduled=[global_mws], app_class=app_class, store=store,
        )
        attachment.advance(AttachState.MOUNTED)
        attachments.append(attachment)

    for declaration in controllers:
        attachments.append(_attach(app, declaration, global_mws, [], app_class, store))

    if app_class is not None:
        _append_app_error_handlers(app, app_class, store)

    app.set_fallback(global_error_handler)

    if hasattr(app, "attachments"):
        app.attachments.extend(attachments)
    logger.debug("Registered %d controller(s) on %r", len(controllers), app)
    return app


# ============================================================================
# Attachment
# ============================================================================

def _application_class(app: Router) -> Optional[type]:
    from .application import Application

    return type(app) if isinstance(app, Application) else None


def _append_app_error_handlers(app: Router, app_class: type, store: DescriptorStore) -> None:
    """Keep the Application class error handlers after every controller."""
    handlers = getattr(app, _APP_CATCH_ATTR, None)
    if handlers is None:
        handlers = [promisify_error_handler(h) for h in store.get_error_handlers(app_class)]
        setattr(app, _APP_CATCH_ATTR, handlers)
    if not handlers:
        return
    app.stack[:] = [layer for layer in app.stack if not any(layer.handle is h for h in handlers)]
    app.catch(*handlers)


def _split_declaration(declaration: Any) -> tuple:
    """``(mount_path, target)`` of a controller declaration."""
    if isinstance(declaration, RouterMount):
        return declaration.path, declaration.router
    return None, declaration


def _controller_class(target: Any) -> type:
    return target if isinstance(target, type) else type(target)


def _same_path(a: PathLike, b: PathLike) -> bool:
    if isinstance(a, re.Pattern) and isinstance(b, re.Pattern):
        return a.pattern == b.pattern and a.flags == b.flags
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    return False


def _resolve_root(cls: type, meta: Optional[RouterDescriptor], mount_path: Optional[PathLike]) -> Optional[PathLike]:
    if meta is None:
        if mount_path is not None:
            raise ConfigurationFault(
                "ROUTER_DECORATOR_MISSING",
                f'"{cls.__name__}" is mounted at {mount_path!r} but is missing the @Router decorator.',
            )
        return None
    if meta.dynamic:
        if mount_path is None:
            raise ConfigurationFault(
                "DYNAMIC_ROUTER_PATH_UNDEFINED",
                f'"{cls.__name__}" is a dynamic router, register it with RouterMount(path, {cls.__name__}).',
            )
        return mount_path
    if mount_path is not None and not _same_path(mount_path, meta.path):
        raise ConfigurationFault(
            "ROUTER_PATH_CONSTRAINED",
            f'"{cls.__name__}" is constrained to {meta.path!r} and cannot be mounted at {mount_path!r}.',
        )
    return meta.path


def _attach(
    scope: Router,
    declaration: Any,
    global_mws: Sequence[Middleware],
    parent_shared: Sequence[Middleware],
    app_class: Optional[type],
    store: DescriptorStore,
) -> ControllerAttachment:
    mount_path, target = _split_declaration(declaration)

    if isinstance(target, Router):
        path = mount_path if mount_path is not None else "/"
        scope.use(path, target)
        attachment = ControllerAttachment(type(target), path=path)
        attachment.advance(AttachState.MOUNTED)
        return attachment

    cls = _controller_class(target)
    attachment = ControllerAttachment(cls)
    attachment.advance(AttachState.RESOLVING_ROUTER)

    meta = store.get_router_meta(cls)
    routes = store.get_routes(cls)
    root = _resolve_root(cls, meta, mount_path)

    if meta is None and not routes:
        logger.warning("Controller %s has no routes and no @Router decorator, nothing was attached", cls.__name__)
        return attachment

    instance = target() if isinstance(target, type) else target
    shared = store.get_middlewares(cls)
    shared_error = store.get_error_handlers(cls)
    scheduled = [global_mws, parent_shared, shared]

    if meta is None:
        # routes carry the class middlewares and error handlers themselves
        attachment.advance(AttachState.RESOLVING_ROUTES)
        _mount_routes(
            scope, cls, instance, routes, attachment,
            shared=shared, shared_error=shared_error, scheduled=scheduled, app_class=app_class, store=store,
        )
        attachment.advance(AttachState.MOUNTED)
        return attachment

    attachment.path = root
    router = Router(**meta.options)
    for mw in shared:
        router.use(promisify_handler(mw))

    attachment.advance(AttachState.RESOLVING_ROUTES)
    _mount_routes(
        router, cls, instance, routes, attachment,
        shared=[], shared_error=[], scheduled=scheduled, app_class=app_class, store=store,
    )

    attachment.advance(AttachState.RECURSING_CHILDREN)
    children = store.get_children(instance)
    if meta.children is not None:
        children += list(meta.children(instance) or ())
    for child in children:
        _, child_target = _split_declaration(child)
        if not isinstance(child_target, Router) and store.get_router_meta(_controller_class(child_target)) is None:
            raise ConfigurationFault(
                "ROUTER_DECORATOR_MISSING",
                f'Child "{_controller_class(child_target).__name__}" of "{cls.__name__}" is missing the @Router decorator.',
            )
        attachment.children.append(
            _attach(router, child, global_mws, [*parent_shared, *shared], app_class, store)
        )

    if shared_error:
        router.catch(*[promisify_error_handler(h) for h in shared_error])

    scope.use(root, router)
    attachment.advance(AttachState.MOUNTED)
    return attachment


def _mount_routes(
    scope: Router,
    cls: type,
    instance: Any,
    routes: Sequence[RouteDescriptor],
    attachment: ControllerAttachment,
    *,
    shared: Sequence[Middleware],
    shared_error: Sequence[Middleware],
    scheduled: Sequence[Sequence[Middleware]],
    app_class: Optional[type],
    store: DescriptorStore,
) -> None:
    """Build every route chain first, then mount them in declaration order."""
    built = []
    for descriptor in routes:
        route_mws = store.get_middlewares(cls, descriptor.key)
        route_errors = store.get_error_handlers(cls, descriptor.key)
        injectors = resolve_param_injectors(cls, descriptor.key, store=store)
        param_mws = dedupe_param_middlewares(injectors, [*scheduled, route_mws])
        policy = resolve_send_policy(cls, descriptor.key, app_class, store=store)
        handler = create_handler(cls, instance, descriptor.key, injectors, policy)

        chain = [promisify_handler(mw) for mw in [*shared, *route_mws, *param_mws]]
        chain.append(handler)
        chain.extend(promisify_error_handler(h) for h in [*route_errors, *shared_error])
        built.append((descriptor, chain))

    attachment.advance(AttachState.MOUNTING_ROUTES)
    for descriptor, chain in built:
        scope.route(descriptor.path).add(descriptor.verb, *chain)
        attachment.routes.append(MountedRoute(
            verb=descriptor.verb,
            path=descriptor.path,
            key=descriptor.key,
            chain=[handler_name(unwrap_handler(h)) for h in chain],
        ))
