"""
Controller decorators

Declarative route, router, middleware, error handler and send-policy
decorators. They only record descriptors in the descriptor store; nothing
is mounted until ``register`` composes the controllers.
"""

from typing import Any, Callable, List, Optional, TypeVar, Union

from .metadata import (
    CHILDREN_FACTORY,
    DYNAMIC,
    ERROR_HANDLERS,
    MIDDLEWARES,
    ROUTER,
    ROUTES,
    SEND,
    RouterDescriptor,
    SendPolicy,
    descriptors,
)
from .routing import ERROR_HANDLER_ATTR, PathLike, flatten_handlers


T = TypeVar('T')


def _target(obj: Any) -> Any:
    """Function carrying the metadata of a (possibly wrapped) member."""
    if isinstance(obj, (staticmethod, classmethod)):
        return obj.__func__
    return obj


# ============================================================================
# Routes
# ============================================================================

class RouteDecorator:
    """
    Base route decorator.

    Records ``(verb, path)`` on the decorated method. Stacking several route
    decorators on one method registers it for each of them, in written order.
    """

    method: str = ''

    def __init__(self, path: PathLike = ''):
        self.path = path

    def __call__(self, func: T) -> T:
        descriptors.prepend(ROUTES, _target(func), [(self.method, self.path)])
        return func


class GET(RouteDecorator):
    """GET request decorator."""
    method = 'get'


class POST(RouteDecorator):
    """POST request decorator."""
    method = 'post'


class PUT(RouteDecorator):
    """PUT request decorator."""
    method = 'put'


class PATCH(RouteDecorator):
    """PATCH request decorator."""
    method = 'patch'


class DELETE(RouteDecorator):
    """DELETE request decorator."""
    method = 'delete'


class HEAD(RouteDecorator):
    """HEAD request decorator."""
    method = 'head'


class OPTIONS(RouteDecorator):
    """OPTIONS request decorator."""
    method = 'options'


class ALL(RouteDecorator):
    """Matches every HTTP verb."""
    method = 'all'


def route(method: Union[str, List[str]], path: PathLike = '') -> Callable[[T], T]:
    """
    Generic route decorator.

    Example:
        @route(["GET", "POST"], "/items")
        def handle_items(self, req, res, next):
            ...
    """
    methods = [method] if isinstance(method, str) else list(method)

    def decorator(func: T) -> T:
        descriptors.prepend(ROUTES, _target(func), [(m.lower(), path) for m in methods])
        return func

    return decorator


# ============================================================================
# Router
# ============================================================================

class Router:
    """
    Attach the controller's routes to their own router, mounted at ``path``.

    Example:
        @Router("/users", merge_params=True)
        class UserController:
            @GET("/:id")
            def get(self, id: Annotated[str, Params("id")]):
                ...
    """

    def __init__(
        self,
        path: PathLike,
        *,
        case_sensitive: bool = False,
        merge_params: bool = False,
        strict: bool = False,
        children: Optional[Callable[[Any], List[Any]]] = None,
    ):
        self.path = path
        self.options = {
            'case_sensitive': case_sensitive,
            'merge_params': merge_params,
            'strict': strict,
        }
        self.children_factory = children

    def __call__(self, cls: T) -> T:
        descriptors.attach(ROUTER, cls, RouterDescriptor(self.path, dict(self.options), self.children_factory))
        return cls

    @staticmethod
    def dynamic(**options: Any) -> 'Router':
        """Router whose path is given at registration: ``RouterMount(path, Controller)``."""
        return Router(DYNAMIC, **options)

    @staticmethod
    def children(factory: Callable[[Any], List[Any]]) -> Callable[[T], T]:
        """
        Declare child controllers lazily.

        ``factory(instance)`` is called once, when the controller is attached.
        """
        def decorator(cls: T) -> T:
            descriptors.attach(CHILDREN_FACTORY, cls, factory)
            return cls

        return decorator


# ============================================================================
# Middlewares & error handlers
# ============================================================================

def Use(*middlewares: Callable[..., Any]) -> Callable[[T], T]:
    """
    Apply middlewares on a controller class or a route method.

    Class middlewares run for every route of the controller.
    """
    mws = flatten_handlers(middlewares)

    def decorator(target: T) -> T:
        descriptors.prepend(MIDDLEWARES, _target(target), mws)
        return target

    return decorator


def Catch(*handlers: Callable[..., Any]) -> Callable[[T], T]:
    """Apply ``(error, request, response, next)`` error handlers on a class or a route method."""
    error_handlers = flatten_handlers(handlers)

    def decorator(target: T) -> T:
        descriptors.prepend(ERROR_HANDLERS, _target(target), error_handlers)
        return target

    return decorator


def error_handler(fn: T) -> T:
    """Mark ``fn`` as an error handler regardless of its signature."""
    setattr(fn, ERROR_HANDLER_ATTR, True)
    return fn


# ============================================================================
# Send
# ============================================================================

def Send(
    json: Optional[bool] = None,
    *,
    status: Optional[int] = None,
    null_status: Optional[int] = None,
    undefined_status: Optional[int] = None,
    handler: Optional[Callable[..., Any]] = None,
) -> Callable[[T], T]:
    """
    Send the return value of route methods automatically.

    Can decorate a method, a controller class or an Application subclass.

    Args:
        json: Always use ``response.json`` (otherwise strings/bytes are sent as-is)
        status: Default response status
        null_status: Status when the method returns ``NULL``
        undefined_status: Status when the method returns ``None``
        handler: ``handler(value, request, response, next)`` taking over sending
    """
    policy = SendPolicy(
        json=json,
        status=status,
        null_status=null_status,
        undefined_status=undefined_status,
        handler=handler,
    )

    def decorator(target: T) -> T:
        descriptors.attach(SEND, _target(target), policy)
        return target

    return decorator


def DontSend(target: Any = None) -> Any:
    """Prevent auto-send. Usable as ``@DontSend`` or ``@DontSend()``."""
    def decorator(obj: T) -> T:
        descriptors.attach(SEND, _target(obj), None)
        return obj

    if target is None:
        return decorator
    return decorator(target)
