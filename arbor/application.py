"""
Arbor Application - root router served as an ASGI application.

Features:
- HTTP dispatch through the router stack, then response flushing
- Lifespan startup/shutdown hooks
- Default final handling (404 for unmatched requests, error rendering)
- Declarative application classes: ``Use``/``Catch``/``Send`` and routes on
  an ``Application`` subclass apply to the whole application
"""

from __future__ import annotations

import inspect
import logging
import traceback
from typing import Any, Callable, Dict, Iterable, List, Optional

from .config import Settings
from .faults import ConfigurationFault
from .fallback import StatusParser, error_headers, error_message
from .request import Request
from .response import Response, reason_phrase
from .routing import METHODS, Router

logger = logging.getLogger("arbor.application")

#: Transport members an Application subclass may not redefine
PROTECTED_MEMBERS = frozenset({
    "use", "catch", "handle", "route", "add_route", "register",
    "set_fallback", "remove_fallback", "has_fallback", "mounted_middlewares",
    "all", "__call__", *METHODS,
})


class Application(Router):
    """
    ASGI application.

    Example:
        ```python
        @Use(json_parser())
        @Send(json=True)
        class App(Application):
            @GET("/health")
            def health(self):
                return {"ok": True}

        app = App()
        app.register([UserController, RouterMount("/admin", AdminController)])
        ```
    """

    def __init_subclass__(cls, **kwargs: Any):
        super().__init_subclass__(**kwargs)
        for name in vars(cls):
            if name in PROTECTED_MEMBERS:
                raise ConfigurationFault(
                    "APPLICATION_PROPERTY_PROTECTED",
                    f'"{cls.__name__}.{name}" overrides a protected Application member.',
                )

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        case_sensitive: bool = False,
        strict: bool = False,
    ):
        super().__init__(case_sensitive=case_sensitive, strict=strict)
        self.settings = settings or Settings.load()
        self.attachments: List[Any] = []
        self.state: Dict[str, Any] = {}
        self._startup_hooks: List[Callable[..., Any]] = []
        self._shutdown_hooks: List[Callable[..., Any]] = []

    def register(self, controllers: Iterable[Any] = (), **kwargs: Any) -> "Application":
        """Compile and mount controllers (see ``arbor.register.register``)."""
        from .register import register

        return register(self, controllers, **kwargs)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def on_startup(self, fn: Callable[..., Any]) -> Callable[..., Any]:
        """Register a startup hook. Usable as a decorator."""
        self._startup_hooks.append(fn)
        return fn

    def on_shutdown(self, fn: Callable[..., Any]) -> Callable[..., Any]:
        """Register a shutdown hook. Usable as a decorator."""
        self._shutdown_hooks.append(fn)
        return fn

    async def _run_hooks(self, hooks: List[Callable[..., Any]]) -> None:
        for hook in hooks:
            result = hook()
            if inspect.isawaitable(result):
                await result

    # ========================================================================
    # ASGI entry point
    # ========================================================================

    async def __call__(self, scope: Any, receive: Callable, send: Callable) -> None:
        if not isinstance(scope, dict):
            # mounted inside another router: (request, response, next)
            return await self.handle(scope, receive, send)

        scope_type = scope["type"]
        if scope_type == "http":
            await self.handle_http(scope, receive, send)
        elif scope_type == "lifespan":
            await self.handle_lifespan(scope, receive, send)
        else:
            logger.warning("Unsupported ASGI scope type: %s", scope_type)

    async def handle_http(self, scope: dict, receive: Callable, send: Callable) -> None:
        request = Request(scope, receive, app=self)
        response = Response(send, request)
        request.response = response

        async def done(error: Any = None) -> None:
            self._finish(request, response, error)

        try:
            await self.handle(request, response, done)
        except Exception as exc:
            logger.error("Dispatch of %s %s failed", request.method, request.original_url, exc_info=True)
            self._finish(request, response, exc)

        if not response.headers_sent:
            logger.warning(
                "%s %s: the handler chain settled without sending a response",
                request.method,
                request.original_url,
            )
            response.end()

        await response.flush()

    async def handle_lifespan(self, scope: dict, receive: Callable, send: Callable) -> None:
        """Handle ASGI lifespan events."""
        while True:
            message = await receive()

            if message["type"] == "lifespan.startup":
                try:
                    await self._run_hooks(self._startup_hooks)
                    logger.debug("Application startup complete")
                    await send({"type": "lifespan.startup.complete"})
                except Exception as e:
                    logger.error(f"Startup error: {e}", exc_info=True)
                    await send({"type": "lifespan.startup.failed", "message": str(e)})
                    raise

            elif message["type"] == "lifespan.shutdown":
                try:
                    await self._run_hooks(self._shutdown_hooks)
                    logger.debug("Application shutdown complete")
                    await send({"type": "lifespan.shutdown.complete"})
                except Exception as e:
                    logger.error(f"Shutdown error: {e}", exc_info=True)
                    await send({"type": "lifespan.shutdown.failed", "message": str(e)})
                break

    # ========================================================================
    # Final handling
    # ========================================================================

    def _finish(self, request: Request, response: Response, error: Any = None) -> None:
        """Answer requests that left the router unanswered."""
        if response.headers_sent:
            if error is not None:
                logger.error(
                    "Error after the response was sent for %s %s: %r",
                    request.method,
                    request.original_url,
                    error,
                    exc_info=error if isinstance(error, BaseException) else None,
                )
            return

        if error is None:
            response.status(404)
            response.set("x-content-type-options", "nosniff")
            response.type("text/plain; charset=utf-8")
            response.send(f"Cannot {request.method} {request.base_url}{request.path}")
            return

        status = StatusParser.from_error(error) or StatusParser.from_response(response)
        headers = error_headers(error)
        if headers:
            response.set(headers)
        response.status(status)
        response.set("x-content-type-options", "nosniff")
        response.type("text/plain; charset=utf-8")
        response.send(self._error_body(error, status))

    def _error_body(self, error: Any, status: int) -> str:
        if self.settings.reveal_errors:
            if isinstance(error, BaseException) and status >= 500:
                return "".join(traceback.format_exception(type(error), error, error.__traceback__))
            return error_message(error) or reason_phrase(status)
        if getattr(error, "public", False):
            return error_message(error) or reason_phrase(status)
        return reason_phrase(status)
