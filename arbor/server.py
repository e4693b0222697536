"""
Server helpers.

Loads an application from a ``module:attribute`` reference and runs it
under uvicorn.
"""

import importlib
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import uvicorn

from .config import Settings

logger = logging.getLogger("arbor.server")


def load_app(reference: str) -> Any:
    """
    Import an application from ``"package.module:app"``.

    The current working directory is put on ``sys.path`` first, like
    ``uvicorn`` does. A callable attribute that is not an ASGI application
    yet (an application factory) is called without arguments.

    Raises:
        ValueError: If the reference is malformed or the attribute is missing
    """
    module_name, _, attribute = reference.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Invalid application reference {reference!r}, expected 'module:attribute'")

    cwd = str(Path.cwd())
    if cwd not in sys.path:
        sys.path.insert(0, cwd)

    module = importlib.import_module(module_name)
    try:
        app = getattr(module, attribute)
    except AttributeError:
        raise ValueError(f"Module {module_name!r} has no attribute {attribute!r}") from None

    from .routing import Router

    if not isinstance(app, Router) and callable(app) and not hasattr(app, "handle_http"):
        app = app()
    return app


def serve(
    app: Any,
    *,
    host: Optional[str] = None,
    port: Optional[int] = None,
    reload: bool = False,
    workers: int = 1,
    log_level: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> None:
    """
    Run ``app`` (an application or a ``module:app`` reference) with uvicorn.

    Unset options fall back to the application settings.
    """
    settings = settings or getattr(app, "settings", None) or Settings.load()
    host = host or settings.host
    port = port or settings.port
    log_level = log_level or settings.log_level

    if reload and not isinstance(app, str):
        raise ValueError("reload requires an application reference ('module:app')")

    logger.info("Starting server on http://%s:%s", host, port)
    uvicorn.run(
        app=app,
        host=host,
        port=port,
        reload=reload,
        workers=workers,
        log_level=log_level,
    )
