"""
Arbor - declarative route composition for ASGI

Complete integration of:
- Decorators: routes, routers, middlewares, error handlers and send policies
  declared on controller classes
- Params: typed parameter injection with required middlewares
- Composition: controllers compiled once into Express-style router chains
- Faults: structured configuration and runtime errors
- Fallback: global error handler with status inference
"""

__version__ = "0.1.0"

# ============================================================================
# Core
# ============================================================================

from .application import Application
from .config import Settings, configure_logging
from .request import Request
from .response import Response
from .routing import Layer, Route
from .routing import Router as Scope

# ============================================================================
# Declarations
# ============================================================================

from .decorators import (
    ALL,
    Catch,
    DELETE,
    DontSend,
    GET,
    HEAD,
    OPTIONS,
    PATCH,
    POST,
    PUT,
    Router,
    Send,
    Use,
    error_handler,
    route,
)
from .metadata import DescriptorStore, RouterMount, SendPolicy, descriptors
from .middlewares import (
    UseContentType,
    UseGuards,
    UseHeader,
    UseIf,
    UseInterceptor,
    UseOnFinish,
    UseSet,
    UseStatus,
    UseType,
)
from .params import (
    Body,
    Header,
    Next,
    ParamInjector,
    Params,
    Query,
    Req,
    Res,
    create_param_decorator,
)
from .body_parsers import json_parser, raw_parser, text_parser, urlencoded_parser

# ============================================================================
# Composition
# ============================================================================

from .handler import NULL
from .register import AttachState, ControllerAttachment, register
from .fallback import global_error_handler
from .final_handler import final_handler

# ============================================================================
# Faults
# ============================================================================

from .faults import (
    ArborFault,
    BodyAlreadyConsumed,
    ConfigurationFault,
    HTTPError,
    HeadersAlreadySent,
    InvalidJSON,
    PayloadTooLarge,
    RequestFault,
    ResponseFault,
    ResponseObjectSent,
)

__all__ = [
    # Core
    "Application", "Settings", "configure_logging", "Request", "Response",
    "Layer", "Route", "Scope",
    # Declarations
    "ALL", "Catch", "DELETE", "DontSend", "GET", "HEAD", "OPTIONS", "PATCH",
    "POST", "PUT", "Router", "Send", "Use", "error_handler", "route",
    "DescriptorStore", "RouterMount", "SendPolicy", "descriptors",
    "UseContentType", "UseGuards", "UseHeader", "UseIf", "UseInterceptor", "UseOnFinish",
    "UseSet", "UseStatus", "UseType",
    "Body", "Header", "Next", "ParamInjector", "Params", "Query", "Req", "Res",
    "create_param_decorator",
    "json_parser", "raw_parser", "text_parser", "urlencoded_parser",
    # Composition
    "NULL", "AttachState", "ControllerAttachment", "register",
    "global_error_handler", "final_handler",
    # Faults
    "ArborFault", "BodyAlreadyConsumed", "ConfigurationFault", "HTTPError",
    "HeadersAlreadySent", "InvalidJSON", "PayloadTooLarge", "RequestFault",
    "ResponseFault", "ResponseObjectSent",
]
