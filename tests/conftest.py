"""
Shared test fixtures and helpers for the Arbor test suite.
"""

import pytest
from typing import Callable, List

from arbor import Application, Settings
from arbor.request import Request
from arbor.response import Response
from arbor.testing import TestClient, make_test_scope

JSON = {"accept": "application/json"}


# ============================================================================
# Request Helpers
# ============================================================================


def make_request(method: str = "GET", path: str = "/", headers=None) -> Request:
    """Build a bare request (no body)."""
    return Request(make_test_scope(method=method, path=path, headers=headers))


def make_pair(method: str = "GET", path: str = "/", headers=None):
    """Request/response pair without an ASGI channel."""
    request = make_request(method, path, headers)
    response = Response(None, request)
    request.response = response
    return request, response


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(env="test", expose_errors=True)


@pytest.fixture
def app(settings) -> Application:
    return Application(settings=settings)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def calls() -> List[str]:
    return []


@pytest.fixture
def record(calls) -> Callable[[str], Callable]:
    """Factory of named middlewares appending their name to ``calls``."""

    def factory(name: str):
        def middleware(request, response, next):
            calls.append(name)
            next()

        middleware.__name__ = name
        return middleware

    return factory
