"""
Arbor Testing - in-process ASGI test helpers.

Usage:
    from arbor.testing import TestClient

    async def test_index():
        client = TestClient(app)
        response = await client.get("/")
        assert response.status_code == 200

Components:
    - TestClient:        HTTP client calling the ASGI application directly
    - TestResponse:      Captured response with assertion-friendly accessors
    - make_test_scope:   Minimal ASGI HTTP scope
    - make_test_receive: ASGI receive callable replaying a body
"""

from .client import TestClient, TestResponse
from .utils import make_test_receive, make_test_scope

__all__ = [
    "TestClient",
    "TestResponse",
    "make_test_receive",
    "make_test_scope",
]
