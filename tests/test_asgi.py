"""
Test 14: ASGI integration (application.py)

Tests the application through a real ASGI client (httpx), lifespan hooks
and mounting an application inside another router.
"""

from typing import Annotated

import httpx
import pytest

from arbor import GET, POST, Application, Body, Router, Scope, Send, Settings, register


@Router("/notes")
@Send(json=True)
class Notes:
    def __init__(self):
        self.items = []

    @GET("")
    def index(self, *args):
        return self.items

    @POST("")
    @Send(status=201)
    def create(self, note: Annotated[dict, Body]):
        self.items.append(note)
        return note


@pytest.fixture
def notes_app():
    app = Application(settings=Settings(env="test"))
    register(app, [Notes])
    return app


async def lifespan(app, *messages):
    sent = []
    queue = list(messages)

    async def receive():
        return {"type": queue.pop(0)}

    async def send(message):
        sent.append(message["type"])

    await app({"type": "lifespan"}, receive, send)
    return sent


# ============================================================================
# HTTP through httpx
# ============================================================================

class TestHttpx:

    @pytest.mark.asyncio
    async def test_roundtrip(self, notes_app):
        transport = httpx.ASGITransport(app=notes_app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            created = await client.post("/notes", json={"title": "first"})
            assert created.status_code == 201
            assert created.json() == {"title": "first"}

            listed = await client.get("/notes")
            assert listed.json() == [{"title": "first"}]
            assert listed.headers["content-type"] == "application/json; charset=utf-8"

    @pytest.mark.asyncio
    async def test_not_found(self, notes_app):
        transport = httpx.ASGITransport(app=notes_app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/nothing")
            assert resp.status_code == 404
            assert resp.text == "Cannot GET /nothing"

    @pytest.mark.asyncio
    async def test_json_error(self, notes_app):
        transport = httpx.ASGITransport(app=notes_app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.post(
                "/notes",
                content=b"[broken",
                headers={"content-type": "application/json", "accept": "application/json"},
            )
            assert resp.status_code == 400
            assert resp.json()["code"] == "INVALID_JSON"


# ============================================================================
# Lifespan
# ============================================================================

class TestLifespan:

    @pytest.mark.asyncio
    async def test_hooks(self):
        app = Application(settings=Settings(env="test"))
        events = []

        @app.on_startup
        async def connect():
            events.append("startup")

        @app.on_shutdown
        def disconnect():
            events.append("shutdown")

        sent = await lifespan(app, "lifespan.startup", "lifespan.shutdown")
        assert events == ["startup", "shutdown"]
        assert sent == ["lifespan.startup.complete", "lifespan.shutdown.complete"]

    @pytest.mark.asyncio
    async def test_startup_failure(self):
        app = Application(settings=Settings(env="test"))

        @app.on_startup
        def fail():
            raise RuntimeError("no database")

        with pytest.raises(RuntimeError):
            await lifespan(app, "lifespan.startup")


# ============================================================================
# Nested applications
# ============================================================================

class TestNestedApplication:

    @pytest.mark.asyncio
    async def test_application_mounted_in_router(self, notes_app):
        outer = Application(settings=Settings(env="test"))
        outer.use("/v1", notes_app)

        transport = httpx.ASGITransport(app=outer)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/v1/notes")
            assert resp.status_code == 200
            assert resp.json() == []

    def test_scope_is_plain_router(self):
        assert not isinstance(Scope(), Application)
