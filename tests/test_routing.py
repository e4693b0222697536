"""
Test 10: Continuation-passing router (routing.py)

Tests path compilation, prefix trimming, verb dispatch, the next()
continuation and error handler layers.
"""

import re

import pytest

from arbor import Scope, error_handler
from arbor.routing import Layer, compile_path, is_error_handler
from arbor.testing import TestClient


def text(value):
    def handler(req, res, next):
        res.send(value)

    return handler


# ============================================================================
# compile_path
# ============================================================================

class TestCompilePath:

    def test_named_parameters(self):
        regex, keys = compile_path("/users/:id/posts/:post")
        assert keys == ["id", "post"]
        assert regex.match("/users/1/posts/2").groups() == ("1", "2")
        assert regex.match("/users/1/posts") is None

    def test_optional_parameter(self):
        regex, keys = compile_path("/docs/:lang?")
        assert keys == ["lang"]
        assert regex.match("/docs").groups() == (None,)
        assert regex.match("/docs/fr").groups() == ("fr",)

    def test_wildcard(self):
        regex, keys = compile_path("/static/*")
        assert keys == ["0"]
        assert regex.match("/static/css/site.css").group(1) == "css/site.css"

    def test_trailing_slash_and_case(self):
        regex, _ = compile_path("/About")
        assert regex.match("/about/")
        strict, _ = compile_path("/about", strict=True, case_sensitive=True)
        assert strict.match("/about")
        assert not strict.match("/about/")
        assert not strict.match("/About")

    def test_prefix_matcher(self):
        regex, _ = compile_path("/api", end=False)
        assert regex.match("/api/users").group(0) == "/api"
        assert regex.match("/api")
        assert not regex.match("/apiary")

    def test_regex_passthrough(self):
        pattern = re.compile(r"^/v(\d+)")
        assert compile_path(pattern) == (pattern, [])

    def test_layer_params(self):
        layer = Layer("/files/:name", text("x"), end=True)
        assert layer.match("/files/a%20b") == ("/files/a%20b", {"name": "a b"})


class TestErrorHandlerDetection:

    def test_by_arity(self):
        assert is_error_handler(lambda err, req, res, next: None)
        assert not is_error_handler(lambda req, res, next: None)
        assert not is_error_handler(lambda *args: None)

    def test_by_marker(self):
        @error_handler
        def handler(*args):
            pass

        assert is_error_handler(handler)

    def test_routers_are_not_error_handlers(self):
        assert not is_error_handler(Scope())


# ============================================================================
# Dispatch
# ============================================================================

class TestDispatch:

    @pytest.mark.asyncio
    async def test_head_falls_back_to_get(self, app):
        app.get("/h", text("hello"))
        resp = await TestClient(app).head("/h")
        assert resp.status_code == 200
        assert resp.header("content-length") == "5"
        assert resp.body == b""

    @pytest.mark.asyncio
    async def test_unmatched_is_404(self, app):
        resp = await TestClient(app).get("/missing")
        assert resp.status_code == 404
        assert resp.text == "Cannot GET /missing"
        assert resp.header("x-content-type-options") == "nosniff"

    @pytest.mark.asyncio
    async def test_verb_mismatch(self, app):
        app.post("/only-post", text("posted"))
        resp = await TestClient(app).get("/only-post")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_all_verbs(self, app):
        app.all("/any", lambda req, res, next: res.send(req.method))
        client = TestClient(app)
        assert (await client.put("/any")).text == "PUT"
        assert (await client.delete("/any")).text == "DELETE"

    @pytest.mark.asyncio
    async def test_base_url_trimming(self, app):
        api = Scope()
        api.get("/info", lambda req, res, next: res.send(f"{req.base_url}|{req.path}|{req.original_url}"))
        app.use("/api", api)

        resp = await TestClient(app).get("/api/info?x=1")
        assert resp.text == "/api|/info|/api/info?x=1"

    @pytest.mark.asyncio
    async def test_params_and_merge(self, app):
        isolated = Scope()
        isolated.get("/posts/:pid", lambda req, res, next: res.json(req.params))
        merged = Scope(merge_params=True)
        merged.get("/posts/:pid", lambda req, res, next: res.json(req.params))
        app.use("/isolated/:uid", isolated)
        app.use("/merged/:uid", merged)

        client = TestClient(app)
        assert (await client.get("/isolated/1/posts/2")).json() == {"pid": "2"}
        assert (await client.get("/merged/1/posts/2")).json() == {"uid": "1", "pid": "2"}

    @pytest.mark.asyncio
    async def test_regex_route(self, app):
        app.get(re.compile(r"^/files/(?P<name>[^/]+)$"), lambda req, res, next: res.json(req.params))
        resp = await TestClient(app).get("/files/report.pdf")
        assert resp.json() == {"name": "report.pdf"}


# ============================================================================
# next()
# ============================================================================

class TestNext:

    @pytest.mark.asyncio
    async def test_called_and_left(self, app, record, calls):
        app.use(record("first"), record("second"))
        app.get("/", text("done"))
        resp = await TestClient(app).get("/")
        assert resp.text == "done"
        assert calls == ["first", "second"]

    @pytest.mark.asyncio
    async def test_awaited_next_wraps_the_rest(self, app, calls):
        async def around(req, res, next):
            calls.append("before")
            await next()
            calls.append("after")

        def handler(req, res, next):
            calls.append("handler")
            res.send("ok")

        app.use(around)
        app.get("/", handler)
        await TestClient(app).get("/")
        assert calls == ["before", "handler", "after"]

    @pytest.mark.asyncio
    async def test_skip_route(self, app, calls):
        def skip(req, res, next):
            next("route")

        def never(req, res, next):
            calls.append("never")
            next()

        app.get("/r", skip, never)
        app.get("/r", text("second route"))
        resp = await TestClient(app).get("/r")
        assert resp.text == "second route"
        assert calls == []

    @pytest.mark.asyncio
    async def test_leave_router(self, app):
        inner = Scope()
        inner.use(lambda req, res, next: next("router"))
        inner.get("/x", text("inner"))
        app.use("/sub", inner)
        app.get("/sub/x", text("outer"))

        resp = await TestClient(app).get("/sub/x")
        assert resp.text == "outer"

    @pytest.mark.asyncio
    async def test_double_call_warns(self, app, caplog):
        def twice(req, res, next):
            next()
            next()

        app.use(twice)
        app.get("/", text("once"))
        with caplog.at_level("WARNING", logger="arbor.routing"):
            resp = await TestClient(app).get("/")
        assert resp.text == "once"
        assert "more than once" in caplog.text


# ============================================================================
# Error handler layers
# ============================================================================

class TestErrorLayers:

    @pytest.mark.asyncio
    async def test_errors_skip_regular_layers(self, app, calls):
        def fail(req, res, next):
            raise ValueError("boom")

        def skipped(req, res, next):
            calls.append("skipped")
            next()

        def handle(err, req, res, next):
            res.status(422).send(str(err))

        app.get("/", fail)
        app.use(skipped)
        app.use(handle)
        resp = await TestClient(app).get("/")
        assert resp.status_code == 422
        assert resp.text == "boom"
        assert calls == []

    @pytest.mark.asyncio
    async def test_error_handler_can_recover(self, app):
        def fail(req, res, next):
            next(ValueError("recoverable"))

        def recover(err, req, res, next):
            req.state["recovered"] = str(err)
            next()

        app.use(fail, recover)
        app.get("/", lambda req, res, next: res.send(req.state["recovered"]))
        resp = await TestClient(app).get("/")
        assert resp.text == "recoverable"

    @pytest.mark.asyncio
    async def test_unhandled_error_text(self, app):
        app.get("/", lambda req, res, next: next(ValueError("plain failure")))
        resp = await TestClient(app).get("/")
        assert resp.status_code == 500
        assert "plain failure" in resp.text

    def test_fallback_layer(self):
        router = Scope()
        router.set_fallback(lambda err, req, res, next: None)
        assert router.has_fallback()
        router.set_fallback(lambda err, req, res, next: None)
        assert len(router.stack) == 1
        assert router.remove_fallback()
        assert not router.remove_fallback()
