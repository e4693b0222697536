"""
Test 4: Parameter injection (params.py, resolvers.py)

Tests built-in injectors, custom injectors, argument gaps and
injector resolution errors.
"""

import pytest
from typing import Annotated, Any

from arbor import (
    Body,
    GET,
    Header,
    Next,
    POST,
    Params,
    Query,
    Req,
    Res,
    Router,
    Send,
    create_param_decorator,
    register,
)
from arbor.faults import ConfigurationFault
from arbor.params import ParamInjector, as_injector
from arbor.resolvers import resolve_param_injectors
from arbor.testing import TestClient

from conftest import JSON


# ============================================================================
# Built-ins
# ============================================================================

class TestBuiltins:

    @pytest.fixture
    def client(self, app):
        @Router("/users")
        @Send(json=True)
        class Users:
            @GET("/:id")
            def show(self, id: Annotated[str, Params("id")], verbose: Annotated[str, Query("verbose")]):
                return {"id": id, "verbose": verbose}

            @GET("/:id/all")
            def everything(self, params: Annotated[dict, Params], query: Annotated[dict, Query]):
                return {"params": params, "query": query}

            @GET("/me/token")
            def token(self, token=Header("x-token")):
                return {"token": token}

            @POST("")
            def create(self, body: Annotated[dict, Body]):
                return body

            @POST("/name")
            def name(self, name: Annotated[str, Body("name")]):
                return {"name": name}

            @GET("/raw/objects")
            def objects(self, req: Annotated[Any, Req], res=Res, nxt=Next):
                return {"method": req.method, "res": type(res).__name__, "next": callable(nxt)}

        register(app, [Users])
        return TestClient(app)

    @pytest.mark.asyncio
    async def test_params_and_query(self, client):
        resp = await client.get("/users/42?verbose=yes")
        assert resp.json() == {"id": "42", "verbose": "yes"}

    @pytest.mark.asyncio
    async def test_whole_params_and_query(self, client):
        resp = await client.get("/users/7/all?a=1&a=2&b=3")
        assert resp.json() == {"params": {"id": "7"}, "query": {"a": ["1", "2"], "b": "3"}}

    @pytest.mark.asyncio
    async def test_header(self, client):
        resp = await client.get("/users/me/token", headers={"X-Token": "abc"})
        assert resp.json() == {"token": "abc"}

    @pytest.mark.asyncio
    async def test_json_body(self, client):
        resp = await client.post("/users", json={"name": "ann"})
        assert resp.json() == {"name": "ann"}

    @pytest.mark.asyncio
    async def test_urlencoded_body_field(self, client):
        resp = await client.post("/users/name", data={"name": "bob"})
        assert resp.json() == {"name": "bob"}

    @pytest.mark.asyncio
    async def test_missing_body_is_empty(self, client):
        resp = await client.post("/users")
        assert resp.json() == {}

    @pytest.mark.asyncio
    async def test_request_response_next(self, client):
        resp = await client.get("/users/raw/objects")
        assert resp.json() == {"method": "GET", "res": "Response", "next": True}

    @pytest.mark.asyncio
    async def test_invalid_json_is_400(self, client):
        resp = await client.post(
            "/users",
            body=b"{not json",
            headers={"content-type": "application/json", **JSON},
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_JSON"


# ============================================================================
# Custom injectors
# ============================================================================

class TestCustomInjectors:

    @pytest.mark.asyncio
    async def test_use_middleware_prepares_value(self, app):
        def authenticate(request, response, next):
            request.state["user"] = request.get("x-user")
            next()

        CurrentUser = create_param_decorator(lambda req: req.state["user"], use=[authenticate])

        class Ctrl:
            @GET("/me")
            @Send()
            def me(self, user: Annotated[str, CurrentUser]):
                return user

        register(app, [Ctrl])
        resp = await TestClient(app).get("/me", headers={"x-user": "zoe"})
        assert resp.text == "zoe"

    @pytest.mark.asyncio
    async def test_gaps_receive_defaults(self, app):
        class Ctrl:
            @GET("/gap")
            @Send()
            def gap(self, first="default", q: Annotated[str, Query("q")] = None):
                return f"{first}:{q}"

        register(app, [Ctrl])
        resp = await TestClient(app).get("/gap?q=v")
        assert resp.text == "default:v"

    @pytest.mark.asyncio
    async def test_async_mapper_is_an_error(self, app):
        async def mapper(request):
            return 1

        class Ctrl:
            @GET("/async")
            @Send()
            def value(self, v: Annotated[int, create_param_decorator(mapper)]):
                return v

        register(app, [Ctrl])
        resp = await TestClient(app).get("/async", headers=JSON)
        assert resp.status_code == 500
        assert resp.json()["code"] == "ASYNC_PARAMETER_MAPPER"

    def test_mapper_arity(self):
        injector = create_param_decorator(lambda req, res: (req, res))
        assert injector.extract("req", "res", "next") == ("req", "res")

    def test_as_injector(self):
        assert isinstance(as_injector(Body), ParamInjector)
        assert as_injector(Req) is Req
        assert Req() is Req
        assert as_injector("nothing") is None


# ============================================================================
# Resolution
# ============================================================================

class TestResolution:

    def test_ordered_by_index(self):
        class Ctrl:
            def method(self, a: Annotated[str, Query("a")], b, c=Header("c")):
                pass

        resolved = resolve_param_injectors(Ctrl, "method")
        assert [param.index for param in resolved] == [0, 2]
        assert [param.name for param in resolved] == ["a", "c"]

    def test_empty_without_injectors(self):
        class Ctrl:
            def method(self, req, res, next):
                pass

        assert resolve_param_injectors(Ctrl, "method") == []

    def test_staticmethod_keeps_first_parameter(self):
        class Ctrl:
            @staticmethod
            def method(q: Annotated[str, Query("q")]):
                pass

        (param,) = resolve_param_injectors(Ctrl, "method")
        assert param.index == 0

    def test_multiple_injectors_on_one_parameter(self):
        class Ctrl:
            def method(self, value: Annotated[str, Query("a")] = Params("b")):
                pass

        with pytest.raises(ConfigurationFault) as info:
            resolve_param_injectors(Ctrl, "method")
        assert info.value.code == "MULTIPLE_PARAMETER_DECORATORS"

    def test_keyword_only_parameters_are_ignored(self):
        class Ctrl:
            def method(self, a: Annotated[str, Query("a")], *, b: Annotated[str, Query("b")] = None):
                pass

        assert [param.name for param in resolve_param_injectors(Ctrl, "method")] == ["a"]
