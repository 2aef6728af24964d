"""
End-to-End Test Scenarios

Complete workflows from application startup through real HTTP requests to
graceful shutdown.
"""
import json

import pytest

from api.middleware import RateLimitMiddleware, RequestLoggingMiddleware, SecurityHeadersMiddleware
from api.routes import register_builtin_routes
from config import RateLimitConfig
from core.application import Application
from core.modules import ModuleBase
from tests.conftest import parse_raw_response, send_raw


class StoreModule(ModuleBase):
    """In-memory stand-in for a database collaborator."""

    def __init__(self, log):
        super().__init__("db", version="2.1.0")
        self.log = log
        self.items = {}

    async def initialize(self) -> None:
        self.log.append("init:db")

    async def shutdown(self) -> None:
        self.log.append("shutdown:db")


class AuthModule(ModuleBase):

    def __init__(self, log):
        super().__init__("auth", dependencies=["db"])
        self.log = log

    async def initialize(self) -> None:
        self.log.append("init:auth")

    async def shutdown(self) -> None:
        self.log.append("shutdown:auth")


def build(app_config, log, rate_limit=None):
    application = Application(app_config, configure_logging=False)
    store = StoreModule(log)

    application.use(SecurityHeadersMiddleware())
    application.use(RateLimitMiddleware(rate_limit or app_config.rate_limit))
    application.use(RequestLoggingMiddleware())
    register_builtin_routes(application.router, app_config)

    items = application.router.create_group("/api/items")

    @items.get("/:id")
    async def get_item(request, response):
        item = store.items.get(request.params["id"])
        if item is None:
            response.status(404).json({"error": "Not Found"})
            return
        response.json(item)

    @items.post("/")
    async def create_item(request, response):
        item_id = str(len(store.items) + 1)
        store.items[item_id] = {"id": item_id, **request.body}
        response.status(201).json(store.items[item_id])

    # registered in reverse dependency order on purpose
    application.add_api_module(dependencies=["auth"])
    application.register_module(AuthModule(log))
    application.register_module(store)
    return application


def http_get(path):
    return f"GET {path} HTTP/1.1\r\nHost: localhost\r\n\r\n".encode()


class TestServerWorkflow:

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_startup_health_and_shutdown(self, app_config, lifecycle_log):
        application = build(app_config, lifecycle_log)

        assert application.modules.initialization_order() == ["db", "auth", "api"]

        await application.initialize()
        try:
            assert application.is_ready()
            assert lifecycle_log == ["init:db", "init:auth"]

            status, headers, body = parse_raw_response(
                await send_raw(application.server.port, http_get("/health"))
            )
            assert status == 200
            assert json.loads(body)["status"] == "healthy"
            assert headers["x-content-type-options"] == "nosniff"
            assert headers["access-control-allow-origin"] == "*"
        finally:
            await application.shutdown()

        assert lifecycle_log == ["init:db", "init:auth", "shutdown:auth", "shutdown:db"]
        assert not application.server.is_running

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_create_then_fetch_item(self, app_config, lifecycle_log):
        application = build(app_config, lifecycle_log)

        async with application:
            port = application.server.port
            payload = b'{"name": "widget"}'
            create = (
                b"POST /api/items HTTP/1.1\r\nHost: localhost\r\nContent-Type: application/json\r\n"
                b"Content-Length: " + str(len(payload)).encode() + b"\r\n\r\n" + payload
            )
            status, _, body = parse_raw_response(await send_raw(port, create))
            assert status == 201
            created = json.loads(body)

            status, _, body = parse_raw_response(await send_raw(port, http_get(f"/api/items/{created['id']}")))
            assert status == 200
            assert json.loads(body) == {"id": created["id"], "name": "widget"}

            status, _, _ = parse_raw_response(await send_raw(port, http_get("/api/items/999")))
            assert status == 404

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_rate_limit_over_http(self, app_config, lifecycle_log):
        limited = RateLimitConfig(enabled=True, window_ms=60_000, max_requests=2)
        application = build(app_config, lifecycle_log, rate_limit=limited)

        async with application:
            port = application.server.port
            statuses = [
                parse_raw_response(await send_raw(port, http_get("/api/info")))[0]
                for _ in range(3)
            ]
            # the health check is exempt
            health = parse_raw_response(await send_raw(port, http_get("/health")))[0]

        assert statuses == [200, 200, 429]
        assert health == 200

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_openapi_lists_application_routes(self, app_config, lifecycle_log):
        application = build(app_config, lifecycle_log)

        async with application:
            _, _, body = parse_raw_response(await send_raw(application.server.port, http_get("/api/spec")))

        paths = json.loads(body)["paths"]
        assert "/api/items/{id}" in paths
        assert "post" in paths["/api/items"]
