"""
Operix - Test Configuration

Pytest fixtures shared by the core, api, property and e2e suites.
"""
import asyncio
from typing import List, Optional, Tuple

import pytest

from api.router import Router
from api.server import HttpServer
from config import Config, CorsConfig, RateLimitConfig, ServerConfig
from core.events import EventBus
from core.middleware import MiddlewareManager
from core.modules import ModuleBase, ModuleManager
from core.services import ServiceBase, ServiceManager


class RecordingModule(ModuleBase):
    """Module that appends ``init:<name>`` / ``shutdown:<name>`` to a shared log."""

    def __init__(
        self,
        name: str,
        log: List[str],
        dependencies: Optional[List[str]] = None,
        fail_on_init: bool = False,
        fail_on_shutdown: bool = False,
        enabled: bool = True,
    ):
        super().__init__(name=name, dependencies=dependencies, enabled=enabled)
        self.log = log
        self.fail_on_init = fail_on_init
        self.fail_on_shutdown = fail_on_shutdown

    async def initialize(self) -> None:
        if self.fail_on_init:
            raise RuntimeError(f"{self.name} init failed")
        self.log.append(f"init:{self.name}")

    async def shutdown(self) -> None:
        if self.fail_on_shutdown:
            raise RuntimeError(f"{self.name} shutdown failed")
        self.log.append(f"shutdown:{self.name}")


class RecordingService(ServiceBase):
    """Service that records its hooks and can be told to fail or stall."""

    def __init__(
        self,
        name: str,
        log: List[str],
        fail_on_init: bool = False,
        delay: float = 0.0,
    ):
        super().__init__(name)
        self.log = log
        self.fail_on_init = fail_on_init
        self.delay = delay

    async def on_initialize(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_on_init:
            raise RuntimeError(f"{self.name} init failed")
        self.log.append(f"init:{self.name}")

    async def on_shutdown(self) -> None:
        self.log.append(f"shutdown:{self.name}")


@pytest.fixture
def lifecycle_log() -> List[str]:
    """Ordered record of lifecycle hook calls."""
    return []


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def module_manager(event_bus) -> ModuleManager:
    return ModuleManager(events=event_bus)


@pytest.fixture
def service_manager(event_bus) -> ServiceManager:
    return ServiceManager(events=event_bus)


@pytest.fixture
def middleware_manager() -> MiddlewareManager:
    return MiddlewareManager()


@pytest.fixture
def router() -> Router:
    return Router()


@pytest.fixture
def server_config() -> ServerConfig:
    """Loopback listener on an ephemeral port with short timeouts."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,
        request_timeout=2.0,
        max_body_bytes=1024,
        max_header_bytes=8 * 1024,
        shutdown_grace=1.0,
    )


@pytest.fixture
def cors_config() -> CorsConfig:
    return CorsConfig(origins=["*"], credentials=False)


@pytest.fixture
def http_server(router, middleware_manager, server_config, cors_config, event_bus) -> HttpServer:
    return HttpServer(
        router,
        middleware_manager,
        server_config=server_config,
        cors_config=cors_config,
        events=event_bus,
    )


@pytest.fixture
def app_config(server_config, cors_config) -> Config:
    """Application config that needs no environment and binds an ephemeral port."""
    return Config(
        app_name="operix-test",
        app_version="9.9.9",
        required_env_vars=[],
        startup_timeout=5.0,
        shutdown_timeout=5.0,
        server=server_config,
        cors=cors_config,
        rate_limit=RateLimitConfig(enabled=True, window_ms=60_000, max_requests=100),
        database=None,
        oauth=None,
    )


async def send_raw(port: int, payload: bytes, host: str = "127.0.0.1") -> bytes:
    """Write ``payload`` to the server and read until it closes the connection."""
    reader, writer = await asyncio.open_connection(host, port)
    try:
        writer.write(payload)
        await writer.drain()
        return await asyncio.wait_for(reader.read(), timeout=5.0)
    finally:
        writer.close()
        await writer.wait_closed()


def parse_raw_response(raw: bytes) -> Tuple[int, dict, bytes]:
    """Split a raw HTTP/1.1 response into status, lower-cased headers and body."""
    head, _, body = raw.partition(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    status = int(lines[0].split(" ")[1])
    headers = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()
    return status, headers, body
