"""
Operix - Built-in Routes

Health, info and API description endpoints registered by ``serve`` and by
applications that want them.
"""

from __future__ import annotations

from datetime import datetime, timezone

from api.http import HttpRequest, HttpResponse
from api.router import RouteOptions, Router
from config import Config


def register_builtin_routes(router: Router, config: Config) -> None:
    """Register ``GET /health``, ``GET /api/info`` and ``GET /api/spec``."""

    async def health(request: HttpRequest, response: HttpResponse) -> None:
        response.json({
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": config.app_version,
        })

    async def info(request: HttpRequest, response: HttpResponse) -> None:
        response.json({
            "name": config.app_name,
            "version": config.app_version,
            "environment": config.env.value,
            "endpoints": len(router),
        })

    async def openapi(request: HttpRequest, response: HttpResponse) -> None:
        response.json(router.generate_spec(title=config.app_name, version=config.app_version))

    router.register("GET", "/health", health, RouteOptions(description="Liveness check", tags=["system"]))
    router.register("GET", "/api/info", info, RouteOptions(description="Service information", tags=["system"]))
    router.register("GET", "/api/spec", openapi, RouteOptions(description="OpenAPI document", tags=["system"]))
