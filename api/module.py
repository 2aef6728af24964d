"""
Operix - API Module

Runs the HTTP server as a lifecycle module, so it starts only after the
modules it depends on and stops before them.
"""

from __future__ import annotations

from typing import Iterable, Optional

from api.server import HttpServer
from core.async_utils import RetryConfig, RetryPolicy
from core.modules import ModuleBase


class ApiModule(ModuleBase):
    """
    Starts the server on initialize and stops it on shutdown.

    Binding is retried with backoff on OSError (e.g. the port is still held
    by a previous process).
    """

    def __init__(
        self,
        server: HttpServer,
        dependencies: Optional[Iterable[str]] = None,
        version: str = "1.0.0",
        bind_retry: Optional[RetryConfig] = None,
    ):
        super().__init__(name="api", version=version, dependencies=dependencies)
        self.server = server
        self._bind_policy = RetryPolicy(
            bind_retry or RetryConfig(
                max_attempts=3,
                base_delay=0.5,
                max_delay=5.0,
                retryable_exceptions={OSError},
            )
        )

    async def initialize(self) -> None:
        await self._bind_policy.call(self.server.start)

    async def shutdown(self) -> None:
        await self.server.stop()
