"""
Operix - Service Lifecycle

Services are independent leaf components with no declared dependencies.
All initializers are started together and jointly awaited: a failure in
one does not cancel the others, and the first failure is raised once
every initializer has finished. Services that did start before a
failure are shut down again before the error is raised, so a failed
initialize() leaves nothing running. Shutdown is concurrent and
best-effort.
"""

from __future__ import annotations

import asyncio
import time
from typing import Dict, List, Optional, Protocol, runtime_checkable

import structlog

from core.errors import DuplicateNameError, NotFoundError, ServiceInitializationError
from core.events import EventBus, LifecycleEvent, LifecyclePhase
from observability.logging import get_logger


@runtime_checkable
class IService(Protocol):
    """Contract for independently started services."""

    @property
    def name(self) -> str:
        ...

    async def initialize(self) -> None:
        ...

    async def shutdown(self) -> None:
        ...

    def is_ready(self) -> bool:
        ...


class ServiceBase:
    """Base class tracking readiness around overridable start/stop hooks."""

    def __init__(self, name: Optional[str] = None):
        self._name = name or self.__class__.__name__
        self._ready = False

    @property
    def name(self) -> str:
        return self._name

    def is_ready(self) -> bool:
        return self._ready

    async def initialize(self) -> None:
        if self._ready:
            return
        await self.on_initialize()
        self._ready = True

    async def shutdown(self) -> None:
        if not self._ready:
            return
        self._ready = False
        await self.on_shutdown()

    async def on_initialize(self) -> None:
        """Override to add initialization logic."""
        pass

    async def on_shutdown(self) -> None:
        """Override to add shutdown logic."""
        pass


class ServiceManager:
    """Registry and concurrent lifecycle for services."""

    def __init__(
        self,
        events: Optional[EventBus] = None,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
    ):
        self._services: Dict[str, IService] = {}
        self._initialized = False
        self._events = events or EventBus()
        self._logger = logger or get_logger("operix.services")

    def register(self, service: IService) -> None:
        if service.name in self._services:
            raise DuplicateNameError("Service", service.name)
        self._services[service.name] = service
        self._logger.debug("Service registered", service=service.name)

    def unregister(self, name: str) -> None:
        if name not in self._services:
            raise NotFoundError("Service", name)
        del self._services[name]
        self._logger.debug("Service unregistered", service=name)

    def get(self, name: str) -> Optional[IService]:
        return self._services.get(name)

    def get_all(self) -> List[IService]:
        return list(self._services.values())

    def __len__(self) -> int:
        return len(self._services)

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def is_ready(self) -> bool:
        """True only once initialized and while every service reports ready."""
        return self._initialized and all(s.is_ready() for s in self._services.values())

    async def _run(self, service: IService, phase: LifecyclePhase) -> float:
        start = time.perf_counter()
        if phase == LifecyclePhase.INITIALIZE:
            await service.initialize()
        else:
            await service.shutdown()
        return (time.perf_counter() - start) * 1000

    async def initialize(self) -> None:
        if self._initialized:
            self._logger.warning("Service manager already initialized")
            return

        services = list(self._services.values())
        self._logger.info("Initializing services", count=len(services))

        results = await asyncio.gather(
            *(self._run(service, LifecyclePhase.INITIALIZE) for service in services),
            return_exceptions=True,
        )

        failures: Dict[str, BaseException] = {}
        for service, result in zip(services, results):
            if isinstance(result, BaseException):
                failures[service.name] = result
                self._logger.error("Service initialization failed", service=service.name, error=result)
                self._events.emit(
                    "service:error",
                    LifecycleEvent.failure_event(LifecyclePhase.INITIALIZE, service.name, result),
                )
            else:
                self._events.emit(
                    "service:initialized",
                    LifecycleEvent.success_event(
                        LifecyclePhase.INITIALIZE, service.name, duration_ms=result
                    ),
                )

        if failures:
            started = [s for s in services if s.name not in failures]
            if started:
                self._logger.warning(
                    "Stopping services started before the failure",
                    services=[s.name for s in started],
                )
                await self._stop(started)

            name, first = next(iter(failures.items()))
            if isinstance(first, asyncio.CancelledError):
                raise first
            raise ServiceInitializationError(
                f"Service '{name}' failed to initialize: {first}",
                component_name=name,
                failures=failures,
                cause=first,
            ) from first

        self._initialized = True
        self._logger.info("Services initialized", services=list(self._services))

    async def shutdown(self) -> None:
        if not self._initialized:
            self._logger.warning("Service manager not initialized")
            return

        services = list(self._services.values())
        self._logger.info("Shutting down services", count=len(services))
        await self._stop(services)
        self._initialized = False

    async def _stop(self, services: List[IService]) -> None:
        """Shut ``services`` down concurrently; failures are logged only."""
        results = await asyncio.gather(
            *(self._run(service, LifecyclePhase.SHUTDOWN) for service in services),
            return_exceptions=True,
        )

        for service, result in zip(services, results):
            if isinstance(result, BaseException):
                self._logger.error("Service shutdown failed", service=service.name, error=result)
                self._events.emit(
                    "service:error",
                    LifecycleEvent.failure_event(LifecyclePhase.SHUTDOWN, service.name, result),
                )
            else:
                self._events.emit(
                    "service:shutdown",
                    LifecycleEvent.success_event(
                        LifecyclePhase.SHUTDOWN, service.name, duration_ms=result
                    ),
                )

