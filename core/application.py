"""
Operix - Application

Composition root wiring configuration, logging, the event bus, the
module/service/middleware managers, the router and the HTTP server.

Lifecycle:
    CREATED -> INITIALIZING -> RUNNING -> SHUTTING_DOWN -> TERMINATED
                            \\-> FAILED

Startup validates the configuration, then initializes modules (dependency
order, fail-fast) and then services (concurrently). Shutdown runs services
first and then modules in reverse order, best-effort. SIGTERM and SIGINT
trigger the same graceful shutdown; the process exit code is 0 when it
completes and 1 when it fails.

Usage:
    app = Application(load_config())
    app.register_module(DatabaseModule())
    app.add_api_module(dependencies=["database"])
    register_builtin_routes(app.router, app.config)
    exit_code = await app.run()
"""
from __future__ import annotations

import asyncio
import signal
import time
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import structlog

from api.module import ApiModule
from api.router import Router
from api.server import HttpServer
from config import Config, load_config
from core.async_utils import with_timeout
from core.config_validator import ValidationResult, validate_app_config
from core.events import EventBus, LifecycleEvent, LifecyclePhase
from core.middleware import IMiddleware, MiddlewareManager
from core.modules import IModule, ModuleManager
from core.services import IService, ServiceManager
from observability.logging import get_logger, setup_logging


class ApplicationPhase(Enum):
    """Application lifecycle phases."""
    CREATED = "created"
    INITIALIZING = "initializing"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"
    FAILED = "failed"


_RECORDED_EVENTS = (
    "module:initialized",
    "module:shutdown",
    "module:error",
    "service:initialized",
    "service:shutdown",
    "service:error",
)


class Application:
    """The running system: owns every core component and drives their lifecycle."""

    __slots__ = (
        "_config",
        "_config_loader",
        "_configure_logging",
        "_logger",
        "_events",
        "_modules",
        "_services",
        "_middleware",
        "_router",
        "_server",
        "_phase",
        "_lifecycle_events",
        "_shutdown_requested",
        "_installed_signals",
        "_startup_time",
    )

    def __init__(
        self,
        config: Optional[Config] = None,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
        events: Optional[EventBus] = None,
        configure_logging: bool = True,
        config_loader: Optional[Callable[[], Config]] = None,
    ):
        self._config = config or Config()
        self._config_loader = config_loader or (lambda: load_config(override=True))
        self._configure_logging = configure_logging
        self._logger = logger or get_logger("operix.app")
        self._events = events or EventBus()

        self._modules = ModuleManager(events=self._events)
        self._services = ServiceManager(events=self._events)
        self._middleware: MiddlewareManager[Any] = MiddlewareManager()
        self._router = Router()
        self._server = HttpServer(
            self._router,
            self._middleware,
            server_config=self._config.server,
            cors_config=self._config.cors,
            events=self._events,
        )

        self._phase = ApplicationPhase.CREATED
        self._lifecycle_events: List[LifecycleEvent] = []
        self._shutdown_requested = asyncio.Event()
        self._installed_signals: List[signal.Signals] = []
        self._startup_time: Optional[float] = None

        for event_name in _RECORDED_EVENTS:
            self._events.on(event_name, self._record_event)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def config(self) -> Config:
        return self._config

    @property
    def phase(self) -> ApplicationPhase:
        return self._phase

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def modules(self) -> ModuleManager:
        return self._modules

    @property
    def services(self) -> ServiceManager:
        return self._services

    @property
    def middleware(self) -> MiddlewareManager[Any]:
        return self._middleware

    @property
    def router(self) -> Router:
        return self._router

    @property
    def server(self) -> HttpServer:
        return self._server

    @property
    def is_running(self) -> bool:
        return self._phase == ApplicationPhase.RUNNING

    @property
    def uptime_seconds(self) -> float:
        if self._startup_time is None:
            return 0.0
        return time.time() - self._startup_time

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register_module(self, module: IModule) -> "Application":
        self._modules.register(module)
        return self

    def register_service(self, service: IService) -> "Application":
        self._services.register(service)
        return self

    def use(self, middleware: IMiddleware) -> "Application":
        self._middleware.register(middleware)
        return self

    def add_api_module(self, dependencies: Optional[Iterable[str]] = None) -> ApiModule:
        """Register the HTTP server as the ``api`` module."""
        module = ApiModule(self._server, dependencies=dependencies, version=self._config.app_version)
        self._modules.register(module)
        return module

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def validate_config(self, config: Optional[Config] = None) -> ValidationResult:
        """Validate ``config`` (default: the current one), logging warnings."""
        result = validate_app_config(config or self._config)
        for warning in result.warnings:
            self._logger.warning("Configuration warning", message=warning.message, field=warning.field)
        return result

    async def initialize(self) -> None:
        if self._phase in (ApplicationPhase.RUNNING, ApplicationPhase.INITIALIZING):
            self._logger.warning("Application already initialized", phase=self._phase.value)
            return

        self._phase = ApplicationPhase.INITIALIZING
        start = time.perf_counter()

        try:
            self.validate_config().raise_if_invalid()
            if self._configure_logging:
                setup_logging(self._config.logging, force=True)

            self._logger.info(
                "Initializing application",
                app=self._config.app_name,
                version=self._config.app_version,
                environment=self._config.env.value,
            )
            self._events.emit("app:initialising")

            await with_timeout(
                self._start_components(),
                self._config.startup_timeout,
                operation="application startup",
            )
        except Exception as e:
            self._phase = ApplicationPhase.FAILED
            self._logger.error("Application initialization failed", error=e)
            self._events.emit("app:error", e)
            raise

        self._phase = ApplicationPhase.RUNNING
        self._startup_time = time.time()
        self._logger.info(
            "Application started",
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
            modules=self._modules.initialized_modules,
            services=len(self._services),
        )
        self._events.emit("app:initialised")

    async def _start_components(self) -> None:
        await self._modules.initialize()
        await self._services.initialize()

    async def _stop_components(self) -> None:
        await self._services.shutdown()
        await self._modules.shutdown()

    async def shutdown(self) -> None:
        """
        Stop services, then modules.

        Individual component failures are logged by the managers. Raises
        only when the shutdown budget is exhausted; the application is
        TERMINATED either way.
        """
        if self._phase != ApplicationPhase.RUNNING:
            self._logger.warning("Application not running", phase=self._phase.value)
            return

        self._phase = ApplicationPhase.SHUTTING_DOWN
        self._logger.info("Shutting down application")
        self._events.emit("app:shutting-down")
        start = time.perf_counter()

        try:
            await with_timeout(
                self._stop_components(),
                self._config.shutdown_timeout,
                operation="application shutdown",
            )
        except Exception as e:
            self._logger.error("Application shutdown failed", error=e)
            self._events.emit("app:error", e)
            raise
        finally:
            self._phase = ApplicationPhase.TERMINATED
            self._startup_time = None

        self._logger.info(
            "Application stopped",
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        self._events.emit("app:shutdown")

    async def reload(self) -> None:
        """
        Re-read configuration, validate it and apply it.

        Logging and CORS/server settings are re-applied; listener address
        changes take effect on the next server start. An invalid new
        configuration raises and leaves the current one in place.
        """
        new_config = self._config_loader()
        self.validate_config(new_config).raise_if_invalid()

        self._config = new_config
        self._server.update_config(new_config.server, new_config.cors)
        if self._configure_logging:
            setup_logging(new_config.logging, force=True)

        self._record_event(LifecycleEvent.success_event(LifecyclePhase.RELOAD, "application"))
        self._logger.info("Configuration reloaded", environment=new_config.env.value)
        self._events.emit("app:reloaded", new_config)

    def is_ready(self) -> bool:
        """Running with every module started and every service ready."""
        return (
            self.is_running
            and self._modules.is_initialized
            and self._services.is_ready()
        )

    # -------------------------------------------------------------------------
    # Signals
    # -------------------------------------------------------------------------

    def install_signal_handlers(
        self,
        signals: Sequence[signal.Signals] = (signal.SIGTERM, signal.SIGINT),
    ) -> None:
        loop = asyncio.get_running_loop()
        for sig in signals:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig)
            except (NotImplementedError, RuntimeError) as e:
                self._logger.warning("Cannot install signal handler", signal=sig.name, error=e)
                continue
            self._installed_signals.append(sig)

    def remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._installed_signals:
            loop.remove_signal_handler(sig)
        self._installed_signals.clear()

    def request_shutdown(self, sig: Optional[signal.Signals] = None) -> None:
        """Ask the run loop to shut down (signal handlers call this)."""
        if self._shutdown_requested.is_set():
            return
        self._logger.info("Shutdown requested", signal=sig.name if sig else None)
        self._shutdown_requested.set()

    async def wait_for_shutdown(self) -> int:
        """Block until shutdown is requested, shut down, and return the exit code."""
        await self._shutdown_requested.wait()
        try:
            await self.shutdown()
        except Exception:
            return 1
        return 0

    async def run(self) -> int:
        """Initialize, serve until SIGTERM/SIGINT, shut down; returns the exit code."""
        try:
            await self.initialize()
        except Exception:
            return 1

        self.install_signal_handlers()
        try:
            return await self.wait_for_shutdown()
        finally:
            self.remove_signal_handlers()

    async def __aenter__(self) -> "Application":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------

    def _record_event(self, event: LifecycleEvent) -> None:
        self._lifecycle_events.append(event)

    def get_lifecycle_report(self) -> Dict[str, Any]:
        """Snapshot of phase, components and every recorded lifecycle event."""
        return {
            "app": self._config.app_name,
            "version": self._config.app_version,
            "phase": self._phase.value,
            "environment": self._config.env.value,
            "uptime_seconds": self.uptime_seconds,
            "ready": self.is_ready(),
            "modules": [module.name for module in self._modules.get_all()],
            "initialized_modules": self._modules.initialized_modules,
            "services": [service.name for service in self._services.get_all()],
            "middleware": [m.name for m in self._middleware.get_all()],
            "routes": len(self._router),
            "server": self._server.status(),
            "events": [event.to_dict() for event in self._lifecycle_events],
            "total_events": len(self._lifecycle_events),
            "failed_events": sum(1 for e in self._lifecycle_events if not e.success),
        }
