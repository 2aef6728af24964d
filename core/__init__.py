"""
Operix - Core Module

Lifecycle orchestration shared by every part of the system:
- Unified error hierarchy
- Event bus for lifecycle notifications
- Module manager (dependency-ordered initialization)
- Service manager (concurrent initialization)
- Middleware chain
- Async retry/timeout helpers
- Configuration validation

The Application composition root lives in ``core.application``; it is not
re-exported here because it pulls in the HTTP layer.

Usage:
    from core import ModuleBase, ModuleManager, EventBus

    class DatabaseModule(ModuleBase):
        def __init__(self):
            super().__init__("database")

        async def initialize(self) -> None:
            ...

    manager = ModuleManager(events=EventBus())
    manager.register(DatabaseModule())
    await manager.initialize()
"""

from core.errors import (
    OperixError,
    OperixConfigError,
    OperixTimeoutError,
    DuplicateNameError,
    NotFoundError,
    DependentsExistError,
    MissingDependencyError,
    CircularDependencyError,
    DuplicateRouteError,
    InvalidRouteError,
    LifecycleError,
    ModuleInitializationError,
    ServiceInitializationError,
    MiddlewareError,
    HttpError,
    BadRequestError,
    PayloadTooLargeError,
    RequestParseError,
    ResponseAlreadySentError,
    ErrorContext,
    ErrorSeverity,
    classify_error,
)
from core.events import EventBus, LifecycleEvent, LifecyclePhase
from core.modules import (
    IModule,
    ModuleBase,
    ModuleManager,
    ModuleState,
    DependencyGraph,
)
from core.services import IService, ServiceBase, ServiceManager
from core.middleware import (
    IMiddleware,
    MiddlewareBase,
    FunctionMiddleware,
    MiddlewareManager,
)
from core.async_utils import RetryConfig, RetryPolicy, with_timeout
from core.config_validator import (
    ConfigValidator,
    FieldValidator,
    ValidationIssue,
    ValidationLevel,
    ValidationResult,
    validate_app_config,
    validate_environment,
)

__all__ = [
    # Errors
    "OperixError",
    "OperixConfigError",
    "OperixTimeoutError",
    "DuplicateNameError",
    "NotFoundError",
    "DependentsExistError",
    "MissingDependencyError",
    "CircularDependencyError",
    "DuplicateRouteError",
    "InvalidRouteError",
    "LifecycleError",
    "ModuleInitializationError",
    "ServiceInitializationError",
    "MiddlewareError",
    "HttpError",
    "BadRequestError",
    "PayloadTooLargeError",
    "RequestParseError",
    "ResponseAlreadySentError",
    "ErrorContext",
    "ErrorSeverity",
    "classify_error",
    # Events
    "EventBus",
    "LifecycleEvent",
    "LifecyclePhase",
    # Modules
    "IModule",
    "ModuleBase",
    "ModuleManager",
    "ModuleState",
    "DependencyGraph",
    # Services
    "IService",
    "ServiceBase",
    "ServiceManager",
    # Middleware
    "IMiddleware",
    "MiddlewareBase",
    "FunctionMiddleware",
    "MiddlewareManager",
    # Async
    "RetryConfig",
    "RetryPolicy",
    "with_timeout",
    # Config validation
    "ConfigValidator",
    "FieldValidator",
    "ValidationIssue",
    "ValidationLevel",
    "ValidationResult",
    "validate_app_config",
    "validate_environment",
]
