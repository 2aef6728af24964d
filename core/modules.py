"""
Operix - Module Lifecycle

Dependency-ordered startup and shutdown for modules: named components
that declare which other modules must be running before they start.

Ordering rules:
    - every declared dependency must be registered before initialize()
    - the dependency graph must be acyclic; this is checked before any
      module's initializer runs
    - the order is a depth-first post-order over modules in registration
      order, so it is deterministic for a fixed registration sequence
    - initialization is fail-fast; shutdown runs in reverse and is
      best-effort

Usage:
    modules = ModuleManager(events=bus)
    modules.register(DatabaseModule())
    modules.register(AuthModule().depends_on("database"))
    await modules.initialize()
    ...
    await modules.shutdown()
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import (
    Dict,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    Set,
    Tuple,
    runtime_checkable,
)

import structlog

from core.errors import (
    CircularDependencyError,
    DependentsExistError,
    DuplicateNameError,
    MissingDependencyError,
    ModuleInitializationError,
    NotFoundError,
)
from core.events import EventBus, LifecycleEvent, LifecyclePhase
from observability.logging import get_logger


# =============================================================================
# MODULE CONTRACT
# =============================================================================


@runtime_checkable
class IModule(Protocol):
    """Contract for components that take part in ordered startup."""

    @property
    def name(self) -> str:
        ...

    @property
    def version(self) -> str:
        ...

    @property
    def dependencies(self) -> Sequence[str]:
        """Names of modules that must be initialized first."""
        ...

    async def initialize(self) -> None:
        ...

    async def shutdown(self) -> None:
        ...

    def is_enabled(self) -> bool:
        ...


class ModuleBase:
    """Base class for modules with dependency tracking and an enabled flag."""

    def __init__(
        self,
        name: Optional[str] = None,
        version: str = "1.0.0",
        dependencies: Optional[Iterable[str]] = None,
        enabled: bool = True,
    ):
        self._name = name or self.__class__.__name__
        self._version = version
        self._dependencies: List[str] = list(dependencies or [])
        self._enabled = enabled
        self._initialized = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def version(self) -> str:
        return self._version

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def dependencies(self) -> List[str]:
        return self._dependencies

    def depends_on(self, *module_names: str) -> "ModuleBase":
        """Declare dependencies on other modules."""
        self._dependencies.extend(module_names)
        return self

    def is_enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    async def initialize(self) -> None:
        if self._initialized:
            return
        await self.on_initialize()
        self._initialized = True

    async def shutdown(self) -> None:
        if not self._initialized:
            return
        self._initialized = False
        await self.on_shutdown()

    async def on_initialize(self) -> None:
        """Override to add initialization logic."""
        pass

    async def on_shutdown(self) -> None:
        """Override to add shutdown logic."""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self._name!r}, version={self._version!r})"


# =============================================================================
# DEPENDENCY GRAPH
# =============================================================================


class DependencyGraph:
    """
    Adjacency map ``module name -> dependency names``.

    Insertion order of nodes and of each node's dependencies is kept, which
    makes cycle reports and the topological order reproducible.
    """

    def __init__(self) -> None:
        self._edges: Dict[str, List[str]] = {}

    def add(self, name: str, dependencies: Iterable[str]) -> None:
        self._edges[name] = list(dict.fromkeys(dependencies))

    def remove(self, name: str) -> None:
        self._edges.pop(name, None)

    def __contains__(self, name: object) -> bool:
        return name in self._edges

    def __len__(self) -> int:
        return len(self._edges)

    def nodes(self) -> List[str]:
        return list(self._edges)

    def dependencies_of(self, name: str) -> List[str]:
        return list(self._edges.get(name, ()))

    def dependents_of(self, name: str) -> List[str]:
        """Modules that list ``name`` as a direct dependency."""
        return [node for node, deps in self._edges.items() if name in deps and node != name]

    def missing_dependencies(self) -> List[Tuple[str, str]]:
        """``(module, dependency)`` pairs whose dependency is not a node."""
        return [
            (node, dep)
            for node, deps in self._edges.items()
            for dep in deps
            if dep not in self._edges
        ]

    def find_cycle(self) -> Optional[List[str]]:
        """
        Depth-first search with a recursion stack.

        Returns the cycle as a path that starts and ends with the node that
        was revisited while still on the stack, or None for an acyclic graph.
        """
        visited: Set[str] = set()
        stack: List[str] = []
        on_stack: Set[str] = set()

        def visit(node: str) -> Optional[List[str]]:
            if node in on_stack:
                return stack[stack.index(node):] + [node]
            if node in visited:
                return None
            visited.add(node)
            stack.append(node)
            on_stack.add(node)
            for dep in self._edges.get(node, ()):
                cycle = visit(dep)
                if cycle:
                    return cycle
            stack.pop()
            on_stack.discard(node)
            return None

        for node in self._edges:
            cycle = visit(node)
            if cycle:
                return cycle
        return None

    def topological_order(self) -> List[str]:
        """
        Depth-first post-order: a node is appended after all its dependencies.

        Assumes the graph was checked with find_cycle(); dependencies that
        are not nodes are skipped.
        """
        order: List[str] = []
        visited: Set[str] = set()

        def visit(node: str) -> None:
            if node in visited or node not in self._edges:
                return
            visited.add(node)
            for dep in self._edges[node]:
                visit(dep)
            order.append(node)

        for node in self._edges:
            visit(node)
        return order


# =============================================================================
# MODULE MANAGER
# =============================================================================


class ModuleState(Enum):
    """Module manager lifecycle: UNINITIALIZED -> INITIALIZING -> READY -> SHUTTING_DOWN."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"


class ModuleManager:
    """Registry of modules plus dependency-ordered initialize/shutdown."""

    def __init__(
        self,
        events: Optional[EventBus] = None,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
    ):
        self._modules: Dict[str, IModule] = {}
        self._graph = DependencyGraph()
        self._state = ModuleState.UNINITIALIZED
        self._initialized: List[IModule] = []
        self._events = events or EventBus()
        self._logger = logger or get_logger("operix.modules")

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------

    def register(self, module: IModule) -> None:
        if module.name in self._modules:
            raise DuplicateNameError("Module", module.name)

        self._modules[module.name] = module
        self._graph.add(module.name, module.dependencies)
        self._logger.debug(
            "Module registered",
            module=module.name,
            version=module.version,
            dependencies=list(module.dependencies),
        )
        self._events.emit(
            "module:registered",
            LifecycleEvent.success_event(LifecyclePhase.REGISTER, module.name),
        )

    def unregister(self, name: str) -> None:
        if name not in self._modules:
            raise NotFoundError("Module", name)

        dependents = self._graph.dependents_of(name)
        if dependents:
            raise DependentsExistError(name, dependents)

        del self._modules[name]
        self._graph.remove(name)
        self._logger.debug("Module unregistered", module=name)
        self._events.emit(
            "module:unregistered",
            LifecycleEvent.success_event(LifecyclePhase.UNREGISTER, name),
        )

    def get(self, name: str) -> Optional[IModule]:
        return self._modules.get(name)

    def get_all(self) -> List[IModule]:
        return list(self._modules.values())

    def __contains__(self, name: object) -> bool:
        return name in self._modules

    def __len__(self) -> int:
        return len(self._modules)

    @property
    def state(self) -> ModuleState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._state == ModuleState.READY

    @property
    def initialized_modules(self) -> List[str]:
        """Names of the modules that completed initialize(), in start order."""
        return [module.name for module in self._initialized]

    # -------------------------------------------------------------------------
    # Ordering
    # -------------------------------------------------------------------------

    def validate(self) -> None:
        """Raise the first configuration error in the dependency graph."""
        missing = self._graph.missing_dependencies()
        if missing:
            module, dependency = missing[0]
            raise MissingDependencyError(module, dependency)

        cycle = self._graph.find_cycle()
        if cycle:
            raise CircularDependencyError(cycle[0], cycle)

    def initialization_order(self) -> List[str]:
        """Validated start order of every registered module, disabled ones included."""
        self.validate()
        return self._graph.topological_order()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        if self._state != ModuleState.UNINITIALIZED:
            self._logger.warning("Module manager already initialized", state=self._state.value)
            return

        order = self.initialization_order()
        self._state = ModuleState.INITIALIZING
        self._initialized = []
        self._logger.info("Initializing modules", order=order)

        for name in order:
            module = self._modules[name]
            if not module.is_enabled():
                self._logger.info("Skipping disabled module", module=name)
                continue

            disabled_deps = [
                dep for dep in self._graph.dependencies_of(name)
                if not self._modules[dep].is_enabled()
            ]
            if disabled_deps:
                self._logger.warning(
                    "Module depends on disabled modules",
                    module=name,
                    disabled=disabled_deps,
                )

            start = time.perf_counter()
            try:
                await module.initialize()
            except asyncio.CancelledError:
                self._state = ModuleState.UNINITIALIZED
                self._logger.warning(
                    "Module initialization cancelled",
                    module=name,
                    started=self.initialized_modules,
                )
                raise
            except Exception as e:
                duration_ms = (time.perf_counter() - start) * 1000
                self._state = ModuleState.UNINITIALIZED
                self._logger.error(
                    "Module initialization failed",
                    module=name,
                    error=e,
                    started=self.initialized_modules,
                )
                self._events.emit(
                    "module:error",
                    LifecycleEvent.failure_event(
                        LifecyclePhase.INITIALIZE, name, e, duration_ms=duration_ms
                    ),
                )
                raise ModuleInitializationError(
                    f"Module '{name}' failed to initialize: {e}",
                    component_name=name,
                    cause=e,
                ) from e

            duration_ms = (time.perf_counter() - start) * 1000
            self._initialized.append(module)
            self._logger.info(
                "Module initialized",
                module=name,
                version=module.version,
                duration_ms=round(duration_ms, 2),
            )
            self._events.emit(
                "module:initialized",
                LifecycleEvent.success_event(
                    LifecyclePhase.INITIALIZE, name, duration_ms=duration_ms
                ),
            )

        self._state = ModuleState.READY
        self._events.emit("modules:ready", self.initialized_modules)

    async def shutdown(self) -> None:
        if self._state != ModuleState.READY:
            self._logger.warning("Module manager not initialized", state=self._state.value)
            return

        self._state = ModuleState.SHUTTING_DOWN
        self._logger.info("Shutting down modules", order=list(reversed(self.initialized_modules)))

        for module in reversed(self._initialized):
            start = time.perf_counter()
            try:
                await module.shutdown()
            except Exception as e:
                # Best effort: every other module still gets its shutdown call.
                self._logger.error(
                    "Module shutdown failed",
                    module=module.name,
                    error=e,
                    exc_info=True,
                )
                self._events.emit(
                    "module:error",
                    LifecycleEvent.failure_event(LifecyclePhase.SHUTDOWN, module.name, e),
                )
                continue

            duration_ms = (time.perf_counter() - start) * 1000
            self._logger.info(
                "Module shut down",
                module=module.name,
                duration_ms=round(duration_ms, 2),
            )
            self._events.emit(
                "module:shutdown",
                LifecycleEvent.success_event(
                    LifecyclePhase.SHUTDOWN, module.name, duration_ms=duration_ms
                ),
            )

        self._initialized = []
        self._state = ModuleState.UNINITIALIZED
        self._events.emit("modules:stopped")
