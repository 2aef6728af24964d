"""
Operix - Middleware Chain

Priority-ordered chain of responsibility over a request context.
Middleware run highest priority first (ties keep registration order) and
must call ``await next()`` to continue; returning without calling it
short-circuits every lower-priority middleware and the terminal step.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Generic, List, Optional, Protocol, TypeVar, runtime_checkable

import structlog

from core.errors import DuplicateNameError, MiddlewareError, NotFoundError
from observability.logging import get_logger

TContext = TypeVar("TContext")
Next = Callable[[], Awaitable[None]]
Terminal = Callable[[Any], Awaitable[None]]


@runtime_checkable
class IMiddleware(Protocol):
    """Contract for one link in the chain."""

    @property
    def name(self) -> str:
        ...

    @property
    def priority(self) -> int:
        ...

    async def execute(self, context: Any, next: Next) -> None:
        ...


class MiddlewareBase:
    """Convenience base with fixed name and priority."""

    name: str = "middleware"
    priority: int = 0

    def __init__(self, name: Optional[str] = None, priority: Optional[int] = None):
        if name is not None:
            self.name = name
        if priority is not None:
            self.priority = priority

    async def execute(self, context: Any, next: Next) -> None:
        await next()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, priority={self.priority})"


class FunctionMiddleware(MiddlewareBase):
    """Adapts ``async def fn(context, next)`` to the middleware contract."""

    def __init__(
        self,
        name: str,
        handler: Callable[[Any, Next], Awaitable[None]],
        priority: int = 0,
    ):
        super().__init__(name=name, priority=priority)
        self._handler = handler

    async def execute(self, context: Any, next: Next) -> None:
        await self._handler(context, next)


class MiddlewareManager(Generic[TContext]):
    """Holds the ordered middleware list and runs it over a context."""

    def __init__(self, logger: Optional[structlog.stdlib.BoundLogger] = None):
        self._middleware: List[IMiddleware] = []
        self._logger = logger or get_logger("operix.middleware")

    def register(self, middleware: IMiddleware) -> None:
        if any(m.name == middleware.name for m in self._middleware):
            raise DuplicateNameError("Middleware", middleware.name)
        self._middleware.append(middleware)
        # list.sort is stable, so equal priorities keep registration order
        self._middleware.sort(key=lambda m: m.priority, reverse=True)
        self._logger.debug("Middleware registered", middleware=middleware.name, priority=middleware.priority)

    def use(
        self,
        name: str,
        priority: int = 0,
    ) -> Callable[[Callable[[Any, Next], Awaitable[None]]], Callable[[Any, Next], Awaitable[None]]]:
        """Decorator form of register() for plain coroutine functions."""

        def decorator(handler: Callable[[Any, Next], Awaitable[None]]) -> Callable[[Any, Next], Awaitable[None]]:
            self.register(FunctionMiddleware(name, handler, priority))
            return handler

        return decorator

    def unregister(self, name: str) -> None:
        for index, middleware in enumerate(self._middleware):
            if middleware.name == name:
                del self._middleware[index]
                self._logger.debug("Middleware unregistered", middleware=name)
                return
        raise NotFoundError("Middleware", name)

    def get(self, name: str) -> Optional[IMiddleware]:
        for middleware in self._middleware:
            if middleware.name == name:
                return middleware
        return None

    def get_all(self) -> List[IMiddleware]:
        """Middleware in execution order."""
        return list(self._middleware)

    def clear(self) -> None:
        self._middleware.clear()

    def __len__(self) -> int:
        return len(self._middleware)

    async def execute(self, context: TContext, final: Optional[Terminal] = None) -> None:
        """
        Run the chain over ``context``.

        ``final`` is the terminal step (route dispatch in the HTTP server);
        it runs only if every middleware called ``next()``. Errors raised by
        a middleware are logged with its name, abort the chain and propagate
        unchanged to the caller, which turns them into a response.
        """
        chain = list(self._middleware)
        # errors that reached a link through next(); logged where they started
        downstream: List[BaseException] = []

        def make_next(index: int) -> Next:
            called = False

            async def next() -> None:
                nonlocal called
                if called:
                    raise MiddlewareError(
                        f"next() called more than once by middleware '{chain[index - 1].name}'"
                    )
                called = True
                try:
                    await dispatch(index)
                except Exception as e:
                    downstream.append(e)
                    raise

            return next

        async def dispatch(index: int) -> None:
            if index == len(chain):
                if final is not None:
                    await final(context)
                return

            middleware = chain[index]
            try:
                await middleware.execute(context, make_next(index + 1))
            except Exception as e:
                if not any(e is seen for seen in downstream):
                    self._logger.error(
                        "Middleware failed",
                        middleware=middleware.name,
                        error=e,
                    )
                raise

        await dispatch(0)
