"""
Tests for core/middleware.py - ordering and chain semantics.
"""
import pytest
from structlog.testing import capture_logs

from core.errors import DuplicateNameError, MiddlewareError, NotFoundError
from core.middleware import FunctionMiddleware, IMiddleware, MiddlewareBase


def recorder(name, priority=0, call_next=True):
    async def handler(context, next):
        context.append(f"before:{name}")
        if call_next:
            await next()
        context.append(f"after:{name}")

    return FunctionMiddleware(name, handler, priority)


class TestMiddlewareRegistry:

    def test_sorted_by_priority_descending(self, middleware_manager):
        middleware_manager.register(recorder("low", 10))
        middleware_manager.register(recorder("high", 90))
        middleware_manager.register(recorder("mid", 50))

        assert [m.name for m in middleware_manager.get_all()] == ["high", "mid", "low"]

    def test_equal_priority_keeps_registration_order(self, middleware_manager):
        for name in ["a", "b", "c"]:
            middleware_manager.register(recorder(name, 5))

        assert [m.name for m in middleware_manager.get_all()] == ["a", "b", "c"]

    def test_duplicate_name_rejected(self, middleware_manager):
        middleware_manager.register(recorder("auth"))
        with pytest.raises(DuplicateNameError):
            middleware_manager.register(recorder("auth"))

    def test_unregister(self, middleware_manager):
        middleware_manager.register(recorder("auth"))
        middleware_manager.unregister("auth")

        assert middleware_manager.get("auth") is None
        assert len(middleware_manager) == 0

    def test_unregister_unknown(self, middleware_manager):
        with pytest.raises(NotFoundError):
            middleware_manager.unregister("ghost")

    def test_use_decorator(self, middleware_manager):
        @middleware_manager.use("timing", priority=7)
        async def timing(context, next):
            await next()

        registered = middleware_manager.get("timing")
        assert registered.priority == 7
        assert isinstance(registered, IMiddleware)

    def test_class_attributes(self):
        class Auth(MiddlewareBase):
            name = "auth"
            priority = 70

        middleware = Auth()
        assert (middleware.name, middleware.priority) == ("auth", 70)
        assert Auth(priority=1).priority == 1


class TestMiddlewareExecution:

    @pytest.mark.asyncio
    async def test_onion_order_and_final(self, middleware_manager):
        middleware_manager.register(recorder("outer", 10))
        middleware_manager.register(recorder("inner", 1))
        trail = []

        async def final(context):
            context.append("final")

        await middleware_manager.execute(trail, final)

        assert trail == ["before:outer", "before:inner", "final", "after:inner", "after:outer"]

    @pytest.mark.asyncio
    async def test_short_circuit_skips_rest_and_final(self, middleware_manager):
        middleware_manager.register(recorder("gate", 10, call_next=False))
        middleware_manager.register(recorder("inner", 1))
        trail = []

        async def final(context):
            context.append("final")

        await middleware_manager.execute(trail, final)

        assert trail == ["before:gate", "after:gate"]

    @pytest.mark.asyncio
    async def test_empty_chain_runs_final(self, middleware_manager):
        trail = []

        async def final(context):
            context.append("final")

        await middleware_manager.execute(trail, final)
        assert trail == ["final"]

    @pytest.mark.asyncio
    async def test_without_final(self, middleware_manager):
        middleware_manager.register(recorder("only"))
        trail = []

        await middleware_manager.execute(trail)
        assert trail == ["before:only", "after:only"]

    @pytest.mark.asyncio
    async def test_next_twice_raises(self, middleware_manager):
        async def greedy(context, next):
            await next()
            await next()

        middleware_manager.register(FunctionMiddleware("greedy", greedy))

        with pytest.raises(MiddlewareError, match="more than once"):
            await middleware_manager.execute([])

    @pytest.mark.asyncio
    async def test_errors_propagate_to_caller(self, middleware_manager):
        async def broken(context, next):
            raise ValueError("middleware bug")

        middleware_manager.register(FunctionMiddleware("broken", broken, 5))
        middleware_manager.register(recorder("after", 1))
        trail = []

        with pytest.raises(ValueError, match="middleware bug"):
            await middleware_manager.execute(trail)

        assert trail == []

    @pytest.mark.asyncio
    async def test_failure_logged_with_middleware_name(self, middleware_manager):
        async def boom(context, next):
            raise RuntimeError("token store down")

        middleware_manager.register(recorder("outer", 10))
        middleware_manager.register(FunctionMiddleware("auth", boom, 5))

        with capture_logs() as logs:
            with pytest.raises(RuntimeError):
                await middleware_manager.execute([])

        failures = [entry for entry in logs if entry["event"] == "Middleware failed"]
        assert [entry["middleware"] for entry in failures] == ["auth"]
        assert failures[0]["log_level"] == "error"

    @pytest.mark.asyncio
    async def test_final_step_errors_are_not_blamed_on_middleware(self, middleware_manager):
        async def handler(context):
            raise RuntimeError("handler bug")

        middleware_manager.register(recorder("outer"))

        with capture_logs() as logs:
            with pytest.raises(RuntimeError):
                await middleware_manager.execute([], handler)

        assert not [entry for entry in logs if entry["event"] == "Middleware failed"]
