"""
Tests for core/events.py.
"""
import pytest

from core.events import LifecycleEvent, LifecyclePhase


class TestEventBus:

    def test_emit_delivers_arguments_in_subscription_order(self, event_bus):
        calls = []
        event_bus.on("tick", lambda n: calls.append(("first", n)))
        event_bus.on("tick", lambda n: calls.append(("second", n)))

        assert event_bus.emit("tick", 1) is True
        assert calls == [("first", 1), ("second", 1)]

    def test_emit_without_listeners(self, event_bus):
        assert event_bus.emit("nothing") is False

    def test_off_removes_listener(self, event_bus):
        calls = []
        listener = calls.append
        event_bus.on("tick", listener)
        event_bus.off("tick", listener)

        event_bus.emit("tick", 1)
        assert calls == []
        assert event_bus.listener_count("tick") == 0

    def test_off_unknown_listener_is_ignored(self, event_bus):
        event_bus.off("tick", print)
        assert event_bus.event_names() == []

    def test_once_fires_a_single_time(self, event_bus):
        calls = []
        event_bus.once("tick", calls.append)

        event_bus.emit("tick", 1)
        event_bus.emit("tick", 2)

        assert calls == [1]

    def test_once_can_be_removed_with_original_listener(self, event_bus):
        calls = []
        listener = calls.append
        event_bus.once("tick", listener)
        event_bus.off("tick", listener)

        event_bus.emit("tick", 1)
        assert calls == []

    def test_failing_listener_does_not_stop_others(self, event_bus):
        calls = []

        def broken(_):
            raise RuntimeError("listener bug")

        event_bus.on("tick", broken)
        event_bus.on("tick", calls.append)

        assert event_bus.emit("tick", 1) is True
        assert calls == [1]

    def test_chaining_and_bookkeeping(self, event_bus):
        result = event_bus.on("a", print).on("b", print).on("b", repr)

        assert result is event_bus
        assert event_bus.listener_count("b") == 2
        assert event_bus.event_names() == ["a", "b"]

        event_bus.remove_all_listeners("b")
        assert event_bus.event_names() == ["a"]

        event_bus.remove_all_listeners()
        assert event_bus.event_names() == []


class TestLifecycleEvent:

    def test_success_event(self):
        event = LifecycleEvent.success_event(LifecyclePhase.INITIALIZE, "db", duration_ms=1.5)

        assert event.success
        assert event.error is None
        assert event.to_dict()["phase"] == "initialize"

    def test_failure_event_captures_error(self):
        event = LifecycleEvent.failure_event(LifecyclePhase.SHUTDOWN, "db", ValueError("bad"))

        assert not event.success
        assert event.error == "bad"
        assert event.error_type == "ValueError"

    def test_events_are_immutable(self):
        event = LifecycleEvent.success_event(LifecyclePhase.REGISTER, "db")
        with pytest.raises(AttributeError):
            event.component = "other"
