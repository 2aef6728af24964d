"""
Operix - Lifecycle Event Bus

In-process publish/subscribe used to signal lifecycle transitions
(module started, server stopped, application reloaded, ...).

Listeners are plain callables invoked synchronously, in subscription
order, on the emitting task. A listener that raises is logged and the
remaining listeners still run; emitters never see listener errors.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID, uuid4

import structlog

from observability.logging import get_logger

Listener = Callable[..., Any]


# =============================================================================
# LIFECYCLE EVENT RECORDS
# =============================================================================


class LifecyclePhase(Enum):
    """Transition a lifecycle event describes."""
    REGISTER = "register"
    UNREGISTER = "unregister"
    INITIALIZE = "initialize"
    SHUTDOWN = "shutdown"
    RELOAD = "reload"


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    """Immutable record of one component's lifecycle transition."""
    event_id: UUID
    timestamp: float
    component: str
    phase: LifecyclePhase
    success: bool
    duration_ms: float
    error: Optional[str] = None
    error_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success_event(
        cls,
        phase: LifecyclePhase,
        component: str,
        duration_ms: float = 0.0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "LifecycleEvent":
        """Factory for successful lifecycle events."""
        return cls(
            event_id=uuid4(),
            timestamp=time.time(),
            component=component,
            phase=phase,
            success=True,
            duration_ms=duration_ms,
            metadata=metadata or {},
        )

    @classmethod
    def failure_event(
        cls,
        phase: LifecyclePhase,
        component: str,
        error: BaseException,
        duration_ms: float = 0.0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "LifecycleEvent":
        """Factory for failed lifecycle events."""
        return cls(
            event_id=uuid4(),
            timestamp=time.time(),
            component=component,
            phase=phase,
            success=False,
            duration_ms=duration_ms,
            error=str(error),
            error_type=type(error).__name__,
            metadata=metadata or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp,
            "component": self.component,
            "phase": self.phase.value,
            "success": self.success,
            "duration_ms": round(self.duration_ms, 3),
            "error": self.error,
            "error_type": self.error_type,
        }


# =============================================================================
# EVENT BUS
# =============================================================================


class EventBus:
    """
    Synchronous in-process event emitter.

    Usage:
        bus = EventBus()
        bus.on("module:initialized", lambda event: print(event.component))
        bus.emit("module:initialized", LifecycleEvent.success_event(...))
    """

    def __init__(self, logger: Optional[structlog.stdlib.BoundLogger] = None):
        self._listeners: Dict[str, List[Listener]] = {}
        self._logger = logger or get_logger("operix.events")

    def on(self, event: str, listener: Listener) -> "EventBus":
        """Subscribe ``listener`` to ``event``."""
        self._listeners.setdefault(event, []).append(listener)
        return self

    def off(self, event: str, listener: Listener) -> "EventBus":
        """Remove one subscription of ``listener``; unknown listeners are ignored."""
        listeners = self._listeners.get(event)
        if not listeners:
            return self
        for index, candidate in enumerate(listeners):
            if candidate is listener or getattr(candidate, "__wrapped__", None) is listener:
                del listeners[index]
                break
        if not listeners:
            del self._listeners[event]
        return self

    def once(self, event: str, listener: Listener) -> "EventBus":
        """Subscribe ``listener`` for a single delivery."""

        def wrapper(*args: Any) -> Any:
            self.off(event, wrapper)
            return listener(*args)

        wrapper.__wrapped__ = listener  # type: ignore[attr-defined]
        return self.on(event, wrapper)

    def emit(self, event: str, *args: Any) -> bool:
        """
        Deliver ``args`` to every listener of ``event``.

        Returns True if the event had listeners.
        """
        listeners = list(self._listeners.get(event, ()))
        for listener in listeners:
            try:
                listener(*args)
            except Exception as e:
                self._logger.error(
                    "Event listener failed",
                    event_name=event,
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error=e,
                    exc_info=True,
                )
        return bool(listeners)

    def remove_all_listeners(self, event: Optional[str] = None) -> "EventBus":
        """Drop the listeners of one event, or of every event."""
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)
        return self

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def event_names(self) -> List[str]:
        return list(self._listeners)
