"""
RentFlow Lease Events

Typed lifecycle events and a synchronous in-process event bus.

The lease program publishes an event only after the store has committed the
invocation, so subscribers never see a state change that did not happen.
Handler failures are counted and reported through `on_error` and the log;
they never change the outcome of the operation that published the event.

Usage
─────

    bus = get_event_bus()

    @bus.subscribe(LeaseActivated)
    def on_activated(event: LeaseActivated):
        print(f"Lease {event.lease_id} is in force")
"""

from __future__ import annotations

import hashlib
import threading
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Type

from rentflow.core import canonical_json_bytes
from rentflow.observability import LeaseLayer, get_correlation_id, get_logger

logger = get_logger("bus", LeaseLayer.EVENTS)


# ════════════════════════════════════════════════════════════════════════════
# EVENT BASE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Event:
    """
    Base class for lease events.

    `timestamp` is the trusted time of the invocation that produced the
    event, in unix seconds.
    """

    lease_id: str = ""
    timestamp: int = 0
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    correlation_id: Optional[str] = None

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type
        return data

    def digest(self) -> str:
        """Deterministic digest of the event content, excluding delivery metadata."""
        content = {k: v for k, v in self.to_dict().items() if k not in ("event_id", "correlation_id")}
        return hashlib.sha256(canonical_json_bytes(content)).hexdigest()


@dataclass
class LeaseCreated(Event):
    """Emitted when a lease record is initialized."""
    address: str = ""
    manager: str = ""
    tenant: str = ""
    monthly_rent: int = 0


@dataclass
class LeaseSigned(Event):
    """Emitted when one party signs."""
    signer: str = ""
    signer_type: str = ""


@dataclass
class LeaseActivated(Event):
    """Emitted when the second signature brings the lease into force."""
    pass


@dataclass
class LeaseStatusChanged(Event):
    """Emitted on every post-activation status transition."""
    old_status: str = ""
    new_status: str = ""


# ════════════════════════════════════════════════════════════════════════════
# EVENT BUS
# ════════════════════════════════════════════════════════════════════════════


EventHandler = Callable[[Event], None]


@dataclass
class EventHandlerRegistration:
    """Registration for an event handler."""
    handler: EventHandler
    event_types: Set[Type[Event]]
    priority: int = 0
    filter_func: Optional[Callable[[Event], bool]] = None


class EventHandlerError(Exception):
    """Error during event handling."""
    def __init__(self, event: Event, handler: EventHandler, cause: Exception):
        self.event = event
        self.handler = handler
        self.cause = cause
        name = getattr(handler, "__name__", repr(handler))
        super().__init__(f"Handler {name} failed for {event.event_type}: {cause}")


class EventBus:
    """
    Synchronous pub/sub bus. Handlers run in priority order (higher first)
    on the publishing thread.

    Example:
        bus = EventBus()

        @bus.subscribe(LeaseSigned, LeaseActivated)
        def audit(event):
            ...
    """

    def __init__(self, on_error: Optional[Callable[[EventHandlerError], None]] = None):
        self._handlers: List[EventHandlerRegistration] = []
        self._lock = threading.RLock()
        self._on_error = on_error
        self._published_count = 0
        self._handled_count = 0
        self._error_count = 0

    def subscribe(
        self,
        *event_types: Type[Event],
        priority: int = 0,
        filter_func: Optional[Callable[[Event], bool]] = None,
    ) -> Callable[[EventHandler], EventHandler]:
        """Decorator to subscribe a handler to event types (all events if none given)."""
        def decorator(handler: EventHandler) -> EventHandler:
            registration = EventHandlerRegistration(
                handler=handler,
                event_types=set(event_types) if event_types else {Event},
                priority=priority,
                filter_func=filter_func,
            )
            with self._lock:
                self._handlers.append(registration)
                self._handlers.sort(key=lambda r: -r.priority)
            return handler
        return decorator

    def unsubscribe(self, handler: EventHandler) -> bool:
        with self._lock:
            original_len = len(self._handlers)
            self._handlers = [r for r in self._handlers if r.handler != handler]
            return len(self._handlers) < original_len

    def publish(self, event: Event) -> None:
        """Deliver an event to every matching subscriber."""
        if event.correlation_id is None:
            event.correlation_id = get_correlation_id()

        with self._lock:
            self._published_count += 1
            handlers_to_call = [
                r for r in self._handlers
                if any(isinstance(event, t) for t in r.event_types)
                and (r.filter_func is None or r.filter_func(event))
            ]

        # Call handlers outside the lock
        for registration in handlers_to_call:
            self._call_handler(registration.handler, event)

    def _call_handler(self, handler: EventHandler, event: Event) -> None:
        try:
            handler(event)
            with self._lock:
                self._handled_count += 1
        except Exception as e:
            with self._lock:
                self._error_count += 1
            error = EventHandlerError(event, handler, e)
            logger.error(
                str(error),
                error_code="EVENT_HANDLER_FAILED",
                exc_info=True,
                lease_id=event.lease_id,
                event_type=event.event_type,
            )
            if self._on_error:
                self._on_error(error)

    @property
    def metrics(self) -> Dict[str, int]:
        with self._lock:
            return {
                "published_count": self._published_count,
                "handled_count": self._handled_count,
                "error_count": self._error_count,
                "handler_count": len(self._handlers),
            }


_event_bus: Optional[EventBus] = None
_event_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Process-wide default bus."""
    global _event_bus
    with _event_bus_lock:
        if _event_bus is None:
            _event_bus = EventBus()
        return _event_bus


def reset_event_bus() -> None:
    global _event_bus
    with _event_bus_lock:
        _event_bus = None
