"""
Event Contract
Typed events exchanged between the engine components.

Every event carries an EventKind tag. Producers publish to an EventBus;
consumers register by name, either as a callback or as an asyncio.Queue.

Usage:
    bus = EventBus()
    bus.subscribe([EventKind.ALERT_FIRED], on_alert, name="dispatcher")
    queue = bus.listen("sse-1", [EventKind.ALERT_FIRED])
    bus.publish(AlertFired(alert=alert, channel_ids=["ch-1"]))
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Union

logger = logging.getLogger('devicewatch.core.events')


class EventKind(str, Enum):
    ALERT_FIRED = "alert_fired"
    NOTIFICATION_SENT = "notification_sent"
    NOTIFICATION_FAILED = "notification_failed"
    EXECUTION_QUEUED = "execution_queued"
    EXECUTION_STARTED = "execution_started"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"
    EXECUTION_TIMEOUT = "execution_timeout"
    EXECUTION_CANCELLED = "execution_cancelled"


EXECUTION_EVENTS: FrozenSet[EventKind] = frozenset({
    EventKind.EXECUTION_QUEUED,
    EventKind.EXECUTION_STARTED,
    EventKind.EXECUTION_COMPLETED,
    EventKind.EXECUTION_FAILED,
    EventKind.EXECUTION_TIMEOUT,
    EventKind.EXECUTION_CANCELLED,
})


# =============================================================================
# Events
# =============================================================================

@dataclass(frozen=True)
class AlertFired:
    """A rule fired. channel_ids is the rule's ordered notification list."""
    alert: Any
    channel_ids: List[str]
    kind: EventKind = field(default=EventKind.ALERT_FIRED, init=False)


@dataclass(frozen=True)
class NotificationSent:
    alert: Any
    channel_id: str
    channel_type: str
    kind: EventKind = field(default=EventKind.NOTIFICATION_SENT, init=False)


@dataclass(frozen=True)
class NotificationFailed:
    alert: Any
    channel_id: str
    channel_type: str
    error: str
    kind: EventKind = field(default=EventKind.NOTIFICATION_FAILED, init=False)


@dataclass(frozen=True)
class ExecutionEvent:
    """State change of one execution. execution is a snapshot, not the live record."""
    kind: EventKind
    execution: Any

    def __post_init__(self):
        if self.kind not in EXECUTION_EVENTS:
            raise ValueError(f"{self.kind} is not an execution event")


Event = Union[AlertFired, NotificationSent, NotificationFailed, ExecutionEvent]
EventHandler = Callable[[Event], Any]


# =============================================================================
# Bus
# =============================================================================

@dataclass
class _Subscriber:
    name: str
    kinds: FrozenSet[EventKind]
    handler: Optional[EventHandler] = None
    queue: Optional[asyncio.Queue] = None


class EventBus:
    """
    Named subscriber lists, one per consumer.

    - Callbacks may be sync or async; async ones are scheduled as tasks
    - Listeners get a bounded asyncio.Queue; a full queue drops the event
      for that listener only
    - A failing subscriber never affects the publisher or its siblings
    """

    def __init__(self):
        self._subscribers: Dict[str, _Subscriber] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._counter = 0
        self._stats = {
            "published": 0,
            "handler_errors": 0,
            "dropped": 0,
        }

    def subscribe(
        self,
        kinds: Optional[Iterable[EventKind]],
        handler: EventHandler,
        name: Optional[str] = None,
    ) -> str:
        name = name or self._next_name("handler")
        self._subscribers[name] = _Subscriber(
            name=name,
            kinds=self._kinds(kinds),
            handler=handler,
        )
        return name

    def listen(
        self,
        name: Optional[str] = None,
        kinds: Optional[Iterable[EventKind]] = None,
        maxsize: int = 100,
    ) -> asyncio.Queue:
        name = name or self._next_name("listener")
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers[name] = _Subscriber(
            name=name,
            kinds=self._kinds(kinds),
            queue=queue,
        )
        return queue

    def unsubscribe(self, name: str) -> bool:
        return self._subscribers.pop(name, None) is not None

    def subscribers(self) -> List[str]:
        return list(self._subscribers.keys())

    def publish(self, event: Event) -> None:
        self._stats["published"] += 1

        for sub in list(self._subscribers.values()):
            if event.kind not in sub.kinds:
                continue

            if sub.queue is not None:
                try:
                    sub.queue.put_nowait(event)
                except asyncio.QueueFull:
                    self._stats["dropped"] += 1
                    logger.warning("Listener %s is full, dropping %s", sub.name, event.kind.value)
                continue

            self._invoke(sub, event)

    async def drain(self) -> None:
        """Wait for every scheduled async handler, including ones they schedule."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "subscribers": len(self._subscribers),
            "pending_tasks": len(self._tasks),
        }

    def _invoke(self, sub: _Subscriber, event: Event) -> None:
        try:
            result = sub.handler(event)
        except Exception:
            self._stats["handler_errors"] += 1
            logger.exception("Event handler %s failed on %s", sub.name, event.kind.value)
            return

        if not inspect.isawaitable(result):
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, dropping async handler %s", sub.name)
            if asyncio.iscoroutine(result):
                result.close()
            return

        task = loop.create_task(self._guard(sub.name, event, result))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _guard(self, name: str, event: Event, awaitable) -> None:
        try:
            await awaitable
        except asyncio.CancelledError:
            raise
        except Exception:
            self._stats["handler_errors"] += 1
            logger.exception("Event handler %s failed on %s", name, event.kind.value)

    def _next_name(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{self._counter}"

    @staticmethod
    def _kinds(kinds: Optional[Iterable[EventKind]]) -> FrozenSet[EventKind]:
        if kinds is None:
            return frozenset(EventKind)
        return frozenset(kinds)
