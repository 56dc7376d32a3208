"""Domain events emitted by committed governance commands.

Events are published after the commit point. Sinks are fire-and-forget: a
failing handler is logged and never rolls back the change that produced the
event. Downstream consumers (notification fan-out, UI invalidation) must
tolerate at-least-once delivery; nothing here deduplicates.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Union

import structlog

log = structlog.get_logger()


class TeamEventType(str, Enum):
    """Types of events a team can emit."""

    TEAM_CREATED = "team_created"
    TEAM_UPDATED = "team_updated"
    TEAM_DISBANDED = "team_disbanded"
    MEMBER_ADDED = "member_added"
    MEMBER_REMOVED = "member_removed"
    MEMBER_LEFT = "member_left"
    ROLE_CHANGED = "role_changed"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"
    JOIN_REQUESTED = "join_requested"
    JOIN_REQUEST_ACCEPTED = "join_request_accepted"
    JOIN_REQUEST_REJECTED = "join_request_rejected"
    MEMBER_INVITED = "member_invited"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_DECLINED = "invitation_declined"
    INVITATION_REVOKED = "invitation_revoked"


@dataclass
class TeamEvent:
    """An event with type, payload, and the version it committed at.

    Attributes:
        type: What happened
        team_id: Team the event belongs to
        actor_id: User whose command caused it
        version: Team version after the commit; orders events per team
        data: Event-specific payload (user ids, roles, messages)
        timestamp: Wall-clock time of emission
    """

    type: TeamEventType
    team_id: str
    actor_id: Optional[str]
    version: int
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "team_id": self.team_id,
            "actor_id": self.actor_id,
            "version": self.version,
            "data": self.data,
            "timestamp": self.timestamp,
        }


class EventSink(Protocol):
    """Receives committed events. Must not block the caller."""

    def publish(self, event: TeamEvent) -> None:
        ...


Handler = Callable[[TeamEvent], Any]
ALL_EVENTS = "*"


class EventBus:
    """In-process pub/sub sink for team events.

    Handlers may be plain callables or coroutine functions. Coroutine
    handlers are scheduled as background tasks on the running loop so
    publish() returns immediately.
    """

    def __init__(self):
        self._handlers: dict[Union[TeamEventType, str], list[Handler]] = {}
        self._pending: set[asyncio.Task] = set()
        self._enabled = True

    def subscribe(self, event_type: Union[TeamEventType, str], handler: Handler):
        """Subscribe a handler to an event type, or to "*" for all events."""
        if event_type not in self._handlers:
            self._handlers[event_type] = []
        self._handlers[event_type].append(handler)
        log.debug("event_handler_subscribed", event_type=str(event_type))

    def unsubscribe(self, event_type: Union[TeamEventType, str], handler: Handler):
        """Unsubscribe a handler from an event type."""
        if event_type in self._handlers:
            try:
                self._handlers[event_type].remove(handler)
                log.debug("event_handler_unsubscribed", event_type=str(event_type))
            except ValueError:
                pass

    def publish(self, event: TeamEvent) -> None:
        """Deliver an event to every matching handler."""
        if not self._enabled:
            return

        handlers = self._handlers.get(event.type, []) + self._handlers.get(
            ALL_EVENTS, []
        )
        log.debug(
            "event_published",
            event_type=event.type.value,
            team_id=event.team_id,
            version=event.version,
            handlers=len(handlers),
        )

        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    self._schedule(result, event)
            except Exception as e:
                log.error(
                    "event_handler_failed",
                    event_type=event.type.value,
                    team_id=event.team_id,
                    error=str(e),
                )

    def _schedule(self, awaitable, event: TeamEvent) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)

        def _done(t: asyncio.Task):
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                log.error(
                    "event_handler_failed",
                    event_type=event.type.value,
                    team_id=event.team_id,
                    error=str(t.exception()),
                )

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait for scheduled coroutine handlers to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def clear(self):
        """Clear all handlers."""
        self._handlers.clear()

    def disable(self):
        """Disable event publication."""
        self._enabled = False

    def enable(self):
        """Enable event publication."""
        self._enabled = True


class RecordingSink:
    """Sink that keeps every published event in memory.

    Useful as an audit trail in tests.
    """

    def __init__(self):
        self.events: list[TeamEvent] = []

    def publish(self, event: TeamEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: TeamEventType) -> list[TeamEvent]:
        return [e for e in self.events if e.type == event_type]
