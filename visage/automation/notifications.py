"""
Notifications - State-change messages and the bus that delivers them.

Subscribers register explicitly and get a Subscription handle back;
cancelling the handle stops delivery. Nothing is registered globally.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable
import logging
import time

logger = logging.getLogger(__name__)


class NotificationKind(Enum):
    """Kinds of state changes the engine reacts to."""
    ATTRIBUTE_CHANGED = "attribute_changed"
    STATUS_ADDED = "status_added"
    STATUS_REMOVED = "status_removed"
    ENTITY_CREATED = "entity_created"
    ENTITY_DELETED = "entity_deleted"
    EVENT_CHANGED = "event_changed"  # combat, targeted, elevation, region
    ACTION_RECORDED = "action_recorded"
    SCENE_CHANGED = "scene_changed"  # lighting, darkness, combat start/end
    DEFINITION_CHANGED = "definition_changed"


# Notifications that change which entities/definitions are watched
POPULATION_KINDS = frozenset({
    NotificationKind.ENTITY_CREATED,
    NotificationKind.ENTITY_DELETED,
    NotificationKind.DEFINITION_CHANGED,
})


@dataclass(frozen=True)
class Notification:
    """
    A single state change.

    ``entity_id`` is None for scene-wide changes and definition changes.
    """
    kind: NotificationKind
    entity_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def attribute_changed(cls, entity_id: str, path: str, value: Any) -> Notification:
        return cls(NotificationKind.ATTRIBUTE_CHANGED, entity_id, {"path": path, "value": value})

    @classmethod
    def status_added(cls, entity_id: str, status_id: str) -> Notification:
        return cls(NotificationKind.STATUS_ADDED, entity_id, {"status_id": status_id})

    @classmethod
    def status_removed(cls, entity_id: str, status_id: str) -> Notification:
        return cls(NotificationKind.STATUS_REMOVED, entity_id, {"status_id": status_id})

    @classmethod
    def entity_created(cls, entity_id: str) -> Notification:
        return cls(NotificationKind.ENTITY_CREATED, entity_id)

    @classmethod
    def entity_deleted(cls, entity_id: str) -> Notification:
        return cls(NotificationKind.ENTITY_DELETED, entity_id)

    @classmethod
    def event_changed(cls, entity_id: str, event_id: str, value: Any) -> Notification:
        return cls(NotificationKind.EVENT_CHANGED, entity_id, {"event_id": event_id, "value": value})

    @classmethod
    def action_recorded(cls, entity_id: str, action_type: str, outcome: str) -> Notification:
        return cls(
            NotificationKind.ACTION_RECORDED,
            entity_id,
            {"action_type": action_type, "outcome": outcome},
        )

    @classmethod
    def scene_changed(cls, **changes: Any) -> Notification:
        return cls(NotificationKind.SCENE_CHANGED, None, dict(changes))

    @classmethod
    def definition_changed(
        cls,
        definition_id: str,
        automation_disabled: bool = False,
        owner_id: str | None = None,
    ) -> Notification:
        return cls(
            NotificationKind.DEFINITION_CHANGED,
            None,
            {
                "definition_id": definition_id,
                "automation_disabled": automation_disabled,
                "owner_id": owner_id,
            },
        )


Handler = Callable[[Notification], Awaitable[None]]


class Subscription:
    """Handle returned by NotificationBus.subscribe()."""

    def __init__(self, bus: NotificationBus, handler: Handler, kinds: frozenset[NotificationKind] | None):
        self._bus = bus
        self.handler = handler
        self.kinds = kinds
        self.active = True

    def matches(self, notification: Notification) -> bool:
        return self.active and (self.kinds is None or notification.kind in self.kinds)

    def cancel(self):
        """Stop delivery. Safe to call more than once."""
        if self.active:
            self.active = False
            self._bus._discard(self)


class NotificationBus:
    """
    In-process notification bus.

    Handlers run one after another in subscription order. A failing handler
    is logged and does not prevent delivery to the others.
    """

    def __init__(self):
        self._subscriptions: list[Subscription] = []

    def subscribe(
        self,
        handler: Handler,
        kinds: Iterable[NotificationKind] | None = None,
    ) -> Subscription:
        subscription = Subscription(self, handler, frozenset(kinds) if kinds is not None else None)
        self._subscriptions.append(subscription)
        return subscription

    async def publish(self, notification: Notification):
        for subscription in list(self._subscriptions):
            if not subscription.matches(notification):
                continue
            try:
                await subscription.handler(notification)
            except Exception:
                logger.exception(
                    "Handler %r failed for %s", subscription.handler, notification.kind.value
                )

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _discard(self, subscription: Subscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
