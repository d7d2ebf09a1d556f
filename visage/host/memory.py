"""
In-memory host - Store and scene kept in process memory.

Used by tests, the CLI and the API when no data directory is configured.
Everything handed in or out is copied, so callers can never alias stored
state.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any
from copy import deepcopy
import time

from ..automation.conditions import ActionRecord, EntityConditionState, SceneConditions
from ..automation.notifications import Notification, NotificationBus
from ..definitions.definition import VisageDefinition
from ..engine_core.state import LiveFields, OverrideState, VisualState


class MemoryStore:
    """OverrideStore backed by dictionaries of serialized records."""

    def __init__(self):
        self._states: dict[str, dict[str, Any]] = {}
        self._definitions: dict[str, dict[str, Any]] = {}

    async def load_override_state(self, entity_id: str) -> OverrideState:
        return OverrideState.from_dict(self._states.get(entity_id))

    async def save_override_state(self, entity_id: str, state: OverrideState) -> None:
        if state.is_empty:
            self._states.pop(entity_id, None)
        else:
            self._states[entity_id] = state.to_dict()

    async def load_definition(self, definition_id: str) -> VisageDefinition | None:
        data = self._definitions.get(definition_id)
        return VisageDefinition.from_dict(data) if data is not None else None

    async def save_definition(self, definition: VisageDefinition) -> None:
        self._definitions[definition.id] = definition.to_dict()

    async def delete_definition(self, definition_id: str) -> bool:
        return self._definitions.pop(definition_id, None) is not None

    async def list_definitions(self) -> list[VisageDefinition]:
        return [VisageDefinition.from_dict(d) for d in self._definitions.values()]

    def has_state(self, entity_id: str) -> bool:
        return entity_id in self._states


@dataclass
class SceneEntity:
    """One entity of the in-memory scene."""
    entity_id: str
    owner_id: str
    fields: VisualState
    condition: EntityConditionState


@dataclass
class MemoryScene:
    """
    EntityAccessor + ConditionSource for an in-memory scene.

    Mutators publish the matching notification on ``bus`` (when one is
    attached). Writing visual fields does not publish anything.
    """
    bus: NotificationBus | None = None
    scene: SceneConditions = field(default_factory=SceneConditions)
    _entities: dict[str, SceneEntity] = field(default_factory=dict)

    # -- EntityAccessor --

    async def read_live_fields(self, entity_id: str) -> LiveFields | None:
        entity = self._entities.get(entity_id)
        return entity.fields.clone() if entity else None

    async def write_fields(self, entity_id: str, fields: LiveFields) -> None:
        entity = self._entities.get(entity_id)
        if entity is not None:
            entity.fields = fields.clone()

    async def list_entities(self) -> list[str]:
        return list(self._entities)

    async def owner_of(self, entity_id: str) -> str | None:
        entity = self._entities.get(entity_id)
        return entity.owner_id if entity else None

    # -- ConditionSource --

    async def read_condition_state(self, entity_id: str) -> EntityConditionState | None:
        entity = self._entities.get(entity_id)
        return deepcopy(entity.condition) if entity else None

    async def read_scene_conditions(self) -> SceneConditions:
        return deepcopy(self.scene)

    # -- Scene mutation --

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._entities

    async def add_entity(
        self,
        entity_id: str,
        fields: VisualState | dict[str, Any] | None = None,
        owner_id: str | None = None,
        attributes: dict[str, Any] | None = None,
        statuses: set[str] | None = None,
    ) -> SceneEntity:
        if isinstance(fields, dict):
            fields = VisualState.from_dict(fields)
        entity = SceneEntity(
            entity_id=entity_id,
            owner_id=owner_id or entity_id,
            fields=fields.clone() if fields is not None else VisualState(),
            condition=EntityConditionState(
                entity_id=entity_id,
                attributes=deepcopy(attributes or {}),
                statuses=set(statuses or ()),
            ),
        )
        self._entities[entity_id] = entity
        await self._publish(Notification.entity_created(entity_id))
        return entity

    async def remove_entity(self, entity_id: str):
        if self._entities.pop(entity_id, None) is not None:
            await self._publish(Notification.entity_deleted(entity_id))

    async def set_attribute(self, entity_id: str, path: str, value: Any):
        entity = self._require(entity_id)
        target = entity.condition.attributes
        parts = path.split(".")
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        target[parts[-1]] = value
        await self._publish(Notification.attribute_changed(entity_id, path, value))

    async def add_status(self, entity_id: str, status_id: str):
        self._require(entity_id).condition.statuses.add(status_id)
        await self._publish(Notification.status_added(entity_id, status_id))

    async def remove_status(self, entity_id: str, status_id: str):
        self._require(entity_id).condition.statuses.discard(status_id)
        await self._publish(Notification.status_removed(entity_id, status_id))

    async def set_flag(self, entity_id: str, event_id: str, active: bool):
        self._require(entity_id).condition.flags[event_id] = active
        await self._publish(Notification.event_changed(entity_id, event_id, active))

    async def set_value(self, entity_id: str, name: str, value: float):
        self._require(entity_id).condition.values[name] = value
        await self._publish(Notification.event_changed(entity_id, name, value))

    async def enter_region(self, entity_id: str, region_id: str):
        self._require(entity_id).condition.regions.add(region_id)
        await self._publish(Notification.event_changed(entity_id, "region", region_id))

    async def leave_region(self, entity_id: str, region_id: str):
        self._require(entity_id).condition.regions.discard(region_id)
        await self._publish(Notification.event_changed(entity_id, "region", region_id))

    async def record_action(
        self,
        entity_id: str,
        action_type: str,
        outcome: str,
        timestamp: float | None = None,
    ):
        record = ActionRecord(action_type, outcome, timestamp if timestamp is not None else time.time())
        self._require(entity_id).condition.actions.append(record)
        await self._publish(Notification.action_recorded(entity_id, action_type, outcome))

    async def set_scene(self, **changes: Any):
        for key, value in changes.items():
            if not hasattr(self.scene, key):
                raise AttributeError(f"Unknown scene condition: {key}")
            setattr(self.scene, key, value)
        await self._publish(Notification.scene_changed(**changes))

    def _require(self, entity_id: str) -> SceneEntity:
        entity = self._entities.get(entity_id)
        if entity is None:
            raise KeyError(f"Entity {entity_id} not in scene")
        return entity

    async def _publish(self, notification: Notification):
        if self.bus is not None:
            await self.bus.publish(notification)
