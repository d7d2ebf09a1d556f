"""
Host Protocols - What the engine needs from its surroundings.

The engine never talks to a concrete host. It consumes:
- OverrideStore: durable override state and definitions
- EntityAccessor: live visual fields of entities
- ConditionSource: the readings automation conditions are evaluated against

Implementations raise PersistenceFailure for I/O problems and return None
(never raise) for things that do not exist.
"""

from __future__ import annotations
from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from ..automation.conditions import EntityConditionState, SceneConditions
    from ..definitions.definition import VisageDefinition
    from ..engine_core.state import LiveFields, OverrideState


class OverrideStore(Protocol):
    """Atomic read/replace storage for override state and definitions."""

    async def load_override_state(self, entity_id: str) -> OverrideState: ...

    async def save_override_state(self, entity_id: str, state: OverrideState) -> None: ...

    async def load_definition(self, definition_id: str) -> VisageDefinition | None: ...

    async def save_definition(self, definition: VisageDefinition) -> None: ...

    async def delete_definition(self, definition_id: str) -> bool: ...

    async def list_definitions(self) -> list[VisageDefinition]: ...


class EntityAccessor(Protocol):
    """Live visual fields of scene entities."""

    async def read_live_fields(self, entity_id: str) -> LiveFields | None: ...

    async def write_fields(self, entity_id: str, fields: LiveFields) -> None: ...

    async def list_entities(self) -> list[str]: ...

    async def owner_of(self, entity_id: str) -> str | None: ...


class ConditionSource(Protocol):
    """Readings used by automation conditions."""

    async def read_condition_state(self, entity_id: str) -> EntityConditionState | None: ...

    async def read_scene_conditions(self) -> SceneConditions: ...
