"""
Definition Library - Catalogue of local and global visage definitions.

The library:
- Saves definitions through the OverrideStore (scrubbed and validated)
- Resolves a definition for an owner (local definitions win over global)
- Keeps soft-deleted definitions in a bin until restored or collected
- Announces every change on the notification bus so automation can
  rebuild its registry
"""

from __future__ import annotations
from dataclasses import replace
from copy import deepcopy
from typing import Any, TYPE_CHECKING
import logging
import time
import uuid

from ..automation.notifications import Notification
from ..engine_core.errors import DefinitionValidationError, NotFound
from .definition import DefinitionScope, VisageDefinition
from .validation import validate_definition

if TYPE_CHECKING:
    from ..automation.notifications import NotificationBus
    from ..host.protocols import OverrideStore

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30


def scrub_payload(obj: dict[str, Any]) -> dict[str, Any]:
    """
    Recursively drop nulls, empty lists and empty dicts in place.

    A disabled automation block with no conditions is removed entirely; a
    disabled block that still has conditions is kept so the user's work is
    not lost.
    """
    automation = obj.get("automation")
    if isinstance(automation, dict):
        enabled = automation.get("enabled")
        if enabled is False or enabled == "false":
            if not automation.get("conditions"):
                del obj["automation"]

    for key in list(obj):
        value = obj[key]
        if value is None:
            del obj[key]
        elif isinstance(value, list):
            if not value:
                del obj[key]
        elif isinstance(value, dict):
            scrub_payload(value)
            if not value:
                del obj[key]
    return obj


def new_definition_id() -> str:
    return uuid.uuid4().hex[:16]


class DefinitionLibrary:
    """
    Usage:
        library = DefinitionLibrary(store, bus)
        wolf = await library.save({"label": "Wolf", "changes": {...}}, owner_id="actor-1")
        definition = await library.get(wolf.id, owner_id="actor-1")
    """

    def __init__(
        self,
        store: OverrideStore,
        bus: NotificationBus | None = None,
        retention_days: float = DEFAULT_RETENTION_DAYS,
        clock=time.time,
    ):
        self.store = store
        self.bus = bus
        self.retention_seconds = retention_days * 24 * 60 * 60
        self._clock = clock

    # -- Queries --

    async def get(self, definition_id: str, owner_id: str | None = None) -> VisageDefinition | None:
        """Resolve a definition the owner may use. Deleted definitions are never returned."""
        definition = await self.store.load_definition(definition_id)
        if definition is None or not definition.visible_to(owner_id):
            return None
        return definition

    async def list(
        self,
        owner_id: str | None = None,
        include_deleted: bool = False,
    ) -> list[VisageDefinition]:
        """Definitions visible to ``owner_id`` (all global ones plus its local ones)."""
        result = []
        for definition in await self.store.list_definitions():
            if definition.deleted and not include_deleted:
                continue
            if definition.is_local and definition.owner_id != owner_id:
                continue
            result.append(definition)
        return sorted(result, key=lambda d: (d.scope != DefinitionScope.LOCAL, d.label.lower()))

    async def available_for(self, owner_id: str | None) -> list[VisageDefinition]:
        return await self.list(owner_id)

    async def automated_for(self, owner_id: str | None) -> list[VisageDefinition]:
        """Local automated definitions of the owner followed by global ones."""
        return [d for d in await self.list(owner_id) if d.has_automation]

    async def bin(self) -> list[VisageDefinition]:
        return [d for d in await self.store.list_definitions() if d.deleted]

    # -- Persistence --

    async def save(
        self,
        payload: dict[str, Any] | VisageDefinition,
        owner_id: str | None = None,
    ) -> VisageDefinition:
        """
        Create or update a definition.

        ``owner_id`` makes the definition local to that owner; without it
        the definition is global.

        Raises:
            DefinitionValidationError: If the definition is invalid, or its id is
                taken by a definition of another scope or owner
        """
        owner_id = owner_id or None
        data = payload.to_dict() if isinstance(payload, VisageDefinition) else deepcopy(payload)
        data = scrub_payload(data)

        definition_id = data.get("id") or new_definition_id()
        existing = await self.store.load_definition(definition_id)
        if existing is not None and existing.owner_id != owner_id:
            raise DefinitionValidationError(
                [f"Definition {definition_id} already exists with a different scope or owner"]
            )
        now = self._clock()

        data["id"] = definition_id
        data["scope"] = DefinitionScope.LOCAL.value if owner_id else DefinitionScope.GLOBAL.value
        data["owner_id"] = owner_id
        data.setdefault("label", "New Mask")
        data["created"] = existing.created if existing else now
        data["updated"] = now
        data["deleted"] = False
        data["deleted_at"] = None

        try:
            definition = VisageDefinition.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise DefinitionValidationError([str(e)]) from e

        result = validate_definition(definition)
        if not result.valid:
            raise DefinitionValidationError(result.errors)
        for warning in result.warnings:
            logger.info("Definition %s: %s", definition_id, warning)

        automation_disabled = bool(
            existing and existing.has_automation and not definition.has_automation
        )

        await self.store.save_definition(definition)
        logger.info("Saved %s definition %s (%s)", definition.scope.value, definition.label, definition_id)
        await self._announce(definition, automation_disabled)
        return definition

    async def delete(self, definition_id: str) -> VisageDefinition:
        """Soft-delete into the bin."""
        definition = await self._require(definition_id)
        updated = replace(definition, deleted=True, deleted_at=self._clock(), updated=self._clock())
        await self.store.save_definition(updated)
        await self._announce(updated, automation_disabled=definition.has_automation)
        return updated

    async def restore(self, definition_id: str) -> VisageDefinition:
        """Take a definition back out of the bin."""
        definition = await self._require(definition_id)
        updated = replace(definition, deleted=False, deleted_at=None, updated=self._clock())
        await self.store.save_definition(updated)
        await self._announce(updated)
        return updated

    async def destroy(self, definition_id: str) -> bool:
        """Permanently remove a definition."""
        definition = await self.store.load_definition(definition_id)
        removed = await self.store.delete_definition(definition_id)
        if removed and definition is not None:
            await self._announce(definition, automation_disabled=definition.has_automation)
        return removed

    async def promote(self, owner_id: str, definition_id: str) -> VisageDefinition:
        """Copy a local definition into the global library under a new id."""
        source = await self.get(definition_id, owner_id)
        if source is None or not source.is_local:
            raise NotFound("definition", definition_id)

        payload = {
            "label": source.label,
            "category": source.category,
            "tags": list(source.tags),
            "mode": source.mode.value,
            "changeset": source.changeset.to_dict(),
            "automation": source.automation.to_dict() if source.automation else None,
        }
        return await self.save(payload)

    async def run_garbage_collection(self) -> list[str]:
        """Destroy binned definitions older than the retention period."""
        now = self._clock()
        removed = []
        for definition in await self.bin():
            if definition.deleted_at and now - definition.deleted_at > self.retention_seconds:
                if await self.store.delete_definition(definition.id):
                    removed.append(definition.id)
        if removed:
            logger.info("Garbage collected %d definition(s)", len(removed))
        return removed

    async def _require(self, definition_id: str) -> VisageDefinition:
        definition = await self.store.load_definition(definition_id)
        if definition is None:
            raise NotFound("definition", definition_id)
        return definition

    async def _announce(self, definition: VisageDefinition, automation_disabled: bool = False):
        if self.bus is not None:
            await self.bus.publish(Notification.definition_changed(
                definition.id,
                automation_disabled=automation_disabled,
                owner_id=definition.owner_id,
            ))
