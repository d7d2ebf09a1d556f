"""
Visage Definition - A stored, reusable override template.

A definition lives independently of any entity. Applying it to an entity
copies its changeset into a Layer on that entity's stack.

Scopes:
- LOCAL: owned by one owner (the actor behind one or more entities),
  defaults to identity mode
- GLOBAL: shared library entry available to every entity, defaults to
  overlay mode
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..engine_core.changeset import Changeset
from ..engine_core.state import Layer, LayerMode
from ..automation.rules import AutomationRule


class DefinitionScope(Enum):
    LOCAL = "local"
    GLOBAL = "global"


DEFAULT_MODES = {
    DefinitionScope.LOCAL: LayerMode.IDENTITY,
    DefinitionScope.GLOBAL: LayerMode.OVERLAY,
}


@dataclass
class VisageDefinition:
    """
    A named override: changeset + mode + optional automation.

    ``deleted`` definitions sit in the bin until restored or garbage
    collected; they are never applied.
    """
    id: str
    label: str
    mode: LayerMode = LayerMode.OVERLAY
    changeset: Changeset = field(default_factory=Changeset)
    automation: AutomationRule | None = None
    scope: DefinitionScope = DefinitionScope.GLOBAL
    owner_id: str | None = None  # Set for LOCAL definitions
    category: str = ""
    tags: list[str] = field(default_factory=list)

    # Bookkeeping (epoch seconds)
    created: float = 0.0
    updated: float = 0.0
    deleted: bool = False
    deleted_at: float | None = None

    @property
    def has_automation(self) -> bool:
        """True if this definition should be watched by the automation engine."""
        return self.automation is not None and self.automation.is_live

    @property
    def is_local(self) -> bool:
        return self.scope == DefinitionScope.LOCAL

    def visible_to(self, owner_id: str | None) -> bool:
        """Global definitions are visible to everyone, local ones only to their owner."""
        if self.deleted:
            return False
        return not self.is_local or self.owner_id == owner_id

    def to_layer(self) -> Layer:
        """Instantiate a layer holding a copy of this definition's changeset."""
        return Layer(
            definition_id=self.id,
            changeset=self.changeset.copy(),
            mode=self.mode,
            label=self.label,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VisageDefinition:
        """
        Create from stored/API format.

        Raises:
            ValueError: If the id is missing or a nested value is malformed
        """
        definition_id = data.get("id")
        if not definition_id:
            raise ValueError("Definition missing 'id'")

        scope = DefinitionScope(data.get("scope") or "global")
        automation = data.get("automation")
        return cls(
            id=definition_id,
            label=data.get("label") or "Unknown",
            mode=LayerMode.parse(data.get("mode"), default=DEFAULT_MODES[scope]),
            changeset=Changeset.from_dict(data.get("changeset", data.get("changes"))),
            automation=AutomationRule.from_dict(automation) if automation else None,
            scope=scope,
            owner_id=data.get("owner_id"),
            category=data.get("category") or "",
            tags=list(data.get("tags") or []),
            created=float(data.get("created") or 0.0),
            updated=float(data.get("updated") or 0.0),
            deleted=bool(data.get("deleted", False)),
            deleted_at=data.get("deleted_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "mode": self.mode.value,
            "changeset": self.changeset.to_dict(),
            "automation": self.automation.to_dict() if self.automation else None,
            "scope": self.scope.value,
            "owner_id": self.owner_id,
            "category": self.category,
            "tags": list(self.tags),
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "deleted_at": self.deleted_at,
        }
