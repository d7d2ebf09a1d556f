"""
Override State - Snapshots, layers and the per-entity override stack.

Design principles:
- Copy-friendly: helpers return new objects, callers never mutate a
  stored snapshot in place
- Serializable: every type round-trips through plain dictionaries so any
  store can persist it
- Value semantics: a Layer holds its own copy of the definition's
  changeset, later edits to the definition do not leak into it
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any
from copy import deepcopy

from .changeset import Changeset, Disposition, RingConfig


class LayerMode(Enum):
    """How a layer combines with the rest of the stack."""
    IDENTITY = "identity"  # Exclusive: replaces the entity's current form
    OVERLAY = "overlay"  # Additive: stacks alongside everything else

    @classmethod
    def parse(cls, value: Any, default: LayerMode | None = None) -> LayerMode:
        if isinstance(value, LayerMode):
            return value
        if value is None:
            if default is None:
                raise ValueError("Layer mode is required")
            return default
        return cls(str(value).lower())


@dataclass
class TextureState:
    """Texture source with signed scales (negative means mirrored)."""
    src: str | None = None
    scale_x: float = 1.0
    scale_y: float = 1.0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> TextureState:
        data = data or {}
        scale_x = data.get("scaleX", data.get("scale_x"))
        scale_y = data.get("scaleY", data.get("scale_y"))
        return cls(
            src=data.get("src"),
            scale_x=1.0 if scale_x is None else float(scale_x),
            scale_y=1.0 if scale_y is None else float(scale_y),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"src": self.src, "scaleX": self.scale_x, "scaleY": self.scale_y}


@dataclass
class VisualState:
    """
    The set of entity fields the engine manages.

    Used for three things with the same shape:
    - LiveFields: what the entity currently shows
    - BaseSnapshot: the entity captured before the first override
    - ResolvedState: the result of folding a stack onto a base
    """
    display_name: str | None = None
    disposition: Disposition = Disposition.NEUTRAL
    texture: TextureState = field(default_factory=TextureState)
    width: float | None = None
    height: float | None = None
    ring: RingConfig | None = None

    def clone(self) -> VisualState:
        """Deep copy the state."""
        return deepcopy(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> VisualState:
        data = data or {}
        disposition = data.get("disposition")
        return cls(
            display_name=data.get("display_name", data.get("name")),
            disposition=Disposition.NEUTRAL if disposition is None else Disposition.parse(disposition),
            texture=TextureState.from_dict(data.get("texture")),
            width=data.get("width"),
            height=data.get("height"),
            ring=RingConfig.from_dict(data.get("ring")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "display_name": self.display_name,
            "disposition": self.disposition.value,
            "texture": self.texture.to_dict(),
            "width": self.width,
            "height": self.height,
            "ring": self.ring.to_dict() if self.ring is not None else None,
        }

    def with_edits(self, edits: dict[str, Any]) -> VisualState:
        """
        Return a new state with operator edits merged in.

        ``edits`` uses the same keys as ``from_dict``; nested texture keys
        are merged individually, everything else is replaced.
        """
        result = self.clone()
        if "display_name" in edits or "name" in edits:
            result.display_name = edits.get("display_name", edits.get("name"))
        if edits.get("disposition") is not None:
            result.disposition = Disposition.parse(edits["disposition"])
        if "width" in edits:
            result.width = edits["width"]
        if "height" in edits:
            result.height = edits["height"]
        if "ring" in edits:
            result.ring = RingConfig.from_dict(edits["ring"])

        texture = edits.get("texture") or {}
        if "src" in texture:
            result.texture.src = texture["src"]
        for key, attr in (("scaleX", "scale_x"), ("scale_x", "scale_x"),
                          ("scaleY", "scale_y"), ("scale_y", "scale_y")):
            if texture.get(key) is not None:
                setattr(result.texture, attr, float(texture[key]))
        return result


# Aliases naming the role a VisualState plays
LiveFields = VisualState
BaseSnapshot = VisualState
ResolvedState = VisualState


@dataclass
class Layer:
    """
    A visage definition instantiated onto one entity's stack.

    Position is the layer's index in ``OverrideState.stack`` (bottom first).
    """
    definition_id: str
    changeset: Changeset = field(default_factory=Changeset)
    mode: LayerMode = LayerMode.OVERLAY
    label: str = ""
    disabled: bool = False

    @property
    def is_identity(self) -> bool:
        return self.mode == LayerMode.IDENTITY

    def copy(self) -> Layer:
        return replace(self, changeset=self.changeset.copy())

    def with_disabled(self, disabled: bool) -> Layer:
        return replace(self, changeset=self.changeset.copy(), disabled=disabled)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Layer:
        definition_id = data.get("definition_id", data.get("id"))
        if not definition_id:
            raise ValueError("Layer missing 'definition_id'")
        return cls(
            definition_id=definition_id,
            changeset=Changeset.from_dict(data.get("changeset", data.get("changes"))),
            mode=LayerMode.parse(data.get("mode"), default=LayerMode.OVERLAY),
            label=data.get("label") or "",
            disabled=bool(data.get("disabled", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "definition_id": self.definition_id,
            "label": self.label,
            "mode": self.mode.value,
            "disabled": self.disabled,
            "changeset": self.changeset.to_dict(),
        }


@dataclass
class OverrideState:
    """
    Persistent override state of one entity.

    Invariants (after every successful compose):
    - stack empty <=> base_snapshot is None
    - at most one identity-mode layer in the stack
    """
    base_snapshot: BaseSnapshot | None = None
    stack: list[Layer] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.stack and self.base_snapshot is None

    @property
    def identity_id(self) -> str | None:
        """Definition id of the identity layer, if one is on the stack."""
        for layer in self.stack:
            if layer.is_identity:
                return layer.definition_id
        return None

    def find(self, definition_id: str) -> Layer | None:
        for layer in self.stack:
            if layer.definition_id == definition_id:
                return layer
        return None

    def layer_ids(self) -> list[str]:
        return [layer.definition_id for layer in self.stack]

    def clone(self) -> OverrideState:
        return deepcopy(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> OverrideState:
        data = data or {}
        base = data.get("base_snapshot")
        return cls(
            base_snapshot=VisualState.from_dict(base) if base is not None else None,
            stack=[Layer.from_dict(d) for d in data.get("stack", [])],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_snapshot": self.base_snapshot.to_dict() if self.base_snapshot else None,
            "stack": [layer.to_dict() for layer in self.stack],
        }
