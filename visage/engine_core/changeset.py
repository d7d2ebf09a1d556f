"""
Changeset - Sparse, partial description of an entity's visual properties.

Every field is optional. ``None`` means "inherit from below"; any other
value (including ``0``, ``False`` and ``""``) is an explicit override.

Scale magnitude and orientation are stored as separate fields so one layer
can change only the size and another only the facing without clobbering
each other.

Two input shapes are accepted by ``Changeset.from_dict``:
- flat:   {"image_ref": ..., "scale_magnitude": 1.5, "flip_x": True}
- host:   {"texture": {"src": ..., "scaleX": -1.5}, "scale": 1.5,
           "mirrorX": True, "name": ...}
"""

from __future__ import annotations
from dataclasses import dataclass, fields, replace
from enum import Enum, Flag
from typing import Any
import math

from .errors import ValidationFailure


class Disposition(Enum):
    """Categorical attitude of an entity towards the players."""
    SECRET = -2
    HOSTILE = -1
    NEUTRAL = 0
    FRIENDLY = 1

    @classmethod
    def parse(cls, value: Any) -> Disposition:
        """Accept an enum member, its integer value or its (case-insensitive) name."""
        if isinstance(value, Disposition):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Invalid disposition: {value!r}")
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            text = value.strip()
            try:
                return cls[text.upper()]
            except KeyError:
                pass
            try:
                return cls(int(text))
            except ValueError:
                pass
        raise ValueError(f"Invalid disposition: {value!r}")


class RingEffect(Flag):
    """Dynamic ring effects. Values match the host's integer bitmask."""
    NONE = 0
    PULSE = 2
    GRADIENT = 4
    WAVE = 8
    INVISIBILITY = 16

    @classmethod
    def from_bitmask(cls, mask: int | None) -> RingEffect:
        """Build a flag set from a raw bitmask, ignoring unknown bits."""
        result = cls.NONE
        for member in (cls.PULSE, cls.GRADIENT, cls.WAVE, cls.INVISIBILITY):
            if mask and int(mask) & member.value:
                result |= member
        return result

    @property
    def bitmask(self) -> int:
        return self.value


@dataclass
class RingConfig:
    """
    Dynamic ring/halo descriptor.

    A ring is atomic: when an enabled ring appears in a changeset it
    replaces the accumulated ring wholesale.
    """
    enabled: bool = False
    ring_color: str | None = None
    background_color: str | None = None
    effects: RingEffect = RingEffect.NONE
    subject_texture: str | None = None
    subject_scale: float | None = None

    @property
    def has_pulse(self) -> bool:
        return bool(self.effects & RingEffect.PULSE)

    @property
    def has_gradient(self) -> bool:
        return bool(self.effects & RingEffect.GRADIENT)

    @property
    def has_wave(self) -> bool:
        return bool(self.effects & RingEffect.WAVE)

    @property
    def has_invisibility(self) -> bool:
        return bool(self.effects & RingEffect.INVISIBILITY)

    def normalized(self) -> RingConfig:
        """A disabled ring carries no settings."""
        if not self.enabled:
            return RingConfig(enabled=False)
        return replace(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | RingConfig | None) -> RingConfig | None:
        if data is None:
            return None
        if isinstance(data, RingConfig):
            return replace(data)
        colors = data.get("colors") or {}
        subject = data.get("subject") or {}
        effects = data.get("effects", 0)
        if isinstance(effects, (list, tuple)):
            flag = RingEffect.NONE
            for name in effects:
                flag |= RingEffect[str(name).upper()]
            effects = flag
        elif not isinstance(effects, RingEffect):
            effects = RingEffect.from_bitmask(effects)
        return cls(
            enabled=bool(data.get("enabled", False)),
            ring_color=colors.get("ring"),
            background_color=colors.get("background"),
            effects=effects,
            subject_texture=subject.get("texture"),
            subject_scale=subject.get("scale"),
        )

    def to_dict(self) -> dict[str, Any]:
        if not self.enabled:
            return {"enabled": False}
        result: dict[str, Any] = {"enabled": True, "effects": self.effects.bitmask}
        colors = {
            k: v for k, v in (("ring", self.ring_color), ("background", self.background_color))
            if v is not None
        }
        if colors:
            result["colors"] = colors
        subject = {
            k: v for k, v in (("texture", self.subject_texture), ("scale", self.subject_scale))
            if v is not None
        }
        if subject:
            result["subject"] = subject
        return result


@dataclass
class Changeset:
    """
    Sparse override of visual fields.

    Values are kept as given by ``from_dict``; ``validated()`` coerces them
    and drops (and reports) fields that cannot be used.
    """
    image_ref: str | None = None
    scale_magnitude: float | None = None
    flip_x: bool | None = None
    flip_y: bool | None = None
    width: float | None = None
    height: float | None = None
    disposition: Disposition | None = None
    display_name: str | None = None
    ring: RingConfig | None = None

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    @property
    def present_fields(self) -> list[str]:
        """Names of the fields this changeset overrides."""
        return [f.name for f in fields(self) if getattr(self, f.name) is not None]

    def copy(self) -> Changeset:
        ring = self.ring
        if isinstance(ring, (dict, RingConfig)):
            ring = RingConfig.from_dict(ring)
        return replace(self, ring=ring)

    def merged_over(self, below: Changeset) -> Changeset:
        """Return a changeset where this changeset's present fields win over ``below``."""
        merged = below.copy()
        for name in self.present_fields:
            value = getattr(self, name)
            if isinstance(value, (dict, RingConfig)):
                value = RingConfig.from_dict(value)
            setattr(merged, name, value)
        return merged

    def validated(self) -> tuple[Changeset, list[ValidationFailure]]:
        """
        Coerce every present field, dropping the ones that fail.

        Returns (clean changeset, failures). A failure never affects the
        other fields.
        """
        clean = Changeset()
        failures: list[ValidationFailure] = []

        for name in self.present_fields:
            validator = _FIELD_VALIDATORS[name]
            try:
                setattr(clean, name, validator(getattr(self, name)))
            except (TypeError, ValueError, KeyError) as e:
                failures.append(ValidationFailure(name, str(e)))

        return clean, failures

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Changeset:
        """Parse either the flat or the host-shaped changeset dictionary."""
        if not data:
            return cls()

        texture = data.get("texture") or {}
        changeset = cls(
            image_ref=_first_present(data.get("image_ref"), data.get("img"), texture.get("src")),
            scale_magnitude=_first_present(data.get("scale_magnitude"), data.get("scale")),
            flip_x=_first_present(data.get("flip_x"), data.get("mirrorX")),
            flip_y=_first_present(data.get("flip_y"), data.get("mirrorY")),
            width=data.get("width"),
            height=data.get("height"),
            disposition=data.get("disposition"),
            display_name=_first_present(data.get("display_name"), data.get("name")),
            ring=data.get("ring"),
        )

        # A signed host scale decomposes into magnitude + orientation
        signed_x = texture.get("scaleX")
        signed_y = texture.get("scaleY")
        if changeset.scale_magnitude is None and _is_number(signed_x):
            changeset.scale_magnitude = abs(signed_x)
        if changeset.flip_x is None and _is_number(signed_x):
            changeset.flip_x = signed_x < 0
        if changeset.flip_y is None and _is_number(signed_y):
            changeset.flip_y = signed_y < 0

        if isinstance(changeset.ring, dict):
            changeset.ring = RingConfig.from_dict(changeset.ring)
        return changeset

    def to_dict(self) -> dict[str, Any]:
        """Flat dictionary of the present fields."""
        result: dict[str, Any] = {}
        for name in self.present_fields:
            value = getattr(self, name)
            if isinstance(value, RingConfig):
                value = value.to_dict()
            elif isinstance(value, Disposition):
                value = value.value
            result[name] = value
        return result


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate_image_ref(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"image reference must be a string, got {type(value).__name__}")
    if not value.strip():
        raise ValueError("image reference is empty")
    return value


def _validate_positive(value: Any) -> float:
    if not _is_number(value):
        raise TypeError(f"expected a number, got {value!r}")
    number = float(value)
    if not math.isfinite(number) or number <= 0:
        raise ValueError(f"must be positive, got {value!r}")
    return number


def _validate_flag(value: Any) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"expected a boolean, got {value!r}")
    return value


def _validate_name(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"expected a string, got {value!r}")
    return value


def _validate_ring(value: Any) -> RingConfig:
    if isinstance(value, RingConfig):
        return value.normalized()
    if isinstance(value, dict):
        return RingConfig.from_dict(value).normalized()
    raise TypeError(f"expected a ring descriptor, got {value!r}")


_FIELD_VALIDATORS = {
    "image_ref": _validate_image_ref,
    "scale_magnitude": _validate_positive,
    "flip_x": _validate_flag,
    "flip_y": _validate_flag,
    "width": _validate_positive,
    "height": _validate_positive,
    "disposition": Disposition.parse,
    "display_name": _validate_name,
    "ring": _validate_ring,
}
