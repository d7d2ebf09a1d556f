"""
Automation Rules - Typed models for automation triggers.

A rule belongs to a visage definition. It combines conditions with AND/OR
and names what to do when the combined result turns true (on_enter) and
when it turns false again (on_exit).

Condition Types:
- AttributeCondition: Compare a numeric value read by path
- StatusCondition: Presence of a status on the entity
- EventCondition: Scene/game events (combat, targeted, elevation, ...)
- ActionCondition: Outcome of the most recent matching game action
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class ConditionType(Enum):
    """Kinds of conditions a rule can hold."""
    ATTRIBUTE = "attribute"
    STATUS = "status"
    EVENT = "event"
    ACTION = "action"


class Logic(Enum):
    """How condition results are combined."""
    AND = "AND"
    OR = "OR"


class TriggerAction(Enum):
    """What a transition does with the rule's definition."""
    APPLY = "apply"
    REMOVE = "remove"


class ComparisonOperator(Enum):
    LTE = "lte"
    GTE = "gte"
    EQ = "eq"
    NEQ = "neq"


class AttributeMode(Enum):
    ABSOLUTE = "absolute"
    PERCENT = "percent"


class PresenceOperator(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class EventOperator(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    GT = "gt"
    LT = "lt"
    EQ = "eq"


@dataclass
class AttributeCondition:
    """
    Compare a value read from the entity's attributes.

    Examples:
        AttributeCondition(path="hp.value", operator=ComparisonOperator.LTE, value=0)
        AttributeCondition(path="hp.value", operator=ComparisonOperator.LTE,
                           value=25, mode=AttributeMode.PERCENT)
    """
    path: str
    operator: ComparisonOperator = ComparisonOperator.LTE
    value: float = 0
    mode: AttributeMode = AttributeMode.ABSOLUTE
    disabled: bool = False

    @property
    def condition_type(self) -> ConditionType:
        return ConditionType.ATTRIBUTE

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.condition_type.value,
            "path": self.path,
            "operator": self.operator.value,
            "value": self.value,
            "mode": self.mode.value,
            "disabled": self.disabled,
        }


@dataclass
class StatusCondition:
    """
    Require a status to be present (active) or absent (inactive).

    Examples:
        StatusCondition(status_id="invisible")
        StatusCondition(status_id="dead", operator=PresenceOperator.INACTIVE)
    """
    status_id: str
    operator: PresenceOperator = PresenceOperator.ACTIVE
    disabled: bool = False

    @property
    def condition_type(self) -> ConditionType:
        return ConditionType.STATUS

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.condition_type.value,
            "status_id": self.status_id,
            "operator": self.operator.value,
            "disabled": self.disabled,
        }


@dataclass
class EventCondition:
    """
    Scene or game event affecting the entity.

    Boolean events (combat, targeted, global_light, region, custom flags)
    use active/inactive. Numeric events (elevation, darkness) use gt/lt/eq
    against ``value``.

    Examples:
        EventCondition(event_id="combat")
        EventCondition(event_id="elevation", operator=EventOperator.GT, value=30)
        EventCondition(event_id="region", region_id="lava-pit")
    """
    event_id: str
    operator: EventOperator = EventOperator.ACTIVE
    value: float | None = None
    region_id: str | None = None
    disabled: bool = False

    @property
    def condition_type(self) -> ConditionType:
        return ConditionType.EVENT

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.condition_type.value,
            "event_id": self.event_id,
            "operator": self.operator.value,
            "value": self.value,
            "region_id": self.region_id,
            "disabled": self.disabled,
        }


@dataclass
class ActionCondition:
    """
    Match the most recent game action of a type.

    ``outcome`` of "any" matches every outcome. ``duration`` (seconds)
    limits how old the action may be; None means no limit.

    Examples:
        ActionCondition(action_type="attack", outcome="critical", duration=6)
    """
    action_type: str
    outcome: str = "any"
    duration: float | None = None
    disabled: bool = False

    @property
    def condition_type(self) -> ConditionType:
        return ConditionType.ACTION

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.condition_type.value,
            "action_type": self.action_type,
            "outcome": self.outcome,
            "duration": self.duration,
            "disabled": self.disabled,
        }


# Union type for all conditions
Condition = Union[AttributeCondition, StatusCondition, EventCondition, ActionCondition]


# camelCase ids written by hosts
_EVENT_ALIASES = {"globalLight": "global_light"}


def parse_condition(data: dict[str, Any]) -> Condition:
    """
    Parse a condition from a dictionary.

    Both snake_case and the host's camelCase keys are accepted
    (``status_id``/``statusId``, ``event_id``/``eventId``, ...).

    Raises:
        ValueError: If type is unknown or required fields are missing
    """
    condition_type = data.get("type")
    if not condition_type:
        raise ValueError("Condition missing 'type' field")

    try:
        ctype = ConditionType(condition_type)
    except ValueError:
        raise ValueError(f"Unknown condition type: {condition_type}")

    disabled = bool(data.get("disabled", False))

    if ctype == ConditionType.ATTRIBUTE:
        path = data.get("path")
        if not path:
            raise ValueError("Attribute condition missing 'path'")
        return AttributeCondition(
            path=path,
            operator=ComparisonOperator(data.get("operator", "lte")),
            value=_to_number(data.get("value", 0), "value"),
            mode=AttributeMode(data.get("mode") or "absolute"),
            disabled=disabled,
        )
    elif ctype == ConditionType.STATUS:
        status_id = data.get("status_id", data.get("statusId"))
        if not status_id:
            raise ValueError("Status condition missing 'status_id'")
        return StatusCondition(
            status_id=status_id,
            operator=PresenceOperator(data.get("operator", "active")),
            disabled=disabled,
        )
    elif ctype == ConditionType.EVENT:
        event_id = data.get("event_id", data.get("eventId"))
        if not event_id:
            raise ValueError("Event condition missing 'event_id'")
        event_id = _EVENT_ALIASES.get(event_id, event_id)
        value = data.get("value")
        return EventCondition(
            event_id=event_id,
            operator=EventOperator(data.get("operator", "active")),
            value=None if value in (None, "") else _to_number(value, "value"),
            region_id=data.get("region_id", data.get("regionId")),
            disabled=disabled,
        )
    elif ctype == ConditionType.ACTION:
        action_type = data.get("action_type", data.get("actionType"))
        if not action_type:
            raise ValueError("Action condition missing 'action_type'")
        duration = data.get("duration")
        return ActionCondition(
            action_type=action_type,
            outcome=data.get("outcome") or "any",
            duration=None if duration in (None, "") else _to_number(duration, "duration"),
            disabled=disabled,
        )
    else:
        raise ValueError(f"Unhandled condition type: {ctype}")


def parse_conditions(data: list[dict[str, Any]]) -> list[Condition]:
    """Parse a list of conditions from dictionaries."""
    return [parse_condition(d) for d in data]


def _to_number(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise ValueError(f"'{name}' must be numeric, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"'{name}' must be numeric, got {value!r}")


@dataclass
class Transition:
    """The action fired on one edge of the latch."""
    action: TriggerAction

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None, default: TriggerAction) -> Transition:
        if not data:
            return cls(action=default)
        return cls(action=TriggerAction(data.get("action", default.value)))

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action.value}


@dataclass
class AutomationRule:
    """
    Automation attached to a visage definition.

    The rule is evaluated per watched entity; see AutomationEvaluator for
    the latch semantics.
    """
    enabled: bool = False
    logic: Logic = Logic.AND
    conditions: list[Condition] = field(default_factory=list)
    on_enter: Transition = field(default_factory=lambda: Transition(TriggerAction.APPLY))
    on_exit: Transition = field(default_factory=lambda: Transition(TriggerAction.REMOVE))

    @property
    def active_conditions(self) -> list[Condition]:
        """Conditions that take part in evaluation."""
        return [c for c in self.conditions if not c.disabled]

    @property
    def is_live(self) -> bool:
        """True if the rule should be watched at all."""
        return self.enabled and len(self.conditions) > 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AutomationRule:
        """Create from stored/API format."""
        enabled = data.get("enabled", False)
        if isinstance(enabled, str):
            enabled = enabled.lower() == "true"
        return cls(
            enabled=bool(enabled),
            logic=Logic(str(data.get("logic", "AND")).upper()),
            conditions=parse_conditions(data.get("conditions") or []),
            on_enter=Transition.from_dict(
                data.get("on_enter", data.get("onEnter")), TriggerAction.APPLY
            ),
            on_exit=Transition.from_dict(
                data.get("on_exit", data.get("onExit")), TriggerAction.REMOVE
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "logic": self.logic.value,
            "conditions": [c.to_dict() for c in self.conditions],
            "on_enter": self.on_enter.to_dict(),
            "on_exit": self.on_exit.to_dict(),
        }
