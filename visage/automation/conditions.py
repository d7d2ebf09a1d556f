"""
Condition Evaluators - Pure functions from current state to a boolean.

Evaluators never raise for missing or malformed data: a value that cannot
be read or compared makes the condition false.

Supports:
- Attributes: dotted paths into nested dictionaries (hp.value), absolute
  or as a percentage of the sibling ``max`` (hp.value -> hp.max)
- Statuses: membership in the entity's active status set
- Events: boolean flags (combat, targeted, custom), numeric comparisons
  (elevation, darkness), scene lighting and region membership
- Actions: outcome of the most recent recorded action of a type, within an
  optional rolling window
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any
import logging
import math
import re
import time

from .rules import (
    ActionCondition,
    AttributeCondition,
    AttributeMode,
    AutomationRule,
    ComparisonOperator,
    Condition,
    EventCondition,
    EventOperator,
    Logic,
    PresenceOperator,
    StatusCondition,
)

logger = logging.getLogger(__name__)

_VALUE_SUFFIX = re.compile(r"\.value$")


@dataclass
class ActionRecord:
    """A game action that involved the entity (an attack roll, a save, ...)."""
    action_type: str
    outcome: str
    timestamp: float


@dataclass
class EntityConditionState:
    """
    Everything condition evaluators may read about one entity.

    ``flags`` holds boolean events such as "combat" or "targeted";
    ``values`` holds numeric per-entity readings such as "elevation".
    """
    entity_id: str
    attributes: dict[str, Any] = field(default_factory=dict)
    statuses: set[str] = field(default_factory=set)
    flags: dict[str, bool] = field(default_factory=dict)
    values: dict[str, float] = field(default_factory=dict)
    regions: set[str] = field(default_factory=set)
    actions: list[ActionRecord] = field(default_factory=list)


@dataclass
class SceneConditions:
    """Scene-wide readings shared by every entity."""
    darkness: float = 0.0
    global_light: bool = False
    light_min: float = 0.0
    light_max: float = 1.0


@dataclass
class ConditionContext:
    """Inputs for one evaluation pass."""
    entity: EntityConditionState
    scene: SceneConditions = field(default_factory=SceneConditions)
    now: float = field(default_factory=time.time)


def get_path(data: Any, path: str) -> Any:
    """Read a dotted path from nested dictionaries/objects. Missing -> None."""
    current = data
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(part)
        else:
            current = getattr(current, part, None)
    return current


def _to_number(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def _compare(left: float, right: float, operator: ComparisonOperator) -> bool:
    if operator == ComparisonOperator.LTE:
        return left <= right
    if operator == ComparisonOperator.GTE:
        return left >= right
    if operator == ComparisonOperator.EQ:
        return left == right
    if operator == ComparisonOperator.NEQ:
        return left != right
    return False


def _presence(is_present: bool, operator: EventOperator | PresenceOperator) -> bool:
    if operator.value == "active":
        return is_present
    if operator.value == "inactive":
        return not is_present
    return False


def evaluate_attribute(condition: AttributeCondition, ctx: ConditionContext) -> bool:
    """Compare an attribute (optionally as a percentage of its max) with the target."""
    current = _to_number(get_path(ctx.entity.attributes, condition.path))
    target = _to_number(condition.value)
    if current is None or target is None:
        return False

    if condition.mode == AttributeMode.PERCENT:
        max_path = _VALUE_SUFFIX.sub(".max", condition.path)
        maximum = _to_number(get_path(ctx.entity.attributes, max_path))
        if maximum is None or maximum <= 0:
            logger.warning(
                "Cannot calculate percentage for %s - no valid max at %s",
                condition.path, max_path,
            )
            return False
        current = current / maximum * 100

    return _compare(current, target, condition.operator)


def evaluate_status(condition: StatusCondition, ctx: ConditionContext) -> bool:
    return _presence(condition.status_id in ctx.entity.statuses, condition.operator)


def evaluate_event(condition: EventCondition, ctx: ConditionContext) -> bool:
    """Evaluate built-in and custom events."""
    event_id = condition.event_id

    if event_id in ("elevation", "darkness"):
        if event_id == "elevation":
            reading = _to_number(ctx.entity.values.get("elevation")) or 0.0
        else:
            reading = _to_number(ctx.scene.darkness) or 0.0
        target = _to_number(condition.value) or 0.0
        if condition.operator == EventOperator.GT:
            return reading > target
        if condition.operator == EventOperator.LT:
            return reading < target
        return reading == target

    if event_id == "global_light":
        scene = ctx.scene
        is_lit = scene.global_light and scene.light_min <= scene.darkness <= scene.light_max
        return _presence(is_lit, condition.operator)

    if event_id == "region":
        if not condition.region_id:
            return False
        return _presence(condition.region_id in ctx.entity.regions, condition.operator)

    # combat, targeted and any custom boolean event
    return _presence(bool(ctx.entity.flags.get(event_id, False)), condition.operator)


def evaluate_action(condition: ActionCondition, ctx: ConditionContext) -> bool:
    """Match the most recent action of the condition's type."""
    matching = [a for a in ctx.entity.actions if a.action_type == condition.action_type]
    if not matching:
        return False

    latest = max(matching, key=lambda a: a.timestamp)
    if condition.duration is not None and ctx.now - latest.timestamp > condition.duration:
        return False

    if condition.outcome in ("", "any"):
        return True
    return latest.outcome.lower() == condition.outcome.lower()


_EVALUATORS = {
    AttributeCondition: evaluate_attribute,
    StatusCondition: evaluate_status,
    EventCondition: evaluate_event,
    ActionCondition: evaluate_action,
}


def evaluate_condition(condition: Condition, ctx: ConditionContext) -> bool:
    evaluator = _EVALUATORS.get(type(condition))
    if evaluator is None:
        return False
    return evaluator(condition, ctx)


def evaluate_rule(rule: AutomationRule, ctx: ConditionContext) -> bool:
    """
    Combine the rule's enabled conditions.

    With no enabled conditions an AND rule holds and an OR rule does not.
    """
    results = [evaluate_condition(c, ctx) for c in rule.active_conditions]
    if rule.logic == Logic.AND:
        return all(results)
    return any(results)
