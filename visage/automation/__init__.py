"""
Automation - Applies and removes definitions when conditions change.

Notifications from the host arrive on the bus, the evaluator re-checks the
affected entities' rules and fires on_enter/on_exit on latch edges.
"""

from .rules import (
    AutomationRule,
    AttributeCondition,
    StatusCondition,
    EventCondition,
    ActionCondition,
    Condition,
    Logic,
    TriggerAction,
    parse_condition,
)
from .conditions import (
    ActionRecord,
    ConditionContext,
    EntityConditionState,
    SceneConditions,
    evaluate_condition,
    evaluate_rule,
)
from .notifications import Notification, NotificationBus, NotificationKind, Subscription
from .registry import AutomationRecord, AutomationRegistry
from .evaluator import AutomationEvaluator, LatchChange

__all__ = [
    "AutomationRule",
    "AttributeCondition",
    "StatusCondition",
    "EventCondition",
    "ActionCondition",
    "Condition",
    "Logic",
    "TriggerAction",
    "parse_condition",
    "ActionRecord",
    "ConditionContext",
    "EntityConditionState",
    "SceneConditions",
    "evaluate_condition",
    "evaluate_rule",
    "Notification",
    "NotificationBus",
    "NotificationKind",
    "Subscription",
    "AutomationRecord",
    "AutomationRegistry",
    "AutomationEvaluator",
    "LatchChange",
]
