"""
Definition Validation - Checks for visage definitions before they are saved.

Validates that:
1. Required fields are present
2. Changeset fields hold usable values
3. Automation conditions are well-formed
4. Scope invariants hold (local definitions have an owner)
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any

from ..automation.rules import (
    ActionCondition,
    AttributeCondition,
    AttributeMode,
    AutomationRule,
    EventCondition,
    EventOperator,
)
from .definition import VisageDefinition

# Events compared against a number rather than switched on/off
NUMERIC_EVENTS = frozenset({"elevation", "darkness"})
NUMERIC_OPERATORS = frozenset({EventOperator.GT, EventOperator.LT, EventOperator.EQ})


@dataclass
class ValidationResult:
    """Result of validation, with errors and warnings."""
    valid: bool
    errors: list[str]
    warnings: list[str]


def validate_definition(definition: VisageDefinition) -> ValidationResult:
    """
    Validate a complete visage definition.

    Returns ValidationResult with errors and warnings.
    """
    errors: list[str] = []
    warnings: list[str] = []

    if not definition.id:
        errors.append("id is required")
    if not definition.label:
        errors.append("label is required")
    if definition.is_local and not definition.owner_id:
        errors.append("local definitions require owner_id")

    _, failures = definition.changeset.validated()
    for failure in failures:
        errors.append(f"changeset.{failure.field}: {failure.reason}")

    if definition.changeset.is_empty:
        warnings.append(f"Definition {definition.id} changes nothing")

    if definition.automation is not None:
        rule_errors, rule_warnings = _validate_rule(definition.automation)
        errors.extend(rule_errors)
        warnings.extend(rule_warnings)

    return ValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
    )


def validate_payload(data: dict[str, Any]) -> ValidationResult:
    """Parse and validate a raw definition dictionary."""
    try:
        definition = VisageDefinition.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        return ValidationResult(valid=False, errors=[str(e)], warnings=[])
    return validate_definition(definition)


def _validate_rule(rule: AutomationRule) -> tuple[list[str], list[str]]:
    errors: list[str] = []
    warnings: list[str] = []

    if rule.enabled and not rule.conditions:
        warnings.append("Automation is enabled but has no conditions")
    if rule.conditions and not rule.active_conditions:
        warnings.append("All automation conditions are disabled")
    if rule.on_enter.action == rule.on_exit.action:
        warnings.append(
            f"on_enter and on_exit both {rule.on_enter.action.value}; the rule only fires one way"
        )

    for index, condition in enumerate(rule.conditions):
        prefix = f"automation.conditions[{index}]"

        if isinstance(condition, AttributeCondition):
            if condition.mode == AttributeMode.PERCENT and not condition.path.endswith(".value"):
                warnings.append(
                    f"{prefix}: percent mode expects a '.value' path to find its '.max'"
                )

        elif isinstance(condition, EventCondition):
            numeric = condition.event_id in NUMERIC_EVENTS
            if numeric and condition.operator not in NUMERIC_OPERATORS:
                errors.append(f"{prefix}: event '{condition.event_id}' needs gt, lt or eq")
            if not numeric and condition.operator in NUMERIC_OPERATORS:
                errors.append(
                    f"{prefix}: event '{condition.event_id}' only supports active/inactive"
                )
            if numeric and condition.value is None:
                errors.append(f"{prefix}: event '{condition.event_id}' requires a value")
            if condition.event_id == "region" and not condition.region_id:
                errors.append(f"{prefix}: region event requires region_id")

        elif isinstance(condition, ActionCondition):
            if condition.duration is not None and condition.duration <= 0:
                errors.append(f"{prefix}: duration must be positive")

    return errors, warnings
