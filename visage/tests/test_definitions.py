"""
Tests for definitions: validation and the library.

Tests:
- Definition validation errors and warnings
- Payload scrubbing
- Save/update, soft delete, restore, destroy, promote, garbage collection
- Visibility of local and global definitions
- Change notifications
"""

import asyncio

import pytest

from ..automation.notifications import NotificationKind
from ..automation.rules import (
    ActionCondition,
    AttributeCondition,
    AttributeMode,
    AutomationRule,
    EventCondition,
    EventOperator,
    Transition,
    TriggerAction,
)
from ..definitions.definition import DefinitionScope, VisageDefinition
from ..definitions.library import scrub_payload
from ..definitions.validation import validate_definition, validate_payload
from ..engine_core.changeset import Changeset
from ..engine_core.errors import DefinitionValidationError, NotFound
from ..engine_core.state import LayerMode
from .conftest import make_definition

DAY = 24 * 60 * 60


def with_rule(*conditions, **kwargs) -> VisageDefinition:
    return make_definition(
        "auto",
        image_ref="a.png",
        automation=AutomationRule(enabled=True, conditions=list(conditions), **kwargs),
    )


class TestValidation:

    def test_valid(self):
        result = validate_definition(with_rule(AttributeCondition("hp.value")))
        assert result.valid
        assert result.warnings == []

    def test_local_requires_owner(self):
        definition = make_definition("x", scope=DefinitionScope.LOCAL, image_ref="a.png")
        result = validate_definition(definition)
        assert not result.valid
        assert "owner_id" in result.errors[0]

    def test_bad_changeset_field(self):
        definition = make_definition("x", scale_magnitude=0)
        result = validate_definition(definition)
        assert result.errors == ["changeset.scale_magnitude: must be positive, got 0"]

    def test_empty_changeset_warns(self):
        result = validate_definition(make_definition("x"))
        assert result.valid
        assert result.warnings == ["Definition x changes nothing"]

    @pytest.mark.parametrize("condition", [
        EventCondition("region"),
        EventCondition("elevation"),
        EventCondition("elevation", EventOperator.GT),
        EventCondition("combat", EventOperator.GT, 1),
        ActionCondition("attack", duration=0),
    ])
    def test_condition_errors(self, condition):
        assert not validate_definition(with_rule(condition)).valid

    def test_warnings(self):
        result = validate_definition(with_rule(
            AttributeCondition("hp", mode=AttributeMode.PERCENT),
            on_exit=Transition(TriggerAction.APPLY),
        ))
        assert result.valid
        assert len(result.warnings) == 2

    def test_all_conditions_disabled_warns(self):
        result = validate_definition(with_rule(AttributeCondition("hp.value", disabled=True)))
        assert result.valid
        assert result.warnings == ["All automation conditions are disabled"]

    def test_payload_with_bad_condition(self):
        result = validate_payload({
            "id": "x",
            "label": "X",
            "automation": {"enabled": True, "conditions": [{"type": "teleport"}]},
        })
        assert not result.valid

    def test_payload_without_id(self):
        assert not validate_payload({"label": "X"}).valid


class TestScrub:

    def test_drops_empty_values(self):
        payload = {
            "label": "X",
            "tags": [],
            "category": None,
            "changeset": {"img": None, "ring": {}},
            "keep": 0,
            "flag": False,
        }
        assert scrub_payload(payload) == {"label": "X", "keep": 0, "flag": False}

    def test_drops_disabled_empty_automation(self):
        payload = {"label": "X", "automation": {"enabled": False, "conditions": []}}
        assert scrub_payload(payload) == {"label": "X"}

    def test_keeps_disabled_automation_with_conditions(self):
        conditions = [{"type": "status", "status_id": "prone"}]
        payload = {"label": "X", "automation": {"enabled": False, "conditions": conditions}}
        assert scrub_payload(payload)["automation"]["conditions"] == conditions


class TestLibrary:

    def test_save_new_global(self, library, clock):
        saved = asyncio.run(library.save({"label": "Giant", "changeset": {"width": 3}}))
        assert saved.id
        assert saved.scope == DefinitionScope.GLOBAL
        assert saved.mode == LayerMode.OVERLAY
        assert saved.created == saved.updated == clock.now
        assert saved.changeset == Changeset(width=3)

    def test_save_local_defaults_to_identity(self, library):
        saved = asyncio.run(library.save({"label": "Wolf", "changeset": {"img": "w.png"}}, owner_id="actor-1"))
        assert saved.scope == DefinitionScope.LOCAL
        assert saved.owner_id == "actor-1"
        assert saved.mode == LayerMode.IDENTITY

    def test_update_keeps_created(self, library, clock):
        async def scenario():
            first = await library.save({"id": "giant", "label": "Giant", "changeset": {"width": 3}})
            clock.advance(60)
            second = await library.save({"id": "giant", "label": "Huge", "changeset": {"width": 4}})
            return first, second

        first, second = asyncio.run(scenario())
        assert second.created == first.created
        assert second.updated == first.updated + 60
        assert second.label == "Huge"

    @pytest.mark.parametrize("first_owner,second_owner", [
        (None, "actor-1"),
        ("actor-1", None),
        ("actor-1", "actor-2"),
    ])
    def test_id_taken_by_other_owner(self, library, first_owner, second_owner):
        async def scenario():
            await library.save({"id": "wolf", "label": "Wolf", "changeset": {"img": "w.png"}}, owner_id=first_owner)
            with pytest.raises(DefinitionValidationError):
                await library.save({"id": "wolf", "label": "Mine", "changeset": {"img": "m.png"}},
                                   owner_id=second_owner)
            return await library.get("wolf", first_owner)

        kept = asyncio.run(scenario())
        assert kept.label == "Wolf"
        assert kept.owner_id == first_owner

    def test_unknown_fields_not_kept(self, library):
        saved = asyncio.run(library.save({
            "label": "Dead",
            "public": True,
            "changeset": {"img": "skull.png"},
            "automation": {
                "enabled": True,
                "conditions": [{"type": "status", "status_id": "dead"}],
                "on_enter": {"action": "apply", "priority": 5},
            },
        }))
        data = saved.to_dict()
        assert "public" not in data
        assert data["automation"]["on_enter"] == {"action": "apply"}

    def test_invalid_save_raises(self, library, store):
        with pytest.raises(DefinitionValidationError) as exc_info:
            asyncio.run(library.save({"id": "bad", "label": "Bad", "changeset": {"scale": -1}}))
        assert exc_info.value.errors
        assert asyncio.run(store.load_definition("bad")) is None

    def test_payload_not_mutated(self, library):
        payload = {"label": "X", "changeset": {"img": "x.png", "name": None}}
        asyncio.run(library.save(payload))
        assert payload == {"label": "X", "changeset": {"img": "x.png", "name": None}}

    def test_soft_delete_and_restore(self, library):
        async def scenario():
            saved = await library.save({"id": "giant", "label": "Giant", "changeset": {"width": 3}})
            await library.delete(saved.id)
            hidden = await library.get(saved.id)
            binned = [d.id for d in await library.bin()]
            listed = [d.id for d in await library.list()]
            with_deleted = [d.id for d in await library.list(include_deleted=True)]
            await library.restore(saved.id)
            return hidden, binned, listed, with_deleted, await library.get(saved.id)

        hidden, binned, listed, with_deleted, restored = asyncio.run(scenario())
        assert hidden is None
        assert binned == ["giant"]
        assert listed == []
        assert with_deleted == ["giant"]
        assert restored is not None
        assert not restored.deleted

    def test_delete_unknown(self, library):
        with pytest.raises(NotFound):
            asyncio.run(library.delete("nope"))

    def test_garbage_collection(self, library, clock):
        async def scenario():
            await library.save({"id": "old", "label": "Old", "changeset": {"width": 2}})
            await library.save({"id": "recent", "label": "Recent", "changeset": {"width": 2}})
            await library.delete("old")
            clock.advance(2 * DAY)
            await library.delete("recent")
            clock.advance(29 * DAY)
            removed = await library.run_garbage_collection()
            return removed, [d.id for d in await library.bin()]

        removed, remaining = asyncio.run(scenario())
        assert removed == ["old"]
        assert remaining == ["recent"]

    def test_destroy(self, library):
        async def scenario():
            await library.save({"id": "giant", "label": "Giant", "changeset": {"width": 3}})
            return await library.destroy("giant"), await library.destroy("giant")

        assert asyncio.run(scenario()) == (True, False)

    def test_promote(self, library):
        async def scenario():
            local = await library.save(
                {"label": "Wolf", "changeset": {"img": "w.png"}, "tags": ["beast"]}, owner_id="actor-1"
            )
            promoted = await library.promote("actor-1", local.id)
            return local, promoted, await library.get(local.id, "actor-1")

        local, promoted, still_there = asyncio.run(scenario())
        assert promoted.id != local.id
        assert promoted.scope == DefinitionScope.GLOBAL
        assert promoted.mode == LayerMode.IDENTITY
        assert promoted.tags == ["beast"]
        assert promoted.changeset == local.changeset
        assert still_there is not None

    def test_promote_global_fails(self, library):
        async def scenario():
            saved = await library.save({"label": "Giant", "changeset": {"width": 3}})
            await library.promote("actor-1", saved.id)

        with pytest.raises(NotFound):
            asyncio.run(scenario())

    def test_visibility(self, library):
        async def scenario():
            await library.save({"id": "g", "label": "B Global", "changeset": {"width": 2}})
            await library.save({"id": "l1", "label": "Z Local", "changeset": {"width": 2}}, owner_id="actor-1")
            await library.save({"id": "l2", "label": "A Other", "changeset": {"width": 2}}, owner_id="actor-2")
            return (
                [d.id for d in await library.available_for("actor-1")],
                await library.get("l2", "actor-1"),
                await library.get("g", None),
            )

        available, foreign, shared = asyncio.run(scenario())
        assert available == ["l1", "g"]
        assert foreign is None
        assert shared is not None

    def test_automated_for(self, library):
        rule = {"enabled": True, "conditions": [{"type": "status", "status_id": "prone"}]}

        async def scenario():
            await library.save({"id": "auto", "label": "Auto", "changeset": {"width": 2}, "automation": rule})
            await library.save({"id": "manual", "label": "Manual", "changeset": {"width": 2}})
            return [d.id for d in await library.automated_for("actor-1")]

        assert asyncio.run(scenario()) == ["auto"]

    def test_notifications(self, library, bus):
        seen = []

        async def record(notification):
            seen.append(notification)

        bus.subscribe(record, kinds=[NotificationKind.DEFINITION_CHANGED])
        rule = {"enabled": True, "conditions": [{"type": "status", "status_id": "prone"}]}

        async def scenario():
            await library.save({"id": "auto", "label": "Auto", "changeset": {"width": 2}, "automation": rule})
            await library.save({"id": "auto", "label": "Auto", "changeset": {"width": 2},
                                "automation": dict(rule, enabled=False)})

        asyncio.run(scenario())
        assert [n.payload["automation_disabled"] for n in seen] == [False, True]
        assert all(n.payload["definition_id"] == "auto" for n in seen)
