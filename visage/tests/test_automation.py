"""
Tests for the automation registry and evaluator.

Tests:
- Latch edge-triggering (apply once, remove once, no repeats)
- Latches survive registry rebuilds
- Failed actions leave the latch so the next notification retries
- One failing definition does not stop the others
- Entity deletion, disabled automation, scene-wide notifications
- Passive observers never act
"""

import asyncio

from ..automation.evaluator import AutomationEvaluator
from ..automation.notifications import Notification
from ..automation.registry import AutomationRegistry
from ..engine_core.composer import Composer
from ..engine_core.errors import PersistenceFailure
from ..engine_core.stack import StackOperations
from ..host.memory import MemoryScene
from ..session.lease import AuthorityLease


HP_ZERO = {
    "enabled": True,
    "logic": "AND",
    "conditions": [{"type": "attribute", "path": "hp.value", "operator": "lte", "value": 0}],
    "on_enter": {"action": "apply"},
    "on_exit": {"action": "remove"},
}

DARK = {
    "enabled": True,
    "conditions": [{"type": "event", "event_id": "darkness", "operator": "gt", "value": 0.5}],
}


def dead_definition(**overrides):
    payload = {
        "id": "dead",
        "label": "Dead",
        "changeset": {"img": "skull.png"},
        "automation": HP_ZERO,
    }
    payload.update(overrides)
    return payload


class CountingStackOperations(StackOperations):
    """Counts actions and can be told to fail a number of applies."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.applied = []
        self.removed = []
        self.failures_left = 0
        self.broken = set()

    async def apply(self, entity_id, definition_id, **kwargs):
        if definition_id in self.broken:
            raise RuntimeError(f"{definition_id} is broken")
        if self.failures_left:
            self.failures_left -= 1
            raise PersistenceFailure("save_override_state", entity_id)
        result = await super().apply(entity_id, definition_id, **kwargs)
        self.applied.append((entity_id, definition_id))
        return result

    async def remove(self, entity_id, definition_id):
        result = await super().remove(entity_id, definition_id)
        self.removed.append((entity_id, definition_id))
        return result


class PausingScene(MemoryScene):
    """Suspends owner_of for one entity until released."""

    def __init__(self, *args, pause_on=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.pause_on = pause_on
        self.paused = asyncio.Event()
        self.release = asyncio.Event()

    async def owner_of(self, entity_id):
        if entity_id == self.pause_on:
            self.pause_on = None
            self.paused.set()
            await self.release.wait()
        return await super().owner_of(entity_id)


def build_evaluator(store, scene, library, bus, clock, lease=None, holder_id=None):
    ops = CountingStackOperations(Composer(store, scene), library)
    evaluator = AutomationEvaluator(
        AutomationRegistry(),
        ops,
        library,
        entities=scene,
        conditions=scene,
        bus=bus,
        lease=lease,
        holder_id=holder_id,
        clock=clock,
    )
    return evaluator, ops


class TestLatch:

    def test_hp_scenario(self, store, scene, library, bus, clock, base_fields):
        """hp 10 -> 0 applies once, repeated 0s do nothing, 0 -> 1 removes once."""
        evaluator, ops = build_evaluator(store, scene, library, bus, clock)

        async def scenario():
            await evaluator.start()
            await scene.add_entity("token-1", base_fields, attributes={"hp": {"value": 10, "max": 10}})
            await library.save(dead_definition())
            await scene.set_attribute("token-1", "hp.value", 0)
            after_drop = await scene.read_live_fields("token-1")
            await scene.set_attribute("token-1", "hp.value", 0)
            await scene.set_attribute("token-1", "hp.value", 0)
            await scene.set_attribute("token-1", "hp.value", 1)
            after_heal = await scene.read_live_fields("token-1")
            return after_drop, after_heal

        after_drop, after_heal = asyncio.run(scenario())
        assert ops.applied == [("token-1", "dead")]
        assert ops.removed == [("token-1", "dead")]
        assert after_drop.texture.src == "skull.png"
        assert after_heal == base_fields

    def test_true_at_creation_applies(self, store, scene, library, bus, clock, base_fields):
        evaluator, ops = build_evaluator(store, scene, library, bus, clock)

        async def scenario():
            await library.save(dead_definition())
            await evaluator.start()
            await scene.add_entity("token-1", base_fields, attributes={"hp": {"value": 0}})

        asyncio.run(scenario())
        assert ops.applied == [("token-1", "dead")]

    def test_rebuild_preserves_latch(self, store, scene, library, bus, clock, base_fields):
        evaluator, ops = build_evaluator(store, scene, library, bus, clock)

        async def scenario():
            await evaluator.start()
            await scene.add_entity("token-1", base_fields, attributes={"hp": {"value": 10}})
            await library.save(dead_definition())
            await scene.set_attribute("token-1", "hp.value", 0)
            await library.save({"label": "Unrelated", "changeset": {"width": 2}})
            await evaluator.rebuild()
            await scene.set_attribute("token-1", "hp.value", -3)

        asyncio.run(scenario())
        assert ops.applied == [("token-1", "dead")]
        assert evaluator.registry.get("token-1").latch("dead") is True

    def test_latch_set_during_rebuild_survives(self, store, library, bus, clock, base_fields):
        """A transition that lands while a rebuild is suspended is not replayed."""
        async def scenario():
            scene = PausingScene(bus=bus)
            evaluator, ops = build_evaluator(store, scene, library, bus, clock)
            await evaluator.start()
            await scene.add_entity("token-1", base_fields, attributes={"hp": {"value": 10}})
            await scene.add_entity("token-2", base_fields, attributes={"hp": {"value": 10}})
            await library.save(dead_definition())

            scene.pause_on = "token-2"
            rebuild = asyncio.create_task(evaluator.rebuild())
            await scene.paused.wait()
            await scene.set_attribute("token-1", "hp.value", 0)
            scene.release.set()
            await rebuild

            await scene.set_attribute("token-1", "hp.value", 0)
            return evaluator, ops

        evaluator, ops = asyncio.run(scenario())
        assert ops.applied == [("token-1", "dead")]
        assert evaluator.registry.get("token-1").latch("dead") is True

    def test_failed_action_retries(self, store, scene, library, bus, clock, base_fields):
        evaluator, ops = build_evaluator(store, scene, library, bus, clock)

        async def scenario():
            await evaluator.start()
            await scene.add_entity("token-1", base_fields, attributes={"hp": {"value": 10}})
            await library.save(dead_definition())
            ops.failures_left = 1
            await scene.set_attribute("token-1", "hp.value", 0)
            latch_after_failure = evaluator.registry.get("token-1").latch("dead")
            await scene.set_attribute("token-1", "hp.value", 0)
            return latch_after_failure

        latch_after_failure = asyncio.run(scenario())
        assert latch_after_failure is False
        assert ops.applied == [("token-1", "dead")]
        assert evaluator.registry.get("token-1").latch("dead") is True

    def test_failing_definition_isolated(self, store, scene, library, bus, clock, base_fields):
        evaluator, ops = build_evaluator(store, scene, library, bus, clock)

        async def scenario():
            await evaluator.start()
            await scene.add_entity("token-1", base_fields, attributes={"hp": {"value": 10}})
            await library.save(dead_definition(id="broken", label="Broken"))
            await library.save(dead_definition())
            ops.broken.add("broken")
            await scene.set_attribute("token-1", "hp.value", 0)
            return await ops.get_stack("token-1")

        stack = asyncio.run(scenario())
        assert [layer.definition_id for layer in stack] == ["dead"]


class TestRegistryMaintenance:

    def test_entity_deleted_is_forgotten(self, store, scene, library, bus, clock, base_fields):
        evaluator, ops = build_evaluator(store, scene, library, bus, clock)

        async def scenario():
            await library.save(dead_definition())
            await evaluator.start()
            await scene.add_entity("token-1", base_fields, attributes={"hp": {"value": 10}})
            watched = evaluator.registry.entity_ids()
            await scene.remove_entity("token-1")
            return watched

        watched = asyncio.run(scenario())
        assert watched == ["token-1"]
        assert evaluator.registry.get("token-1") is None

    def test_vanished_entity_dropped(self, store, scene, library, bus, clock, base_fields):
        evaluator, ops = build_evaluator(store, scene, library, bus, clock)

        async def scenario():
            await library.save(dead_definition())
            await evaluator.start()
            await scene.add_entity("token-1", base_fields, attributes={"hp": {"value": 10}})
            # Removed behind the bus's back
            scene.bus = None
            await scene.remove_entity("token-1")
            return await evaluator.evaluate("token-1")

        assert asyncio.run(scenario()) == []
        assert evaluator.registry.get("token-1") is None

    def test_disabling_automation_removes_layer(self, store, scene, library, bus, clock, base_fields):
        evaluator, ops = build_evaluator(store, scene, library, bus, clock)
        disabled = dict(HP_ZERO, enabled=False)

        async def scenario():
            await evaluator.start()
            await scene.add_entity("token-1", base_fields, attributes={"hp": {"value": 0}})
            await library.save(dead_definition())
            applied = await ops.is_active("token-1", "dead")
            await library.save(dead_definition(automation=disabled))
            return applied, await ops.is_active("token-1", "dead")

        applied, still_active = asyncio.run(scenario())
        assert applied
        assert not still_active
        assert evaluator.registry.get("token-1") is None

    def test_local_automation_only_for_owner(self, store, scene, library, bus, clock, base_fields):
        evaluator, ops = build_evaluator(store, scene, library, bus, clock)

        async def scenario():
            await evaluator.start()
            await scene.add_entity("token-1", base_fields, owner_id="actor-1", attributes={"hp": {"value": 0}})
            await scene.add_entity("token-2", base_fields, owner_id="actor-2", attributes={"hp": {"value": 0}})
            await library.save(dead_definition(), owner_id="actor-1")

        asyncio.run(scenario())
        assert ops.applied == [("token-1", "dead")]
        assert evaluator.registry.entity_ids() == ["token-1"]

    def test_teardown_unsubscribes(self, store, scene, library, bus, clock):
        evaluator, ops = build_evaluator(store, scene, library, bus, clock)
        asyncio.run(evaluator.start())
        assert bus.subscriber_count == 1
        evaluator.teardown()
        assert bus.subscriber_count == 0
        assert len(evaluator.registry) == 0


class TestSceneWide:

    def test_darkness_reaches_every_entity(self, store, scene, library, bus, clock, base_fields):
        evaluator, ops = build_evaluator(store, scene, library, bus, clock)

        async def scenario():
            await evaluator.start()
            await library.save({"id": "night", "label": "Night", "changeset": {"img": "night.png"},
                                "automation": DARK})
            for entity_id in ("token-1", "token-2", "token-3"):
                await scene.add_entity(entity_id, base_fields)
            await scene.set_scene(darkness=0.8)
            await scene.set_scene(darkness=0.9)
            await scene.set_scene(darkness=0.1)

        asyncio.run(scenario())
        assert sorted(ops.applied) == [("token-1", "night"), ("token-2", "night"), ("token-3", "night")]
        assert sorted(ops.removed) == [("token-1", "night"), ("token-2", "night"), ("token-3", "night")]


class TestEntityEvents:

    def rule(self, *conditions, logic="AND"):
        return {"enabled": True, "logic": logic, "conditions": list(conditions)}

    def test_flags_and_values(self, store, scene, library, bus, clock, base_fields):
        evaluator, ops = build_evaluator(store, scene, library, bus, clock)
        flying = self.rule(
            {"type": "event", "event_id": "combat"},
            {"type": "event", "event_id": "elevation", "operator": "gt", "value": 30},
        )

        async def scenario():
            await evaluator.start()
            await scene.add_entity("token-1", base_fields)
            await library.save({"id": "flying", "label": "Flying", "changeset": {"scale": 0.8},
                                "automation": flying})
            await scene.set_flag("token-1", "combat", True)
            before = list(ops.applied)
            await scene.set_value("token-1", "elevation", 40)
            return before

        before = asyncio.run(scenario())
        assert before == []
        assert ops.applied == [("token-1", "flying")]

    def test_regions(self, store, scene, library, bus, clock, base_fields):
        evaluator, ops = build_evaluator(store, scene, library, bus, clock)
        lava = self.rule({"type": "event", "event_id": "region", "region_id": "lava"})

        async def scenario():
            await evaluator.start()
            await scene.add_entity("token-1", base_fields)
            await library.save({"id": "burning", "label": "Burning", "changeset": {"img": "fire.png"},
                                "automation": lava})
            await scene.enter_region("token-1", "lava")
            await scene.leave_region("token-1", "lava")

        asyncio.run(scenario())
        assert ops.applied == [("token-1", "burning")]
        assert ops.removed == [("token-1", "burning")]

    def test_recorded_action(self, store, scene, library, bus, clock, base_fields):
        evaluator, ops = build_evaluator(store, scene, library, bus, clock)
        critical = self.rule({"type": "action", "action_type": "attack", "outcome": "critical", "duration": 6})

        async def scenario():
            await evaluator.start()
            await scene.add_entity("token-1", base_fields)
            await library.save({"id": "glow", "label": "Glow", "changeset": {"name": "Glowing"},
                                "automation": critical})
            await scene.record_action("token-1", "attack", "miss", timestamp=clock.now)
            clock.advance(1)
            await scene.record_action("token-1", "attack", "critical", timestamp=clock.now)
            clock.advance(10)
            await scene.record_action("token-1", "save", "success", timestamp=clock.now)

        asyncio.run(scenario())
        assert ops.applied == [("token-1", "glow")]
        assert ops.removed == [("token-1", "glow")]


class TestAuthority:

    def test_observer_never_acts(self, store, scene, library, bus, clock, base_fields):
        lease = AuthorityLease(ttl=30)
        lease.acquire("gm-client")
        evaluator, ops = build_evaluator(store, scene, library, bus, clock, lease, holder_id="player-client")

        async def scenario():
            await evaluator.start()
            await library.save(dead_definition())
            await scene.add_entity("token-1", base_fields, attributes={"hp": {"value": 10}})
            await scene.set_attribute("token-1", "hp.value", 0)

        asyncio.run(scenario())
        assert ops.applied == []
        assert not evaluator.is_authoritative

    def test_handle_ignores_unknown_entity(self, store, scene, library, bus, clock):
        evaluator, ops = build_evaluator(store, scene, library, bus, clock)

        async def scenario():
            await evaluator.start()
            await evaluator.handle(Notification.status_added("nobody", "prone"))

        asyncio.run(scenario())
        assert ops.applied == []
