"""
Automation Evaluator - Turns notifications into apply/remove actions.

For every watched (entity, definition) pair the evaluator keeps a latch:
- INACTIVE (latch False, initial) -> ACTIVE when the rule becomes true,
  running the rule's on_enter action
- ACTIVE -> INACTIVE when the rule becomes false, running on_exit
- Rule result equal to the latch: nothing happens

The latch moves only after its action succeeded; a failed action leaves it
where it was, so the next notification retries.

Only the lease holder evaluates. Everyone else is a passive observer.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, TYPE_CHECKING
import asyncio
import logging
import time

from ..engine_core.locks import KeyedLock
from .conditions import ConditionContext, evaluate_rule
from .notifications import (
    POPULATION_KINDS,
    Notification,
    NotificationKind,
    Subscription,
)
from .registry import AutomationRecord, AutomationRegistry
from .rules import TriggerAction

if TYPE_CHECKING:
    from ..definitions.definition import VisageDefinition
    from ..definitions.library import DefinitionLibrary
    from ..engine_core.stack import StackOperations, StackResult
    from ..host.protocols import ConditionSource, EntityAccessor
    from ..session.lease import AuthorityLease
    from .notifications import NotificationBus

logger = logging.getLogger(__name__)


@dataclass
class LatchChange:
    """One transition that fired during an evaluation."""
    entity_id: str
    definition_id: str
    active: bool
    action: TriggerAction


class AutomationEvaluator:
    """
    Usage:
        evaluator = AutomationEvaluator(registry, stack_ops, library, scene, scene, bus)
        await evaluator.start()
        ...
        evaluator.teardown()
    """

    def __init__(
        self,
        registry: AutomationRegistry,
        stack_ops: StackOperations,
        library: DefinitionLibrary,
        entities: EntityAccessor,
        conditions: ConditionSource,
        bus: NotificationBus | None = None,
        lease: AuthorityLease | None = None,
        holder_id: str | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.stack_ops = stack_ops
        self.library = library
        self.entities = entities
        self.conditions = conditions
        self.bus = bus
        self.lease = lease
        self.holder_id = holder_id
        self._clock = clock
        self._locks = KeyedLock()
        self._subscription: Subscription | None = None

    # -- Lifecycle --

    async def start(self):
        """Build the registry and start listening on the bus."""
        await self.rebuild()
        if self.bus is not None and self._subscription is None:
            self._subscription = self.bus.subscribe(self.handle)

    def teardown(self):
        """Stop listening and drop all registry state."""
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self.registry.teardown()

    async def rebuild(self) -> int:
        return await self.registry.build(self.entities, self.library)

    @property
    def is_authoritative(self) -> bool:
        if self.lease is None or self.holder_id is None:
            return True
        return self.lease.is_holder(self.holder_id)

    # -- Notification handling --

    async def handle(self, notification: Notification):
        """Route one notification to the entities it concerns."""
        if not self.is_authoritative:
            return

        if notification.kind in POPULATION_KINDS:
            await self._handle_population(notification)
            return

        if notification.entity_id is None:
            # Scene-wide change: every watched entity may be affected
            await asyncio.gather(*(
                self.evaluate(entity_id) for entity_id in self.registry.entity_ids()
            ))
        else:
            await self.evaluate(notification.entity_id)

    async def _handle_population(self, notification: Notification):
        if notification.kind == NotificationKind.ENTITY_DELETED:
            self.registry.forget(notification.entity_id)
            return

        if notification.kind == NotificationKind.DEFINITION_CHANGED:
            if notification.payload.get("automation_disabled"):
                await self._remove_everywhere(notification.payload["definition_id"])

        await self.rebuild()

        if notification.kind == NotificationKind.ENTITY_CREATED:
            await self.evaluate(notification.entity_id)
        else:
            # A new or changed rule may already hold for entities in the scene
            await asyncio.gather(*(
                self.evaluate(entity_id) for entity_id in self.registry.entity_ids()
            ))

    async def _remove_everywhere(self, definition_id: str):
        """Take a definition whose automation was switched off off every entity."""
        for entity_id in await self.entities.list_entities():
            try:
                if await self.stack_ops.is_active(entity_id, definition_id):
                    await self.stack_ops.remove(entity_id, definition_id)
                    logger.info("Removed %s from %s after automation was disabled", definition_id, entity_id)
            except Exception:
                logger.exception("Cleanup of %s on %s failed", definition_id, entity_id)

    # -- Evaluation --

    async def evaluate(self, entity_id: str) -> list[LatchChange]:
        """
        Evaluate every automated definition of one entity.

        Returns:
            The transitions that fired
        """
        async with self._locks.hold(entity_id):
            record = self.registry.get(entity_id)
            if record is None:
                return []

            condition_state = await self.conditions.read_condition_state(entity_id)
            if condition_state is None:
                logger.warning("Entity %s vanished, dropping it from automation", entity_id)
                self.registry.forget(entity_id)
                return []

            ctx = ConditionContext(
                entity=condition_state,
                scene=await self.conditions.read_scene_conditions(),
                now=self._clock(),
            )

            changes = []
            for definition in list(record.definitions):
                try:
                    change = await self._evaluate_pair(record, definition, ctx)
                except Exception:
                    logger.exception("Automation of %s on %s failed", definition.id, entity_id)
                    continue
                if change is not None:
                    changes.append(change)
                if self.registry.get(entity_id) is None:
                    break
            return changes

    async def _evaluate_pair(
        self,
        record: AutomationRecord,
        definition: VisageDefinition,
        ctx: ConditionContext,
    ) -> LatchChange | None:
        result = evaluate_rule(definition.automation, ctx)
        if result == record.latch(definition.id):
            return None

        transition = definition.automation.on_enter if result else definition.automation.on_exit
        outcome = await self._run(transition.action, record.entity_id, definition.id)

        if not outcome.success:
            if await self.entities.read_live_fields(record.entity_id) is None:
                logger.warning("Entity %s vanished, dropping it from automation", record.entity_id)
                self.registry.forget(record.entity_id)
            else:
                logger.warning(
                    "Automation %s on %s could not %s: %s",
                    definition.id, record.entity_id, transition.action.value, outcome.error,
                )
            return None

        self.registry.set_latch(record.entity_id, definition.id, result)
        logger.info(
            "Automation %s on %s is now %s (%s)",
            definition.id, record.entity_id,
            "ACTIVE" if result else "INACTIVE", transition.action.value,
        )
        return LatchChange(record.entity_id, definition.id, result, transition.action)

    async def _run(self, action: TriggerAction, entity_id: str, definition_id: str) -> StackResult:
        if action == TriggerAction.APPLY:
            return await self.stack_ops.apply(entity_id, definition_id)
        return await self.stack_ops.remove(entity_id, definition_id)
