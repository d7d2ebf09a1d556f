"""
Stack Operations - Every way an entity's override stack can change.

Each mutation:
1. Takes the entity's lock (one mutation per entity at a time)
2. Builds the new stack from a copy of the stored one
3. Hands it to Composer.compose(), which writes fields and state together

A missing entity or definition yields a failed StackResult and touches
nothing. PersistenceFailure and NotAuthoritative propagate to the caller.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Callable, TYPE_CHECKING
import logging

from .changeset import Changeset
from .composer import resolve
from .errors import NotFound
from .locks import KeyedLock
from .state import Layer, LayerMode, OverrideState, ResolvedState

if TYPE_CHECKING:
    from ..definitions.definition import VisageDefinition
    from ..definitions.library import DefinitionLibrary
    from ..session.lease import AuthorityLease
    from .composer import Composer

logger = logging.getLogger(__name__)


@dataclass
class StackResult:
    """
    Result of a stack operation.

    ``changed`` is False when the operation was a no-op (for example,
    removing a layer that is not on the stack).
    """
    success: bool
    entity_id: str
    changed: bool = False
    resolved: ResolvedState | None = None
    stack: list[Layer] = field(default_factory=list)
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def failure(cls, entity_id: str, error: str, error_code: str | None = None) -> StackResult:
        """Create a failure result."""
        return cls(success=False, entity_id=entity_id, error=error, error_code=error_code)

    @classmethod
    def ok(
        cls,
        entity_id: str,
        stack: list[Layer],
        resolved: ResolvedState | None = None,
        changed: bool = True,
    ) -> StackResult:
        return cls(success=True, entity_id=entity_id, changed=changed, resolved=resolved, stack=stack)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "entity_id": self.entity_id,
            "changed": self.changed,
            "resolved": self.resolved.to_dict() if self.resolved is not None else None,
            "stack": [layer.to_dict() for layer in self.stack],
            "error": self.error,
            "error_code": self.error_code,
        }


# Receives a private copy of the stack; returns the new stack, or None for "no change"
StackEdit = Callable[[list[Layer]], "list[Layer] | None"]


class StackOperations:
    """
    Mutation and query surface for override stacks.

    ``apply`` and ``remove`` are the action surface shared by interactive
    callers and the automation evaluator.

    Usage:
        ops = StackOperations(composer, library)
        result = await ops.apply("token-1", "wolf-form")
        if result.success:
            print(result.resolved.texture.src)
    """

    def __init__(
        self,
        composer: Composer,
        library: DefinitionLibrary | None = None,
        lease: AuthorityLease | None = None,
        holder_id: str | None = None,
    ):
        self.composer = composer
        self.library = library
        self.lease = lease
        self.holder_id = holder_id
        self._locks = KeyedLock()

    # -- Action surface --

    async def apply(
        self,
        entity_id: str,
        definition_id: str,
        clear_stack: bool = False,
        switch_identity: bool = False,
    ) -> StackResult:
        """Look up a definition the entity may use and push it."""
        try:
            definition = await self._definition_for(entity_id, definition_id)
        except NotFound as e:
            return StackResult.failure(entity_id, str(e), e.error_code)
        return await self.push_layer(
            entity_id,
            definition,
            clear_stack=clear_stack,
            switch_identity=switch_identity,
        )

    async def remove(self, entity_id: str, definition_id: str) -> StackResult:
        return await self.remove_layer(entity_id, definition_id)

    # -- Mutations --

    async def push_layer(
        self,
        entity_id: str,
        definition: VisageDefinition,
        clear_stack: bool = False,
        switch_identity: bool = False,
    ) -> StackResult:
        """
        Push a definition onto the stack.

        Args:
            entity_id: Target entity
            definition: Definition to instantiate as a layer
            clear_stack: Empty the stack first (full transformation)
            switch_identity: Install as the identity at the bottom of the
                stack, keeping every overlay above it

        An identity layer evicts the current identity. Pushing an id that is
        already on the stack moves it to the top.
        """
        layer = definition.to_layer()
        if switch_identity:
            layer = replace(layer, mode=LayerMode.IDENTITY)

        def edit(stack: list[Layer]) -> list[Layer]:
            if clear_stack:
                stack = []
            stack = [item for item in stack if item.definition_id != layer.definition_id]
            if layer.is_identity:
                stack = [item for item in stack if not item.is_identity]
            if switch_identity:
                return [layer] + stack
            return stack + [layer]

        result = await self._mutate(entity_id, edit)
        if result.success:
            logger.info("Applied %s to %s", definition.id, entity_id)
        return result

    async def remove_layer(self, entity_id: str, definition_id: str) -> StackResult:
        """Remove a layer. Removing an id that is not on the stack is a no-op."""
        def edit(stack: list[Layer]) -> list[Layer] | None:
            if not any(item.definition_id == definition_id for item in stack):
                return None
            return [item for item in stack if item.definition_id != definition_id]

        result = await self._mutate(entity_id, edit)
        if result.changed:
            logger.info("Removed %s from %s", definition_id, entity_id)
        return result

    async def toggle_layer_visibility(
        self,
        entity_id: str,
        definition_id: str,
        disabled: bool | None = None,
    ) -> StackResult:
        """Flip a layer's ``disabled`` flag, or set it when ``disabled`` is given."""
        def edit(stack: list[Layer]) -> list[Layer] | None:
            for index, layer in enumerate(stack):
                if layer.definition_id == definition_id:
                    target = (not layer.disabled) if disabled is None else disabled
                    if target == layer.disabled:
                        return None
                    stack[index] = layer.with_disabled(target)
                    return stack
            return None

        return await self._mutate(entity_id, edit)

    async def reorder_stack(self, entity_id: str, ordered_ids: list[str]) -> StackResult:
        """
        Reorder layers bottom to top.

        Unknown ids are ignored; layers not mentioned keep their relative
        order and go after the mentioned ones.
        """
        def edit(stack: list[Layer]) -> list[Layer] | None:
            by_id = {item.definition_id: item for item in stack}
            ordered = []
            for definition_id in ordered_ids:
                layer = by_id.pop(definition_id, None)
                if layer is not None:
                    ordered.append(layer)
            ordered.extend(item for item in stack if item.definition_id in by_id)
            if [item.definition_id for item in ordered] == [item.definition_id for item in stack]:
                return None
            return ordered

        return await self._mutate(entity_id, edit)

    async def revert(self, entity_id: str) -> StackResult:
        """Clear the stack and restore the base snapshot."""
        self._check_authority()
        async with self._locks.hold(entity_id):
            live = await self.composer.read_live(entity_id)
            if live is None:
                return StackResult.failure(entity_id, f"entity not found: {entity_id}", "NOT_FOUND")
            current = await self.composer.load_state(entity_id)
            resolved = await self.composer.revert_to_default(entity_id)
            return StackResult.ok(entity_id, [], resolved, changed=not current.is_empty)

    async def rebase(self, entity_id: str, edits: dict[str, Any]) -> StackResult:
        """
        Fold an operator edit into the base snapshot and recompose.

        While a stack is active the entity shows masked fields, so a manual
        edit belongs to the underlying base. With an empty stack there is
        nothing to rebase and the edit stands as is.
        """
        self._check_authority()
        async with self._locks.hold(entity_id):
            live = await self.composer.read_live(entity_id)
            if live is None:
                return StackResult.failure(entity_id, f"entity not found: {entity_id}", "NOT_FOUND")
            current = await self.composer.load_state(entity_id)
            if not current.stack:
                return StackResult.ok(entity_id, [], live, changed=False)
            return await self._fold_into_base(entity_id, live, current, edits)

    async def operator_edit(self, entity_id: str, edits: dict[str, Any]) -> StackResult:
        """
        Apply a manual edit of an entity's visual fields.

        While overrides are active the edit is folded into the base snapshot;
        otherwise it is written to the entity directly.
        """
        self._check_authority()
        async with self._locks.hold(entity_id):
            live = await self.composer.read_live(entity_id)
            if live is None:
                return StackResult.failure(entity_id, f"entity not found: {entity_id}", "NOT_FOUND")
            current = await self.composer.load_state(entity_id)
            if current.stack:
                return await self._fold_into_base(entity_id, live, current, edits)

            updated = live.with_edits(edits)
            await self.composer.write_live(entity_id, updated)
            logger.info("Edited %s: %s", entity_id, sorted(edits))
            return StackResult.ok(entity_id, [], updated)

    async def commit_to_default(self, entity_id: str, definition_id: str) -> StackResult:
        """
        Make a definition part of the entity's default appearance.

        The current default is first saved as a local identity definition
        labelled "<name> (Backup)". The definition's changes are then merged
        over the default, the result becomes the new base snapshot, and the
        definition's layer leaves the stack.
        """
        self._check_authority()
        try:
            definition = await self._definition_for(entity_id, definition_id)
        except NotFound as e:
            return StackResult.failure(entity_id, str(e), e.error_code)

        live = await self.composer.read_live(entity_id)
        if live is None:
            return StackResult.failure(entity_id, f"entity not found: {entity_id}", "NOT_FOUND")
        current = await self.composer.load_state(entity_id)
        default = Changeset.from_dict((current.base_snapshot or live).to_dict())
        owner_id = await self.composer.entities.owner_of(entity_id)
        # The save notifies the evaluator, which may take this entity's lock
        backup = await self.library.save({
            "label": f"{default.display_name or entity_id} (Backup)",
            "category": "Backup",
            "tags": ["Backup"],
            "mode": LayerMode.IDENTITY.value,
            "changeset": default.to_dict(),
        }, owner_id=owner_id)

        async with self._locks.hold(entity_id):
            live = await self.composer.read_live(entity_id)
            if live is None:
                return StackResult.failure(entity_id, f"entity not found: {entity_id}", "NOT_FOUND")
            current = await self.composer.load_state(entity_id)
            base = current.base_snapshot or live
            committed = definition.changeset.merged_over(Changeset.from_dict(base.to_dict()))
            new_base = resolve(base, [replace(definition.to_layer(), changeset=committed)])
            remaining = [layer for layer in current.stack if layer.definition_id != definition_id]

            resolved = await self.composer.compose(entity_id, stack=remaining, base_override=new_base)
            if resolved is not None and not remaining:
                resolved = await self.composer.revert_to_default(entity_id)
            if resolved is None:
                return StackResult.failure(entity_id, f"entity not found: {entity_id}", "NOT_FOUND")
            logger.info("Committed %s to the default of %s (backup %s)", definition_id, entity_id, backup.id)
            return StackResult.ok(entity_id, remaining, resolved)

    # -- Queries --

    async def is_active(self, entity_id: str, definition_id: str) -> bool:
        state = await self.composer.load_state(entity_id)
        return state.find(definition_id) is not None

    async def get_stack(self, entity_id: str) -> list[Layer]:
        state = await self.composer.load_state(entity_id)
        return state.stack

    # -- Internals --

    async def _mutate(self, entity_id: str, edit: StackEdit) -> StackResult:
        self._check_authority()
        async with self._locks.hold(entity_id):
            live = await self.composer.read_live(entity_id)
            if live is None:
                return StackResult.failure(entity_id, f"entity not found: {entity_id}", "NOT_FOUND")

            current = await self.composer.load_state(entity_id)
            new_stack = edit([layer.copy() for layer in current.stack])
            if new_stack is None:
                return StackResult.ok(entity_id, current.stack, live, changed=False)

            resolved = await self.composer.compose(entity_id, stack=new_stack)
            if resolved is None:
                return StackResult.failure(entity_id, f"entity not found: {entity_id}", "NOT_FOUND")
            return StackResult.ok(entity_id, new_stack, resolved)

    async def _fold_into_base(
        self,
        entity_id: str,
        live: ResolvedState,
        current: OverrideState,
        edits: dict[str, Any],
    ) -> StackResult:
        base = current.base_snapshot or live
        resolved = await self.composer.compose(
            entity_id, stack=current.stack, base_override=base.with_edits(edits)
        )
        if resolved is None:
            return StackResult.failure(entity_id, f"entity not found: {entity_id}", "NOT_FOUND")
        logger.info("Rebased %s with %s", entity_id, sorted(edits))
        return StackResult.ok(entity_id, current.stack, resolved)

    async def _definition_for(self, entity_id: str, definition_id: str) -> VisageDefinition:
        if self.library is None:
            raise NotFound("definition", definition_id)
        owner_id = await self.composer.entities.owner_of(entity_id)
        definition = await self.library.get(definition_id, owner_id)
        if definition is None:
            raise NotFound("definition", definition_id)
        return definition

    def _check_authority(self):
        if self.lease is not None and self.holder_id is not None:
            self.lease.ensure(self.holder_id)
