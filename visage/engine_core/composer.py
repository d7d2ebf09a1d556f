"""
Composer - Folds an override stack onto a base snapshot.

The composer is the single point where resolved fields are written back to
an entity. All stack mutations end with a call to Composer.compose().

Design principles:
- resolve() is a pure function: (base, stack) -> resolved state
- compose() is all-or-nothing: the entity fields and the override state are
  written as one unit, or the call raises without leaving either half
- A bad field is skipped on its own, the rest of its layer still applies
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import TYPE_CHECKING
import logging

from .changeset import Changeset, RingConfig
from .errors import PersistenceFailure, ValidationFailure, VisageError
from .state import BaseSnapshot, Layer, LiveFields, OverrideState, ResolvedState

if TYPE_CHECKING:
    from ..host.protocols import EntityAccessor, OverrideStore

logger = logging.getLogger(__name__)


def resolve(
    base: BaseSnapshot,
    stack: list[Layer],
    failures: list[ValidationFailure] | None = None,
) -> ResolvedState:
    """
    Resolve the final visual state of an entity.

    Layers are applied bottom to top, disabled layers are skipped. Only
    fields a layer actually sets are touched.

    Args:
        base: Snapshot of the entity before any override
        stack: Layers in push order
        failures: Optional list collecting rejected fields

    Returns:
        A new ResolvedState; ``base`` is never modified
    """
    resolved = base.clone()

    for layer in stack:
        if layer.disabled:
            continue

        changes, bad_fields = layer.changeset.validated()
        for failure in bad_fields:
            logger.warning(
                "Skipping field %s of layer %s: %s",
                failure.field, layer.definition_id, failure.reason,
            )
        if failures is not None:
            failures.extend(bad_fields)

        _apply_changes(resolved, changes)

    return resolved


def _apply_changes(resolved: ResolvedState, c: Changeset) -> None:
    """Apply one validated changeset onto the accumulator in place."""
    if c.image_ref is not None:
        resolved.texture.src = c.image_ref

    # Magnitude and orientation are recomputed together so a layer that
    # sets only one of them keeps the accumulated value of the other
    if c.scale_magnitude is not None or c.flip_x is not None or c.flip_y is not None:
        acc_x = resolved.texture.scale_x
        acc_y = resolved.texture.scale_y
        magnitude_x = c.scale_magnitude if c.scale_magnitude is not None else abs(acc_x)
        magnitude_y = c.scale_magnitude if c.scale_magnitude is not None else abs(acc_y)
        flip_x = c.flip_x if c.flip_x is not None else acc_x < 0
        flip_y = c.flip_y if c.flip_y is not None else acc_y < 0
        resolved.texture.scale_x = abs(magnitude_x) * (-1 if flip_x else 1)
        resolved.texture.scale_y = abs(magnitude_y) * (-1 if flip_y else 1)

    if c.ring is not None and c.ring.enabled:
        resolved.ring = RingConfig.from_dict(c.ring)

    if c.disposition is not None:
        resolved.disposition = c.disposition
    if c.display_name is not None:
        resolved.display_name = c.display_name
    if c.width is not None:
        resolved.width = c.width
    if c.height is not None:
        resolved.height = c.height


@dataclass
class Composer:
    """
    Orchestrates resolve() against the entity and the durable store.

    Stateless - all state lives in the store and on the entity.
    """
    store: OverrideStore
    entities: EntityAccessor

    async def compose(
        self,
        entity_id: str,
        stack: list[Layer] | None = None,
        base_override: BaseSnapshot | None = None,
    ) -> ResolvedState | None:
        """
        Compose the entity's appearance from its base and stack.

        Args:
            entity_id: Target entity
            stack: Stack to use instead of the stored one
            base_override: Base to use instead of the stored snapshot

        Returns:
            The state written to the entity, or None if the entity is gone.

        Raises:
            PersistenceFailure: If a read or write failed
        """
        live = await self.read_live(entity_id)
        if live is None:
            logger.warning("Entity %s not found, compose skipped", entity_id)
            return None

        current = await self.load_state(entity_id)
        layers = current.stack if stack is None else stack

        if not layers and base_override is None:
            return await self._revert(entity_id, live, current)

        base = base_override or current.base_snapshot
        if base is None:
            # First override of this session: capture the entity as it is now
            base = live.clone()
            logger.debug("Captured base snapshot for %s", entity_id)

        resolved = resolve(base, layers)
        new_state = OverrideState(
            base_snapshot=base.clone(),
            stack=[layer.copy() for layer in layers],
        )
        await self._commit(entity_id, resolved, new_state, live)
        return resolved

    async def revert_to_default(self, entity_id: str) -> ResolvedState | None:
        """Restore the entity's snapshot and clear all override state."""
        live = await self.read_live(entity_id)
        if live is None:
            logger.warning("Entity %s not found, revert skipped", entity_id)
            return None
        current = await self.load_state(entity_id)
        return await self._revert(entity_id, live, current)

    async def _revert(
        self,
        entity_id: str,
        live: LiveFields,
        current: OverrideState,
    ) -> ResolvedState:
        if current.base_snapshot is None:
            # Nothing to restore; only clear leftover stack data
            if current.stack:
                await self._save_state(entity_id, OverrideState())
            return live

        restored = current.base_snapshot.clone()
        await self._commit(entity_id, restored, OverrideState(), live)
        logger.info("Reverted %s to its base snapshot", entity_id)
        return restored

    async def _commit(
        self,
        entity_id: str,
        fields: ResolvedState,
        state: OverrideState,
        previous: LiveFields,
    ) -> None:
        """Write fields and state as one unit, undoing the field write if the save fails."""
        await self.write_live(entity_id, fields)

        try:
            await self._save_state(entity_id, state)
        except PersistenceFailure:
            logger.error("Saving override state for %s failed, restoring fields", entity_id)
            try:
                await self.entities.write_fields(entity_id, previous)
            except Exception:
                logger.exception("Could not restore fields of %s", entity_id)
            raise

    async def read_live(self, entity_id: str) -> LiveFields | None:
        try:
            return await self.entities.read_live_fields(entity_id)
        except VisageError:
            raise
        except Exception as e:
            raise PersistenceFailure("read_live_fields", entity_id, e) from e

    async def write_live(self, entity_id: str, fields: LiveFields) -> None:
        try:
            await self.entities.write_fields(entity_id, fields)
        except VisageError:
            raise
        except Exception as e:
            raise PersistenceFailure("write_fields", entity_id, e) from e

    async def load_state(self, entity_id: str) -> OverrideState:
        try:
            return await self.store.load_override_state(entity_id)
        except VisageError:
            raise
        except Exception as e:
            raise PersistenceFailure("load_override_state", entity_id, e) from e

    async def _save_state(self, entity_id: str, state: OverrideState) -> None:
        try:
            await self.store.save_override_state(entity_id, state)
        except VisageError:
            raise
        except Exception as e:
            raise PersistenceFailure("save_override_state", entity_id, e) from e
