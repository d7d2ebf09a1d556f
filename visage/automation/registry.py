"""
Automation Registry - Which entities watch which automated definitions.

The registry is owned by the evaluator. build() rescans the scene and
keeps the latch of every (entity, definition) pair that survives the
rescan, so a rebuild never re-fires a transition that already happened.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
import logging

if TYPE_CHECKING:
    from ..definitions.definition import VisageDefinition
    from ..definitions.library import DefinitionLibrary
    from ..host.protocols import EntityAccessor

logger = logging.getLogger(__name__)


@dataclass
class AutomationRecord:
    """Automated definitions of one entity plus their latches."""
    entity_id: str
    definitions: list[VisageDefinition] = field(default_factory=list)
    latch_cache: dict[str, bool] = field(default_factory=dict)

    def latch(self, definition_id: str) -> bool:
        return self.latch_cache.get(definition_id, False)


class AutomationRegistry:
    """
    Usage:
        registry = AutomationRegistry()
        await registry.build(scene, library)
        record = registry.get("token-1")
    """

    def __init__(self):
        self._records: dict[str, AutomationRecord] = {}

    async def build(self, entities: EntityAccessor, library: DefinitionLibrary) -> int:
        """
        Rescan every entity for automated definitions.

        Latches are copied from the live records after the scan, with no
        await in between, so a latch set while the scan was suspended is kept.

        Returns:
            Number of entities with at least one automated definition
        """
        scanned: list[tuple[str, list[VisageDefinition]]] = []
        for entity_id in await entities.list_entities():
            owner_id = await entities.owner_of(entity_id)
            definitions = await library.automated_for(owner_id)
            if definitions:
                scanned.append((entity_id, definitions))

        records: dict[str, AutomationRecord] = {}
        for entity_id, definitions in scanned:
            old = self._records.get(entity_id)
            latches = {}
            if old is not None:
                for definition in definitions:
                    if definition.id in old.latch_cache:
                        latches[definition.id] = old.latch_cache[definition.id]
            records[entity_id] = AutomationRecord(entity_id, definitions, latches)

        self._records = records
        logger.info("Automation registry built: %d entit(ies) watched", len(records))
        return len(records)

    def teardown(self):
        self._records = {}

    def forget(self, entity_id: str):
        self._records.pop(entity_id, None)

    def get(self, entity_id: str) -> AutomationRecord | None:
        return self._records.get(entity_id)

    def set_latch(self, entity_id: str, definition_id: str, value: bool):
        record = self._records.get(entity_id)
        if record is not None:
            record.latch_cache[definition_id] = value

    def entity_ids(self) -> list[str]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)
