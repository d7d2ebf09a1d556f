"""
File Store - OverrideStore persisted as JSON files on local disk.

Layout:
    <data_dir>/states/<entity_id>.json
    <data_dir>/definitions/<definition_id>.json

Design decisions:
- One file per record, replaced atomically (write temp file, then rename)
- An empty override state deletes the entity's file
- I/O runs in a worker thread so the event loop is never blocked
"""

from __future__ import annotations
from pathlib import Path
from typing import Any
import asyncio
import hashlib
import json
import os
import re

from ..definitions.definition import VisageDefinition
from ..engine_core.errors import PersistenceFailure
from ..engine_core.state import OverrideState

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")


class JsonFileStore:
    """
    Usage:
        store = JsonFileStore(data_dir="~/.visage")
        state = await store.load_override_state("token-1")
    """

    def __init__(self, data_dir: str | Path | None = None):
        if data_dir is None:
            data_dir = Path.home() / ".visage"
        self.data_dir = Path(data_dir).expanduser()
        self.states_dir = self.data_dir / "states"
        self.definitions_dir = self.data_dir / "definitions"

        self.states_dir.mkdir(parents=True, exist_ok=True)
        self.definitions_dir.mkdir(parents=True, exist_ok=True)

    async def load_override_state(self, entity_id: str) -> OverrideState:
        data = await self._read(self._state_path(entity_id), "load_override_state", entity_id)
        return OverrideState.from_dict(data)

    async def save_override_state(self, entity_id: str, state: OverrideState) -> None:
        path = self._state_path(entity_id)
        if state.is_empty:
            await self._remove(path, "save_override_state", entity_id)
        else:
            await self._write(path, state.to_dict(), "save_override_state", entity_id)

    async def load_definition(self, definition_id: str) -> VisageDefinition | None:
        data = await self._read(self._definition_path(definition_id), "load_definition", definition_id)
        return VisageDefinition.from_dict(data) if data is not None else None

    async def save_definition(self, definition: VisageDefinition) -> None:
        await self._write(
            self._definition_path(definition.id),
            definition.to_dict(),
            "save_definition",
            definition.id,
        )

    async def delete_definition(self, definition_id: str) -> bool:
        return await self._remove(
            self._definition_path(definition_id), "delete_definition", definition_id
        )

    async def list_definitions(self) -> list[VisageDefinition]:
        definitions = []
        for path in sorted(self.definitions_dir.glob("*.json")):
            data = await self._read(path, "list_definitions", path.stem)
            if data is not None:
                definitions.append(VisageDefinition.from_dict(data))
        return definitions

    # -- Paths --

    def _state_path(self, entity_id: str) -> Path:
        return self.states_dir / f"{self._file_key(entity_id)}.json"

    def _definition_path(self, definition_id: str) -> Path:
        return self.definitions_dir / f"{self._file_key(definition_id)}.json"

    @staticmethod
    def _file_key(identifier: str) -> str:
        """Ids that are not filename-safe are stored under their hash."""
        if _SAFE_NAME.match(identifier):
            return identifier
        return hashlib.sha256(identifier.encode("utf-8")).hexdigest()[:32]

    # -- I/O --

    async def _read(self, path: Path, operation: str, identifier: str) -> dict[str, Any] | None:
        def read() -> dict[str, Any] | None:
            if not path.exists():
                return None
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)

        try:
            return await asyncio.to_thread(read)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceFailure(operation, identifier, e) from e

    async def _write(self, path: Path, data: dict[str, Any], operation: str, identifier: str):
        def write():
            tmp_path = path.with_suffix(".json.tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, path)

        try:
            await asyncio.to_thread(write)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceFailure(operation, identifier, e) from e

    async def _remove(self, path: Path, operation: str, identifier: str) -> bool:
        def remove() -> bool:
            if not path.exists():
                return False
            path.unlink()
            return True

        try:
            return await asyncio.to_thread(remove)
        except OSError as e:
            raise PersistenceFailure(operation, identifier, e) from e
