"""
Host - The engine's view of its surroundings, plus ready-made hosts.
"""

from .protocols import OverrideStore, EntityAccessor, ConditionSource
from .memory import MemoryStore, MemoryScene, SceneEntity
from .file_store import JsonFileStore

__all__ = [
    "OverrideStore",
    "EntityAccessor",
    "ConditionSource",
    "MemoryStore",
    "MemoryScene",
    "SceneEntity",
    "JsonFileStore",
]
