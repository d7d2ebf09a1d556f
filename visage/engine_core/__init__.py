"""
Engine Core - Override state, resolution and stack mutation.

The core is the runtime that:
1. Describes overrides as typed changesets
2. Keeps a per-entity stack of layers over a base snapshot
3. Resolves the stack into the entity's visible fields
4. Mutates stacks one entity at a time
"""

from .errors import (
    VisageError,
    NotFound,
    ValidationFailure,
    DefinitionValidationError,
    PersistenceFailure,
    NotAuthoritative,
)
from .changeset import Changeset, Disposition, RingConfig, RingEffect
from .state import (
    BaseSnapshot,
    Layer,
    LayerMode,
    LiveFields,
    OverrideState,
    ResolvedState,
    TextureState,
    VisualState,
)
from .composer import Composer, resolve
from .stack import StackOperations, StackResult
from .locks import KeyedLock

__all__ = [
    "VisageError",
    "NotFound",
    "ValidationFailure",
    "DefinitionValidationError",
    "PersistenceFailure",
    "NotAuthoritative",
    "Changeset",
    "Disposition",
    "RingConfig",
    "RingEffect",
    "BaseSnapshot",
    "Layer",
    "LayerMode",
    "LiveFields",
    "OverrideState",
    "ResolvedState",
    "TextureState",
    "VisualState",
    "Composer",
    "resolve",
    "StackOperations",
    "StackResult",
    "KeyedLock",
]
