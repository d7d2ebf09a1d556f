"""
Pytest fixtures for Visage tests.

The engine is async; tests drive it with asyncio.run().
"""

import pytest

from ..automation.notifications import NotificationBus
from ..automation.registry import AutomationRegistry
from ..automation.evaluator import AutomationEvaluator
from ..definitions.definition import DefinitionScope, VisageDefinition
from ..definitions.library import DefinitionLibrary
from ..engine_core.changeset import Changeset, Disposition
from ..engine_core.composer import Composer
from ..engine_core.stack import StackOperations
from ..engine_core.state import LayerMode, TextureState, VisualState
from ..host.memory import MemoryScene, MemoryStore


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_definition(
    definition_id: str,
    mode: LayerMode = LayerMode.OVERLAY,
    automation=None,
    scope: DefinitionScope = DefinitionScope.GLOBAL,
    owner_id=None,
    **changes,
) -> VisageDefinition:
    """Build a definition from flat changeset keyword arguments."""
    return VisageDefinition(
        id=definition_id,
        label=definition_id.replace("-", " ").title(),
        mode=mode,
        changeset=Changeset(**changes),
        automation=automation,
        scope=scope,
        owner_id=owner_id,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def base_fields() -> VisualState:
    """A plain, unmodified token."""
    return VisualState(
        display_name="Aragorn",
        disposition=Disposition.FRIENDLY,
        texture=TextureState(src="tokens/aragorn.png", scale_x=1.0, scale_y=1.0),
        width=1.0,
        height=1.0,
    )


@pytest.fixture
def bus() -> NotificationBus:
    return NotificationBus()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def scene(bus) -> MemoryScene:
    return MemoryScene(bus=bus)


@pytest.fixture
def library(store, bus, clock) -> DefinitionLibrary:
    return DefinitionLibrary(store, bus, clock=clock)


@pytest.fixture
def composer(store, scene) -> Composer:
    return Composer(store, scene)


@pytest.fixture
def stack_ops(composer, library) -> StackOperations:
    return StackOperations(composer, library)


@pytest.fixture
def evaluator(stack_ops, library, scene, bus, clock) -> AutomationEvaluator:
    return AutomationEvaluator(
        AutomationRegistry(),
        stack_ops,
        library,
        entities=scene,
        conditions=scene,
        bus=bus,
        clock=clock,
    )
