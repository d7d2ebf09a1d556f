"""
Session Manager - Wires the engine together for one shared scene.

A session owns:
- The store (memory or JSON files) and the scene it overrides
- The definition library
- Composer + stack operations
- Automation registry + evaluator, subscribed to the scene's bus
- The authority lease that decides whether this process may write

LIFECYCLE:
1. create_session() builds every component
2. await session.start() acquires the lease and starts automation
3. Notifications flow scene -> bus -> evaluator -> stack operations
4. end_session() stops automation and releases the lease
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
import logging
import time
import uuid

from ..automation.evaluator import AutomationEvaluator
from ..automation.notifications import NotificationBus
from ..automation.registry import AutomationRegistry
from ..config import VisageConfig
from ..definitions.library import DefinitionLibrary
from ..engine_core.composer import Composer
from ..engine_core.stack import StackOperations, StackResult
from ..host.file_store import JsonFileStore
from ..host.memory import MemoryScene, MemoryStore
from ..host.protocols import OverrideStore
from .lease import AuthorityLease

logger = logging.getLogger(__name__)


class SessionState(Enum):
    CREATED = "created"
    ACTIVE = "active"  # Holding the lease, automation running
    OBSERVING = "observing"  # Someone else holds the lease
    CLOSED = "closed"


@dataclass
class Session:
    """
    One scene with its override engine.

    Only the lease holder mutates state; an observing session reads only.
    """
    session_id: str
    holder_id: str
    store: OverrideStore
    scene: MemoryScene
    bus: NotificationBus
    lease: AuthorityLease
    library: DefinitionLibrary
    composer: Composer
    stack_ops: StackOperations
    registry: AutomationRegistry
    evaluator: AutomationEvaluator
    created_at: float = field(default_factory=time.time)
    state: SessionState = SessionState.CREATED

    @classmethod
    def build(
        cls,
        config: VisageConfig | None = None,
        store: OverrideStore | None = None,
        lease: AuthorityLease | None = None,
    ) -> Session:
        config = config or VisageConfig()
        if store is None:
            store = JsonFileStore(config.data_dir) if config.data_dir else MemoryStore()

        bus = NotificationBus()
        scene = MemoryScene(bus=bus)
        lease = lease or AuthorityLease(ttl=config.lease_ttl)
        library = DefinitionLibrary(store, bus, retention_days=config.bin_retention_days)
        composer = Composer(store, scene)
        stack_ops = StackOperations(composer, library, lease, config.authority_id)
        registry = AutomationRegistry()
        evaluator = AutomationEvaluator(
            registry,
            stack_ops,
            library,
            entities=scene,
            conditions=scene,
            bus=bus,
            lease=lease,
            holder_id=config.authority_id,
        )
        return cls(
            session_id=str(uuid.uuid4()),
            holder_id=config.authority_id,
            store=store,
            scene=scene,
            bus=bus,
            lease=lease,
            library=library,
            composer=composer,
            stack_ops=stack_ops,
            registry=registry,
            evaluator=evaluator,
        )

    @property
    def is_authoritative(self) -> bool:
        return self.lease.is_holder(self.holder_id)

    def is_active(self) -> bool:
        return self.state in {SessionState.CREATED, SessionState.ACTIVE, SessionState.OBSERVING}

    async def start(self) -> bool:
        """
        Try to become the authoritative writer and start automation.

        Returns:
            True if this session holds the lease
        """
        if self.lease.acquire(self.holder_id):
            await self.library.run_garbage_collection()
            await self.evaluator.start()
            self.state = SessionState.ACTIVE
            logger.info("Session %s is authoritative as %s", self.session_id, self.holder_id)
            return True
        self.state = SessionState.OBSERVING
        logger.info("Session %s observing, lease held by %s", self.session_id, self.lease.holder)
        return False

    def heartbeat(self) -> bool:
        """Renew the lease; drops to observing if it was lost."""
        if self.lease.renew(self.holder_id):
            return True
        if self.state == SessionState.ACTIVE:
            logger.warning("Session %s lost the authority lease", self.session_id)
            self.state = SessionState.OBSERVING
        return False

    async def operator_edit(self, entity_id: str, edits: dict[str, Any]) -> StackResult:
        """
        Handle a manual edit of an entity's visual fields.

        Raises:
            NotAuthoritative: If another holder has the lease
        """
        return await self.stack_ops.operator_edit(entity_id, edits)

    def close(self):
        self.evaluator.teardown()
        self.lease.release(self.holder_id)
        self.state = SessionState.CLOSED


class SessionManager:
    """
    Tracks live sessions.

    Usage:
        manager = SessionManager(VisageConfig.from_env())
        session = manager.create_session()
        await session.start()
    """

    def __init__(self, config: VisageConfig | None = None):
        self.config = config or VisageConfig()
        self._sessions: dict[str, Session] = {}

    def create_session(
        self,
        store: OverrideStore | None = None,
        lease: AuthorityLease | None = None,
    ) -> Session:
        session = Session.build(self.config, store=store, lease=lease)
        self._sessions[session.session_id] = session
        return session

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def end_session(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        return True

    def list_active_sessions(self) -> list[str]:
        return [sid for sid, session in self._sessions.items() if session.is_active()]
