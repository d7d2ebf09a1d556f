"""
Authority Lease - Exactly one writer per shared session.

Automation and composition write shared state, so only the lease holder
may run them. Every other participant observes the results passively.
A lease expires unless renewed; an expired lease can be taken over.
"""

from __future__ import annotations
from typing import Callable
import logging
import time

from ..engine_core.errors import NotAuthoritative

logger = logging.getLogger(__name__)


class AuthorityLease:
    """
    Time-limited single-holder lease.

    Usage:
        lease = AuthorityLease(ttl=30)
        if lease.acquire("gm-client"):
            ...
        lease.renew("gm-client")
    """

    def __init__(self, ttl: float = 30.0, clock: Callable[[], float] = time.monotonic):
        if ttl <= 0:
            raise ValueError("Lease ttl must be positive")
        self.ttl = ttl
        self._clock = clock
        self._holder: str | None = None
        self._expires_at = 0.0

    @property
    def holder(self) -> str | None:
        """Current holder, or None if the lease is free or expired."""
        if self._holder is not None and self._clock() >= self._expires_at:
            return None
        return self._holder

    def acquire(self, holder_id: str) -> bool:
        """Take the lease if it is free, expired, or already ours."""
        current = self.holder
        if current is not None and current != holder_id:
            return False
        if current is None and self._holder not in (None, holder_id):
            logger.warning("Lease of %s expired, taken over by %s", self._holder, holder_id)
        self._holder = holder_id
        self._expires_at = self._clock() + self.ttl
        return True

    def renew(self, holder_id: str) -> bool:
        """Extend the lease. Fails if someone else holds it or it has expired."""
        if self.holder != holder_id:
            return False
        self._expires_at = self._clock() + self.ttl
        return True

    def release(self, holder_id: str):
        if self._holder == holder_id:
            self._holder = None
            self._expires_at = 0.0

    def is_holder(self, holder_id: str) -> bool:
        return self.holder == holder_id

    def ensure(self, holder_id: str):
        """Raise NotAuthoritative unless ``holder_id`` holds the lease."""
        if not self.is_holder(holder_id):
            raise NotAuthoritative(holder_id, self.holder)
