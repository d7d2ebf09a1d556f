"""
Session Module - One scene, one engine, one authoritative writer.

A session:
- Wires store, scene, library, stack operations and automation
- Acquires the authority lease before writing anything
- Observes passively while another process holds the lease
"""

from .manager import SessionManager, Session, SessionState
from .lease import AuthorityLease

__all__ = [
    "SessionManager",
    "Session",
    "SessionState",
    "AuthorityLease",
]
