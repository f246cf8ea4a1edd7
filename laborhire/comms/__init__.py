"""
Laborhire Comms - messaging between workers and employers.

This package provides:
- Unified per-pair conversations with optimistic sending
- The unread message badge
"""

from laborhire.comms.messaging import EntryState, MessagingSystem, ThreadEntry, ThreadState
from laborhire.comms.notifications import UnreadCounter

__all__ = [
    "EntryState",
    "MessagingSystem",
    "ThreadEntry",
    "ThreadState",
    "UnreadCounter",
]
