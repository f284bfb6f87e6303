"""Ports (interfaces) used by the core monitor cycle.

Ports define the minimal contracts for mailbox, publishing and state adapters
so that the core can be reused with different backends.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional, Protocol

from core.config import MonitoredAccount
from core.models import CandidateMessage

# Zero-argument callable returning a timezone-aware "now".
Clock = Callable[[], datetime]


class MailboxSession(Protocol):
    """An open mailbox for one account. Every method may raise MailboxAccessError."""

    def list_unread_candidates(self) -> List[CandidateMessage]:
        ...

    def mark_read(self, message: CandidateMessage) -> None:
        ...

    def resolve_folder(self, name: str) -> Optional[str]:
        ...

    def create_folder(self, name: str) -> str:
        ...

    def move_to_folder(self, message: CandidateMessage, folder: str) -> None:
        ...

    def close(self) -> None:
        ...


class MailboxPort(Protocol):
    """Opens mailbox sessions; raises MailboxAccessError when it cannot."""

    def open(self, account: MonitoredAccount) -> MailboxSession:
        ...


class PublisherPort(Protocol):
    """Delivers a freshness label for a topic; raises PublishError on failure."""

    def publish(self, topic: str, label: str) -> None:
        ...


class StateMediumPort(Protocol):
    """Byte-level storage for the serialized state file."""

    def read(self) -> Optional[bytes]:
        """Return the stored bytes, or None when nothing was stored yet."""

        ...

    def write(self, data: bytes) -> None:
        ...

    def modified_at(self) -> Optional[datetime]:
        """Return when the stored bytes were last written, if known."""

        ...
