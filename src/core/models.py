"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class CandidateMessage:
    """Minimal message view used by the core.

    `handle` is opaque to the core; the mailbox adapter that produced the
    message uses it to mark or move the message later.
    """

    sender: str
    subject: str
    timestamp: datetime
    handle: Any = None


@dataclass(frozen=True)
class Observation:
    """Result of one live inbox scan for one account."""

    found: bool
    timestamp: datetime
    age_days: float
    message: Optional[CandidateMessage] = None


@dataclass
class TopicState:
    """Persisted watermark: the newest timestamp ever confirmed for a topic."""

    topic: str
    timestamp: datetime


class ReconcileCase(str, enum.Enum):
    """Which branch of the reconciliation decided the reported freshness."""

    FIRST_SEEN = "first_seen"
    NO_SIGNAL = "no_signal"
    NEWER = "newer"
    KEPT = "kept"


@dataclass(frozen=True)
class Reconciliation:
    """Decision produced by merging an observation with the watermark."""

    case: ReconcileCase
    reported_timestamp: datetime
    reported_age_days: float
    reported_found: bool
    should_post_process: bool
    active_message: Optional[CandidateMessage]
    watermark: Optional[TopicState]
