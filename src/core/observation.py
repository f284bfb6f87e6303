"""Observation building: pick the newest candidate and compute its age."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Sequence

from core.models import CandidateMessage, Observation

LOGGER = logging.getLogger(__name__)

# Age reported when no candidate exists and nothing was ever confirmed.
SENTINEL_AGE_DAYS = 999.0

_SECONDS_PER_DAY = 86400.0


def utc_now() -> datetime:
    """Default clock for the monitor."""

    return datetime.now(timezone.utc)


def age_in_days(timestamp: datetime, now: datetime) -> float:
    """Fractional days between `timestamp` and `now` (not truncated)."""

    return (now - timestamp).total_seconds() / _SECONDS_PER_DAY


def build_observation(
    candidates: Sequence[CandidateMessage],
    now: datetime,
    sentinel_days: float = SENTINEL_AGE_DAYS,
) -> Observation:
    """Return an Observation for the newest candidate, or a not-found one.

    `sorted` is stable, so candidates sharing the newest timestamp resolve to
    the one that appeared first in the input.
    """

    if not candidates:
        LOGGER.debug("No messages found, taking age %.1f", sentinel_days)
        return Observation(
            found=False,
            timestamp=now - timedelta(days=sentinel_days),
            age_days=float(sentinel_days),
            message=None,
        )

    ordered = sorted(candidates, key=lambda message: message.timestamp, reverse=True)
    LOGGER.debug("Newest %s messages:", min(5, len(ordered)))
    for message in ordered[:5]:
        LOGGER.debug("- %s   %s", message.timestamp.strftime("%Y-%m-%d %H:%M"), message.subject)

    newest = ordered[0]
    age = age_in_days(newest.timestamp, now)
    LOGGER.debug("Newest message is %.1f days old", age)
    return Observation(found=True, timestamp=newest.timestamp, age_days=age, message=newest)
