"""Reconciliation of a live observation with the persisted watermark.

A matching email that was seen once and then deleted or moved by the user must
not make the monitor report "no signal". The watermark keeps the newest
timestamp ever confirmed for a topic, and a live observation only replaces it
when it is strictly newer.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from core.models import Observation, ReconcileCase, Reconciliation, TopicState
from core.observation import age_in_days

LOGGER = logging.getLogger(__name__)


def reconcile(
    topic: str,
    observation: Observation,
    prior: Optional[TopicState],
    now: datetime,
) -> Reconciliation:
    """Decide what to report and what to persist for one topic.

    - No prior record: the observation is authoritative. A found observation
      yields a new watermark; a missing one reports the sentinel and creates
      nothing.
    - Observation strictly newer than the prior record: the observation wins
      and `prior` is moved forward in place.
    - Otherwise (including an empty inbox) the prior record wins and is left
      untouched. There is no live message to mark or move in that case.
    """

    if prior is None:
        if not observation.found:
            return Reconciliation(
                case=ReconcileCase.NO_SIGNAL,
                reported_timestamp=observation.timestamp,
                reported_age_days=observation.age_days,
                reported_found=False,
                should_post_process=False,
                active_message=None,
                watermark=None,
            )
        return Reconciliation(
            case=ReconcileCase.FIRST_SEEN,
            reported_timestamp=observation.timestamp,
            reported_age_days=observation.age_days,
            reported_found=True,
            should_post_process=True,
            active_message=observation.message,
            watermark=TopicState(topic=topic, timestamp=observation.timestamp),
        )

    # A sentinel timestamp is never confirmed evidence, even when the stored
    # watermark is older than the sentinel age.
    if observation.found and observation.timestamp > prior.timestamp:
        prior.timestamp = observation.timestamp
        return Reconciliation(
            case=ReconcileCase.NEWER,
            reported_timestamp=observation.timestamp,
            reported_age_days=observation.age_days,
            reported_found=True,
            should_post_process=True,
            active_message=observation.message,
            watermark=prior,
        )

    kept_age = age_in_days(prior.timestamp, now)
    LOGGER.info(
        "Inbox gave age %.1f days for %s, but a message from %s (age %.1f days) was already "
        "confirmed; keeping that",
        observation.age_days,
        topic,
        prior.timestamp.isoformat(),
        kept_age,
    )
    return Reconciliation(
        case=ReconcileCase.KEPT,
        reported_timestamp=prior.timestamp,
        reported_age_days=kept_age,
        reported_found=True,
        should_post_process=False,
        active_message=None,
        watermark=prior,
    )
