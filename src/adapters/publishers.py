"""Publisher combinators: no-op and fan-out."""

from __future__ import annotations

import logging
from typing import Iterable, List, Tuple

from core.errors import PublishError
from core.ports import PublisherPort

LOGGER = logging.getLogger(__name__)


class NullPublisher:
    """Publisher that only logs. Used when no target is configured."""

    def publish(self, topic: str, label: str) -> None:
        LOGGER.info("No publish target configured; %s would be set to %s", topic, label)


class FanOutPublisher:
    """Publish to every target, even if some of them fail.

    Raises a single PublishError naming the failed targets once all targets
    have been tried.
    """

    def __init__(self, targets: Iterable[Tuple[str, PublisherPort]]) -> None:
        self._targets = list(targets)

    def publish(self, topic: str, label: str) -> None:
        failures: List[str] = []
        for name, target in self._targets:
            try:
                target.publish(topic, label)
            except PublishError as exc:
                LOGGER.error("Target %s failed: %s", name, exc)
                failures.append(name)
        if failures:
            raise PublishError(f"Publishing failed for: {', '.join(failures)}")
