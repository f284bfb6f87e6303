"""Watermark persistence (core domain).

The store keeps one TopicState per topic in memory and serializes the whole
StateFile through a StateMediumPort. Records hold absolute timestamps. Files
that only keep an age per topic (`States`/`MqttTopic`/`AgeInDays`) are
converted on load, measured from `saved_at` or else from the time the medium
was last written.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional

from core.errors import StateLoadError, StatePersistError
from core.models import TopicState
from core.ports import StateMediumPort

LOGGER = logging.getLogger(__name__)

FORMAT_VERSION = 1


@dataclass
class StateFile:
    """Aggregate of all persisted watermarks."""

    states: List[TopicState] = field(default_factory=list)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_timestamp(raw: Any, where: str) -> datetime:
    if not isinstance(raw, str):
        raise StateLoadError(f"{where} must be an ISO-8601 string")
    try:
        return _as_utc(datetime.fromisoformat(raw))
    except ValueError as exc:
        raise StateLoadError(f"{where} is not a valid timestamp: {raw!r}") from exc


def _parse_record(raw: Any, index: int, saved_at: Optional[datetime]) -> TopicState:
    where = f"states[{index}]"
    if not isinstance(raw, dict):
        raise StateLoadError(f"{where} must be an object")

    topic = raw.get("topic", raw.get("MqttTopic"))
    if not isinstance(topic, str) or not topic:
        raise StateLoadError(f"{where}.topic is missing")

    if "timestamp" in raw:
        return TopicState(topic=topic, timestamp=_parse_timestamp(raw["timestamp"], f"{where}.timestamp"))

    age = raw.get("age_days", raw.get("AgeInDays"))
    if age is None:
        raise StateLoadError(f"{where} has neither timestamp nor age_days")
    if isinstance(age, bool) or not isinstance(age, (int, float)):
        raise StateLoadError(f"{where}.age_days must be a number")
    if saved_at is None:
        raise StateLoadError(f"{where} stores an age but its save time is unknown")
    return TopicState(topic=topic, timestamp=saved_at - timedelta(days=float(age)))


def parse_state_file(data: bytes, modified_at: Optional[datetime] = None) -> StateFile:
    """Decode a serialized StateFile, raising StateLoadError when malformed.

    `modified_at` anchors age-only records when the payload has no `saved_at`.
    """

    try:
        payload = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise StateLoadError(f"State is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise StateLoadError("State must be a JSON object")

    saved_at = _as_utc(modified_at) if modified_at is not None else None
    if payload.get("saved_at") is not None:
        saved_at = _parse_timestamp(payload["saved_at"], "saved_at")

    raw_states = payload.get("states", payload.get("States", []))
    if not isinstance(raw_states, list):
        raise StateLoadError("states must be a list")

    return StateFile(states=[_parse_record(raw, i, saved_at) for i, raw in enumerate(raw_states)])


def serialize_state_file(state_file: StateFile, saved_at: datetime) -> bytes:
    payload = {
        "version": FORMAT_VERSION,
        "saved_at": saved_at.isoformat(),
        "states": [
            {"topic": state.topic, "timestamp": state.timestamp.isoformat()}
            for state in state_file.states
        ],
    }
    return json.dumps(payload, indent=2).encode("utf-8")


class StateStore:
    """In-memory StateFile backed by a StateMediumPort."""

    def __init__(
        self,
        medium: StateMediumPort,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._medium = medium
        self._clock = clock
        self._state_file = StateFile()

    @property
    def state_file(self) -> StateFile:
        return self._state_file

    def load(self) -> StateFile:
        """Replace the in-memory state with the persisted one.

        A medium with nothing stored yet (first run) yields an empty StateFile.
        """

        try:
            data = self._medium.read()
            modified_at = self._medium.modified_at() if data is not None else None
        except OSError as exc:
            raise StateLoadError(f"Cannot read state: {exc}") from exc

        self._state_file = StateFile() if data is None else parse_state_file(data, modified_at)
        LOGGER.info("Loaded %s saved topic state(s)", len(self._state_file.states))
        return self._state_file

    def load_or_empty(self) -> StateFile:
        """Load, or log the failure and start empty.

        Losing the watermarks only risks one cycle of "no signal" reports.
        """

        try:
            return self.load()
        except StateLoadError as exc:
            LOGGER.error("Failed loading saved state, starting empty: %s", exc)
            self._state_file = StateFile()
            return self._state_file

    def find_by_topic(self, topic: str) -> Optional[TopicState]:
        for state in self._state_file.states:
            if state.topic == topic:
                return state
        return None

    def upsert(self, topic: str, timestamp: datetime) -> TopicState:
        """Update the topic's timestamp in place, or append a new record."""

        existing = self.find_by_topic(topic)
        if existing is not None:
            existing.timestamp = timestamp
            return existing
        state = TopicState(topic=topic, timestamp=timestamp)
        self._state_file.states.append(state)
        return state

    def save(self) -> None:
        """Write the full StateFile. In-memory state is kept if this fails."""

        data = serialize_state_file(self._state_file, self._clock())
        try:
            self._medium.write(data)
        except OSError as exc:
            raise StatePersistError(f"Cannot write state: {exc}") from exc
        LOGGER.debug("Saved %s topic state(s)", len(self._state_file.states))
