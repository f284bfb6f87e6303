from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from adapters.http_publisher import HomenetPublisher
from core.config import MonitoredAccount, RatingRule
from core.errors import MailboxAccessError, PublishError
from core.models import CandidateMessage, ReconcileCase
from core.monitor import MonitorCycle
from core.rating import RatingTable
from core.state_store import StateStore

START = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeSession:
    def __init__(self, mailbox: "FakeMailbox") -> None:
        self._mailbox = mailbox

    def list_unread_candidates(self) -> list[CandidateMessage]:
        return list(self._mailbox.inbox)

    def mark_read(self, message: CandidateMessage) -> None:
        self._mailbox.marked.append(message.handle)

    def resolve_folder(self, name: str) -> Optional[str]:
        return name if name in self._mailbox.folders else None

    def create_folder(self, name: str) -> str:
        self._mailbox.folders.add(name)
        self._mailbox.created.append(name)
        return name

    def move_to_folder(self, message: CandidateMessage, folder: str) -> None:
        if self._mailbox.fail_move:
            raise MailboxAccessError("move refused")
        self._mailbox.moved.append((message.handle, folder))

    def close(self) -> None:
        self._mailbox.closed += 1


class FakeMailbox:
    def __init__(self) -> None:
        self.inbox: list[CandidateMessage] = []
        self.folders: set[str] = set()
        self.marked: list[int] = []
        self.moved: list[tuple[int, str]] = []
        self.created: list[str] = []
        self.closed = 0
        self.unreachable: set[str] = set()
        self.fail_move = False

    def open(self, account: MonitoredAccount) -> FakeSession:
        if account.name in self.unreachable:
            raise MailboxAccessError("login failed")
        return FakeSession(self)


class FakePublisher:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail = False

    def publish(self, topic: str, label: str) -> None:
        if self.fail:
            raise PublishError("broker down")
        self.sent.append((topic, label))


class MemoryMedium:
    def __init__(self) -> None:
        self.data: Optional[bytes] = None
        self.modified: Optional[datetime] = None
        self.writes = 0
        self.fail_write = False

    def read(self) -> Optional[bytes]:
        return self.data

    def write(self, data: bytes) -> None:
        if self.fail_write:
            raise OSError("read-only file system")
        self.writes += 1
        self.data = data

    def modified_at(self) -> Optional[datetime]:
        return self.modified


def _account(**overrides) -> MonitoredAccount:
    values = dict(name="nas", sender="backup@example.com", topic="health/nas")
    values.update(overrides)
    return MonitoredAccount(**values)


def _message(timestamp: datetime, handle: int, subject: str = "Backup OK") -> CandidateMessage:
    return CandidateMessage(
        sender="NAS <backup@example.com>",
        subject=subject,
        timestamp=timestamp,
        handle=handle,
    )


def _ratings() -> RatingTable:
    return RatingTable(
        [
            RatingRule(max_age_days=1, label="fresh"),
            RatingRule(max_age_days=7, label="stale"),
            RatingRule(max_age_days=30, label="dead"),
        ]
    )


def _cycle(
    mailbox: FakeMailbox,
    publisher: FakePublisher,
    medium: MemoryMedium,
    clock: FakeClock,
    accounts: Optional[list[MonitoredAccount]] = None,
    report_missing: bool = True,
) -> tuple[MonitorCycle, StateStore]:
    store = StateStore(medium, clock=clock)
    store.load()
    cycle = MonitorCycle(
        accounts=accounts or [_account(mark_read=True, move_to_folder=True, destination_folder="HealthCheck")],
        mailbox=mailbox,
        publisher=publisher,
        store=store,
        ratings=_ratings(),
        clock=clock,
        report_missing=report_missing,
    )
    return cycle, store


def test_message_seen_deleted_then_replaced() -> None:
    mailbox = FakeMailbox()
    publisher = FakePublisher()
    medium = MemoryMedium()
    clock = FakeClock(START)
    two_days_old = START - timedelta(days=2)
    mailbox.inbox.append(_message(two_days_old, handle=1))

    # Cycle 1: first sighting of a 2-day-old message.
    cycle, store = _cycle(mailbox, publisher, medium, clock)
    report = cycle.run_cycle()
    outcome = report.outcomes[0]
    assert outcome.case is ReconcileCase.FIRST_SEEN
    assert outcome.age_days == pytest.approx(2)
    assert publisher.sent == [("health/nas", "stale")]
    assert store.find_by_topic("health/nas").timestamp == two_days_old
    assert mailbox.marked == [1]
    assert mailbox.moved == [(1, "HealthCheck")]
    assert mailbox.created == ["HealthCheck"]
    assert report.state_saved and medium.writes == 1

    # Cycle 2: the user deleted the message; the watermark still reports it.
    mailbox.inbox.clear()
    clock.now = START + timedelta(hours=6)
    cycle, store = _cycle(mailbox, publisher, medium, clock)
    outcome = cycle.run_cycle().outcomes[0]
    assert outcome.case is ReconcileCase.KEPT
    assert outcome.age_days == pytest.approx(2.25)
    assert publisher.sent[-1] == ("health/nas", "stale")
    assert mailbox.marked == [1]
    assert mailbox.moved == [(1, "HealthCheck")]

    # Cycle 3: a brand-new message arrives.
    mailbox.inbox.append(_message(clock.now, handle=2))
    outcome = cycle.run_cycle().outcomes[0]
    assert outcome.case is ReconcileCase.NEWER
    assert outcome.label == "fresh"
    assert store.find_by_topic("health/nas").timestamp == clock.now
    assert mailbox.marked == [1, 2]
    assert mailbox.moved[-1] == (2, "HealthCheck")
    assert mailbox.created == ["HealthCheck"]
    assert mailbox.closed == 3


def test_filtered_out_subject_behaves_like_empty_inbox() -> None:
    mailbox = FakeMailbox()
    publisher = FakePublisher()
    mailbox.inbox.append(_message(START, handle=1, subject="Status Wednesday"))
    account = _account(subject_whitelist=("Monday", "Tuesday"), mark_read=True)

    cycle, store = _cycle(mailbox, publisher, MemoryMedium(), FakeClock(START), accounts=[account])
    outcome = cycle.run_cycle().outcomes[0]

    assert outcome.case is ReconcileCase.NO_SIGNAL
    assert publisher.sent == [("health/nas", "999")]
    assert store.find_by_topic("health/nas") is None
    assert mailbox.marked == []


def test_report_missing_disabled_stays_silent() -> None:
    mailbox = FakeMailbox()
    publisher = FakePublisher()
    cycle, _ = _cycle(mailbox, publisher, MemoryMedium(), FakeClock(START), report_missing=False)
    report = cycle.run_cycle()

    assert publisher.sent == []
    assert report.publish_failures == 0
    assert not report.outcomes[0].published


def test_unreachable_account_is_skipped_and_others_continue() -> None:
    mailbox = FakeMailbox()
    mailbox.unreachable.add("broken")
    mailbox.inbox.append(_message(START, handle=1))
    publisher = FakePublisher()
    accounts = [
        _account(name="broken", topic="health/broken"),
        _account(name="nas", topic="health/nas"),
    ]

    cycle, _ = _cycle(mailbox, publisher, MemoryMedium(), FakeClock(START), accounts=accounts)
    report = cycle.run_cycle()

    assert report.skipped == ["broken"]
    assert [o.account for o in report.outcomes] == ["nas"]
    assert publisher.sent == [("health/nas", "fresh")]
    assert report.state_saved


def test_nothing_saved_when_every_account_was_skipped() -> None:
    mailbox = FakeMailbox()
    mailbox.unreachable.add("nas")
    medium = MemoryMedium()
    cycle, _ = _cycle(mailbox, FakePublisher(), medium, FakeClock(START))
    report = cycle.run_cycle()

    assert report.processed == 0
    assert not report.state_saved
    assert medium.writes == 0


def test_publish_failure_does_not_change_state_decisions() -> None:
    mailbox = FakeMailbox()
    mailbox.inbox.append(_message(START - timedelta(days=1), handle=1))
    publisher = FakePublisher()
    publisher.fail = True

    cycle, store = _cycle(mailbox, publisher, MemoryMedium(), FakeClock(START))
    report = cycle.run_cycle()

    assert report.publish_failures == 1
    assert report.outcomes[0].publish_failed
    assert store.find_by_topic("health/nas") is not None
    assert mailbox.marked == [1]
    assert report.state_saved


def test_persist_failure_is_reported_not_raised() -> None:
    mailbox = FakeMailbox()
    mailbox.inbox.append(_message(START, handle=1))
    medium = MemoryMedium()
    medium.fail_write = True

    cycle, store = _cycle(mailbox, FakePublisher(), medium, FakeClock(START))
    report = cycle.run_cycle()

    assert not report.state_saved
    assert store.find_by_topic("health/nas").timestamp == START


def test_failed_move_keeps_outcome_and_closes_session() -> None:
    mailbox = FakeMailbox()
    mailbox.fail_move = True
    mailbox.inbox.append(_message(START, handle=1))

    cycle, _ = _cycle(mailbox, FakePublisher(), MemoryMedium(), FakeClock(START))
    report = cycle.run_cycle()

    assert report.skipped == []
    assert report.outcomes[0].marked_read is True
    assert report.outcomes[0].moved_to is None
    assert mailbox.marked == [1]
    assert mailbox.closed == 1


def test_existing_folder_is_reused() -> None:
    mailbox = FakeMailbox()
    mailbox.folders.add("HealthCheck")
    mailbox.inbox.append(_message(START, handle=1))

    cycle, _ = _cycle(mailbox, FakePublisher(), MemoryMedium(), FakeClock(START))
    cycle.run_cycle()

    assert mailbox.created == []
    assert mailbox.moved == [(1, "HealthCheck")]


def test_no_accounts_is_a_quiet_cycle() -> None:
    medium = MemoryMedium()
    store = StateStore(medium)
    cycle = MonitorCycle([], FakeMailbox(), FakePublisher(), store, _ratings())
    report = cycle.run_cycle()

    assert report.processed == 0
    assert medium.writes == 0


def test_rejected_homenet_url_does_not_abort_the_cycle() -> None:
    mailbox = FakeMailbox()
    mailbox.inbox.append(_message(START - timedelta(days=1), handle=1))
    medium = MemoryMedium()
    store = StateStore(medium, clock=FakeClock(START))
    accounts = [
        _account(name="nas", topic="health/nas"),
        _account(name="alice", topic="health/alice"),
    ]
    cycle = MonitorCycle(
        accounts=accounts,
        mailbox=mailbox,
        publisher=HomenetPublisher("homenet.local/api"),
        store=store,
        ratings=_ratings(),
        clock=FakeClock(START),
    )

    report = cycle.run_cycle()

    assert report.processed == 2
    assert report.publish_failures == 2
    assert report.state_saved and medium.writes == 1
    assert store.find_by_topic("health/alice").timestamp == START - timedelta(days=1)
