"""Core monitor cycle.

This module is integration-agnostic. It only relies on ports for the mailbox,
publishing and the state medium, enabling other transports without changes
here.

Per account the cycle enforces a strict order:
1) Open the mailbox and list unread candidates
2) Filter by sender and subject whitelist
3) Build the observation (newest message, age)
4) Reconcile with the persisted watermark
5) Rate the reported age and publish the label
6) Mark read / move the live message, if any
The state is saved once, after every account has been handled.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from core.config import MonitoredAccount
from core.errors import MailboxAccessError, PublishError, StatePersistError
from core.message_filter import filter_candidates
from core.models import CandidateMessage, ReconcileCase
from core.observation import SENTINEL_AGE_DAYS, build_observation, utc_now
from core.ports import Clock, MailboxPort, MailboxSession, PublisherPort
from core.rating import RatingTable
from core.reconcile import reconcile
from core.state_store import StateStore

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountOutcome:
    """What one account produced during a cycle."""

    account: str
    topic: str
    case: ReconcileCase
    age_days: float
    label: str
    published: bool
    publish_failed: bool = False
    marked_read: bool = False
    moved_to: Optional[str] = None


@dataclass
class CycleReport:
    """Summary of a full pass over all accounts."""

    outcomes: List[AccountOutcome] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    publish_failures: int = 0
    state_saved: bool = False

    @property
    def processed(self) -> int:
        return len(self.outcomes)


class MonitorCycle:
    """Orchestrates filtering, reconciliation, rating, publishing and persistence."""

    def __init__(
        self,
        accounts: Iterable[MonitoredAccount],
        mailbox: MailboxPort,
        publisher: PublisherPort,
        store: StateStore,
        ratings: RatingTable,
        clock: Clock = utc_now,
        report_missing: bool = True,
        sentinel_days: float = SENTINEL_AGE_DAYS,
    ) -> None:
        self._accounts = list(accounts)
        self._mailbox = mailbox
        self._publisher = publisher
        self._store = store
        self._ratings = ratings
        self._clock = clock
        self._report_missing = report_missing
        self._sentinel_days = sentinel_days

        duplicates = [topic for topic, count in Counter(a.topic for a in self._accounts).items() if count > 1]
        if duplicates:
            LOGGER.warning("Topics shared by several accounts will overwrite each other: %s", ", ".join(duplicates))

    def run_cycle(self) -> CycleReport:
        """Process every account once, then persist the state."""

        report = CycleReport()
        for account in self._accounts:
            LOGGER.debug("----------------- Account %s -----------------", account.name)
            try:
                outcome = self.process_account(account)
            except MailboxAccessError as exc:
                LOGGER.warning("Skipping account %s this cycle: %s", account.name, exc)
                report.skipped.append(account.name)
                continue
            report.outcomes.append(outcome)
            if outcome.publish_failed:
                report.publish_failures += 1

        # Nothing changed if every account was skipped.
        if report.processed:
            try:
                self._store.save()
                report.state_saved = True
            except StatePersistError as exc:
                LOGGER.error("State not persisted, keeping it in memory: %s", exc)

        LOGGER.info(
            "Cycle complete: processed=%s, skipped=%s, publish_failures=%s",
            report.processed,
            len(report.skipped),
            report.publish_failures,
        )
        return report

    def process_account(self, account: MonitoredAccount) -> AccountOutcome:
        """Run the strict per-account pipeline. Raises MailboxAccessError."""

        session = self._mailbox.open(account)
        try:
            messages = session.list_unread_candidates()
            LOGGER.debug("%s unread messages", len(messages))

            candidates = filter_candidates(messages, account)
            now = self._clock()
            observation = build_observation(candidates, now, self._sentinel_days)

            result = reconcile(account.topic, observation, self._store.find_by_topic(account.topic), now)
            if result.case in (ReconcileCase.FIRST_SEEN, ReconcileCase.NEWER):
                self._store.upsert(account.topic, result.reported_timestamp)

            label = self._ratings.classify(result.reported_age_days)
            if result.reported_found:
                LOGGER.info(
                    "Inbox %s: newest message is %.1f days old, rating is '%s'",
                    account.name,
                    result.reported_age_days,
                    label,
                )
            else:
                LOGGER.warning(
                    "Inbox %s: no messages found, age %.1f days, rating is '%s'",
                    account.name,
                    result.reported_age_days,
                    label,
                )

            published = False
            attempted = result.reported_found or self._report_missing
            if attempted:
                published = self._publish(account.topic, label)

            marked_read = False
            moved_to = None
            if result.should_post_process and result.active_message is not None:
                marked_read, moved_to = self._post_process(session, account, result.active_message)

            return AccountOutcome(
                account=account.name,
                topic=account.topic,
                case=result.case,
                age_days=result.reported_age_days,
                label=label,
                published=published,
                publish_failed=attempted and not published,
                marked_read=marked_read,
                moved_to=moved_to,
            )
        finally:
            self._close(session, account)

    def _publish(self, topic: str, label: str) -> bool:
        # Publishing is best effort; the watermark decision already happened.
        try:
            self._publisher.publish(topic, label)
        except PublishError as exc:
            LOGGER.error("Publishing %r to %s failed: %s", label, topic, exc)
            return False
        return True

    def _post_process(
        self,
        session: MailboxSession,
        account: MonitoredAccount,
        message: CandidateMessage,
    ) -> tuple[bool, Optional[str]]:
        """Mark read, then move. Returns what actually succeeded."""

        marked_read = False
        moved_to = None
        try:
            if account.mark_read:
                LOGGER.info("Marking message as read")
                session.mark_read(message)
                marked_read = True

            if account.move_to_folder and account.destination_folder:
                folder = session.resolve_folder(account.destination_folder)
                if folder is None:
                    LOGGER.warning("Folder '%s' does not exist. Creating it now.", account.destination_folder)
                    folder = session.create_folder(account.destination_folder)
                LOGGER.info("Moving the message to folder '%s'", folder)
                session.move_to_folder(message, folder)
                moved_to = folder
        except MailboxAccessError as exc:
            LOGGER.error("Post-processing for %s failed: %s", account.name, exc)

        return marked_read, moved_to

    @staticmethod
    def _close(session: MailboxSession, account: MonitoredAccount) -> None:
        try:
            session.close()
        except MailboxAccessError as exc:
            LOGGER.warning("Closing mailbox %s failed: %s", account.name, exc)
