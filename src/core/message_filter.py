"""Candidate selection for one monitored account (core domain)."""

from __future__ import annotations

import logging
from typing import Iterable, List

from core.config import MonitoredAccount
from core.models import CandidateMessage

LOGGER = logging.getLogger(__name__)


def sender_matches(message: CandidateMessage, sender: str) -> bool:
    """Case-insensitive containment of the configured sender in the address."""

    address = (message.sender or "").lower()
    needle = sender.lower()
    return bool(address) and bool(needle) and needle in address


def subject_matches(message: CandidateMessage, whitelist: Iterable[str]) -> bool:
    """True if the subject contains any whitelisted word, ignoring case.

    Callers skip this check entirely when the whitelist is empty.
    """

    subject = (message.subject or "").lower()
    if not subject:
        return False
    return any(word.lower() in subject for word in whitelist if word)


def filter_candidates(
    messages: Iterable[CandidateMessage], account: MonitoredAccount
) -> List[CandidateMessage]:
    """Return the messages that belong to the account's monitored source.

    Matching logic:
    - The sender must contain `account.sender` (case-insensitive).
    - If `account.subject_whitelist` is non-empty, the subject must contain
      at least one of its words (case-insensitive as well).
    Input order is preserved.
    """

    LOGGER.debug("Filtering by sender %r", account.sender)
    candidates = [message for message in messages if sender_matches(message, account.sender)]
    LOGGER.debug("%s messages left", len(candidates))

    if account.subject_whitelist:
        LOGGER.debug("Filtering by subject whitelist: %s", ", ".join(account.subject_whitelist))
        candidates = [
            message
            for message in candidates
            if subject_matches(message, account.subject_whitelist)
        ]
        LOGGER.debug("%s messages left", len(candidates))

    return candidates
