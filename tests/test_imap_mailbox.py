from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from imapclient import DELETED, SEEN
from imapclient.exceptions import IMAPClientError
from imapclient.response_types import Address, Envelope

from adapters.imap_mailbox import ImapMailboxSession, format_sender, message_from_fetch
from core.config import MonitoredAccount
from core.errors import MailboxAccessError
from core.models import CandidateMessage


def _envelope(date, subject=b"Backup OK", name=b"NAS", mailbox=b"backup", host=b"example.com") -> Envelope:
    return Envelope(
        date=date,
        subject=subject,
        from_=(Address(name, None, mailbox, host),),
        sender=None,
        reply_to=None,
        to=None,
        cc=None,
        bcc=None,
        in_reply_to=None,
        message_id=b"<1@example.com>",
    )


class FakeImapClient:
    def __init__(self, capabilities=()) -> None:
        self.capabilities = set(capabilities)
        self.responses: dict = {}
        self.calls: list[tuple] = []
        self.fail_search = False

    def search(self, criteria):
        if self.fail_search:
            raise IMAPClientError("connection reset")
        return list(self.responses)

    def fetch(self, uids, fields):
        return {uid: self.responses[uid] for uid in uids}

    def add_flags(self, uids, flags):
        self.calls.append(("add_flags", tuple(uids), tuple(flags)))

    def list_folders(self):
        return [((b"\\HasNoChildren",), b"/", "INBOX"), ((b"\\HasNoChildren",), b"/", "HealthCheck")]

    def create_folder(self, name):
        self.calls.append(("create_folder", name))

    def has_capability(self, name):
        return name in self.capabilities

    def move(self, uids, folder):
        self.calls.append(("move", tuple(uids), folder))

    def copy(self, uids, folder):
        self.calls.append(("copy", tuple(uids), folder))

    def uid_expunge(self, uids):
        self.calls.append(("uid_expunge", tuple(uids)))

    def expunge(self):
        self.calls.append(("expunge",))

    def logout(self):
        self.calls.append(("logout",))


def _session(client: FakeImapClient) -> ImapMailboxSession:
    return ImapMailboxSession(client, MonitoredAccount(name="nas", sender="backup", topic="health/nas"))


def test_format_sender_includes_display_name() -> None:
    assert format_sender(_envelope(None)) == "NAS <backup@example.com>"
    assert format_sender(_envelope(None, name=None)) == "backup@example.com"


def test_encoded_subject_is_decoded() -> None:
    stamp = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)
    message = message_from_fetch(7, {b"ENVELOPE": _envelope(stamp, subject=b"=?utf-8?q?Sicherung_M=C3=A4rz?=")})
    assert message.subject == "Sicherung März"
    assert message.handle == 7


def test_envelope_date_is_converted_to_utc() -> None:
    stamp = datetime(2024, 3, 1, 10, 0, tzinfo=timezone(timedelta(hours=2)))
    message = message_from_fetch(1, {b"ENVELOPE": _envelope(stamp)})
    assert message.timestamp == datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)
    assert message.timestamp.tzinfo is not None


def test_internaldate_is_used_when_envelope_has_no_date() -> None:
    internal = datetime(2024, 3, 2, 9, 0, tzinfo=timezone.utc)
    message = message_from_fetch(1, {b"ENVELOPE": _envelope(None), b"INTERNALDATE": internal})
    assert message.timestamp == internal


def test_undated_message_is_skipped() -> None:
    client = FakeImapClient()
    client.responses = {
        1: {b"ENVELOPE": _envelope(None)},
        2: {b"ENVELOPE": _envelope(datetime(2024, 3, 1, tzinfo=timezone.utc))},
    }
    messages = _session(client).list_unread_candidates()
    assert [m.handle for m in messages] == [2]


def test_library_errors_become_mailbox_access_errors() -> None:
    client = FakeImapClient()
    client.fail_search = True
    with pytest.raises(MailboxAccessError):
        _session(client).list_unread_candidates()


def test_mark_read_sets_seen_flag() -> None:
    client = FakeImapClient()
    _session(client).mark_read(CandidateMessage("a", "b", datetime.now(timezone.utc), handle=5))
    assert client.calls == [("add_flags", (5,), (SEEN,))]


def test_resolve_folder_ignores_case() -> None:
    session = _session(FakeImapClient())
    assert session.resolve_folder("healthcheck") == "HealthCheck"
    assert session.resolve_folder("Archive") is None


def test_move_uses_move_capability_when_available() -> None:
    client = FakeImapClient(capabilities={"MOVE"})
    _session(client).move_to_folder(CandidateMessage("a", "b", datetime.now(timezone.utc), handle=5), "HealthCheck")
    assert client.calls == [("move", (5,), "HealthCheck")]


def test_move_falls_back_to_copy_and_delete() -> None:
    client = FakeImapClient(capabilities={"UIDPLUS"})
    _session(client).move_to_folder(CandidateMessage("a", "b", datetime.now(timezone.utc), handle=5), "HealthCheck")
    assert client.calls == [
        ("copy", (5,), "HealthCheck"),
        ("add_flags", (5,), (DELETED,)),
        ("uid_expunge", (5,)),
    ]
