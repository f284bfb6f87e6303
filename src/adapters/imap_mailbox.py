"""IMAP mailbox adapter.

Keeps imapclient-specific details out of the core: messages are mapped to
CandidateMessage with the UID as opaque handle, and every library or socket
failure surfaces as MailboxAccessError.
"""

from __future__ import annotations

import logging
import ssl
from contextlib import contextmanager
from datetime import datetime, timezone
from email.header import decode_header, make_header
from typing import Any, Iterator, List, Optional

from imapclient import DELETED, SEEN, IMAPClient
from imapclient.exceptions import IMAPClientError

from core.config import (
    SECURITY_MODES,
    SECURITY_SSL,
    SECURITY_STARTTLS,
    SECURITY_STARTTLS_WHEN_AVAILABLE,
    MonitoredAccount,
)
from core.errors import MailboxAccessError
from core.models import CandidateMessage

LOGGER = logging.getLogger(__name__)

FETCH_FIELDS = [b"ENVELOPE", b"INTERNALDATE"]


@contextmanager
def _mailbox_errors(action: str) -> Iterator[None]:
    try:
        yield
    except (IMAPClientError, OSError) as exc:
        raise MailboxAccessError(f"{action}: {exc}") from exc


def _decode(value: Any) -> str:
    """Decode an RFC 2047 header value returned as bytes by the server."""

    if value is None:
        return ""
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    try:
        return str(make_header(decode_header(value)))
    except (UnicodeError, LookupError, ValueError):
        return value


def format_sender(envelope: Any) -> str:
    """Return `Name <mailbox@host>` for the first From address of an envelope."""

    addresses = getattr(envelope, "from_", None) or ()
    if not addresses:
        return ""
    first = addresses[0]
    mailbox = _decode(getattr(first, "mailbox", None))
    host = _decode(getattr(first, "host", None))
    name = _decode(getattr(first, "name", None))
    address = f"{mailbox}@{host}" if host else mailbox
    if name:
        return f"{name} <{address}>"
    return address


def _as_aware(value: datetime) -> datetime:
    # Naive values are local server time as interpreted by imapclient.
    if value.tzinfo is None:
        return value.astimezone()
    return value


def message_from_fetch(uid: int, data: dict) -> Optional[CandidateMessage]:
    """Map one FETCH response to a CandidateMessage, or None if undated."""

    envelope = data.get(b"ENVELOPE")
    timestamp = getattr(envelope, "date", None) or data.get(b"INTERNALDATE")
    if timestamp is None:
        return None
    return CandidateMessage(
        sender=format_sender(envelope),
        subject=_decode(getattr(envelope, "subject", None)),
        timestamp=_as_aware(timestamp).astimezone(timezone.utc),
        handle=uid,
    )


class ImapMailboxSession:
    """An open, selected inbox for one account."""

    def __init__(self, client: IMAPClient, account: MonitoredAccount) -> None:
        self._client = client
        self._account = account

    def list_unread_candidates(self) -> List[CandidateMessage]:
        with _mailbox_errors(f"Reading unread messages of {self._account.name}"):
            uids = self._client.search(["UNSEEN"])
            if not uids:
                return []
            # ENVELOPE and INTERNALDATE never set \Seen.
            response = self._client.fetch(uids, FETCH_FIELDS)

        messages: List[CandidateMessage] = []
        for uid in uids:
            data = response.get(uid)
            if not data:
                continue
            message = message_from_fetch(uid, data)
            if message is None:
                LOGGER.debug("Skipping UID %s without a date", uid)
                continue
            messages.append(message)
        return messages

    def mark_read(self, message: CandidateMessage) -> None:
        with _mailbox_errors(f"Marking UID {message.handle} as read"):
            self._client.add_flags([message.handle], [SEEN])

    def resolve_folder(self, name: str) -> Optional[str]:
        with _mailbox_errors(f"Listing folders of {self._account.name}"):
            folders = self._client.list_folders()
        wanted = name.lower()
        for _flags, _delimiter, folder in folders:
            if folder.lower() == wanted:
                return folder
        return None

    def create_folder(self, name: str) -> str:
        with _mailbox_errors(f"Creating folder '{name}'"):
            self._client.create_folder(name)
        return name

    def move_to_folder(self, message: CandidateMessage, folder: str) -> None:
        with _mailbox_errors(f"Moving UID {message.handle} to '{folder}'"):
            if self._client.has_capability("MOVE"):
                self._client.move([message.handle], folder)
                return
            self._client.copy([message.handle], folder)
            self._client.add_flags([message.handle], [DELETED])
            if self._client.has_capability("UIDPLUS"):
                self._client.uid_expunge([message.handle])
            else:
                self._client.expunge()

    def close(self) -> None:
        with _mailbox_errors(f"Closing mailbox of {self._account.name}"):
            self._client.logout()


class ImapMailbox:
    """MailboxPort implementation that opens one IMAP connection per account."""

    def __init__(self, timeout: float = 30.0, ssl_context: Optional[ssl.SSLContext] = None) -> None:
        self._timeout = timeout
        self._ssl_context = ssl_context or ssl.create_default_context()

    def _connect(self, account: MonitoredAccount) -> IMAPClient:
        security = account.security
        if security not in SECURITY_MODES:
            raise MailboxAccessError(f"Unsupported security mode: {security}")
        client = IMAPClient(
            account.server,
            port=account.port,
            ssl=security == SECURITY_SSL,
            ssl_context=self._ssl_context,
            timeout=self._timeout,
        )
        # Keep timezone information from the server instead of local naive times.
        client.normalise_times = False
        if security == SECURITY_STARTTLS:
            client.starttls(self._ssl_context)
        elif security == SECURITY_STARTTLS_WHEN_AVAILABLE and client.has_capability("STARTTLS"):
            client.starttls(self._ssl_context)
        return client

    def open(self, account: MonitoredAccount) -> ImapMailboxSession:
        """Connect, log in and select the account's inbox folder."""

        LOGGER.debug("Opening mail account %s at %s:%s", account.name, account.server, account.port)
        with _mailbox_errors(f"Cannot open mail account {account.name}"):
            client = self._connect(account)
            try:
                client.login(account.username, account.password)
                client.select_folder(account.inbox_folder)
            except (IMAPClientError, OSError):
                try:
                    client.logout()
                except (IMAPClientError, OSError):
                    LOGGER.debug("Logout after failed open of %s also failed", account.name)
                raise
        return ImapMailboxSession(client, account)
