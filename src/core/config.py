"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

SECURITY_SSL = "ssl"
SECURITY_STARTTLS = "starttls"
SECURITY_STARTTLS_WHEN_AVAILABLE = "starttls_when_available"
SECURITY_NONE = "none"
SECURITY_MODES = (
    SECURITY_SSL,
    SECURITY_STARTTLS,
    SECURITY_STARTTLS_WHEN_AVAILABLE,
    SECURITY_NONE,
)


@dataclass(frozen=True)
class MonitoredAccount:
    """One mailbox to watch and the sender whose freshness we report.

    `topic` must be unique across the accounts of one run, otherwise two
    accounts share (and overwrite) the same watermark.
    """

    name: str
    sender: str
    topic: str
    subject_whitelist: Tuple[str, ...] = ()
    mark_read: bool = False
    move_to_folder: bool = False
    destination_folder: str = ""
    server: str = ""
    port: int = 993
    security: str = SECURITY_SSL
    username: str = ""
    password: str = field(default="", repr=False)
    inbox_folder: str = "INBOX"


@dataclass(frozen=True)
class RatingRule:
    """Ages up to and including `max_age_days` are rated as `label`."""

    max_age_days: int
    label: str
