"""Error taxonomy shared by the core and the adapters.

Adapters translate library exceptions into these types so the monitor cycle
can decide what is fatal and what only skips one account or one publish.
"""

from __future__ import annotations


class MonitorError(Exception):
    """Base class for all mailpulse errors."""


class ConfigurationError(MonitorError):
    """Invalid or missing configuration. Fatal at startup."""


class MailboxAccessError(MonitorError):
    """The mailbox could not be opened, read or modified."""


class StateLoadError(MonitorError):
    """The persisted state could not be read or parsed."""


class StatePersistError(MonitorError):
    """The state could not be written to durable storage."""


class PublishError(MonitorError):
    """A freshness label could not be delivered to a target."""
