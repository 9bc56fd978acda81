"""Error taxonomy for the reminder service.

Only ``InvalidTimeline`` and ``StoreUnavailable`` ever reach a caller.
Delivery problems are recovered inside the dispatch loop and end up as
retry bookkeeping on the reminder row.
"""

from __future__ import annotations


class ProcrastinatorError(Exception):
    """Base class for all service errors."""


class ConfigurationError(ProcrastinatorError):
    pass


class InvalidTimeline(ProcrastinatorError, ValueError):
    """Unrecognized timeline bucket passed to the resolver."""

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Invalid reminder timeline: {value!r}")


class TransientDeliveryFailure(ProcrastinatorError):
    """A channel send failed or timed out. Recovered by a retry."""


class UnknownContactKind(ProcrastinatorError):
    """A reminder's owner has a contact kind with no notification channel."""

    def __init__(self, kind: object, reminder_id: int | None = None):
        self.kind = kind
        self.reminder_id = reminder_id
        super().__init__(f"No notification channel for contact kind {kind!r}")


class StoreUnavailable(ProcrastinatorError):
    """The reminder store could not be read or written."""


class UserAlreadyExists(ProcrastinatorError):
    def __init__(self, kind: str, address: str):
        self.kind = kind
        self.address = address
        super().__init__(f"User with {kind} {address} already exists.")
