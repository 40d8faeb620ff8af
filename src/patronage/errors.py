"""Ledger error hierarchy.

Every rejection raised by the engines is one of these. An operation that
raises has not mutated any ledger state: validation always runs against
unmodified state before anything is applied.

Capacity exhaustion (supply cap reached, duplicate mint) is deliberately
absent — those paths return the NO_TOKEN sentinel instead of raising, so
that triggered mints never block the surrounding payment flow.
"""


class LedgerError(Exception):
    """Base class for all ledger rejections."""


class PolicyViolation(LedgerError):
    """A creator or platform policy rejected the operation.

    Raised for rates or durations below the creator minimum, balances
    that cannot sustain the minimum rate for the minimum duration, and
    new subscriptions while the ledger is paused.
    """


class InvariantViolation(LedgerError):
    """The request would break a ledger invariant.

    Signals a caller bug or malicious input. Never coerced to a
    "closest valid" value.
    """


class AuthorizationFailure(LedgerError):
    """The acting principal lacks the capability for the operation."""


class ReplayRejected(LedgerError):
    """A cross-domain delivery id has already been applied."""
