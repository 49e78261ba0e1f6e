"""Typed failures for the batch ledger.

Every rejected operation raises one of these. A raised error means the
operation had no observable effect: no state change, no event record.

All errors derive from ValueError so that callers which treat domain
rejections as bad values (the service facade, the CLI) catch them in
one place. The ``code`` attribute is stable and machine-readable; the
message names the precondition that was violated.
"""

from __future__ import annotations


class LedgerError(ValueError):
    """Base class for all domain rejections."""
    code = "ledger_error"


class NotFoundError(LedgerError):
    """Referenced batch or notice does not exist."""
    code = "not_found"


class UnauthorizedError(LedgerError):
    """Caller lacks the role required by the operation."""
    code = "unauthorized"


class InvalidStateError(LedgerError):
    """Current state or status forbids the operation."""
    code = "invalid_state"


class AlreadyTerminalError(InvalidStateError):
    """Batch has reached Sold, Recalled or Expired."""


class InvalidTransitionError(InvalidStateError):
    """Requested lifecycle transition is not in the transition table."""


class BadInputError(LedgerError):
    """Structurally invalid argument (zero id, empty string, bad hex)."""
    code = "bad_input"


class UniquenessViolation(LedgerError):
    """Value collides with one that has already been used."""
    code = "uniqueness_violation"


class ExternalIdUsedError(UniquenessViolation):
    pass


class MetadataHashUsedError(UniquenessViolation):
    pass
