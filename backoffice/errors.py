from typing import Optional


class BackofficeError(Exception):
    """Root of every error raised by the back-office services."""


class FinanceValidationError(BackofficeError, ValueError):
    """Rejected input to the totals engine or a money-moving service."""


class GlValidationError(BackofficeError, ValueError):
    """Structurally invalid general ledger entry."""


class UnbalancedEntryError(GlValidationError):
    """Debits and credits differ by more than the posting tolerance."""

    def __init__(self, debits: float, credits: float, difference: float, source_ref: Optional[dict] = None):
        self.debits = debits
        self.credits = credits
        self.difference = difference
        self.source_ref = source_ref or {}
        super().__init__(
            f"GL entry not balanced: debits={debits:.2f}, credits={credits:.2f}, difference={difference:.2f}"
        )


class NotFoundError(BackofficeError, LookupError):
    pass


class InvalidStateError(BackofficeError):
    """Operation not allowed for the document's current status."""


class AccessDeniedError(BackofficeError, PermissionError):
    pass
