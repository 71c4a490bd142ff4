"""Exception hierarchy for the collection ledger."""

from decimal import Decimal


class LedgerError(Exception):
    """Base exception for all ledger errors."""


class NotFoundError(LedgerError):
    """Raised when a referenced record does not exist."""


class LoanNotFound(NotFoundError):
    """Raised when no loan matches the given id or loan number."""


class CollectionNotFound(NotFoundError):
    """Raised when no collection matches the given id."""


class RecordNotFound(NotFoundError):
    """Raised by the record store when an update targets a missing record."""


class ValidationError(LedgerError):
    """Raised when caller input is invalid."""


class InvalidAmount(ValidationError):
    """Raised when a payment amount is non-finite or not positive."""


class InvalidLoanTerms(ValidationError):
    """Raised when principal, rate or duration is not a positive number."""


class InvalidPaymentMode(ValidationError):
    """Raised when a payment mode other than normal/close is requested."""


class InvalidQuery(ValidationError):
    """Raised when a query lacks its required filters."""


class DuplicateLoanNumber(ValidationError):
    """Raised when a loan number is already taken."""


class InsufficientClosingAmount(ValidationError):
    """Raised when a close-mode payment is below the remaining principal."""

    def __init__(self, threshold: Decimal):
        self.threshold = threshold
        super().__init__(
            f"Closing amount must be at least remaining principal: {threshold:.2f}"
        )


class LoanStateError(LedgerError):
    """Raised when a loan is in the wrong state for the operation."""


class LoanAlreadyClosed(LoanStateError):
    """Raised when a payment is attempted against a closed loan."""


class LoanBusy(LedgerError):
    """Raised when a loan's lock could not be acquired in time."""
