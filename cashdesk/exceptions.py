"""Cashier engine errors."""


class CashdeskError(Exception):
    """Base class for cashier engine errors."""


class ValidationError(CashdeskError):
    """Raised before submission when an operator intent is malformed."""


class AlreadyReversedError(ValidationError):
    """Raised when a reversal targets a transaction that is already reversed."""


class InsufficientChipsError(CashdeskError):
    """Raised when a chip movement exceeds the player's known chip balance."""

    def __init__(self, requested: int, available: int):
        super().__init__(f"Requested ₹{requested:,} exceeds available chips ₹{available:,}")
        self.requested = requested
        self.available = available


class InsufficientFundsSignal(CashdeskError):
    """The ledger refused a cash payout because the float cannot cover it."""

    def __init__(self, required_amount: int, message: str = "INSUFFICIENT_CASH"):
        super().__init__(message)
        self.required_amount = required_amount


class LedgerRejectedError(CashdeskError):
    """The ledger refused an intent for a reason other than float shortfall."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


class TransientRemoteError(CashdeskError):
    """Network failure or 5xx from the ledger."""


class DuplicateSubmissionError(CashdeskError):
    """Raised when an intent is submitted while a previous attempt is still in flight."""


class IntentNotFoundError(CashdeskError):
    """Raised when the requested intent cannot be found."""
