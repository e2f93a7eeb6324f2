"""Custom exceptions for Trip Ledger."""

from decimal import Decimal
from enum import StrEnum
from typing import Any


class TripLedgerError(Exception):
    """Base exception for all Trip Ledger errors."""

    pass


class ConfigurationError(TripLedgerError, ValueError):
    """Raised when configuration is invalid or missing."""

    pass


class APIError(TripLedgerError):
    """Base class for API-related errors."""

    pass


class FXRateAPIError(APIError):
    """Raised when the FX rate service request fails or lacks the requested rate."""

    pass


class SplitFailureReason(StrEnum):
    """Which split invariant was violated."""

    EMPTY_PARTICIPANTS = "empty_participants"
    NON_POSITIVE_ENTRY = "non_positive_entry"
    TOTAL_MISMATCH = "total_mismatch"
    PERCENTAGE_MISMATCH = "percentage_mismatch"
    OVER_CLAIMED = "over_claimed"
    MISSING_LINE_ITEM = "missing_line_item"


class SplitValidationError(TripLedgerError):
    """Raised when split amounts, percentages or claims don't reconcile."""

    def __init__(
        self,
        reason: SplitFailureReason,
        message: str,
        delta: Decimal | None = None,
        participant_id: str | None = None,
    ):
        self.reason = reason
        self.delta = delta
        self.participant_id = participant_id
        super().__init__(message)


class ConversionError(TripLedgerError):
    """Raised when a strict currency conversion cannot obtain a rate."""

    pass


class SettlementValidationError(TripLedgerError):
    """Raised when a recorded settlement is malformed."""

    pass


class PersistenceError(TripLedgerError):
    """Raised when a store write fails."""

    pass


class PartialPersistenceError(PersistenceError):
    """Raised when an expense was persisted but its split rows were not.

    The expense is not rolled back; the computed splits are carried so the
    caller can retry the split step.
    """

    def __init__(self, expense: Any, splits: list[Any], cause: Exception):
        self.expense = expense
        self.splits = splits
        self.cause = cause
        super().__init__(
            f"Expense {expense.id} was saved but its {len(splits)} split rows "
            f"were not: {cause}"
        )
