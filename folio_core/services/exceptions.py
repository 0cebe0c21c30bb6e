# folio_core/services/exceptions.py
"""
Service layer exceptions.

These exceptions represent domain-specific errors and carry NO transport
knowledge. Callers (an API layer, a job runner) map them to responses.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    ├── NotFoundError
    │   └── AccountNotFoundError
    └── CoreError
        ├── InsufficientLotsError
        ├── CurrencyMismatchError
        ├── InvalidActivityError
        ├── InvariantViolationError
        ├── QuoteError
        │   ├── MissingQuoteError
        │   └── StaleQuoteError
        ├── FXRateError
        │   └── MissingFxRateError
        └── AnalyticsError
            ├── InsufficientHistoryError
            └── NonConvergentError

Recoverable vs. fatal:
    MissingQuoteError / StaleQuoteError are only raised in strict mode;
    otherwise the position is valued at cost and the valuation is flagged.
    NonConvergentError is caught by the performance service and reported on
    the metrics; every other CoreError aborts the recalculation.
"""

from datetime import date
from decimal import Decimal


class ServiceError(Exception):
    """
    Base exception for all service layer errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(ServiceError):
    """
    Raised when programmatic input validation fails.

    Activity payload validation happens in Pydantic schemas; this covers
    bad arguments to service calls (inverted date ranges, unknown scopes).

    Attributes:
        field: The field that failed validation (optional)
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


# =============================================================================
# NOT FOUND ERRORS
# =============================================================================


class NotFoundError(ServiceError):
    """
    Base exception for resource not found errors.

    Attributes:
        resource_type: Type of resource (e.g., "Account")
        resource_id: Identifier of the resource
    """

    def __init__(
            self,
            message: str,
            resource_type: str | None = None,
            resource_id: str | None = None,
    ) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(message)


class AccountNotFoundError(NotFoundError):
    """Raised when the activity source does not know an account."""

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(
            f"Account {account_id} not found",
            resource_type="Account",
            resource_id=account_id,
        )


# =============================================================================
# COMPUTATION CORE ERRORS
# =============================================================================


class CoreError(ServiceError):
    """Base exception for holdings, valuation and performance failures."""
    pass


class InsufficientLotsError(CoreError):
    """
    Raised when a SELL or TRANSFER_OUT asks for more units than are open.

    The replay stops before touching any lot, so the previous snapshot
    remains the latest valid state.

    Attributes:
        account_id: Account being replayed
        asset_id: Instrument being relieved
        requested: Units the activity asked for
        available: Units open at that point of the replay
        activity_id: Offending activity
    """

    def __init__(
            self,
            account_id: str,
            asset_id: str,
            requested: Decimal,
            available: Decimal,
            activity_id: str,
    ) -> None:
        self.account_id = account_id
        self.asset_id = asset_id
        self.requested = requested
        self.available = available
        self.activity_id = activity_id
        super().__init__(
            f"Insufficient lots for {asset_id} in account {account_id}: "
            f"requested {requested}, available {available} (activity {activity_id})"
        )


class CurrencyMismatchError(CoreError):
    """
    Raised when amounts in different currencies would be combined directly.

    Example: buying into an existing EUR position with a USD-priced activity.
    """

    def __init__(self, expected: str, actual: str, context: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Currency mismatch in {context}: expected {expected}, got {actual}")


class InvalidActivityError(CoreError):
    """Raised when an activity cannot be applied during replay."""

    def __init__(self, activity_id: str, reason: str) -> None:
        self.activity_id = activity_id
        self.reason = reason
        super().__init__(f"Invalid activity {activity_id}: {reason}")


class InvariantViolationError(CoreError):
    """
    Raised when computed state breaks an internal invariant
    (negative lot quantity, lot sums out of balance).

    Unrecoverable - indicates a bug or corrupt input that slipped past validation.
    """
    pass


# =============================================================================
# QUOTE ERRORS
# =============================================================================


class QuoteError(CoreError):
    """
    Base exception for quote availability problems.

    Attributes:
        asset_id: Instrument without a usable quote
        valuation_date: Date being valued
    """

    def __init__(self, message: str, asset_id: str, valuation_date: date) -> None:
        self.asset_id = asset_id
        self.valuation_date = valuation_date
        super().__init__(message)


class MissingQuoteError(QuoteError):
    """No quote exists at or before the valuation date."""

    def __init__(self, asset_id: str, valuation_date: date) -> None:
        super().__init__(
            f"No quote for {asset_id} on or before {valuation_date}",
            asset_id=asset_id,
            valuation_date=valuation_date,
        )


class StaleQuoteError(QuoteError):
    """
    The latest quote is older than the staleness window.

    Attributes:
        quote_date: Date of the quote that was found
        source: Provider of that quote, if known
    """

    def __init__(
            self,
            asset_id: str,
            valuation_date: date,
            quote_date: date,
            source: str | None = None,
    ) -> None:
        self.quote_date = quote_date
        self.source = source
        provider = f" from {source}" if source else ""
        super().__init__(
            f"Quote for {asset_id} is stale on {valuation_date} (last quote {quote_date}{provider})",
            asset_id=asset_id,
            valuation_date=valuation_date,
        )


# =============================================================================
# FX RATE ERRORS
# =============================================================================


class FXRateError(CoreError):
    """
    Base exception for FX rate errors.

    Attributes:
        base_currency: Currency converted from
        quote_currency: Currency converted to
    """

    def __init__(
            self,
            message: str,
            base_currency: str | None = None,
            quote_currency: str | None = None,
    ) -> None:
        self.base_currency = base_currency
        self.quote_currency = quote_currency
        super().__init__(message)


class MissingFxRateError(FXRateError):
    """
    Raised when no usable FX rate exists on or before the requested date.

    There is no 1:1 fallback between different currencies.

    Attributes:
        date: The date for which the rate was requested
    """

    def __init__(
            self,
            base_currency: str,
            quote_currency: str,
            rate_date: date,
            message: str | None = None,
    ) -> None:
        self.date = rate_date
        msg = message or f"No FX rate found for {base_currency}/{quote_currency} on or before {rate_date}"
        super().__init__(msg, base_currency=base_currency, quote_currency=quote_currency)


# =============================================================================
# ANALYTICS ERRORS
# =============================================================================


class AnalyticsError(CoreError):
    """
    Base exception for performance calculation errors.
    """
    pass


class InsufficientHistoryError(AnalyticsError):
    """
    Raised when fewer than two valuation points cover the requested range.

    Attributes:
        points: Number of valuation points available
    """

    def __init__(self, points: int, message: str | None = None) -> None:
        self.points = points
        msg = message or f"At least 2 valuation points are required, got {points}"
        super().__init__(msg)


class NonConvergentError(AnalyticsError):
    """
    Raised when the money-weighted return solver fails to converge.

    Attributes:
        iterations: Iterations spent before giving up
    """

    def __init__(self, iterations: int, reason: str | None = None) -> None:
        self.iterations = iterations
        self.reason = reason
        msg = f"MWR solver did not converge after {iterations} iterations"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


__all__ = [
    # Base
    "ServiceError",
    # Validation
    "ValidationError",
    # Not Found
    "NotFoundError",
    "AccountNotFoundError",
    # Core
    "CoreError",
    "InsufficientLotsError",
    "CurrencyMismatchError",
    "InvalidActivityError",
    "InvariantViolationError",
    # Quotes
    "QuoteError",
    "MissingQuoteError",
    "StaleQuoteError",
    # FX Rate
    "FXRateError",
    "MissingFxRateError",
    # Analytics
    "AnalyticsError",
    "InsufficientHistoryError",
    "NonConvergentError",
]
