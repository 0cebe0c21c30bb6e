# folio_core/services/fx_rate_service.py
"""
FX Rate Service: on-or-before exchange rate lookups over an FxRateSource.

=============================================================================
FX RATE CONVENTION
=============================================================================

    rate = "1 from_currency = X to_currency"

Example:
    from_currency = "USD", to_currency = "EUR", rate = 0.92
    Meaning: 1 USD = 0.92 EUR

Conversion formula:
    EUR_amount = USD_amount x rate

=============================================================================

Lookup rules:
- Same currency: rate 1, no source call
- Direct pair on or before the date
- Otherwise the inverse pair (1 / rate)
- Never a rate from after the date, never an assumed 1:1
- Optional max_fallback_days rejects rates older than the window

Design Principles:
- Single Responsibility: Only handles FX rate lookups
- Financial Precision: Decimal for all rates
- Domain exceptions: MissingFxRateError, never a silent default

Usage:
    service = FXRateService(source, max_fallback_days=7)
    eur = service.convert(Decimal("100"), "USD", "EUR", date(2024, 6, 14))
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from folio_core.services.constants import ONE, ZERO
from folio_core.services.exceptions import MissingFxRateError
from folio_core.services.protocols import FxRateSource

logger = logging.getLogger(__name__)


# =============================================================================
# RESULT DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class FxObservation:
    """A rate as published for a specific date."""

    date: date
    rate: Decimal


@dataclass
class FXRateResult:
    """Result of an FX rate lookup."""

    base_currency: str
    quote_currency: str
    date: date
    rate: Decimal
    is_exact_match: bool = True  # False if an earlier rate was used
    actual_date: date | None = None  # The date the rate is actually from
    is_inverted: bool = False  # True if derived from the reverse pair

    def __post_init__(self):
        if self.actual_date is None:
            self.actual_date = self.date


# =============================================================================
# FX RATE SERVICE
# =============================================================================

class FXRateService:
    """
    Exchange rate lookups with on-or-before semantics.

    Attributes:
        _source: Where observed rates come from
        _max_fallback_days: Oldest acceptable rate age in days (None = any)
    """

    def __init__(
            self,
            source: FxRateSource,
            max_fallback_days: int | None = None,
    ) -> None:
        """
        Initialize the FX Rate Service.

        Args:
            source: Provider of observed rates
            max_fallback_days: Reject rates older than this many days.
                              None accepts any earlier rate.
        """
        self._source = source
        self._max_fallback_days = max_fallback_days

    # =========================================================================
    # PUBLIC METHODS
    # =========================================================================

    def get_rate(
            self,
            base_currency: str,
            quote_currency: str,
            target_date: date,
    ) -> FXRateResult:
        """
        Get the rate to convert base_currency into quote_currency on a date.

        Args:
            base_currency: Currency converted from (e.g., "USD")
            quote_currency: Currency converted to (e.g., "EUR")
            target_date: Date to value on

        Returns:
            FXRateResult with the rate and metadata

        Raises:
            MissingFxRateError: If no usable rate exists on or before the date
        """
        base = base_currency.upper().strip()
        quote = quote_currency.upper().strip()

        # Same currency = 1:1 rate
        if base == quote:
            return FXRateResult(
                base_currency=base,
                quote_currency=quote,
                date=target_date,
                rate=ONE,
            )

        observation = self._observe(base, quote, target_date)
        is_inverted = False

        if observation is None:
            inverse = self._observe(quote, base, target_date)
            if inverse is not None and inverse.rate != ZERO:
                observation = FxObservation(date=inverse.date, rate=ONE / inverse.rate)
                is_inverted = True

        if observation is None:
            raise MissingFxRateError(base, quote, target_date)

        age = (target_date - observation.date).days
        if self._max_fallback_days is not None and age > self._max_fallback_days:
            raise MissingFxRateError(
                base, quote, target_date,
                message=(
                    f"FX rate for {base}/{quote} on {target_date} is {age} days old "
                    f"(max {self._max_fallback_days})"
                ),
            )

        if age > 0:
            logger.debug(
                f"Using fallback rate for {base}/{quote} on {target_date}: "
                f"actual date = {observation.date}"
            )

        return FXRateResult(
            base_currency=base,
            quote_currency=quote,
            date=target_date,
            rate=observation.rate,
            is_exact_match=age == 0,
            actual_date=observation.date,
            is_inverted=is_inverted,
        )

    def get_rate_or_none(
            self,
            base_currency: str,
            quote_currency: str,
            target_date: date,
    ) -> FXRateResult | None:
        """
        Get the exchange rate, returning None if not found.

        Same as get_rate() but returns None instead of raising exception.
        """
        try:
            return self.get_rate(base_currency, quote_currency, target_date)
        except MissingFxRateError:
            return None

    def convert(
            self,
            amount: Decimal,
            from_currency: str,
            to_currency: str,
            target_date: date,
    ) -> Decimal:
        """
        Convert an amount at the rate on or before target_date.

        Raises:
            MissingFxRateError: If no usable rate exists
        """
        if amount == ZERO:
            return ZERO
        return amount * self.get_rate(from_currency, to_currency, target_date).rate

    # =========================================================================
    # PRIVATE METHODS
    # =========================================================================

    def _observe(self, base: str, quote: str, target_date: date) -> FxObservation | None:
        raw = self._source.rate_on_or_before(base, quote, target_date)
        if raw is None:
            return None
        if isinstance(raw, FxObservation):
            if raw.date > target_date:
                # A source must never leak a future rate into a past valuation
                logger.warning(
                    f"FX source returned {base}/{quote} from {raw.date} "
                    f"for {target_date}, ignored"
                )
                return None
            return raw
        return FxObservation(date=target_date, rate=Decimal(raw))
