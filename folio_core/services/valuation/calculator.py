# folio_core/services/valuation/calculator.py
"""
Point-in-time valuation of an account snapshot.

Turns an AccountStateSnapshot into a DailyAccountValuation in the base
currency:

    market_value  = quantity x close (quote currency) -> base
    cost_basis    = position cost basis (position currency) -> base
    cash          = each cash balance (its currency) -> base
    total         = cash + sum(market_value)

Quote fallback:
    A missing quote, or one older than quote_staleness_days, values the
    position at its cost basis. The valuation is flagged stale and a
    warning is recorded. In strict mode the condition raises instead.

FX:
    Every conversion uses the rate on or before the valuation date. A
    missing rate raises MissingFxRateError; amounts are never assumed 1:1.
    The one exception is fx_rate_to_base when the account holds nothing in
    its own currency: it is then left as None with a warning.

Design Principles:
- Stateless: quote and FX access is passed into each call
- Decimal for ALL financial calculations
- Outputs quantized to CURRENCY_PRECISION with ROUND_HALF_UP

Usage:
    calculator = ValuationCalculator(base_currency="EUR")
    valuation = calculator.valuate(snapshot, quotes, fx_service, external_flows=flows)
"""

import logging
from collections.abc import Iterable
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from folio_core.services.constants import CURRENCY_PRECISION, QUOTE_STALENESS_DAYS, ZERO
from folio_core.services.exceptions import MissingQuoteError, StaleQuoteError
from folio_core.services.flows.types import ClassifiedFlow, PerformanceScope
from folio_core.services.fx_rate_service import FXRateService
from folio_core.services.holdings.types import AccountStateSnapshot, Position
from folio_core.services.protocols import QuoteSource
from folio_core.services.valuation.types import (
    DailyAccountValuation,
    PositionValuation,
    PriceStatus,
    Quote,
)

logger = logging.getLogger(__name__)


def _money(value: Decimal) -> Decimal:
    return value.quantize(CURRENCY_PRECISION, rounding=ROUND_HALF_UP)


# =============================================================================
# VALUATION CALCULATOR
# =============================================================================

class ValuationCalculator:
    """
    Values snapshots in a single base currency.

    Attributes:
        base_currency: Reporting currency
        quote_staleness_days: Max quote age before falling back to cost
        strict_quotes: Raise MissingQuoteError/StaleQuoteError instead of falling back
    """

    def __init__(
            self,
            base_currency: str,
            quote_staleness_days: int = QUOTE_STALENESS_DAYS,
            strict_quotes: bool = False,
    ) -> None:
        self.base_currency = base_currency.upper()
        self.quote_staleness_days = quote_staleness_days
        self.strict_quotes = strict_quotes

    def valuate(
            self,
            snapshot: AccountStateSnapshot,
            quotes: QuoteSource,
            fx: FXRateService,
            external_flows: Iterable[ClassifiedFlow] = (),
            valuation_date: date | None = None,
    ) -> DailyAccountValuation:
        """
        Value a snapshot on its date (or a later valuation_date).

        Args:
            snapshot: Holdings to value
            quotes: Quote lookup (latest on or before the date)
            fx: FX lookup (on or before the date)
            external_flows: Account-scope flows of this account; only
                external ones dated on or before the valuation date count
                toward net_contribution
            valuation_date: Defaults to snapshot.snapshot_date

        Returns:
            DailyAccountValuation with all money in base currency

        Raises:
            MissingFxRateError: If any required rate is unavailable
            MissingQuoteError / StaleQuoteError: Only in strict mode
        """
        on = valuation_date or snapshot.snapshot_date
        warnings: list[str] = []

        positions = [
            self._value_position(position, quotes, fx, on, warnings)
            for asset_id, position in sorted(snapshot.positions.items())
        ]

        cash = _money(sum(
            (fx.convert(balance, currency, self.base_currency, on)
             for currency, balance in sorted(snapshot.cash_balances.items())),
            ZERO,
        ))
        investment = sum((p.market_value for p in positions), ZERO)
        cost_basis = sum((p.cost_basis for p in positions), ZERO)
        net_contribution = self._net_contribution(external_flows, fx, on)
        account_rate = self._account_rate(snapshot, fx, on, warnings)

        is_stale = any(p.is_priced_at_cost for p in positions)

        valuation = DailyAccountValuation(
            account_id=snapshot.account_id,
            date=on,
            account_currency=snapshot.currency,
            base_currency=self.base_currency,
            fx_rate_to_base=account_rate,
            cash_balance=cash,
            investment_market_value=investment,
            total_value=cash + investment,
            cost_basis=cost_basis,
            net_contribution=net_contribution,
            positions=tuple(positions),
            is_stale=is_stale,
            warnings=tuple(warnings),
        )

        logger.debug(
            f"Valued account {snapshot.account_id} on {on}: "
            f"total={valuation.total_value} {self.base_currency} "
            f"({len(positions)} positions, stale={is_stale})"
        )
        return valuation

    def _account_rate(
            self,
            snapshot: AccountStateSnapshot,
            fx: FXRateService,
            on: date,
            warnings: list[str],
    ) -> Decimal | None:
        """Rate from the account currency to base; optional when nothing is held in that currency."""
        holds_own_currency = snapshot.currency in snapshot.cash_balances or any(
            p.currency == snapshot.currency for p in snapshot.positions.values()
        )
        if holds_own_currency:
            return fx.get_rate(snapshot.currency, self.base_currency, on).rate

        result = fx.get_rate_or_none(snapshot.currency, self.base_currency, on)
        if result is None:
            warnings.append(
                f"No {snapshot.currency}->{self.base_currency} rate on {on}; "
                f"account currency holds nothing, fx_rate_to_base left empty"
            )
            return None
        return result.rate

    # =========================================================================
    # POSITIONS
    # =========================================================================

    def _value_position(
            self,
            position: Position,
            quotes: QuoteSource,
            fx: FXRateService,
            on: date,
            warnings: list[str],
    ) -> PositionValuation:
        quantity = position.total_quantity
        cost_rate = fx.get_rate(position.currency, self.base_currency, on).rate
        cost_basis = _money(position.total_cost_basis * cost_rate)

        quote = quotes.latest_quote_on_or_before(position.asset_id, on)
        status = self._price_status(position.asset_id, quote, on)

        if status is PriceStatus.CURRENT:
            quote_rate = fx.get_rate(quote.currency, self.base_currency, on).rate
            return PositionValuation(
                asset_id=position.asset_id,
                quantity=quantity,
                currency=position.currency,
                price=quote.close,
                price_date=quote.date,
                price_source=quote.source,
                price_status=status,
                fx_rate=quote_rate,
                cost_basis=cost_basis,
                market_value=_money(quantity * quote.close * quote_rate),
            )

        if status is PriceStatus.MISSING:
            message = str(MissingQuoteError(position.asset_id, on))
        else:
            message = str(StaleQuoteError(position.asset_id, on, quote.date, quote.source))
        warnings.append(f"{message}; valued at cost basis")
        logger.warning(f"{message}; valued at cost basis")

        return PositionValuation(
            asset_id=position.asset_id,
            quantity=quantity,
            currency=position.currency,
            price=quote.close if quote else None,
            price_date=quote.date if quote else None,
            price_source=quote.source if quote else None,
            price_status=status,
            fx_rate=cost_rate,
            cost_basis=cost_basis,
            market_value=cost_basis,
        )

    def _price_status(self, asset_id: str, quote: Quote | None, on: date) -> PriceStatus:
        if quote is None:
            if self.strict_quotes:
                raise MissingQuoteError(asset_id, on)
            return PriceStatus.MISSING

        if (on - quote.date).days > self.quote_staleness_days:
            if self.strict_quotes:
                raise StaleQuoteError(asset_id, on, quote.date, quote.source)
            return PriceStatus.STALE

        return PriceStatus.CURRENT

    # =========================================================================
    # CONTRIBUTIONS
    # =========================================================================

    def _net_contribution(
            self,
            flows: Iterable[ClassifiedFlow],
            fx: FXRateService,
            on: date,
    ) -> Decimal:
        """Sum external account-scope flows up to `on`, each at its own date's rate."""
        total = ZERO
        for flow in flows:
            if flow.scope is not PerformanceScope.ACCOUNT or not flow.is_external:
                continue
            if flow.date > on:
                continue
            total += fx.convert(flow.amount, flow.currency, self.base_currency, flow.date)
        return _money(total)
