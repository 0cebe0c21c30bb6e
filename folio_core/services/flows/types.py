# folio_core/services/flows/types.py
"""
Types for flow classification.

A flow's meaning depends on the scope it is measured at: moving cash from
a brokerage account to a savings account is a contribution/withdrawal for
each account, but nothing at all for the portfolio as a whole.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum


class PerformanceScope(str, Enum):
    """
    Boundary at which flows are judged.

    Attributes:
        ACCOUNT: A single account; anything crossing its boundary is external
        PORTFOLIO: All tracked accounts; transfers between them are internal
    """
    ACCOUNT = "account"
    PORTFOLIO = "portfolio"


class FlowType(str, Enum):
    EXTERNAL_CONTRIBUTION = "external_contribution"
    EXTERNAL_WITHDRAWAL = "external_withdrawal"
    INTERNAL_TRANSFER = "internal_transfer"
    INCOME = "income"
    FEE = "fee"
    NEUTRAL = "neutral"

    @property
    def is_external(self) -> bool:
        """External flows are the ones TWR removes and MWR weights."""
        return self in (FlowType.EXTERNAL_CONTRIBUTION, FlowType.EXTERNAL_WITHDRAWAL)


@dataclass(frozen=True)
class ClassifiedFlow:
    """
    One activity seen as a flow at a given scope.

    Attributes:
        activity_id: Source activity
        account_id: Account the activity belongs to
        date: Flow date
        flow_type: Classification at `scope`
        scope: Scope the classification applies to
        currency: Currency of `amount`
        amount: Signed value, + into the scope, - out of it
    """
    activity_id: str
    account_id: str
    date: date
    flow_type: FlowType
    scope: PerformanceScope
    currency: str
    amount: Decimal

    @property
    def is_external(self) -> bool:
        return self.flow_type.is_external
