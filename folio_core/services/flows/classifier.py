# folio_core/services/flows/classifier.py
"""
Flow Classifier: maps (activity, scope) to a FlowType.

Classification table:

    Activity                      ACCOUNT                 PORTFOLIO
    DEPOSIT                       EXTERNAL_CONTRIBUTION   EXTERNAL_CONTRIBUTION
    WITHDRAWAL                    EXTERNAL_WITHDRAWAL     EXTERNAL_WITHDRAWAL
    TRANSFER_IN                   EXTERNAL_CONTRIBUTION   INTERNAL_TRANSFER
    TRANSFER_OUT                  EXTERNAL_WITHDRAWAL     INTERNAL_TRANSFER
    TRANSFER_* (is_external)      EXTERNAL_*              EXTERNAL_*
    DIVIDEND, INTEREST, CREDIT    INCOME                  INCOME
    FEE, TAX                      FEE                     FEE
    BUY, SELL, SPLIT, ADJUSTMENT  NEUTRAL                 NEUTRAL

classify() is pure and total over ActivityType x PerformanceScope.
"""

from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal

from folio_core.models import Activity, ActivityType
from folio_core.services.constants import ZERO
from folio_core.services.flows.types import ClassifiedFlow, FlowType, PerformanceScope
from folio_core.services.fx_rate_service import FXRateService

_FIXED_TYPES: dict[ActivityType, FlowType] = {
    ActivityType.DEPOSIT: FlowType.EXTERNAL_CONTRIBUTION,
    ActivityType.WITHDRAWAL: FlowType.EXTERNAL_WITHDRAWAL,
    ActivityType.DIVIDEND: FlowType.INCOME,
    ActivityType.INTEREST: FlowType.INCOME,
    ActivityType.CREDIT: FlowType.INCOME,
    ActivityType.FEE: FlowType.FEE,
    ActivityType.TAX: FlowType.FEE,
    ActivityType.BUY: FlowType.NEUTRAL,
    ActivityType.SELL: FlowType.NEUTRAL,
    ActivityType.SPLIT: FlowType.NEUTRAL,
    ActivityType.ADJUSTMENT: FlowType.NEUTRAL,
}

_TRANSFER_DIRECTION: dict[ActivityType, FlowType] = {
    ActivityType.TRANSFER_IN: FlowType.EXTERNAL_CONTRIBUTION,
    ActivityType.TRANSFER_OUT: FlowType.EXTERNAL_WITHDRAWAL,
}


def classify(activity: Activity, scope: PerformanceScope) -> FlowType:
    """
    Classify one activity at a scope.

    Args:
        activity: Ledger entry
        scope: ACCOUNT or PORTFOLIO

    Returns:
        The FlowType for this activity at this scope
    """
    fixed = _FIXED_TYPES.get(activity.activity_type)
    if fixed is not None:
        return fixed

    direction = _TRANSFER_DIRECTION[activity.activity_type]
    if scope is PerformanceScope.PORTFOLIO and not activity.is_external:
        return FlowType.INTERNAL_TRANSFER
    return direction


def is_unpriced_transfer_out(activity: Activity) -> bool:
    """True for an asset TRANSFER_OUT recorded without a unit price."""
    return (
        activity.activity_type is ActivityType.TRANSFER_OUT
        and activity.is_asset_event
        and activity.unit_price == ZERO
    )


def flow_amount(
        activity: Activity,
        flow_type: FlowType,
        carried_cost: Decimal | None = None,
) -> Decimal:
    """
    Signed value of an activity as a flow (+ in, - out), in its currency.

    Asset transfers are valued at the carried unit price. An unpriced
    transfer out is valued at carried_cost, the FIFO cost of the units
    that left. Neutral activities have no flow amount.
    """
    activity_type = activity.activity_type

    if flow_type is FlowType.NEUTRAL:
        return ZERO
    if flow_type is FlowType.FEE:
        return -(activity.fee if activity.fee != ZERO else abs(activity.cash_amount))

    if activity_type in (ActivityType.TRANSFER_IN, ActivityType.TRANSFER_OUT):
        gross = activity.trade_value if activity.is_asset_event else activity.cash_amount
        if carried_cost is not None and is_unpriced_transfer_out(activity):
            gross = carried_cost
        return gross if activity_type is ActivityType.TRANSFER_IN else -gross
    if activity_type is ActivityType.WITHDRAWAL:
        return -activity.cash_amount
    return activity.cash_amount


def classify_flows(
        activities: Iterable[Activity],
        scope: PerformanceScope,
        start_date: date | None = None,
        end_date: date | None = None,
        include_neutral: bool = False,
        transfer_costs: Mapping[str, Decimal] | None = None,
) -> list[ClassifiedFlow]:
    """
    Classify a batch of activities, optionally restricted to a date window.

    Args:
        activities: Activities in any order
        scope: Scope to classify at
        start_date: Inclusive lower bound (None = unbounded)
        end_date: Inclusive upper bound (None = unbounded)
        include_neutral: Keep NEUTRAL entries (amount 0)
        transfer_costs: Relieved cost by activity id for unpriced transfers out
            (HoldingsCalculator.transfer_out_costs)

    Returns:
        Flows in (date, sequence, id) order
    """
    flows: list[ClassifiedFlow] = []

    for activity in sorted(activities, key=lambda a: a.sort_key):
        if start_date is not None and activity.date < start_date:
            continue
        if end_date is not None and activity.date > end_date:
            continue

        flow_type = classify(activity, scope)
        if flow_type is FlowType.NEUTRAL and not include_neutral:
            continue

        flows.append(
            ClassifiedFlow(
                activity_id=activity.id,
                account_id=activity.account_id,
                date=activity.date,
                flow_type=flow_type,
                scope=scope,
                currency=activity.currency,
                amount=flow_amount(activity, flow_type, (transfer_costs or {}).get(activity.id)),
            )
        )

    return flows


def external_flows(flows: Iterable[ClassifiedFlow]) -> list[ClassifiedFlow]:
    return [flow for flow in flows if flow.is_external]


def convert_flows(
        flows: Iterable[ClassifiedFlow],
        fx: FXRateService,
        to_currency: str,
) -> list[ClassifiedFlow]:
    """
    Restate flows in another currency at each flow's own-date rate.

    Raises:
        MissingFxRateError: If any flow's rate is unavailable
    """
    return [
        ClassifiedFlow(
            activity_id=flow.activity_id,
            account_id=flow.account_id,
            date=flow.date,
            flow_type=flow.flow_type,
            scope=flow.scope,
            currency=to_currency,
            amount=fx.convert(flow.amount, flow.currency, to_currency, flow.date),
        )
        for flow in flows
    ]
