# folio_core/services/flows/__init__.py
"""
Flow classification by performance scope.

Usage:
    from folio_core.services.flows import classify, PerformanceScope

    classify(activity, PerformanceScope.PORTFOLIO)
"""

from folio_core.services.flows.classifier import (
    classify,
    classify_flows,
    convert_flows,
    external_flows,
    flow_amount,
    is_unpriced_transfer_out,
)
from folio_core.services.flows.types import ClassifiedFlow, FlowType, PerformanceScope

__all__ = [
    "classify",
    "classify_flows",
    "convert_flows",
    "external_flows",
    "flow_amount",
    "is_unpriced_transfer_out",
    "ClassifiedFlow",
    "FlowType",
    "PerformanceScope",
]
