"""Change-order cost impact and estimate versioning for JobLedger.

A change order is a signed delta against an estimate: ``remove`` rows
carry negative totals so summing root rows nets out removed value.
Approving a change order moves the estimate subtotal by the impact and
appends an immutable EstimateVersion.
"""

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from models.document import (
    ChangeOrder,
    ChangeOrderStatus,
    ChangeOrderType,
    DocumentTotals,
    Estimate,
    EstimateVersion,
)
from models.line_item import LineItem
from services.rollup_engine import calculate_subtotal
from services.totals_calculator import compute_totals, normalize_line_items
from utils.money import add, sum_rounded

logger = structlog.get_logger()


def normalize_change_order_items(items: Sequence[LineItem]) -> List[LineItem]:
    """Derive each row; removals become -abs(time cost + materials cost)."""
    return normalize_line_items(items)


def calculate_cost_impact(items: Sequence[LineItem]) -> float:
    """Net cost impact: sum of root effective totals of normalised rows."""
    return calculate_subtotal(normalize_change_order_items(items))


def approved_impact_by_type(
    change_orders: Iterable[ChangeOrder],
    estimate_id: Optional[str]
) -> Dict[str, float]:
    """Summed cost impact of the approved change orders against one estimate, per type."""
    impacts: Dict[str, List[float]] = {t.value: [] for t in ChangeOrderType}
    for change_order in change_orders:
        if change_order.estimate_id != estimate_id:
            continue
        if change_order.status != ChangeOrderStatus.APPROVED.value:
            continue
        impacts.setdefault(change_order.change_order_type, []).append(change_order.cost_impact)
    return {key: sum_rounded(values) for key, values in impacts.items()}


def approved_change_order_impact(
    change_orders: Iterable[ChangeOrder],
    estimate_id: Optional[str]
) -> float:
    """Net amount approved change orders have moved an estimate's subtotal by."""
    return sum_rounded(approved_impact_by_type(change_orders, estimate_id).values())


def next_version_number(existing: Iterable[int]) -> int:
    """max(existing) + 1, starting at 1."""
    return max(existing, default=0) + 1


def apply_change_order(
    estimate: Estimate,
    change_order: ChangeOrder,
    tax_rate_percent: float,
    existing_versions: Iterable[int] = (),
) -> Tuple[DocumentTotals, EstimateVersion]:
    """Compute an estimate's totals after a change order is approved.

    newSubtotal = oldSubtotal + costImpact, then tax/total are recomputed.
    The version snapshots the estimate's line items as they were before
    the change order, tagged with the change order id.

    Args:
        estimate: Estimate the change order targets (pre-change state).
        change_order: The approved change order.
        tax_rate_percent: Acting user's tax rate.
        existing_versions: Version numbers already stored for the estimate.

    Returns:
        Tuple of (new DocumentTotals, EstimateVersion to append).
    """
    if change_order.line_items:
        cost_impact = calculate_cost_impact(change_order.line_items)
    else:
        cost_impact = change_order.cost_impact
    totals = compute_totals(add(estimate.subtotal, cost_impact), tax_rate_percent)

    version = build_version(
        estimate_id=estimate.id or change_order.estimate_id,
        line_items=[item.model_copy() for item in estimate.line_items],
        totals=totals,
        version_number=next_version_number(existing_versions),
        notes=f"Change order #{change_order.number}: {change_order.title}",
        change_order_id=change_order.id,
    )

    logger.info(
        "change_order_impact_computed",
        estimate_id=version.estimate_id,
        change_order_id=change_order.id,
        cost_impact=cost_impact,
        old_subtotal=estimate.subtotal,
        new_subtotal=totals.subtotal,
        version_number=version.version_number,
    )
    return totals, version


def build_version(
    estimate_id: Optional[str],
    line_items: Sequence[LineItem],
    totals: DocumentTotals,
    version_number: int,
    notes: Optional[str] = None,
    change_order_id: Optional[str] = None,
) -> EstimateVersion:
    """Snapshot line items and totals as an EstimateVersion."""
    return EstimateVersion(
        estimate_id=estimate_id,
        version_number=version_number,
        line_items_snapshot=list(line_items),
        subtotal=totals.subtotal,
        tax_rate=totals.tax_rate,
        tax_amount=totals.tax_amount,
        total=totals.total,
        change_order_id=change_order_id,
        notes=notes,
    )
