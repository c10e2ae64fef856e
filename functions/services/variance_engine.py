"""Reconciliation / variance engine for JobLedger.

Compares actual cost (approved work entries) against estimated cost for
each root-level estimate line item, per estimate and across a project.
Pending and rejected work entries are left out entirely.
"""

from typing import Dict, Iterable, List, Sequence

import structlog

from models.document import ChangeOrder, ChangeOrderType, Estimate
from models.reconciliation import (
    EstimateVarianceReport,
    LineItemVariance,
    ProjectVarianceReport,
    VarianceResult,
)
from models.work_entry import WorkEntry
from services.change_order_calculator import approved_impact_by_type
from services.rollup_engine import HierarchyIndex, compute_effective_totals
from utils.money import round2, sum_rounded, to_decimal

logger = structlog.get_logger()


def calculate_variance(estimated_total: float, actual_total: float) -> VarianceResult:
    """variance = actual - estimated; percent relative to estimated (0 when estimated <= 0)."""
    variance = round2(to_decimal(actual_total) - to_decimal(estimated_total))
    if estimated_total > 0:
        variance_percent = float(to_decimal(variance) / to_decimal(estimated_total) * 100)
    else:
        variance_percent = 0.0
    return VarianceResult(
        variance=variance,
        variance_percent=variance_percent,
        is_over_budget=variance > 0,
    )


def format_variance(variance: float, variance_percent: float) -> str:
    """Signed display string, e.g. ``+$150.00 (+12.5%)``."""
    sign = "+" if variance >= 0 else "-"
    return f"{sign}${abs(variance):.2f} ({sign}{abs(variance_percent):.1f}%)"


def _approved_actuals(work_entries: Iterable[WorkEntry]) -> Dict[str, List[float]]:
    """Approved actual totals grouped by estimate line item id."""
    grouped: Dict[str, List[float]] = {}
    for entry in work_entries:
        if not entry.is_approved or not entry.estimate_line_item_id:
            continue
        grouped.setdefault(entry.estimate_line_item_id, []).append(entry.actual_total)
    return grouped


def build_estimate_report(
    estimate: Estimate,
    work_entries: Sequence[WorkEntry],
    change_orders: Sequence[ChangeOrder] = ()
) -> EstimateVarianceReport:
    """Variance per root line item of one estimate.

    A root's estimated total is its rolled-up effective total. Its actual
    total is the sum of approved work entries recorded against it or any
    of its descendants; each child is reported underneath its parent.

    The estimate-level variance is measured against the adjusted
    estimate, i.e. the line-item total plus the impact of every approved
    change order, reported separately for customer-requested and
    unanticipated changes.
    """
    index = HierarchyIndex(estimate.line_items)
    effective = compute_effective_totals(estimate.line_items)
    actuals = _approved_actuals(work_entries)

    def report(key: str) -> LineItemVariance:
        item = index.items[key]
        children = [report(child) for child in index.children_of(key)]
        own = actuals.get(key, [])
        actual_total = sum_rounded([*own, *(child.actual_total for child in children)])
        estimated_total = effective[key].total
        variance = calculate_variance(estimated_total, actual_total)
        return LineItemVariance(
            line_item_id=item.id,
            description=item.description,
            parent_id=item.parent_id,
            estimated_total=estimated_total,
            actual_total=actual_total,
            work_entry_count=len(own) + sum(child.work_entry_count for child in children),
            children=children,
            **variance.model_dump(),
        )

    line_items = [report(root) for root in index.roots]
    original_total = sum_rounded(row.estimated_total for row in line_items)
    actual_total = sum_rounded(row.actual_total for row in line_items)

    impacts = approved_impact_by_type(change_orders, estimate.id)
    customer_requested = impacts.get(ChangeOrderType.CUSTOMER_REQUESTED.value, 0.0)
    unanticipated = impacts.get(ChangeOrderType.UNANTICIPATED_ISSUE.value, 0.0)
    estimated_total = sum_rounded([original_total, customer_requested, unanticipated])

    return EstimateVarianceReport(
        estimate_id=estimate.id,
        number=estimate.number,
        title=estimate.title,
        original_estimated_total=original_total,
        customer_requested_changes=customer_requested,
        unanticipated_changes=unanticipated,
        estimated_total=estimated_total,
        actual_total=actual_total,
        line_items=line_items,
        **calculate_variance(estimated_total, actual_total).model_dump(),
    )


def build_project_report(
    project_id: str,
    estimates: Sequence[Estimate],
    work_entries: Sequence[WorkEntry],
    change_orders: Sequence[ChangeOrder] = ()
) -> ProjectVarianceReport:
    """Per-estimate reports plus project grand totals."""
    reports = [build_estimate_report(estimate, work_entries, change_orders) for estimate in estimates]
    estimated_total = sum_rounded(r.estimated_total for r in reports)
    actual_total = sum_rounded(r.actual_total for r in reports)
    variance = calculate_variance(estimated_total, actual_total)

    logger.info(
        "variance_report_built",
        project_id=project_id,
        estimates=len(reports),
        estimated_total=estimated_total,
        actual_total=actual_total,
        variance=variance.variance,
    )

    return ProjectVarianceReport(
        project_id=project_id,
        original_estimated_total=sum_rounded(r.original_estimated_total for r in reports),
        customer_requested_changes=sum_rounded(r.customer_requested_changes for r in reports),
        unanticipated_changes=sum_rounded(r.unanticipated_changes for r in reports),
        estimated_total=estimated_total,
        actual_total=actual_total,
        estimates=reports,
        **variance.model_dump(),
    )
