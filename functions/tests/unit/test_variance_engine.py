"""Unit tests for the reconciliation / variance engine."""

import pytest

from models.document import ChangeOrder, Estimate
from models.work_entry import WorkEntry
from services.variance_engine import (
    build_estimate_report,
    build_project_report,
    calculate_variance,
    format_variance,
)
from tests.fixtures.mock_document_data import (
    KITCHEN_SUBTOTAL,
    get_grouped_line_items,
    get_kitchen_estimate,
    get_kitchen_line_items,
    get_work_entries,
)


def _kitchen():
    return Estimate.model_validate({**get_kitchen_estimate(), "lineItems": get_kitchen_line_items()})


def _entries():
    return [WorkEntry.model_validate(row) for row in get_work_entries()]


class TestCalculateVariance:
    """Tests for calculate_variance."""

    def test_over_budget(self):
        result = calculate_variance(1200, 1350)
        assert result.variance == 150.0
        assert result.variance_percent == 12.5
        assert result.is_over_budget

    def test_under_budget(self):
        result = calculate_variance(600, 0)
        assert result.variance == -600.0
        assert result.variance_percent == -100.0
        assert not result.is_over_budget

    def test_on_budget(self):
        result = calculate_variance(500, 500)
        assert result.variance == 0.0
        assert not result.is_over_budget

    def test_zero_estimate_has_zero_percent(self):
        result = calculate_variance(0, 250)
        assert result.variance == 250.0
        assert result.variance_percent == 0.0
        assert result.is_over_budget

    def test_percent_is_not_rounded(self):
        result = calculate_variance(3, 4)
        assert result.variance == 1.0
        assert result.variance_percent == pytest.approx(100 / 3)
        assert result.variance_percent != 33.33

    def test_format(self):
        assert format_variance(150, 12.5) == "+$150.00 (+12.5%)"
        assert format_variance(-600, -100) == "-$600.00 (-100.0%)"


class TestEstimateReport:
    """Tests for build_estimate_report."""

    def test_only_approved_entries_count(self):
        report = build_estimate_report(_kitchen(), _entries())
        rows = {row.line_item_id: row for row in report.line_items}

        assert rows["li-demo"].actual_total == 1350.0
        assert rows["li-demo"].work_entry_count == 2
        assert rows["li-demo"].is_over_budget

        # Pending and rejected entries are ignored
        assert rows["li-tile"].actual_total == 0.0
        assert rows["li-plumbing"].actual_total == 0.0
        assert rows["li-plumbing"].work_entry_count == 0

    def test_estimate_totals(self):
        report = build_estimate_report(_kitchen(), _entries())
        assert report.estimated_total == KITCHEN_SUBTOTAL
        assert report.actual_total == 1350.0
        assert report.variance == -11410.0
        assert report.variance_percent == pytest.approx(-11410 / 12760 * 100)
        assert round(report.variance_percent, 2) == -89.42
        assert not report.is_over_budget

    def test_children_roll_up_into_root(self):
        estimate = Estimate.model_validate({
            "id": "est-grouped",
            "projectId": "proj-1",
            "lineItems": get_grouped_line_items(),
        })
        entries = [
            WorkEntry(estimate_line_item_id="grp-cabinets", description="Install",
                      actual_total=2000, status="approved"),
            WorkEntry(estimate_line_item_id="grp-hardware", description="Pulls",
                      actual_total=100, status="approved"),
        ]
        report = build_estimate_report(estimate, entries)
        root = report.line_items[0]

        assert root.line_item_id == "grp-kitchen"
        assert root.estimated_total == 1950.0
        assert root.actual_total == 2100.0
        assert root.work_entry_count == 2
        assert [child.line_item_id for child in root.children] == ["grp-cabinets", "grp-hardware"]
        assert root.children[0].variance == 200.0

    def test_wire_format(self):
        data = build_estimate_report(_kitchen(), _entries()).model_dump(by_alias=True)
        assert "estimatedTotal" in data
        assert "variancePercent" in data
        assert data["lineItems"][0]["lineItemId"] == "li-demo"


class TestProjectReport:
    """Tests for build_project_report."""

    def test_grand_totals(self):
        second = Estimate.model_validate({
            "id": "est-2",
            "projectId": "proj-1",
            "number": 2,
            "lineItems": [{"id": "x", "description": "Deck", "materialsCost": 1000, "total": 1000}],
        })
        entries = _entries() + [
            WorkEntry(estimate_line_item_id="x", description="Lumber", actual_total=900, status="approved")
        ]
        report = build_project_report("proj-1", [_kitchen(), second], entries)

        assert report.project_id == "proj-1"
        assert len(report.estimates) == 2
        assert report.estimated_total == 13760.0
        assert report.actual_total == 2250.0
        assert report.variance == -11510.0

    def test_no_estimates(self):
        report = build_project_report("proj-1", [], [])
        assert report.estimated_total == 0.0
        assert report.variance_percent == 0.0


def _change_order(change_order_id, impact, change_order_type, status="approved", estimate_id="est-kitchen"):
    return ChangeOrder.model_validate({
        "id": change_order_id,
        "projectId": "proj-1",
        "estimateId": estimate_id,
        "status": status,
        "type": change_order_type,
        "costImpact": impact,
    })


class TestChangeOrderAdjustment:
    """Approved change orders adjust the estimate the actuals are compared to."""

    def test_impact_split_by_type(self):
        change_orders = [
            _change_order("co-1", 450, "customer_requested"),
            _change_order("co-2", 300, "unanticipated_issue"),
            _change_order("co-3", 999, "customer_requested", status="sent"),
            _change_order("co-4", 500, "unanticipated_issue", estimate_id="est-other"),
        ]

        report = build_estimate_report(_kitchen(), _entries(), change_orders)

        assert report.original_estimated_total == KITCHEN_SUBTOTAL
        assert report.customer_requested_changes == 450.0
        assert report.unanticipated_changes == 300.0
        assert report.estimated_total == 13510.0
        assert report.variance == 1350.0 - 13510.0

    def test_project_totals_include_changes(self):
        change_orders = [_change_order("co-1", 450, "customer_requested")]

        report = build_project_report("proj-1", [_kitchen()], _entries(), change_orders)

        assert report.original_estimated_total == KITCHEN_SUBTOTAL
        assert report.customer_requested_changes == 450.0
        assert report.unanticipated_changes == 0.0
        assert report.estimated_total == 13210.0

    def test_wire_format(self):
        report = build_estimate_report(_kitchen(), [], [_change_order("co-2", 300, "unanticipated_issue")])
        data = report.model_dump(by_alias=True)
        assert data["unanticipatedChanges"] == 300.0
        assert data["originalEstimatedTotal"] == KITCHEN_SUBTOTAL
