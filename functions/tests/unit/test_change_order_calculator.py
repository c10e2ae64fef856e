"""Unit tests for change order cost impact and versioning."""

from models.document import ChangeOrder, Estimate
from models.line_item import LineItem
from services.change_order_calculator import (
    apply_change_order,
    build_version,
    calculate_cost_impact,
    next_version_number,
)
from services.totals_calculator import compute_totals
from tests.fixtures.mock_document_data import (
    COUNTERTOP_COST_IMPACT,
    KITCHEN_TAX_RATE,
    get_countertop_change_order,
    get_countertop_change_order_items,
    get_kitchen_estimate,
    get_kitchen_line_items,
)


def _estimate():
    return Estimate.model_validate({**get_kitchen_estimate(), "lineItems": get_kitchen_line_items()})


def _change_order():
    return ChangeOrder.model_validate({
        **get_countertop_change_order(),
        "lineItems": get_countertop_change_order_items(),
    })


class TestCostImpact:
    """Tests for calculate_cost_impact."""

    def test_remove_and_add(self):
        """Removing 3825 and adding 4275 nets +450."""
        items = [LineItem.model_validate(row) for row in get_countertop_change_order_items()]
        assert calculate_cost_impact(items) == COUNTERTOP_COST_IMPACT

    def test_removal_sign_normalised(self):
        """A removal stored with a negative total still subtracts once."""
        rows = get_countertop_change_order_items()
        rows[0]["total"] = -3825
        items = [LineItem.model_validate(row) for row in rows]
        assert calculate_cost_impact(items) == COUNTERTOP_COST_IMPACT

    def test_removal_only(self):
        rows = get_countertop_change_order_items()[:1]
        items = [LineItem.model_validate(row) for row in rows]
        assert calculate_cost_impact(items) == -3825.0


class TestVersioning:
    """Tests for version numbering and snapshots."""

    def test_next_version_number(self):
        assert next_version_number([]) == 1
        assert next_version_number([1, 2, 3]) == 4
        assert next_version_number([2, 5]) == 6

    def test_build_version_snapshot(self):
        items = [LineItem.model_validate(row) for row in get_kitchen_line_items()]
        totals = compute_totals(12760, KITCHEN_TAX_RATE)
        version = build_version("est-kitchen", items, totals, 1, notes="Initial estimate version")

        assert version.version_number == 1
        assert version.total == totals.total
        assert len(version.line_items_snapshot) == 8
        data = version.to_firestore_dict()
        assert data["versionNumber"] == 1
        assert data["lineItemsSnapshot"][0]["id"] == "li-demo"
        assert "changeOrderId" not in data


class TestApplyChangeOrder:
    """Tests for apply_change_order."""

    def test_estimate_total_moves_by_impact(self):
        estimate = _estimate()
        totals, version = apply_change_order(estimate, _change_order(), KITCHEN_TAX_RATE, [1])

        assert totals.subtotal == 13210.0
        assert totals.tax_amount == 1122.85
        assert totals.total == 14332.85

    def test_version_tags_change_order(self):
        estimate = _estimate()
        _, version = apply_change_order(estimate, _change_order(), KITCHEN_TAX_RATE, [1, 2])

        assert version.version_number == 3
        assert version.change_order_id == "co-1"
        assert version.estimate_id == "est-kitchen"
        assert version.notes == "Change order #1: Quartz upgrade"

    def test_snapshot_is_pre_change(self):
        """The version keeps the estimate's line items as they were."""
        estimate = _estimate()
        _, version = apply_change_order(estimate, _change_order(), KITCHEN_TAX_RATE, [1])
        descriptions = [item.description for item in version.line_items_snapshot]
        assert "Granite countertops, 45 sqft" in descriptions
        assert "Quartz countertops, 45 sqft" not in descriptions

    def test_stored_impact_used_without_rows(self):
        change_order = ChangeOrder.model_validate(get_countertop_change_order())
        totals, _ = apply_change_order(_estimate(), change_order, 0, [])
        assert totals.subtotal == 13210.0
        assert totals.total == 13210.0
