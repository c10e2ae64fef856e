"""Document total calculator for JobLedger.

Pure functions: derive line items, compute subtotal via the rollup
engine, and apply a flat tax rate with fixed cent rounding. The tax rate
is always passed in by the caller (snapshotted from the user's profile).
"""

from typing import List, Sequence

from models.document import DocumentTotals
from models.line_item import LineItem
from services.rollup_engine import calculate_subtotal, flatten_with_totals
from utils.money import add, round2, to_decimal


def compute_totals(subtotal: float, tax_rate_percent: float) -> DocumentTotals:
    """Apply a flat tax rate to a subtotal.

    taxAmount = round2(subtotal * taxRate / 100)
    total     = round2(subtotal + taxAmount)

    Args:
        subtotal: Document subtotal.
        tax_rate_percent: Tax rate in percent (8.5 means 8.5%).

    Returns:
        DocumentTotals with subtotal, taxRate, taxAmount, total.
    """
    subtotal = round2(subtotal)
    tax_rate = float(tax_rate_percent or 0)
    tax_amount = round2(to_decimal(subtotal) * to_decimal(tax_rate) / 100)
    return DocumentTotals(
        subtotal=subtotal,
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        total=add(subtotal, tax_amount),
    )


def normalize_line_items(items: Sequence[LineItem]) -> List[LineItem]:
    """Re-derive time cost and total on every row (idempotent)."""
    return [item.derive() for item in items]


def compute_document_totals(
    items: Sequence[LineItem],
    tax_rate_percent: float,
    adjustment: float = 0.0
) -> DocumentTotals:
    """Subtotal from root effective totals, then tax and grand total.

    ``adjustment`` is added to the line-item subtotal before tax; for an
    estimate it is the net impact of its approved change orders.
    """
    return compute_totals(add(calculate_subtotal(items), adjustment), tax_rate_percent)


def prepare_line_items(items: Sequence[LineItem], tax_rate_percent: float, adjustment: float = 0.0):
    """Normalise, roll up and total a validated line-item collection.

    Returns:
        Tuple of (flattened items with derived parent totals, DocumentTotals).
    """
    flattened = flatten_with_totals(normalize_line_items(items))
    return flattened, compute_document_totals(flattened, tax_rate_percent, adjustment)
