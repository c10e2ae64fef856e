"""Line item models for JobLedger.

The line item is the shared row shape of estimates, change orders and
invoices: a flat ordered list where each row is either a parent (grouping
header, no intrinsic cost) or a leaf carrying a dual cost
(time = hours x rate, plus a flat materials cost).
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from utils.money import add, multiply, round2


class LineItemAction(str, Enum):
    """Change-order action applied by a line item."""

    ADD = "add"
    REMOVE = "remove"
    MODIFY = "modify"


class LineItem(BaseModel):
    """A single costed row of a document.

    Stored in /{documentCollection}/{id}/lineItems/{lineItemId}
    """

    id: Optional[str] = Field(
        default=None,
        description="Identifier unique within the owning document (draft key before commit)"
    )
    description: str = Field(
        default="",
        description="Free text; required for leaves"
    )
    parent_id: Optional[str] = Field(
        default=None,
        alias="parentId",
        description="Id of the grouping header this row belongs to"
    )
    is_parent: bool = Field(
        default=False,
        alias="isParent",
        description="Drafting hint marking a grouping header before it has children"
    )
    catalog_item_id: Optional[str] = Field(
        default=None,
        alias="catalogItemId",
        description="Service catalog item the row was priced from"
    )
    estimate_line_item_id: Optional[str] = Field(
        default=None,
        alias="estimateLineItemId",
        description="Estimate row an invoice row bills against"
    )

    # Dual cost
    time_hours: Optional[float] = Field(default=None, alias="timeHours")
    time_rate: Optional[float] = Field(default=None, alias="timeRate")
    time_cost: Optional[float] = Field(default=None, alias="timeCost")
    materials_cost: Optional[float] = Field(default=None, alias="materialsCost")
    total: float = Field(
        default=0.0,
        description="time cost + materials cost (negated for change-order removals)"
    )

    category: Optional[str] = Field(default=None)
    notes: Optional[str] = Field(default=None)
    action: Optional[LineItemAction] = Field(
        default=None,
        description="Change orders only: add | remove | modify"
    )
    original_desc: Optional[str] = Field(
        default=None,
        alias="originalDesc",
        description="Change orders only: description of the row being replaced"
    )
    sort_order: int = Field(default=0, alias="sortOrder")

    class Config:
        populate_by_name = True
        use_enum_values = True

    @property
    def is_removal(self) -> bool:
        """Check if this row removes scope from the parent estimate."""
        return self.action == LineItemAction.REMOVE

    def cost_sum(self) -> float:
        """timeCost + materialsCost, missing components counted as zero."""
        return add(self.time_cost, self.materials_cost)

    def derive(self) -> "LineItem":
        """Return a copy with time cost and total re-derived and rounded.

        Parent headers lose their cost fields (their total is always
        derived from children). Removals get a negative total.
        Applying derive twice yields the same row.
        """
        if self.is_parent:
            return self.model_copy(update={
                "time_hours": None,
                "time_rate": None,
                "time_cost": None,
                "materials_cost": None,
                "total": 0.0,
            })

        time_hours = self.time_hours
        time_rate = self.time_rate
        if time_hours and time_rate:
            time_cost = multiply(time_hours, time_rate)
        else:
            time_cost = round2(self.time_cost) if self.time_cost else None
        materials_cost = round2(self.materials_cost) if self.materials_cost else None

        total = add(time_cost, materials_cost)
        if self.is_removal:
            total = -abs(total)

        return self.model_copy(update={
            "time_cost": time_cost,
            "materials_cost": materials_cost,
            "total": total,
        })

    def to_firestore_dict(self) -> Dict[str, Any]:
        """Convert to Firestore-compatible dict with camelCase keys."""
        return self.model_dump(by_alias=True, exclude_none=True)


class EffectiveTotals(BaseModel):
    """Rolled-up costs for a line item (stored values for leaves, child sums for parents)."""

    time_cost: float = Field(default=0.0, alias="timeCost")
    materials_cost: float = Field(default=0.0, alias="materialsCost")
    total: float = Field(default=0.0)

    class Config:
        populate_by_name = True

    @classmethod
    def zero(cls) -> "EffectiveTotals":
        """Totals of an empty group."""
        return cls(time_cost=0.0, materials_cost=0.0, total=0.0)

    def __add__(self, other: "EffectiveTotals") -> "EffectiveTotals":
        """Add two totals, rounding each component to cents."""
        return EffectiveTotals(
            time_cost=add(self.time_cost, other.time_cost),
            materials_cost=add(self.materials_cost, other.materials_cost),
            total=add(self.total, other.total),
        )
